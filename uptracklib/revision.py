"""
Build identity of a variant's sources.

The build identity ("build hash") is stamped into every image as the revision
label. It is either the commit being built (provider "git"), or the tree hash
of the directory holding the configuration file (provider "config") so that
commits touching unrelated files do not trigger rebuilds. Directories a
variant includes are folded into the config hash.
"""

import hashlib
import os
from typing import Iterable

from uptracklib import git_helper, logutil

LOGGER = logutil.get_logger(__name__)

PROVIDER_GIT = 'git'
PROVIDER_CONFIG = 'config'
PROVIDERS = (PROVIDER_GIT, PROVIDER_CONFIG)


class RevisionError(Exception):
    pass


def config_folder(config_path: str) -> str:
    return os.path.dirname(os.path.normpath(config_path)) or '.'


async def resolve_build_hash(provider: str, config_path: str, includes: Iterable[str], context_sha: str) -> str:
    """
    :param provider: "git" or "config"
    :param config_path: Path of the configuration file, relative to the repository root
    :param includes: Directories, relative to the config folder, the variant depends on
    :param context_sha: Commit sha of the run, the build hash of the "git" provider
    :return: The build hash
    :raises RevisionError: if the config folder is not part of HEAD
    """
    if provider not in PROVIDERS:
        raise ValueError(f'Unknown revision provider "{provider}", expected one of {", ".join(PROVIDERS)}')

    folder = config_folder(config_path)
    if provider == PROVIDER_CONFIG and folder == '.':
        LOGGER.warning('Config folder is the repository root. Using git revision as build hash instead')
        provider = PROVIDER_GIT

    if provider == PROVIDER_GIT:
        LOGGER.info('Using git revision as build hash %s', context_sha)
        return context_sha

    folder_hash = await git_helper.rev_parse(folder)
    if folder_hash is None:
        raise RevisionError(f'Failed to get git revision of config folder "{folder}"')

    includes = list(includes)
    if not includes:
        build_hash = folder_hash
    else:
        hashes = [folder_hash]
        for dep in includes:
            dep_hash = await git_helper.rev_parse(os.path.normpath(os.path.join(folder, dep)))
            if dep_hash is None:
                LOGGER.warning('Failed to get git revision of dependency folder "%s", using its name as hash', dep)
                hashes.append(dep)
            else:
                hashes.append(dep_hash)
        build_hash = hashlib.sha256(''.join(hashes).encode()).hexdigest()

    LOGGER.info('Using config folder "%s" hash %s with dependencies %s', folder, build_hash, includes)
    return build_hash
