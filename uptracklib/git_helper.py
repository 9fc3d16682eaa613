import os
from typing import Dict, Optional, Sequence

from async_lru import alru_cache

from uptracklib import constants, exectools, logutil

LOGGER = logutil.get_logger(__name__)

_MISSING_PATH_MARKERS = ('does not exist', 'exists on disk, but not in')


async def gather_git_async(args: Sequence[str], env: Optional[Dict[str, str]] = None, check: bool = True, **kwargs):
    """Run a git command asynchronously and returns rc,stdout,stderr as a tuple
    :param args: List of arguments to pass to git
    :param env: Optional environment variables to set
    :param check: If True, raise an exception if the git command fails
    :param kwargs: Additional arguments to pass to exectools.cmd_gather_async
    :return: rc, stdout, stderr
    """
    # set up env vars for git
    set_env = os.environ.copy()
    set_env.update(constants.GIT_NO_PROMPTS)
    if env:
        set_env.update(env)
    return await exectools.cmd_gather_async(["git"] + list(args), check=check, env=set_env, **kwargs)


@alru_cache(maxsize=256)
async def rev_parse(path: str) -> Optional[str]:
    """Object id of a path in the HEAD commit; for a directory this is its tree hash.
    :param path: Path relative to the repository root
    :return: The object id, or None if the path is not in HEAD
    :raises ChildProcessError: if git fails for another reason
    """
    rc, stdout, stderr = await gather_git_async(["rev-parse", f"HEAD:{path}"], check=False)
    if rc != 0:
        if any(marker in stderr for marker in _MISSING_PATH_MARKERS):
            return None
        raise ChildProcessError(stderr.strip())
    return stdout.strip()


async def head_sha() -> str:
    _, stdout, _ = await gather_git_async(["rev-parse", "HEAD"])
    return stdout.strip()


async def head_ref() -> str:
    """The symbolic ref of HEAD, or refs/tags/<describe> on a detached HEAD"""
    rc, stdout, _ = await gather_git_async(["symbolic-ref", "HEAD"], check=False)
    if rc == 0 and stdout.strip():
        return stdout.strip()
    _, stdout, _ = await gather_git_async(["describe", "--tags", "--always"])
    return f"refs/tags/{stdout.strip()}"


async def head_commit_date() -> str:
    """Committer date of HEAD in strict ISO 8601"""
    _, stdout, _ = await gather_git_async(["log", "-1", "--format=%cI"])
    return stdout.strip()
