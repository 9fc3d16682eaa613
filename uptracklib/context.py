"""
Facts about the run: which commit is being built and what triggered it.

Two sources are supported. "workflow" reads the environment GitHub Actions
sets up for a job, "git" asks the local repository.
"""

import json
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from dateutil import parser as date_parser

from uptracklib import git_helper, logutil

LOGGER = logutil.get_logger(__name__)

SOURCE_WORKFLOW = 'workflow'
SOURCE_GIT = 'git'
SOURCES = (SOURCE_WORKFLOW, SOURCE_GIT)


@dataclass
class Context:
    sha: str
    ref: str
    commit_date: datetime
    event_name: str = ''
    workflow: str = ''
    action: str = ''
    actor: str = ''
    run_number: int = 0
    run_id: int = 0
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'eventName': self.event_name,
            'sha': self.sha,
            'ref': self.ref,
            'workflow': self.workflow,
            'action': self.action,
            'actor': self.actor,
            'runNumber': self.run_number,
            'runId': self.run_id,
            'commitDate': self.commit_date.isoformat(),
        }


def _read_payload(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    if not os.path.exists(path):
        LOGGER.warning('GITHUB_EVENT_PATH %s does not exist', path)
        return {}
    with open(path, encoding='utf-8') as f:
        return json.load(f)


def commit_date_from_payload(payload: Mapping[str, Any], sha: str) -> Optional[datetime]:
    """Commit date of sha as recorded in a push event payload"""
    for commit in payload.get('commits') or []:
        if commit.get('id') == sha and commit.get('timestamp'):
            return date_parser.isoparse(commit['timestamp'])

    head_commit = payload.get('head_commit') or {}
    if head_commit.get('id') == sha and head_commit.get('timestamp'):
        return date_parser.isoparse(head_commit['timestamp'])

    return None


def context_from_workflow(env: Optional[Mapping[str, str]] = None) -> Context:
    env = os.environ if env is None else env
    payload = _read_payload(env.get('GITHUB_EVENT_PATH'))
    event_name = env.get('GITHUB_EVENT_NAME', '')
    sha = env.get('GITHUB_SHA', '')
    ref = env.get('GITHUB_REF', '')

    # pull_request_target runs against the base branch; use the PR merge ref instead
    if re.search('pull_request_target', event_name):
        ref = f'refs/pull/{payload.get("number")}/merge'

    if re.search('true', env.get('DOCKER_METADATA_PR_HEAD_SHA', ''), re.IGNORECASE):
        head_sha = ((payload.get('pull_request') or {}).get('head') or {}).get('sha')
        if re.search('pull_request', event_name) and head_sha is not None:
            sha = head_sha

    commit_date = commit_date_from_payload(payload, sha)
    if commit_date is None:
        LOGGER.debug('Commit date of %s not found in event payload, using current time', sha)
        commit_date = datetime.now(tz=timezone.utc)

    return Context(
        sha=sha,
        ref=ref,
        commit_date=commit_date,
        event_name=event_name,
        workflow=env.get('GITHUB_WORKFLOW', ''),
        action=env.get('GITHUB_ACTION', ''),
        actor=env.get('GITHUB_ACTOR', ''),
        run_number=int(env.get('GITHUB_RUN_NUMBER') or 0),
        run_id=int(env.get('GITHUB_RUN_ID') or 0),
        payload=payload,
    )


async def context_from_git() -> Context:
    sha = await git_helper.head_sha()
    return Context(
        sha=sha,
        ref=await git_helper.head_ref(),
        commit_date=date_parser.isoparse(await git_helper.head_commit_date()),
    )


async def get_context(source: str) -> Context:
    """
    :param source: "workflow" or "git"
    :raises ValueError: for an unknown source
    """
    if source == SOURCE_WORKFLOW:
        return context_from_workflow()
    if source == SOURCE_GIT:
        return await context_from_git()
    raise ValueError(f'Invalid context source: {source}')
