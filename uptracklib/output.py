import json
import uuid
from pathlib import Path
from typing import Any, Optional, Union

from uptracklib import logutil

LOGGER = logutil.get_logger(__name__)


def format_output(name: str, value: str, delimiter: Optional[str] = None) -> str:
    """A GitHub Actions output in the multiline (heredoc) form"""
    delimiter = delimiter or f'ghadelimiter_{uuid.uuid4()}'
    if delimiter in name or delimiter in value:
        raise ValueError(f'Unexpected input: output value contains the delimiter {delimiter}')
    return f'{name}<<{delimiter}\n{value}\n{delimiter}\n'


def set_output(path: Optional[Union[str, Path]], name: str, value: Any):
    """
    Append an output to the GitHub Actions output file. Non-string values are written as JSON.
    Does nothing when no output file is configured.
    """
    if not path:
        LOGGER.debug('No output file configured, not setting output %s', name)
        return
    if not isinstance(value, str):
        value = json.dumps(value)
    with open(path, 'a', encoding='utf-8') as f:
        f.write(format_output(name, value))


def append_summary(path: Optional[Union[str, Path]], markdown: str):
    """Append markdown to the GitHub Actions step summary file, when one is configured"""
    if not path:
        return
    with open(path, 'a', encoding='utf-8') as f:
        f.write(markdown)
        if not markdown.endswith('\n'):
            f.write('\n')
