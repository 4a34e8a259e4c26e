"""
Best-effort extraction of values from model responses.

Extraction is optional: a bad pattern, a missing field or an unparseable
response all yield None instead of an error.
"""

import json
import logging
import re
from enum import Enum
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


class ExtractionMode(Enum):
    """How an extraction pattern is interpreted."""
    REGEX = "regex"  # Case-insensitive regular expression
    PATH = "path"    # Dot-separated field path into a JSON response


def extract(response_text: str, pattern: str, mode: Union[ExtractionMode, str] = ExtractionMode.REGEX) -> Optional[str]:
    """Derive a value from a response.

    Args:
        response_text: Raw model response
        pattern: Regular expression or dot-separated path, depending on mode
        mode: Extraction mode, as the enum or its value ("regex", "path")

    Returns:
        The extracted value, or None when nothing could be extracted

    Raises:
        ValueError: If mode is not a known extraction mode
    """
    if response_text is None or not pattern:
        return None

    mode = ExtractionMode(mode)
    if mode == ExtractionMode.REGEX:
        return _extract_regex(response_text, pattern)
    return _extract_path(response_text, pattern)


def _extract_regex(response_text: str, pattern: str) -> Optional[str]:
    try:
        compiled = re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.debug("Ignoring invalid extraction pattern %r: %s", pattern, e)
        return None

    match = compiled.search(response_text)
    if match is None:
        return None

    # First capturing group if there is one and it took part in the match
    if compiled.groups and match.group(1) is not None:
        return match.group(1)
    return match.group(0)


def _extract_path(response_text: str, path: str) -> Optional[str]:
    try:
        value: Any = json.loads(response_text)
    except (ValueError, RecursionError) as e:
        logger.debug("Response is not JSON, nothing to extract: %s", e)
        return None

    for key in path.split("."):
        if not key or not isinstance(value, dict) or key not in value:
            return None
        value = value[key]

    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))
