"""
Prompt templating.

Placeholders use single braces: ``{NAME}`` where NAME is an identifier
(letters, digits, underscore; not starting with a digit). There is no
nesting and no escaping.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Mapping

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def extract_variables(text: str) -> List[str]:
    """Return placeholder names in order of first appearance, without duplicates.

    Args:
        text: Prompt text to scan

    Returns:
        List of distinct placeholder names
    """
    if not text:
        return []

    # dict keeps insertion order, so first-seen order survives the dedupe
    seen: Dict[str, None] = {}
    for match in PLACEHOLDER_PATTERN.finditer(text):
        seen.setdefault(match.group(1), None)
    return list(seen)


def resolve(text: str, values: Mapping[str, str]) -> str:
    """Substitute supplied values for their placeholders.

    Placeholders with no supplied value are left as written. Substituted
    values are inserted verbatim and never rescanned.

    Args:
        text: Prompt text containing placeholders
        values: Mapping of placeholder name to replacement value

    Returns:
        Resolved prompt text
    """
    if not text or not values:
        return text

    def _replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name in values:
            return str(values[name])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def missing_variables(text: str, values: Mapping[str, str]) -> List[str]:
    """Placeholders in ``text`` that ``values`` does not supply."""
    return [name for name in extract_variables(text) if name not in values]


@dataclass(frozen=True)
class Template:
    """Named prompt template loaded from configuration."""
    name: str
    body: str

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("template name cannot be empty")

    @property
    def variables(self) -> List[str]:
        return extract_variables(self.body)

    def render(self, values: Mapping[str, str]) -> str:
        return resolve(self.body, values)
