"""
Placeholder tag grammar shared by the substitution phases and the scanner.

Two syntaxes name the same key:

    <<[customer.name]>>    bracketed (report) form
    {{ customer.name }}    double-brace form

Repeating sections use ``<<foreach [item in items]>> ... <</foreach>>``.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any, Tuple

BRACKET_TAG = re.compile(r"<<\[(.*?)\]>>", re.DOTALL)
BRACE_TAG = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
FOREACH_TAG = re.compile(
    r"<<(?:foreach\s*\[\s*(?P<var>\w+)\s+in\s+(?P<path>[^\]]*?)\s*\]|(?P<close>/foreach))>>"
)

# Keys may contain word characters, dots (path separators) and spaces.
ILLEGAL_KEY_CHAR = re.compile(r"[^\w.\s]")

_MISSING = object()


def bracket_tag(key: str) -> str:
    return f"<<[{key}]>>"


def key_pattern(key: str) -> re.Pattern:
    """Both tag syntaxes for one literal key, tolerating inner whitespace."""
    escaped = re.escape(key.strip())
    return re.compile(rf"<<\[\s*{escaped}\s*\]>>|\{{\{{\s*{escaped}\s*\}}\}}")


def is_legal_key(key: str) -> bool:
    return bool(key.strip()) and not ILLEGAL_KEY_CHAR.search(key)


def resolve_path(data: Any, path: str) -> Tuple[bool, Any]:
    """
    Look up ``path`` in ``data``.

    A literal key wins over a dotted path, so flat mappings such as
    ``{"order.id": 7}`` keep working. Numeric segments index into lists.

    Returns:
        ``(found, value)``
    """
    path = path.strip()
    if isinstance(data, Mapping) and path in data:
        return True, data[path]

    current = data
    for segment in path.split("."):
        segment = segment.strip()
        value = _MISSING
        if isinstance(current, Mapping):
            value = current.get(segment, _MISSING)
        elif _is_list(current) and segment.isdigit() and int(segment) < len(current):
            value = current[int(segment)]
        if value is _MISSING:
            return False, None
        current = value
    return True, current


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _is_list(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))
