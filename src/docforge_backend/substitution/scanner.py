"""Placeholder discovery for newly uploaded templates."""

from __future__ import annotations

from typing import Dict, Iterable, Set

from .tags import BRACE_TAG, BRACKET_TAG


def scan_text(text: str) -> Set[str]:
    """Keys referenced by either tag syntax, trimmed and deduplicated."""
    keys: Set[str] = set()
    for pattern in (BRACKET_TAG, BRACE_TAG):
        for match in pattern.finditer(text):
            key = match.group(1).strip()
            if key:
                keys.add(key)
    return keys


def mapping_skeleton(fields: Iterable[str]) -> Dict[str, str]:
    """Initial mapping for a template: every field maps to a visible marker."""
    return {field: f"[{field}]" for field in sorted(fields)}
