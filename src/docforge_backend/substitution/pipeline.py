"""
The four-phase template substitution pipeline.

Phases run strictly in order, each over the whole document:

1. images         data-URI values become inline images (best effort)
2. sanitization   malformed bracketed tags become visible diagnostics (best effort)
3. normalization  ``{{path}}`` becomes ``<<[path]>>`` or is dropped/kept
4. resolution     the report pass fills fields and repeating sections

Phases 3 and 4 are all-or-nothing: any failure surfaces as ``RenderError``.
"""

from __future__ import annotations

import html
import logging
import re
from typing import Any, Dict, Mapping

from ..engine.graph import DocumentGraph, Remove, Replace, Skip, replace_pattern
from ..exceptions import RenderError
from .images import insert_images, is_image_value
from .report import build_report
from .tags import BRACE_TAG, BRACKET_TAG, bracket_tag, is_legal_key, resolve_path

logger = logging.getLogger(__name__)

INVALID_TAG_TEMPLATE = "[Invalid tag: {tag}]"


def invalid_tag_text(tag: str) -> str:
    """Diagnostic shown in place of a malformed tag; angle brackets are escaped."""
    return INVALID_TAG_TEMPLATE.format(tag=html.escape(tag, quote=False))


def sanitize_tags(graph: DocumentGraph) -> int:
    """Replace bracketed tags with illegal keys by a diagnostic string."""

    def decide(match: re.Match):
        try:
            if is_legal_key(match.group(1)):
                return Skip()
            logger.warning(f"Malformed template tag {match.group(0)!r}")
            return Replace(invalid_tag_text(match.group(0)))
        except Exception:
            logger.exception(f"Could not sanitize tag {match.group(0)!r}; leaving it")
            return Skip()

    return replace_pattern(graph, BRACKET_TAG, decide)


def normalize_tags(graph: DocumentGraph, data: Mapping[str, Any], preserve_placeholders: bool = False) -> int:
    """
    Rewrite resolvable ``{{path}}`` tags into bracketed form.

    Values are not substituted here. Unresolved tags are removed, or left
    untouched when ``preserve_placeholders`` is set so an author can see
    which keys have no mapping.
    """

    def decide(match: re.Match):
        key = match.group(1).strip()
        if is_legal_key(key) and resolve_path(data, key)[0]:
            return Replace(bracket_tag(key))
        return Skip() if preserve_placeholders else Remove()

    return replace_pattern(graph, BRACE_TAG, decide)


def render_document(
    graph: DocumentGraph,
    data: Mapping[str, Any],
    preserve_placeholders: bool = False,
) -> DocumentGraph:
    """
    Run the full pipeline over ``graph`` in place.

    Args:
        graph: Loaded template
        data: JSON-like data object; image values are data URIs
        preserve_placeholders: Keep unresolved tags visible (interactive preview)

    Returns:
        The same graph, for chaining into ``save``

    Raises:
        RenderError: Normalization or structured resolution failed
    """
    data = dict(data or {})

    images = insert_images(graph, data)
    sanitized = sanitize_tags(graph)
    logger.debug(f"Inserted {images} image(s), sanitized {sanitized} tag(s)")

    # Image values were consumed by phase 1 and must not leak as text.
    values: Dict[str, Any] = {key: value for key, value in data.items() if not is_image_value(value)}
    try:
        normalize_tags(graph, values, preserve_placeholders)
        build_report(graph, values, keep_unresolved=preserve_placeholders)
    except RenderError:
        raise
    except Exception as exc:
        raise RenderError(f"Template resolution failed: {exc}") from exc
    return graph
