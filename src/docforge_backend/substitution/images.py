"""
Image phase: data-URI values become inline images.

Each image key gets a fresh random token. Both tag syntaxes for the key are
rewritten to the token first; every run that then contains the token gets the
decoded image inserted at the token's offset and the token text stripped.
Going through a token keeps image placement on the same run-aware replace path
as every other pass.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from typing import Any, Dict, Optional

from ..engine.graph import DocumentGraph, ImagePayload, Remove, Replace, replace_pattern
from ..utils import new_placeholder_token
from .tags import key_pattern

logger = logging.getLogger(__name__)

DATA_URI_PREFIX = "data:image/"
SIZE_OPTION = re.compile(r"^\s*(width|height)\s*=\s*(\d+(?:\.\d+)?)\s*$", re.IGNORECASE)


def is_image_value(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(DATA_URI_PREFIX)


def parse_image_value(value: str) -> ImagePayload:
    """
    Decode ``data:image/<type>;base64,<data>[|width=N][|height=N]``.

    A lone width or height is applied to both sides.

    Raises:
        ValueError: The value is not a base64 data URI
    """
    uri, *options = value.split("|")
    header, sep, encoded = uri.partition(",")
    if not sep or ";base64" not in header:
        raise ValueError("image value is not a base64 data URI")
    try:
        data = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64 image data: {exc}") from exc
    if not data:
        raise ValueError("image data is empty")

    sizes: Dict[str, float] = {}
    for option in options:
        match = SIZE_OPTION.match(option)
        if match:
            sizes[match.group(1).lower()] = float(match.group(2))
        elif option.strip():
            logger.warning(f"Ignoring unknown image option {option!r}")

    width: Optional[float] = sizes.get("width")
    height: Optional[float] = sizes.get("height")
    if width is not None and height is None:
        height = width
    elif height is not None and width is None:
        width = height
    return ImagePayload(data=data, width=width, height=height)


def insert_images(graph: DocumentGraph, data: Dict[str, Any]) -> int:
    """
    Replace image placeholders with inline images. Best effort per key.

    Returns:
        Number of images inserted
    """
    inserted = 0
    for key, value in data.items():
        if not is_image_value(value):
            continue
        try:
            inserted += _insert_image(graph, key, parse_image_value(value))
        except Exception:
            logger.exception(f"Image insertion failed for key {key!r}; skipping")
    return inserted


def _insert_image(graph: DocumentGraph, key: str, image: ImagePayload) -> int:
    token = new_placeholder_token()
    if not replace_pattern(graph, key_pattern(key), lambda _match: Replace(token)):
        logger.debug(f"No placeholder for image key {key!r}")
        return 0

    count = 0
    try:
        for paragraph in graph.paragraphs():
            # Each insertion splits the run, so rescan until the token is gone.
            while True:
                run = next((r for r in graph.runs(paragraph) if token in graph.get_text(r)), None)
                if run is None:
                    break
                text = graph.get_text(run)
                offset = text.index(token)
                graph.set_text(run, text[:offset] + text[offset + len(token):])
                graph.insert_image(run, offset, image)
                count += 1
    finally:
        # Tokens are single-use; none may survive a failed insertion.
        replace_pattern(graph, re.compile(re.escape(token)), lambda _match: Remove())
    return count
