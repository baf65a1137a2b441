"""
Utility functions for file system operations and string sanitization.

This module provides helper functions for:
- Normalizing user-provided file extensions
- Scoped temporary files for the document engine
- Single-use placeholder tokens for image substitution
"""

from __future__ import annotations

import os
import re
import secrets
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

# Allows: alphanumeric characters only
EXTENSION_PATTERN = re.compile(r"[^a-z0-9]+")


def normalize_extension(ext: Optional[str], fallback: str = "docx") -> str:
    """
    Normalize a user-provided extension or format tag.

    Args:
        ext: Extension with or without the leading dot, any case
        fallback: Value returned when nothing usable remains

    Returns:
        A lowercase extension without the dot

    Example:
        >>> normalize_extension(".DOCX")
        "docx"
        >>> normalize_extension(None)
        "docx"
    """
    cleaned = EXTENSION_PATTERN.sub("", (ext or "").strip().lower())
    return cleaned or fallback


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and normalized extension (without the dot).

    Example:
        >>> split_extension("Invoice.DOCX")
        ("Invoice", "docx")
    """
    path = Path(filename)
    return path.stem, normalize_extension(path.suffix, fallback="")


@contextmanager
def scratch_file(data: Optional[bytes] = None, extension: str = "") -> Iterator[Path]:
    """
    Yield a private temporary file path, removed on every exit path.

    Args:
        data: Bytes written to the file before it is yielded (optional)
        extension: File extension, with or without the leading dot

    Note:
        The native engine reads and writes by path, so a file is needed;
        the path must not be referenced after the block exits.
    """
    suffix = f".{extension.lstrip('.')}" if extension else ""
    fd, name = tempfile.mkstemp(prefix="docforge-", suffix=suffix)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as handle:
            if data:
                handle.write(data)
        yield path
    finally:
        path.unlink(missing_ok=True)


def new_placeholder_token() -> str:
    """Return a fresh token that stands in for an image during one render."""
    return f"__IMG_{secrets.token_hex(8)}__"
