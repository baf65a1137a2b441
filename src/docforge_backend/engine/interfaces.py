from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Protocol, Set

from ..exceptions import EngineError
from ..models import RenderOptions


class EngineKind(str, Enum):
    WORDS = "words"
    CELLS = "cells"


WORD_FORMATS = frozenset({"docx", "doc", "docm", "dotx", "dot", "rtf", "odt", "txt", "md", "html", "htm"})
CELL_FORMATS = frozenset({"xlsx", "xls", "xlsm", "xlsb", "ods", "csv"})
PASSTHROUGH_FORMATS = frozenset({"pdf"})
TEXT_FORMATS = frozenset({"txt", "md"})


def engine_kind_for(source_format: str) -> Optional[EngineKind]:
    """Map a source format tag to the engine that loads it; None for pass-through formats."""
    if source_format in PASSTHROUGH_FORMATS:
        return None
    if source_format in WORD_FORMATS:
        return EngineKind.WORDS
    if source_format in CELL_FORMATS:
        return EngineKind.CELLS
    raise EngineError(f"Unsupported file type: {source_format}")


class DocumentEngine(Protocol):
    def ensure_licensed(self, kind: EngineKind) -> None:
        """Activate the license for ``kind`` once; later calls are no-ops."""

    def convert_to_pdf(self, data: bytes, source_format: str) -> bytes:
        """Convert a document to PDF. Raises EngineError on bad input."""

    def convert_to_html(self, data: bytes, source_format: str) -> str:
        """Export a word-processing document as self-contained HTML. Raises EngineError."""

    def convert_from_html(self, html: str, target_format: str = "docx") -> bytes:
        """Build a document from HTML. Raises EngineError."""

    def render_template(
        self,
        data: bytes,
        values: Dict[str, Any],
        options: Optional[RenderOptions] = None,
    ) -> bytes:
        """Run the substitution pipeline. Raises RenderError."""

    def scan_fields(self, data: bytes, source_format: str = "docx") -> Set[str]:
        """Return the placeholder keys found in the document."""
