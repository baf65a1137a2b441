"""
Aspose.Words / Aspose.Cells backed document engine.

The native libraries are imported lazily so that the queue, the CLI and the
plain-text render path work on machines without them. Licenses are activated
once per engine kind and per ``AsposeEngine`` instance; until activation
succeeds the libraries run in evaluation mode and every call retries.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set

from ..exceptions import EngineError, RenderError
from ..models import RenderOptions
from ..substitution import render_document, scan_text
from ..utils import normalize_extension, scratch_file
from .graph import Block, DocumentGraph, ImagePayload, MemoryDocument
from .interfaces import TEXT_FORMATS, EngineKind, engine_kind_for

logger = logging.getLogger(__name__)

LICENSE_FILES = {
    EngineKind.WORDS: "Aspose.Words.lic",
    EngineKind.CELLS: "Aspose.Cells.lic",
}

Activator = Callable[[Path], None]


def _activate_words(license_path: Path) -> None:
    import aspose.words as aw

    aw.License().set_license(str(license_path))


def _activate_cells(license_path: Path) -> None:
    import aspose.cells as ac

    ac.License().set_license(str(license_path))


DEFAULT_ACTIVATORS: Dict[EngineKind, Activator] = {
    EngineKind.WORDS: _activate_words,
    EngineKind.CELLS: _activate_cells,
}


class AsposeWordsDocument(DocumentGraph):
    """``DocumentGraph`` over an ``aspose.words.Document``."""

    def __init__(self, document: Any):
        import aspose.words as aw

        self._aw = aw
        self.document = document

    @classmethod
    def load(cls, data: bytes, source_format: str = "docx") -> "AsposeWordsDocument":
        import aspose.words as aw

        with scratch_file(data, source_format) as path:
            return cls(aw.Document(str(path)))

    def paragraphs(self) -> List[Any]:
        nodes = self.document.get_child_nodes(self._aw.NodeType.PARAGRAPH, True)
        return [node.as_paragraph() for node in nodes]

    def runs(self, paragraph: Any) -> List[Any]:
        # Runs nested in inline content controls or smart tags still belong
        # to this paragraph; runs of nested paragraphs do not.
        runs = []
        for node in paragraph.get_child_nodes(self._aw.NodeType.RUN, True):
            run = node.as_run()
            if paragraph.index_of(run) >= 0 or self.same_node(run.parent_paragraph, paragraph):
                runs.append(run)
        return runs

    def get_text(self, run: Any) -> str:
        return run.text

    def set_text(self, run: Any, text: str) -> None:
        run.text = text

    def insert_image(self, run: Any, offset: int, image: ImagePayload) -> None:
        text = run.text
        tail = run.clone(True).as_run()
        tail.text = text[offset:]
        run.text = text[:offset]
        run.parent_node.insert_after(tail, run)

        builder = self._aw.DocumentBuilder(self.document)
        builder.move_to(tail)
        if image.width is not None and image.height is not None:
            builder.insert_image(image.data, image.width, image.height)
        else:
            builder.insert_image(image.data)

    def block(self, first: Any, last: Any) -> Optional[Block]:
        parent = first.parent_node
        if parent is not None and parent.index_of(last) >= 0:
            start, end = parent.index_of(first), parent.index_of(last)
            return Block(tuple(_siblings(first, end - start))) if start <= end else None

        row_type = self._aw.NodeType.ROW
        row = first.get_ancestor(row_type)
        while row is not None:
            table = row.parent_node
            other = last.get_ancestor(row_type)
            while other is not None and table.index_of(other) < 0:
                other = other.parent_node.get_ancestor(row_type)
            if other is not None:
                start, end = table.index_of(row), table.index_of(other)
                return Block(tuple(_siblings(row, end - start)), rows=True) if start <= end else None
            row = table.get_ancestor(row_type)
        return None

    def clone_nodes(self, nodes: Sequence[Any], after: Any) -> List[Any]:
        copies = []
        for node in nodes:
            clone = node.clone(True)
            after.parent_node.insert_after(clone, after)
            copies.append(clone)
            after = clone
        return copies

    def remove_node(self, node: Any) -> None:
        node.remove()

    def node_paragraphs(self, node: Any) -> List[Any]:
        if node.node_type == self._aw.NodeType.PARAGRAPH:
            return [node.as_paragraph()]
        if not node.is_composite:
            return []
        nodes = node.as_composite_node().get_child_nodes(self._aw.NodeType.PARAGRAPH, True)
        return [child.as_paragraph() for child in nodes]

    def is_sole_paragraph(self, paragraph: Any) -> bool:
        parent = paragraph.parent_node
        return (
            parent is not None
            and parent.node_type == self._aw.NodeType.CELL
            and parent.get_child_nodes(self._aw.NodeType.ANY, False).count == 1
        )

    def same_node(self, a: Any, b: Any) -> bool:
        parent = a.parent_node if a is not None else None
        if parent is None or b is None:
            return a is b
        index = parent.index_of(a)
        return index >= 0 and parent.index_of(b) == index

    def has_objects(self, paragraph: Any) -> bool:
        return paragraph.get_child_nodes(self._aw.NodeType.SHAPE, True).count > 0

    def shapes(self) -> List[Any]:
        return [node.as_shape() for node in self.document.get_child_nodes(self._aw.NodeType.SHAPE, True)]

    def save(self, fmt: str) -> bytes:
        with scratch_file(extension=fmt) as path:
            # The output format follows the file extension.
            self.document.save(str(path))
            return path.read_bytes()


def _siblings(first: Any, count: int) -> List[Any]:
    """``first`` and the ``count`` sibling nodes that follow it."""
    nodes = [first]
    for _ in range(count):
        nodes.append(nodes[-1].next_sibling)
    return nodes


class AsposeEngine:
    """
    ``DocumentEngine`` backed by Aspose.

    Args:
        license_dir: Directory holding ``Aspose.Words.lic`` / ``Aspose.Cells.lic``
        activators: Per-kind license activation callables (tests swap these)
    """

    def __init__(self, license_dir: Path = Path("licenses"), activators: Optional[Mapping[EngineKind, Activator]] = None):
        self.license_dir = Path(license_dir)
        self._activators: Dict[EngineKind, Activator] = dict(activators or DEFAULT_ACTIVATORS)
        self._locks = {kind: threading.Lock() for kind in EngineKind}
        self._activated: Dict[EngineKind, bool] = {kind: False for kind in EngineKind}

    def is_licensed(self, kind: EngineKind) -> bool:
        return self._activated[EngineKind(kind)]

    def ensure_licensed(self, kind: EngineKind) -> None:
        kind = EngineKind(kind)
        with self._locks[kind]:
            if self._activated[kind]:
                return
            license_path = self.license_dir / LICENSE_FILES[kind]
            if not license_path.is_file():
                logger.warning(f"No {kind.value} license at {license_path}; running in evaluation mode")
                return
            try:
                self._activators[kind](license_path)
            except Exception:
                logger.exception(f"Failed to load {kind.value} license from {license_path}; running in evaluation mode")
                return
            self._activated[kind] = True
            logger.info(f"{LICENSE_FILES[kind].removesuffix('.lic')} license loaded")

    def convert_to_pdf(self, data: bytes, source_format: str) -> bytes:
        fmt = normalize_extension(source_format)
        kind = engine_kind_for(fmt)
        if kind is None:
            return data
        if not data:
            raise EngineError("Document is empty")

        self.ensure_licensed(kind)
        logger.info(f"Converting {fmt} document ({len(data)} bytes) to pdf")
        try:
            with scratch_file(data, fmt) as source, scratch_file(extension="pdf") as target:
                if kind is EngineKind.WORDS:
                    import aspose.words as aw

                    aw.Document(str(source)).save(str(target), aw.SaveFormat.PDF)
                else:
                    import aspose.cells as ac

                    ac.Workbook(str(source)).save(str(target), ac.SaveFormat.PDF)
                return target.read_bytes()
        except Exception as exc:
            raise EngineError(f"Could not convert {fmt} document: {exc}") from exc

    def convert_to_html(self, data: bytes, source_format: str) -> str:
        """
        Export a word-processing document as self-contained HTML for editing.

        Images and fonts are embedded as base64, styles are inlined and
        round-trip information is kept so ``convert_from_html`` can restore
        the layout.
        """
        fmt = normalize_extension(source_format)
        if engine_kind_for(fmt) is not EngineKind.WORDS:
            raise EngineError(f"HTML export is not supported for {fmt} documents")
        if not data:
            raise EngineError("Document is empty")

        self.ensure_licensed(EngineKind.WORDS)
        try:
            import aspose.words as aw

            options = aw.saving.HtmlSaveOptions()
            options.export_images_as_base64 = True
            options.export_fonts_as_base64 = True
            options.pretty_format = True
            options.export_roundtrip_information = True
            options.css_style_sheet_type = aw.saving.CssStyleSheetType.INLINE
            with scratch_file(data, fmt) as source, scratch_file(extension="html") as target:
                aw.Document(str(source)).save(str(target), options)
                return target.read_text(encoding="utf-8")
        except Exception as exc:
            raise EngineError(f"Could not export {fmt} document as html: {exc}") from exc

    def convert_from_html(self, html: str, target_format: str = "docx") -> bytes:
        """Build a document in ``target_format`` from edited HTML."""
        fmt = normalize_extension(target_format)
        if fmt != "pdf" and engine_kind_for(fmt) is not EngineKind.WORDS:
            raise EngineError(f"HTML import cannot produce {fmt} documents")
        if not html.strip():
            raise EngineError("HTML content is empty")

        self.ensure_licensed(EngineKind.WORDS)
        try:
            import aspose.words as aw

            with scratch_file(html.encode("utf-8"), "html") as source, scratch_file(extension=fmt) as target:
                # The output format follows the file extension.
                aw.Document(str(source)).save(str(target))
                return target.read_bytes()
        except Exception as exc:
            raise EngineError(f"Could not build {fmt} document from html: {exc}") from exc

    def render_template(
        self,
        data: bytes,
        values: Dict[str, Any],
        options: Optional[RenderOptions] = None,
    ) -> bytes:
        options = options or RenderOptions()
        source = normalize_extension(options.source_format)
        output = normalize_extension(options.output_format, fallback="pdf")

        if source in TEXT_FORMATS:
            return self._render_text(data, values, source, output, options.preserve_placeholders)
        if engine_kind_for(source) is not EngineKind.WORDS:
            raise RenderError(f"Templates must be word-processing documents, got {source}")

        self.ensure_licensed(EngineKind.WORDS)
        try:
            graph = AsposeWordsDocument.load(data, source)
        except Exception as exc:
            raise RenderError(f"Could not load template: {exc}") from exc

        render_document(graph, values, options.preserve_placeholders)
        try:
            return graph.save(output)
        except Exception as exc:
            raise RenderError(f"Could not save rendered document as {output}: {exc}") from exc

    def _render_text(self, data: bytes, values: Dict[str, Any], source: str, output: str, preserve: bool) -> bytes:
        graph = MemoryDocument.load(data)
        render_document(graph, values, preserve)
        if output in TEXT_FORMATS or output == "json":
            return graph.save(output)
        if output != "pdf":
            raise RenderError(f"Unsupported output format for {source} templates: {output}")
        try:
            return self.convert_to_pdf(graph.save(source), source)
        except EngineError as exc:
            raise RenderError(str(exc)) from exc

    def scan_fields(self, data: bytes, source_format: str = "docx") -> Set[str]:
        fmt = normalize_extension(source_format)
        if fmt in TEXT_FORMATS:
            return scan_text(MemoryDocument.load(data).text())
        if engine_kind_for(fmt) is not EngineKind.WORDS:
            raise EngineError(f"Field scanning is not supported for {fmt} documents")

        self.ensure_licensed(EngineKind.WORDS)
        try:
            graph = AsposeWordsDocument.load(data, fmt)
        except Exception as exc:
            raise EngineError(f"Could not load {fmt} document: {exc}") from exc
        return scan_text(graph.text())
