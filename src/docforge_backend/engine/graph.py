"""
Abstract paragraph/run text graph.

Substitution passes never talk to the native engine directly. They see a
document as an ordered list of paragraphs, each an ordered list of runs (the
smallest text-bearing unit, carrying one formatting), and they express every
edit as a pure decision per regex match: ``Replace(text)``, ``Skip()`` or
``Remove()``. ``replace_pattern`` applies those decisions across run
boundaries, so a tag split over several runs by the word processor is still
matched and rewritten in place.

Repeating sections work on blocks of sibling nodes: the paragraphs (and
tables) between two paragraphs of the same story or cell, or whole table rows
when the two paragraphs sit in different cells of one table.

Backends implement ``DocumentGraph``; ``MemoryDocument`` is the in-process
backend used for plain-text templates.
"""

from __future__ import annotations

import base64
import copy
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple, Union


@dataclass(frozen=True)
class Replace:
    text: str


@dataclass(frozen=True)
class Skip:
    pass


@dataclass(frozen=True)
class Remove:
    pass


Action = Union[Replace, Skip, Remove]
Decision = Callable[[re.Match], Action]


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    width: Optional[float] = None
    height: Optional[float] = None


@dataclass(frozen=True, eq=False)
class Block:
    """Sibling nodes covered by a repeating section; ``rows`` marks table rows."""

    nodes: Tuple[Any, ...]
    rows: bool = False


class DocumentGraph(ABC):
    """Mutable view of a document as paragraphs of runs."""

    @abstractmethod
    def paragraphs(self) -> List[Any]:
        """Every paragraph in document order, including tables and headers."""

    @abstractmethod
    def runs(self, paragraph: Any) -> List[Any]:
        ...

    @abstractmethod
    def get_text(self, run: Any) -> str:
        ...

    @abstractmethod
    def set_text(self, run: Any, text: str) -> None:
        ...

    @abstractmethod
    def insert_image(self, run: Any, offset: int, image: ImagePayload) -> None:
        """Split ``run`` at ``offset`` and place the image between the halves."""

    @abstractmethod
    def block(self, first: Any, last: Any) -> Optional[Block]:
        """
        Nodes spanned by the paragraphs ``first`` through ``last``.

        Paragraphs with the same parent give the siblings between them. When
        they sit in different cells of one table, the block is the table rows
        from ``first``'s row to ``last``'s. Anything else is None.
        """

    @abstractmethod
    def clone_nodes(self, nodes: Sequence[Any], after: Any) -> List[Any]:
        """Deep-copy ``nodes`` and insert the copies, in order, right after ``after``."""

    @abstractmethod
    def remove_node(self, node: Any) -> None:
        ...

    @abstractmethod
    def node_paragraphs(self, node: Any) -> List[Any]:
        """The paragraph itself, or every paragraph inside a table or row."""

    @abstractmethod
    def is_sole_paragraph(self, paragraph: Any) -> bool:
        """True when ``paragraph`` is the only content of a table cell."""

    @abstractmethod
    def same_node(self, a: Any, b: Any) -> bool:
        ...

    @abstractmethod
    def has_objects(self, paragraph: Any) -> bool:
        """True when the paragraph holds non-text content such as images."""

    @abstractmethod
    def save(self, fmt: str) -> bytes:
        ...

    def clone_paragraph(self, paragraph: Any, after: Any) -> Any:
        """Deep-copy ``paragraph`` and insert the copy right after ``after``."""
        return self.clone_nodes([paragraph], after)[0]

    def remove_paragraph(self, paragraph: Any) -> None:
        """Remove ``paragraph``; a cell keeps its last paragraph, emptied."""
        if self.is_sole_paragraph(paragraph):
            self.set_paragraph_text(paragraph, "")
        else:
            self.remove_node(paragraph)

    def block_paragraphs(self, nodes: Sequence[Any]) -> List[Any]:
        return [paragraph for node in nodes for paragraph in self.node_paragraphs(node)]

    def paragraph_text(self, paragraph: Any) -> str:
        return "".join(self.get_text(run) for run in self.runs(paragraph))

    def text(self) -> str:
        return "\n".join(self.paragraph_text(paragraph) for paragraph in self.paragraphs())

    def is_blank(self, paragraph: Any) -> bool:
        return not self.paragraph_text(paragraph).strip() and not self.has_objects(paragraph)

    def splice(self, paragraph: Any, start: int, end: int, replacement: str = "") -> None:
        """Replace paragraph text ``[start, end)`` keeping the first run's formatting."""
        runs = self.runs(paragraph)
        texts = [self.get_text(run) for run in runs]
        updated = _splice_texts(texts, start, end, replacement)
        for run, before, after in zip(runs, texts, updated):
            if before != after:
                self.set_text(run, after)

    def set_paragraph_text(self, paragraph: Any, text: str) -> None:
        self.splice(paragraph, 0, len(self.paragraph_text(paragraph)), text)


def _splice_texts(texts: Sequence[str], start: int, end: int, replacement: str) -> List[str]:
    result = list(texts)
    if not result:
        return result
    if start == end and start >= sum(len(t) for t in result):
        result[-1] = result[-1] + replacement
        return result

    pos = 0
    inserted = False
    for index, text in enumerate(result):
        lo, hi = pos, pos + len(text)
        pos = hi
        touches = lo <= start < hi if start == end else (lo < end and hi > start)
        if not touches:
            continue
        cut_from = max(start, lo) - lo
        cut_to = min(end, hi) - lo
        head = "" if inserted else replacement
        result[index] = text[:cut_from] + head + text[cut_to:]
        inserted = True
        if start == end:
            break
    return result


def replace_pattern(
    graph: DocumentGraph,
    pattern: re.Pattern,
    decide: Decision,
    paragraphs: Optional[Sequence[Any]] = None,
) -> int:
    """
    Apply ``decide`` to every match of ``pattern``, paragraph by paragraph.

    Matches are found on the concatenated run text, so they may span runs.
    Replacement text lands in the run where the match starts.

    Returns:
        Number of matches that were replaced or removed
    """
    changed = 0
    for paragraph in paragraphs if paragraphs is not None else graph.paragraphs():
        runs = graph.runs(paragraph)
        original = [graph.get_text(run) for run in runs]
        matches = list(pattern.finditer("".join(original)))
        if not matches:
            continue

        texts = list(original)
        # Back to front so earlier offsets stay valid.
        for match in reversed(matches):
            action = decide(match)
            if isinstance(action, Skip):
                continue
            replacement = action.text if isinstance(action, Replace) else ""
            texts = _splice_texts(texts, match.start(), match.end(), replacement)
            changed += 1

        for run, before, after in zip(runs, original, texts):
            if before != after:
                graph.set_text(run, after)
    return changed


@dataclass(eq=False)
class MemoryRun:
    text: str = ""


@dataclass(eq=False)
class MemoryImage:
    data: bytes
    width: Optional[float] = None
    height: Optional[float] = None


@dataclass(eq=False)
class MemoryParagraph:
    nodes: List[Union[MemoryRun, MemoryImage]] = field(default_factory=list)


@dataclass(eq=False)
class MemoryCell:
    blocks: List[Union[MemoryParagraph, "MemoryTable"]] = field(default_factory=list)


@dataclass(eq=False)
class MemoryRow:
    cells: List[MemoryCell] = field(default_factory=list)


@dataclass(eq=False)
class MemoryTable:
    rows: List[MemoryRow] = field(default_factory=list)


MemoryNode = Union[MemoryParagraph, MemoryTable, MemoryRow, MemoryCell]


def _children(node: Any) -> List[Any]:
    if isinstance(node, MemoryTable):
        return node.rows
    if isinstance(node, MemoryRow):
        return node.cells
    if isinstance(node, MemoryCell):
        return node.blocks
    return []


def _walk_paragraphs(nodes: Sequence[Any]) -> Iterator[MemoryParagraph]:
    for node in nodes:
        if isinstance(node, MemoryParagraph):
            yield node
        else:
            yield from _walk_paragraphs(_children(node))


def _position(nodes: Sequence[Any], target: Any) -> int:
    return next(i for i, candidate in enumerate(nodes) if candidate is target)


class MemoryDocument(DocumentGraph):
    """
    In-process document: one paragraph per line, one run per paragraph until edited.

    The body may also hold ``MemoryTable`` blocks; their cell paragraphs are
    part of ``paragraphs()`` in row-major order.
    """

    def __init__(self, blocks: Optional[List[Union[MemoryParagraph, MemoryTable]]] = None):
        self._body: List[Union[MemoryParagraph, MemoryTable]] = blocks or []

    @classmethod
    def from_text(cls, text: str) -> "MemoryDocument":
        return cls([MemoryParagraph([MemoryRun(line)]) for line in text.split("\n")])

    @classmethod
    def from_runs(cls, *paragraphs: Sequence[str]) -> "MemoryDocument":
        """Build a document whose paragraphs are split into the given runs."""
        return cls([MemoryParagraph([MemoryRun(text) for text in runs]) for runs in paragraphs])

    @classmethod
    def load(cls, data: bytes) -> "MemoryDocument":
        return cls.from_text(data.decode("utf-8-sig").replace("\r\n", "\n"))

    @property
    def body(self) -> List[Union[MemoryParagraph, MemoryTable]]:
        return self._body

    def paragraphs(self) -> List[MemoryParagraph]:
        return list(_walk_paragraphs(self._body))

    def runs(self, paragraph: MemoryParagraph) -> List[MemoryRun]:
        return [node for node in paragraph.nodes if isinstance(node, MemoryRun)]

    def get_text(self, run: MemoryRun) -> str:
        return run.text

    def set_text(self, run: MemoryRun, text: str) -> None:
        run.text = text

    def insert_image(self, run: MemoryRun, offset: int, image: ImagePayload) -> None:
        paragraph = self._owner(run)
        index = _position(paragraph.nodes, run)
        tail = MemoryRun(run.text[offset:])
        run.text = run.text[:offset]
        paragraph.nodes[index + 1:index + 1] = [MemoryImage(image.data, image.width, image.height), tail]

    def block(self, first: MemoryParagraph, last: MemoryParagraph) -> Optional[Block]:
        path_first, path_last = self._path(first), self._path(last)
        parent_first = path_first[-2] if len(path_first) > 1 else None
        parent_last = path_last[-2] if len(path_last) > 1 else None
        if parent_first is parent_last:
            siblings = self._siblings(path_first)
            start, end = _position(siblings, first), _position(siblings, last)
            return Block(tuple(siblings[start:end + 1])) if start <= end else None

        table_depth = None
        for depth, (a, b) in enumerate(zip(path_first, path_last)):
            if a is not b:
                break
            if isinstance(a, MemoryTable):
                table_depth = depth
        if table_depth is None:
            return None
        rows = path_first[table_depth].rows
        start = _position(rows, path_first[table_depth + 1])
        end = _position(rows, path_last[table_depth + 1])
        return Block(tuple(rows[start:end + 1]), rows=True) if start <= end else None

    def clone_nodes(self, nodes: Sequence[MemoryNode], after: MemoryNode) -> List[MemoryNode]:
        siblings = self._siblings(self._path(after))
        copies = [copy.deepcopy(node) for node in nodes]
        index = _position(siblings, after) + 1
        siblings[index:index] = copies
        return copies

    def remove_node(self, node: MemoryNode) -> None:
        siblings = self._siblings(self._path(node))
        del siblings[_position(siblings, node)]

    def node_paragraphs(self, node: MemoryNode) -> List[MemoryParagraph]:
        return list(_walk_paragraphs([node]))

    def is_sole_paragraph(self, paragraph: MemoryParagraph) -> bool:
        path = self._path(paragraph)
        return len(path) > 1 and isinstance(path[-2], MemoryCell) and len(path[-2].blocks) == 1

    def same_node(self, a: Any, b: Any) -> bool:
        return a is b

    def has_objects(self, paragraph: MemoryParagraph) -> bool:
        return any(isinstance(node, MemoryImage) for node in paragraph.nodes)

    def images(self) -> List[MemoryImage]:
        return [node for paragraph in self.paragraphs() for node in paragraph.nodes if isinstance(node, MemoryImage)]

    def save(self, fmt: str) -> bytes:
        if fmt == "json":
            return json.dumps(
                [
                    [
                        {"text": node.text}
                        if isinstance(node, MemoryRun)
                        else {
                            "image": base64.b64encode(node.data).decode("ascii"),
                            "width": node.width,
                            "height": node.height,
                        }
                        for node in paragraph.nodes
                    ]
                    for paragraph in self.paragraphs()
                ]
            ).encode("utf-8")
        if fmt in ("txt", "text", "md"):
            return self.text().encode("utf-8")
        raise ValueError(f"Unsupported output format for plain-text documents: {fmt}")

    def _path(self, target: Any) -> List[Any]:
        """Ancestors of ``target`` from the body down, ending with ``target``."""

        def search(nodes: Sequence[Any], trail: List[Any]) -> Optional[List[Any]]:
            for node in nodes:
                if node is target:
                    return trail + [node]
                found = search(_children(node), trail + [node])
                if found is not None:
                    return found
            return None

        path = search(self._body, [])
        if path is None:
            raise ValueError("Node is not part of this document")
        return path

    def _siblings(self, path: Sequence[Any]) -> List[Any]:
        return _children(path[-2]) if len(path) > 1 else self._body

    def _owner(self, run: MemoryRun) -> MemoryParagraph:
        return next(p for p in self.paragraphs() if any(node is run for node in p.nodes))
