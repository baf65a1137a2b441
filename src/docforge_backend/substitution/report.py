"""
Structured resolution: the report pass over bracketed tags.

The data object is the root scope. ``<<[path]>>`` fields resolve against the
innermost scope first; ``<<foreach [item in path]>> ... <</foreach>>`` repeats
its body once per list element with ``item`` bound in a child scope. A block
may sit inside one paragraph (its text is expanded in place), span several
paragraphs of one story or cell (the nodes between them are cloned per
element), or open and close in different cells of a table, in which case the
rows it covers are cloned. Blocks nest.

Missing members collapse to an empty string. With ``keep_unresolved`` the
field tag is left as written instead, which is what interactive preview wants.
Structural problems raise ``RenderError``; the caller discards the document.
"""

from __future__ import annotations

import re
from collections import ChainMap
from collections.abc import Mapping
from typing import Any, List, Optional, Sequence, Tuple

from ..engine.graph import Block, DocumentGraph, Remove, Replace, Skip, replace_pattern
from ..exceptions import RenderError
from .tags import BRACKET_TAG, FOREACH_TAG, _is_list, format_value, resolve_path


def build_report(graph: DocumentGraph, data: Mapping, keep_unresolved: bool = False) -> None:
    """Resolve every remaining bracketed tag and repeating section in ``graph``."""
    _Resolver(graph, keep_unresolved).resolve(graph.paragraphs(), ChainMap({}, dict(data)))


class _Resolver:
    def __init__(self, graph: DocumentGraph, keep_unresolved: bool):
        self.graph = graph
        self.keep_unresolved = keep_unresolved

    def resolve(self, paragraphs: Sequence[Any], scope: ChainMap) -> None:
        paragraphs = list(paragraphs)
        i = 0
        while i < len(paragraphs):
            paragraph = paragraphs[i]
            opening = _unclosed_opening(self.graph.paragraph_text(paragraph))
            if opening is None:
                self._resolve_paragraph(paragraph, scope)
                i += 1
                continue

            j, closing = self._find_block_end(paragraphs, i, opening)
            head, tail = paragraphs[i], paragraphs[j]
            block = self.graph.block(head, tail)
            if block is None:
                raise RenderError(
                    f"Repeating section {opening.group(0)} must close in the same cell or story, or in a later row of the same table"
                )

            if block.rows:
                trailing = self._expand_rows(block, head, tail, opening, closing, scope)
                for row in block.nodes:
                    self.graph.remove_node(row)
                # Skip the cell paragraphs of the removed rows that follow the tail.
                i = j + trailing + 1
                continue

            self._expand_block(block, opening, closing, scope)
            # Inner nodes now live only in the clones.
            for inner in block.nodes[1:-1]:
                self.graph.remove_node(inner)
            self.graph.splice(head, opening.start(), len(self.graph.paragraph_text(head)))
            self.graph.splice(tail, 0, closing.end())

            if self.graph.is_blank(head):
                self.graph.remove_paragraph(head)
            else:
                self._resolve_paragraph(head, scope)

            if self.graph.is_blank(tail):
                self.graph.remove_paragraph(tail)
                i = j + 1
            else:
                # The tail may open another block; look at it again.
                i = j

    def _find_block_end(self, paragraphs: Sequence[Any], start: int, opening: re.Match) -> Tuple[int, re.Match]:
        text = self.graph.paragraph_text(paragraphs[start])
        depth = 0
        for match in FOREACH_TAG.finditer(text, opening.start()):
            depth += -1 if match.group("close") else 1

        for j in range(start + 1, len(paragraphs)):
            for match in FOREACH_TAG.finditer(self.graph.paragraph_text(paragraphs[j])):
                depth += -1 if match.group("close") else 1
                if depth == 0:
                    return j, match
        raise RenderError(f"Unclosed repeating section: {opening.group(0)}")

    def _expand_block(self, block: Block, opening: re.Match, closing: re.Match, scope: ChainMap) -> None:
        """Repeat the sibling nodes from the head to the tail paragraph after the head."""
        variable = opening.group("var")
        anchor = block.nodes[0]
        # Clone every element before trimming; trimming removes the anchors.
        expansions = []
        for item in _iterable(opening, scope):
            copies = self.graph.clone_nodes(block.nodes, after=anchor)
            anchor = copies[-1]
            expansions.append((item, self.graph.block_paragraphs(copies)))

        for item, clones in expansions:
            first, last = clones[0], clones[-1]
            self.graph.splice(last, closing.start(), len(self.graph.paragraph_text(last)))
            self.graph.splice(first, 0, opening.end())
            for edge in (first, last):
                if self.graph.is_blank(edge):
                    self.graph.remove_paragraph(edge)
                    clones = [clone for clone in clones if clone is not edge]

            self.resolve(clones, scope.new_child({variable: item}))

    def _expand_rows(
        self,
        block: Block,
        head: Any,
        tail: Any,
        opening: re.Match,
        closing: re.Match,
        scope: ChainMap,
    ) -> int:
        """
        Repeat whole table rows once per element, after the original rows.

        Returns:
            Number of paragraphs of the original rows that follow ``tail``
        """
        originals = self.graph.block_paragraphs(block.nodes)
        first_index = _index_of(self.graph, originals, head)
        last_index = _index_of(self.graph, originals, tail)

        variable = opening.group("var")
        anchor = block.nodes[-1]
        expansions = []
        for item in _iterable(opening, scope):
            copies = self.graph.clone_nodes(block.nodes, after=anchor)
            anchor = copies[-1]
            expansions.append((item, self.graph.block_paragraphs(copies)))

        for item, clones in expansions:
            # Only the tags go; every cell keeps its paragraph.
            self.graph.splice(clones[last_index], closing.start(), closing.end())
            self.graph.splice(clones[first_index], opening.start(), opening.end())
            self.resolve(clones, scope.new_child({variable: item}))

        return len(originals) - last_index - 1

    def _resolve_paragraph(self, paragraph: Any, scope: ChainMap) -> None:
        text = self.graph.paragraph_text(paragraph)
        if FOREACH_TAG.search(text):
            self.graph.set_paragraph_text(paragraph, self._render_text(text, scope))
            if self.graph.is_blank(paragraph):
                self.graph.remove_paragraph(paragraph)
            return
        replace_pattern(self.graph, BRACKET_TAG, lambda match: self._field(match, scope), [paragraph])

    def _field(self, match: re.Match, scope: ChainMap):
        found, value = resolve_path(scope, match.group(1))
        if found:
            return Replace(format_value(value))
        return Skip() if self.keep_unresolved else Remove()

    def _render_text(self, text: str, scope: ChainMap) -> str:
        """Expand inline repeating sections and fields within a single string."""
        out: List[str] = []
        pos = 0
        while True:
            opening = FOREACH_TAG.search(text, pos)
            if opening is None:
                out.append(self._render_fields(text[pos:], scope))
                return "".join(out)
            if opening.group("close"):
                raise RenderError("Closing repeating-section tag without an opening tag")

            out.append(self._render_fields(text[pos:opening.start()], scope))
            closing = _matching_close(text, opening)
            body = text[opening.end():closing.start()]
            for item in _iterable(opening, scope):
                out.append(self._render_text(body, scope.new_child({opening.group("var"): item})))
            pos = closing.end()

    def _render_fields(self, text: str, scope: ChainMap) -> str:
        def substitute(match: re.Match) -> str:
            action = self._field(match, scope)
            if isinstance(action, Replace):
                return action.text
            return match.group(0) if isinstance(action, Skip) else ""

        return BRACKET_TAG.sub(substitute, text)


def _unclosed_opening(text: str) -> Optional[re.Match]:
    """Outermost opening tag whose closing tag is not in ``text``."""
    stack: List[re.Match] = []
    for match in FOREACH_TAG.finditer(text):
        if match.group("close"):
            if not stack:
                raise RenderError("Closing repeating-section tag without an opening tag")
            stack.pop()
        else:
            stack.append(match)
    return stack[0] if stack else None


def _matching_close(text: str, opening: re.Match) -> re.Match:
    depth = 0
    for match in FOREACH_TAG.finditer(text, opening.start()):
        depth += -1 if match.group("close") else 1
        if depth == 0:
            return match
    raise RenderError(f"Unclosed repeating section: {opening.group(0)}")


def _iterable(opening: re.Match, scope: ChainMap) -> Sequence[Any]:
    path = opening.group("path")
    found, value = resolve_path(scope, path)
    if not found or value is None:
        return []
    if not _is_list(value):
        raise RenderError(f"Repeating section over {path!r} expects a list, got {type(value).__name__}")
    return value


def _index_of(graph: DocumentGraph, paragraphs: Sequence[Any], target: Any) -> int:
    for index, paragraph in enumerate(paragraphs):
        if graph.same_node(paragraph, target):
            return index
    raise RenderError("Repeating-section tag is outside the table rows it spans")
