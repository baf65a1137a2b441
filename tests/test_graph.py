"""
Tests for the document graph and run-aware pattern replacement.
"""

import json
import re

import pytest

from docforge_backend.engine.graph import (
    ImagePayload,
    MemoryCell,
    MemoryDocument,
    MemoryParagraph,
    MemoryRow,
    MemoryRun,
    MemoryTable,
    Remove,
    Replace,
    Skip,
    replace_pattern,
)

TAG = re.compile(r"<<\[(.*?)\]>>")


class TestReplacePattern:
    """Tests for replace_pattern over split runs."""

    def test_replaces_tag_split_across_runs(self):
        """A tag broken over two runs is still matched and replaced."""
        doc = MemoryDocument.from_runs(["Hello <<[na", "me]>>!"])

        count = replace_pattern(doc, TAG, lambda match: Replace("World"))

        assert count == 1
        assert doc.text() == "Hello World!"
        paragraph = doc.paragraphs()[0]
        assert [run.text for run in doc.runs(paragraph)] == ["Hello World", "!"]

    def test_replacement_lands_in_first_run(self):
        """Replacement text keeps the formatting of the run where the match starts."""
        doc = MemoryDocument.from_runs(["<<[", "a", "]>>", " tail"])

        replace_pattern(doc, TAG, lambda match: Replace("value"))

        runs = doc.runs(doc.paragraphs()[0])
        assert [run.text for run in runs] == ["value", "", "", " tail"]

    def test_remove_and_skip(self):
        """Remove deletes the match; Skip leaves it and is not counted."""
        doc = MemoryDocument.from_text("<<[keep]>> and <<[drop]>>")

        count = replace_pattern(
            doc,
            TAG,
            lambda match: Skip() if match.group(1) == "keep" else Remove(),
        )

        assert count == 1
        assert doc.text() == "<<[keep]>> and "

    def test_multiple_matches_in_one_paragraph(self):
        """Later matches are unaffected by earlier replacements of different length."""
        doc = MemoryDocument.from_runs(["<<[a]>>-<<[b", "]>>-<<[c]>>"])

        replace_pattern(doc, TAG, lambda match: Replace(match.group(1).upper() * 3))

        assert doc.text() == "AAA-BBB-CCC"

    def test_restricted_to_given_paragraphs(self):
        """Only the listed paragraphs are touched."""
        doc = MemoryDocument.from_text("<<[a]>>\n<<[a]>>")
        first = doc.paragraphs()[0]

        replace_pattern(doc, TAG, lambda match: Replace("x"), [first])

        assert doc.text() == "x\n<<[a]>>"


class TestSplice:
    """Tests for splice and set_paragraph_text."""

    def test_splice_across_runs(self):
        """A span covering several runs is replaced once."""
        doc = MemoryDocument.from_runs(["abc", "def", "ghi"])
        paragraph = doc.paragraphs()[0]

        doc.splice(paragraph, 2, 7, "-")

        assert doc.paragraph_text(paragraph) == "ab-hi"

    def test_insert_at_end(self):
        """An empty span at the end appends to the last run."""
        doc = MemoryDocument.from_runs(["ab", "cd"])
        paragraph = doc.paragraphs()[0]

        doc.splice(paragraph, 4, 4, "!")

        assert doc.paragraph_text(paragraph) == "abcd!"

    def test_set_paragraph_text(self):
        doc = MemoryDocument.from_runs(["one ", "two"])
        paragraph = doc.paragraphs()[0]

        doc.set_paragraph_text(paragraph, "three")

        assert doc.paragraph_text(paragraph) == "three"


class TestMemoryDocument:
    """Tests for the in-process backend."""

    def test_insert_image_splits_run(self):
        """The image sits between the two halves of the run."""
        doc = MemoryDocument.from_text("before after")
        paragraph = doc.paragraphs()[0]
        run = doc.runs(paragraph)[0]

        doc.insert_image(run, 7, ImagePayload(b"png", 10, 20))

        assert [type(node).__name__ for node in paragraph.nodes] == ["MemoryRun", "MemoryImage", "MemoryRun"]
        assert doc.paragraph_text(paragraph) == "before after"
        assert doc.has_objects(paragraph)
        assert doc.images()[0].width == 10

    def test_clone_and_remove_paragraphs(self):
        doc = MemoryDocument.from_text("a\nb")
        first, second = doc.paragraphs()

        clone = doc.clone_paragraph(first, after=second)
        doc.set_paragraph_text(clone, "c")
        doc.remove_paragraph(first)

        assert doc.text() == "b\nc"

    def test_blank_paragraph_with_image_is_not_blank(self):
        doc = MemoryDocument.from_text("   ")
        paragraph = doc.paragraphs()[0]
        assert doc.is_blank(paragraph)

        doc.insert_image(doc.runs(paragraph)[0], 0, ImagePayload(b"png"))
        assert not doc.is_blank(paragraph)

    def test_load_strips_bom_and_crlf(self):
        doc = MemoryDocument.load("\ufeffone\r\ntwo".encode("utf-8"))
        assert doc.text() == "one\ntwo"

    def test_save_json_includes_images(self):
        doc = MemoryDocument.from_text("x")
        doc.insert_image(doc.runs(doc.paragraphs()[0])[0], 1, ImagePayload(b"\x89PNG", 5, 5))

        saved = json.loads(doc.save("json"))

        assert saved[0][0] == {"text": "x"}
        assert saved[0][1]["width"] == 5

    def test_save_unsupported_format(self):
        with pytest.raises(ValueError):
            MemoryDocument.from_text("x").save("pdf")


def cell(*texts):
    return MemoryCell([MemoryParagraph([MemoryRun(text)]) for text in texts])


class TestTables:
    """Tests for blocks, cloning and removal around table cells."""

    def test_block_of_siblings(self):
        doc = MemoryDocument.from_text("a\nb\nc")
        a, b, c = doc.paragraphs()

        block = doc.block(a, c)

        assert not block.rows
        assert list(block.nodes) == [a, b, c]
        assert doc.block(c, a) is None

    def test_block_of_rows(self):
        """Paragraphs in different cells of one table select the rows between them."""
        grid = MemoryTable([MemoryRow([cell("a"), cell("b")]), MemoryRow([cell("c"), cell("d")])])
        doc = MemoryDocument([grid])
        a, b, c, d = doc.paragraphs()

        assert doc.block(a, b).nodes == (grid.rows[0],)
        block = doc.block(a, d)
        assert block.rows
        assert block.nodes == tuple(grid.rows)

    def test_block_outside_the_table(self):
        doc = MemoryDocument([MemoryTable([MemoryRow([cell("a")])]), MemoryParagraph([MemoryRun("b")])])
        a, b = doc.paragraphs()

        assert doc.block(a, b) is None

    def test_clone_rows(self):
        """Cloned rows are independent copies inserted after the anchor."""
        grid = MemoryTable([MemoryRow([cell("a")]), MemoryRow([cell("z")])])
        doc = MemoryDocument([grid])

        copies = doc.clone_nodes([grid.rows[0]], after=grid.rows[0])
        doc.set_paragraph_text(doc.node_paragraphs(copies[0])[0], "b")

        assert doc.text() == "a\nb\nz"

    def test_sole_cell_paragraph_is_emptied_not_removed(self):
        target = cell("only")
        doc = MemoryDocument([MemoryTable([MemoryRow([target, cell("x", "y")])])])
        only, x, y = doc.paragraphs()

        assert doc.is_sole_paragraph(only)
        assert not doc.is_sole_paragraph(x)

        doc.remove_paragraph(only)
        doc.remove_paragraph(x)

        assert len(target.blocks) == 1
        assert doc.text() == "\ny"
