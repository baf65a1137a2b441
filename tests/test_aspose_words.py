"""
Tests for the Aspose.Words document graph and the native engine paths.

Tests cover:
- Image insertion into split runs
- Paragraph and table-row repeating sections
- Tags inside inline content controls
- docx rendering, PDF conversion and the HTML round trip

Skipped when aspose-words is not installed.
"""

import pytest

aw = pytest.importorskip("aspose.words")

from docforge_backend.engine.aspose_engine import AsposeEngine, AsposeWordsDocument  # noqa: E402
from docforge_backend.models import RenderOptions  # noqa: E402
from docforge_backend.substitution import render_document  # noqa: E402


def save_docx(document, tmp_path):
    path = tmp_path / "template.docx"
    document.save(str(path))
    return path.read_bytes()


def build_docx(tmp_path, *lines):
    document = aw.Document()
    builder = aw.DocumentBuilder(document)
    for line in lines:
        builder.writeln(line)
    return save_docx(document, tmp_path)


def cell_texts(table):
    return [
        [cell.to_string(aw.SaveFormat.TEXT).strip() for cell in row.as_row().cells]
        for row in table.rows
    ]


@pytest.fixture
def engine(tmp_path):
    return AsposeEngine(tmp_path / "licenses")


class TestImages:
    """Tests for the image phase on real runs."""

    def test_split_tag_becomes_one_sized_image(self, tmp_path, png_data_uri):
        """A tag split over two runs yields exactly one 50x50 shape and no token text."""
        document = aw.Document()
        builder = aw.DocumentBuilder(document)
        builder.write("Logo: {{lo")
        builder.font.bold = True
        builder.write("go}} end")
        graph = AsposeWordsDocument.load(save_docx(document, tmp_path), "docx")

        render_document(graph, {"logo": f"{png_data_uri}|width=50"})

        shapes = graph.shapes()
        assert len(shapes) == 1
        assert (shapes[0].width, shapes[0].height) == (50, 50)
        text = graph.text()
        assert "__IMG_" not in text
        assert "{{" not in text
        assert text.startswith("Logo: ")
        assert text.rstrip().endswith("end")


class TestRepeatingSections:
    """Tests for foreach blocks over the Words node tree."""

    def test_paragraph_block(self, tmp_path):
        data = build_docx(tmp_path, "Items:", "<<foreach [i in items]>>", "- <<[i]>>", "<</foreach>>", "Done")
        graph = AsposeWordsDocument.load(data, "docx")

        render_document(graph, {"items": ["a", "b"]})

        lines = [line for line in graph.text().splitlines() if line.strip()]
        assert lines == ["Items:", "- a", "- b", "Done"]

    def test_block_across_cells_repeats_rows(self, tmp_path):
        """A section opening in one cell and closing in the next repeats the row."""
        document = aw.Document()
        builder = aw.DocumentBuilder(document)
        builder.start_table()
        builder.insert_cell()
        builder.write("Name")
        builder.insert_cell()
        builder.write("Qty")
        builder.end_row()
        builder.insert_cell()
        builder.write("<<foreach [i in items]>><<[i.n]>>")
        builder.insert_cell()
        builder.write("<<[i.q]>><</foreach>>")
        builder.end_row()
        builder.end_table()
        graph = AsposeWordsDocument.load(save_docx(document, tmp_path), "docx")

        render_document(graph, {"items": [{"n": "a", "q": 1}, {"n": "b", "q": 2}]})

        table = graph.document.get_child(aw.NodeType.TABLE, 0, True).as_table()
        assert cell_texts(table) == [["Name", "Qty"], ["a", "1"], ["b", "2"]]

    def test_empty_list_removes_rows(self, tmp_path):
        document = aw.Document()
        builder = aw.DocumentBuilder(document)
        builder.start_table()
        builder.insert_cell()
        builder.write("Name")
        builder.end_row()
        builder.insert_cell()
        builder.write("<<foreach [i in items]>><<[i]>>")
        builder.insert_cell()
        builder.write("<</foreach>>")
        builder.end_row()
        builder.end_table()
        graph = AsposeWordsDocument.load(save_docx(document, tmp_path), "docx")

        render_document(graph, {"items": []})

        table = graph.document.get_child(aw.NodeType.TABLE, 0, True).as_table()
        assert table.rows.count == 1


class TestInlineContainers:
    """Tests for runs nested below a paragraph."""

    def test_tag_inside_content_control(self, tmp_path):
        document = aw.Document()
        paragraph = document.first_section.body.first_paragraph
        paragraph.append_child(aw.Run(document, "Dear "))
        sdt = aw.markup.StructuredDocumentTag(document, aw.markup.SdtType.PLAIN_TEXT, aw.markup.MarkupLevel.INLINE)
        sdt.remove_all_children()
        sdt.append_child(aw.Run(document, "<<[name]>>"))
        paragraph.append_child(sdt)
        graph = AsposeWordsDocument.load(save_docx(document, tmp_path), "docx")

        render_document(graph, {"name": "Ada"})

        assert graph.text().strip() == "Dear Ada"


class TestNativeEngine:
    """Tests for AsposeEngine on word-processing input."""

    def test_render_docx_template(self, engine, tmp_path):
        template = build_docx(tmp_path, "Dear <<[name]>>,", "{{ missing }}")

        rendered = engine.render_template(
            template, {"name": "Ada"}, RenderOptions(source_format="docx", output_format="docx")
        )

        text = AsposeWordsDocument.load(rendered, "docx").text()
        assert "Dear Ada," in text
        assert "missing" not in text

    def test_convert_docx_to_pdf(self, engine, tmp_path):
        pdf = engine.convert_to_pdf(build_docx(tmp_path, "Hello"), "docx")
        assert pdf.startswith(b"%PDF")

    def test_html_round_trip(self, engine, tmp_path):
        html = engine.convert_to_html(build_docx(tmp_path, "Hello <<[name]>>"), "docx")
        assert "<html" in html.lower()
        assert "Hello" in html

        rebuilt = engine.convert_from_html(html.replace("Hello", "Welcome"), "docx")

        assert "Welcome <<[name]>>" in AsposeWordsDocument.load(rebuilt, "docx").text()
