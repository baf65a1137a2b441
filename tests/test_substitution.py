"""
Tests for the four-phase substitution pipeline.

Tests cover:
- Image phase (token indirection, sizing, failures)
- Tag sanitization
- Double-brace normalization
- Placeholder preservation
- Tags split across runs
"""

import pytest

from docforge_backend.engine.graph import MemoryDocument
from docforge_backend.exceptions import RenderError
from docforge_backend.substitution import invalid_tag_text, render_document
from docforge_backend.substitution.images import parse_image_value
from docforge_backend.substitution.tags import format_value, resolve_path


def render(text, data, preserve=False):
    doc = MemoryDocument.from_text(text)
    render_document(doc, data, preserve_placeholders=preserve)
    return doc


class TestImagePhase:
    """Tests for data-URI image substitution."""

    def test_image_inserted_with_size(self, png_data_uri):
        """One sized image replaces the tag and no token survives."""
        doc = render("Logo: <<[img]>> end", {"img": f"{png_data_uri}|width=50|height=50"})

        images = doc.images()
        assert len(images) == 1
        assert (images[0].width, images[0].height) == (50, 50)
        assert images[0].data.startswith(b"\x89PNG")
        assert "__IMG_" not in doc.text()
        assert doc.text() == "Logo:  end"

    def test_brace_syntax_and_repeats(self, png_data_uri):
        """Both tag syntaxes for the key receive the image."""
        doc = render("{{ img }}\n<<[img]>>", {"img": png_data_uri})

        assert len(doc.images()) == 2
        assert "__IMG_" not in doc.text()

    def test_single_dimension_is_square(self, png_data_uri):
        image = parse_image_value(f"{png_data_uri}|width=40")
        assert (image.width, image.height) == (40, 40)

        image = parse_image_value(f"{png_data_uri}|height=12")
        assert (image.width, image.height) == (12, 12)

    def test_no_size_keeps_native_size(self, png_data_uri):
        image = parse_image_value(png_data_uri)
        assert image.width is None and image.height is None

    def test_missing_tag_is_skipped(self, png_data_uri):
        """An image key with no placeholder changes nothing."""
        doc = render("Nothing here", {"img": png_data_uri})
        assert doc.images() == []
        assert doc.text() == "Nothing here"

    def test_bad_image_is_skipped_without_leaking_data(self):
        """A broken data URI is logged and never printed as text."""
        doc = render("A <<[img]>> <<[name]>>", {"img": "data:image/png;base64,@@@", "name": "Ada"})

        assert doc.images() == []
        assert "data:image" not in doc.text()
        assert doc.text() == "A  Ada"

    def test_parse_rejects_non_base64(self):
        with pytest.raises(ValueError):
            parse_image_value("data:image/png,notbase64")


class TestSanitization:
    """Tests for malformed bracketed tags."""

    def test_illegal_character_becomes_diagnostic(self):
        """The original tag is shown escaped and never resolved."""
        doc = render("Total: <<[a$b]>>", {"a$b": "secret"})

        assert doc.text() == "Total: [Invalid tag: &lt;&lt;[a$b]&gt;&gt;]"
        assert "secret" not in doc.text()

    def test_empty_key_is_invalid(self):
        doc = render("x <<[ ]>> y", {})
        assert doc.text() == f"x {invalid_tag_text('<<[ ]>>')} y"

    def test_legal_keys_untouched(self):
        doc = render("<<[customer.first name]>>", {"customer": {"first name": "Ada"}})
        assert doc.text() == "Ada"


class TestNormalization:
    """Tests for double-brace tags."""

    def test_brace_tag_resolves(self):
        assert render("Hi {{name}}!", {"name": "Ada"}).text() == "Hi Ada!"

    def test_dotted_path_and_index(self):
        data = {"customer": {"name": "Ada"}, "lines": [{"sku": "A1"}, {"sku": "B2"}]}
        assert render("{{ customer.name }} {{lines.1.sku}}", data).text() == "Ada B2"

    def test_literal_key_wins_over_path(self):
        data = {"order.id": 7, "order": {"id": 8}}
        assert render("{{order.id}}", data).text() == "7"

    def test_unresolved_brace_tag_removed(self):
        assert render("Hi {{missing}}!", {}).text() == "Hi !"

    def test_unresolved_brace_tag_kept_when_preserving(self):
        assert render("Hi {{missing}}!", {}, preserve=True).text() == "Hi {{missing}}!"

    def test_illegal_brace_key_removed(self):
        assert render("x{{a$b}}y", {"a$b": 1}).text() == "xy"


class TestPreservation:
    """Tests for preview-mode placeholder preservation."""

    def test_missing_key_kept_in_preview(self):
        """With preservation on, the unresolved tag is still in the output."""
        doc = render("Dear <<[K]>>, total <<[total]>>", {"total": 3}, preserve=True)
        assert doc.text() == "Dear <<[K]>>, total 3"

    def test_missing_key_dropped_otherwise(self):
        """With preservation off, no tag for the key remains."""
        doc = render("Dear <<[K]>>, total <<[total]>>", {"total": 3})
        assert "K" not in doc.text()
        assert doc.text() == "Dear , total 3"


class TestCrossRunTags:
    """Tests for tags split by the word processor."""

    def test_both_syntaxes_across_runs(self):
        doc = MemoryDocument.from_runs(["Hello {{na", "me}} from <<[ci", "ty]>>"])

        render_document(doc, {"name": "Ada", "city": "Oslo"})

        assert doc.text() == "Hello Ada from Oslo"


class TestValues:
    """Tests for value formatting and lookup."""

    def test_format_value(self):
        assert format_value(None) == ""
        assert format_value(True) == "true"
        assert format_value(3.5) == "3.5"
        assert format_value({"a": 1}) == '{"a": 1}'

    def test_resolve_path_missing(self):
        assert resolve_path({"a": {"b": 1}}, "a.c") == (False, None)
        assert resolve_path({"a": [1]}, "a.5") == (False, None)

    def test_resolution_errors_are_render_errors(self):
        with pytest.raises(RenderError):
            render("<<foreach [x in items]>><<[x]>>", {"items": [1]})
