"""Unit tests for the content loader registry and the built-in loaders."""

from __future__ import annotations

import io
import json

import pytest
from docx import Document as DocxDocument

from docrag.core.errors import ContentExtractionError, UnsupportedFormat
from docrag.services.content_loader import (
    ContentLoaderRegistry,
    decode_text,
    default_loader_registry,
    guess_mime_type,
)


@pytest.fixture
def registry() -> ContentLoaderRegistry:
    return default_loader_registry()


class TestRegistry:
    def test_supported_extensions(self, registry: ContentLoaderRegistry) -> None:
        assert {"pdf", "docx", "txt", "md", "csv", "json"} <= set(registry.supported_extensions())

    def test_lookup_is_case_insensitive(self, registry: ContentLoaderRegistry) -> None:
        assert registry.supports("TXT")
        assert registry.supports(".md")

    def test_unknown_extension_raises_unsupported(self, registry: ContentLoaderRegistry) -> None:
        with pytest.raises(UnsupportedFormat):
            registry.load("xyz", b"data")

    def test_missing_extension_raises_unsupported(self, registry: ContentLoaderRegistry) -> None:
        with pytest.raises(UnsupportedFormat, match="no extension"):
            registry.load("", b"data")

    def test_new_format_is_a_registration(self) -> None:
        registry = ContentLoaderRegistry()
        registry.register(["log"], lambda content: [])
        assert registry.supports("log")
        assert registry.load("log", b"x") == []


class TestLoaders:
    def test_text(self, registry: ContentLoaderRegistry) -> None:
        segments = registry.load("txt", "héllo wörld".encode("utf-8"))
        assert [s.page_content for s in segments] == ["héllo wörld"]

    def test_empty_text_has_no_segments(self, registry: ContentLoaderRegistry) -> None:
        assert registry.load("txt", b"") == []

    def test_csv_one_segment_per_row(self, registry: ContentLoaderRegistry) -> None:
        content = b"name,city\nAda,London\nGrace,Arlington\n"
        segments = registry.load("csv", content)

        assert len(segments) == 2
        assert segments[0].page_content == "name: Ada\ncity: London"
        assert segments[1].metadata == {"row": 1}

    def test_json_array_one_segment_per_item(self, registry: ContentLoaderRegistry) -> None:
        content = json.dumps(["first", {"title": "second"}]).encode()
        segments = registry.load("json", content)

        assert segments[0].page_content == "first"
        assert json.loads(segments[1].page_content) == {"title": "second"}
        assert segments[1].metadata == {"item": 1}

    def test_json_object_is_one_segment(self, registry: ContentLoaderRegistry) -> None:
        segments = registry.load("json", b'{"a": 1}')
        assert len(segments) == 1

    def test_docx(self, registry: ContentLoaderRegistry) -> None:
        doc = DocxDocument()
        doc.add_paragraph("First paragraph")
        doc.add_paragraph("Second paragraph")
        buffer = io.BytesIO()
        doc.save(buffer)

        segments = registry.load("docx", buffer.getvalue())

        assert "First paragraph\nSecond paragraph" in segments[0].page_content

    def test_invalid_json_is_extraction_error(self, registry: ContentLoaderRegistry) -> None:
        with pytest.raises(ContentExtractionError):
            registry.load("json", b"{not json")

    def test_invalid_pdf_is_extraction_error(self, registry: ContentLoaderRegistry) -> None:
        with pytest.raises(ContentExtractionError):
            registry.load("pdf", b"this is not a pdf")


class TestHelpers:
    def test_decode_text_falls_back_to_latin1(self) -> None:
        assert decode_text(b"caf\xe9") == "café"

    def test_decode_text_strips_bom(self) -> None:
        assert decode_text("\ufeffhello".encode("utf-8")) == "hello"

    @pytest.mark.parametrize(
        ("extension", "mime_type"),
        [
            ("pdf", "application/pdf"),
            ("md", "text/markdown"),
            ("CSV", "text/csv"),
            ("docx", "application/vnd.openxmlformats-officedocument.wordprocessingml.document"),
            ("nope-ext", "application/octet-stream"),
        ],
    )
    def test_guess_mime_type(self, extension: str, mime_type: str) -> None:
        assert guess_mime_type(extension) == mime_type
