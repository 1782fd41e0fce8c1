"""Tests for document text extraction."""
import fitz
import pytest

from docrag.exceptions import ExtractionError, NoTextFoundError
from docrag.rag.extractor import DocumentExtractor, document_type


@pytest.fixture
def extractor():
    return DocumentExtractor(max_file_size_bytes=1024 * 1024)


def write_pdf(path, pages, title=None):
    pdf = fitz.open()
    for text in pages:
        page = pdf.new_page()
        if text:
            page.insert_text((72, 72), text)
    if title:
        pdf.set_metadata({"title": title})
    pdf.save(str(path))
    pdf.close()


def test_document_type_prefers_original_filename(tmp_path):
    assert document_type(tmp_path / "upload-123.tmp", "Report.PDF") == "pdf"
    assert document_type(tmp_path / "notes.md") == "md"


class TestValidateFile:
    def test_accepts_supported_text_file(self, extractor, tmp_path):
        path = tmp_path / "a.txt"
        path.write_text("hello", encoding="utf-8")
        assert extractor.validate_file(path)

    def test_rejects_unsupported_extension(self, extractor, tmp_path):
        path = tmp_path / "a.docx"
        path.write_bytes(b"PK")
        assert not extractor.validate_file(path)

    def test_rejects_missing_file(self, extractor, tmp_path):
        assert not extractor.validate_file(tmp_path / "missing.txt")

    def test_rejects_oversized_file(self, tmp_path):
        path = tmp_path / "big.txt"
        path.write_text("x" * 2048, encoding="utf-8")
        assert not DocumentExtractor(max_file_size_bytes=1024).validate_file(path)

    def test_rejects_pdf_without_magic_bytes(self, extractor, tmp_path):
        path = tmp_path / "fake.pdf"
        path.write_bytes(b"not really a pdf")
        assert not extractor.validate_file(path)

    def test_uses_original_filename_for_temp_uploads(self, extractor, tmp_path):
        path = tmp_path / "upload.tmp"
        path.write_text("hello", encoding="utf-8")
        assert extractor.validate_file(path, original_filename="notes.txt")


class TestExtract:
    def test_plain_text(self, extractor, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("First line.\nSecond line.", encoding="utf-8")

        document = extractor.extract(path)

        assert document.text == "First line.\nSecond line."
        assert document.page_count == 1
        assert document.metadata["title"] == "notes"
        assert document.metadata["file_name"] == "notes.txt"
        assert document.metadata["file_size"] == path.stat().st_size

    def test_markdown_frontmatter(self, extractor, tmp_path):
        path = tmp_path / "guide.md"
        path.write_text(
            "---\ntitle: Field Guide\ntags: [birds, dawn]\ncreated: 2024-05-01\n"
            "unknown: ignored\n---\nRobins sing at dawn.",
            encoding="utf-8",
        )

        document = extractor.extract(path)

        assert document.text == "Robins sing at dawn."
        assert document.metadata["title"] == "Field Guide"
        assert document.metadata["tags"] == ["birds", "dawn"]
        assert document.metadata["created"] == "2024-05-01"
        assert "unknown" not in document.metadata

    def test_markdown_with_invalid_frontmatter_keeps_body(self, extractor, tmp_path):
        path = tmp_path / "bad.md"
        path.write_text("---\ntitle: [unclosed\n---\nBody text.", encoding="utf-8")

        document = extractor.extract(path)

        assert document.text == "Body text."
        assert document.metadata["title"] == "bad"

    def test_pdf_pages_and_metadata(self, extractor, tmp_path):
        path = tmp_path / "report.pdf"
        write_pdf(path, ["Quarterly revenue grew.", "Costs   stayed flat."], title="Q3 Report")

        document = extractor.extract(path)

        assert document.page_count == 2
        assert document.text == "Quarterly revenue grew.\n\nCosts stayed flat."
        assert document.metadata["title"] == "Q3 Report"
        assert document.metadata["pages"] == 2

    def test_pdf_without_text_raises_with_placeholder(self, extractor, tmp_path):
        path = tmp_path / "scan.pdf"
        write_pdf(path, ["", ""])

        with pytest.raises(NoTextFoundError) as exc_info:
            extractor.extract(path)

        assert "scan.pdf" in exc_info.value.placeholder_text
        assert "2 page(s)" in exc_info.value.placeholder_text

    def test_empty_text_file_raises_no_text(self, extractor, tmp_path):
        path = tmp_path / "empty.txt"
        path.write_text("  \n ", encoding="utf-8")

        with pytest.raises(NoTextFoundError):
            extractor.extract(path)

    def test_invalid_utf8_raises(self, extractor, tmp_path):
        path = tmp_path / "binary.txt"
        path.write_bytes(b"\xff\xfe\x00bad")

        with pytest.raises(ExtractionError):
            extractor.extract(path)

    def test_unsupported_type_raises(self, extractor, tmp_path):
        path = tmp_path / "sheet.csv"
        path.write_text("a,b", encoding="utf-8")

        with pytest.raises(ExtractionError, match="Unsupported"):
            extractor.extract(path)
