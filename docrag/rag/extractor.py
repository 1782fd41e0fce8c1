"""Text extraction for PDF, plain text and markdown documents.

Handles:
- File validation (type, size, PDF magic bytes)
- YAML frontmatter parsing for markdown
- PDF page text and info-dict metadata via PyMuPDF
"""
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import fitz  # PyMuPDF
import structlog
import yaml

from docrag.exceptions import ExtractionError, NoTextFoundError

logger = structlog.get_logger()

SUPPORTED_EXTENSIONS = (".pdf", ".txt", ".md")

FRONTMATTER_FIELDS = ("title", "tags", "created", "updated", "author")

PDF_INFO_FIELDS = {
    "title": "title",
    "author": "author",
    "subject": "subject",
    "creator": "creator",
    "producer": "producer",
    "creationDate": "creation_date",
    "modDate": "modification_date",
}


@dataclass
class ExtractedDocument:
    """Plain text of a document plus whatever metadata it carried."""

    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    page_count: int = 1


def document_type(path: Path, original_filename: Optional[str] = None) -> str:
    """Lower-case extension without the dot, preferring the original filename."""
    name = original_filename or path.name
    return Path(name).suffix.lower().lstrip(".")


class DocumentExtractor:
    """Extracts plain text from supported document types."""

    # Regex for YAML frontmatter (must be at start of file)
    FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)

    def __init__(self, max_file_size_bytes: int = 50 * 1024 * 1024):
        self.max_file_size_bytes = max_file_size_bytes

    def validate_file(self, file_path: Path, original_filename: Optional[str] = None) -> bool:
        """Check type, existence, size and (for PDFs) magic bytes.

        Args:
            file_path: Path on disk (may be a temp upload name)
            original_filename: Name the user uploaded, used for the type check

        Returns:
            True if the file can be handed to ``extract``
        """
        file_path = Path(file_path)
        doc_type = document_type(file_path, original_filename)

        if f".{doc_type}" not in SUPPORTED_EXTENSIONS:
            logger.debug("file_type_rejected", path=str(file_path), doc_type=doc_type)
            return False

        if not file_path.is_file():
            logger.debug("file_missing", path=str(file_path))
            return False

        size = file_path.stat().st_size
        if size > self.max_file_size_bytes:
            logger.debug(
                "file_too_large",
                path=str(file_path),
                size=size,
                max_size=self.max_file_size_bytes,
            )
            return False

        if doc_type == "pdf" and not self._has_pdf_magic(file_path):
            logger.warning("invalid_pdf_magic_bytes", path=str(file_path))
            return False

        return True

    @staticmethod
    def _has_pdf_magic(file_path: Path) -> bool:
        try:
            with open(file_path, "rb") as f:
                return f.read(4) == b"%PDF"
        except OSError as e:
            logger.warning("pdf_validation_failed", path=str(file_path), error=str(e))
            return False

    def extract(
        self, file_path: Path, original_filename: Optional[str] = None
    ) -> ExtractedDocument:
        """Extract text and metadata from a document.

        Args:
            file_path: Path on disk
            original_filename: Name the user uploaded (decides the type)

        Returns:
            ExtractedDocument

        Raises:
            ExtractionError: If the file is unreadable, corrupt or unsupported
            NoTextFoundError: If the file is readable but has no text
        """
        file_path = Path(file_path)
        doc_type = document_type(file_path, original_filename)
        display_name = original_filename or file_path.name

        if doc_type == "pdf":
            document = self._extract_pdf(file_path, display_name)
        elif doc_type == "md":
            document = self._extract_markdown(file_path, display_name)
        elif doc_type == "txt":
            document = ExtractedDocument(text=self._read_text(file_path, display_name))
        else:
            raise ExtractionError(
                f"Unsupported document type: .{doc_type}",
                operation="extract",
                file=display_name,
            )

        document.metadata = {
            "title": Path(display_name).stem,
            **document.metadata,
            "file_name": display_name,
            "file_size": file_path.stat().st_size,
            "pages": document.page_count,
        }

        if not document.text.strip():
            logger.warning("no_text_extracted", file=display_name, doc_type=doc_type)
            raise NoTextFoundError(
                "No text could be extracted from document",
                placeholder_text=self._placeholder_text(display_name, document.page_count),
                operation="extract",
                file=display_name,
            )

        logger.info(
            "document_extracted",
            file=display_name,
            doc_type=doc_type,
            pages=document.page_count,
            text_length=len(document.text),
        )

        return document

    def _read_text(self, file_path: Path, display_name: str) -> str:
        try:
            return file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("text_read_failed", file=display_name, error=str(e))
            raise ExtractionError(
                f"Failed to read text file: {e}",
                operation="extract",
                file=display_name,
            ) from e

    def _extract_markdown(self, file_path: Path, display_name: str) -> ExtractedDocument:
        content = self._read_text(file_path, display_name)
        frontmatter, body = self._parse_frontmatter(content)

        metadata = {}
        for name in FRONTMATTER_FIELDS:
            if name in frontmatter:
                value = frontmatter[name]
                # Convert date/datetime objects to ISO format strings
                if hasattr(value, "isoformat"):
                    value = value.isoformat()
                metadata[name] = value

        return ExtractedDocument(text=body, metadata=metadata)

    def _parse_frontmatter(self, content: str) -> Tuple[Dict[str, Any], str]:
        """Split YAML frontmatter from markdown content.

        Returns:
            Tuple of (frontmatter_dict, content_without_frontmatter)
        """
        match = self.FRONTMATTER_PATTERN.match(content)
        if not match:
            return {}, content

        yaml_content = match.group(1)
        try:
            frontmatter = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            frontmatter = None

        if not isinstance(frontmatter, dict):
            frontmatter = {}

        return frontmatter, content[match.end() :]

    def _extract_pdf(self, file_path: Path, display_name: str) -> ExtractedDocument:
        try:
            pdf = fitz.open(file_path, filetype="pdf")
        except (RuntimeError, ValueError) as e:
            logger.warning("pdf_open_failed", file=display_name, error=str(e))
            raise ExtractionError(
                "PDF could not be loaded; it may be corrupted, password-protected "
                "or not a valid PDF",
                operation="extract",
                file=display_name,
            ) from e

        with pdf:
            if pdf.needs_pass:
                raise ExtractionError(
                    "PDF is password-protected",
                    operation="extract",
                    file=display_name,
                )

            pages = []
            for page_number, page in enumerate(pdf, start=1):
                try:
                    page_text = page.get_text("text") or ""
                except RuntimeError as e:
                    logger.warning(
                        "pdf_page_extraction_failed",
                        file=display_name,
                        page=page_number,
                        error=str(e),
                    )
                    continue

                page_text = re.sub(r"\s+", " ", page_text).strip()
                if page_text:
                    pages.append(page_text)

                if page_number % 10 == 0:
                    logger.debug(
                        "pdf_pages_processed",
                        file=display_name,
                        processed=page_number,
                        total=pdf.page_count,
                    )

            metadata = {}
            for source_key, target_key in PDF_INFO_FIELDS.items():
                value = (pdf.metadata or {}).get(source_key)
                if value:
                    metadata[target_key] = value

            return ExtractedDocument(
                text="\n\n".join(pages),
                metadata=metadata,
                page_count=pdf.page_count,
            )

    @staticmethod
    def _placeholder_text(display_name: str, page_count: int) -> str:
        return (
            f"The document {display_name} appears to be image-based or empty. "
            f"It has {page_count} page(s) but no extractable text content. "
            "OCR may be needed to index its contents."
        )
