"""Error taxonomy for the retrieval pipeline.

Every error carries the operation and identifying key so callers can log it
and turn it into a user-facing message. None of these are process-fatal.
"""
from typing import Any, Dict


class RagError(Exception):
    """Base exception for all docrag errors."""

    code = "RAG_ERROR"
    status_code = 500

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"

    def to_dict(self) -> Dict[str, Any]:
        """Render as an API error payload."""
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.context:
            payload["context"] = {k: str(v) for k, v in self.context.items()}
        return payload


class ConfigurationError(RagError):
    """Invalid sizing, threshold, limit or collection name. Never retried."""

    code = "CONFIGURATION_ERROR"
    status_code = 400


class NotFoundError(RagError):
    """A named resource does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, **context: Any):
        super().__init__(f"{resource} not found", **context)


class EmbeddingError(RagError):
    """Embedding model unavailable or inference failed."""

    code = "EMBEDDING_ERROR"
    status_code = 503


class StorageError(RagError):
    """Collection file unreadable, unwritable or unparsable."""

    code = "STORAGE_ERROR"
    status_code = 500


class ExtractionError(RagError):
    """Document unreadable, corrupt or of an unsupported type."""

    code = "EXTRACTION_ERROR"
    status_code = 422


class NoTextFoundError(ExtractionError):
    """Document was readable but yielded no text.

    Recoverable: ``placeholder_text`` may be indexed in place of the content.
    """

    code = "NO_TEXT_FOUND"

    def __init__(self, message: str, placeholder_text: str, **context: Any):
        super().__init__(message, **context)
        self.placeholder_text = placeholder_text


class RequestError(RagError):
    """Malformed API request: missing file, bad JSON, unsupported path."""

    code = "VALIDATION_ERROR"
    status_code = 400
