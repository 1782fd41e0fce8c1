"""Request and response models for the HTTP API.

Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_COLLECTION = "default"


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class QueryRequest(ApiModel):
    """Body of ``POST /api/query``."""
    question: str = Field(..., min_length=1, max_length=10000)
    collection: str = DEFAULT_COLLECTION
    limit: Optional[int] = Field(None, ge=1, le=100)
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0)


class UploadPathRequest(ApiModel):
    """Body of ``POST /api/upload``: a server-side file or directory."""
    file_path: str = Field(..., min_length=1)
    collection: str = DEFAULT_COLLECTION
    metadata: Optional[Dict[str, Any]] = None


class CreateCollectionRequest(ApiModel):
    name: str = Field(..., min_length=1)


class IndexResponse(ApiModel):
    document_id: str
    chunks_count: int
    processing_time_ms: int
    collection: str
    file_name: str


class FileOutcome(ApiModel):
    file: str
    document_id: Optional[str] = None
    chunks_count: int = 0
    processing_time_ms: int = 0
    error: Optional[str] = None


class BatchIndexResponse(ApiModel):
    message: str
    collection: str
    total_chunks: int
    total_processing_time_ms: int
    results: List[FileOutcome]


class Source(ApiModel):
    content: str
    score: float
    metadata: Dict[str, Any]


class QueryResponse(ApiModel):
    answer: str
    sources: List[Source]
    processing_time_ms: int


class CollectionList(ApiModel):
    collections: List[str]


class CollectionInfoResponse(ApiModel):
    name: str
    document_count: int
    chunk_count: int
    dimension: Optional[int] = None
    last_modified: Optional[datetime] = None


class CollectionCreated(ApiModel):
    name: str
    exists: bool
    message: str


class CollectionDeleted(ApiModel):
    name: str
    message: str
