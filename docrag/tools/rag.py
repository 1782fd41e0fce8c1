"""Agent tools that drive a running docrag server over its HTTP API."""
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import BaseModel, Field

from docrag.exceptions import RagError
from docrag.schemas import DEFAULT_COLLECTION
from docrag.tools.registry import Tool, ToolRegistry

logger = structlog.get_logger()

DEFAULT_API_URL = "http://localhost:3001"


class ApiRequestError(RagError):
    """The docrag server was unreachable or answered with an error."""

    code = "API_ERROR"
    status_code = 502


class RagApiClient:
    """Thin async client for the docrag HTTP API."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Server base URL
            timeout: Request timeout in seconds (indexing can be slow)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Send a request and return the decoded response envelope.

        Raises:
            ApiRequestError: On connection failures, non-JSON bodies or
                error status codes
        """
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, json=payload)
        except httpx.HTTPError as e:
            logger.error("rag_api_unreachable", url=url, error=str(e))
            raise ApiRequestError(
                f"docrag server unreachable at {self.base_url}: {e}",
                operation=f"{method} {path}",
            ) from e

        try:
            body = response.json()
        except ValueError as e:
            raise ApiRequestError(
                f"Invalid response from docrag server (HTTP {response.status_code})",
                operation=f"{method} {path}",
            ) from e

        if response.status_code >= 400:
            message = body.get("error") if isinstance(body, dict) else None
            logger.warning(
                "rag_api_error",
                url=url,
                status_code=response.status_code,
                error=message,
            )
            raise ApiRequestError(
                message or f"HTTP {response.status_code}",
                operation=f"{method} {path}",
                status=response.status_code,
            )

        return body

    async def status(self) -> Dict[str, Any]:
        return (await self._request("GET", "/api/status"))["data"]

    async def upload_path(
        self,
        file_path: str,
        collection: str = DEFAULT_COLLECTION,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Index a file or directory visible to the server.

        Returns the full envelope: ``success`` is False when every file failed.
        """
        payload: Dict[str, Any] = {"filePath": file_path, "collection": collection}
        if metadata:
            payload["metadata"] = metadata
        return await self._request("POST", "/api/upload", payload)

    async def query(
        self,
        question: str,
        collection: str = DEFAULT_COLLECTION,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"question": question, "collection": collection}
        if limit is not None:
            payload["limit"] = limit
        if threshold is not None:
            payload["threshold"] = threshold
        return (await self._request("POST", "/api/query", payload))["data"]

    async def list_collections(self) -> List[str]:
        return (await self._request("GET", "/api/collections"))["data"]["collections"]

    async def create_collection(self, name: str) -> Dict[str, Any]:
        return (await self._request("POST", "/api/collections", {"name": name}))["data"]

    async def delete_collection(self, name: str) -> Dict[str, Any]:
        return (await self._request("DELETE", f"/api/collections/{name}"))["data"]


class StatusInput(BaseModel):
    pass


class StatusOutput(BaseModel):
    initialized: bool
    embedding_model: Optional[str] = None
    collections: List[str]
    cached_embeddings: int = 0
    summary: str


class UploadInput(BaseModel):
    file_path: str = Field(..., description="Path to a PDF/TXT/MD file or a folder containing them")
    collection: str = Field(DEFAULT_COLLECTION, description="Collection to index into")


class UploadOutput(BaseModel):
    collection: str
    files_processed: int
    successful: int
    failed: int
    total_chunks: int
    errors: List[str] = []
    summary: str


class QueryInput(BaseModel):
    question: str = Field(..., min_length=1, description="Question to ask about the documents")
    collection: str = Field(DEFAULT_COLLECTION, description="Collection to search")
    limit: Optional[int] = Field(None, ge=1, description="Maximum number of passages (default 5)")
    threshold: Optional[float] = Field(
        None, ge=0.0, le=1.0, description="Minimum similarity score (default 0.7)"
    )


class QueryOutput(BaseModel):
    answer: str
    sources: List[Dict[str, Any]]
    processing_time_ms: int


class ListCollectionsInput(BaseModel):
    pass


class ListCollectionsOutput(BaseModel):
    collections: List[str]


class CollectionNameInput(BaseModel):
    name: str = Field(..., min_length=1, description="Collection name")


class CollectionActionOutput(BaseModel):
    name: str
    message: str


def register_rag_tools(registry: ToolRegistry, client: RagApiClient) -> None:
    """Register every docrag tool, bound to ``client``."""

    async def status_handler(_: StatusInput) -> StatusOutput:
        data = await client.status()
        model = data.get("embedding_model") or {}
        embedding_stats = (data.get("cache_stats") or {}).get("embeddings") or {}
        collections = data.get("collections") or []
        return StatusOutput(
            initialized=bool(data.get("initialized")),
            embedding_model=model.get("name"),
            collections=collections,
            cached_embeddings=embedding_stats.get("entries", 0),
            summary=(
                f"{'Running' if data.get('initialized') else 'Not initialized'}; "
                f"embeddings: {model.get('name', 'n/a')}; "
                f"{len(collections)} collection(s)"
            ),
        )

    async def upload_handler(args: UploadInput) -> UploadOutput:
        path = Path(args.file_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Path does not exist: {args.file_path}")

        envelope = await client.upload_path(str(path.resolve()), args.collection)
        data = envelope.get("data") or {}
        results = data.get("results") or []
        errors = [f"{r['file']}: {r['error']}" for r in results if r.get("error")]

        return UploadOutput(
            collection=data.get("collection", args.collection),
            files_processed=len(results),
            successful=len(results) - len(errors),
            failed=len(errors),
            total_chunks=data.get("totalChunks", 0),
            errors=errors,
            summary=data.get("message", ""),
        )

    async def query_handler(args: QueryInput) -> QueryOutput:
        data = await client.query(args.question, args.collection, args.limit, args.threshold)
        return QueryOutput(
            answer=data["answer"],
            sources=data.get("sources") or [],
            processing_time_ms=data.get("processingTimeMs", 0),
        )

    async def list_handler(_: ListCollectionsInput) -> ListCollectionsOutput:
        return ListCollectionsOutput(collections=await client.list_collections())

    async def create_handler(args: CollectionNameInput) -> CollectionActionOutput:
        data = await client.create_collection(args.name)
        return CollectionActionOutput(name=data["name"], message=data["message"])

    async def delete_handler(args: CollectionNameInput) -> CollectionActionOutput:
        data = await client.delete_collection(args.name)
        return CollectionActionOutput(name=data["name"], message=data["message"])

    registry.register(Tool(
        name="rag_status",
        description="Check whether the local document RAG server is running and list its collections.",
        input_model=StatusInput,
        output_model=StatusOutput,
        handler=status_handler,
    ))
    registry.register(Tool(
        name="rag_upload",
        description="Index a PDF/TXT/MD file, or every such file in a folder, into a collection.",
        input_model=UploadInput,
        output_model=UploadOutput,
        handler=upload_handler,
    ))
    registry.register(Tool(
        name="rag_query",
        description="Ask a question and get the most relevant passages from indexed documents.",
        input_model=QueryInput,
        output_model=QueryOutput,
        handler=query_handler,
    ))
    registry.register(Tool(
        name="rag_list_collections",
        description="List document collections.",
        input_model=ListCollectionsInput,
        output_model=ListCollectionsOutput,
        handler=list_handler,
    ))
    registry.register(Tool(
        name="rag_create_collection",
        description="Create a document collection (it is stored once documents are uploaded).",
        input_model=CollectionNameInput,
        output_model=CollectionActionOutput,
        handler=create_handler,
    ))
    registry.register(Tool(
        name="rag_delete_collection",
        description="Delete a collection with all its indexed passages and archived documents.",
        input_model=CollectionNameInput,
        output_model=CollectionActionOutput,
        handler=delete_handler,
    ))
