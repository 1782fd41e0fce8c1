"""RAG service orchestrating ingestion and retrieval.

Ingestion: extract -> chunk -> embed -> store, plus an archival copy of the
source file. Query: embed -> search -> threshold filter -> answer text.
"""
import copy
import shutil
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog

from docrag.config import Settings
from docrag.exceptions import (
    ConfigurationError,
    ExtractionError,
    NoTextFoundError,
    RagError,
    RequestError,
    StorageError,
)
from docrag.llm_client import OllamaClient
from docrag.rag.cache import EmbeddingCache, SearchResultCache
from docrag.rag.chunker import TextChunker
from docrag.rag.embeddings import EmbeddingGenerator
from docrag.rag.extractor import SUPPORTED_EXTENSIONS, DocumentExtractor, document_type
from docrag.rag.storage import CollectionStorage, validate_collection_name
from docrag.rag.store import JsonVectorStore, SearchResult

logger = structlog.get_logger()

NO_RESULTS_ANSWER = "No relevant content found in the documents."
ANSWER_SEPARATOR = "\n\n---\n\n"

ProgressCallback = Callable[[int, int, Path], None]


@dataclass
class IndexResult:
    document_id: str
    chunks_count: int
    processing_time_ms: int


@dataclass
class FileIndexOutcome:
    """Per-file result of a multi-file ingestion."""

    file: str
    document_id: Optional[str] = None
    chunks_count: int = 0
    processing_time_ms: int = 0
    error: Optional[str] = None


@dataclass
class BatchIndexResult:
    collection: str
    total_chunks: int
    total_processing_time_ms: int
    results: List[FileIndexOutcome] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.error is None)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if r.error is not None)


@dataclass
class QueryResult:
    answer: str
    sources: List[SearchResult]
    processing_time_ms: int


@dataclass
class CollectionInfo:
    name: str
    document_count: int
    chunk_count: int
    dimension: Optional[int]
    last_modified: Optional[datetime]


def format_answer(results: List[SearchResult]) -> str:
    """Concatenate matched passages with their source labels."""
    if not results:
        return NO_RESULTS_ANSWER

    blocks = []
    for result in results:
        source = result.metadata.get("source", "unknown")
        page = result.metadata.get("page") or 1
        blocks.append(f"[{source}, Page {page}]\n{result.content}")

    return ANSWER_SEPARATOR.join(blocks)


class RAGService:
    """Entry point for indexing documents and answering questions."""

    def __init__(
        self,
        settings: Settings,
        embedder: Optional[EmbeddingGenerator] = None,
        vector_store: Optional[JsonVectorStore] = None,
        extractor: Optional[DocumentExtractor] = None,
        chunker: Optional[TextChunker] = None,
        search_cache: Optional[SearchResultCache] = None,
    ):
        """Wire the pipeline components.

        Any component not supplied is built from ``settings``.
        """
        self.settings = settings

        self.embedding_cache: Optional[EmbeddingCache] = None
        if embedder is None:
            self.embedding_cache = EmbeddingCache(
                ttl=settings.cache_ttl,
                max_entries=settings.cache_max_entries,
            )
            embedder = EmbeddingGenerator(
                client=OllamaClient(
                    base_url=settings.ollama_base_url,
                    timeout=settings.embedding_timeout,
                ),
                model=settings.embedding_model,
                cache=self.embedding_cache,
                batch_size=settings.embedding_batch_size,
            )
        else:
            self.embedding_cache = embedder.cache

        self.embedder = embedder
        self.vector_store = vector_store or JsonVectorStore(
            CollectionStorage(settings.vector_db_dir)
        )
        self.extractor = extractor or DocumentExtractor(settings.max_file_size_bytes)
        self.chunker = chunker or TextChunker(settings.chunk_size, settings.chunk_overlap)
        self.search_cache = search_cache or SearchResultCache(ttl=settings.search_cache_ttl)

        self._initialized = False

    async def initialize(self) -> None:
        """Create directories, load collections and warm up the model."""
        if self._initialized:
            return

        start = time.perf_counter()
        logger.info("initializing_rag_service")

        self.settings.ensure_directories()
        await self.vector_store.initialize()
        await self.embedder.initialize()

        self._initialized = True
        logger.info(
            "rag_service_initialized",
            init_time_ms=round((time.perf_counter() - start) * 1000),
        )

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def index_document(
        self,
        file_path: Path,
        collection: str,
        metadata: Optional[Dict[str, Any]] = None,
        original_filename: Optional[str] = None,
    ) -> IndexResult:
        """Index a single PDF, TXT or MD file into a collection.

        Args:
            file_path: Path of the file to index
            collection: Target collection name
            metadata: Extra metadata attached to every passage
            original_filename: Name to report when ``file_path`` is a temp file

        Returns:
            IndexResult with document id, chunk count and timing

        Raises:
            ConfigurationError: If the collection name is invalid or the
                embedding dimension differs from the collection's
            ExtractionError: If the file is invalid or unreadable
            EmbeddingError: If embedding fails
            StorageError: If the file cannot be archived or the collection
                cannot be persisted; nothing is stored in either case
        """
        validate_collection_name(collection)
        await self._ensure_initialized()

        start = time.perf_counter()
        file_path = Path(file_path)
        document_id = str(uuid.uuid4())
        display_name = original_filename or file_path.name
        doc_type = document_type(file_path, original_filename)

        logger.info(
            "indexing_document",
            file=display_name,
            collection=collection,
            document_id=document_id,
        )

        if not self.extractor.validate_file(file_path, original_filename):
            raise ExtractionError(
                "Invalid document file: must be an existing .pdf, .txt or .md file "
                f"no larger than {self.settings.max_file_size_mb} MB",
                operation="index_document",
                file=display_name,
            )

        try:
            document = self.extractor.extract(file_path, original_filename)
            text, doc_metadata, page_count = document.text, document.metadata, document.page_count
        except NoTextFoundError as e:
            # Index the placeholder so the document still shows up in its collection
            logger.warning("indexing_placeholder_text", file=display_name, reason=e.message)
            text = e.placeholder_text
            doc_metadata = {"file_name": display_name, "title": Path(display_name).stem}
            page_count = 1

        texts = self.chunker.chunk_text(text)
        passages = self.chunker.build_passages(
            document_id, texts, page_count=page_count if doc_type == "pdf" else None
        )

        passage_metadata = [
            {
                "source": display_name,
                "document_type": doc_type,
                **(metadata or {}),
                **doc_metadata,
                "page": passage.page_hint or 1,
            }
            for passage in passages
        ]

        embeddings = await self.embedder.embed_many([p.content for p in passages])

        archived = self._archive(file_path, collection, document_id, doc_type, display_name)
        try:
            await self.vector_store.add_documents(
                collection, passages, embeddings, metadata=passage_metadata
            )
        except RagError:
            archived.unlink(missing_ok=True)
            raise
        self.search_cache.clear()

        processing_time_ms = round((time.perf_counter() - start) * 1000)
        logger.info(
            "document_indexed",
            document_id=document_id,
            collection=collection,
            chunks=len(passages),
            processing_time_ms=processing_time_ms,
        )

        return IndexResult(
            document_id=document_id,
            chunks_count=len(passages),
            processing_time_ms=processing_time_ms,
        )

    def _archive(
        self,
        file_path: Path,
        collection: str,
        document_id: str,
        doc_type: str,
        display_name: str,
    ) -> Path:
        destination = self.settings.documents_dir / collection / f"{document_id}.{doc_type}"
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(file_path, destination)
        except OSError as e:
            raise StorageError(
                f"Failed to archive document: {e}",
                operation="archive",
                collection=collection,
                file=display_name,
            ) from e

        logger.debug("document_archived", path=str(destination))
        return destination

    def discover_files(self, path: Path) -> List[Path]:
        """Supported files under ``path`` (itself if it is a file), sorted.

        Raises:
            RequestError: If the path does not exist, is an unsupported
                file, or is a directory without supported files
        """
        path = Path(path)
        if not path.exists():
            raise RequestError(f"Path does not exist: {path}", operation="discover_files")

        if path.is_file():
            if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
                raise RequestError(
                    "Only PDF, TXT and MD files are supported",
                    operation="discover_files",
                    path=str(path),
                )
            return [path]

        files = sorted(
            p for p in path.rglob("*")
            if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS
        )
        if not files:
            raise RequestError(
                f"No PDF/TXT/MD files found in directory: {path}",
                operation="discover_files",
            )

        logger.info("documents_discovered", count=len(files), directory=str(path))
        return files

    async def index_path(
        self,
        path: Path,
        collection: str,
        metadata: Optional[Dict[str, Any]] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> BatchIndexResult:
        """Index a file or every supported file under a directory.

        Per-file failures are recorded in the result and do not stop the batch.
        """
        validate_collection_name(collection)
        files = self.discover_files(path)

        batch = BatchIndexResult(collection=collection, total_chunks=0, total_processing_time_ms=0)

        for idx, file_path in enumerate(files, 1):
            if progress_callback:
                progress_callback(idx, len(files), file_path)

            try:
                result = await self.index_document(file_path, collection, metadata)
            except RagError as e:
                logger.warning("file_indexing_failed", path=str(file_path), error=str(e))
                batch.results.append(FileIndexOutcome(file=file_path.name, error=e.message))
                continue

            batch.results.append(
                FileIndexOutcome(
                    file=file_path.name,
                    document_id=result.document_id,
                    chunks_count=result.chunks_count,
                    processing_time_ms=result.processing_time_ms,
                )
            )
            batch.total_chunks += result.chunks_count
            batch.total_processing_time_ms += result.processing_time_ms

        logger.info(
            "batch_indexed",
            collection=collection,
            files=len(files),
            succeeded=batch.success_count,
            failed=batch.error_count,
        )
        return batch

    async def query(
        self,
        question: str,
        collection: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> QueryResult:
        """Answer a question with the best matching passages of a collection.

        Args:
            question: Natural-language question
            collection: Collection to search
            limit: Maximum passages to return (default from settings)
            threshold: Minimum similarity score in [0, 1] (default from settings)

        Returns:
            QueryResult whose answer is the concatenated passages

        Raises:
            ConfigurationError: On an empty question or invalid limit/threshold
            EmbeddingError: If the question cannot be embedded
        """
        if not question or not question.strip():
            raise ConfigurationError("Question must not be empty", operation="query")

        limit = self.settings.max_results if limit is None else limit
        threshold = self.settings.similarity_threshold if threshold is None else threshold

        if limit <= 0:
            raise ConfigurationError(
                f"Limit must be positive, got {limit}", operation="query", key="limit"
            )
        if not 0.0 <= threshold <= 1.0:
            raise ConfigurationError(
                f"Threshold must be between 0 and 1, got {threshold}",
                operation="query",
                key="threshold",
            )

        await self._ensure_initialized()
        start = time.perf_counter()

        logger.info(
            "processing_query",
            collection=collection,
            question_preview=question[:100],
            limit=limit,
            threshold=threshold,
        )

        cached = self.search_cache.get(collection, question, limit, threshold)
        if cached is not None:
            logger.debug("query_cache_hit", collection=collection)
            return QueryResult(
                answer=cached.answer,
                sources=copy.deepcopy(cached.sources),
                processing_time_ms=round((time.perf_counter() - start) * 1000),
            )

        query_embedding = await self.embedder.embed_one(question)
        results = await self.vector_store.search(collection, query_embedding, limit)
        matched = [r for r in results if r.score >= threshold]

        result = QueryResult(
            answer=format_answer(matched),
            sources=matched,
            processing_time_ms=round((time.perf_counter() - start) * 1000),
        )
        self.search_cache.set(collection, question, limit, threshold, copy.deepcopy(result))

        logger.info(
            "query_processed",
            collection=collection,
            candidates=len(results),
            results_count=len(matched),
            processing_time_ms=result.processing_time_ms,
        )
        return result

    async def list_collections(self) -> List[str]:
        await self._ensure_initialized()
        return await self.vector_store.list_collections()

    async def create_collection(self, name: str) -> Dict[str, Any]:
        """Acknowledge a collection name.

        Collections materialise on first insert; this only validates the name.
        """
        validate_collection_name(name)
        await self._ensure_initialized()
        exists = name in await self.vector_store.list_collections()
        logger.info("collection_create_acknowledged", collection=name, exists=exists)
        return {"name": name, "exists": exists}

    async def get_collection_info(self, name: str) -> Optional[CollectionInfo]:
        """Chunk and archived document counts, or None if unknown."""
        await self._ensure_initialized()

        stats = await self.vector_store.get_collection_stats(name)
        if stats is None:
            return None

        archive_dir = self.settings.documents_dir / name
        document_count = 0
        if archive_dir.is_dir():
            document_count = sum(1 for p in archive_dir.iterdir() if p.is_file())

        return CollectionInfo(
            name=name,
            document_count=document_count,
            chunk_count=stats["count"],
            dimension=stats["dimension"],
            last_modified=self.vector_store.storage.modified_at(name),
        )

    async def delete_collection(self, name: str) -> None:
        """Delete a collection's vectors and archived documents (idempotent)."""
        validate_collection_name(name)
        await self._ensure_initialized()

        await self.vector_store.delete_collection(name)
        self.search_cache.clear()

        archive_dir = self.settings.documents_dir / name
        if archive_dir.exists():
            shutil.rmtree(archive_dir)
            logger.info("collection_documents_deleted", collection=name)

    async def get_status(self) -> Dict[str, Any]:
        collections = await self.vector_store.list_collections() if self._initialized else []
        return {
            "initialized": self._initialized,
            "embedding_model": self.embedder.get_model_info(),
            "collections": collections,
            "cache_stats": {
                "embeddings": self.embedding_cache.stats() if self.embedding_cache else None,
                "search_results": self.search_cache.stats(),
            },
        }

