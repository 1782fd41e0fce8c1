"""Persistent vector store for semantic search.

Handles:
- Eager loading of every collection file at startup
- Appending passages and their vectors to named collections
- Whole-file persistence after every mutation
- Exact cosine-similarity search
"""
import asyncio
import time
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import structlog

from docrag.exceptions import ConfigurationError, StorageError
from docrag.rag.chunker import Passage
from docrag.rag.storage import CollectionStorage, validate_collection_name

logger = structlog.get_logger()


@dataclass
class StoredRecord:
    """A passage with its embedding, as persisted in a collection file."""

    id: str
    content: str
    embedding: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredRecord":
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            embedding=[float(x) for x in data["embedding"]],
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class SearchResult:
    """A single retrieved passage."""

    content: str
    score: float
    metadata: Dict[str, Any]


def passage_metadata(passage: Passage) -> Dict[str, Any]:
    """Metadata every stored record carries about its source passage."""
    return {
        "document_id": passage.document_id,
        "chunk_index": passage.chunk_index,
        "total_chunks": passage.total_chunks,
        "page": passage.page_hint,
    }


class _Collection:
    """In-memory records plus a lazily built matrix of unit row vectors."""

    def __init__(self, records: Optional[List[StoredRecord]] = None):
        self.records: List[StoredRecord] = records or []
        self._matrix: Optional[np.ndarray] = None

    @property
    def dimension(self) -> Optional[int]:
        return len(self.records[0].embedding) if self.records else None

    def invalidate(self) -> None:
        self._matrix = None

    def matrix(self) -> np.ndarray:
        if self._matrix is None:
            matrix = np.asarray([r.embedding for r in self.records], dtype=np.float64)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            self._matrix = matrix / norms
        return self._matrix


class JsonVectorStore:
    """Collection-per-file vector store with exact cosine search.

    The in-memory copy is authoritative; each mutation rewrites the affected
    collection file in full. Writers to the same collection are serialized.
    """

    def __init__(self, storage: CollectionStorage):
        """Initialize the vector store.

        Args:
            storage: File storage backing the collections
        """
        self.storage = storage
        self._collections: Dict[str, _Collection] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._initialized = False

        logger.info("vector_store_created", directory=str(storage.directory))

    async def initialize(self) -> None:
        """Load every collection file from disk (idempotent).

        Files that fail to parse are skipped with a warning; their collections
        are treated as missing until corrected or overwritten.
        """
        if self._initialized:
            return

        for name in self.storage.list_names():
            try:
                self._collections[name] = self._load(name)
            except StorageError as e:
                logger.warning(
                    "collection_load_failed",
                    collection=name,
                    error=str(e),
                )
                continue

            logger.debug(
                "collection_loaded",
                collection=name,
                records=len(self._collections[name].records),
            )

        self._initialized = True
        logger.info("vector_store_loaded", collections=len(self._collections))

    def _load(self, name: str) -> _Collection:
        raw_records = self.storage.read(name)
        try:
            records = [StoredRecord.from_dict(item) for item in raw_records]
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(
                f"Malformed record: {e}",
                operation="load",
                collection=name,
            ) from e

        dimensions = {len(r.embedding) for r in records}
        if len(dimensions) > 1:
            raise StorageError(
                f"Mixed embedding dimensions {sorted(dimensions)}",
                operation="load",
                collection=name,
            )
        return _Collection(records)

    async def add_documents(
        self,
        collection: str,
        passages: Sequence[Passage],
        embeddings: Sequence[Sequence[float]],
        metadata: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> None:
        """Append passages and their vectors, then persist the collection.

        Args:
            collection: Target collection (created if absent)
            passages: Passages to store, in order
            embeddings: One vector per passage
            metadata: Optional per-passage metadata, merged over the fields
                derived from each passage

        Raises:
            ConfigurationError: If the collection name is not filesystem-safe,
                or lengths or dimensions do not line up
            StorageError: If the collection file cannot be written; the
                in-memory collection is left unchanged
        """
        validate_collection_name(collection)
        await self.initialize()

        if len(passages) != len(embeddings):
            raise ConfigurationError(
                f"Got {len(passages)} passages but {len(embeddings)} embeddings",
                operation="add_documents",
                collection=collection,
            )
        if metadata is not None and len(metadata) != len(passages):
            raise ConfigurationError(
                f"Got {len(passages)} passages but {len(metadata)} metadata entries",
                operation="add_documents",
                collection=collection,
            )
        if not passages:
            return

        start = time.perf_counter()

        async with self._locks[collection]:
            existing = self._collections.get(collection)
            target = existing or _Collection()

            new_records = []
            for i, (passage, vector) in enumerate(zip(passages, embeddings)):
                new_records.append(
                    StoredRecord(
                        id=passage.id,
                        content=passage.content,
                        embedding=[float(x) for x in vector],
                        metadata={
                            **passage_metadata(passage),
                            **(metadata[i] if metadata is not None else {}),
                        },
                    )
                )

            dimension = target.dimension or len(new_records[0].embedding)
            for record in new_records:
                if len(record.embedding) != dimension:
                    raise ConfigurationError(
                        f"Embedding dimension mismatch: expected {dimension}, "
                        f"got {len(record.embedding)}",
                        operation="add_documents",
                        collection=collection,
                    )

            records = target.records + new_records
            self.storage.write(collection, [r.to_dict() for r in records])

            target.records = records
            target.invalidate()
            self._collections[collection] = target

        logger.info(
            "documents_added",
            collection=collection,
            count=len(new_records),
            total=len(records),
            processing_time_ms=round((time.perf_counter() - start) * 1000),
        )

    async def search(
        self,
        collection: str,
        query_embedding: Sequence[float],
        limit: int = 5,
    ) -> List[SearchResult]:
        """Rank a collection's passages by cosine similarity to a query.

        Args:
            collection: Collection to search
            query_embedding: Query vector
            limit: Maximum number of results

        Returns:
            Results sorted by descending score, ties in insertion order.
            Empty for unknown or empty collections.

        Raises:
            ConfigurationError: If the query dimension does not match the
                collection, typically after switching embedding models
        """
        await self.initialize()

        target = self._collections.get(collection)
        if target is None or not target.records or limit <= 0:
            return []

        start = time.perf_counter()

        query = np.asarray(query_embedding, dtype=np.float64)
        if query.shape != (target.dimension,):
            raise ConfigurationError(
                f"Query dimension mismatch: expected {target.dimension}, got {query.size}",
                operation="search",
                collection=collection,
            )

        norm = np.linalg.norm(query)
        if norm > 0:
            query = query / norm

        scores = target.matrix() @ query
        order = np.argsort(-scores, kind="stable")[:limit]

        results = [
            SearchResult(
                content=target.records[i].content,
                score=float(scores[i]),
                metadata=dict(target.records[i].metadata),
            )
            for i in order
        ]

        logger.info(
            "vector_search_completed",
            collection=collection,
            candidates=len(target.records),
            results_found=len(results),
            processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
        )

        return results

    async def delete_collection(self, name: str) -> None:
        """Remove a collection from memory and disk. Absent is a no-op."""
        validate_collection_name(name)
        await self.initialize()

        async with self._locks[name]:
            existed = self._collections.pop(name, None) is not None
            removed_file = self.storage.delete(name)

        logger.info(
            "collection_deleted",
            collection=name,
            existed=existed or removed_file,
        )

    async def list_collections(self) -> List[str]:
        await self.initialize()
        return sorted(self._collections)

    async def get_collection_stats(self, name: str) -> Optional[Dict[str, Any]]:
        """Return ``{name, count, dimension}`` or None for unknown collections."""
        await self.initialize()

        target = self._collections.get(name)
        if target is None:
            return None

        return {
            "name": name,
            "count": len(target.records),
            "dimension": target.dimension,
        }

    async def get_records(self, name: str) -> List[StoredRecord]:
        """Copy of a collection's records in insertion order."""
        await self.initialize()
        target = self._collections.get(name)
        return list(target.records) if target else []
