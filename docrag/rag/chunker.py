"""Sentence-aware text chunking with overlap for the RAG pipeline.

Chunk sizes are character-based to avoid tokenizer dependencies. Sentences
are never split, so ``chunk_size`` is a soft target: a single sentence longer
than it becomes a passage of its own.
"""
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import structlog

from docrag.exceptions import ConfigurationError

logger = structlog.get_logger()

# Terminal punctuation followed by whitespace ends a sentence-like unit
SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")

# How far to look for a space when aligning the overlap to a word start
WORD_BOUNDARY_SCAN = 50


@dataclass(frozen=True)
class Passage:
    """A chunk of a source document, the unit of embedding and retrieval."""

    id: str
    content: str
    document_id: str
    chunk_index: int
    total_chunks: int
    page_hint: Optional[int] = None


def validate_chunk_params(chunk_size: int, chunk_overlap: int) -> None:
    """Raise ConfigurationError unless 0 <= overlap < size."""
    if chunk_size <= 0:
        raise ConfigurationError(
            f"Chunk size must be positive, got {chunk_size}",
            operation="chunk",
            key="chunk_size",
        )
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise ConfigurationError(
            f"Overlap ({chunk_overlap}) must be non-negative and less than "
            f"chunk size ({chunk_size})",
            operation="chunk",
            key="chunk_overlap",
        )


def split_into_sentences(text: str) -> List[str]:
    """Split text into stripped sentence-like units, dropping blanks."""
    return [unit.strip() for unit in SENTENCE_BOUNDARY.split(text) if unit.strip()]


def overlap_tail(passage: str, chunk_overlap: int) -> str:
    """Return a suffix of ``passage`` of at most ``chunk_overlap`` characters.

    The suffix is shortened (by up to WORD_BOUNDARY_SCAN characters) so that it
    starts at the beginning of a word rather than mid-word.
    """
    if chunk_overlap <= 0:
        return ""
    if len(passage) <= chunk_overlap:
        return passage

    length = chunk_overlap
    for candidate in range(chunk_overlap, max(chunk_overlap - WORD_BOUNDARY_SCAN, 0), -1):
        if passage[-candidate - 1] == " ":
            length = candidate
            break

    return passage[-length:].lstrip()


def chunk_text(text: str, chunk_size: int, chunk_overlap: int) -> List[str]:
    """Split text into overlapping passages.

    Args:
        text: Text to chunk
        chunk_size: Target passage size in characters
        chunk_overlap: Maximum characters carried from one passage into the next

    Returns:
        List of passage strings, in document order

    Raises:
        ConfigurationError: If the size/overlap combination is invalid
    """
    validate_chunk_params(chunk_size, chunk_overlap)

    passages: List[str] = []
    buffer = ""

    for unit in split_into_sentences(text or ""):
        candidate = f"{buffer} {unit}" if buffer else unit

        if len(candidate) > chunk_size and buffer.strip():
            passage = buffer.strip()
            passages.append(passage)

            # Seed the next buffer with the tail of what we just emitted
            seed = overlap_tail(passage, chunk_overlap)
            candidate = f"{seed} {unit}" if seed else unit

        buffer = candidate

    if buffer.strip():
        passages.append(buffer.strip())

    return passages


class TextChunker:
    """Chunker bound to a configured size and overlap."""

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters
            chunk_overlap: Overlap between chunks in characters

        Raises:
            ConfigurationError: If overlap is not smaller than chunk size
        """
        validate_chunk_params(chunk_size, chunk_overlap)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

        logger.info(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def chunk_text(
        self,
        text: str,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> List[str]:
        """Split text into overlapping passages, optionally overriding sizes."""
        size = self.chunk_size if chunk_size is None else chunk_size
        overlap = self.chunk_overlap if chunk_overlap is None else chunk_overlap

        passages = chunk_text(text, size, overlap)

        if passages:
            logger.debug(
                "text_chunked",
                text_length=len(text),
                chunk_count=len(passages),
                avg_chunk_size=sum(len(p) for p in passages) // len(passages),
            )

        return passages

    def build_passages(
        self,
        document_id: str,
        texts: Sequence[str],
        page_count: Optional[int] = None,
    ) -> List[Passage]:
        """Wrap chunk strings as Passage records.

        Page hints are estimated by spreading passages evenly across
        ``page_count`` pages; without a page count no hint is set.
        """
        total = len(texts)
        passages = []

        for index, content in enumerate(texts):
            page_hint = None
            if page_count:
                page_hint = min(index * page_count // total, page_count - 1) + 1

            passages.append(
                Passage(
                    id=f"{document_id}_chunk_{index}",
                    content=content,
                    document_id=document_id,
                    chunk_index=index,
                    total_chunks=total,
                    page_hint=page_hint,
                )
            )

        return passages

    def get_chunk_stats(self, passages: Sequence[str]) -> Dict[str, int]:
        """Get statistics about a set of passages.

        Args:
            passages: Passage strings

        Returns:
            Dictionary with chunk statistics
        """
        if not passages:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        sizes = [len(p) for p in passages]

        return {
            "chunk_count": len(passages),
            "total_chars": sum(sizes),
            "avg_chunk_size": sum(sizes) // len(passages),
            "min_chunk_size": min(sizes),
            "max_chunk_size": max(sizes),
            "overlap": self.chunk_overlap,
        }
