"""Tests for the RAG service orchestration."""
from pathlib import Path
from unittest.mock import patch

import pytest

from docrag.exceptions import (
    ConfigurationError,
    EmbeddingError,
    ExtractionError,
    RequestError,
    StorageError,
)
from docrag.rag.chunker import Passage
from docrag.rag.service import (
    ANSWER_SEPARATOR,
    NO_RESULTS_ANSWER,
    RAGService,
    format_answer,
)
from docrag.rag.store import SearchResult


async def seed_collection(service: RAGService, name: str, vector):
    """Store one passage with a hand-picked vector, bypassing the embedder."""
    passage = Passage(
        id="seed_chunk_0",
        content="Seeded passage.",
        document_id="seed",
        chunk_index=0,
        total_chunks=1,
        page_hint=1,
    )
    await service.vector_store.add_documents(name, [passage], [vector])


@pytest.fixture
def energy_file(tmp_path: Path, sample_text: str) -> Path:
    path = tmp_path / "energy.txt"
    path.write_text(sample_text, encoding="utf-8")
    return path


class TestFormatAnswer:
    def test_no_results(self):
        assert format_answer([]) == NO_RESULTS_ANSWER

    def test_blocks_are_labelled_and_joined(self):
        results = [
            SearchResult(content="First.", score=0.9, metadata={"source": "a.pdf", "page": 3}),
            SearchResult(content="Second.", score=0.8, metadata={"source": "b.txt"}),
        ]

        answer = format_answer(results)

        assert answer == f"[a.pdf, Page 3]\nFirst.{ANSWER_SEPARATOR}[b.txt, Page 1]\nSecond."


class TestIndexDocument:
    @pytest.mark.asyncio
    async def test_indexes_and_archives(self, service: RAGService, settings, energy_file):
        result = await service.index_document(energy_file, "energy", {"team": "grid"})

        assert result.chunks_count > 1
        assert result.processing_time_ms >= 0

        archived = settings.documents_dir / "energy" / f"{result.document_id}.txt"
        assert archived.read_text(encoding="utf-8") == energy_file.read_text(encoding="utf-8")

        records = await service.vector_store.get_records("energy")
        assert len(records) == result.chunks_count
        metadata = records[0].metadata
        assert metadata["source"] == "energy.txt"
        assert metadata["document_type"] == "txt"
        assert metadata["document_id"] == result.document_id
        assert metadata["chunk_index"] == 0
        assert metadata["total_chunks"] == result.chunks_count
        assert metadata["page"] == 1
        assert metadata["team"] == "grid"
        assert metadata["title"] == "energy"

    @pytest.mark.asyncio
    async def test_original_filename_is_reported(self, service, tmp_path, sample_text):
        upload = tmp_path / "tmp-upload-xyz"
        upload.write_text(sample_text, encoding="utf-8")

        await service.index_document(upload, "uploads", original_filename="renewables.txt")

        records = await service.vector_store.get_records("uploads")
        assert {r.metadata["source"] for r in records} == {"renewables.txt"}

    @pytest.mark.asyncio
    async def test_empty_document_indexes_placeholder(self, service, tmp_path):
        path = tmp_path / "blank.txt"
        path.write_text("   ", encoding="utf-8")

        result = await service.index_document(path, "scans")

        assert result.chunks_count == 1
        records = await service.vector_store.get_records("scans")
        assert "blank.txt" in records[0].content
        assert "no extractable text" in records[0].content

    @pytest.mark.asyncio
    async def test_invalid_file_is_rejected(self, service, tmp_path):
        path = tmp_path / "fake.pdf"
        path.write_bytes(b"nope")

        with pytest.raises(ExtractionError):
            await service.index_document(path, "docs")

        assert await service.list_collections() == []

    @pytest.mark.asyncio
    async def test_invalid_collection_name(self, service, energy_file):
        with pytest.raises(ConfigurationError):
            await service.index_document(energy_file, "../etc")

    @pytest.mark.asyncio
    async def test_embedding_failure_stores_nothing(self, service, fake_client, energy_file):
        await service.initialize()
        fake_client.fail_on = "Batteries"

        with pytest.raises(EmbeddingError):
            await service.index_document(energy_file, "energy")

        assert await service.vector_store.get_records("energy") == []

    @pytest.mark.asyncio
    async def test_archive_failure_stores_nothing(self, service, settings, energy_file):
        await service.initialize()
        # A plain file where the collection's archive directory belongs
        (settings.documents_dir / "energy").write_text("in the way", encoding="utf-8")

        with pytest.raises(StorageError) as exc_info:
            await service.index_document(energy_file, "energy")

        assert exc_info.value.context["operation"] == "archive"
        assert exc_info.value.context["file"] == "energy.txt"
        assert await service.vector_store.get_collection_stats("energy") is None

    @pytest.mark.asyncio
    async def test_store_failure_removes_archived_copy(self, service, settings, energy_file):
        await service.initialize()

        with patch.object(
            service.vector_store.storage,
            "write",
            side_effect=StorageError("disk full", operation="write", collection="energy"),
        ):
            with pytest.raises(StorageError):
                await service.index_document(energy_file, "energy")

        assert list((settings.documents_dir / "energy").iterdir()) == []
        assert await service.vector_store.get_collection_stats("energy") is None

    @pytest.mark.asyncio
    async def test_dimension_mismatch_with_existing_collection(self, service, settings, energy_file):
        await seed_collection(service, "energy", [1.0, 0.0])

        with pytest.raises(ConfigurationError, match="dimension"):
            await service.index_document(energy_file, "energy")

        assert (await service.vector_store.get_collection_stats("energy"))["count"] == 1
        assert list((settings.documents_dir / "energy").iterdir()) == []


class TestIndexPath:
    @pytest.mark.asyncio
    async def test_directory_is_indexed_recursively(self, service, docs_dir):
        progress = []

        batch = await service.index_path(
            docs_dir, "mixed", progress_callback=lambda i, n, p: progress.append((i, n, p.name))
        )

        assert batch.success_count == 2
        assert batch.error_count == 0
        assert sorted(r.file for r in batch.results) == ["energy.txt", "guide.md"]
        assert [(i, n) for i, n, _ in progress] == [(1, 2), (2, 2)]
        assert batch.total_chunks == sum(r.chunks_count for r in batch.results)

        info = await service.get_collection_info("mixed")
        assert info.document_count == 2
        assert info.chunk_count == batch.total_chunks

    @pytest.mark.asyncio
    async def test_per_file_failures_do_not_abort(self, service, docs_dir):
        (docs_dir / "broken.pdf").write_bytes(b"garbage")

        batch = await service.index_path(docs_dir, "mixed")

        assert batch.success_count == 2
        assert batch.error_count == 1
        failed = next(r for r in batch.results if r.error)
        assert failed.file == "broken.pdf"
        assert failed.document_id is None

    @pytest.mark.asyncio
    async def test_archive_failures_are_recorded_per_file(self, service, settings, docs_dir):
        await service.initialize()
        (settings.documents_dir / "kb").write_text("in the way", encoding="utf-8")

        batch = await service.index_path(docs_dir, "kb")

        assert [r.file for r in batch.results] == ["energy.txt", "guide.md"]
        assert batch.error_count == 2
        assert all("archive" in r.error for r in batch.results)
        assert await service.vector_store.get_collection_stats("kb") is None

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_recorded_per_file(self, service, docs_dir):
        await seed_collection(service, "kb", [1.0, 0.0])

        batch = await service.index_path(docs_dir, "kb")

        assert batch.error_count == 2
        assert all("dimension" in r.error for r in batch.results)
        assert (await service.vector_store.get_collection_stats("kb"))["count"] == 1

    @pytest.mark.asyncio
    async def test_missing_path(self, service, tmp_path):
        with pytest.raises(RequestError, match="does not exist"):
            await service.index_path(tmp_path / "nowhere", "docs")

    @pytest.mark.asyncio
    async def test_directory_without_documents(self, service, tmp_path):
        (tmp_path / "empty").mkdir()
        with pytest.raises(RequestError, match="No PDF/TXT/MD files"):
            await service.index_path(tmp_path / "empty", "docs")

    @pytest.mark.asyncio
    async def test_unsupported_single_file(self, service, tmp_path):
        path = tmp_path / "photo.png"
        path.write_bytes(b"\x89PNG")
        with pytest.raises(RequestError):
            await service.index_path(path, "docs")


class TestQuery:
    @pytest.mark.asyncio
    async def test_exact_passage_ranks_first(self, service, energy_file):
        await service.index_document(energy_file, "energy")
        records = await service.vector_store.get_records("energy")
        target = records[1]

        result = await service.query(target.content, "energy", limit=3, threshold=0.0)

        assert result.sources[0].content == target.content
        assert result.sources[0].score == pytest.approx(1.0)
        assert len(result.sources) <= 3
        assert result.answer.startswith(f"[energy.txt, Page 1]\n{target.content}")

    @pytest.mark.asyncio
    async def test_threshold_filters_results(self, service, energy_file):
        await service.index_document(energy_file, "energy")

        result = await service.query("zzzz qqqq", "energy", threshold=1.0)

        assert result.sources == []
        assert result.answer == NO_RESULTS_ANSWER

    @pytest.mark.asyncio
    async def test_unknown_collection_has_no_results(self, service):
        result = await service.query("anything?", "missing", threshold=0.0)

        assert result.sources == []
        assert result.answer == NO_RESULTS_ANSWER

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [{"limit": 0}, {"threshold": -0.1}, {"threshold": 1.5}])
    async def test_invalid_parameters(self, service, kwargs):
        with pytest.raises(ConfigurationError):
            await service.query("question", "docs", **kwargs)

    @pytest.mark.asyncio
    async def test_collection_from_another_model(self, service):
        await seed_collection(service, "legacy", [1.0, 0.0])

        with pytest.raises(ConfigurationError) as exc_info:
            await service.query("solar power", "legacy", threshold=0.0)

        assert exc_info.value.context == {"operation": "search", "collection": "legacy"}

    @pytest.mark.asyncio
    async def test_cached_answer_is_isolated_from_callers(self, service, energy_file):
        await service.index_document(energy_file, "energy")

        first = await service.query("solar power", "energy", threshold=0.0)
        first.sources[0].metadata["source"] = "tampered"
        first.sources.clear()

        second = await service.query("solar power", "energy", threshold=0.0)

        assert service.search_cache.stats()["hits"] == 1
        assert second.sources
        assert second.sources[0].metadata["source"] == "energy.txt"

    @pytest.mark.asyncio
    async def test_blank_question(self, service):
        with pytest.raises(ConfigurationError):
            await service.query("   ", "docs")

    @pytest.mark.asyncio
    async def test_repeated_query_is_served_from_cache(self, service, energy_file):
        await service.index_document(energy_file, "energy")

        first = await service.query("solar power", "energy", threshold=0.0)
        second = await service.query("solar power", "energy", threshold=0.0)

        assert second.answer == first.answer
        assert service.search_cache.stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_indexing_invalidates_cached_answers(self, service, energy_file, tmp_path):
        await service.index_document(energy_file, "energy")
        before = await service.query("Tidal lagoons capture the sea.", "energy", limit=1, threshold=0.0)

        extra = tmp_path / "tidal.txt"
        extra.write_text("Tidal lagoons capture the sea.", encoding="utf-8")
        await service.index_document(extra, "energy")

        after = await service.query("Tidal lagoons capture the sea.", "energy", limit=1, threshold=0.0)

        assert before.sources[0].content != "Tidal lagoons capture the sea."
        assert after.sources[0].content == "Tidal lagoons capture the sea."


class TestCollections:
    @pytest.mark.asyncio
    async def test_create_collection_is_acknowledgement(self, service, energy_file):
        assert await service.create_collection("fresh") == {"name": "fresh", "exists": False}
        assert await service.list_collections() == []

        await service.index_document(energy_file, "fresh")
        assert (await service.create_collection("fresh"))["exists"] is True

    @pytest.mark.asyncio
    async def test_create_collection_validates_name(self, service):
        with pytest.raises(ConfigurationError):
            await service.create_collection("bad name")

    @pytest.mark.asyncio
    async def test_collection_info(self, service, energy_file):
        assert await service.get_collection_info("energy") is None

        result = await service.index_document(energy_file, "energy")
        info = await service.get_collection_info("energy")

        assert info.name == "energy"
        assert info.chunk_count == result.chunks_count
        assert info.document_count == 1
        assert info.dimension == 27
        assert info.last_modified is not None

    @pytest.mark.asyncio
    async def test_delete_removes_vectors_and_archive(self, service, settings, energy_file):
        await service.index_document(energy_file, "energy")

        await service.delete_collection("energy")

        assert await service.list_collections() == []
        assert not (settings.documents_dir / "energy").exists()
        assert (await service.query("solar", "energy", threshold=0.0)).sources == []

        await service.delete_collection("energy")

    @pytest.mark.asyncio
    async def test_status(self, service, energy_file):
        status = await service.get_status()
        assert status["initialized"] is False
        assert status["collections"] == []

        await service.index_document(energy_file, "energy")
        status = await service.get_status()

        assert status["initialized"] is True
        assert status["collections"] == ["energy"]
        assert status["embedding_model"]["dimension"] == 27
        assert status["cache_stats"]["embeddings"]["entries"] > 0
        assert "search_results" in status["cache_stats"]

    @pytest.mark.asyncio
    async def test_collections_survive_restart(self, settings, embedder, energy_file):
        first = RAGService(settings, embedder=embedder)
        await first.index_document(energy_file, "energy")

        second = RAGService(settings, embedder=embedder)

        assert await second.list_collections() == ["energy"]
