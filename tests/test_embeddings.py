"""Tests for the embedding generator."""
import asyncio

import numpy as np
import pytest

from docrag.exceptions import EmbeddingError
from docrag.rag.cache import EmbeddingCache
from docrag.rag.embeddings import EmbeddingGenerator, normalize

from tests.conftest import TEST_MODEL, FakeOllamaClient, letter_vector


class TestNormalize:
    def test_unit_length(self):
        vector = normalize([3.0, 4.0])
        assert vector == pytest.approx([0.6, 0.8])

    def test_zero_vector_raises(self):
        with pytest.raises(EmbeddingError):
            normalize([0.0, 0.0])

    def test_empty_vector_raises(self):
        with pytest.raises(EmbeddingError):
            normalize([])


class TestEmbeddingGenerator:
    @pytest.mark.asyncio
    async def test_concurrent_initialize_loads_model_once(self, embedder, fake_client):
        await asyncio.gather(*(embedder.initialize() for _ in range(5)))

        assert fake_client.calls_for("test") == 1
        assert embedder.initialized
        assert embedder.dimension == 27

    @pytest.mark.asyncio
    async def test_embed_many_preserves_order_and_normalizes(self, embedder):
        texts = [f"passage number {i} about {'z' * i}" for i in range(10)]

        vectors = await embedder.embed_many(texts)

        assert len(vectors) == 10
        for text, vector in zip(texts, vectors):
            expected = np.asarray(letter_vector(text))
            expected = expected / np.linalg.norm(expected)
            assert vector == pytest.approx(expected.tolist())
            assert np.linalg.norm(vector) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_empty_input(self, embedder, fake_client):
        assert await embedder.embed_many([]) == []
        assert fake_client.prompts == []

    @pytest.mark.asyncio
    async def test_cache_prevents_repeat_model_calls(self, embedder, fake_client):
        first = await embedder.embed_one("cached question")
        second = await embedder.embed_one("cached question")

        assert first == second
        assert fake_client.calls_for("cached question") == 1
        assert embedder.cache.stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_works_without_cache(self, fake_client):
        generator = EmbeddingGenerator(fake_client, TEST_MODEL, cache=None)

        await generator.embed_one("x")
        await generator.embed_one("x")

        assert fake_client.calls_for("x") == 2

    @pytest.mark.asyncio
    async def test_failure_yields_no_partial_result(self, embedder, fake_client):
        await embedder.initialize()
        fake_client.fail_on = "broken"

        with pytest.raises(EmbeddingError) as exc_info:
            await embedder.embed_many(["fine one", "broken two", "fine three"])

        assert exc_info.value.context["model"] == TEST_MODEL

    @pytest.mark.asyncio
    async def test_failure_cancels_rest_of_batch(self, embedder, fake_client):
        await embedder.initialize()
        completed = []

        async def slow_or_broken(prompt, model):
            if "broken" in prompt:
                raise RuntimeError("model crashed")
            await asyncio.sleep(0.05)
            completed.append(prompt)
            return {"embedding": letter_vector(prompt)}

        fake_client.embeddings = slow_or_broken

        with pytest.raises(EmbeddingError, match="model crashed"):
            await embedder.embed_many(["one", "broken", "three", "four"])

        await asyncio.sleep(0.1)
        assert completed == []
        assert embedder.cache.get("one") is None

    @pytest.mark.asyncio
    async def test_unavailable_model_fails_initialization(self):
        client = FakeOllamaClient()
        client.unavailable = True
        generator = EmbeddingGenerator(client, TEST_MODEL, cache=EmbeddingCache())

        with pytest.raises(EmbeddingError):
            await generator.initialize()

        assert not generator.initialized

    @pytest.mark.asyncio
    async def test_empty_embedding_is_an_error(self, embedder, fake_client):
        async def empty(prompt, model):
            return {"embedding": []}

        fake_client.embeddings = empty

        with pytest.raises(EmbeddingError, match="Empty embedding"):
            await embedder.embed_one("anything")

    def test_model_info(self, embedder):
        info = embedder.get_model_info()
        assert info["name"] == TEST_MODEL
        assert info["initialized"] is False
        assert info["batch_size"] == 4
