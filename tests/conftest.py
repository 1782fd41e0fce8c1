"""Shared fixtures: temp-dir settings and an in-process stand-in for Ollama."""
import string
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from docrag.config import Settings
from docrag.rag.cache import EmbeddingCache
from docrag.rag.embeddings import EmbeddingGenerator
from docrag.rag.service import RAGService

TEST_MODEL = "all-minilm"


def letter_vector(text: str) -> List[float]:
    """Constant first component plus one count per ASCII letter.

    Identical texts map to identical vectors, and no vector is ever zero.
    """
    lowered = text.lower()
    return [1.0] + [float(lowered.count(c)) for c in string.ascii_lowercase]


class FakeOllamaClient:
    """Async drop-in for OllamaClient that never touches the network."""

    def __init__(self, models: Optional[List[str]] = None):
        self.models = models if models is not None else [f"{TEST_MODEL}:latest"]
        self.prompts: List[str] = []
        self.fail_on: Optional[str] = None
        self.unavailable = False

    async def embeddings(self, prompt: str, model: str) -> Dict:
        if self.unavailable:
            raise ConnectionError("ollama is not running")
        if self.fail_on is not None and self.fail_on in prompt:
            raise RuntimeError(f"model failed on {prompt[:20]!r}")
        self.prompts.append(prompt)
        return {"embedding": letter_vector(prompt)}

    async def list_models(self) -> List[str]:
        if self.unavailable:
            raise ConnectionError("ollama is not running")
        return list(self.models)

    def calls_for(self, prompt: str) -> int:
        return self.prompts.count(prompt)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        vector_db_dir=tmp_path / "data" / "vectors",
        documents_dir=tmp_path / "data" / "documents",
        embedding_model=TEST_MODEL,
        chunk_size=200,
        chunk_overlap=40,
    )


@pytest.fixture
def fake_client() -> FakeOllamaClient:
    return FakeOllamaClient()


@pytest.fixture
def embedder(fake_client: FakeOllamaClient) -> EmbeddingGenerator:
    return EmbeddingGenerator(
        client=fake_client,
        model=TEST_MODEL,
        cache=EmbeddingCache(ttl=60),
        batch_size=4,
    )


@pytest.fixture
def service(settings: Settings, embedder: EmbeddingGenerator) -> RAGService:
    return RAGService(settings, embedder=embedder)


@pytest.fixture
def sample_text() -> str:
    return (
        "Solar panels convert sunlight into electricity. "
        "Wind turbines turn moving air into power! "
        "Batteries store energy for later use. "
        "Grid operators balance supply and demand every second. "
        "Hydroelectric dams rely on falling water? "
        "Geothermal plants tap heat from deep underground. "
        "Efficiency improvements lower the cost of every kilowatt hour."
    )


@pytest.fixture
def docs_dir(tmp_path: Path, sample_text: str) -> Path:
    directory = tmp_path / "docs"
    (directory / "nested").mkdir(parents=True)
    (directory / "energy.txt").write_text(sample_text, encoding="utf-8")
    (directory / "nested" / "guide.md").write_text(
        "---\ntitle: Field Guide\ntags: [birds]\n---\n"
        "Robins sing at dawn. Owls hunt at night.",
        encoding="utf-8",
    )
    (directory / "image.png").write_bytes(b"\x89PNG")
    return directory
