"""Application configuration with sensible defaults.

Values come from the environment; a ``Settings`` instance is built once at
process start and handed to the components that need it.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from docrag.exceptions import ConfigurationError


def _env_path(env: Mapping[str, str], name: str, default: Path) -> Path:
    value = env.get(name)
    return Path(value) if value else default


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the retrieval pipeline and its HTTP surface."""

    # Paths
    data_dir: Path = Path("data")
    vector_db_dir: Path = Path("data/vectors")
    documents_dir: Path = Path("data/documents")

    # Ollama configuration
    ollama_base_url: str = "http://localhost:11434"
    embedding_model: str = "all-minilm"  # 384 dimensions
    embedding_timeout: float = 60.0
    embedding_batch_size: int = 50

    # RAG parameters (character-based to avoid tokenizer inconsistencies)
    chunk_size: int = 1000
    chunk_overlap: int = 200
    max_results: int = 5
    similarity_threshold: float = 0.7

    # Caching (seconds)
    cache_ttl: float = 3600.0
    cache_max_entries: int = 10000
    search_cache_ttl: float = 1800.0

    # Server
    host: str = "localhost"
    port: int = 3001
    max_file_size_mb: int = 50

    # Logging
    log_level: str = "INFO"

    version: str = field(default="1.0.0", compare=False)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            env: Mapping to read from (defaults to ``os.environ``)

        Returns:
            Settings instance

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        env = os.environ if env is None else env
        data_dir = _env_path(env, "DATA_DIR", Path("data"))

        try:
            return cls(
                data_dir=data_dir,
                vector_db_dir=_env_path(env, "VECTOR_DB_PATH", data_dir / "vectors"),
                documents_dir=_env_path(env, "DOCUMENTS_PATH", data_dir / "documents"),
                ollama_base_url=env.get("OLLAMA_BASE_URL", "http://localhost:11434"),
                embedding_model=env.get("EMBEDDING_MODEL", "all-minilm"),
                embedding_timeout=float(env.get("EMBEDDING_TIMEOUT", "60.0")),
                embedding_batch_size=int(env.get("EMBEDDING_BATCH_SIZE", "50")),
                chunk_size=int(env.get("RAG_CHUNK_SIZE", "1000")),
                chunk_overlap=int(env.get("RAG_CHUNK_OVERLAP", "200")),
                max_results=int(env.get("RAG_MAX_RESULTS", "5")),
                similarity_threshold=float(env.get("RAG_SIMILARITY_THRESHOLD", "0.7")),
                cache_ttl=float(env.get("CACHE_TTL", "3600")),
                cache_max_entries=int(env.get("CACHE_MAX_ENTRIES", "10000")),
                search_cache_ttl=float(env.get("SEARCH_CACHE_TTL", "1800")),
                host=env.get("HOST", "localhost"),
                port=int(env.get("PORT", "3001")),
                max_file_size_mb=int(env.get("MAX_FILE_SIZE_MB", "50")),
                log_level=env.get("LOG_LEVEL", "INFO").upper(),
            )
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid numeric setting in environment: {e}",
                operation="load_settings",
            ) from e

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    def validate(self) -> "Settings":
        """Check value ranges.

        Returns:
            self, so calls can be chained

        Raises:
            ConfigurationError: If any setting is out of range
        """
        if self.chunk_size <= 0:
            raise ConfigurationError("RAG_CHUNK_SIZE must be positive", key="chunk_size")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ConfigurationError(
                "RAG_CHUNK_OVERLAP must be non-negative and less than RAG_CHUNK_SIZE",
                key="chunk_overlap",
            )
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ConfigurationError(
                "RAG_SIMILARITY_THRESHOLD must be between 0 and 1",
                key="similarity_threshold",
            )
        if self.max_results <= 0:
            raise ConfigurationError("RAG_MAX_RESULTS must be positive", key="max_results")
        if self.embedding_batch_size <= 0:
            raise ConfigurationError(
                "EMBEDDING_BATCH_SIZE must be positive", key="embedding_batch_size"
            )
        if self.cache_ttl <= 0 or self.search_cache_ttl <= 0:
            raise ConfigurationError("Cache TTLs must be positive", key="cache_ttl")
        if not 1 <= self.port <= 65535:
            raise ConfigurationError("PORT must be between 1 and 65535", key="port")
        return self

    def ensure_directories(self) -> None:
        """Create the data, vector and documents directories if missing."""
        for directory in (self.data_dir, self.vector_db_dir, self.documents_dir):
            directory.mkdir(parents=True, exist_ok=True)
