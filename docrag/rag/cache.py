"""In-memory TTL caches for embeddings and query results.

Entries are keyed by a SHA-256 digest of their text. Two different texts that
collide would share an entry; that risk is accepted. Caching is never
load-bearing: every internal failure is logged and treated as a miss.
"""
import hashlib
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog
from cachetools import TLRUCache

logger = structlog.get_logger()


def hash_text(text: str) -> str:
    """Stable content hash used as a cache key."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _expires_at(_key: str, value: Tuple[Any, float], now: float) -> float:
    # Each entry is stored as (payload, ttl) so it can carry its own lifetime
    return now + value[1]


class TTLStore:
    """Bounded key/value cache where every entry has its own time-to-live."""

    def __init__(
        self,
        default_ttl: float,
        max_entries: int = 10000,
        timer: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        """Initialize the store.

        Args:
            default_ttl: Lifetime in seconds for entries set without a ttl
            max_entries: Maximum number of live entries
            timer: Clock used for expiry (injectable for tests)
            name: Label used in log events
        """
        self.default_ttl = default_ttl
        self.name = name
        self._cache: TLRUCache = TLRUCache(maxsize=max_entries, ttu=_expires_at, timer=timer)
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        try:
            entry = self._cache.get(key)
        except Exception as e:
            logger.warning("cache_get_failed", cache=self.name, key=key, error=str(e))
            entry = None

        if entry is None:
            self.misses += 1
            return None

        self.hits += 1
        return entry[0]

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return False

        try:
            self._cache[key] = (value, ttl)
            return True
        except Exception as e:
            logger.warning("cache_set_failed", cache=self.name, key=key, error=str(e))
            return False

    def clear(self) -> None:
        size = len(self._cache)
        self._cache.clear()
        logger.info("cache_cleared", cache=self.name, entries=size)

    def stats(self) -> Dict[str, Any]:
        self._cache.expire()
        return {
            "entries": len(self._cache),
            "max_entries": self._cache.maxsize,
            "hits": self.hits,
            "misses": self.misses,
            "default_ttl": self.default_ttl,
        }


class EmbeddingCache:
    """Maps passage text to its previously computed embedding vector."""

    def __init__(
        self,
        ttl: float = 3600.0,
        max_entries: int = 10000,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._store = TTLStore(ttl, max_entries, timer=timer, name="embeddings")

    @staticmethod
    def key_for(text: str) -> str:
        return f"embedding:{hash_text(text)}"

    def get(self, text: str) -> Optional[List[float]]:
        """Return the cached vector for ``text``, or None on miss/expiry."""
        vector = self._store.get(self.key_for(text))
        return list(vector) if vector is not None else None

    def set(self, text: str, vector: Sequence[float], ttl: Optional[float] = None) -> bool:
        """Cache ``vector`` for ``text``. Returns False if nothing was stored."""
        return self._store.set(self.key_for(text), tuple(vector), ttl)

    def clear(self) -> None:
        self._store.clear()

    def stats(self) -> Dict[str, Any]:
        return self._store.stats()


class SearchResultCache:
    """Caches query responses per collection for a short period."""

    def __init__(
        self,
        ttl: float = 1800.0,
        max_entries: int = 1000,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._store = TTLStore(ttl, max_entries, timer=timer, name="search_results")

    @staticmethod
    def key_for(collection: str, question: str, limit: int, threshold: float) -> str:
        return f"search:{collection}:{hash_text(f'{question}|{limit}|{threshold}')}"

    def get(self, collection: str, question: str, limit: int, threshold: float) -> Optional[Any]:
        return self._store.get(self.key_for(collection, question, limit, threshold))

    def set(
        self,
        collection: str,
        question: str,
        limit: int,
        threshold: float,
        result: Any,
    ) -> bool:
        return self._store.set(self.key_for(collection, question, limit, threshold), result)

    def clear(self) -> None:
        self._store.clear()

    def stats(self) -> Dict[str, Any]:
        return self._store.stats()
