from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .constants import SCHEMA_VERSION
from .errors import ConfigurationError
from .types import RecordKind
from .validator import compile_validator


@dataclass
class CachedValidator:
    key: str
    compiled: Any
    created_at: float
    last_used_at: float
    hits: int = 0


def make_validator_key(kind: RecordKind | str, schema_version: str = SCHEMA_VERSION) -> str:
    return f"{RecordKind.coerce(kind).value}_schema@{schema_version}"


class ValidatorCache:
    """Bounded cache of compiled validators with LRU-quartile eviction and lazy TTL.

    Staleness is checked on access only; there is no background sweep. Concurrent
    access is serialized by a single lock, so the last-used ordering can only ever
    lag slightly behind reality, which affects eviction quality but not results.
    """

    def __init__(
        self,
        max_size: int = 50,
        ttl_seconds: float = 3600.0,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size <= 0:
            raise ConfigurationError("max_size must be positive")
        if ttl_seconds <= 0:
            raise ConfigurationError("ttl_seconds must be positive")
        self.max = int(max_size)
        self.ttl = float(ttl_seconds)
        self._clock = clock
        self._store: Dict[str, CachedValidator] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._insertions = 0
        self._evictions = 0

    def configure(self, *, max_size: Optional[int] = None, ttl_seconds: Optional[float] = None) -> None:
        with self._lock:
            if max_size is not None and max_size > 0:
                self.max = int(max_size)
                while len(self._store) > self.max:
                    self._evict_oldest_quartile()
            if ttl_seconds is not None and ttl_seconds > 0:
                self.ttl = float(ttl_seconds)

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def insertions(self) -> int:
        return self._insertions

    @property
    def evictions(self) -> int:
        return self._evictions

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def hit_rate(self) -> float:
        """Cache hits / (hits + insertions), as a fraction."""
        total = self._hits + self._insertions
        return (self._hits / total) if total else 0.0

    def get_or_compile(self, kind: RecordKind | str) -> CachedValidator:
        return self.fetch(kind)[0]

    def fetch(self, kind: RecordKind | str) -> Tuple[CachedValidator, bool]:
        """Like :meth:`get_or_compile` but also report whether it was a cache hit."""
        kind = RecordKind.coerce(kind)
        return self._lookup(make_validator_key(kind), lambda: compile_validator(kind))

    def lookup(self, key: str, compile_fn: Callable[[], Any]) -> CachedValidator:
        """Return the cached entry for ``key``, compiling it on a miss or when stale."""
        return self._lookup(key, compile_fn)[0]

    def _lookup(self, key: str, compile_fn: Callable[[], Any]) -> Tuple[CachedValidator, bool]:
        with self._lock:
            now = self._clock()
            entry = self._store.get(key)
            if entry is not None and (now - entry.last_used_at) <= self.ttl:
                entry.last_used_at = now
                entry.hits += 1
                self._hits += 1
                return entry, True
            if entry is not None:
                # Stale: drop and recompile below
                self._store.pop(key, None)
            if len(self._store) >= self.max:
                self._evict_oldest_quartile()
            entry = CachedValidator(key=key, compiled=compile_fn(), created_at=now, last_used_at=now)
            self._store[key] = entry
            self._insertions += 1
            return entry, False

    def peek(self, key: str) -> Optional[CachedValidator]:
        """Return the entry without refreshing it."""
        with self._lock:
            return self._store.get(key)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._hits = 0
            self._insertions = 0
            self._evictions = 0

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            entries = list(self._store.values())
            total_hits = sum(e.hits for e in entries)
            return {
                "cache_size": len(entries),
                "max_size": self.max,
                "ttl_seconds": self.ttl,
                "total_hits": total_hits,
                "average_hit_count": (total_hits / len(entries)) if entries else 0.0,
                "oldest_entry": min((e.last_used_at for e in entries), default=0.0),
                "insertions": self._insertions,
                "evictions": self._evictions,
                "hit_rate": self.hit_rate(),
            }

    def _evict_oldest_quartile(self) -> None:
        # Caller holds the lock
        ranked = sorted(self._store.values(), key=lambda e: e.last_used_at)
        to_remove = max(1, len(ranked) // 4)
        for entry in ranked[:to_remove]:
            self._store.pop(entry.key, None)
            self._evictions += 1


__all__ = ["CachedValidator", "ValidatorCache", "make_validator_key"]
