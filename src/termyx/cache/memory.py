from __future__ import annotations

import time
from typing import Any, Callable, Dict, NamedTuple, Optional

from .base import AsyncCacheBackend


class _Entry(NamedTuple):
    value: Any
    expires_at: Optional[float]


class InMemoryAsyncCache(AsyncCacheBackend):
    """
    Process-local cache; entries without a TTL never expire.
    Expired entries are dropped lazily on read.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}

    def _expired(self, entry: _Entry) -> bool:
        return entry.expires_at is not None and entry.expires_at < self._clock()

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            return None
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        expires_at = None if ttl_seconds is None else self._clock() + ttl_seconds
        self._entries[key] = _Entry(value, expires_at)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)
