"""Prefetch status/URL store keyed by (message, file)."""

from __future__ import annotations

import time
from typing import Callable, Protocol

from agent_sources.models.entities import PrefetchCacheEntry, cache_key


class PrefetchStore(Protocol):
    def get(self, key: str) -> PrefetchCacheEntry | None:
        ...

    def set(self, entry: PrefetchCacheEntry) -> None:
        ...

    def evict(self, key: str) -> None:
        ...

    def sweep(self) -> int:
        ...

    def clear(self) -> None:
        ...

    def lookup_url(self, message_id: str, file_id: str) -> PrefetchCacheEntry | None:
        ...


class PrefetchCache:
    """In-memory store with a hard TTL per entry and an LRU bound on size.

    Each entry carries its own `expires_at`; an expired entry is never returned,
    whatever its status. When full, the entry with the oldest `resolved_at` goes first.
    """

    def __init__(self, max_entries: int = 500, clock: Callable[[], float] = time.time) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.clock = clock
        self._entries: dict[str, PrefetchCacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> PrefetchCacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self.clock():
            del self._entries[key]
            return None
        return entry

    def set(self, entry: PrefetchCacheEntry) -> None:
        self._entries[entry.key] = entry
        while len(self._entries) > self.max_entries:
            oldest = min(self._entries.values(), key=lambda item: item.resolved_at)
            del self._entries[oldest.key]

    def evict(self, key: str) -> None:
        self._entries.pop(key, None)

    def sweep(self) -> int:
        """Drop every entry past its expiry; returns how many were removed."""
        now = self.clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def lookup_url(self, message_id: str, file_id: str) -> PrefetchCacheEntry | None:
        """Completed, unexpired entry with a URL, or None."""
        entry = self.get(cache_key(message_id, file_id))
        if entry is None or entry.status != "complete" or not entry.url:
            return None
        return entry


__all__ = ["PrefetchStore", "PrefetchCache"]
