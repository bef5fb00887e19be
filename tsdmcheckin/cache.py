from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional

from loguru import logger

from .models import CacheEntry


class DedupCache:
    """Red packet results keyed by item id, forgotten after ``freshness_window``.

    Shared by every scan loop. ``locked(key)`` serializes the
    lookup-claim-store sequence for a single key; the map itself is guarded
    by one lock so concurrent loops never see it half-updated.
    """

    def __init__(self, freshness_window: timedelta) -> None:
        if freshness_window <= timedelta(0):
            raise ValueError("freshness_window must be positive")
        self._window = freshness_window
        self._entries: dict[str, CacheEntry] = {}
        self._key_locks: dict[str, asyncio.Lock] = {}
        # tasks holding or waiting on each key lock
        self._key_users: dict[str, int] = {}
        self._lock = asyncio.Lock()

    @property
    def freshness_window(self) -> timedelta:
        return self._window

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def lock_count(self) -> int:
        return len(self._key_locks)

    def _is_expired(self, entry: CacheEntry, now: datetime) -> bool:
        return now - entry.first_seen_at >= self._window

    def _lock_for_key(self, key: str) -> asyncio.Lock:
        if key not in self._key_locks:
            self._key_locks[key] = asyncio.Lock()
        return self._key_locks[key]

    def _drop_idle_lock(self, key: str) -> None:
        # caller holds self._lock; a key lock only lives while someone holds or awaits it
        if not self._key_users.get(key):
            self._key_locks.pop(key, None)
            self._key_users.pop(key, None)

    @asynccontextmanager
    async def locked(self, key: str) -> AsyncIterator[None]:
        async with self._lock:
            lock = self._lock_for_key(key)
            self._key_users[key] = self._key_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            async with self._lock:
                self._key_users[key] -= 1
                self._drop_idle_lock(key)

    async def lookup(self, key: str, now: datetime) -> Optional[CacheEntry]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._is_expired(entry, now):
                del self._entries[key]
                logger.debug(f"Cache entry {key} expired")
                return None
            return entry

    async def store(self, key: str, entry: CacheEntry) -> bool:
        async with self._lock:
            current = self._entries.get(key)
            if current is not None and current.first_seen_at >= entry.first_seen_at:
                return False
            self._entries[key] = entry
            return True

    async def mark_notified(self, key: str) -> None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.notified = True

    async def evict_expired(self, now: datetime) -> int:
        async with self._lock:
            expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired cache entries")
        return len(expired)
