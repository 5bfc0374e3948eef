"""Client-side read cache for ledger rows.

Keys are tuples: ``(table, id)`` for a single row and ``(table, "list", ...)``
for list results. Writers either patch a row with the value the store returned
or invalidate it; change notifications only ever invalidate.
"""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

import structlog

logger = structlog.get_logger(__name__)

CacheKey = tuple[str, ...]
T = TypeVar("T")

LIST_MARKER = "list"


def row_key(table: str, row_id: str) -> CacheKey:
    return (table, row_id)


def list_key(table: str, *parts: str) -> CacheKey:
    return (table, LIST_MARKER, *parts)


def _is_list_key(key: CacheKey) -> bool:
    return len(key) > 1 and key[1] == LIST_MARKER


class CachePort(Protocol):
    """What writers and change adapters need from a cache."""

    def patch(self, key: CacheKey, value: Any) -> None: ...

    def invalidate(self, key: CacheKey) -> bool: ...

    def invalidate_lists(self, table: str) -> int: ...


class ReadCache:
    """In-memory cache shared by every reader and writer in the process.

    Every key has a generation that ``patch`` and ``invalidate`` bump, and each
    table has one for its lists that ``invalidate_lists`` bumps. A fetch only
    stores its result if none of these moved while it was in flight, so a
    value superseded during the fetch is returned to its caller but never
    cached.
    """

    def __init__(self) -> None:
        self._entries: dict[CacheKey, Any] = {}
        self._generations: dict[CacheKey, int] = {}
        self._list_generations: dict[str, int] = {}
        self._logger = logger.bind(component="read_cache")

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _bump(self, key: CacheKey) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    def generation(self, key: CacheKey) -> tuple[int, int]:
        """Current (key, table lists) generation pair for ``key``."""
        lists = self._list_generations.get(key[0], 0) if _is_list_key(key) else 0
        return self._generations.get(key, 0), lists

    def get(self, key: CacheKey) -> Any | None:
        return self._entries.get(key)

    def patch(self, key: CacheKey, value: Any) -> None:
        """Replace the cached value for ``key``."""
        self._bump(key)
        self._entries[key] = value

    def invalidate(self, key: CacheKey) -> bool:
        """Drop ``key``. Returns whether anything was cached."""
        self._bump(key)
        removed = self._entries.pop(key, None) is not None
        if removed:
            self._logger.debug("cache_invalidated", key=key)
        return removed

    def invalidate_lists(self, table: str) -> int:
        """Drop every cached list result for ``table``."""
        self._list_generations[table] = self._list_generations.get(table, 0) + 1
        keys = [key for key in self._entries if key[0] == table and _is_list_key(key)]
        for key in keys:
            del self._entries[key]
        if keys:
            self._logger.debug("cache_lists_invalidated", table=table, count=len(keys))
        return len(keys)

    async def get_or_fetch(
        self, key: CacheKey, fetch: Callable[[], Awaitable[T]], refresh: bool = False
    ) -> T:
        """Return the cached value, or fetch it and cache it unless superseded.

        ``refresh=True`` always fetches.
        """
        if not refresh and key in self._entries:
            return self._entries[key]
        before = self.generation(key)
        value = await fetch()
        if self.generation(key) == before:
            self._entries[key] = value
        else:
            self._logger.debug("cache_fetch_superseded", key=key)
        return value
