"""Per-session query cache for tenant-scoped reads."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Hashable
from typing import Any, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class QueryCache:
    """Caches the results of async fetchers by key.

    There is no expiry: entries live until invalidated or until the whole
    cache is cleared on an organization switch.
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, Any] = {}
        self.clear_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    async def get_or_fetch(self, key: Hashable, fetcher: Callable[[], Awaitable[T]]) -> T:
        if key in self._entries:
            cached: T = self._entries[key]
            return cached
        value = await fetcher()
        self._entries[key] = value
        return value

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        dropped = len(self._entries)
        self._entries.clear()
        self.clear_count += 1
        logger.info("query_cache_cleared", dropped=dropped)
