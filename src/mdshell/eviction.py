"""Cache eviction policies.

Entries have no TTL: freshness is decided by the interceptor, not the cache.
Eviction only bounds size, and the default is to never evict.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from mdshell.protocols import CacheHandleProtocol, EvictionPolicy

log = structlog.get_logger()


class NoEviction:
    """Entries live until a same-URL write overwrites them."""

    async def after_put(self, handle: CacheHandleProtocol) -> None:
        return None


class MaxEntriesEviction:
    """Keep at most ``max_entries`` per cache, dropping the least recently stored."""

    def __init__(self, max_entries: int) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries

    async def after_put(self, handle: CacheHandleProtocol) -> None:
        excess = await handle.count() - self.max_entries
        if excess <= 0:
            return
        for url in await handle.oldest(excess):
            await handle.delete(url)
        log.info("cache_evicted", cache=handle.name, evicted=excess)


def build_eviction_policy(max_entries: int) -> EvictionPolicy:
    if max_entries > 0:
        return MaxEntriesEviction(max_entries)
    return NoEviction()
