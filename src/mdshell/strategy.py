"""Interception strategy: cache-first for ordinary requests, origin-first on reload.

A reload is a navigation whose referrer is the document itself. Everything
else is served from the content cache when possible. Whichever way the
response was obtained, it goes through the plugin's
``cached_response_will_be_used`` hook before it is returned.

No transport imports: transport.py adapts HTTP requests to
``Interceptor.handle``.
"""

from __future__ import annotations

import asyncio
import re
from enum import StrEnum
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import structlog

from mdshell.cache import normalise_cache_key
from mdshell.errors import FetchError

if TYPE_CHECKING:
    from mdshell.cache import ContentCache
    from mdshell.config import InterceptSettings
    from mdshell.models.cache import StoredResponse
    from mdshell.models.request import HandleRequest
    from mdshell.protocols import CacheHandleProtocol, PipelinePlugin


class Strategy(StrEnum):
    CACHE_FIRST = "cache_first"
    ORIGIN_FIRST = "origin_first"


def select_strategy(request: HandleRequest) -> Strategy:
    """ORIGIN_FIRST for reloads, CACHE_FIRST otherwise. Chosen once per request."""
    return Strategy.ORIGIN_FIRST if request.is_reload else Strategy.CACHE_FIRST


class Interceptor:
    """Serves intercepted markdown requests from the cache or the pipeline."""

    def __init__(
        self,
        cache: ContentCache,
        plugin: PipelinePlugin,
        settings: InterceptSettings,
    ) -> None:
        self._cache = cache
        self._plugin = plugin
        self._settings = settings
        self._matcher = re.compile(settings.pattern, re.IGNORECASE)
        self._handle: CacheHandleProtocol | None = None
        self._inflight: dict[str, asyncio.Task[StoredResponse]] = {}

    async def activate(self) -> None:
        """Become active: open the named cache. Safe to call more than once."""
        self._handle = await self._cache.open(self._settings.cache_name)
        structlog.get_logger().info("interceptor_active", cache=self._settings.cache_name)

    @property
    def active(self) -> bool:
        return self._handle is not None

    def matches(self, url: str) -> bool:
        """Whether ``url``'s path is one this interceptor handles."""
        return self._matcher.search(urlsplit(url).path) is not None

    async def handle(self, request: HandleRequest) -> StoredResponse:
        """Produce the response for an intercepted request.

        Raises FetchError when the origin cannot be reached and no cached
        entry can stand in, and TemplateError for a misconfigured shell.
        """
        if self._handle is None:
            raise RuntimeError("Interceptor.handle() called before activate()")

        strategy = select_strategy(request)
        log = structlog.get_logger().bind(url=request.url, strategy=strategy)
        log.info("handler_called", mode=request.mode)

        if strategy is Strategy.CACHE_FIRST:
            stored = await self._handle.match(request.url)
            if stored is not None:
                log.info("cache_hit")
            else:
                log.info("cache_miss_fetching")
                stored = await self._fetch(request)
        else:
            try:
                stored = await self._fetch(request)
            except FetchError as exc:
                log.warning("origin_fetch_failed", code=exc.code, message=exc.message)
                stored = await self._stale_fallback(request, exc)
                log.info("serving_cached_fallback")

        return await self._plugin.cached_response_will_be_used(request, stored)

    async def _stale_fallback(self, request: HandleRequest, exc: FetchError) -> StoredResponse:
        if not self._settings.stale_fallback or self._handle is None:
            raise exc
        stored = await self._handle.match(request.url)
        if stored is None:
            raise exc
        return stored

    async def _fetch(self, request: HandleRequest) -> StoredResponse:
        if not self._settings.dedupe_inflight:
            return await self._plugin.run_fetch(request)

        key = normalise_cache_key(request.url)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._plugin.run_fetch(request))
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget_inflight(key, done))
        else:
            structlog.get_logger().debug("fetch_joined_inflight", url=request.url)
        # A waiter being cancelled must not cancel the fetch other waiters share
        result = await asyncio.shield(task)
        return result.model_copy(deep=True)

    def _forget_inflight(self, key: str, task: asyncio.Task[StoredResponse]) -> None:
        self._inflight.pop(key, None)
        if task.cancelled():
            return
        # Retrieved here too, since every waiter may have been cancelled
        exc = task.exception()
        if exc is not None:
            structlog.get_logger().debug(
                "inflight_fetch_failed", key=key, error=type(exc).__name__
            )
