"""Integration test fixtures.

Provides a fully wired AppState with in-memory SQLite and a real httpx client
whose traffic the tests mock with respx. Settings and the database-free
fixtures come from tests/conftest.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import httpx
import pytest

from mdshell.cache import ContentCache
from mdshell.fetcher import Fetcher
from mdshell.pipeline import MarkdownPipeline
from mdshell.state import AppState
from mdshell.strategy import Interceptor

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from mdshell.config import Settings


@pytest.fixture()
async def app_state(settings: Settings) -> AsyncGenerator[AppState, None]:
    """Full AppState wired the way server.lifespan wires it."""
    async with aiosqlite.connect(":memory:") as db:
        cache = ContentCache(db)
        await cache.init_db()

        async with httpx.AsyncClient() as client:
            fetcher = Fetcher(client)
            handle = await cache.open(settings.intercept.cache_name)
            pipeline = MarkdownPipeline(fetcher, handle, settings)
            interceptor = Interceptor(cache, pipeline, settings.intercept)
            await interceptor.activate()

            yield AppState(
                settings=settings,
                http_client=client,
                db=db,
                cache=cache,
                fetcher=fetcher,
                pipeline=pipeline,
                interceptor=interceptor,
            )
