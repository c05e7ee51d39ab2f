"""Shared test fixtures for the mdshell test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import httpx
import pytest

from mdshell.cache import CacheHandle, ContentCache
from mdshell.config import CacheSettings, Settings
from mdshell.fetcher import Fetcher
from mdshell.pipeline import MarkdownPipeline

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Default settings with the database pointed at a temp dir."""
    return Settings(cache=CacheSettings(db_path=str(tmp_path / "cache.db")))


@pytest.fixture()
async def db() -> AsyncGenerator[aiosqlite.Connection, None]:
    async with aiosqlite.connect(":memory:") as conn:
        yield conn


@pytest.fixture()
async def content_cache(db: aiosqlite.Connection) -> ContentCache:
    cache = ContentCache(db)
    await cache.init_db()
    return cache


@pytest.fixture()
async def handle(content_cache: ContentCache, settings: Settings) -> CacheHandle:
    """The cache the interceptor serves from."""
    return await content_cache.open(settings.intercept.cache_name)


@pytest.fixture()
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Plain client; tests mock the network with respx."""
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture()
def fetcher(http_client: httpx.AsyncClient) -> Fetcher:
    return Fetcher(http_client)


@pytest.fixture()
def pipeline(fetcher: Fetcher, handle: CacheHandle, settings: Settings) -> MarkdownPipeline:
    return MarkdownPipeline(fetcher, handle, settings)
