"""Service entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the lifespan context manager
- Start the ASGI front under uvicorn
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
import uvicorn

from mdshell import __version__
from mdshell.cache import ContentCache
from mdshell.config import Settings
from mdshell.eviction import build_eviction_policy
from mdshell.fetcher import Fetcher, build_http_client
from mdshell.pipeline import MarkdownPipeline
from mdshell.state import AppState
from mdshell.strategy import Interceptor
from mdshell.transport import InterceptApp

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog once, before the first request is served."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if settings.logging.format == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[settings.logging.level]
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(settings: Settings) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the service's lifetime."""
    log.info("server_starting", version=__version__, origin=settings.origin.url)

    http_client = build_http_client(settings.fetcher)

    db_path = Path(settings.cache.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))

    try:
        cache = ContentCache(db, eviction=build_eviction_policy(settings.cache.max_entries))
        await cache.init_db()

        fetcher = Fetcher(http_client)
        handle = await cache.open(settings.intercept.cache_name)
        pipeline = MarkdownPipeline(fetcher, handle, settings)
        interceptor = Interceptor(cache, pipeline, settings.intercept)
        await interceptor.activate()

        state = AppState(
            settings=settings,
            http_client=http_client,
            db=db,
            cache=cache,
            fetcher=fetcher,
            pipeline=pipeline,
            interceptor=interceptor,
        )

        log.info(
            "server_started",
            version=__version__,
            cache=settings.intercept.cache_name,
            pattern=settings.intercept.pattern,
        )
        yield state
    finally:
        await http_client.aclose()
        await db.close()
        log.info("server_stopping")


def create_app(settings: Settings) -> InterceptApp:
    return InterceptApp(origin_url=settings.origin.url, lifespan=lambda: lifespan(settings))


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    _setup_logging(settings)

    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        lifespan="on",
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )


if __name__ == "__main__":
    main()
