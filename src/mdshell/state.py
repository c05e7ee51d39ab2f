"""Application state container.

AppState is created once at startup (inside ``server.lifespan``) and handed to
the ASGI front. It owns every long-lived resource so shutdown can close them
in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite
    import httpx

    from mdshell.cache import ContentCache
    from mdshell.config import Settings
    from mdshell.fetcher import Fetcher
    from mdshell.pipeline import MarkdownPipeline
    from mdshell.strategy import Interceptor


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    http_client: httpx.AsyncClient
    db: aiosqlite.Connection
    cache: ContentCache
    fetcher: Fetcher
    pipeline: MarkdownPipeline
    interceptor: Interceptor
