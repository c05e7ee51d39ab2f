"""SQLite content cache of complete responses.

A ContentCache holds any number of named caches; ``open(name)`` returns a
CacheHandle bound to one of them. Entries are keyed by normalised absolute
URL only: method and request headers are not part of the key. There is no
TTL: an entry lives until a write for the same URL replaces it or an
eviction policy removes it.

All cache operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures return ``None`` (treated as cache miss by callers),
write failures are logged and ignored (the rendered response is still
returned). Infrastructure errors never cross the cache boundary.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

import aiosqlite
import structlog

from mdshell.eviction import NoEviction
from mdshell.models.cache import StoredResponse

if TYPE_CHECKING:
    from mdshell.protocols import EvictionPolicy

log = structlog.get_logger()

_CREATE_CACHES_TABLE = """
CREATE TABLE IF NOT EXISTS caches (
    name       TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
)
"""

_CREATE_ENTRIES_TABLE = """
CREATE TABLE IF NOT EXISTS cache_entries (
    cache_name TEXT NOT NULL,
    url        TEXT NOT NULL,
    status     INTEGER NOT NULL,
    headers    TEXT NOT NULL,
    body       TEXT NOT NULL,
    stored_at  TEXT NOT NULL,
    PRIMARY KEY (cache_name, url)
)
"""

_CREATE_ENTRIES_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_entries_stored ON cache_entries(cache_name, stored_at)"
)


def normalise_cache_key(url: str) -> str:
    """Canonical cache key for ``url``.

    Scheme and host are lower-cased; path, query and fragment are kept
    verbatim. Raises ValueError for relative URLs.
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Cache keys must be absolute URLs: {url!r}")
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, parts.fragment)
    )


class ContentCache:
    """SQLite-backed store of named response caches."""

    def __init__(self, db: aiosqlite.Connection, eviction: EvictionPolicy | None = None) -> None:
        self._db = db
        self._eviction = eviction or NoEviction()
        self._handles: dict[str, CacheHandle] = {}

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_CACHES_TABLE)
        await self._db.execute(_CREATE_ENTRIES_TABLE)
        await self._db.execute(_CREATE_ENTRIES_INDEX)
        await self._db.commit()

    async def open(self, name: str) -> CacheHandle:
        """Return the handle for ``name``, creating the cache if absent."""
        handle = self._handles.get(name)
        if handle is not None:
            return handle
        try:
            await self._db.execute(
                "INSERT OR IGNORE INTO caches (name, created_at) VALUES (?, ?)",
                (name, datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_open_error", cache=name, exc_info=True)
        handle = CacheHandle(self._db, name, self._eviction)
        self._handles[name] = handle
        return handle

    async def names(self) -> list[str]:
        try:
            cursor = await self._db.execute("SELECT name FROM caches ORDER BY name")
            return [row[0] for row in await cursor.fetchall()]
        except aiosqlite.Error:
            log.warning("cache_read_error", key="caches", exc_info=True)
            return []


class CacheHandle:
    """One named cache. Implements CacheHandleProtocol."""

    def __init__(self, db: aiosqlite.Connection, name: str, eviction: EvictionPolicy) -> None:
        self._db = db
        self.name = name
        self._eviction = eviction

    async def match(self, url: str) -> StoredResponse | None:
        """Read an entry. Returns ``None`` on cache miss or read failure."""
        key = normalise_cache_key(url)
        try:
            cursor = await self._db.execute(
                "SELECT url, status, headers, body, stored_at FROM cache_entries "
                "WHERE cache_name = ? AND url = ?",
                (self.name, key),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return StoredResponse(
                url=row[0],
                status=row[1],
                headers=json.loads(row[2]),
                body=row[3],
                stored_at=datetime.fromisoformat(row[4]),
            )
        except (aiosqlite.Error, ValueError):
            log.warning("cache_read_error", cache=self.name, key=key, exc_info=True)
            return None

    async def put(self, url: str, response: StoredResponse) -> None:
        """Write an entry, replacing any previous one. Non-fatal on failure."""
        key = normalise_cache_key(url)
        try:
            # Single statement: concurrent readers see the old row or the new one
            await self._db.execute(
                "INSERT OR REPLACE INTO cache_entries "
                "(cache_name, url, status, headers, body, stored_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    self.name,
                    key,
                    response.status,
                    json.dumps(response.headers),
                    response.body,
                    datetime.now(UTC).isoformat(),
                ),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_write_error", cache=self.name, key=key, exc_info=True)
            return
        log.debug("cache_put", cache=self.name, key=key)
        await self._eviction.after_put(self)

    async def delete(self, url: str) -> bool:
        """Remove an entry. Returns whether one existed."""
        key = normalise_cache_key(url)
        try:
            cursor = await self._db.execute(
                "DELETE FROM cache_entries WHERE cache_name = ? AND url = ?",
                (self.name, key),
            )
            await self._db.commit()
            return cursor.rowcount > 0
        except aiosqlite.Error:
            log.warning("cache_delete_error", cache=self.name, key=key, exc_info=True)
            return False

    async def keys(self) -> list[str]:
        try:
            cursor = await self._db.execute(
                "SELECT url FROM cache_entries WHERE cache_name = ? ORDER BY url",
                (self.name,),
            )
            return [row[0] for row in await cursor.fetchall()]
        except aiosqlite.Error:
            log.warning("cache_read_error", cache=self.name, key="*", exc_info=True)
            return []

    async def count(self) -> int:
        try:
            cursor = await self._db.execute(
                "SELECT COUNT(*) FROM cache_entries WHERE cache_name = ?", (self.name,)
            )
            row = await cursor.fetchone()
            return row[0] if row is not None else 0
        except aiosqlite.Error:
            log.warning("cache_read_error", cache=self.name, key="count", exc_info=True)
            return 0

    async def oldest(self, limit: int) -> list[str]:
        """URLs of the ``limit`` least recently stored entries."""
        try:
            cursor = await self._db.execute(
                "SELECT url FROM cache_entries WHERE cache_name = ? "
                "ORDER BY stored_at, rowid LIMIT ?",
                (self.name, limit),
            )
            return [row[0] for row in await cursor.fetchall()]
        except aiosqlite.Error:
            log.warning("cache_read_error", cache=self.name, key="oldest", exc_info=True)
            return []
