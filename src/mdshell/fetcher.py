"""Outbound HTTP fetches to the origin.

All network I/O goes through a single Fetcher instance. The Fetcher receives
an httpx.AsyncClient via constructor injection and the lifespan owns the client
lifecycle. Every request carries its own timeout; expiry is reported as a
FetchError like any other network failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from mdshell.errors import ErrorCode, FetchError
from mdshell.models.cache import StoredResponse

if TYPE_CHECKING:
    from mdshell.config import FetcherSettings

log = structlog.get_logger()


def build_http_client(settings: FetcherSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(settings.origin_timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
        ),
    )


def to_stored_response(url: str, response: httpx.Response) -> StoredResponse:
    """Snapshot an httpx response. Repeated headers are comma-joined."""
    return StoredResponse(
        url=url,
        status=response.status_code,
        headers={key.lower(): value for key, value in response.headers.items()},
        body=response.text,
    )


class Fetcher:
    """Thin wrapper over httpx that translates failures into FetchError."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    def build_request(
        self,
        url: str,
        *,
        headers: httpx.Headers | dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Request:
        if timeout is None:
            return self._client.build_request("GET", url, headers=headers)
        return self._client.build_request("GET", url, headers=headers, timeout=timeout)

    async def send(
        self,
        request: httpx.Request,
        *,
        code: ErrorCode = ErrorCode.ORIGIN_FETCH_FAILED,
    ) -> httpx.Response:
        """Send ``request``; raise FetchError on network error, timeout, or non-2xx."""
        url = str(request.url)
        response = await self._send(request, code=code)
        if not response.is_success:
            raise FetchError(
                code,
                f"HTTP {response.status_code} fetching {url}",
                url=url,
                status=response.status_code,
                recoverable=response.status_code >= 500,
            )
        log.info(
            "fetch_complete",
            url=url,
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return response

    async def fetch_raw(self, url: str, *, timeout: float | None = None) -> StoredResponse:
        """GET ``url`` and return the response whatever its status.

        Only network errors and timeouts raise.
        """
        request = self.build_request(url, timeout=timeout)
        response = await self._send(request, code=ErrorCode.SHELL_FETCH_FAILED)
        return to_stored_response(url, response)

    async def _send(self, request: httpx.Request, *, code: ErrorCode) -> httpx.Response:
        url = str(request.url)
        try:
            return await self._client.send(request)
        except httpx.TimeoutException as exc:
            raise FetchError(
                ErrorCode.FETCH_TIMEOUT,
                f"Timed out fetching {url}",
                url=url,
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(
                code,
                f"Network error fetching {url}: {exc}",
                url=url,
            ) from exc
