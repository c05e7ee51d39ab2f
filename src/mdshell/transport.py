"""ASGI front that hands intercepted requests to the Interceptor.

This is an adapter, not a proxy: requests whose path matches the markdown
pattern are rendered through ``Interceptor.handle``; everything else is
redirected to the origin.
"""

from __future__ import annotations

from contextlib import AsyncExitStack
from typing import TYPE_CHECKING
from urllib.parse import quote, urlsplit, urlunsplit

import structlog
from starlette.datastructures import Headers
from starlette.responses import RedirectResponse, Response

from mdshell.errors import FetchError, TemplateError
from mdshell.models.request import HandleRequest

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager

    from starlette.types import Receive, Scope, Send

    from mdshell.state import AppState
    from mdshell.strategy import Interceptor

log = structlog.get_logger()

ALLOWED_METHODS = ("GET", "HEAD")
# Client headers passed on to the origin
FORWARDED_HEADERS = ("accept-language", "cookie")


class InterceptApp:
    """Pure ASGI application serving rendered markdown.

    Either pass a ready ``interceptor`` (tests) or a ``lifespan`` factory whose
    AppState supplies it on ASGI startup.
    """

    def __init__(
        self,
        *,
        origin_url: str,
        interceptor: Interceptor | None = None,
        lifespan: Callable[[], AbstractAsyncContextManager[AppState]] | None = None,
    ) -> None:
        self.origin_url = origin_url.rstrip("/")
        self.interceptor = interceptor
        self._lifespan = lifespan

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._run_lifespan(receive, send)
            return
        if scope["type"] != "http":
            return

        method = scope["method"]
        if method not in ALLOWED_METHODS:
            response = Response(
                "Method Not Allowed", status_code=405, headers={"Allow": ", ".join(ALLOWED_METHODS)}
            )
            await response(scope, receive, send)
            return

        url = self._origin_url_for(scope)
        if self.interceptor is None or not self.interceptor.matches(url):
            await RedirectResponse(url, status_code=307)(scope, receive, send)
            return

        request = self._handle_request(scope, url)
        response = await self._render(request, head_only=method == "HEAD")
        await response(scope, receive, send)

    async def _render(self, request: HandleRequest, *, head_only: bool) -> Response:
        assert self.interceptor is not None
        try:
            stored = await self.interceptor.handle(request)
        except FetchError as exc:
            log.warning("request_failed", url=request.url, code=exc.code, message=exc.message)
            status = 404 if exc.status == 404 else 502
            return Response(exc.message, status_code=status, media_type="text/plain")
        except TemplateError as exc:
            log.error("request_failed", url=request.url, code=exc.code, message=exc.message)
            return Response(exc.message, status_code=500, media_type="text/plain")

        headers = {name: _header_value(value) for name, value in stored.headers.items()}
        body = b"" if head_only else stored.body.encode("utf-8")
        return Response(body, status_code=stored.status, headers=headers)

    def _origin_url_for(self, scope: Scope) -> str:
        query = scope.get("query_string", b"").decode("latin-1")
        url = self.origin_url + scope["path"]
        return f"{url}?{query}" if query else url

    def _handle_request(self, scope: Scope, url: str) -> HandleRequest:
        headers = Headers(scope=scope)
        referrer = headers.get("referer")
        if referrer:
            referrer = rebase_referrer(referrer, headers.get("host", ""), self.origin_url)
        return HandleRequest(
            url=url,
            mode=headers.get("sec-fetch-mode", "other"),
            referrer=referrer,
            headers={name: headers[name] for name in FORWARDED_HEADERS if name in headers},
        )

    async def _run_lifespan(self, receive: Receive, send: Send) -> None:
        async with AsyncExitStack() as stack:
            while True:
                message = await receive()
                if message["type"] == "lifespan.startup":
                    try:
                        if self._lifespan is not None:
                            state = await stack.enter_async_context(self._lifespan())
                            self.interceptor = state.interceptor
                    except Exception as exc:
                        log.error("startup_failed", exc_info=True)
                        await send({"type": "lifespan.startup.failed", "message": str(exc)})
                        return
                    await send({"type": "lifespan.startup.complete"})
                elif message["type"] == "lifespan.shutdown":
                    await stack.aclose()
                    await send({"type": "lifespan.shutdown.complete"})
                    return


def rebase_referrer(referrer: str, host: str, origin_url: str) -> str:
    """Map a referrer pointing at this front onto the origin.

    Browsers report the front's own URL as referrer; the reload check compares
    it with the origin URL of the request, so both must share a base.
    """
    parts = urlsplit(referrer)
    if not host or parts.netloc != host:
        return referrer
    origin = urlsplit(origin_url)
    return urlunsplit(
        (origin.scheme, origin.netloc, origin.path.rstrip("/") + parts.path, parts.query, "")
    )


def _header_value(value: str) -> str:
    """Header values must be latin-1; percent-encode anything else."""
    try:
        value.encode("latin-1")
    except UnicodeEncodeError:
        return quote(value, safe=" !#$&'()*+,/:;=?@[]~<>\"")
    return value
