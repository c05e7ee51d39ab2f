"""Unit tests for the markdown pipeline hooks."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
import respx

from mdshell.errors import FetchError
from mdshell.models.documents import LinkDescriptor
from mdshell.models.request import HandleRequest
from mdshell.pipeline import HTML_CONTENT_TYPE, shell_url_from_links

if TYPE_CHECKING:
    from mdshell.cache import CacheHandle
    from mdshell.pipeline import MarkdownPipeline

_URL = "https://x/a/b.md"
_MANIFEST_URL = "https://x/a/manifest.json"
_SHELL_URL = "https://x/a/shell.html"
_MARKDOWN = "---\ntitle: Hello\nauthor: Ada\n---\n# Heading\n\nText.\n"
_SHELL = (
    "<!DOCTYPE html><html><head><title>Site</title></head>"
    '<body><nav>Menu</nav><main class="content"></main></body></html>'
)


def _origin_response(text: str = _MARKDOWN, **headers: str) -> httpx.Response:
    return httpx.Response(
        200, headers={"Content-Type": "text/markdown; charset=utf-8", **headers}, text=text
    )


def _navigate(url: str = _URL) -> HandleRequest:
    return HandleRequest(url=url, mode="navigate", referrer="https://x/index.md")


# ---------------------------------------------------------------------------
# request_will_fetch
# ---------------------------------------------------------------------------


class TestRequestWillFetch:
    async def test_asks_origin_for_markdown(self, pipeline: MarkdownPipeline) -> None:
        request = HandleRequest(
            url=_URL,
            headers={
                "Accept": "text/html",
                "Cookie": "session=1",
                "If-None-Match": '"etag"',
                "Host": "proxy.local",
            },
        )
        outbound = pipeline.request_will_fetch(request)
        assert outbound.method == "GET"
        assert str(outbound.url) == _URL
        assert outbound.headers["accept"] == "text/markdown"
        assert outbound.headers["cache-control"] == "no-cache"
        assert outbound.headers["pragma"] == "no-cache"
        assert outbound.headers["cookie"] == "session=1"
        assert "if-none-match" not in outbound.headers
        assert outbound.headers["host"] == "x"

    async def test_origin_timeout_applied(self, pipeline: MarkdownPipeline) -> None:
        outbound = pipeline.request_will_fetch(HandleRequest(url=_URL))
        assert outbound.extensions["timeout"]["read"] == 30.0


# ---------------------------------------------------------------------------
# cache_will_update
# ---------------------------------------------------------------------------


class TestCacheWillUpdate:
    async def test_renders_document(self, pipeline: MarkdownPipeline) -> None:
        response = _origin_response(Link="<style.css>; rel=stylesheet", ETag='"abc"')
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)

        assert stored.url == _URL
        assert stored.status == 200
        assert stored.header("content-type") == HTML_CONTENT_TYPE
        assert stored.header("title") == "Hello"
        assert stored.header("link") == "<https://x/a/style.css>; rel=stylesheet"
        assert stored.header("etag") is None
        assert stored.header("shell") is None
        assert stored.header("content-length") == str(len(stored.body.encode("utf-8")))

        assert "<title>Hello</title>" in stored.body
        assert '<meta name="author" content="Ada" />' in stored.body
        assert '<link href="https://x/a/style.css" rel="stylesheet" />' in stored.body
        assert "<main><h1>Heading</h1>\n<p>Text.</p>\n</main>" in stored.body
        assert "title: Hello" not in stored.body

    async def test_unrelated_origin_headers_kept(self, pipeline: MarkdownPipeline) -> None:
        response = _origin_response(**{"X-Origin": "1"})
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)
        assert stored.header("x-origin") == "1"
        assert stored.header("link") is None

    async def test_title_whitespace_collapsed(self, pipeline: MarkdownPipeline) -> None:
        response = _origin_response("---\ntitle: Hello\n  World\n---\nBody\n")
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)
        assert stored.header("title") == "Hello World"

    async def test_title_from_heading(self, pipeline: MarkdownPipeline) -> None:
        response = _origin_response("Intro\n\n## First *heading*\n")
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)
        assert stored.header("title") == "First heading"

    async def test_title_from_url_path(self, pipeline: MarkdownPipeline) -> None:
        response = _origin_response("No headings here.\n")
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)
        assert stored.header("title") == "/a/b.md"

    async def test_malformed_front_matter_rendered_as_markdown(
        self, pipeline: MarkdownPipeline
    ) -> None:
        response = _origin_response("---\ntitle: never closed\n# H\n")
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)
        assert stored.header("title") == "H"
        assert "<h1>H</h1>" in stored.body

    async def test_single_shell_link_sets_header(self, pipeline: MarkdownPipeline) -> None:
        response = _origin_response(Link='<shell.html>; rel=shell; type="text/html"')
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)
        assert stored.header("shell") == _SHELL_URL

    async def test_ambiguous_shell_links_ignored(self, pipeline: MarkdownPipeline) -> None:
        response = _origin_response(Link="<one.html>; rel=shell, <two.html>; rel=shell")
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)
        assert stored.header("shell") is None

    @respx.mock
    async def test_manifest_links_appended(self, pipeline: MarkdownPipeline) -> None:
        respx.get(_MANIFEST_URL).mock(
            return_value=httpx.Response(
                200,
                json={"links": [{"href": "style.css", "rel": "stylesheet"}], "shell": "shell.html"},
            )
        )
        response = _origin_response(Link='<manifest.json>; rel="manifest links"')
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)

        assert stored.header("link") == (
            '<https://x/a/manifest.json>; rel="manifest links", '
            "<https://x/a/style.css>; rel=stylesheet, "
            "<https://x/a/shell.html>; rel=shell; type=text/html"
        )
        assert stored.header("shell") == _SHELL_URL
        assert '<link href="https://x/a/style.css" rel="stylesheet" />' in stored.body

    @respx.mock
    async def test_manifest_failure_keeps_declared_links(
        self, pipeline: MarkdownPipeline
    ) -> None:
        respx.get(_MANIFEST_URL).mock(return_value=httpx.Response(500))
        response = _origin_response(Link='<manifest.json>; rel="manifest links"')
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)
        assert stored.header("link") == '<https://x/a/manifest.json>; rel="manifest links"'
        assert "<h1>Heading</h1>" in stored.body


# ---------------------------------------------------------------------------
# cached_response_will_be_used
# ---------------------------------------------------------------------------


class TestCachedResponseWillBeUsed:
    async def test_non_navigation_unchanged(self, pipeline: MarkdownPipeline) -> None:
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), _origin_response())
        result = await pipeline.cached_response_will_be_used(HandleRequest(url=_URL), stored)
        assert result is stored

    async def test_default_shell_reproduces_document(self, pipeline: MarkdownPipeline) -> None:
        response = _origin_response(Link="<style.css>; rel=stylesheet")
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)
        result = await pipeline.cached_response_will_be_used(_navigate(), stored)
        assert result.body == stored.body
        assert result.headers == stored.headers

    @respx.mock
    async def test_navigation_uses_declared_shell(
        self, pipeline: MarkdownPipeline, handle: CacheHandle
    ) -> None:
        shell_route = respx.get(_SHELL_URL).mock(return_value=httpx.Response(200, text=_SHELL))
        response = _origin_response(Link="<shell.html>; rel=shell, <style.css>; rel=stylesheet")
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)

        first = await pipeline.cached_response_will_be_used(_navigate(), stored)
        second = await pipeline.cached_response_will_be_used(_navigate(), stored)

        assert shell_route.call_count == 1
        assert await handle.match(_SHELL_URL) is not None
        assert first.body == second.body
        assert "<nav>Menu</nav>" in first.body
        assert "<title>Hello</title>" in first.body
        assert '<meta name="author" content="Ada" />' in first.body
        assert '<link href="https://x/a/style.css" rel="stylesheet" />' in first.body
        assert '<main class="content"><h1>Heading</h1>\n<p>Text.</p>\n</main>' in first.body
        assert first.header("content-length") == str(len(first.body.encode("utf-8")))

    @respx.mock
    async def test_unavailable_shell_falls_back_to_default(
        self, pipeline: MarkdownPipeline
    ) -> None:
        respx.get(_SHELL_URL).mock(side_effect=httpx.ConnectError("refused"))
        response = _origin_response(Link="<shell.html>; rel=shell")
        stored = await pipeline.cache_will_update(HandleRequest(url=_URL), response)
        result = await pipeline.cached_response_will_be_used(_navigate(), stored)
        assert "<main><h1>Heading</h1>\n<p>Text.</p>\n</main>" in result.body


# ---------------------------------------------------------------------------
# run_fetch
# ---------------------------------------------------------------------------


class TestRunFetch:
    @respx.mock
    async def test_fetch_render_and_store(
        self, pipeline: MarkdownPipeline, handle: CacheHandle
    ) -> None:
        route = respx.get(_URL).mock(return_value=_origin_response())
        result = await pipeline.run_fetch(HandleRequest(url=_URL))

        assert route.calls.last.request.headers["accept"] == "text/markdown"
        cached = await handle.match(_URL)
        assert cached is not None
        assert cached.body == result.body
        assert cached.headers == result.headers

    @respx.mock
    async def test_set_cookie_not_stored(
        self, pipeline: MarkdownPipeline, handle: CacheHandle
    ) -> None:
        respx.get(_URL).mock(return_value=_origin_response(**{"Set-Cookie": "session=alice"}))
        result = await pipeline.run_fetch(HandleRequest(url=_URL))

        cached = await handle.match(_URL)
        assert cached is not None
        assert cached.header("set-cookie") is None
        assert result.header("set-cookie") is None

    @respx.mock
    async def test_unresolvable_link_does_not_fail_fetch(
        self, pipeline: MarkdownPipeline, handle: CacheHandle
    ) -> None:
        respx.get(_URL).mock(
            return_value=_origin_response(
                Link="<http://[bad>; rel=stylesheet, </ok.css>; rel=stylesheet"
            )
        )
        result = await pipeline.run_fetch(HandleRequest(url=_URL))

        assert result.header("link") == "<https://x/ok.css>; rel=stylesheet"
        assert await handle.match(_URL) is not None

    @respx.mock
    async def test_unresolvable_manifest_entry_does_not_fail_fetch(
        self, pipeline: MarkdownPipeline
    ) -> None:
        respx.get(_URL).mock(
            return_value=_origin_response(Link='<manifest.json>; rel="manifest links"')
        )
        respx.get(_MANIFEST_URL).mock(
            return_value=httpx.Response(200, json={"links": [{"href": "http://[bad"}]})
        )
        result = await pipeline.run_fetch(HandleRequest(url=_URL))

        assert result.header("link") == '<https://x/a/manifest.json>; rel="manifest links"'
        assert "<h1>Heading</h1>" in result.body

    @respx.mock
    async def test_origin_failure_stores_nothing(
        self, pipeline: MarkdownPipeline, handle: CacheHandle
    ) -> None:
        respx.get(_URL).mock(return_value=httpx.Response(404))
        with pytest.raises(FetchError) as exc_info:
            await pipeline.run_fetch(HandleRequest(url=_URL))
        assert exc_info.value.status == 404
        assert await handle.count() == 0


class TestShellUrlFromLinks:
    def test_rel_token_match(self) -> None:
        links = [LinkDescriptor(href="https://x/s.html", rel="alternate Shell")]
        assert shell_url_from_links(links) == "https://x/s.html"

    def test_none_without_shell(self) -> None:
        assert shell_url_from_links([LinkDescriptor(href="https://x/a.css")]) is None
