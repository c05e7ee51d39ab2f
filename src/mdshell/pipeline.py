"""The markdown fetch pipeline.

Three hooks shape a request's journey:

1. ``request_will_fetch``: rewrite the outbound request so the origin
   always answers with source markdown.
2. ``cache_will_update``: transcode the markdown, resolve links and the
   manifest, and render the document into the default shell. The result is
   what gets cached.
3. ``cached_response_will_be_used``: on navigations, lift the cached
   ``<main>`` content into the current shell template so shell updates apply
   without re-transcoding.

``run_fetch`` chains 1 and 2 around the origin fetch and stores the result.
A failure at any step aborts before the cache write.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from mdshell.errors import ErrorCode, FetchError, FrontMatterError, ManifestError
from mdshell.linkset import encode, links_from_headers
from mdshell.manifest import resolve_linked_links
from mdshell.models.cache import StoredResponse
from mdshell.models.documents import FrontMatter, LinkDescriptor
from mdshell.template import (
    DEFAULT_TEMPLATE,
    apply_template,
    extract_main,
    extract_metadata,
    get_template,
    metadata_title,
)
from mdshell.transcoder import extract_front_matter, infer_title, transcode

if TYPE_CHECKING:
    from mdshell.config import Settings
    from mdshell.fetcher import Fetcher
    from mdshell.models.request import HandleRequest
    from mdshell.protocols import CacheHandleProtocol

log = structlog.get_logger()

MARKDOWN_MEDIA_TYPE = "text/markdown"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"

# Request headers never forwarded to the origin
_DROPPED_REQUEST_HEADERS = frozenset(
    {"host", "content-length", "connection", "if-none-match", "if-modified-since"}
)
# Response headers invalidated by re-rendering the body, or private to one
# client of a cache entry that every client shares
_DROPPED_RESPONSE_HEADERS = frozenset(
    {
        "content-encoding",
        "content-length",
        "transfer-encoding",
        "etag",
        "link",
        "connection",
        "set-cookie",
    }
)


def shell_url_from_links(links: list[LinkDescriptor]) -> str | None:
    """The shell href when exactly one link has rel ``shell``."""
    shells = [link for link in links if "shell" in link.rel_tokens()]
    return shells[0].href if len(shells) == 1 else None


class MarkdownPipeline:
    """PipelinePlugin for markdown documents."""

    def __init__(
        self,
        fetcher: Fetcher,
        cache: CacheHandleProtocol,
        settings: Settings,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._settings = settings

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def request_will_fetch(self, request: HandleRequest) -> httpx.Request:
        """Force a cache-bypassing fetch that asks for markdown."""
        headers = httpx.Headers(
            {
                key: value
                for key, value in request.headers.items()
                if key.lower() not in _DROPPED_REQUEST_HEADERS
            }
        )
        headers["Accept"] = MARKDOWN_MEDIA_TYPE
        headers["Cache-Control"] = "no-cache"
        headers["Pragma"] = "no-cache"
        return self._fetcher.build_request(
            request.url,
            headers=headers,
            timeout=self._settings.fetcher.origin_timeout_seconds,
        )

    async def cache_will_update(
        self, request: HandleRequest, response: httpx.Response
    ) -> StoredResponse:
        """Render the origin's markdown into a cacheable HTML response."""
        url = request.url
        text = response.text

        front_matter = self._split_front_matter(text, url)
        fragment = transcode(front_matter.body)

        declared = links_from_headers(response.headers, url)
        try:
            linked = await resolve_linked_links(
                declared,
                url,
                self._fetcher,
                timeout=self._settings.fetcher.manifest_timeout_seconds,
            )
        except (FetchError, ManifestError) as exc:
            log.warning("manifest_resolve_failed", url=url, code=exc.code, message=exc.message)
            linked = []
        links = [*declared, *linked]

        metadata = dict(front_matter.metadata)
        title = metadata_title(metadata) or infer_title(fragment, url)
        document = apply_template(DEFAULT_TEMPLATE, fragment, metadata, links, url=url)

        headers = {
            key: value
            for key, value in response.headers.items()
            if key.lower() not in _DROPPED_RESPONSE_HEADERS
        }
        headers["content-type"] = HTML_CONTENT_TYPE
        headers["title"] = " ".join(title.split())
        if links:
            headers["link"] = encode(links)
        shell_url = shell_url_from_links(links)
        if shell_url is not None:
            headers["shell"] = shell_url

        stored = StoredResponse(url=url, status=response.status_code, headers=headers, body="")
        log.info(
            "document_rendered",
            url=url,
            link_count=len(links),
            metadata_keys=sorted(metadata),
            shell=shell_url,
        )
        return stored.with_body(document)

    async def cached_response_will_be_used(
        self, request: HandleRequest, stored: StoredResponse
    ) -> StoredResponse:
        """Re-skin a rendered document with the current shell on navigations."""
        if not request.is_navigating:
            return stored

        content = extract_main(stored.body)
        if content is None:
            content = stored.body
        metadata = extract_metadata(stored.body)
        title = stored.header("title")
        if title:
            others = {key: value for key, value in metadata.items() if key.lower() != "title"}
            metadata = {"title": title, **others}
        links = links_from_headers(stored.headers, stored.url)

        template = await get_template(
            stored.header("shell"),
            self._cache,
            self._fetcher,
            timeout=self._settings.fetcher.shell_timeout_seconds,
        )
        document = apply_template(template, content, metadata, links, url=stored.url)
        return stored.with_body(document)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def run_fetch(self, request: HandleRequest) -> StoredResponse:
        """Rewrite, fetch, render, and cache ``request``. Returns a copy of the entry."""
        outbound = self.request_will_fetch(request)
        response = await self._fetcher.send(outbound, code=ErrorCode.ORIGIN_FETCH_FAILED)
        stored = await self.cache_will_update(request, response)
        await self._cache.put(request.url, stored)
        return stored.model_copy(deep=True)

    def _split_front_matter(self, text: str, url: str) -> FrontMatter:
        try:
            return extract_front_matter(
                text, max_lines=self._settings.transcoder.max_front_matter_lines
            )
        except FrontMatterError as exc:
            log.warning("front_matter_invalid", url=url, message=exc.message)
            return FrontMatter(metadata={}, body=text)
