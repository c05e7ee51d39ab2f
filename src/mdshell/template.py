"""HTML shell templating.

A shell is an ordinary HTML document with three merge regions:

- the ``<title>`` element, whose text is replaced;
- the end of ``<head>``, where ``<meta>``, ``<link>`` and ``<script>`` tags
  are inserted;
- the ``<main>`` element (or ``<body>`` when there is no ``<main>``), whose
  content is replaced with the transcoded document.

A shell missing a region is misconfigured and raises TemplateError instead
of producing malformed HTML.
"""

from __future__ import annotations

import html
import re
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

import structlog

from mdshell.errors import FetchError, TemplateError
from mdshell.models.documents import LinkDescriptor
from mdshell.transcoder import infer_title

if TYPE_CHECKING:
    from mdshell.fetcher import Fetcher
    from mdshell.protocols import CacheHandleProtocol

log = structlog.get_logger()

DEFAULT_TEMPLATE = """\
<!DOCTYPE html>
<html>
  <head>
    <title></title>
  </head>
  <body>
    <main></main>
  </body>
</html>
"""

SCRIPT_TYPES = frozenset({"text/javascript", "application/javascript", "module"})

_TITLE_RE = re.compile(r"(<title\b[^>]*>)(.*?)(</title>)", re.IGNORECASE | re.DOTALL)
_HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)
_MAIN_RE = re.compile(r"(<main\b[^>]*>)(.*)(</main\s*>)", re.IGNORECASE | re.DOTALL)
_BODY_RE = re.compile(r"(<body\b[^>]*>)(.*)(</body\s*>)", re.IGNORECASE | re.DOTALL)
_META_RE = re.compile(r"<meta\b([^>]*)/?>", re.IGNORECASE)
_ATTR_RE = re.compile(r"""([\w:-]+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")


def render_links(links: Iterable[LinkDescriptor]) -> str:
    """Render links as ``<script>`` (script-like types) or ``<link>`` tags."""
    rendered: list[str] = []
    for link in links:
        if link.type in SCRIPT_TYPES:
            rendered.append(
                f'<script src="{_attr(link.href)}" type="{_attr(link.type)}"></script>'
            )
            continue
        attrs = [f'href="{_attr(link.href)}"']
        if link.rel:
            attrs.append(f'rel="{_attr(link.rel)}"')
        if link.as_:
            attrs.append(f'as="{_attr(link.as_)}"')
        if link.type:
            attrs.append(f'type="{_attr(link.type)}"')
        rendered.append(f"<link {' '.join(attrs)} />")
    return "\n".join(rendered)


def render_metadata(metadata: Mapping[str, str]) -> str:
    """One ``<meta>`` tag per entry. ``title`` is rendered as <title> instead."""
    return "\n".join(
        f'<meta name="{_attr(name)}" content="{_attr(value)}" />'
        for name, value in metadata.items()
        if name.lower() != "title"
    )


def apply_template(
    template: str,
    body: str,
    title_or_metadata: str | Mapping[str, str],
    links: Iterable[LinkDescriptor],
    *,
    url: str | None = None,
) -> str:
    """Merge a document into ``template``.

    ``title_or_metadata`` is either the title text or a metadata mapping. With
    a mapping, a ``<meta>`` tag is emitted per entry and the title comes from
    the ``title`` entry, else the first heading of ``body``, else the path of
    ``url``.
    """
    if isinstance(title_or_metadata, str):
        title = title_or_metadata
        head_extras = render_links(links)
    else:
        title = metadata_title(title_or_metadata) or infer_title(body, url)
        head_extras = "\n".join(
            part for part in (render_metadata(title_or_metadata), render_links(links)) if part
        )

    if not _TITLE_RE.search(template):
        raise TemplateError("Shell template has no <title> element")
    if not _HEAD_CLOSE_RE.search(template):
        raise TemplateError("Shell template has no </head>")
    content_re = _MAIN_RE if _MAIN_RE.search(template) else _BODY_RE
    if not content_re.search(template):
        raise TemplateError("Shell template has no <main> or <body> element")

    # Function replacements: inserted text must never be read as a regex template
    result = _TITLE_RE.sub(
        lambda m: m.group(1) + html.escape(title, quote=False) + m.group(3), template, count=1
    )
    if head_extras:
        result = _HEAD_CLOSE_RE.sub(lambda m: head_extras + "\n" + m.group(0), result, count=1)
    return content_re.sub(lambda m: m.group(1) + body + m.group(3), result, count=1)


def extract_main(document: str) -> str | None:
    """Content of the ``<main>`` (else ``<body>``) element, or None."""
    match = _MAIN_RE.search(document) or _BODY_RE.search(document)
    return match.group(2) if match is not None else None


def extract_metadata(document: str) -> dict[str, str]:
    """``name``/``content`` pairs of the ``<meta>`` tags in the document head."""
    head_end = _HEAD_CLOSE_RE.search(document)
    head = document[: head_end.start()] if head_end is not None else ""
    metadata: dict[str, str] = {}
    for match in _META_RE.finditer(head):
        attrs: dict[str, str] = {}
        for attr in _ATTR_RE.finditer(match.group(1)):
            value = attr.group(2) if attr.group(2) is not None else attr.group(3)
            attrs[attr.group(1).lower()] = html.unescape(value)
        if "name" in attrs and "content" in attrs:
            metadata[attrs["name"]] = attrs["content"]
    return metadata


async def get_template(
    shell_url: str | None,
    cache: CacheHandleProtocol,
    fetcher: Fetcher,
    *,
    timeout: float | None = None,
) -> str:
    """Return the shell at ``shell_url`` (through the cache) or the default.

    Never raises: any failure to obtain the shell falls back to the default.
    """
    if not shell_url:
        return DEFAULT_TEMPLATE

    cached = await cache.match(shell_url)
    if cached is not None:
        log.debug("shell_cache_hit", url=shell_url)
        return cached.body if cached.ok else DEFAULT_TEMPLATE

    try:
        response = await fetcher.fetch_raw(shell_url, timeout=timeout)
    except FetchError as exc:
        log.warning("shell_fetch_failed", url=shell_url, code=exc.code, message=exc.message)
        return DEFAULT_TEMPLATE

    if not response.ok:
        log.warning("shell_fetch_failed", url=shell_url, status=response.status)
        return DEFAULT_TEMPLATE

    await cache.put(shell_url, response)
    log.info("shell_cached", url=shell_url)
    return response.body


def metadata_title(metadata: Mapping[str, str]) -> str | None:
    for name, value in metadata.items():
        if name.lower() == "title" and value:
            return value
    return None


def _attr(value: str) -> str:
    return html.escape(value, quote=True)
