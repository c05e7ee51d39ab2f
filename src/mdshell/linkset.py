"""Codec for the HTTP ``Link`` header encoding.

    <https://x/a/style.css>; rel=stylesheet, <https://x/a/app.js>; rel="preload module"

``decode`` is deliberately forgiving: an entry that cannot be parsed is
dropped and the rest of the header is still used, so one corrupt upstream
entry never costs the whole link set.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from urllib.parse import urljoin

import httpx
import structlog

from mdshell.errors import ErrorCode, ParseError
from mdshell.models.documents import LinkDescriptor

log = structlog.get_logger()

_NEEDS_QUOTING = re.compile(r"[\s,;'\"]")
_RESERVED_PARAMS = frozenset({"href"})


def encode(links: Iterable[LinkDescriptor]) -> str:
    """Serialise links as a comma-separated ``Link`` header value."""
    return ", ".join(_encode_entry(link) for link in links)


def _encode_entry(link: LinkDescriptor) -> str:
    parts = [f"<{link.href}>"]
    for key, value in link.params().items():
        value = str(value)
        if value == "" or _NEEDS_QUOTING.search(value):
            value = '"' + value.replace('"', "'") + '"'
        parts.append(f"{key}={value}")
    return "; ".join(parts)


def decode(text: str, base_url: str | None = None) -> list[LinkDescriptor]:
    """Parse a ``Link`` header value into descriptors.

    When ``base_url`` is given every href is resolved against it.
    Malformed entries are skipped.
    """
    links: list[LinkDescriptor] = []
    for entry in _split_top_level(text, ","):
        if not entry.strip():
            continue
        try:
            link = _decode_entry(entry)
            if base_url is not None:
                link = link.model_copy(update={"href": urljoin(base_url, link.href)})
        except ParseError as exc:
            log.debug("link_entry_dropped", entry=entry, reason=exc.message)
            continue
        except ValueError as exc:
            # urljoin rejects hrefs such as an unterminated IPv6 host
            log.debug("link_entry_dropped", entry=entry, reason=str(exc))
            continue
        links.append(link)
    return links


def links_from_headers(
    headers: httpx.Headers | Mapping[str, str], base_url: str | None = None
) -> list[LinkDescriptor]:
    """Decode every ``Link`` header in ``headers``."""
    if isinstance(headers, httpx.Headers):
        values = headers.get_list("link")
    else:
        values = [value for key, value in headers.items() if key.lower() == "link"]
    links: list[LinkDescriptor] = []
    for value in values:
        links.extend(decode(value, base_url))
    return links


def _decode_entry(entry: str) -> LinkDescriptor:
    segments = _split_top_level(entry, ";")
    href = _unquote(segments[0], "<", ">", required=True)
    fields: dict[str, str] = {"href": href}
    for segment in segments[1:]:
        if not segment.strip():
            continue
        key, sep, value = segment.partition("=")
        key = key.strip().lower()
        if not key or key in _RESERVED_PARAMS:
            continue
        if not sep:
            fields[key] = ""
            continue
        value = _unquote(value, "'", "'", required=False)
        value = _unquote(value, '"', '"', required=False)
        fields[key] = value
    return LinkDescriptor.model_validate(fields)


def _unquote(text: str, start: str, end: str, *, required: bool) -> str:
    """Strip a surrounding quote pair.

    Raises ParseError when a required pair is missing or a pair is unbalanced.
    """
    text = text.strip()
    if not text.startswith(start):
        if required or text.endswith(end):
            raise ParseError(
                ErrorCode.LINK_PARSE_FAILED,
                f"({text}) does not start with ({start})",
                recoverable=True,
            )
        return text
    if len(text) < len(start) + len(end) or not text.endswith(end):
        raise ParseError(
            ErrorCode.LINK_PARSE_FAILED,
            f"({text}) does not end with ({end})",
            recoverable=True,
        )
    return text[len(start) : len(text) - len(end)]


def _split_top_level(text: str, separator: str) -> list[str]:
    """Split on ``separator`` outside of ``<...>`` and quoted strings."""
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    in_brackets = False
    for char in text:
        if quote is not None:
            if char == quote:
                quote = None
        elif in_brackets:
            if char == ">":
                in_brackets = False
        elif char == "<":
            in_brackets = True
        elif char in "\"'":
            quote = char
        elif char == separator:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts
