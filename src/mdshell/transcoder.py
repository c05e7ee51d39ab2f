"""Markdown to HTML transcoding and front-matter extraction.

Pure functions only, no I/O, no knowledge of the cache or the network.
"""

from __future__ import annotations

import html
import re
from urllib.parse import urlparse

from markdown_it import MarkdownIt

from mdshell.errors import FrontMatterError
from mdshell.models.documents import FrontMatter

FRONT_MATTER_DELIMITER = "---"
DEFAULT_MAX_FRONT_MATTER_LINES = 200

_KEY_LINE_RE = re.compile(r"^[^\s:][^:]*:")
_HEADING_RE = re.compile(r"<h[1-6](?:[^>]*)>(.*?)</h[1-6]\b", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"</?[^>]*>")

_md = MarkdownIt("commonmark")


def transcode(markdown: str) -> str:
    """Render CommonMark to an HTML fragment (no <html>, <head> or <body>)."""
    return _md.render(markdown)


def extract_front_matter(
    raw_text: str, *, max_lines: int = DEFAULT_MAX_FRONT_MATTER_LINES
) -> FrontMatter:
    """Split a leading ``---`` delimited metadata block from ``raw_text``.

    Returns empty metadata and the unchanged text when the first line is not
    the delimiter. Raises FrontMatterError when the block is never closed or
    runs past ``max_lines``.
    """
    lines = raw_text.splitlines(keepends=True)
    if not lines or not _is_delimiter(lines[0]):
        return FrontMatter(metadata={}, body=raw_text)

    block: list[str] = []
    for index, line in enumerate(lines[1:], start=1):
        if _is_delimiter(line):
            return FrontMatter(
                metadata=_parse_block(block),
                body="".join(lines[index + 1 :]),
            )
        if len(block) >= max_lines:
            raise FrontMatterError(f"Front matter exceeds {max_lines} lines")
        block.append(line.rstrip("\r\n"))

    raise FrontMatterError("Front matter has no closing delimiter")


def _is_delimiter(line: str) -> bool:
    return line.rstrip("\r\n") == FRONT_MATTER_DELIMITER


def _parse_block(block: list[str]) -> dict[str, str]:
    """Parse ``key: value`` lines; other lines continue the previous value."""
    entries: list[list[str]] = []
    for line in block:
        if _KEY_LINE_RE.match(line):
            entries.append([line])
        elif entries:
            entries[-1].append(line)
        # Text before the first key has nothing to attach to

    metadata: dict[str, str] = {}
    for entry in entries:
        key, _, value = "\n".join(entry).partition(":")
        metadata[key.strip()] = value.strip()
    return metadata


def infer_title(fragment: str, url: str | None = None) -> str:
    """Text of the first heading in ``fragment``, else the path of ``url``."""
    match = _HEADING_RE.search(fragment)
    if match is not None:
        text = html.unescape(_TAG_RE.sub("", match.group(1))).strip()
        if text:
            return text
    if url:
        return urlparse(url).path
    return ""
