"""Auxiliary link discovery through a companion JSON manifest.

A document opts in by declaring a link whose rel contains both ``manifest``
and ``links``:

    Link: </docs/manifest.json>; rel="manifest links"

The manifest then supplies extra links to render into the page head, either
as a ``links`` array or as a ``shell`` template reference:

    {"links": [{"href": "style.css", "rel": "stylesheet"}]}
    {"shell": "shell.html"}
    {"shell": [{"href": "shell.html", "rel": "shell", "type": "text/html"}]}
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

import structlog

from mdshell.errors import ErrorCode, ManifestError
from mdshell.models.documents import LinkDescriptor

if TYPE_CHECKING:
    from collections.abc import Iterable

    from mdshell.fetcher import Fetcher

log = structlog.get_logger()

_MANIFEST_ACCEPT = "application/manifest+json, application/json"


def find_manifest_link(links: Iterable[LinkDescriptor]) -> LinkDescriptor | None:
    """First link whose rel tokens include ``manifest``."""
    for link in links:
        if "manifest" in link.rel_tokens():
            return link
    return None


async def resolve_linked_links(
    links: Iterable[LinkDescriptor],
    document_url: str,
    fetcher: Fetcher,
    *,
    timeout: float | None = None,
) -> list[LinkDescriptor]:
    """Fetch the declared manifest and return its links, resolved.

    Returns ``[]`` without touching the network when no manifest link opts in
    with the ``links`` token. Raises FetchError or ManifestError when the
    manifest cannot be fetched or parsed.
    """
    manifest_link = find_manifest_link(links)
    if manifest_link is None or "links" not in manifest_link.rel_tokens():
        return []

    try:
        manifest_url = urljoin(document_url, manifest_link.href)
    except ValueError as exc:
        raise ManifestError(f"Manifest href {manifest_link.href!r} is invalid: {exc}") from exc
    request = fetcher.build_request(
        manifest_url, headers={"Accept": _MANIFEST_ACCEPT}, timeout=timeout
    )
    response = await fetcher.send(request, code=ErrorCode.MANIFEST_FETCH_FAILED)
    try:
        manifest = json.loads(response.text)
    except ValueError as exc:
        raise ManifestError(f"Manifest at {manifest_url} is not valid JSON: {exc}") from exc

    resolved = extract_links_from_manifest(manifest, manifest_url)
    log.info("manifest_resolved", url=manifest_url, link_count=len(resolved))
    return resolved


def extract_links_from_manifest(manifest: Any, manifest_url: str) -> list[LinkDescriptor]:
    """Build resolved descriptors from a parsed manifest.

    ``links`` entries come first, then ``shell`` entries. Entries without a
    string ``href`` are skipped. The manifest itself is not modified.
    """
    if not isinstance(manifest, dict):
        return []

    entries: list[Any] = []
    links = manifest.get("links")
    if isinstance(links, list):
        entries.extend(links)

    shell = manifest.get("shell")
    if isinstance(shell, str):
        entries.append({"href": shell, "rel": "shell", "type": "text/html"})
    elif isinstance(shell, list):
        entries.extend(shell)

    resolved: list[LinkDescriptor] = []
    for entry in entries:
        link = _descriptor_from_entry(entry, manifest_url)
        if link is not None:
            resolved.append(link)
    return resolved


def _descriptor_from_entry(entry: Any, manifest_url: str) -> LinkDescriptor | None:
    if not isinstance(entry, dict) or not isinstance(entry.get("href"), str):
        log.debug("manifest_entry_dropped", entry=entry)
        return None
    fields = {key: value for key, value in entry.items() if isinstance(value, str)}
    try:
        fields["href"] = urljoin(manifest_url, entry["href"])
        return LinkDescriptor.model_validate(fields)
    except ValueError:
        # ValidationError is a ValueError; so is an href urljoin cannot parse
        log.debug("manifest_entry_dropped", entry=entry)
        return None
