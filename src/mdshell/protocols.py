"""Protocol interfaces for swappable components.

The interceptor and the pipeline reference these protocols, not the concrete
implementations. This allows:
- Tests to use lightweight in-memory implementations
- Alternate pipelines (another content type) to reuse the interceptor
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    import httpx

    from mdshell.models.cache import StoredResponse
    from mdshell.models.request import HandleRequest


class CacheHandleProtocol(Protocol):
    """One named store of complete responses keyed by absolute URL."""

    name: str

    async def match(self, url: str) -> StoredResponse | None: ...

    async def put(self, url: str, response: StoredResponse) -> None: ...

    async def delete(self, url: str) -> bool: ...

    async def keys(self) -> list[str]: ...

    async def count(self) -> int: ...

    async def oldest(self, limit: int) -> list[str]: ...


class EvictionPolicy(Protocol):
    """Decides which entries leave a cache after each write."""

    async def after_put(self, handle: CacheHandleProtocol) -> None: ...


class PipelinePlugin(Protocol):
    """Hooks applied around an origin fetch and before a response is used."""

    def request_will_fetch(self, request: HandleRequest) -> httpx.Request: ...

    async def cache_will_update(
        self, request: HandleRequest, response: httpx.Response
    ) -> StoredResponse: ...

    async def cached_response_will_be_used(
        self, request: HandleRequest, stored: StoredResponse
    ) -> StoredResponse: ...

    async def run_fetch(self, request: HandleRequest) -> StoredResponse: ...
