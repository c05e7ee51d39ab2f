from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class StoredResponse(BaseModel):
    """A complete response as held by the content cache.

    Header names are lower-case; repeated headers are comma-joined.
    """

    url: str
    status: int = 200
    headers: dict[str, str] = {}
    body: str
    stored_at: datetime | None = None  # Set on cache reads only

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def with_body(self, body: str) -> StoredResponse:
        """Copy with a new body and a recomputed Content-Length."""
        headers = dict(self.headers)
        headers["content-length"] = str(len(body.encode("utf-8")))
        return self.model_copy(update={"body": body, "headers": headers})
