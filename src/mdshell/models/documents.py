from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LinkDescriptor(BaseModel):
    """A single ``<href>; rel=...`` entry.

    ``href`` is absolute once the descriptor leaves the codec (when decoded
    with a base URL) or the manifest resolver. Parameters other than
    rel/as/type (e.g. ``crossorigin``) are kept as extra fields.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    href: str
    rel: str | None = None
    as_: str | None = Field(default=None, alias="as")
    type: str | None = None

    def rel_tokens(self) -> frozenset[str]:
        """Lower-cased whitespace-separated tokens of ``rel``."""
        return frozenset((self.rel or "").lower().split())

    def params(self) -> dict[str, str]:
        """Every parameter except ``href``, in wire order: rel, as, type, extras."""
        params: dict[str, str] = {}
        if self.rel is not None:
            params["rel"] = self.rel
        if self.as_ is not None:
            params["as"] = self.as_
        if self.type is not None:
            params["type"] = self.type
        for key, value in (self.model_extra or {}).items():
            params[key] = value
        return params


class FrontMatter(BaseModel):
    """Metadata block split from the top of a markdown document."""

    metadata: dict[str, str] = {}
    body: str
