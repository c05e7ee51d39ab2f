from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class HandleRequest(BaseModel):
    """An intercepted request: the identity the strategy and cache work from."""

    model_config = ConfigDict(frozen=True)

    url: str
    mode: str = "other"  # "navigate" for top-level document loads
    referrer: str | None = None
    headers: dict[str, str] = {}

    @property
    def is_navigating(self) -> bool:
        return self.mode == "navigate"

    @property
    def is_reload(self) -> bool:
        """A navigation whose referring document is the requested document."""
        return self.is_navigating and self.referrer == self.url
