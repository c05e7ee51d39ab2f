from __future__ import annotations

from mdshell.models.cache import StoredResponse
from mdshell.models.documents import FrontMatter, LinkDescriptor
from mdshell.models.request import HandleRequest

__all__ = [
    # documents
    "LinkDescriptor",
    "FrontMatter",
    # cache
    "StoredResponse",
    # request
    "HandleRequest",
]
