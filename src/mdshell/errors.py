from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    LINK_PARSE_FAILED = "LINK_PARSE_FAILED"
    FRONT_MATTER_INVALID = "FRONT_MATTER_INVALID"
    ORIGIN_FETCH_FAILED = "ORIGIN_FETCH_FAILED"
    MANIFEST_FETCH_FAILED = "MANIFEST_FETCH_FAILED"
    MANIFEST_INVALID = "MANIFEST_INVALID"
    SHELL_FETCH_FAILED = "SHELL_FETCH_FAILED"
    FETCH_TIMEOUT = "FETCH_TIMEOUT"
    TEMPLATE_INVALID = "TEMPLATE_INVALID"


class MdshellError(Exception):
    """Base class for every expected failure in the rendering pipeline.

    Subclasses mark how far an error may travel: parse errors are recovered
    where they are raised, manifest and shell failures degrade inside the
    pipeline, and origin fetch or template errors reach the interceptor.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "recoverable": self.recoverable,
            }
        }


class ParseError(MdshellError):
    """Malformed link-header entry or front-matter block."""


class FrontMatterError(ParseError):
    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.FRONT_MATTER_INVALID, message, recoverable=True)


class FetchError(MdshellError):
    """Network failure, timeout, or non-2xx response from an upstream fetch."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        url: str,
        status: int | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(code, message, recoverable=recoverable)
        self.url = url
        self.status = status

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["error"]["url"] = self.url
        if self.status is not None:
            payload["error"]["status"] = self.status
        return payload


class ManifestError(MdshellError):
    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.MANIFEST_INVALID, message, recoverable=True)


class TemplateError(MdshellError):
    """The shell template lacks a merge region. Indicates a misconfigured shell."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.TEMPLATE_INVALID, message, recoverable=False)
