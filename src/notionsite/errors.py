from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    CONFIGURATION_MISSING = "CONFIGURATION_MISSING"
    BACKEND_REQUEST_FAILED = "BACKEND_REQUEST_FAILED"
    BACKEND_NOT_FOUND = "BACKEND_NOT_FOUND"
    IMAGE_NOT_FOUND = "IMAGE_NOT_FOUND"
    IMAGE_FETCH_FAILED = "IMAGE_FETCH_FAILED"


class NotionSiteError(Exception):
    """Raised for all expected failures talking to Notion or upstream media.

    Route and page refreshes catch it to fall back to stale or static data.
    Anything that reaches server.py is turned into a 5xx response there.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable


def missing_configuration(name: str) -> NotionSiteError:
    """Build the error raised when a required setting is absent at point of use."""
    return NotionSiteError(
        code=ErrorCode.CONFIGURATION_MISSING,
        message=f"{name} is missing.",
        suggestion=f"Set {name} in notionsite.yaml or the environment before running the site.",
        recoverable=False,
    )
