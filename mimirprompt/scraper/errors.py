"""Exception hierarchy shared by the pipeline components."""
from __future__ import annotations

from typing import Optional

from .error_codes import ErrorCode


class PipelineError(Exception):
    error_code: str = ErrorCode.INTERNAL

    def __init__(self, message: str, *, error_code: Optional[str] = None) -> None:
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code


class PageLoadTimeout(PipelineError):
    """The gallery list never appeared; the crawl cannot start."""

    error_code = ErrorCode.PAGE_LOAD_TIMEOUT


class DownloadError(PipelineError):
    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        http_status: Optional[int] = None,
    ) -> None:
        super().__init__(message, error_code=error_code or ErrorCode.NETWORK)
        self.http_status = http_status


class StoreError(PipelineError):
    pass


class StoreUnavailable(StoreError):
    """The target store cannot be reached or authenticated against."""

    error_code = ErrorCode.STORE_UNAVAILABLE


class StoreConflict(StoreError):
    """A unique key already exists; callers treat this as benign."""

    error_code = ErrorCode.STORE_CONFLICT


class NotFound(StoreError):
    error_code = ErrorCode.NOT_FOUND


class TranslationError(PipelineError):
    def __init__(self, message: str, *, http_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.http_status = http_status

    @property
    def is_rate_limited(self) -> bool:
        text = str(self).lower()
        return self.http_status == 429 or "429" in text or "quota" in text


__all__ = [
    "PipelineError",
    "PageLoadTimeout",
    "DownloadError",
    "StoreError",
    "StoreUnavailable",
    "StoreConflict",
    "NotFound",
    "TranslationError",
]
