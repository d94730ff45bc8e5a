"""Centralised error code taxonomy for pipeline failures.

These codes appear in structured logs, download summaries and import
summaries so that a failure can be explained without reading a traceback.
"""
from __future__ import annotations


class ErrorCode:
    NETWORK = "network_error"
    TIMEOUT = "timeout"
    HTTP_4XX = "http_4xx"
    HTTP_404 = "http_404_not_found"
    HTTP_5XX = "http_5xx"
    RATE_LIMITED = "rate_limited"
    REDIRECT = "redirect_without_location"
    PAGE_LOAD_TIMEOUT = "page_load_timeout"
    DETAIL_NOT_FOUND = "detail_not_found"
    STORE_CONFLICT = "store_conflict"
    STORE_UNAVAILABLE = "store_unavailable"
    NOT_FOUND = "not_found"
    INTERNAL = "internal_error"


def classify_http_status(status: int | None) -> str:
    """Map an HTTP status to an :class:`ErrorCode` value."""

    if status is None:
        return ErrorCode.INTERNAL
    if status == 404:
        return ErrorCode.HTTP_404
    if status == 429:
        return ErrorCode.RATE_LIMITED
    if 400 <= status < 500:
        return ErrorCode.HTTP_4XX
    if status >= 500:
        return ErrorCode.HTTP_5XX
    return ErrorCode.INTERNAL


__all__ = ["ErrorCode", "classify_http_status"]
