from __future__ import annotations

from typing import Optional

from .error_codes import ErrorCode
from .logging_utils import _scraper_event

# Any non-2xx answer from an image host is retried until the budget runs out.
RETRYABLE_ERROR_CODES = {
    ErrorCode.NETWORK,
    ErrorCode.TIMEOUT,
    ErrorCode.HTTP_4XX,
    ErrorCode.HTTP_404,
    ErrorCode.HTTP_5XX,
    ErrorCode.RATE_LIMITED,
    ErrorCode.REDIRECT,
}

NON_RETRYABLE_ERROR_CODES = {
    ErrorCode.PAGE_LOAD_TIMEOUT,
    ErrorCode.STORE_CONFLICT,
    ErrorCode.STORE_UNAVAILABLE,
    ErrorCode.NOT_FOUND,
    # Logical skips – never retried.
    "exists_ok",
    "no_prompt_text",
    "no_case_number",
    "duplicate_case",
}


def fixed_delay(seconds: float) -> float:
    """Return the inter-attempt delay; attempts are spaced evenly."""

    return max(0.0, float(seconds))


def decide_retry(
    attempt_index: int,
    max_attempts: int,
    error: BaseException | None = None,
    *,
    error_code: Optional[str] = None,
    http_status: Optional[int] = None,
) -> bool:
    """Decide whether a failed attempt (1-based) should be retried."""

    if attempt_index >= max_attempts:
        _scraper_event(
            "state",
            phase="retry_decision",
            kind="capped",
            attempt=attempt_index,
            max_attempts=max_attempts,
            error_code=error_code,
            http_status=http_status,
            will_retry=False,
        )
        return False

    code = (error_code or "").strip()
    if code in NON_RETRYABLE_ERROR_CODES:
        _scraper_event(
            "state",
            phase="retry_decision",
            kind="non_retryable",
            error_code=code,
            attempt=attempt_index,
            max_attempts=max_attempts,
            http_status=http_status,
            will_retry=False,
        )
        return False

    if code in RETRYABLE_ERROR_CODES:
        _scraper_event(
            "state",
            phase="retry_decision",
            kind="retryable",
            error_code=code,
            attempt=attempt_index,
            max_attempts=max_attempts,
            http_status=http_status,
            will_retry=True,
        )
        return True

    if http_status is not None and http_status >= 500:
        _scraper_event(
            "state",
            phase="retry_decision",
            kind="retryable",
            error_code=code or None,
            attempt=attempt_index,
            max_attempts=max_attempts,
            http_status=http_status,
            will_retry=True,
        )
        return True

    # Unknown context: allow a single retry if the budget permits.
    fallback_retry = attempt_index < max_attempts - 1
    _scraper_event(
        "state",
        phase="retry_decision",
        kind="unknown" if code else "missing_error_code",
        error_code=code or None,
        attempt=attempt_index,
        max_attempts=max_attempts,
        http_status=http_status,
        will_retry=fallback_retry,
        error_repr=repr(error) if error is not None else None,
    )
    return fallback_retry


__all__ = [
    "decide_retry",
    "fixed_delay",
    "RETRYABLE_ERROR_CODES",
    "NON_RETRYABLE_ERROR_CODES",
]
