from __future__ import annotations

import dataclasses
from typing import Literal

from . import config
from .logging_utils import _scraper_event
from .utils import log_line

Entrypoint = Literal["cli", "web", "tests"]

STORE_MODES = {"import", "translate", "authors", "web", "health"}
CLAMPED_FIELDS = ("concurrency", "retry_attempts", "flush_every", "translate_max_attempts")


def _raise_config_error(
    message: str, *, entrypoint: Entrypoint, error: str, mode: str | None
) -> None:
    _scraper_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
        mode=mode,
    )
    mode_fragment = f", mode={mode}" if mode else ""
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint}{mode_fragment})")
    raise ValueError(message)


def validate_config(
    cfg: config.PipelineConfig,
    entrypoint: Entrypoint = "cli",
    *,
    mode: str | None = None,
) -> config.PipelineConfig:
    """Validate ``cfg`` for the given entrypoint and return the effective config.

    Raises ``ValueError`` when a blocking misconfiguration is detected.
    Non-fatal adjustments (clamping count knobs to 1) are logged and applied
    to the returned copy.
    """

    if not str(cfg.source_url).startswith(("http://", "https://")):
        _raise_config_error(
            "source_url must be an http(s) URL.",
            entrypoint=entrypoint,
            error="source_url_invalid",
            mode=mode,
        )

    if config.is_pocketbase(cfg) and (mode is None or mode in STORE_MODES):
        if not cfg.store_url:
            _raise_config_error(
                "PB_URL is required for the pocketbase store backend.",
                entrypoint=entrypoint,
                error="store_url_missing",
                mode=mode,
            )
        if not cfg.admin_email or not cfg.admin_password:
            _raise_config_error(
                "ADMIN_EMAIL and ADMIN_PASS are required for the pocketbase store backend.",
                entrypoint=entrypoint,
                error="store_credentials_missing",
                mode=mode,
            )
    elif cfg.store_backend not in {"sqlite", "pocketbase"}:
        _raise_config_error(
            f"Unknown store backend {cfg.store_backend!r}; expected sqlite or pocketbase.",
            entrypoint=entrypoint,
            error="store_backend_invalid",
            mode=mode,
        )

    if mode == "translate" and not cfg.translate_api_key:
        _raise_config_error(
            "GEMINI_API_KEY is required for the translate pass.",
            entrypoint=entrypoint,
            error="translate_api_key_missing",
            mode=mode,
        )

    timeout_fields = [
        ("nav_timeout_seconds", cfg.nav_timeout_seconds),
        ("list_timeout_seconds", cfg.list_timeout_seconds),
        ("detail_timeout_seconds", cfg.detail_timeout_seconds),
        ("download_timeout_seconds", cfg.download_timeout_seconds),
    ]
    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
                mode=mode,
            )

    adjustments = {}
    for field_name in CLAMPED_FIELDS:
        value = getattr(cfg, field_name)
        if value < 1:
            adjustments[field_name] = 1
            _scraper_event(
                "state",
                phase="config",
                context="runtime_validation",
                kind="config_adjustment",
                field=field_name,
                value=value,
                adjusted=1,
                entrypoint=entrypoint,
                mode=mode,
            )
            log_line(f"[CONFIG] {field_name} < 1; clamping to 1.")

    if cfg.retry_delay_seconds < 0:
        adjustments["retry_delay_seconds"] = 0.0
        log_line("[CONFIG] retry_delay_seconds < 0; clamping to 0.")

    return dataclasses.replace(cfg, **adjustments) if adjustments else cfg


__all__ = ["validate_config", "Entrypoint"]
