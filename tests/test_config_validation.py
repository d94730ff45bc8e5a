import dataclasses

import pytest

from mimirprompt.scraper import config
from mimirprompt.scraper.config_validation import validate_config


def _cfg(**overrides) -> config.PipelineConfig:
    return dataclasses.replace(config.PipelineConfig(store_backend="sqlite"), **overrides)


def test_pocketbase_requires_credentials() -> None:
    cfg = _cfg(store_backend="pocketbase", admin_email="", admin_password="")
    with pytest.raises(ValueError):
        validate_config(cfg, "cli", mode="import")


def test_pocketbase_credentials_not_needed_for_crawl() -> None:
    cfg = _cfg(store_backend="pocketbase", admin_email="", admin_password="")
    assert validate_config(cfg, "cli", mode="crawl") is cfg


def test_translate_requires_api_key() -> None:
    with pytest.raises(ValueError):
        validate_config(_cfg(translate_api_key=""), "cli", mode="translate")


def test_unknown_backend_rejected() -> None:
    with pytest.raises(ValueError):
        validate_config(_cfg(store_backend="mysql"), "tests")


def test_invalid_timeout() -> None:
    with pytest.raises(ValueError):
        validate_config(_cfg(nav_timeout_seconds=0), "cli")


def test_count_knobs_clamped() -> None:
    cfg = _cfg(concurrency=0, retry_attempts=-2, flush_every=0, retry_delay_seconds=-1.0)

    effective = validate_config(cfg, "tests")

    assert effective.concurrency == 1
    assert effective.retry_attempts == 1
    assert effective.flush_every == 1
    assert effective.retry_delay_seconds == 0.0
    assert cfg.concurrency == 0
