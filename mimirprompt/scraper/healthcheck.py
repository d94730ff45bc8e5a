from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Optional

from . import config
from .config_validation import validate_config
from .logging_utils import _scraper_event
from .snapshot import load_snapshot
from .store import Store, open_store
from .utils import ensure_dirs, log_line


@dataclass
class HealthResult:
    ok: bool
    checks: dict[str, dict[str, Any]]


def run_health_checks(
    cfg: Optional[config.PipelineConfig] = None,
    *,
    store: Optional[Store] = None,
    entrypoint: str = "cli",
) -> HealthResult:
    cfg = cfg or config.PipelineConfig.from_env()
    checks: dict[str, dict[str, Any]] = {}

    try:
        validate_config(cfg, "web" if entrypoint == "web" else "cli", mode="health")
        checks["config"] = {"ok": True}
    except ValueError as exc:
        checks["config"] = {"ok": False, "error": str(exc)}

    try:
        ensure_dirs(cfg)
        writable = os.access(cfg.data_dir, os.W_OK)
        checks["filesystem"] = {"ok": writable, "data_dir": str(cfg.data_dir)}
    except OSError as exc:
        checks["filesystem"] = {"ok": False, "data_dir": str(cfg.data_dir), "error": str(exc)}

    try:
        store = store if store is not None else open_store(cfg)
        checks["store"] = {
            "ok": True,
            "backend": cfg.store_backend,
            "prompts": store.count("prompts"),
        }
    except Exception as exc:  # noqa: BLE001
        checks["store"] = {"ok": False, "backend": cfg.store_backend, "error": str(exc)}

    # A missing snapshot only means nothing has been crawled yet.
    if cfg.snapshot_path.exists():
        try:
            snapshot = load_snapshot(cfg.snapshot_path)
            checks["snapshot"] = {
                "ok": True,
                "crawled": snapshot.crawled_count,
                "total_found": snapshot.total_found,
            }
        except (OSError, ValueError) as exc:
            checks["snapshot"] = {"ok": False, "error": str(exc)}
    else:
        checks["snapshot"] = {"ok": True, "present": False}

    overall_ok = all(check.get("ok", False) for check in checks.values())
    _scraper_event(
        "state" if overall_ok else "error",
        phase="health",
        context="healthcheck",
        ok=overall_ok,
        checks=checks,
    )
    return HealthResult(ok=overall_ok, checks=checks)


def log_health(result: HealthResult) -> None:
    for name, info in result.checks.items():
        status = "OK" if info.get("ok") else "FAIL"
        log_line(f"[HEALTH] {name}: {status} {info}")


__all__ = ["HealthResult", "log_health", "run_health_checks"]
