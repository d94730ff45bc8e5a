"""Resumable progress side file shared by the import and translation passes."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from .utils import log_line, utc_now_iso, write_json_atomic


class ProgressFile:
    """``{lastId, count, total, timestamp}`` keyed on the last committed case number."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            log_line(f"Ignoring unreadable progress file {self.path}: {exc}")
            return None
        return data if isinstance(data, dict) else None

    def last_id(self) -> int:
        data = self.load() or {}
        try:
            return int(data.get("lastId") or 0)
        except (TypeError, ValueError):
            return 0

    def save(self, last_id: int, count: int, total: int) -> None:
        write_json_atomic(
            self.path,
            {
                "lastId": int(last_id),
                "count": int(count),
                "total": int(total),
                "timestamp": utc_now_iso(),
            },
        )

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            log_line(f"Progress file cleared: {self.path}")


__all__ = ["ProgressFile"]
