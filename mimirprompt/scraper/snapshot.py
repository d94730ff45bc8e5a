"""Snapshot persistence for crawled records.

The snapshot is rewritten in full on every flush (temp file + ``replace``), so
a reader only ever sees a complete document, possibly from a partial run.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from .logging_utils import _scraper_event
from .models import Record
from .utils import log_line, utc_now_iso, write_json_atomic


@dataclass
class Snapshot:
    source: str
    crawled_at: Optional[str]
    total_found: int
    records: list[Record] = field(default_factory=list)

    @property
    def crawled_count(self) -> int:
        return len(self.records)

    @property
    def is_partial(self) -> bool:
        return self.crawled_count < self.total_found

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "crawledAt": self.crawled_at or utc_now_iso(),
            "totalFound": self.total_found,
            "crawledCount": self.crawled_count,
            "prompts": [record.to_dict() for record in self.records],
        }


class SnapshotWriter:
    """Writes the full accumulated record list on every flush."""

    def __init__(self, path: Path, source: str) -> None:
        self.path = Path(path)
        self.source = source
        self.flush_count = 0

    def flush(self, records: Sequence[Record], total_expected: int) -> Path:
        snapshot = Snapshot(
            source=self.source,
            crawled_at=utc_now_iso(),
            total_found=int(total_expected),
            records=list(records),
        )
        write_json_atomic(self.path, snapshot.to_dict())
        self.flush_count += 1
        log_line(f"Saved {snapshot.crawled_count} items to {self.path}")
        _scraper_event(
            "state",
            phase="snapshot",
            kind="flush",
            path=str(self.path),
            crawled=snapshot.crawled_count,
            total=snapshot.total_found,
        )
        return self.path


def load_snapshot(path: Path) -> Snapshot:
    """Read a snapshot; a partial run (``crawledCount < totalFound``) is fine."""

    with Path(path).open("r", encoding="utf-8") as handle:
        data = json.load(handle)

    prompts = data.get("prompts") or []
    records = [Record.from_dict(item) for item in prompts if isinstance(item, dict)]
    total_found = data.get("totalFound")
    snapshot = Snapshot(
        source=str(data.get("source") or ""),
        crawled_at=data.get("crawledAt"),
        total_found=int(total_found) if total_found is not None else len(records),
        records=records,
    )
    if snapshot.is_partial:
        log_line(
            f"Snapshot {path} is partial: {snapshot.crawled_count}/{snapshot.total_found} records"
        )
    return snapshot


def save_snapshot(path: Path, snapshot: Snapshot) -> None:
    """Rewrite ``snapshot`` in place, keeping its original crawl timestamp."""

    write_json_atomic(Path(path), snapshot.to_dict())


__all__ = ["Snapshot", "SnapshotWriter", "load_snapshot", "save_snapshot"]
