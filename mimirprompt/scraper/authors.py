"""Link authors to stored prompts that were imported without one."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from . import config
from .models import Record, derive_author
from .reconciler import find_or_create_author, recompute_counters
from .snapshot import load_snapshot
from .store import Store, open_store
from .utils import ensure_dirs, log_line, setup_run_logger


@dataclass
class BackfillSummary:
    linked: int = 0
    unmatched: int = 0
    authors_created: int = 0


def backfill_authors(store: Store, records: Iterable[Record]) -> BackfillSummary:
    """Match prompts lacking an author to snapshot records by case number."""

    summary = BackfillSummary()
    by_case: dict[int, Record] = {}
    for record in records:
        case = record.case_number
        if case is not None and case not in by_case:
            by_case[case] = record

    known_authors = {str(row["id"]) for row in store.list("authors")}
    author_ids: dict[str, str] = {}
    for prompt in store.list("prompts", order_by="case_number"):
        if prompt.get("author"):
            continue
        record = by_case.get(int(prompt.get("case_number") or 0))
        source_url = (record.source_url if record else "") or prompt.get("source_url") or ""
        author = derive_author(source_url)
        if author is None:
            summary.unmatched += 1
            continue

        if author.key not in author_ids:
            author_ids[author.key] = find_or_create_author(store, author)
            if author_ids[author.key] not in known_authors:
                known_authors.add(author_ids[author.key])
                summary.authors_created += 1
        store.update("prompts", str(prompt["id"]), {"author": author_ids[author.key]})
        summary.linked += 1

    recompute_counters(store)
    log_line(
        f"Author backfill: {summary.linked} linked, {summary.unmatched} unmatched, "
        f"{summary.authors_created} authors created"
    )
    return summary


def run_backfill(
    cfg: config.PipelineConfig,
    *,
    store: Optional[Store] = None,
    snapshot_path: Optional[Path] = None,
) -> BackfillSummary:
    ensure_dirs(cfg)
    setup_run_logger("authors", cfg.log_dir)
    path = Path(snapshot_path or cfg.snapshot_path)
    records = load_snapshot(path).records if path.exists() else []
    store = store if store is not None else open_store(cfg)
    return backfill_authors(store, records)


__all__ = ["BackfillSummary", "backfill_authors", "run_backfill"]
