"""Insert-only import of snapshot records into the target store."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from . import config
from .errors import StoreConflict, StoreUnavailable
from .logging_utils import _scraper_event
from .models import AuthorInfo, Record, clean_tags, derive_author, tag_slug
from .progress import ProgressFile
from .snapshot import load_snapshot
from .store import Store, open_store
from .utils import ensure_dirs, image_filename, log_line, setup_run_logger, short_error_message

PROBE_EXTENSIONS = ("jpeg", "jpg", "png", "webp", "gif")
MAX_ERROR_SAMPLES = 10


@dataclass
class ReconcileSummary:
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    error_messages: list[str] = field(default_factory=list)

    def record_error(self, message: str) -> None:
        self.errors += 1
        if len(self.error_messages) < MAX_ERROR_SAMPLES:
            self.error_messages.append(message)


def image_path_for(
    title: str,
    url: str,
    position: int,
    images_dir: Path,
    url_prefix: str,
) -> str:
    """Return the public path of the local copy of ``url``.

    Already-local paths pass through. Otherwise the downloader's filename is
    rebuilt and the images directory checked for the same stem under common
    extensions; the expected name is returned when nothing is on disk.
    """

    if not url.startswith("http"):
        return url

    prefix = url_prefix.rstrip("/")
    expected = image_filename(title, url, position)
    stem = expected.rsplit(".", 1)[0]
    candidates = [expected, *(f"{stem}.{ext}" for ext in PROBE_EXTENSIONS)]
    for name in candidates:
        if (Path(images_dir) / name).is_file():
            return f"{prefix}/{name}"
    return f"{prefix}/{expected}"


def find_or_create_tag(store: Store, name: str) -> str:
    slug = tag_slug(name)
    existing = store.find_one("tags", slug=slug)
    if existing:
        return str(existing["id"])
    try:
        created = store.create(
            "tags", {"name": name, "slug": slug, "description": "", "prompt_count": 0}
        )
    except StoreConflict:
        existing = store.find_one("tags", slug=slug)
        if not existing:
            raise
        return str(existing["id"])
    return str(created["id"])


def find_or_create_author(store: Store, author: AuthorInfo) -> str:
    existing = store.find_one("authors", username=author.username)
    if existing:
        return str(existing["id"])
    try:
        created = store.create("authors", author.to_store())
    except StoreConflict:
        existing = store.find_one("authors", username=author.username)
        if not existing:
            raise
        return str(existing["id"])
    log_line(f"  Created author: @{author.username}")
    return str(created["id"])


def recompute_counters(store: Store) -> dict[str, int]:
    """Set ``prompt_count`` on tags and authors from the stored prompts.

    Returns how many rows of each collection were changed.
    """

    tag_counts: Counter[str] = Counter()
    author_counts: Counter[str] = Counter()
    for prompt in store.list("prompts"):
        for tag_id in set(prompt.get("tags") or []):
            tag_counts[str(tag_id)] += 1
        if prompt.get("author"):
            author_counts[str(prompt["author"])] += 1

    changed = {"tags": 0, "authors": 0}
    for collection, counts in (("tags", tag_counts), ("authors", author_counts)):
        for row in store.list(collection):
            count = counts.get(str(row["id"]), 0)
            if int(row.get("prompt_count") or 0) != count:
                store.update(collection, str(row["id"]), {"prompt_count": count})
                changed[collection] += 1

    _scraper_event("state", phase="counters", kind="recomputed", **changed)
    return changed


class Reconciler:
    """Turn snapshot records into prompts, never touching existing ones."""

    def __init__(
        self,
        cfg: config.PipelineConfig,
        store: Store,
        progress: Optional[ProgressFile] = None,
    ) -> None:
        self.cfg = cfg
        self.store = store
        self.progress = progress
        self._author_ids: dict[str, str] = {}
        self._tag_ids: dict[str, str] = {}

    def reconcile(self, records: Iterable[Record]) -> ReconcileSummary:
        summary = ReconcileSummary()
        resume_after = self.progress.last_id() if self.progress is not None else 0
        if resume_after:
            log_line(f"Resuming import after case {resume_after}")

        # Stable sort: among duplicate case numbers the first in page order wins.
        ordered = sorted(records, key=lambda record: record.case_number or 0)
        total = len(ordered)
        seen_cases: set[int] = set()

        for position, record in enumerate(ordered, start=1):
            case = record.case_number
            reason = self._skip_reason(record, case, resume_after, seen_cases)
            if reason:
                summary.skipped += 1
                _scraper_event("state", phase="import", kind="skip", reason=reason, case=case)
                continue
            seen_cases.add(case)

            try:
                if self.store.find_one("prompts", case_number=case):
                    summary.skipped += 1
                    _scraper_event(
                        "state", phase="import", kind="skip", reason="exists_ok", case=case
                    )
                else:
                    self.import_one(record)
                    summary.imported += 1
                    if summary.imported % 50 == 0:
                        log_line(f"  Imported {summary.imported} prompts...")
            except StoreConflict:
                summary.skipped += 1
                _scraper_event(
                    "state", phase="import", kind="skip", reason="duplicate_case", case=case
                )
            except StoreUnavailable:
                raise
            except Exception as exc:  # noqa: BLE001
                message = f"case {case}: {short_error_message(exc)}"
                log_line(f"  Error importing {message}")
                summary.record_error(message)
                continue

            # The resume key never moves past a record that failed in this run.
            if self.progress is not None and not summary.errors:
                self.progress.save(case, position, total)

        recompute_counters(self.store)
        if self.progress is not None:
            self.progress.clear()

        log_line(
            f"Import complete: {summary.imported} imported, {summary.skipped} skipped, "
            f"{summary.errors} errors"
        )
        return summary

    def _skip_reason(
        self,
        record: Record,
        case: Optional[int],
        resume_after: int,
        seen_cases: set[int],
    ) -> Optional[str]:
        if not record.has_prompt_text:
            return "no_prompt_text"
        if case is None:
            return "no_case_number"
        if case <= resume_after:
            return "resumed"
        if case in seen_cases:
            return "duplicate_case"
        return None

    def resolve_author(self, source_url: str) -> Optional[str]:
        author = derive_author(source_url)
        if author is None:
            return None
        if author.key not in self._author_ids:
            self._author_ids[author.key] = find_or_create_author(self.store, author)
        return self._author_ids[author.key]

    def resolve_tags(self, tags: Iterable[str]) -> list[str]:
        ids: list[str] = []
        for name in clean_tags(tags):
            slug = tag_slug(name)
            if slug not in self._tag_ids:
                self._tag_ids[slug] = find_or_create_tag(self.store, name)
            if self._tag_ids[slug] not in ids:
                ids.append(self._tag_ids[slug])
        return ids

    def import_one(self, record: Record) -> dict[str, Any]:
        images = [
            image_path_for(
                record.title, url, position, self.cfg.images_dir, self.cfg.images_url_prefix
            )
            for position, url in enumerate(record.all_images())
        ]
        data = {
            "case_number": record.case_number,
            "title": record.title,
            "prompt_text": record.prompt_text,
            "source_url": record.source_url,
            "thumbnail": images[0] if record.thumbnail and images else "",
            "view_count": 0,
            "prompt_count": record.prompt_count or 1,
            "author": self.resolve_author(record.source_url) or "",
            "tags": self.resolve_tags(record.tags),
            "images_list": images,
        }
        return self.store.create("prompts", data)


def run_import(
    cfg: config.PipelineConfig,
    *,
    store: Optional[Store] = None,
    snapshot_path: Optional[Path] = None,
) -> ReconcileSummary:
    ensure_dirs(cfg)
    setup_run_logger("import", cfg.log_dir)
    snapshot = load_snapshot(snapshot_path or cfg.snapshot_path)
    log_line(f"Loaded {snapshot.crawled_count} records from snapshot")
    store = store if store is not None else open_store(cfg)
    reconciler = Reconciler(cfg, store, ProgressFile(cfg.import_progress_path))
    return reconciler.reconcile(snapshot.records)


__all__ = [
    "ReconcileSummary",
    "Reconciler",
    "find_or_create_author",
    "find_or_create_tag",
    "image_path_for",
    "recompute_counters",
    "run_import",
]
