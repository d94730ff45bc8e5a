from __future__ import annotations

from pathlib import Path

import pytest

from mimirprompt.scraper import reconciler
from mimirprompt.scraper.models import Record
from mimirprompt.scraper.progress import ProgressFile
from mimirprompt.scraper.reconciler import (
    Reconciler,
    image_path_for,
    recompute_counters,
    run_import,
)
from mimirprompt.scraper.snapshot import SnapshotWriter
from mimirprompt.scraper.store import SqliteStore
from tests.test_store_sqlite import _configure_temp_paths

PROMPT = "A quiet harbour at sunrise with fishing boats and soft fog"


def _record(case: int, **fields) -> Record:
    data = {
        "index": case - 1,
        "title": f"案例 {case}：Harbour {case}",
        "thumbnail": f"https://cdn.example.com/{case}.jpg",
        "source_url": "",
        "images": [f"https://cdn.example.com/{case}.jpg"],
        "tags": [],
        "prompt_text": PROMPT,
        "prompt_count": 1,
    }
    data.update(fields)
    return Record(**data)


@pytest.fixture
def env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    cfg = _configure_temp_paths(tmp_path, monkeypatch)
    store = SqliteStore(cfg.db_path)
    return cfg, store


def test_existing_prompts_are_never_updated(env) -> None:
    cfg, store = env
    Reconciler(cfg, store).reconcile([_record(1)])

    changed = _record(1, prompt_text="A completely different prompt body for the same case")
    summary = Reconciler(cfg, store).reconcile([changed])

    assert summary.imported == 0
    assert summary.skipped == 1
    stored = store.find_one("prompts", case_number=1)
    assert stored["prompt_text"] == PROMPT


def test_duplicate_case_numbers_in_one_batch(env) -> None:
    cfg, store = env
    first = _record(4, title="案例 4：First copy")
    second = _record(4, title="案例 4：Second copy")

    summary = Reconciler(cfg, store).reconcile([first, second])

    assert summary.imported == 1
    assert summary.skipped == 1
    assert store.count("prompts") == 1
    assert store.find_one("prompts", case_number=4)["title"] == "案例 4：First copy"


def test_records_without_text_or_case_number_are_skipped(env) -> None:
    cfg, store = env
    records = [
        _record(1, prompt_text="   "),
        _record(2, title="Untitled gallery item"),
        _record(3),
    ]

    summary = Reconciler(cfg, store).reconcile(records)

    assert summary.imported == 1
    assert summary.skipped == 2
    assert store.find_one("prompts", case_number=3) is not None


def test_tags_are_shared_by_slug_and_counted(env) -> None:
    cfg, store = env
    records = [
        _record(1, tags=["Portrait", "portrait", "复制", "Fog"]),
        _record(2, tags=["PORTRAIT"]),
    ]

    Reconciler(cfg, store).reconcile(records)

    tags = {row["slug"]: row for row in store.list("tags")}
    assert set(tags) == {"portrait", "fog"}
    assert tags["portrait"]["name"] == "Portrait"
    assert tags["portrait"]["prompt_count"] == 2
    assert tags["fog"]["prompt_count"] == 1
    first = store.find_one("prompts", case_number=1)
    assert len(first["tags"]) == 2


def test_authors_are_derived_and_deduplicated(env) -> None:
    cfg, store = env
    records = [
        _record(1, source_url="https://x.com/Alice/status/1"),
        _record(2, source_url="https://twitter.com/alice/status/2"),
        _record(3, source_url="https://example.com/post/3"),
    ]

    Reconciler(cfg, store).reconcile(records)

    authors = store.list("authors")
    assert len(authors) == 1
    assert authors[0]["username"] == "Alice"
    assert authors[0]["platform"] == "twitter"
    assert authors[0]["profile_url"] == "https://x.com/Alice"
    assert authors[0]["prompt_count"] == 2
    assert store.find_one("prompts", case_number=3)["author"] == ""


def test_images_point_at_local_files(env) -> None:
    cfg, store = env
    cfg.images_dir.mkdir(parents=True, exist_ok=True)
    (cfg.images_dir / "5_Harbour_5.png").write_bytes(b"x")
    record = _record(
        5,
        images=["https://cdn.example.com/5.jpg", "https://cdn.example.com/5-detail.webp"],
    )

    Reconciler(cfg, store).reconcile([record])

    stored = store.find_one("prompts", case_number=5)
    assert stored["thumbnail"] == "/images/5_Harbour_5.png"
    assert stored["images_list"] == ["/images/5_Harbour_5.png", "/images/5_Harbour_5_2.webp"]


def test_image_path_for_passes_local_paths_through(tmp_path: Path) -> None:
    assert image_path_for("Case 1: X", "/images/1_X.jpg", 0, tmp_path, "/images") == (
        "/images/1_X.jpg"
    )
    assert image_path_for("Case 1: X", "https://h/x.gif", 1, tmp_path, "/images/") == (
        "/images/1_X_2.gif"
    )


def test_resume_skips_committed_cases_and_clears_progress(env) -> None:
    cfg, store = env
    progress = ProgressFile(cfg.import_progress_path)
    progress.save(2, 2, 3)

    summary = Reconciler(cfg, store, progress).reconcile([_record(3), _record(1), _record(2)])

    assert summary.imported == 1
    assert summary.skipped == 2
    assert store.find_one("prompts", case_number=3) is not None
    assert store.find_one("prompts", case_number=1) is None
    assert not cfg.import_progress_path.exists()


def test_store_failures_are_counted_not_fatal(env, monkeypatch: pytest.MonkeyPatch) -> None:
    cfg, store = env
    original_create = store.create

    def _flaky_create(collection, data):
        if collection == "prompts" and data["case_number"] == 1:
            raise RuntimeError("disk I/O error")
        return original_create(collection, data)

    monkeypatch.setattr(store, "create", _flaky_create)

    summary = Reconciler(cfg, store).reconcile([_record(1), _record(2)])

    assert summary.imported == 1
    assert summary.errors == 1
    assert summary.error_messages == ["case 1: disk I/O error"]


def test_interrupted_run_retries_failed_case_on_resume(
    env, monkeypatch: pytest.MonkeyPatch
) -> None:
    cfg, store = env
    progress = ProgressFile(cfg.import_progress_path)
    original_create = store.create

    def _flaky_create(collection, data):
        if collection == "prompts" and data["case_number"] == 5:
            raise RuntimeError("disk I/O error")
        return original_create(collection, data)

    def _killed(store):
        raise KeyboardInterrupt

    monkeypatch.setattr(store, "create", _flaky_create)
    monkeypatch.setattr(reconciler, "recompute_counters", _killed)
    records = [_record(4), _record(5), _record(6)]

    with pytest.raises(KeyboardInterrupt):
        Reconciler(cfg, store, progress).reconcile(records)

    assert progress.last_id() == 4

    monkeypatch.setattr(store, "create", original_create)
    monkeypatch.setattr(reconciler, "recompute_counters", recompute_counters)
    summary = Reconciler(cfg, store, progress).reconcile(records)

    assert summary.imported == 1
    assert summary.skipped == 2
    assert store.find_one("prompts", case_number=5) is not None
    assert store.count("prompts") == 3
    assert not cfg.import_progress_path.exists()


def test_recompute_counters_resets_stale_counts(env) -> None:
    cfg, store = env
    tag = store.create("tags", {"name": "old", "slug": "old", "prompt_count": 9})

    changed = recompute_counters(store)

    assert changed == {"tags": 1, "authors": 0}
    assert store.find_one("tags", id=tag["id"])["prompt_count"] == 0


def test_run_import_reads_snapshot(env) -> None:
    cfg, store = env
    SnapshotWriter(cfg.snapshot_path, cfg.source_url).flush([_record(1), _record(2)], 2)

    summary = run_import(cfg, store=store)

    assert summary.imported == 2
    assert store.count("prompts") == 2
