import json
from pathlib import Path

from mimirprompt.scraper.models import Record
from mimirprompt.scraper.snapshot import SnapshotWriter, load_snapshot, save_snapshot


def _records(count: int) -> list[Record]:
    return [
        Record(
            index=index,
            title=f"Case {index + 1}: Item",
            thumbnail=f"https://cdn.example.com/{index}.jpg",
            prompt_text="a long enough prompt body for the record",
            prompt_count=1,
        )
        for index in range(count)
    ]


def test_flush_replaces_whole_document(tmp_path: Path) -> None:
    path = tmp_path / "prompts.json"
    writer = SnapshotWriter(path, "https://example.com/gallery")

    writer.flush(_records(2), 5)
    writer.flush(_records(4), 5)

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert set(payload) == {"source", "crawledAt", "totalFound", "crawledCount", "prompts"}
    assert payload["source"] == "https://example.com/gallery"
    assert payload["totalFound"] == 5
    assert payload["crawledCount"] == 4
    assert len(payload["prompts"]) == 4
    assert payload["prompts"][0]["promptText"].startswith("a long enough")
    assert not (tmp_path / "prompts.json.tmp").exists()
    assert writer.flush_count == 2


def test_load_partial_snapshot(tmp_path: Path) -> None:
    path = tmp_path / "prompts.json"
    SnapshotWriter(path, "src").flush(_records(2), 10)

    snapshot = load_snapshot(path)

    assert snapshot.crawled_count == 2
    assert snapshot.total_found == 10
    assert snapshot.is_partial is True
    assert snapshot.records[1].title == "Case 2: Item"


def test_save_snapshot_keeps_crawl_timestamp(tmp_path: Path) -> None:
    path = tmp_path / "prompts.json"
    SnapshotWriter(path, "src").flush(_records(1), 1)
    snapshot = load_snapshot(path)
    original_ts = snapshot.crawled_at

    snapshot.records[0].thumbnail = "/images/1_Item.jpg"
    save_snapshot(path, snapshot)

    reloaded = load_snapshot(path)
    assert reloaded.crawled_at == original_ts
    assert reloaded.records[0].thumbnail == "/images/1_Item.jpg"
