from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Optional

import pytest
import requests

from mimirprompt.scraper import downloader
from mimirprompt.scraper.downloader import (
    BatchDownloader,
    DownloadItem,
    localize_records,
    plan_downloads,
    write_error_log,
)
from mimirprompt.scraper.models import Record
from tests.test_store_sqlite import _configure_temp_paths


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        body: bytes = b"\x89PNGdata",
        headers: Optional[dict[str, str]] = None,
        fail_mid_stream: bool = False,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self.fail_mid_stream = fail_mid_stream
        self.closed = False

    def iter_content(self, chunk_size: int = 8192):
        yield self.body[:2]
        if self.fail_mid_stream:
            raise requests.ConnectionError("connection reset")
        yield self.body[2:]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Serve scripted responses per URL; the last response repeats."""

    def __init__(self, routes: dict[str, list[FakeResponse]], delay: float = 0.0) -> None:
        self.routes = {url: list(responses) for url, responses in routes.items()}
        self.calls: list[str] = []
        self.delay = delay
        self.in_flight = 0
        self.peak_in_flight = 0
        self._lock = threading.Lock()

    def get(self, url: str, *, stream: bool, timeout: float, allow_redirects: bool):
        assert stream is True
        assert allow_redirects is False
        with self._lock:
            self.calls.append(url)
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            responses = self.routes[url]
            response = responses.pop(0) if len(responses) > 1 else responses[0]
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.in_flight -= 1
        if isinstance(response, Exception):
            raise response
        return response


def _item(tmp_path: Path, url: str, name: str) -> DownloadItem:
    return DownloadItem(url=url, dest_path=tmp_path / "images" / name)


def test_plan_downloads_names_thumbnail_then_images(tmp_path: Path) -> None:
    record = Record(
        index=0,
        title="案例 7：Paper boat",
        thumbnail="https://cdn.example.com/t.jpg",
        images=[
            "https://cdn.example.com/t.jpg",
            "https://cdn.example.com/full.png",
            "/images/already-local.png",
        ],
    )

    items = plan_downloads([record], tmp_path)

    assert [(item.url, item.dest_path.name) for item in items] == [
        ("https://cdn.example.com/t.jpg", "7_Paper_boat.jpg"),
        ("https://cdn.example.com/full.png", "7_Paper_boat_2.png"),
    ]


def test_plan_downloads_first_record_claims_shared_file_name(tmp_path: Path) -> None:
    first = Record(index=0, title="案例 9：Boat", images=["https://a.example.com/x.jpg"])
    second = Record(
        index=1,
        title="案例 9：Boat",
        images=["https://b.example.com/y.jpg", "https://b.example.com/z.png"],
    )

    items = plan_downloads([first, second], tmp_path)

    assert [(item.url, item.dest_path.name) for item in items] == [
        ("https://a.example.com/x.jpg", "9_Boat.jpg"),
        ("https://b.example.com/z.png", "9_Boat_2.png"),
    ]


def test_same_title_records_download_without_collisions(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    cfg = _configure_temp_paths(tmp_path, monkeypatch, concurrency=2)
    records = [
        Record(index=0, title="案例 9：Boat", images=["https://a.example.com/x.jpg"]),
        Record(index=1, title="案例 9：Boat", images=["https://b.example.com/y.jpg"]),
    ]
    session = FakeSession(
        {
            "https://a.example.com/x.jpg": [FakeResponse(body=b"first-body")],
            "https://b.example.com/y.jpg": [FakeResponse(body=b"second-longer-body")],
        },
        delay=0.02,
    )

    items = plan_downloads(records, cfg.images_dir)
    summary = BatchDownloader(cfg, session).download_all(items)

    assert summary.downloaded == 1
    assert summary.failed == 0
    assert session.calls == ["https://a.example.com/x.jpg"]
    assert (cfg.images_dir / "9_Boat.jpg").read_bytes() == b"first-body"
    assert not (cfg.images_dir / "9_Boat.jpg.part").exists()


def test_second_run_skips_everything_without_network(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    cfg = _configure_temp_paths(tmp_path, monkeypatch)
    urls = [f"https://cdn.example.com/{n}.jpg" for n in range(3)]
    items = [_item(tmp_path, url, f"{n}.jpg") for n, url in enumerate(urls)]

    first = BatchDownloader(cfg, FakeSession({url: [FakeResponse()] for url in urls}))
    summary = first.download_all(items)
    assert (summary.downloaded, summary.skipped, summary.failed) == (3, 0, 0)

    session = FakeSession({url: [FakeResponse()] for url in urls})
    again = BatchDownloader(cfg, session).download_all(items)

    assert (again.downloaded, again.skipped, again.failed) == (0, 3, 0)
    assert session.calls == []


def test_redirect_is_followed_and_counted_as_downloaded(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    cfg = _configure_temp_paths(tmp_path, monkeypatch)
    url = "https://cdn.example.com/moved.png"
    session = FakeSession(
        {
            url: [FakeResponse(302, headers={"Location": "/real/moved.png"})],
            "https://cdn.example.com/real/moved.png": [FakeResponse(body=b"realbytes")],
        }
    )
    item = _item(tmp_path, url, "moved.png")

    summary = BatchDownloader(cfg, session).download_all([item])

    assert summary.downloaded == 1
    assert summary.failed == 0
    assert item.dest_path.read_bytes() == b"realbytes"
    assert session.calls == [url, "https://cdn.example.com/real/moved.png"]


def test_persistent_server_error_fails_after_retry_budget(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    cfg = _configure_temp_paths(tmp_path, monkeypatch, retry_attempts=3)
    url = "https://cdn.example.com/broken.jpg"
    session = FakeSession({url: [FakeResponse(500)]})
    item = _item(tmp_path, url, "broken.jpg")

    summary = BatchDownloader(cfg, session).download_all([item])

    assert summary.failed == 1
    assert summary.downloaded == 0
    assert len(session.calls) == 3
    assert summary.errors[0]["url"] == url
    assert "HTTP 500" in summary.errors[0]["error"]
    assert not item.dest_path.exists()
    assert not item.dest_path.with_name("broken.jpg.part").exists()

    log_path = write_error_log(summary.errors, cfg.download_errors_log)
    content = log_path.read_text(encoding="utf-8")
    assert content.startswith(f"{url}\n  Error: HTTP 500")


def test_transient_errors_retry_then_succeed(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    cfg = _configure_temp_paths(tmp_path, monkeypatch, retry_attempts=3)
    url = "https://cdn.example.com/flaky.jpg"
    session = FakeSession(
        {url: [requests.Timeout("slow"), FakeResponse(503), FakeResponse(body=b"ok")]}
    )
    item = _item(tmp_path, url, "flaky.jpg")

    summary = BatchDownloader(cfg, session).download_all([item])

    assert summary.downloaded == 1
    assert len(session.calls) == 3
    assert item.dest_path.read_bytes() == b"ok"


def test_broken_stream_leaves_no_partial_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    cfg = _configure_temp_paths(tmp_path, monkeypatch, retry_attempts=2)
    url = "https://cdn.example.com/cut.jpg"
    session = FakeSession({url: [FakeResponse(fail_mid_stream=True)]})
    item = _item(tmp_path, url, "cut.jpg")

    summary = BatchDownloader(cfg, session).download_all([item])

    assert summary.failed == 1
    assert "connection reset" in summary.errors[0]["error"]
    assert list((tmp_path / "images").iterdir()) == []


def test_batches_never_exceed_concurrency(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    cfg = _configure_temp_paths(tmp_path, monkeypatch, concurrency=2)
    urls = [f"https://cdn.example.com/b{n}.jpg" for n in range(5)]
    session = FakeSession({url: [FakeResponse()] for url in urls}, delay=0.02)
    items = [_item(tmp_path, url, f"b{n}.jpg") for n, url in enumerate(urls)]

    summary = BatchDownloader(cfg, session).download_all(items)

    assert summary.downloaded == 5
    assert session.peak_in_flight <= 2
    assert sorted(session.calls) == sorted(urls)


def test_write_error_log_skips_when_no_errors(tmp_path: Path) -> None:
    assert write_error_log([], tmp_path / "errors.log") is None
    assert not (tmp_path / "errors.log").exists()


def test_write_error_log_separates_entries(tmp_path: Path) -> None:
    errors = [
        {"url": "https://a.example/1.jpg", "error": "HTTP 404 for https://a.example/1.jpg"},
        {"url": "https://a.example/2.jpg", "error": "Timeout"},
    ]

    path = write_error_log(errors, tmp_path / "errors.log")

    assert path.read_text(encoding="utf-8") == (
        "https://a.example/1.jpg\n  Error: HTTP 404 for https://a.example/1.jpg"
        "\n\n"
        "https://a.example/2.jpg\n  Error: Timeout"
    )


def test_localize_records_rewrites_existing_files_only(tmp_path: Path) -> None:
    images_dir = tmp_path / "images"
    images_dir.mkdir()
    (images_dir / "3_Moon.jpg").write_bytes(b"x")
    record = Record(
        index=0,
        title="Case 3: Moon",
        thumbnail="https://cdn.example.com/moon.jpg",
        images=["https://cdn.example.com/moon.jpg", "https://cdn.example.com/moon-2.png"],
    )

    rewritten = localize_records([record], images_dir, downloader.config.IMAGES_URL_PREFIX)

    assert rewritten == 1
    assert record.thumbnail == "/images/3_Moon.jpg"
    assert record.images == ["/images/3_Moon.jpg", "https://cdn.example.com/moon-2.png"]
