"""Batch image downloads for crawled records."""
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence
from urllib.parse import urljoin

import requests

from . import config
from .error_codes import ErrorCode, classify_http_status
from .errors import DownloadError
from .logging_utils import _scraper_event
from .models import Record
from .retry_policy import decide_retry, fixed_delay
from .utils import image_filename, log_line

REDIRECT_STATUSES = {301, 302}
CHUNK_SIZE = 8192


@dataclass(frozen=True)
class DownloadItem:
    url: str
    dest_path: Path
    title: str = ""


@dataclass
class DownloadSummary:
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


def plan_downloads(records: Iterable[Record], images_dir: Path) -> list[DownloadItem]:
    """Map every network image of every record to its deterministic local path.

    Records sharing a title share file names; the first one in page order
    claims each path and later claims are dropped.
    """

    images_dir = Path(images_dir)
    items: list[DownloadItem] = []
    planned: set[Path] = set()
    for record in records:
        for position, url in enumerate(record.all_images()):
            if not url.startswith("http"):
                continue
            dest_path = images_dir / image_filename(record.title, url, position)
            if dest_path in planned:
                _scraper_event(
                    "state", phase="download", kind="duplicate_dest", url=url, dest=str(dest_path)
                )
                continue
            planned.add(dest_path)
            items.append(DownloadItem(url=url, dest_path=dest_path, title=record.title))
    return items


def build_session() -> requests.Session:
    session = requests.Session()
    session.headers.update(config.COMMON_HEADERS)
    return session


class BatchDownloader:
    """Fetch items in sequential batches of ``cfg.concurrency`` parallel downloads."""

    def __init__(self, cfg: config.PipelineConfig, session: Optional[Any] = None) -> None:
        self.cfg = cfg
        self.session = session if session is not None else build_session()
        self.batch_size = max(1, int(cfg.concurrency))
        self.max_attempts = max(1, int(cfg.retry_attempts))

    def download_all(self, items: Sequence[DownloadItem]) -> DownloadSummary:
        summary = DownloadSummary()
        total = len(items)
        with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
            for start in range(0, total, self.batch_size):
                batch = items[start:start + self.batch_size]
                futures = [(item, pool.submit(self._run_item, item)) for item in batch]
                for item, future in futures:
                    outcome, error = future.result()
                    if outcome == "skipped":
                        summary.skipped += 1
                    elif outcome == "downloaded":
                        summary.downloaded += 1
                        log_line(f"  Downloaded: {item.dest_path.name}")
                    else:
                        summary.failed += 1
                        summary.errors.append({"url": item.url, "error": error or "unknown error"})
                        log_line(f"  Failed: {item.url} - {error}")

                progress = min(start + self.batch_size, total)
                log_line(f"Progress: {progress}/{total} images processed")

        _scraper_event(
            "state",
            phase="download",
            kind="summary",
            downloaded=summary.downloaded,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        return summary

    def _run_item(self, item: DownloadItem) -> tuple[str, Optional[str]]:
        """Never raises: returns ``(outcome, error_message)``."""

        try:
            return self.download_one(item), None
        except DownloadError as exc:
            return "failed", str(exc)
        except Exception as exc:  # noqa: BLE001
            return "failed", f"{type(exc).__name__}: {exc}"

    def download_one(self, item: DownloadItem) -> str:
        if item.dest_path.exists():
            log_line(f"  Already exists: {item.dest_path.name}")
            return "skipped"

        item.dest_path.parent.mkdir(parents=True, exist_ok=True)
        attempt = 0
        while True:
            attempt += 1
            try:
                self._fetch(item.url, item.dest_path)
                _scraper_event(
                    "download", phase="image", url=item.url, attempt=attempt, ok=True
                )
                return "downloaded"
            except DownloadError as exc:
                if not decide_retry(
                    attempt,
                    self.max_attempts,
                    exc,
                    error_code=exc.error_code,
                    http_status=exc.http_status,
                ):
                    raise
            time.sleep(fixed_delay(self.cfg.retry_delay_seconds))

    def _fetch(self, url: str, dest_path: Path) -> None:
        """One attempt: follow a single 301/302 hop, then stream to disk."""

        response = self._get(url)
        try:
            if response.status_code in REDIRECT_STATUSES:
                location = response.headers.get("Location") or response.headers.get("location")
                if not location:
                    raise DownloadError(
                        f"HTTP {response.status_code} without Location for {url}",
                        error_code=ErrorCode.REDIRECT,
                        http_status=response.status_code,
                    )
                response.close()
                url = urljoin(url, location)
                response = self._get(url)

            status = int(response.status_code)
            if not 200 <= status < 300:
                raise DownloadError(
                    f"HTTP {status} for {url}",
                    error_code=classify_http_status(status),
                    http_status=status,
                )
            self._stream_to(response, dest_path)
        finally:
            response.close()

    def _get(self, url: str) -> Any:
        try:
            return self.session.get(
                url,
                stream=True,
                timeout=self.cfg.download_timeout_seconds,
                allow_redirects=False,
            )
        except requests.Timeout as exc:
            raise DownloadError("Timeout", error_code=ErrorCode.TIMEOUT) from exc
        except requests.RequestException as exc:
            raise DownloadError(str(exc), error_code=ErrorCode.NETWORK) from exc

    def _stream_to(self, response: Any, dest_path: Path) -> None:
        part_path = dest_path.with_name(dest_path.name + ".part")
        try:
            with part_path.open("wb") as handle:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        handle.write(chunk)
            part_path.replace(dest_path)
        except requests.RequestException as exc:
            part_path.unlink(missing_ok=True)
            raise DownloadError(str(exc), error_code=ErrorCode.NETWORK) from exc
        except BaseException:
            part_path.unlink(missing_ok=True)
            raise


def write_error_log(errors: Sequence[dict[str, str]], path: Path) -> Optional[Path]:
    """Write ``<url>\\n  Error: <message>`` entries separated by blank lines."""

    if not errors:
        return None
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    body = "\n\n".join(f"{entry['url']}\n  Error: {entry['error']}" for entry in errors)
    path.write_text(body, encoding="utf-8")
    log_line(f"Error log saved to: {path}")
    return path


def localize_records(
    records: Iterable[Record],
    images_dir: Path,
    url_prefix: str,
) -> int:
    """Point ``thumbnail``/``images`` at local files that exist; return rewrites."""

    images_dir = Path(images_dir)
    prefix = url_prefix.rstrip("/")
    rewritten = 0
    for record in records:
        local: dict[str, str] = {}
        for position, url in enumerate(record.all_images()):
            if not url.startswith("http"):
                continue
            name = image_filename(record.title, url, position)
            if (images_dir / name).is_file():
                local[url] = f"{prefix}/{name}"
        if not local:
            continue
        if record.thumbnail in local:
            record.thumbnail = local[record.thumbnail]
        record.images = [local.get(url, url) for url in record.images]
        rewritten += len(local)
    return rewritten


__all__ = [
    "DownloadItem",
    "DownloadSummary",
    "BatchDownloader",
    "plan_downloads",
    "write_error_log",
    "localize_records",
]
