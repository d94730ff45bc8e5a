"""Gallery extraction: card list, detail modal and incremental snapshots."""
from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, ContextManager, Iterator, Optional

from . import config
from .error_codes import ErrorCode
from .errors import PageLoadTimeout
from .logging_utils import _scraper_event
from .models import PROMPT_SEPARATOR, Record
from .page import Page, open_browser_page
from .snapshot import SnapshotWriter
from .strategies import (
    BODY_STRATEGIES,
    DetailContainer,
    attribution_strategy,
    first_success,
    images_strategy,
    tags_strategy,
    title_strategy,
)
from .utils import ensure_dirs, log_line, setup_run_logger, short_error_message

CARD_SELECTOR = "article.prompt-card"
DETAIL_SELECTOR = "div.modal-content"
CLOSE_SELECTOR = "button#modalClose"
CANCEL_KEY = "Escape"
DETAIL_NOT_FOUND = "DetailNotFound"

RENDER_SETTLE_SECONDS = 5.0
SCROLL_STEP_PAUSE_SECONDS = 0.15
DETAIL_SETTLE_SECONDS = 0.8
DETAIL_SCROLL_SETTLE_SECONDS = 0.5
CLOSE_SETTLE_SECONDS = 0.3
CLOSE_TIMEOUT_SECONDS = 1.5
PROGRESS_EVERY = 10


@dataclass(frozen=True)
class CardSummary:
    """Fields read from a card in the first, side-effect-free pass."""

    index: int
    title: str
    thumbnail: str

    def degraded(self, error: str) -> Record:
        return Record(
            index=self.index,
            title=self.title,
            thumbnail=self.thumbnail,
            images=[self.thumbnail] if self.thumbnail else [],
            error=error,
        )


@dataclass
class CrawlSummary:
    total_found: int
    crawled: int
    with_prompts: int
    snapshot_path: Path
    cancelled: bool = False


def parse_card(html: str, index: int, base_url: str = "") -> CardSummary:
    """Read title and thumbnail from a card's outer HTML."""

    container = DetailContainer.from_html(html, base_url)
    heading = container.root.find("h3")
    title = " ".join(heading.get_text(" ").split()) if heading is not None else ""
    images = images_strategy(container) or []
    return CardSummary(
        index=index,
        title=title or f"Prompt {index + 1}",
        thumbnail=images[0] if images else "",
    )


def _best_effort(action: Callable[[], object], label: str) -> bool:
    """Run a cleanup action whose failure must not stop the crawl.

    The boolean result is informational; callers are free to discard it.
    """

    try:
        action()
    except Exception as exc:  # noqa: BLE001
        _scraper_event("state", phase="best_effort", action=label, ok=False, error=str(exc))
        return False
    return True


class Extractor:
    """Drive one page through the gallery, one card at a time."""

    def __init__(
        self,
        cfg: config.PipelineConfig,
        writer: Optional[SnapshotWriter] = None,
    ) -> None:
        self.cfg = cfg
        self.writer = writer
        self.cancelled = False
        self.total_found = 0

    def extract(self, page: Page, cancel: Optional[threading.Event] = None) -> list[Record]:
        if not page.wait_for(CARD_SELECTOR, self.cfg.list_timeout_seconds):
            raise PageLoadTimeout(
                f"No {CARD_SELECTOR} elements within {self.cfg.list_timeout_seconds}s"
            )
        log_line("Prompt cards detected")
        page.pause(RENDER_SETTLE_SECONDS)

        self.reveal_all(page)
        cards = self.read_cards(page)
        total = len(cards)
        self.total_found = total
        log_line(f"Found {total} prompt cards on page")

        records: list[Record] = []
        try:
            for card in cards:
                if cancel is not None and cancel.is_set():
                    self.cancelled = True
                    log_line(
                        f"Crawl interrupted after {len(records)}/{total} items; saving progress"
                    )
                    _scraper_event(
                        "state",
                        phase="extract",
                        kind="cancelled",
                        crawled=len(records),
                        total=total,
                    )
                    break

                record = self.extract_one(page, card)
                records.append(record)

                position = len(records)
                if position % PROGRESS_EVERY == 0 or position == 1:
                    marker = "yes" if record.has_prompt_text else "no"
                    log_line(f"  {position}/{total}: {record.title[:35]}... (prompt: {marker})")

                if self.writer is not None and position % max(1, self.cfg.flush_every) == 0:
                    self.writer.flush(records, total)
        finally:
            if self.writer is not None:
                self.writer.flush(records, total)
        return records

    def reveal_all(self, page: Page) -> int:
        """Scroll in fixed steps until the offset stops advancing or the cap hits."""

        last_offset = -1
        steps = 0
        while steps < self.cfg.scroll_max_steps:
            offset = page.scroll_by(self.cfg.scroll_step_px)
            steps += 1
            if offset <= last_offset:
                break
            last_offset = offset
            page.pause(SCROLL_STEP_PAUSE_SECONDS)
        page.scroll_to_top()
        _scraper_event("nav", step="reveal", scrolls=steps, offset=last_offset)
        return steps

    def read_cards(self, page: Page) -> list[CardSummary]:
        return [
            parse_card(html, index, page.url)
            for index, html in enumerate(page.outer_html_all(CARD_SELECTOR))
        ]

    def extract_one(self, page: Page, card: CardSummary) -> Record:
        try:
            page.click_nth(CARD_SELECTOR, card.index)
            if not page.wait_for(DETAIL_SELECTOR, self.cfg.detail_timeout_seconds):
                _scraper_event(
                    "error",
                    phase="extract",
                    error_code=ErrorCode.DETAIL_NOT_FOUND,
                    index=card.index,
                )
                return card.degraded(DETAIL_NOT_FOUND)

            page.pause(DETAIL_SETTLE_SECONDS)
            page.scroll_to_end(DETAIL_SELECTOR)
            page.pause(DETAIL_SCROLL_SETTLE_SECONDS)

            html = page.inner_html(DETAIL_SELECTOR)
            if html is None:
                return card.degraded(DETAIL_NOT_FOUND)
            return self.record_from_detail(card, DetailContainer.from_html(html, page.url))
        except Exception as exc:  # noqa: BLE001
            message = short_error_message(exc)
            log_line(f"  Error on item {card.index}: {message[:40]}")
            _scraper_event("error", phase="extract", index=card.index, error=message)
            return card.degraded(message)
        finally:
            self.close_detail(page)

    def record_from_detail(self, card: CardSummary, container: DetailContainer) -> Record:
        segments = first_success(BODY_STRATEGIES, container) or []
        return Record(
            index=card.index,
            title=title_strategy(container) or card.title,
            thumbnail=card.thumbnail,
            source_url=attribution_strategy(container) or "",
            images=images_strategy(container) or [],
            tags=tags_strategy(container) or [],
            prompt_text=PROMPT_SEPARATOR.join(segments),
            prompt_count=len(segments),
        )

    def close_detail(self, page: Page) -> None:
        _best_effort(lambda: page.click(CLOSE_SELECTOR, CLOSE_TIMEOUT_SECONDS), "close_button")
        _best_effort(lambda: page.press(CANCEL_KEY), "cancel_key")
        page.pause(CLOSE_SETTLE_SECONDS)


@contextmanager
def _cancel_on_signals(cancel: threading.Event) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into ``cancel.set()`` for the duration of a crawl."""

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):  # noqa: ARG001
        log_line(f"Received signal {signum}; finishing current item")
        cancel.set()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def crawl(
    cfg: config.PipelineConfig,
    *,
    page_factory: Callable[[config.PipelineConfig], ContextManager[Page]] = open_browser_page,
    cancel: Optional[threading.Event] = None,
) -> CrawlSummary:
    """Crawl the gallery into ``cfg.snapshot_path``.

    Navigation failures and a missing card list are fatal and propagate.
    Per-item failures only degrade their own record.
    """

    ensure_dirs(cfg)
    setup_run_logger("crawl", cfg.log_dir)
    cancel = cancel or threading.Event()
    writer = SnapshotWriter(cfg.snapshot_path, cfg.source_url)
    extractor = Extractor(cfg, writer=writer)

    log_line(f"Starting prompt crawler for {cfg.source_url}")
    with page_factory(cfg) as page, _cancel_on_signals(cancel):
        try:
            page.goto(cfg.source_url, cfg.nav_timeout_seconds)
        except Exception as exc:  # noqa: BLE001
            _scraper_event("error", phase="nav", step="goto", url=cfg.source_url, error=str(exc))
            raise PageLoadTimeout(f"Cannot load {cfg.source_url}: {exc}") from exc

        records = extractor.extract(page, cancel=cancel)

    with_prompts = sum(1 for record in records if record.has_prompt_text)
    log_line(f"Crawling finished: {len(records)} items, {with_prompts} with prompts")
    return CrawlSummary(
        total_found=extractor.total_found,
        crawled=len(records),
        with_prompts=with_prompts,
        snapshot_path=cfg.snapshot_path,
        cancelled=extractor.cancelled,
    )


__all__ = [
    "CARD_SELECTOR",
    "DETAIL_SELECTOR",
    "DETAIL_NOT_FOUND",
    "CardSummary",
    "CrawlSummary",
    "Extractor",
    "crawl",
    "parse_card",
]
