"""Page abstraction consumed by the extractor, and its Playwright adapter."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Protocol

from playwright.sync_api import Error as PWError
from playwright.sync_api import Page as PWPage
from playwright.sync_api import TimeoutError as PWTimeout
from playwright.sync_api import sync_playwright

from . import config
from .utils import log_line


class Page(Protocol):
    """The browser primitives the extractor relies on."""

    @property
    def url(self) -> str: ...

    def goto(self, url: str, timeout_s: float) -> None: ...

    def wait_for(self, selector: str, timeout_s: float) -> bool: ...

    def outer_html_all(self, selector: str) -> list[str]: ...

    def inner_html(self, selector: str) -> Optional[str]: ...

    def click_nth(self, selector: str, index: int) -> None: ...

    def click(self, selector: str, timeout_s: float) -> None: ...

    def press(self, key: str) -> None: ...

    def scroll_by(self, distance: int) -> int: ...

    def scroll_to_top(self) -> None: ...

    def scroll_to_end(self, selector: str) -> None: ...

    def pause(self, seconds: float) -> None: ...


class PlaywrightPage:
    """Adapt a Playwright sync ``Page`` to the :class:`Page` protocol."""

    def __init__(self, page: PWPage) -> None:
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    def goto(self, url: str, timeout_s: float) -> None:
        self._page.goto(url, wait_until="domcontentloaded", timeout=int(timeout_s * 1000))

    def wait_for(self, selector: str, timeout_s: float) -> bool:
        try:
            self._page.wait_for_selector(selector, timeout=int(timeout_s * 1000))
        except PWTimeout:
            return False
        return True

    def outer_html_all(self, selector: str) -> list[str]:
        return list(
            self._page.eval_on_selector_all(selector, "els => els.map(el => el.outerHTML)")
        )

    def inner_html(self, selector: str) -> Optional[str]:
        handle = self._page.query_selector(selector)
        if handle is None:
            return None
        return handle.inner_html()

    def click_nth(self, selector: str, index: int) -> None:
        # Click through the DOM rather than the mouse.
        self._page.evaluate(
            "([sel, idx]) => { const els = document.querySelectorAll(sel);"
            " if (els[idx]) { els[idx].click(); } }",
            [selector, index],
        )

    def click(self, selector: str, timeout_s: float) -> None:
        self._page.click(selector, timeout=int(timeout_s * 1000))

    def press(self, key: str) -> None:
        self._page.keyboard.press(key)

    def scroll_by(self, distance: int) -> int:
        return int(
            self._page.evaluate(
                "d => { window.scrollBy(0, d); return Math.round(window.scrollY); }",
                distance,
            )
        )

    def scroll_to_top(self) -> None:
        self._page.evaluate("window.scrollTo(0, 0)")

    def scroll_to_end(self, selector: str) -> None:
        self._page.evaluate(
            "sel => { const el = document.querySelector(sel);"
            " if (el) { el.scrollTop = el.scrollHeight; } }",
            selector,
        )

    def pause(self, seconds: float) -> None:
        if seconds and seconds > 0 and not self._page.is_closed():
            self._page.wait_for_timeout(int(seconds * 1000))


@contextmanager
def open_browser_page(cfg: config.PipelineConfig) -> Iterator[PlaywrightPage]:
    """Launch Chromium and yield a wrapped page; every object is closed after."""

    with sync_playwright() as pw:
        browser = pw.chromium.launch(headless=cfg.headless)
        context = browser.new_context(user_agent=config.USER_AGENT)
        page = context.new_page()
        try:
            yield PlaywrightPage(page)
        finally:
            for closable in (page, context, browser):
                try:
                    closable.close()
                except PWError as exc:
                    name = type(closable).__name__
                    log_line(f"Error closing Playwright object {name}: {exc}")


__all__ = ["Page", "PlaywrightPage", "open_browser_page"]
