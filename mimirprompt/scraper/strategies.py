"""Extraction strategies for the prompt detail modal.

Each strategy is a pure function of a :class:`DetailContainer` returning
``None`` when it finds nothing, so heuristics can be chained with
:func:`first_success` and tested against static HTML.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, TypeVar
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from .models import clean_tags, dedupe

T = TypeVar("T")

MIN_SEGMENT_LENGTH = 20
MIN_BLOCK_LENGTH = 100

_SECTION_MARKER = re.compile(r"(?:提示词\s*\d*|\bPrompt\s+\d+)")
_COPY_AFFORDANCE = re.compile(r"复制|^[ \t]*Copy[ \t]*$", re.MULTILINE)
_UI_LABELS = ("提示词", "复制")
_PROSE_HINTS = ("[", "a ", "an ", "the ")


@dataclass(frozen=True)
class DetailContainer:
    """Parsed HTML of an opened detail view plus the page URL it came from."""

    root: Tag
    base_url: str = ""

    @classmethod
    def from_html(cls, html: str, base_url: str = "") -> "DetailContainer":
        soup = BeautifulSoup(html or "", "html5lib")
        return cls(root=soup.body or soup, base_url=base_url)

    def text(self) -> str:
        return self.root.get_text("\n")


Strategy = Callable[[DetailContainer], Optional[T]]


def first_success(strategies: Sequence[Strategy[T]], container: DetailContainer) -> Optional[T]:
    """Return the first non-empty result of ``strategies`` on ``container``."""

    for strategy in strategies:
        result = strategy(container)
        if result:
            return result
    return None


def _clean_text(value: str) -> str:
    lines = [line.strip() for line in value.splitlines()]
    text = "\n".join(line for line in lines if line)
    return text.strip()


def title_strategy(container: DetailContainer) -> Optional[str]:
    heading = container.root.find(["h1", "h2", "h3"])
    if heading is None:
        return None
    title = " ".join(heading.get_text(" ").split())
    return title or None


def attribution_strategy(container: DetailContainer) -> Optional[str]:
    for anchor in container.root.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if href.lower().startswith(("http://", "https://")):
            return href
    return None


def images_strategy(container: DetailContainer) -> Optional[list[str]]:
    sources = []
    for img in container.root.find_all("img"):
        src = str(img.get("src") or "").strip()
        if not src or src.startswith("data:"):
            continue
        sources.append(urljoin(container.base_url, src) if container.base_url else src)
    images = dedupe(sources)
    return images or None


def body_from_markers(container: DetailContainer) -> Optional[list[str]]:
    """Split the modal text on ``提示词 N`` section markers."""

    text = container.text()
    markers = list(_SECTION_MARKER.finditer(text))
    if not markers:
        return None

    segments = []
    for position, marker in enumerate(markers):
        end = markers[position + 1].start() if position + 1 < len(markers) else len(text)
        chunk = text[marker.end():end]
        chunk = _COPY_AFFORDANCE.sub("", chunk)
        chunk = _clean_text(chunk)
        if len(chunk) > MIN_SEGMENT_LENGTH:
            segments.append(chunk)
    return segments or None


def _looks_like_prose(text: str) -> bool:
    return any(hint in text for hint in _PROSE_HINTS)


def body_from_blocks(container: DetailContainer) -> Optional[list[str]]:
    """Fallback: the first long, prose-like block that is not a UI label."""

    for block in container.root.find_all("div"):
        text = _clean_text(block.get_text("\n"))
        if len(text) <= MIN_BLOCK_LENGTH:
            continue
        if any(label in text for label in _UI_LABELS):
            continue
        if _looks_like_prose(text):
            return [text]
    return None


def tags_strategy(container: DetailContainer) -> Optional[list[str]]:
    spans: Iterable[str] = (span.get_text(" ") for span in container.root.find_all("span"))
    tags = clean_tags(" ".join(text.split()) for text in spans)
    return tags or None


BODY_STRATEGIES: tuple[Strategy[list[str]], ...] = (body_from_markers, body_from_blocks)


__all__ = [
    "DetailContainer",
    "first_success",
    "title_strategy",
    "attribution_strategy",
    "images_strategy",
    "body_from_markers",
    "body_from_blocks",
    "tags_strategy",
    "BODY_STRATEGIES",
]
