"""Record and author types shared by the pipeline stages."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from .utils import parse_case_number

PROMPT_SEPARATOR = "\n\n---\n\n"

TAG_MIN_LENGTH = 2
TAG_MAX_LENGTH = 29
# Labels and button captions that leak into the tag spans of the modal.
TAG_NOISE_TOKENS = ("提示词", "复制", "Copy", "Prompt")

_AUTHOR_PATTERN = re.compile(r"(?:twitter\.com|x\.com)/([^/?#]+)/status", re.IGNORECASE)


def dedupe(values: Iterable[str]) -> list[str]:
    """Return ``values`` without duplicates or empties, first occurrence wins."""

    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def is_noise_tag(tag: str) -> bool:
    return any(token in tag for token in TAG_NOISE_TOKENS)


def clean_tags(tags: Iterable[str]) -> list[str]:
    """Strip, length-filter, drop noise tokens and de-duplicate ``tags``."""

    cleaned = []
    for tag in tags:
        text = (tag or "").strip()
        if not (TAG_MIN_LENGTH <= len(text) <= TAG_MAX_LENGTH):
            continue
        if is_noise_tag(text):
            continue
        cleaned.append(text)
    return dedupe(cleaned)


def tag_slug(tag: str) -> str:
    """Return the lookup key for ``tag``."""

    return tag.strip().casefold()


@dataclass
class Record:
    """One scraped gallery item."""

    index: int
    title: str
    thumbnail: str = ""
    source_url: str = ""
    images: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    prompt_text: str = ""
    prompt_count: int = 0
    error: Optional[str] = None

    @property
    def case_number(self) -> Optional[int]:
        return parse_case_number(self.title)

    @property
    def has_prompt_text(self) -> bool:
        return bool(self.prompt_text and self.prompt_text.strip())

    def all_images(self) -> list[str]:
        """Thumbnail first, then detail images, de-duplicated."""

        return dedupe([self.thumbnail, *self.images])

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "index": self.index,
            "title": self.title,
            "thumbnail": self.thumbnail,
            "sourceUrl": self.source_url,
            "images": list(self.images),
            "tags": list(self.tags),
            "promptText": self.prompt_text,
            "promptCount": self.prompt_count,
        }
        if self.error:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        return cls(
            index=int(data.get("index") or 0),
            title=str(data.get("title") or ""),
            thumbnail=str(data.get("thumbnail") or ""),
            source_url=str(data.get("sourceUrl") or ""),
            images=[str(url) for url in data.get("images") or [] if url],
            tags=[str(tag) for tag in data.get("tags") or [] if tag],
            prompt_text=str(data.get("promptText") or ""),
            prompt_count=int(data.get("promptCount") or 0),
            error=data.get("error") or None,
        )


@dataclass(frozen=True)
class AuthorInfo:
    username: str
    platform: str = "twitter"

    @property
    def key(self) -> str:
        return self.username.casefold()

    @property
    def profile_url(self) -> str:
        return f"https://x.com/{self.username}"

    def to_store(self) -> dict[str, Any]:
        return {
            "name": self.username,
            "username": self.username,
            "platform": self.platform,
            "profile_url": self.profile_url,
            "avatar_url": "",
            "bio": "",
            "prompt_count": 0,
        }


def derive_author(source_url: Optional[str]) -> Optional[AuthorInfo]:
    """Return the author of a social permalink such as ``x.com/<user>/status/1``."""

    if not source_url:
        return None
    match = _AUTHOR_PATTERN.search(source_url)
    if not match:
        return None
    return AuthorInfo(username=match.group(1))


__all__ = [
    "PROMPT_SEPARATOR",
    "Record",
    "AuthorInfo",
    "clean_tags",
    "dedupe",
    "derive_author",
    "is_noise_tag",
    "tag_slug",
]
