"""In-place Chinese-to-English translation of stored prompts."""
from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

from . import config
from .error_codes import ErrorCode
from .errors import TranslationError
from .logging_utils import _scraper_event
from .progress import ProgressFile
from .retry_policy import decide_retry
from .store import Store, open_store
from .utils import ensure_dirs, log_line, setup_run_logger, short_error_message

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
REQUEST_TIMEOUT_SECONDS = 60
CHUNK_THRESHOLD = 10000
MIN_CHUNK_LENGTH = 10

TITLE_INSTRUCTION = (
    "Translate this Chinese title to English. Keep it concise. "
    "Only return the translation, nothing else:\n\n"
)
TEXT_INSTRUCTION = (
    "Translate the following Chinese text to English. Keep the original formatting "
    "and structure. Only return the translation, nothing else:\n\n"
)

_CHINESE = re.compile(r"[\u4e00-\u9fff]")
_CASE_PREFIX = re.compile(r"^案例\s*(\d+)[：:]\s*")
_PARAGRAPH_BREAK = re.compile(r"\n{2,}")

Translate = Callable[..., str]


@dataclass
class TranslationSummary:
    translated: int = 0
    failed: int = 0


def contains_chinese(text: Optional[str]) -> bool:
    return bool(text) and bool(_CHINESE.search(text))


def translate_title(title: str, translate: Translate) -> str:
    """Translate ``title``, turning a ``案例 N：`` prefix into ``Case N: ``."""

    if not title:
        return title
    prefix = ""
    rest = title
    match = _CASE_PREFIX.match(title)
    if match:
        prefix = f"Case {match.group(1)}: "
        rest = title[match.end():]
    if not contains_chinese(rest):
        return prefix + rest
    return prefix + translate(rest, is_title=True)


class GeminiTranslator:
    """Callable ``(text, is_title=False) -> str`` backed by the Gemini REST API.

    Any failure other than rate limiting returns ``text`` unchanged.
    """

    def __init__(self, cfg: config.PipelineConfig, session: Optional[Any] = None) -> None:
        self.cfg = cfg
        self.session = session if session is not None else requests.Session()
        self.url = GEMINI_ENDPOINT.format(model=cfg.translate_model)

    def __call__(self, text: str, is_title: bool = False) -> str:
        if not contains_chinese(text):
            return text

        instruction = TITLE_INSTRUCTION if is_title else TEXT_INSTRUCTION
        max_attempts = max(1, int(self.cfg.translate_max_attempts))
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._generate(instruction + text)
            except TranslationError as exc:
                log_line(f"  Gemini error: {exc}")
                if not exc.is_rate_limited:
                    return text
                if not decide_retry(
                    attempt,
                    max_attempts,
                    exc,
                    error_code=ErrorCode.RATE_LIMITED,
                    http_status=exc.http_status,
                ):
                    return text
                log_line(
                    f"  Rate limited. Waiting {self.cfg.translate_rate_limit_wait_seconds:g}s..."
                )
                time.sleep(self.cfg.translate_rate_limit_wait_seconds)

    def _generate(self, prompt: str) -> str:
        try:
            response = self.session.post(
                self.url,
                params={"key": self.cfg.translate_api_key},
                json={"contents": [{"parts": [{"text": prompt}]}]},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise TranslationError(str(exc)) from exc

        status = int(response.status_code)
        if status != 200:
            raise TranslationError(f"HTTP {status}: {response.text[:200]}", http_status=status)
        try:
            payload = response.json()
            parts = payload["candidates"][0]["content"]["parts"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise TranslationError(f"Unexpected Gemini response: {exc}") from exc
        return "".join(str(part.get("text") or "") for part in parts).strip()


def translate_text(text: str, translate: Translate, delay_seconds: float = 0.0) -> str:
    """Translate a prompt body, chunking on blank lines when it is very long."""

    if len(text) <= CHUNK_THRESHOLD:
        result = translate(text)
        time.sleep(delay_seconds)
        return result

    chunks = []
    for chunk in _PARAGRAPH_BREAK.split(text):
        if contains_chinese(chunk) and len(chunk) > MIN_CHUNK_LENGTH:
            chunks.append(translate(chunk))
            time.sleep(delay_seconds)
        else:
            chunks.append(chunk)
    return "\n\n".join(chunks)


def translate_prompts(
    store: Store,
    translate: Translate,
    progress: ProgressFile,
    cfg: config.PipelineConfig,
) -> TranslationSummary:
    summary = TranslationSummary()
    last_id = progress.last_id()
    if last_id:
        log_line(f"Resuming translation after case {last_id}")

    pending = [
        prompt
        for prompt in store.list("prompts", order_by="case_number")
        if int(prompt.get("case_number") or 0) > last_id
        and (contains_chinese(prompt.get("title")) or contains_chinese(prompt.get("prompt_text")))
    ]
    total = len(pending)
    log_line(f"Found {total} prompts needing translation")

    for prompt in pending:
        case = int(prompt.get("case_number") or 0)
        title = prompt.get("title") or ""
        text = prompt.get("prompt_text") or ""
        try:
            new_title = title
            if contains_chinese(title):
                new_title = translate_title(title, translate)
                time.sleep(cfg.translate_delay_seconds)
            new_text = text
            if contains_chinese(text):
                new_text = translate_text(text, translate, cfg.translate_delay_seconds)

            store.update(
                "prompts", str(prompt["id"]), {"title": new_title, "prompt_text": new_text}
            )
        except Exception as exc:  # noqa: BLE001
            summary.failed += 1
            log_line(f"  Error translating case {case}: {short_error_message(exc)}")
            _scraper_event("error", phase="translate", case=case, error=str(exc))
            continue

        summary.translated += 1
        if not summary.failed:
            progress.save(case, summary.translated, total)
        log_line(f"  {summary.translated}/{total}: {new_title[:60]}...")

    progress.clear()
    log_line(f"Translation complete: {summary.translated} translated, {summary.failed} failed")
    return summary


def run_translate(
    cfg: config.PipelineConfig,
    *,
    store: Optional[Store] = None,
    translate: Optional[Translate] = None,
) -> TranslationSummary:
    ensure_dirs(cfg)
    setup_run_logger("translate", cfg.log_dir)
    store = store if store is not None else open_store(cfg)
    translate = translate or GeminiTranslator(cfg)
    return translate_prompts(store, translate, ProgressFile(cfg.translate_progress_path), cfg)


__all__ = [
    "GeminiTranslator",
    "TranslationSummary",
    "contains_chinese",
    "run_translate",
    "translate_prompts",
    "translate_text",
    "translate_title",
]
