from __future__ import annotations

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from . import config

LOGGER = logging.getLogger("mimirprompt")
_LOGGER_INITIALISED = False
_CURRENT_LOG_FILE: Path = config.LOG_FILE

CASE_NUMBER_PATTERN = re.compile(r"(?:案例|\bCase)\s*(\d+)", re.IGNORECASE)
CASE_PREFIX_PATTERN = re.compile(r"(?:案例|\bCase)\s*\d+\s*[：:]\s*", re.IGNORECASE)
_ILLEGAL_FILENAME_CHARS = re.compile(r"[<>:\"/\\|?*\x00-\x1f]")
_EXTENSION_PATTERN = re.compile(r"\.(\w+)$")

DEFAULT_IMAGE_EXTENSION = "jpg"
TITLE_STEM_MAX_LENGTH = 50


def _configure_logger(log_path: Path) -> None:
    """Configure the shared application logger to write to ``log_path``."""

    global _LOGGER_INITIALISED, _CURRENT_LOG_FILE

    log_path.parent.mkdir(parents=True, exist_ok=True)

    for handler in list(LOGGER.handlers):
        LOGGER.removeHandler(handler)
        try:
            handler.close()
        except Exception:  # noqa: BLE001
            continue

    formatter = logging.Formatter(
        fmt="[%(asctime)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)

    LOGGER.setLevel(logging.INFO)
    LOGGER.addHandler(stream_handler)
    LOGGER.addHandler(file_handler)
    LOGGER.propagate = False

    _CURRENT_LOG_FILE = log_path
    _LOGGER_INITIALISED = True


def _ensure_logger() -> None:
    """Initialise the logger lazily using the default log file."""

    if _LOGGER_INITIALISED:
        return

    _configure_logger(Path(config.LOG_DIR) / "latest.log")


def setup_run_logger(prefix: str = "run", log_dir: Optional[Path] = None) -> Path:
    """Rotate to a fresh timestamped log file for the current pipeline step.

    ``log_dir`` is normally ``cfg.log_dir``; it defaults to ``config.LOG_DIR``.
    """

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_path = Path(log_dir or config.LOG_DIR) / f"{prefix}_{timestamp}.log"
    _configure_logger(log_path)
    LOGGER.info("Logging to %s", log_path)
    return log_path


def get_current_log_path() -> Path:
    """Return the path to the log file currently receiving log lines."""

    _ensure_logger()
    return _CURRENT_LOG_FILE


def log_line(message: str) -> None:
    """Write a timestamped log line to stdout and the active log file."""

    _ensure_logger()
    LOGGER.info(message)


def ensure_dirs(cfg: Optional[config.PipelineConfig] = None) -> None:
    """Ensure that the pipeline's data directories exist."""

    if cfg is None:
        cfg = config.PipelineConfig.from_env()
    Path(cfg.data_dir).mkdir(parents=True, exist_ok=True)
    Path(cfg.images_dir).mkdir(parents=True, exist_ok=True)
    Path(cfg.log_dir).mkdir(parents=True, exist_ok=True)


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string with milliseconds."""

    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def write_json_atomic(path: Path, payload: Any, *, indent: Optional[int] = 2) -> None:
    """Write ``payload`` as JSON to ``path`` via a temp file and ``replace``."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")

    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=indent)
        handle.flush()
        os.fsync(handle.fileno())

    tmp_path.replace(path)


def parse_case_number(title: Optional[str]) -> Optional[int]:
    """Return the case number embedded in ``title`` (``Case N`` / ``案例 N``)."""

    if not title:
        return None
    match = CASE_NUMBER_PATTERN.search(title)
    return int(match.group(1)) if match else None


def sanitize_title(title: Optional[str], max_length: int = TITLE_STEM_MAX_LENGTH) -> str:
    """Return the filename stem used for every image of a record.

    The downloader and the importer must both go through this function or
    their paths will diverge.
    """

    if not title:
        return "untitled"

    case_number = parse_case_number(title)

    cleaned = CASE_PREFIX_PATTERN.sub("", title)
    cleaned = _ILLEGAL_FILENAME_CHARS.sub("", cleaned)
    cleaned = re.sub(r"\s+", "_", cleaned)
    cleaned = re.sub(r"_{2,}", "_", cleaned)
    cleaned = cleaned.strip()

    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]

    if case_number is not None:
        return f"{case_number}_{cleaned}"
    return cleaned or "untitled"


def url_extension(url: str) -> str:
    """Return the lowercase file extension of the URL path, or ``jpg``."""

    path = urlparse(url).path
    match = _EXTENSION_PATTERN.search(path)
    if match:
        return match.group(1).lower()
    return DEFAULT_IMAGE_EXTENSION


def image_filename(title: Optional[str], url: str, position: int) -> str:
    """Return the local filename for the image at 0-based ``position``."""

    base = sanitize_title(title)
    ext = url_extension(url)
    if position == 0:
        return f"{base}.{ext}"
    return f"{base}_{position + 1}.{ext}"


def short_error_message(exc: BaseException, max_length: int = 200) -> str:
    """Return a one-line, bounded description of ``exc``."""

    message = str(exc).strip().splitlines()[0] if str(exc).strip() else type(exc).__name__
    if len(message) > max_length:
        message = message[: max_length - 3] + "..."
    return message


__all__ = [
    "setup_run_logger",
    "get_current_log_path",
    "log_line",
    "ensure_dirs",
    "utc_now_iso",
    "write_json_atomic",
    "parse_case_number",
    "sanitize_title",
    "url_extension",
    "image_filename",
    "short_error_message",
]
