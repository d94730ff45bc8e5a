"""Configuration for the prompt gallery pipeline.

Module-level constants hold environment-derived defaults. Components never read
them directly: they receive a :class:`PipelineConfig` built by
:meth:`PipelineConfig.from_env` (or a ``dataclasses.replace`` of one).
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DATA_DIR: Path = Path(os.getenv("MIMIR_DATA_DIR", "data"))
IMAGES_DIR: Path = DATA_DIR / "images"
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
SNAPSHOT_FILE: Path = DATA_DIR / "prompts.json"
DOWNLOAD_ERRORS_LOG: Path = IMAGES_DIR / "download_errors.log"
IMPORT_PROGRESS_FILE: Path = DATA_DIR / "import_progress.json"
TRANSLATE_PROGRESS_FILE: Path = DATA_DIR / "translate_progress.json"
DB_PATH: Path = DATA_DIR / "mimirprompt.db"

SOURCE_URL: str = "https://opennana.com/awesome-prompt-gallery/"
IMAGES_URL_PREFIX: str = "/images"

STORE_BACKEND: str = os.getenv("MIMIR_STORE_BACKEND", "sqlite").strip().lower() or "sqlite"
PB_URL: str = os.getenv("PB_URL", "http://127.0.0.1:8090")
ADMIN_EMAIL: str = os.getenv("ADMIN_EMAIL", "")
ADMIN_PASS: str = os.getenv("ADMIN_PASS", "")

CONCURRENT_DOWNLOADS: int = int(os.getenv("MIMIR_CONCURRENT_DOWNLOADS", "5"))
RETRY_ATTEMPTS: int = int(os.getenv("MIMIR_RETRY_ATTEMPTS", "3"))
RETRY_DELAY_SECONDS: float = float(os.getenv("MIMIR_RETRY_DELAY_SECONDS", "2.0"))
DOWNLOAD_TIMEOUT_SECONDS: int = int(os.getenv("MIMIR_DOWNLOAD_TIMEOUT_SECONDS", "30"))
FLUSH_EVERY: int = int(os.getenv("MIMIR_FLUSH_EVERY", "50"))


def _parse_timeout_seconds(env_var: str, default: int, *, minimum: int = 1) -> int:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = int(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


# Playwright timeouts (seconds)
# Navigation timeout for page.goto calls.
NAV_TIMEOUT_SECONDS: int = _parse_timeout_seconds("MIMIR_NAV_TIMEOUT_SECONDS", 120)
# Wait for the gallery card list to render.
LIST_TIMEOUT_SECONDS: int = _parse_timeout_seconds("MIMIR_LIST_TIMEOUT_SECONDS", 60)
# Wait for a card's modal to open after clicking it.
DETAIL_TIMEOUT_SECONDS: int = _parse_timeout_seconds("MIMIR_DETAIL_TIMEOUT_SECONDS", 5)

SCROLL_STEP_PX: int = int(os.getenv("MIMIR_SCROLL_STEP_PX", "500"))
SCROLL_MAX_STEPS: int = int(os.getenv("MIMIR_SCROLL_MAX_STEPS", "100"))
HEADLESS: bool = os.getenv("MIMIR_HEADLESS", "true").strip().lower() not in {"0", "false"}

GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-exp")
TRANSLATE_DELAY_SECONDS: float = float(os.getenv("MIMIR_TRANSLATE_DELAY_SECONDS", "1.0"))
TRANSLATE_RATE_LIMIT_WAIT_SECONDS: float = float(
    os.getenv("MIMIR_TRANSLATE_RATE_LIMIT_WAIT_SECONDS", "60")
)
TRANSLATE_MAX_ATTEMPTS: int = int(os.getenv("MIMIR_TRANSLATE_MAX_ATTEMPTS", "3"))

USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

COMMON_HEADERS: dict[str, str] = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Connection": "keep-alive",
}


@dataclass(frozen=True)
class PipelineConfig:
    """Recognised options for every pipeline component."""

    source_url: str = SOURCE_URL
    data_dir: Path = DATA_DIR
    log_dir: Path = LOG_DIR
    snapshot_path: Path = SNAPSHOT_FILE
    images_dir: Path = IMAGES_DIR
    images_url_prefix: str = IMAGES_URL_PREFIX
    download_errors_log: Path = DOWNLOAD_ERRORS_LOG
    import_progress_path: Path = IMPORT_PROGRESS_FILE
    translate_progress_path: Path = TRANSLATE_PROGRESS_FILE

    store_backend: str = STORE_BACKEND
    store_url: str = PB_URL
    db_path: Path = DB_PATH
    admin_email: str = ADMIN_EMAIL
    admin_password: str = ADMIN_PASS

    concurrency: int = CONCURRENT_DOWNLOADS
    retry_attempts: int = RETRY_ATTEMPTS
    retry_delay_seconds: float = RETRY_DELAY_SECONDS
    download_timeout_seconds: int = DOWNLOAD_TIMEOUT_SECONDS
    flush_every: int = FLUSH_EVERY

    nav_timeout_seconds: int = NAV_TIMEOUT_SECONDS
    list_timeout_seconds: int = LIST_TIMEOUT_SECONDS
    detail_timeout_seconds: int = DETAIL_TIMEOUT_SECONDS
    scroll_step_px: int = SCROLL_STEP_PX
    scroll_max_steps: int = SCROLL_MAX_STEPS
    headless: bool = HEADLESS

    translate_api_key: str = GEMINI_API_KEY
    translate_model: str = GEMINI_MODEL
    translate_delay_seconds: float = TRANSLATE_DELAY_SECONDS
    translate_rate_limit_wait_seconds: float = TRANSLATE_RATE_LIMIT_WAIT_SECONDS
    translate_max_attempts: int = TRANSLATE_MAX_ATTEMPTS

    @classmethod
    def from_env(cls, data_dir: Path | str | None = None) -> "PipelineConfig":
        """Build a config from the current module-level defaults.

        Paths are re-derived from ``data_dir`` (default ``DATA_DIR``) at call
        time so tests that monkeypatch ``config.DATA_DIR`` get a consistent
        layout.
        """

        data_dir = Path(data_dir if data_dir is not None else DATA_DIR)
        images_dir = data_dir / "images"
        return cls(
            data_dir=data_dir,
            log_dir=data_dir / "logs",
            snapshot_path=data_dir / "prompts.json",
            images_dir=images_dir,
            download_errors_log=images_dir / "download_errors.log",
            import_progress_path=data_dir / "import_progress.json",
            translate_progress_path=data_dir / "translate_progress.json",
            db_path=data_dir / "mimirprompt.db",
        )


def is_pocketbase(cfg: PipelineConfig) -> bool:
    """Return ``True`` when ``cfg`` targets a PocketBase server."""

    return str(cfg.store_backend).strip().lower() == "pocketbase"


__all__ = ["PipelineConfig", "is_pocketbase"]
