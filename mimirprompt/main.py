from __future__ import annotations

import threading
from typing import Optional

from flask import Flask, Response, jsonify, send_from_directory

from mimirprompt.scraper import config
from mimirprompt.scraper.errors import NotFound, StoreError
from mimirprompt.scraper.healthcheck import run_health_checks
from mimirprompt.scraper.logging_utils import _scraper_event
from mimirprompt.scraper.store import Store, open_store
from mimirprompt.scraper.utils import ensure_dirs, log_line

COLLECTIONS = ("prompts", "authors", "tags", "categories")

app = Flask(__name__)

# Resolve paths on import so WSGI entrypoints see the same layout as the CLI.
CONFIG = config.PipelineConfig.from_env()
ensure_dirs(CONFIG)

_STORE: Optional[Store] = None
_STORE_LOCK = threading.Lock()


def get_store() -> Store:
    """Open the configured store on first use and reuse it afterwards."""

    global _STORE
    with _STORE_LOCK:
        if _STORE is None:
            _STORE = open_store(CONFIG)
        return _STORE


@app.post("/api/prompts/<prompt_id>/view")
def api_prompt_view(prompt_id: str) -> Response:
    """Increment a prompt's view counter; any request body is ignored."""

    try:
        view_count = get_store().increment("prompts", prompt_id, "view_count")
    except NotFound:
        return jsonify({"error": "Prompt not found"}), 404
    except StoreError as exc:
        log_line(f"View count update failed for {prompt_id}: {exc}")
        _scraper_event("error", phase="web", route="view", prompt_id=prompt_id, error=str(exc))
        return jsonify({"error": "Store unavailable"}), 503
    return jsonify({"success": True, "view_count": view_count})


@app.get("/api/health")
def api_health() -> Response:
    """Return the health checks; HTTP 503 when any of them fails."""

    try:
        store = get_store()
    except StoreError:
        store = None
    result = run_health_checks(CONFIG, store=store, entrypoint="web")
    status = 200 if result.ok else 503
    return jsonify({"ok": result.ok, "checks": result.checks}), status


@app.get("/api/stats")
def api_stats() -> Response:
    """Return record counts per collection."""

    try:
        store = get_store()
        counts = {name: store.count(name) for name in COLLECTIONS}
    except StoreError as exc:
        return jsonify({"ok": False, "error": str(exc)}), 503
    return jsonify({"ok": True, "counts": counts})


@app.get(f"{config.IMAGES_URL_PREFIX}/<path:filename>")
def serve_image(filename: str) -> Response:
    """Serve a downloaded image from the images directory."""

    return send_from_directory(CONFIG.images_dir.resolve(), filename)
