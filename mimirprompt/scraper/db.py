"""SQLite helpers for the local prompt store.

This module defines the project database path, connection helper and schema
initialisation for the ``prompts``, ``authors``, ``tags`` and ``categories``
collections.
"""
from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable, Optional

from . import config

DB_PATH: Path = config.DB_PATH

# Columns holding JSON-encoded lists.
JSON_COLUMNS: dict[str, tuple[str, ...]] = {
    "prompts": ("tags", "images_list"),
}

COLLECTION_COLUMNS: dict[str, tuple[str, ...]] = {
    "prompts": (
        "id",
        "case_number",
        "title",
        "prompt_text",
        "source_url",
        "thumbnail",
        "view_count",
        "prompt_count",
        "author",
        "category",
        "tags",
        "images_list",
        "created",
        "updated",
    ),
    "authors": (
        "id",
        "name",
        "username",
        "platform",
        "profile_url",
        "avatar_url",
        "bio",
        "prompt_count",
        "created",
        "updated",
    ),
    "tags": ("id", "name", "slug", "description", "prompt_count", "created", "updated"),
    "categories": ("id", "name", "slug", "description", "parent", "created", "updated"),
}


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Return a SQLite connection to the project database.

    The parent directory is created if missing and ``check_same_thread`` is
    disabled to allow reuse from different threads. Callers must manage
    concurrency at a higher layer.
    """

    path = Path(db_path) if db_path is not None else DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def initialize_schema(conn: Optional[sqlite3.Connection] = None) -> None:
    """Create the collection tables if they do not yet exist.

    Safe to call multiple times; each statement uses ``IF NOT EXISTS``.
    """

    statements: Iterable[str] = (
        """
        CREATE TABLE IF NOT EXISTS authors (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            name         TEXT NOT NULL,
            username     TEXT COLLATE NOCASE UNIQUE,
            platform     TEXT,
            profile_url  TEXT,
            avatar_url   TEXT,
            bio          TEXT,
            prompt_count INTEGER NOT NULL DEFAULT 0,
            created      TEXT NOT NULL,
            updated      TEXT NOT NULL
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS tags (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            name         TEXT NOT NULL,
            slug         TEXT NOT NULL UNIQUE,
            description  TEXT,
            prompt_count INTEGER NOT NULL DEFAULT 0,
            created      TEXT NOT NULL,
            updated      TEXT NOT NULL
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS categories (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            name        TEXT NOT NULL,
            slug        TEXT UNIQUE,
            description TEXT,
            parent      TEXT,
            created     TEXT NOT NULL,
            updated     TEXT NOT NULL
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS prompts (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            case_number  INTEGER UNIQUE,
            title        TEXT NOT NULL,
            prompt_text  TEXT,
            source_url   TEXT,
            thumbnail    TEXT,
            view_count   INTEGER NOT NULL DEFAULT 0,
            prompt_count INTEGER NOT NULL DEFAULT 0,
            author       TEXT,
            category     TEXT,
            tags         TEXT NOT NULL DEFAULT '[]',
            images_list  TEXT NOT NULL DEFAULT '[]',
            created      TEXT NOT NULL,
            updated      TEXT NOT NULL
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_prompts_author
            ON prompts(author);
        """,
    )

    own_conn = conn is None
    conn = conn or get_connection()
    try:
        with conn:
            for statement in statements:
                conn.execute(statement)
    finally:
        if own_conn:
            conn.close()


__all__ = [
    "COLLECTION_COLUMNS",
    "DB_PATH",
    "JSON_COLUMNS",
    "get_connection",
    "initialize_schema",
]
