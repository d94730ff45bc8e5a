"""Collection-keyed record store used by the import, translation and web layers."""
from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional, Protocol

from . import config, db
from .errors import NotFound, StoreConflict, StoreError, StoreUnavailable
from .utils import log_line, utc_now_iso


class Store(Protocol):
    """Records are plain dicts carrying a string ``id``."""

    def find_one(self, collection: str, **eq: Any) -> Optional[dict[str, Any]]: ...

    def list(self, collection: str, order_by: Optional[str] = None) -> list[dict[str, Any]]: ...

    def create(self, collection: str, data: dict[str, Any]) -> dict[str, Any]: ...

    def update(self, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]: ...

    def increment(self, collection: str, record_id: str, field: str) -> int: ...

    def count(self, collection: str) -> int: ...


def _parse_order(order_by: Optional[str]) -> tuple[Optional[str], str]:
    if not order_by:
        return None, "ASC"
    if order_by.startswith("-"):
        return order_by[1:], "DESC"
    return order_by.lstrip("+"), "ASC"


class SqliteStore:
    """:class:`Store` over the local SQLite database from :mod:`db`."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = Path(db_path) if db_path is not None else db.DB_PATH
        try:
            self.conn = db.get_connection(self.db_path)
            db.initialize_schema(self.conn)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open SQLite store {self.db_path}: {exc}") from exc
        self._lock = threading.Lock()

    def close(self) -> None:
        self.conn.close()

    def _columns(self, collection: str) -> tuple[str, ...]:
        try:
            return db.COLLECTION_COLUMNS[collection]
        except KeyError:
            raise StoreError(f"Unknown collection: {collection}") from None

    def _check_fields(self, collection: str, fields: Any) -> None:
        columns = self._columns(collection)
        unknown = [name for name in fields if name not in columns]
        if unknown:
            raise StoreError(f"Unknown field(s) for {collection}: {', '.join(unknown)}")

    def _encode(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        json_columns = db.JSON_COLUMNS.get(collection, ())
        encoded = {}
        for name, value in data.items():
            if name in json_columns:
                value = json.dumps(list(value or []), ensure_ascii=False)
            encoded[name] = value
        return encoded

    def _decode(self, collection: str, row: sqlite3.Row) -> dict[str, Any]:
        record = dict(row)
        record["id"] = str(record["id"])
        for name in db.JSON_COLUMNS.get(collection, ()):
            raw = record.get(name)
            record[name] = json.loads(raw) if raw else []
        return record

    def find_one(self, collection: str, **eq: Any) -> Optional[dict[str, Any]]:
        self._check_fields(collection, eq)
        where = " AND ".join(f"{name} = ?" for name in eq) or "1 = 1"
        with self._lock:
            row = self.conn.execute(
                f"SELECT * FROM {collection} WHERE {where} LIMIT 1",
                tuple(eq.values()),
            ).fetchone()
        return self._decode(collection, row) if row else None

    def list(self, collection: str, order_by: Optional[str] = None) -> list[dict[str, Any]]:
        column, direction = _parse_order(order_by)
        sql = f"SELECT * FROM {collection}"
        if column:
            self._check_fields(collection, [column])
            sql += f" ORDER BY {column} {direction}, id ASC"
        else:
            self._columns(collection)
            sql += " ORDER BY id ASC"
        with self._lock:
            rows = self.conn.execute(sql).fetchall()
        return [self._decode(collection, row) for row in rows]

    def create(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        payload = {key: value for key, value in data.items() if key != "id"}
        self._check_fields(collection, payload)
        now = utc_now_iso()
        payload.setdefault("created", now)
        payload.setdefault("updated", now)
        payload = self._encode(collection, payload)

        names = ", ".join(payload)
        placeholders = ", ".join("?" for _ in payload)
        with self._lock:
            try:
                with self.conn:
                    cursor = self.conn.execute(
                        f"INSERT INTO {collection} ({names}) VALUES ({placeholders})",
                        tuple(payload.values()),
                    )
            except sqlite3.IntegrityError as exc:
                if "UNIQUE" in str(exc).upper():
                    raise StoreConflict(f"{collection}: {exc}") from exc
                raise StoreError(f"{collection}: {exc}") from exc
            row = self.conn.execute(
                f"SELECT * FROM {collection} WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
        return self._decode(collection, row)

    def update(self, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        payload = {key: value for key, value in data.items() if key != "id"}
        self._check_fields(collection, payload)
        payload["updated"] = utc_now_iso()
        payload = self._encode(collection, payload)

        assignments = ", ".join(f"{name} = ?" for name in payload)
        with self._lock:
            try:
                with self.conn:
                    cursor = self.conn.execute(
                        f"UPDATE {collection} SET {assignments} WHERE id = ?",
                        (*payload.values(), record_id),
                    )
            except sqlite3.IntegrityError as exc:
                raise StoreConflict(f"{collection}: {exc}") from exc
            if cursor.rowcount == 0:
                raise NotFound(f"{collection} record {record_id} not found")
            row = self.conn.execute(
                f"SELECT * FROM {collection} WHERE id = ?", (record_id,)
            ).fetchone()
        return self._decode(collection, row)

    def increment(self, collection: str, record_id: str, field: str) -> int:
        self._check_fields(collection, [field])
        with self._lock:
            with self.conn:
                cursor = self.conn.execute(
                    f"UPDATE {collection} SET {field} = COALESCE({field}, 0) + 1 WHERE id = ?",
                    (record_id,),
                )
                if cursor.rowcount == 0:
                    raise NotFound(f"{collection} record {record_id} not found")
                row = self.conn.execute(
                    f"SELECT {field} FROM {collection} WHERE id = ?", (record_id,)
                ).fetchone()
        return int(row[field])

    def count(self, collection: str) -> int:
        self._columns(collection)
        with self._lock:
            row = self.conn.execute(f"SELECT COUNT(*) AS n FROM {collection}").fetchone()
        return int(row["n"])


def open_store(cfg: config.PipelineConfig) -> Store:
    """Return the store selected by ``cfg.store_backend``."""

    if config.is_pocketbase(cfg):
        from .pocketbase import PocketBaseStore

        store = PocketBaseStore(cfg.store_url, cfg.admin_email, cfg.admin_password)
        store.authenticate()
        store.ensure_collections()
        log_line(f"Connected to PocketBase at {cfg.store_url}")
        return store

    store = SqliteStore(cfg.db_path)
    log_line(f"Using SQLite store at {cfg.db_path}")
    return store


__all__ = ["Store", "SqliteStore", "open_store"]
