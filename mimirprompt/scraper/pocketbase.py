"""PocketBase REST client implementing the :class:`store.Store` protocol."""
from __future__ import annotations

from typing import Any, Optional

import requests

from .errors import NotFound, StoreConflict, StoreError, StoreUnavailable
from .logging_utils import _scraper_event
from .utils import log_line

AUTH_PATHS = (
    "/api/collections/_superusers/auth-with-password",
    "/api/admins/auth-with-password",
)
PAGE_SIZE = 500
REQUEST_TIMEOUT_SECONDS = 30


def _text(name: str, **extra: Any) -> dict[str, Any]:
    return {"name": name, "type": "text", **extra}


def _number(name: str) -> dict[str, Any]:
    return {"name": name, "type": "number"}


BASE_COLLECTIONS: list[dict[str, Any]] = [
    {
        "name": "authors",
        "type": "base",
        "fields": [
            _text("name", required=True),
            _text("username"),
            _text("platform"),
            _text("profile_url"),
            _text("avatar_url"),
            _text("bio"),
            _number("prompt_count"),
        ],
        "indexes": [
            "CREATE UNIQUE INDEX idx_authors_username ON authors (username COLLATE NOCASE)"
        ],
    },
    {
        "name": "tags",
        "type": "base",
        "fields": [
            _text("name", required=True),
            _text("slug"),
            _text("description"),
            _number("prompt_count"),
        ],
        "indexes": ["CREATE UNIQUE INDEX idx_tags_slug ON tags (slug)"],
    },
    {
        "name": "categories",
        "type": "base",
        "fields": [
            _text("name", required=True),
            _text("slug"),
            _text("description"),
        ],
    },
]


def _quote(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_filter(eq: dict[str, Any]) -> str:
    """Render ``{"a": 1, "b": "x"}`` as ``a = 1 && b = "x"``."""

    return " && ".join(f"{name} = {_quote(value)}" for name, value in eq.items())


def _is_not_unique(payload: Any) -> bool:
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        return False
    return any(
        isinstance(detail, dict) and detail.get("code") == "validation_not_unique"
        for detail in data.values()
    )


class PocketBaseStore:
    def __init__(
        self,
        base_url: str,
        email: str,
        password: str,
        session: Optional[Any] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.email = email
        self.password = password
        self.session = session if session is not None else requests.Session()
        self.token: Optional[str] = None

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = dict(kwargs.pop("headers", None) or {})
        if self.token:
            headers["Authorization"] = self.token
        kwargs.setdefault("timeout", REQUEST_TIMEOUT_SECONDS)
        try:
            return self.session.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except requests.RequestException as exc:
            raise StoreUnavailable(f"PocketBase unreachable at {self.base_url}: {exc}") from exc

    def _json(self, response: Any) -> Any:
        try:
            return response.json()
        except ValueError:
            return {}

    def _raise_for(self, response: Any, what: str) -> None:
        status = int(response.status_code)
        if 200 <= status < 300:
            return
        payload = self._json(response)
        message = payload.get("message") if isinstance(payload, dict) else None
        detail = f"{what}: HTTP {status} {message or ''}".strip()
        if status == 404:
            raise NotFound(detail)
        if status == 400 and _is_not_unique(payload):
            raise StoreConflict(detail)
        if status in (401, 403):
            raise StoreUnavailable(detail)
        raise StoreError(detail)

    def authenticate(self) -> None:
        """Authenticate once with the fixed admin credential."""

        if not self.email or not self.password:
            raise StoreUnavailable("PocketBase admin credentials are not configured")
        last_status: Optional[int] = None
        for path in AUTH_PATHS:
            response = self._request(
                "POST", path, json={"identity": self.email, "password": self.password}
            )
            last_status = int(response.status_code)
            if last_status == 404:
                continue
            if 200 <= last_status < 300:
                self.token = self._json(response).get("token")
                _scraper_event("store", phase="auth", backend="pocketbase", ok=True)
                return
            break
        _scraper_event("store", phase="auth", backend="pocketbase", ok=False, status=last_status)
        raise StoreUnavailable(f"PocketBase authentication failed (HTTP {last_status})")

    def _records_path(self, collection: str, record_id: Optional[str] = None) -> str:
        path = f"/api/collections/{collection}/records"
        return f"{path}/{record_id}" if record_id else path

    def find_one(self, collection: str, **eq: Any) -> Optional[dict[str, Any]]:
        params = {"perPage": 1, "skipTotal": 1}
        if eq:
            params["filter"] = build_filter(eq)
        response = self._request("GET", self._records_path(collection), params=params)
        self._raise_for(response, f"find {collection}")
        items = self._json(response).get("items") or []
        return items[0] if items else None

    def list(self, collection: str, order_by: Optional[str] = None) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        page = 1
        while True:
            params: dict[str, Any] = {"page": page, "perPage": PAGE_SIZE}
            if order_by:
                params["sort"] = order_by
            response = self._request("GET", self._records_path(collection), params=params)
            self._raise_for(response, f"list {collection}")
            payload = self._json(response)
            records.extend(payload.get("items") or [])
            if page >= int(payload.get("totalPages") or 1):
                return records
            page += 1

    def create(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        response = self._request("POST", self._records_path(collection), json=data)
        self._raise_for(response, f"create {collection}")
        return self._json(response)

    def update(self, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        response = self._request("PATCH", self._records_path(collection, record_id), json=data)
        self._raise_for(response, f"update {collection}/{record_id}")
        return self._json(response)

    def increment(self, collection: str, record_id: str, field: str) -> int:
        # ``field+`` is applied server-side inside the record update.
        response = self._request(
            "PATCH", self._records_path(collection, record_id), json={f"{field}+": 1}
        )
        self._raise_for(response, f"increment {collection}/{record_id}")
        return int(self._json(response).get(field) or 0)

    def count(self, collection: str) -> int:
        response = self._request("GET", self._records_path(collection), params={"perPage": 1})
        self._raise_for(response, f"count {collection}")
        return int(self._json(response).get("totalItems") or 0)

    def _collection(self, name: str) -> Optional[dict[str, Any]]:
        response = self._request("GET", f"/api/collections/{name}")
        if int(response.status_code) == 404:
            return None
        self._raise_for(response, f"collection {name}")
        return self._json(response)

    def _create_collection(self, definition: dict[str, Any]) -> dict[str, Any]:
        response = self._request("POST", "/api/collections", json=definition)
        self._raise_for(response, f"create collection {definition['name']}")
        log_line(f"Created collection {definition['name']}")
        return self._json(response)

    def ensure_collections(self) -> dict[str, str]:
        """Create missing collections; return ``name -> collection id``."""

        ids: dict[str, str] = {}
        for definition in BASE_COLLECTIONS:
            existing = self._collection(definition["name"])
            created = existing or self._create_collection(definition)
            ids[definition["name"]] = str(created.get("id"))

        categories = self._collection("categories") or {}
        fields = list(categories.get("fields") or [])
        if not any(field.get("name") == "parent" for field in fields):
            fields.append(
                {
                    "name": "parent",
                    "type": "relation",
                    "collectionId": ids["categories"],
                    "maxSelect": 1,
                }
            )
            response = self._request(
                "PATCH", f"/api/collections/{ids['categories']}", json={"fields": fields}
            )
            self._raise_for(response, "update collection categories")

        if self._collection("prompts") is None:
            created = self._create_collection(
                {
                    "name": "prompts",
                    "type": "base",
                    "fields": [
                        _number("case_number"),
                        _text("title", required=True),
                        _text("prompt_text", max=0),
                        _text("source_url"),
                        _text("thumbnail"),
                        _number("view_count"),
                        _number("prompt_count"),
                        {
                            "name": "author",
                            "type": "relation",
                            "collectionId": ids["authors"],
                            "maxSelect": 1,
                        },
                        {
                            "name": "category",
                            "type": "relation",
                            "collectionId": ids["categories"],
                            "maxSelect": 1,
                        },
                        {
                            "name": "tags",
                            "type": "relation",
                            "collectionId": ids["tags"],
                            "maxSelect": 999,
                        },
                        {"name": "images_list", "type": "json"},
                    ],
                    "indexes": [
                        "CREATE UNIQUE INDEX idx_prompts_case ON prompts (case_number)"
                    ],
                }
            )
            ids["prompts"] = str(created.get("id"))
        return ids


__all__ = ["PocketBaseStore", "build_filter"]
