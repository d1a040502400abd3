"""In-memory node and user stores (USE_DB=0, tests)."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Dict, List

from type_registry import NodeModel


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


class StoreConflict(Exception):
    """A unique column already holds the value being written."""

    def __init__(self, column: str) -> None:
        super().__init__(f"{column} already exists")
        self.column = column


class MemoryNodeStore:
    def __init__(self) -> None:
        self._tables: Dict[str, Dict[int, dict]] = {}
        self._next_id: Dict[str, int] = {}

    def _rows(self, model: NodeModel) -> Dict[int, dict]:
        return self._tables.setdefault(model.table, {})

    def get(self, model: NodeModel, node_id: int) -> dict | None:
        row = self._rows(model).get(node_id)
        return copy.deepcopy(row) if row else None

    def find_by(self, model: NodeModel, column: str, value: Any) -> dict | None:
        for row in self._rows(model).values():
            if row.get(column) == value:
                return copy.deepcopy(row)
        return None

    def list_page(
        self,
        model: NodeModel,
        offset: int,
        limit: int,
        search_column: str | None = None,
        search: str | None = None,
    ) -> tuple[list[dict], int]:
        rows: List[dict] = list(self._rows(model).values())
        if search and search_column:
            needle = search.lower()
            rows = [r for r in rows if needle in str(r.get(search_column) or "").lower()]
        rows.sort(key=lambda r: (r.get("created_at") or "", r.get("id") or 0), reverse=True)
        page = rows[offset : offset + limit]
        return [copy.deepcopy(r) for r in page], len(rows)

    def create(self, model: NodeModel, values: dict) -> dict:
        node_id = self._next_id.get(model.table, 1)
        self._next_id[model.table] = node_id + 1
        now = _now()
        row = {column: None for column in model.columns}
        row.update(copy.deepcopy(values))
        row["id"] = node_id
        row["created_at"] = now
        row["updated_at"] = now
        self._rows(model)[node_id] = row
        return copy.deepcopy(row)

    def update(self, model: NodeModel, node_id: int, changes: dict) -> dict | None:
        row = self._rows(model).get(node_id)
        if row is None:
            return None
        row.update(copy.deepcopy(changes))
        row["id"] = node_id
        row["updated_at"] = _now()
        return copy.deepcopy(row)

    def delete(self, model: NodeModel, node_id: int) -> bool:
        return self._rows(model).pop(node_id, None) is not None


class MemoryUserStore:
    def __init__(self) -> None:
        self._users: Dict[int, dict] = {}
        self._next_id = 1

    def count(self) -> int:
        return len(self._users)

    def get(self, user_id: int) -> dict | None:
        user = self._users.get(user_id)
        return copy.deepcopy(user) if user else None

    def _find(self, column: str, value: str) -> dict | None:
        for user in self._users.values():
            if user.get(column) == value:
                return copy.deepcopy(user)
        return None

    def get_by_username(self, username: str) -> dict | None:
        return self._find("username", username)

    def get_by_email(self, email: str) -> dict | None:
        return self._find("email", email)

    def create(self, username: str, email: str, password_hash: str, role: str = "user") -> dict:
        if self._find("username", username):
            raise StoreConflict("username")
        if self._find("email", email):
            raise StoreConflict("email")
        now = _now()
        user = {
            "id": self._next_id,
            "username": username,
            "email": email,
            "password_hash": password_hash,
            "role": role,
            "is_active": True,
            "last_login": None,
            "created_at": now,
            "updated_at": now,
        }
        self._users[user["id"]] = user
        self._next_id += 1
        return copy.deepcopy(user)

    def touch_login(self, user_id: int) -> dict | None:
        user = self._users.get(user_id)
        if user is None:
            return None
        user["last_login"] = _now()
        return copy.deepcopy(user)
