"""PostgreSQL-backed node and user stores (USE_DB=1)."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json

from app.db import execute, fetch_all, fetch_one, get_conn
from app.stores import StoreConflict
from type_registry import NodeModel


logger = logging.getLogger("nodecms.db")

_IDENT_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
_RESERVED_COLUMNS = {"id", "created_at", "updated_at"}


def _ident(name: str) -> sql.Identifier:
    if not isinstance(name, str) or not _IDENT_RE.match(name):
        raise ValueError(f"unsafe sql identifier: {name!r}")
    return sql.Identifier(name)


def _iso(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")
    return value


def _row(row: dict | None) -> dict | None:
    if row is None:
        return None
    return {key: _iso(value) for key, value in row.items()}


def _adapt(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return Json(value, dumps=lambda obj: json.dumps(obj, default=str))
    return value


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DbNodeStore:
    def __init__(self) -> None:
        self._ready: set[str] = set()

    def ensure_table(self, model: NodeModel) -> None:
        if model.table in self._ready:
            return
        columns = [sql.SQL("id SERIAL PRIMARY KEY")]
        for name, sql_type in model.columns.items():
            if name in _RESERVED_COLUMNS:
                continue
            columns.append(sql.SQL("{} {}").format(_ident(name), sql.SQL(sql_type)))
        columns.append(sql.SQL("created_at TIMESTAMPTZ NOT NULL DEFAULT now()"))
        columns.append(sql.SQL("updated_at TIMESTAMPTZ NOT NULL DEFAULT now()"))
        ddl = sql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(_ident(model.table), sql.SQL(", ").join(columns))
        with get_conn() as conn:
            execute(conn, ddl.as_string(conn), query_name=f"nodes.ensure_table.{model.table}")
        self._ready.add(model.table)
        logger.info("node_table_ready table=%s", model.table)

    def get(self, model: NodeModel, node_id: int) -> dict | None:
        self.ensure_table(model)
        query = sql.SQL("SELECT * FROM {} WHERE id = %s").format(_ident(model.table))
        with get_conn() as conn:
            return _row(fetch_one(conn, query.as_string(conn), [node_id], query_name="nodes.get"))

    def find_by(self, model: NodeModel, column: str, value: Any) -> dict | None:
        self.ensure_table(model)
        query = sql.SQL("SELECT * FROM {} WHERE {} = %s ORDER BY id LIMIT 1").format(
            _ident(model.table), _ident(column)
        )
        with get_conn() as conn:
            return _row(fetch_one(conn, query.as_string(conn), [value], query_name="nodes.find_by"))

    def list_page(
        self,
        model: NodeModel,
        offset: int,
        limit: int,
        search_column: str | None = None,
        search: str | None = None,
    ) -> tuple[list[dict], int]:
        self.ensure_table(model)
        where = sql.SQL("")
        params: list[Any] = []
        if search and search_column:
            where = sql.SQL(" WHERE {}::text ILIKE %s").format(_ident(search_column))
            params.append(f"%{_escape_like(search)}%")
        table = _ident(model.table)
        count_query = sql.SQL("SELECT count(*) AS total FROM {}{}").format(table, where)
        page_query = sql.SQL("SELECT * FROM {}{} ORDER BY created_at DESC, id DESC LIMIT %s OFFSET %s").format(
            table, where
        )
        with get_conn() as conn:
            total = fetch_one(conn, count_query.as_string(conn), params, query_name="nodes.count")
            rows = fetch_all(conn, page_query.as_string(conn), params + [limit, offset], query_name="nodes.list")
        return [_row(r) for r in rows], int((total or {}).get("total") or 0)

    def create(self, model: NodeModel, values: dict) -> dict:
        self.ensure_table(model)
        columns = [key for key in values if key not in _RESERVED_COLUMNS]
        table = _ident(model.table)
        if columns:
            query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
                table,
                sql.SQL(", ").join(_ident(c) for c in columns),
                sql.SQL(", ").join(sql.Placeholder() for _ in columns),
            )
        else:
            query = sql.SQL("INSERT INTO {} DEFAULT VALUES RETURNING *").format(table)
        params = [_adapt(values[c]) for c in columns]
        with get_conn() as conn:
            return _row(fetch_one(conn, query.as_string(conn), params, query_name="nodes.create"))

    def update(self, model: NodeModel, node_id: int, changes: dict) -> dict | None:
        self.ensure_table(model)
        columns = [key for key in changes if key not in _RESERVED_COLUMNS]
        assignments = [sql.SQL("{} = %s").format(_ident(c)) for c in columns]
        assignments.append(sql.SQL("updated_at = now()"))
        query = sql.SQL("UPDATE {} SET {} WHERE id = %s RETURNING *").format(
            _ident(model.table), sql.SQL(", ").join(assignments)
        )
        params = [_adapt(changes[c]) for c in columns] + [node_id]
        with get_conn() as conn:
            return _row(fetch_one(conn, query.as_string(conn), params, query_name="nodes.update"))

    def delete(self, model: NodeModel, node_id: int) -> bool:
        self.ensure_table(model)
        query = sql.SQL("DELETE FROM {} WHERE id = %s").format(_ident(model.table))
        with get_conn() as conn:
            return execute(conn, query.as_string(conn), [node_id], query_name="nodes.delete") > 0


_USERS_DDL = """
CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    username VARCHAR(50) NOT NULL UNIQUE,
    email VARCHAR(255) NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    role VARCHAR(20) NOT NULL DEFAULT 'user',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    last_login TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""


class DbUserStore:
    def __init__(self) -> None:
        self._ready = False

    def _ensure(self) -> None:
        if self._ready:
            return
        with get_conn() as conn:
            execute(conn, _USERS_DDL, query_name="users.ensure_table")
        self._ready = True

    def count(self) -> int:
        self._ensure()
        with get_conn() as conn:
            row = fetch_one(conn, "SELECT count(*) AS total FROM users", query_name="users.count")
        return int((row or {}).get("total") or 0)

    def get(self, user_id: int) -> dict | None:
        self._ensure()
        with get_conn() as conn:
            return _row(fetch_one(conn, "SELECT * FROM users WHERE id = %s", [user_id], query_name="users.get"))

    def get_by_username(self, username: str) -> dict | None:
        self._ensure()
        with get_conn() as conn:
            return _row(
                fetch_one(conn, "SELECT * FROM users WHERE username = %s", [username], query_name="users.by_username")
            )

    def get_by_email(self, email: str) -> dict | None:
        self._ensure()
        with get_conn() as conn:
            return _row(fetch_one(conn, "SELECT * FROM users WHERE email = %s", [email], query_name="users.by_email"))

    def create(self, username: str, email: str, password_hash: str, role: str = "user") -> dict:
        self._ensure()
        try:
            with get_conn() as conn:
                row = fetch_one(
                    conn,
                    "INSERT INTO users (username, email, password_hash, role) VALUES (%s, %s, %s, %s) RETURNING *",
                    [username, email, password_hash, role],
                    query_name="users.create",
                )
        except psycopg2.IntegrityError as exc:
            constraint = getattr(getattr(exc, "diag", None), "constraint_name", None) or ""
            raise StoreConflict("email" if "email" in constraint else "username") from exc
        return _row(row)

    def touch_login(self, user_id: int) -> dict | None:
        self._ensure()
        with get_conn() as conn:
            return _row(
                fetch_one(
                    conn,
                    "UPDATE users SET last_login = now(), updated_at = now() WHERE id = %s RETURNING *",
                    [user_id],
                    query_name="users.touch_login",
                )
            )
