"""Generic list/get/create/update/delete over any registered node type."""

from __future__ import annotations

import copy
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

from app.field_validation import is_empty, validate_fields
from field_transform import to_display, to_storage
from nodecms.fields import FieldType
from type_registry import NodeModel, NodeType, Registry


logger = logging.getLogger("nodecms.engine")

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
# ids are SERIAL (int4) columns
MAX_ID = 2**31 - 1

_ID_RE = re.compile(r"[0-9]+")


@dataclass
class NodeEngineError(Exception):
    message: str

    status_code = 500

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.message


@dataclass
class NodeTypeNotFound(NodeEngineError):
    status_code = 404


@dataclass
class NodeNotFound(NodeEngineError):
    status_code = 404


@dataclass
class InvalidPath(NodeEngineError):
    status_code = 400


@dataclass
class ValidationFailed(NodeEngineError):
    errors: list[str] = field(default_factory=list)

    status_code = 400


class NodeStore(Protocol):
    def get(self, model: NodeModel, node_id: int) -> dict | None: ...

    def find_by(self, model: NodeModel, column: str, value: Any) -> dict | None: ...

    def list_page(
        self,
        model: NodeModel,
        offset: int,
        limit: int,
        search_column: str | None = None,
        search: str | None = None,
    ) -> tuple[list[dict], int]: ...

    def create(self, model: NodeModel, values: dict) -> dict: ...

    def update(self, model: NodeModel, node_id: int, changes: dict) -> dict | None: ...

    def delete(self, model: NodeModel, node_id: int) -> bool: ...


def _as_id(key: Any) -> int | None:
    if isinstance(key, bool):
        return None
    if isinstance(key, str) and _ID_RE.fullmatch(key):
        key = int(key)
    if isinstance(key, int) and 0 <= key <= MAX_ID:
        return key
    return None


def _to_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class NodeEngine:
    def __init__(self, registry: Registry, store: NodeStore) -> None:
        self.registry = registry
        self.store = store

    def node_type(self, name: str) -> NodeType:
        node_type = self.registry.nodes.get(name)
        if node_type is None:
            raise NodeTypeNotFound(f"Node type '{name}' not found")
        return node_type

    def describe(self, name: str) -> dict:
        return self.node_type(name).to_dict()

    def list_types(self) -> list[dict]:
        items = []
        for name, node_type in self.registry.nodes.list_all():
            items.append({"type": name, **node_type.settings.to_dict()})
        return items

    def search_column(self, node_type: NodeType) -> str | None:
        columns = node_type.model.columns
        for candidate in ("title", "name"):
            if candidate in columns:
                return candidate
        for item in node_type.fields:
            if item.type in (FieldType.TEXT, FieldType.TEXTAREA) and item.name in columns:
                return item.name
        return None

    def find_instance(self, node_type: NodeType, key: Any, numeric_slug: bool = False) -> dict | None:
        """Raw stored row by numeric id, falling back to the slug column.

        All-digit keys are only tried as slugs when ``numeric_slug`` is set.
        """
        node_id = _as_id(key)
        if node_id is not None:
            row = self.store.get(node_type.model, node_id)
            if row is not None:
                return row
            if not numeric_slug:
                return None
        slug_field = self.registry.nodes.get_slug_field(node_type.name)
        if slug_field is None or not isinstance(key, str) or not key:
            return None
        return self.store.find_by(node_type.model, slug_field.name, key)

    async def display(self, node_type: NodeType, row: dict) -> dict:
        return await to_display(node_type.fields, row)

    async def list(self, name: str, page: Any = 1, limit: Any = DEFAULT_LIMIT, search: str | None = None) -> dict:
        node_type = self.node_type(name)
        page = max(1, _to_int(page, 1))
        limit = min(max(1, _to_int(limit, DEFAULT_LIMIT)), MAX_LIMIT)
        search = search.strip() if isinstance(search, str) else None
        rows, total = self.store.list_page(
            node_type.model,
            offset=(page - 1) * limit,
            limit=limit,
            search_column=self.search_column(node_type),
            search=search or None,
        )
        nodes = [await self.display(node_type, row) for row in rows]
        return {
            "nodes": nodes,
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "totalPages": math.ceil(total / limit) if total else 0,
            },
        }

    async def get(self, name: str, key: Any) -> dict:
        node_type = self.node_type(name)
        row = self.find_instance(node_type, key)
        if row is None:
            raise NodeNotFound(f"Node '{key}' of type '{name}' not found")
        return await self.display(node_type, row)

    async def _validate(self, node_type: NodeType, data: Any) -> None:
        if not isinstance(data, dict):
            raise ValidationFailed("Validation failed", errors=["Payload must be an object"])
        errors = await validate_fields(node_type.fields, data, self.registry.blocks)
        if errors:
            logger.info(
                "node_validation_failed type=%s errors=%s payload_keys=%s",
                node_type.name,
                len(errors),
                sorted(data.keys()),
            )
            raise ValidationFailed("Validation failed", errors=errors)

    def _check_slug_unique(self, node_type: NodeType, values: dict, node_id: int | None = None) -> None:
        slug_field = self.registry.nodes.get_slug_field(node_type.name)
        if slug_field is None:
            return
        slug = values.get(slug_field.name)
        if is_empty(slug):
            return
        existing = self.store.find_by(node_type.model, slug_field.name, slug)
        if existing is not None and existing.get("id") != node_id:
            raise ValidationFailed(
                "Validation failed",
                errors=[f"Field '{slug_field.name}' must be unique; '{slug}' is already in use"],
            )

    def _declared(self, node_type: NodeType, data: dict) -> dict:
        # only declared fields are writable; author and timestamps belong to the engine
        names = {item.name for item in node_type.fields}
        return {key: value for key, value in data.items() if key in names}

    def _columns(self, node_type: NodeType, values: dict) -> dict:
        model = node_type.model
        return {key: value for key, value in values.items() if model.has_column(key) and key != "id"}

    async def create(self, name: str, data: Any, actor: dict | None = None) -> dict:
        node_type = self.node_type(name)
        if isinstance(data, dict):
            data = dict(data)
            for item in node_type.fields:
                if item.name not in data and item.default is not None:
                    data[item.name] = copy.deepcopy(item.default)
        await self._validate(node_type, data)
        values = await to_storage(node_type.fields, self._declared(node_type, data), owner={})
        self._check_slug_unique(node_type, values)
        columns = self._columns(node_type, values)
        author_column = node_type.model.author_column
        if author_column and actor and actor.get("id") is not None:
            columns[author_column] = actor["id"]
        row = self.store.create(node_type.model, columns)
        logger.info("node_created type=%s id=%s", name, row.get("id"))
        return await self.display(node_type, row)

    def _existing(self, node_type: NodeType, node_id: Any) -> tuple[int, dict]:
        parsed = _as_id(node_id)
        row = self.store.get(node_type.model, parsed) if parsed is not None else None
        if row is None:
            raise NodeNotFound(f"Node '{node_id}' of type '{node_type.name}' not found")
        return parsed, row

    async def update(self, name: str, node_id: Any, data: Any, actor: dict | None = None) -> dict:
        node_type = self.node_type(name)
        parsed, existing = self._existing(node_type, node_id)
        await self._validate(node_type, data)
        values = await to_storage(node_type.fields, self._declared(node_type, data), owner=existing)
        self._check_slug_unique(node_type, values, node_id=parsed)
        row = self.store.update(node_type.model, parsed, self._columns(node_type, values))
        if row is None:
            raise NodeNotFound(f"Node '{node_id}' of type '{name}' not found")
        logger.info("node_updated type=%s id=%s", name, parsed)
        return await self.display(node_type, row)

    async def delete(self, name: str, node_id: Any) -> dict:
        node_type = self.node_type(name)
        parsed, _ = self._existing(node_type, node_id)
        if not self.store.delete(node_type.model, parsed):
            raise NodeNotFound(f"Node '{node_id}' of type '{name}' not found")
        logger.info("node_deleted type=%s id=%s", name, parsed)
        return {"deleted": True, "id": parsed}

    async def node_url(self, name: str, key: Any) -> str | None:
        node_type = self.node_type(name)
        row = self.find_instance(node_type, key)
        if row is None:
            raise NodeNotFound(f"Node '{key}' of type '{name}' not found")
        return self.registry.nodes.generate_url(name, row)


__all__ = [
    "InvalidPath",
    "NodeEngine",
    "NodeEngineError",
    "NodeNotFound",
    "NodeStore",
    "NodeTypeNotFound",
    "ValidationFailed",
]
