"""Node type and block type registries populated once at startup."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, TypeVar

from nodecms.fields import FieldDefinition, FieldType, SchemaError, parse_fields


logger = logging.getLogger("nodecms.registry")

T = TypeVar("T")


class DuplicateTypeError(SchemaError):
    """Raised by strict registries when a name is registered twice."""


@dataclass
class NodeModel:
    """Persistence handle: table name, column SQL types, optional author column."""

    table: str
    columns: Dict[str, str]
    author_column: str | None = None

    def has_column(self, name: str) -> bool:
        return name in self.columns


@dataclass
class NodeSettings:
    display_name: str | None = None
    icon: str | None = None
    description: str | None = None
    subpath: str | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "NodeSettings":
        if data is None:
            return cls()
        if isinstance(data, NodeSettings):
            return data
        return cls(
            display_name=data.get("displayName", data.get("display_name")),
            icon=data.get("icon"),
            description=data.get("description"),
            subpath=(data.get("subpath") or "").strip("/") or None,
        )

    def to_dict(self) -> dict:
        out = {
            "displayName": self.display_name,
            "icon": self.icon,
            "description": self.description,
            "subpath": self.subpath,
        }
        return {key: value for key, value in out.items() if value is not None}


@dataclass
class NodeType:
    name: str
    model: NodeModel
    settings: NodeSettings = field(default_factory=NodeSettings)
    fields: List[FieldDefinition] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": self.name,
            "settings": self.settings.to_dict(),
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass
class BlockSettings:
    allow_multiple: bool = True
    max_instances: int | None = None
    deprecated: bool = False

    @classmethod
    def from_dict(cls, data: dict | None) -> "BlockSettings":
        if data is None:
            return cls()
        if isinstance(data, BlockSettings):
            return data
        return cls(
            allow_multiple=bool(data.get("allowMultiple", data.get("allow_multiple", True))),
            max_instances=data.get("maxInstances", data.get("max_instances")),
            deprecated=bool(data.get("deprecated", False)),
        )

    def to_dict(self) -> dict:
        out: dict = {"allowMultiple": self.allow_multiple, "deprecated": self.deprecated}
        if self.max_instances is not None:
            out["maxInstances"] = self.max_instances
        return out


@dataclass
class BlockType:
    name: str
    display_name: str
    fields: List[FieldDefinition] = field(default_factory=list)
    description: str | None = None
    icon: str | None = None
    category: str | None = None
    settings: BlockSettings = field(default_factory=BlockSettings)

    def to_dict(self) -> dict:
        return {
            "type": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "icon": self.icon,
            "category": self.category,
            "fields": [f.to_dict() for f in self.fields],
            "settings": self.settings.to_dict(),
        }


class _TypeMap(Generic[T]):
    kind = "type"

    def __init__(self, strict: bool = False) -> None:
        self._strict = strict
        self._types: Dict[str, T] = {}

    def _put(self, name: str, schema: T) -> T:
        if not isinstance(name, str) or not name.strip():
            raise SchemaError(f"{self.kind} name is required")
        if name in self._types:
            if self._strict:
                raise DuplicateTypeError(f"{self.kind} {name!r} already registered")
            logger.warning("%s_type_replaced type=%s", self.kind, name)
        else:
            logger.info("%s_type_registered type=%s", self.kind, name)
        # dict assignment keeps the original slot for a replaced name
        self._types[name] = schema
        return schema

    def get(self, name: str) -> T | None:
        return self._types.get(name)

    def is_registered(self, name: str) -> bool:
        return name in self._types

    def list_all(self) -> list[tuple[str, T]]:
        return list(self._types.items())

    def names(self) -> list[str]:
        return list(self._types.keys())

    def fields(self, name: str) -> list[FieldDefinition]:
        schema = self._types.get(name)
        return list(schema.fields) if schema is not None else []

    def __len__(self) -> int:
        return len(self._types)


class NodeRegistry(_TypeMap[NodeType]):
    kind = "node"

    def register(
        self,
        name: str,
        model: NodeModel,
        settings: dict | NodeSettings | None = None,
        fields: list | None = None,
    ) -> NodeType:
        parsed = parse_fields(fields, owner=f"node type {name}")
        node_type = NodeType(name=name, model=model, settings=NodeSettings.from_dict(settings), fields=parsed)
        return self._put(name, node_type)

    def get_slug_field(self, name: str) -> FieldDefinition | None:
        for item in self.fields(name):
            if item.type == FieldType.SLUG:
                return item
        return None

    def generate_url(self, name: str, instance: dict[str, Any] | None) -> str | None:
        node_type = self.get(name)
        if node_type is None or not isinstance(instance, dict):
            return None
        slug_field = self.get_slug_field(name)
        if slug_field is None:
            return None
        slug_value = instance.get(slug_field.name)
        if not slug_value:
            return None
        if not node_type.settings.subpath:
            return f"/{slug_value}"
        return f"/{node_type.settings.subpath}/{slug_value}"

    def describe(self, name: str) -> dict | None:
        node_type = self.get(name)
        return node_type.to_dict() if node_type else None


class BlockRegistry(_TypeMap[BlockType]):
    kind = "block"

    def register(self, name: str, definition: dict | BlockType) -> BlockType:
        if isinstance(definition, BlockType):
            block_type = definition
        else:
            if not isinstance(definition, dict):
                raise SchemaError(f"block type {name}: definition must be an object")
            block_type = BlockType(
                name=name,
                display_name=definition.get("displayName") or definition.get("display_name") or name,
                description=definition.get("description"),
                icon=definition.get("icon"),
                category=definition.get("category"),
                fields=parse_fields(definition.get("fields"), owner=f"block type {name}"),
                settings=BlockSettings.from_dict(definition.get("settings")),
            )
        return self._put(name, block_type)

    def describe(self, name: str) -> dict | None:
        block_type = self.get(name)
        return block_type.to_dict() if block_type else None


class Registry:
    """Node and block registries constructed together and handed to consumers."""

    def __init__(self, strict: bool = False) -> None:
        self.nodes = NodeRegistry(strict=strict)
        self.blocks = BlockRegistry(strict=strict)
