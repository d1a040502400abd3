"""Field definitions shared by node types and block types."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Union


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SELECT = "select"
    DATE = "date"
    EMAIL = "email"
    URL = "url"
    FILE = "file"
    NODE = "node"
    ARRAY = "array"
    SLUG = "slug"
    BLOCKS = "blocks"


STRING_TYPES = frozenset(
    {FieldType.TEXT, FieldType.TEXTAREA, FieldType.EMAIL, FieldType.URL, FieldType.SLUG}
)
SLUG_PATTERN = r"^[a-z0-9-]+$"

Owner = Dict[str, Any]
SaveHook = Callable[[Owner, Any], Union[Any, Awaitable[Any]]]
LoadHook = Callable[[Owner], Union[Any, Awaitable[Any]]]
CustomCheck = Callable[[Any], Union[bool, str, Awaitable[Union[bool, str]]]]


class SchemaError(ValueError):
    """Raised when a field declaration is malformed."""


# wire key -> attribute name
_CAMEL_KEYS = {
    "minLength": "min_length",
    "maxLength": "max_length",
    "defaultValue": "default",
    "nodeTypes": "node_types",
    "minItems": "min_items",
    "maxItems": "max_items",
    "itemType": "item_type",
    "allowedBlocks": "allowed_blocks",
    "minBlocks": "min_blocks",
    "maxBlocks": "max_blocks",
    "maxSize": "max_size",
    "includeTime": "include_time",
    "className": "class_name",
}
_WIRE_KEYS = {attr: key for key, attr in _CAMEL_KEYS.items()}


def _snake(data: dict) -> dict:
    return {_CAMEL_KEYS.get(key, key): value for key, value in data.items()}


def _wire(key: str) -> str:
    return _WIRE_KEYS.get(key, key)


@dataclass
class FieldValidation:
    required: bool = False
    min: float | None = None
    max: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    custom: CustomCheck | None = None

    def __post_init__(self) -> None:
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except (re.error, TypeError) as exc:
                raise SchemaError(f"invalid validation pattern {self.pattern!r}: {exc}") from exc

    @classmethod
    def from_dict(cls, data: dict | None) -> "FieldValidation":
        if data is None:
            return cls()
        if isinstance(data, FieldValidation):
            return data
        if not isinstance(data, dict):
            raise SchemaError("validation must be an object")
        values = _snake(data)
        unknown = set(values) - set(cls.__dataclass_fields__)
        if unknown:
            raise SchemaError(f"unknown validation keys: {sorted(unknown)}")
        if values.get("custom") is not None and not callable(values["custom"]):
            raise SchemaError("validation.custom must be callable")
        values["required"] = bool(values.get("required", False))
        return cls(**values)

    def to_dict(self) -> dict:
        out: dict = {"required": self.required}
        for key in ("min", "max", "min_length", "max_length", "pattern"):
            value = getattr(self, key)
            if value is not None:
                out[_wire(key)] = value
        return out


@dataclass
class FieldUI:
    width: str | None = None
    order: int | None = None
    hidden: bool = False
    disabled: bool = False
    group: str | None = None
    class_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "FieldUI":
        if data is None:
            return cls()
        if isinstance(data, FieldUI):
            return data
        if not isinstance(data, dict):
            raise SchemaError("ui must be an object")
        values = _snake(data)
        unknown = set(values) - set(cls.__dataclass_fields__)
        if unknown:
            raise SchemaError(f"unknown ui keys: {sorted(unknown)}")
        return cls(**values)

    def to_dict(self) -> dict:
        out: dict = {}
        for key in ("width", "order", "group", "class_name"):
            value = getattr(self, key)
            if value is not None:
                out[_wire(key)] = value
        if self.hidden:
            out["hidden"] = True
        if self.disabled:
            out["disabled"] = True
        return out


@dataclass
class SelectOption:
    value: Any
    label: str

    @classmethod
    def from_value(cls, data: Any) -> "SelectOption":
        if isinstance(data, SelectOption):
            return data
        if isinstance(data, dict) and "value" in data:
            return cls(value=data["value"], label=str(data.get("label", data["value"])))
        return cls(value=data, label=str(data))


@dataclass
class FieldDefinition:
    type: FieldType
    name: str
    label: str | None = None
    description: str | None = None
    placeholder: str | None = None
    default: Any = None
    validation: FieldValidation = field(default_factory=FieldValidation)
    ui: FieldUI = field(default_factory=FieldUI)
    save: SaveHook | None = None
    load: LoadHook | None = None
    # select
    options: List[SelectOption] = field(default_factory=list)
    multiple: bool = False
    # file
    accept: str | None = None
    max_size: int | None = None
    # node
    node_types: List[str] = field(default_factory=list)
    # array
    min_items: int | None = None
    max_items: int | None = None
    item_type: FieldType | None = None
    # blocks
    allowed_blocks: List[str] = field(default_factory=list)
    min_blocks: int | None = None
    max_blocks: int | None = None
    # presentation extras
    rows: int | None = None
    step: float | None = None
    include_time: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise SchemaError("field name is required")
        try:
            self.type = FieldType(self.type)
        except ValueError as exc:
            raise SchemaError(f"field {self.name}: unsupported type {self.type!r}") from exc
        self.validation = FieldValidation.from_dict(self.validation)
        self.ui = FieldUI.from_dict(self.ui)
        if self.save is not None and not callable(self.save):
            raise SchemaError(f"field {self.name}: save hook must be callable")
        if self.load is not None and not callable(self.load):
            raise SchemaError(f"field {self.name}: load hook must be callable")
        if self.type == FieldType.SELECT:
            if not isinstance(self.options, list) or not self.options:
                raise SchemaError(f"field {self.name}: select fields need options")
            self.options = [SelectOption.from_value(opt) for opt in self.options]
        if self.type == FieldType.ARRAY:
            if self.item_type is None:
                raise SchemaError(f"field {self.name}: array fields need itemType")
            try:
                self.item_type = FieldType(self.item_type)
            except ValueError as exc:
                raise SchemaError(f"field {self.name}: unsupported itemType {self.item_type!r}") from exc
            if self.item_type == FieldType.ARRAY:
                raise SchemaError(f"field {self.name}: nested arrays are not supported")
        self.node_types = list(self.node_types or [])
        self.allowed_blocks = list(self.allowed_blocks or [])

    @property
    def required(self) -> bool:
        return self.validation.required

    @classmethod
    def from_dict(cls, data: dict | "FieldDefinition") -> "FieldDefinition":
        if isinstance(data, FieldDefinition):
            return data
        if not isinstance(data, dict):
            raise SchemaError("field declaration must be an object")
        values = _snake(data)
        unknown = set(values) - set(cls.__dataclass_fields__)
        if unknown:
            raise SchemaError(f"field {values.get('name')}: unknown keys {sorted(unknown)}")
        if "type" not in values:
            raise SchemaError(f"field {values.get('name')}: type is required")
        return cls(**values)

    def to_dict(self) -> dict:
        """Wire form consumed by form renderers; hooks are not serializable."""
        out: dict = {"type": self.type.value, "name": self.name}
        for key in ("label", "description", "placeholder"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        if self.default is not None:
            out["defaultValue"] = self.default
        out["validation"] = self.validation.to_dict()
        ui = self.ui.to_dict()
        if ui:
            out["ui"] = ui
        if self.type == FieldType.SELECT:
            out["options"] = [{"value": opt.value, "label": opt.label} for opt in self.options]
        if self.type in (FieldType.SELECT, FieldType.FILE, FieldType.NODE):
            out["multiple"] = self.multiple
        if self.type == FieldType.FILE:
            if self.accept is not None:
                out["accept"] = self.accept
            if self.max_size is not None:
                out["maxSize"] = self.max_size
        if self.type == FieldType.NODE:
            out["nodeTypes"] = list(self.node_types)
        if self.type == FieldType.ARRAY:
            out["itemType"] = self.item_type.value
            for key in ("min_items", "max_items"):
                if getattr(self, key) is not None:
                    out[_wire(key)] = getattr(self, key)
        if self.type == FieldType.BLOCKS:
            out["allowedBlocks"] = list(self.allowed_blocks)
            for key in ("min_blocks", "max_blocks"):
                if getattr(self, key) is not None:
                    out[_wire(key)] = getattr(self, key)
        if self.rows is not None:
            out["rows"] = self.rows
        if self.step is not None:
            out["step"] = self.step
        if self.include_time:
            out["includeTime"] = True
        return out


def parse_fields(items: list | None, owner: str = "type") -> list[FieldDefinition]:
    """Parse a field list and enforce unique names within it."""
    if items is None:
        return []
    if not isinstance(items, (list, tuple)):
        raise SchemaError(f"{owner}: fields must be a list")
    fields = [FieldDefinition.from_dict(item) for item in items]
    seen: set[str] = set()
    for item in fields:
        if item.name in seen:
            raise SchemaError(f"{owner}: duplicate field name {item.name!r}")
        seen.add(item.name)
    return fields


def find_field(fields: list[FieldDefinition], name: str) -> FieldDefinition | None:
    for item in fields:
        if item.name == name:
            return item
    return None
