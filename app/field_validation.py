"""Field-level validation for node and block payloads."""

from __future__ import annotations

import inspect
import os
import re
from datetime import date, datetime
from typing import Any, Callable
from urllib.parse import urlsplit

from nodecms.fields import SLUG_PATTERN, STRING_TYPES, FieldDefinition, FieldType


MAX_BLOCK_DEPTH = int(os.getenv("NODECMS_MAX_BLOCK_DEPTH", "8"))

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_empty(value: Any) -> bool:
    return value is None or value == ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _fmt(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _string_violations(field: FieldDefinition, value: Any, name: str) -> list[str]:
    if not isinstance(value, str):
        return [f"Field '{name}' must be a string"]
    errors: list[str] = []
    rules = field.validation
    if rules.min_length is not None and len(value) < rules.min_length:
        errors.append(f"Field '{name}' must be at least {rules.min_length} characters long")
    if rules.max_length is not None and len(value) > rules.max_length:
        errors.append(f"Field '{name}' must be no more than {rules.max_length} characters long")
    pattern = rules.pattern
    if pattern is None and field.type == FieldType.SLUG:
        pattern = SLUG_PATTERN
    if pattern is not None and not re.search(pattern, value):
        errors.append(f"Field '{name}' does not match the required pattern")
    return errors


def _check_text(field: FieldDefinition, value: Any, name: str) -> list[str]:
    return _string_violations(field, value, name)


def _check_email(field: FieldDefinition, value: Any, name: str) -> list[str]:
    errors = _string_violations(field, value, name)
    if isinstance(value, str) and not _EMAIL_RE.match(value):
        errors.append(f"Field '{name}' must be a valid email address")
    return errors


def _check_url(field: FieldDefinition, value: Any, name: str) -> list[str]:
    errors = _string_violations(field, value, name)
    if isinstance(value, str):
        if value.startswith("/") and not value.startswith("//"):
            # site-relative link
            return errors
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            errors.append(f"Field '{name}' must be a valid URL")
    return errors


def _check_number(field: FieldDefinition, value: Any, name: str) -> list[str]:
    if not _is_number(value):
        return [f"Field '{name}' must be a number"]
    errors: list[str] = []
    rules = field.validation
    if rules.min is not None and value < rules.min:
        errors.append(f"Field '{name}' must be at least {_fmt(rules.min)}")
    if rules.max is not None and value > rules.max:
        errors.append(f"Field '{name}' must be no more than {_fmt(rules.max)}")
    return errors


def _check_boolean(field: FieldDefinition, value: Any, name: str) -> list[str]:
    if not isinstance(value, bool):
        return [f"Field '{name}' must be a boolean"]
    return []


def _check_select(field: FieldDefinition, value: Any, name: str) -> list[str]:
    allowed = [opt.value for opt in field.options]
    if field.multiple:
        if not isinstance(value, list):
            return [f"Field '{name}' must be an array of options"]
        bad = [item for item in value if item not in allowed]
        if bad:
            return [f"Field '{name}' contains invalid options {bad}; allowed {allowed}"]
        return []
    if value not in allowed:
        return [f"Field '{name}' must be one of {allowed}"]
    return []


def _check_date(field: FieldDefinition, value: Any, name: str) -> list[str]:
    if not isinstance(value, str):
        return [f"Field '{name}' must be a date string"]
    try:
        if "T" in value or " " in value:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
        else:
            date.fromisoformat(value)
    except ValueError:
        return [f"Field '{name}' must be an ISO-8601 date"]
    return []


def _file_ref_ok(item: Any) -> bool:
    if isinstance(item, str):
        return bool(item.strip())
    return isinstance(item, dict) and item.get("id") is not None


def _check_file(field: FieldDefinition, value: Any, name: str) -> list[str]:
    if field.multiple:
        if not isinstance(value, list):
            return [f"Field '{name}' must be an array of files"]
        return [
            f"Field '{name}' contains invalid file reference at position {idx + 1}"
            for idx, item in enumerate(value)
            if not _file_ref_ok(item)
        ]
    if not _file_ref_ok(value):
        return [f"Field '{name}' must be a file reference"]
    return []


def _node_ref_ok(item: Any) -> bool:
    return isinstance(item, dict) and "id" in item and "nodeType" in item


def _check_node(field: FieldDefinition, value: Any, name: str) -> list[str]:
    if field.multiple:
        if not isinstance(value, list):
            return [f"Field '{name}' must be an array of nodes"]
        errors = []
        for idx, item in enumerate(value):
            if not _node_ref_ok(item):
                errors.append(
                    f"Field '{name}' contains invalid node reference at position {idx + 1} (must have id and nodeType)"
                )
            elif field.node_types and item["nodeType"] not in field.node_types:
                errors.append(f"Field '{name}' does not accept node type '{item['nodeType']}'")
        return errors
    if not _node_ref_ok(value):
        return [f"Field '{name}' must be a valid node reference (must have id and nodeType)"]
    if field.node_types and value["nodeType"] not in field.node_types:
        return [f"Field '{name}' does not accept node type '{value['nodeType']}'"]
    return []


def _item_ok(item_type: FieldType, item: Any) -> bool:
    if item_type in STRING_TYPES:
        return isinstance(item, str)
    if item_type == FieldType.NUMBER:
        return _is_number(item)
    if item_type == FieldType.BOOLEAN:
        return isinstance(item, bool)
    return True


def _check_array(field: FieldDefinition, value: Any, name: str) -> list[str]:
    if not isinstance(value, list):
        return [f"Field '{name}' must be an array"]
    errors: list[str] = []
    if field.min_items is not None and len(value) < field.min_items:
        errors.append(f"Field '{name}' must have at least {field.min_items} items")
    if field.max_items is not None and len(value) > field.max_items:
        errors.append(f"Field '{name}' must have no more than {field.max_items} items")
    for idx, item in enumerate(value):
        if not _item_ok(field.item_type, item):
            errors.append(f"Field '{name}[{idx}]' must be of type {field.item_type.value}")
    return errors


def _check_blocks(field: FieldDefinition, value: Any, name: str) -> list[str]:
    """Shape and count checks; block data is validated by validate_fields."""
    if not isinstance(value, list):
        return [f"Field '{name}' must be an array of blocks"]
    errors: list[str] = []
    if field.min_blocks is not None and len(value) < field.min_blocks:
        errors.append(f"Field '{name}' must have at least {field.min_blocks} blocks")
    if field.max_blocks is not None and len(value) > field.max_blocks:
        errors.append(f"Field '{name}' must have no more than {field.max_blocks} blocks")
    for idx, block in enumerate(value):
        where = f"{name}[{idx}]"
        if not isinstance(block, dict):
            errors.append(f"Field '{where}' must be a block object")
            continue
        if not isinstance(block.get("id"), str) or not block.get("id"):
            errors.append(f"Field '{where}' must have a string id")
        if not isinstance(block.get("type"), str) or not block.get("type"):
            errors.append(f"Field '{where}' must have a string type")
        elif field.allowed_blocks and block["type"] not in field.allowed_blocks:
            errors.append(f"Field '{where}' block type '{block['type']}' is not allowed here")
        if not isinstance(block.get("data", {}), dict):
            errors.append(f"Field '{where}' data must be an object")
    return errors


_CHECKS: dict[FieldType, Callable[[FieldDefinition, Any, str], list[str]]] = {
    FieldType.TEXT: _check_text,
    FieldType.TEXTAREA: _check_text,
    FieldType.SLUG: _check_text,
    FieldType.EMAIL: _check_email,
    FieldType.URL: _check_url,
    FieldType.NUMBER: _check_number,
    FieldType.BOOLEAN: _check_boolean,
    FieldType.SELECT: _check_select,
    FieldType.DATE: _check_date,
    FieldType.FILE: _check_file,
    FieldType.NODE: _check_node,
    FieldType.ARRAY: _check_array,
    FieldType.BLOCKS: _check_blocks,
}

_missing = set(FieldType) - set(_CHECKS)
if _missing:
    raise RuntimeError(f"field types without a validator: {sorted(t.value for t in _missing)}")


def field_violations(field: FieldDefinition, value: Any, name: str | None = None) -> list[str]:
    """Required and type checks for one field, without custom hooks or block recursion."""
    name = name or field.name
    if is_empty(value):
        if field.required:
            return [f"Field '{name}' is required"]
        return []
    return _CHECKS[field.type](field, value, name)


async def _run_custom(field: FieldDefinition, value: Any, name: str) -> list[str]:
    check = field.validation.custom
    if check is None:
        return []
    try:
        result = check(value)
        if inspect.isawaitable(result):
            result = await result
    except Exception as exc:
        return [f"Field '{name}' custom validation error: {exc}"]
    if result is True:
        return []
    if isinstance(result, str) and result:
        if result.startswith(f"Field '{name}'"):
            return [result]
        return [f"Field '{name}' {result}"]
    return [f"Field '{name}' failed custom validation"]


def _instance_violations(field: FieldDefinition, value: list, name: str, blocks) -> list[str]:
    errors: list[str] = []
    counts: dict[str, int] = {}
    for block in value:
        if isinstance(block, dict) and isinstance(block.get("type"), str):
            counts[block["type"]] = counts.get(block["type"], 0) + 1
    for block_type_name, count in counts.items():
        block_type = blocks.get(block_type_name)
        if block_type is None:
            errors.append(f"Field '{name}' uses unknown block type '{block_type_name}'")
            continue
        settings = block_type.settings
        if not settings.allow_multiple and count > 1:
            errors.append(f"Field '{name}' allows only one '{block_type_name}' block")
        elif settings.max_instances is not None and count > settings.max_instances:
            errors.append(
                f"Field '{name}' allows at most {settings.max_instances} '{block_type_name}' blocks"
            )
    return errors


async def validate_fields(
    fields: list[FieldDefinition],
    data: dict,
    blocks=None,
    *,
    prefix: str = "",
    depth: int = 0,
    max_depth: int | None = None,
) -> list[str]:
    """Validate ``data`` against ``fields`` and return every violation message.

    Fields are checked in declaration order and violations from all fields are
    concatenated. When a block registry is passed, ``blocks`` field values are
    checked against it and each block's data is validated recursively against
    its block type's fields, with messages naming the nested path
    (``content[0].quote``).
    """
    if max_depth is None:
        max_depth = MAX_BLOCK_DEPTH
    if not isinstance(data, dict):
        return ["Payload must be an object"]
    errors: list[str] = []
    for field in fields:
        name = f"{prefix}{field.name}"
        value = data.get(field.name)
        if is_empty(value):
            if field.required:
                errors.append(f"Field '{name}' is required")
            continue
        type_errors = _CHECKS[field.type](field, value, name)
        errors.extend(type_errors)
        if field.type == FieldType.BLOCKS and not type_errors and blocks is not None:
            errors.extend(_instance_violations(field, value, name, blocks))
            errors.extend(await _validate_block_data(value, name, blocks, depth, max_depth))
        errors.extend(await _run_custom(field, value, name))
    return errors


async def _validate_block_data(value: list, name: str, blocks, depth: int, max_depth: int) -> list[str]:
    if not value:
        return []
    if depth + 1 > max_depth:
        return [f"Field '{name}' exceeds the maximum block nesting depth of {max_depth}"]
    errors: list[str] = []
    for idx, block in enumerate(value):
        block_type = blocks.get(block["type"])
        if block_type is None:
            continue
        errors.extend(
            await validate_fields(
                block_type.fields,
                block.get("data") or {},
                blocks,
                prefix=f"{name}[{idx}].",
                depth=depth + 1,
                max_depth=max_depth,
            )
        )
    return errors
