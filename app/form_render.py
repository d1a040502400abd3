"""Server-rendered edit forms driven by field definitions.

Every field is dispatched on its type tag to one inline Jinja2 template;
``blocks`` fields render their instances recursively through the block
definitions. The block-list and node-selection helpers return new lists so
callers can treat them as pure state transitions, and ``validate_form`` gives
advisory per-field messages ahead of the authoritative server validation.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Iterable, Mapping

from jinja2.sandbox import ImmutableSandboxedEnvironment

from app.field_validation import MAX_BLOCK_DEPTH, field_violations
from nodecms.block_codec import new_block_id
from nodecms.fields import FieldDefinition, FieldType
from node_engine import NodeEngineError


logger = logging.getLogger("nodecms.forms")

UNORDERED = 999


class BlockLimitError(ValueError):
    """Raised when a block cannot be added to a blocks field."""


_WRAPPER = """\
<div class="form-field form-field--{{ field.type }}{% if error %} form-field--error{% endif %}" \
data-field="{{ path }}" data-width="{{ ui.width or 'full' }}"{% if ui.group %} data-group="{{ ui.group }}"{% endif %}>
<label for="{{ dom_id }}">{{ field.label or field.name }}{% if required %} <span class="form-field__required">*</span>{% endif %}</label>
{% if field.description %}<div class="form-field__description">{{ field.description }}</div>{% endif %}
{{ control | safe }}
{% if error %}<div class="form-field__error">{{ error }}</div>{% endif %}
</div>"""

_ATTRS = (
    'id="{{ dom_id }}" name="{{ path }}"'
    '{% if field.placeholder %} placeholder="{{ field.placeholder }}"{% endif %}'
    "{% if required %} required{% endif %}"
    "{% if ui.disabled %} disabled{% endif %}"
)

_CONTROLS = {
    "input": (
        '<input type="{{ input_type }}" ' + _ATTRS + ' value="{{ value if value is not none else \'\' }}"'
        '{% if rules.minLength is defined %} minlength="{{ rules.minLength }}"{% endif %}'
        '{% if rules.maxLength is defined %} maxlength="{{ rules.maxLength }}"{% endif %}'
        '{% if pattern %} pattern="{{ pattern }}"{% endif %}>'
    ),
    "textarea": (
        "<textarea " + _ATTRS + ' rows="{{ field.rows or 4 }}"'
        '{% if rules.maxLength is defined %} maxlength="{{ rules.maxLength }}"{% endif %}>'
        "{{ value if value is not none else '' }}</textarea>"
    ),
    "number": (
        '<input type="number" ' + _ATTRS + ' value="{{ value if value is not none else \'\' }}"'
        '{% if rules.min is defined %} min="{{ rules.min }}"{% endif %}'
        '{% if rules.max is defined %} max="{{ rules.max }}"{% endif %}'
        '{% if field.step is defined %} step="{{ field.step }}"{% endif %}>'
    ),
    "boolean": '<input type="checkbox" ' + _ATTRS + ' value="true"{% if value %} checked{% endif %}>',
    "select": (
        "<select " + _ATTRS + "{% if field.multiple %} multiple{% endif %}>"
        "{% if not field.multiple %}<option value=\"\">Select...</option>{% endif %}"
        "{% for opt in field.options %}"
        '<option value="{{ opt.value }}"{% if opt.value in selected %} selected{% endif %}>{{ opt.label }}</option>'
        "{% endfor %}</select>"
    ),
    "date": (
        '<input type="{{ \'datetime-local\' if field.includeTime else \'date\' }}" '
        + _ATTRS
        + ' value="{{ value if value is not none else \'\' }}">'
    ),
    "file": (
        '<input type="file" ' + _ATTRS + '{% if field.accept %} accept="{{ field.accept }}"{% endif %}'
        "{% if field.multiple %} multiple{% endif %}>"
        '{% if current %}<input type="hidden" name="{{ path }}__current" value="{{ current }}">{% endif %}'
    ),
    "node": (
        "<div class=\"node-picker\" data-node-types=\"{{ field.nodeTypes | join(',') }}\">"
        '<input type="search" class="node-picker__search" data-target="{{ dom_id }}" placeholder="Search...">'
        "<select " + _ATTRS + "{% if field.multiple %} multiple{% endif %}>"
        "{% if not field.multiple %}<option value=\"\">Select a node...</option>{% endif %}"
        "{% for opt in options %}"
        '<option value="{{ opt.nodeType }}:{{ opt.id }}"{% if opt.key in selected %} selected{% endif %}>'
        "{{ opt.title }} ({{ opt.nodeType }})</option>"
        "{% endfor %}</select></div>"
    ),
    "array": (
        '<div class="array-items" id="{{ dom_id }}" data-item-type="{{ field.itemType }}"'
        '{% if field.minItems is defined %} data-min-items="{{ field.minItems }}"{% endif %}'
        '{% if field.maxItems is defined %} data-max-items="{{ field.maxItems }}"{% endif %}>'
        "{% for item in items %}"
        '<input type="text" name="{{ path }}[{{ loop.index0 }}]" value="{{ item }}">'
        "{% endfor %}</div>"
    ),
    "blocks": (
        '<div class="block-list" id="{{ dom_id }}" data-depth="{{ depth }}"'
        '{% if field.maxBlocks is defined %} data-max-blocks="{{ field.maxBlocks }}"{% endif %}>'
        "{% for block in rendered %}"
        '<fieldset class="block-instance" data-block-id="{{ block.id }}" data-block-type="{{ block.type }}">'
        "<legend>{{ block.title }}</legend>{{ block.body | safe }}</fieldset>"
        "{% endfor %}"
        "{% if can_add %}"
        '<select class="block-list__add" data-target="{{ dom_id }}"><option value="">Add block...</option>'
        '{% for opt in addable %}<option value="{{ opt.type }}">{{ opt.displayName }}</option>{% endfor %}'
        "</select>{% endif %}"
        '{% if field.maxBlocks is defined and rendered %}<div class="block-list__usage">'
        "{{ rendered | length }} of {{ field.maxBlocks }} blocks used</div>{% endif %}"
        "</div>"
    ),
    "hidden": '<input type="hidden" name="{{ path }}" value="{{ value if value is not none else \'\' }}">',
    "unsupported": '<div class="form-field__unsupported">Unsupported field type: {{ field.type }}</div>',
    "unknown_block": '<div class="form-field__unsupported">Unknown block type: {{ block_type }}</div>',
    "too_deep": '<div class="form-field__unsupported">Nested blocks are limited to {{ max_depth }} levels</div>',
}

_FORM = """\
<form class="node-form" method="{{ method }}" action="{{ action }}"{% if node_type %} data-node-type="{{ node_type }}"{% endif %}>
{% if title %}<h2>{{ title }}</h2>{% endif %}
{% for html in fields %}{{ html | safe }}
{% endfor %}<button type="submit">{{ submit_label }}</button>
</form>"""

_INPUT_TYPES = {
    FieldType.TEXT.value: "text",
    FieldType.SLUG.value: "text",
    FieldType.EMAIL.value: "email",
    FieldType.URL.value: "url",
}

_env = ImmutableSandboxedEnvironment(autoescape=True)
_TEMPLATES = {key: _env.from_string(text) for key, text in _CONTROLS.items()}
_WRAPPER_TEMPLATE = _env.from_string(_WRAPPER)
_FORM_TEMPLATE = _env.from_string(_FORM)


def wire_field(field: FieldDefinition | Mapping[str, Any]) -> dict:
    if isinstance(field, FieldDefinition):
        return field.to_dict()
    return dict(field)


def sort_fields(fields: Iterable[FieldDefinition | Mapping[str, Any]]) -> list[dict]:
    wired = [wire_field(f) for f in fields]
    return sorted(wired, key=lambda f: (f.get("ui") or {}).get("order", UNORDERED))


def _dom_id(path: str) -> str:
    cleaned = "".join(ch if ch.isalnum() else "-" for ch in path)
    return "field-" + cleaned.strip("-")


def _selected_values(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _node_key(ref: Any) -> str | None:
    if isinstance(ref, dict) and "id" in ref and "nodeType" in ref:
        return f"{ref['nodeType']}:{ref['id']}"
    return None


def _control(field: dict, value: Any, path: str, ctx: dict, depth: int) -> str:
    ftype = field.get("type")
    base = {
        "field": field,
        "path": path,
        "dom_id": _dom_id(path),
        "ui": field.get("ui") or {},
        "rules": field.get("validation") or {},
        "required": bool((field.get("validation") or {}).get("required")),
        "value": value,
    }
    if ftype in _INPUT_TYPES:
        pattern = base["rules"].get("pattern")
        if pattern is None and ftype == FieldType.SLUG.value:
            pattern = "[a-z0-9-]+"
        return _TEMPLATES["input"].render(base, input_type=_INPUT_TYPES[ftype], pattern=pattern)
    if ftype in ("textarea", "number", "boolean", "date"):
        return _TEMPLATES[ftype].render(base)
    if ftype == "select":
        return _TEMPLATES["select"].render(base, selected=_selected_values(value))
    if ftype == "file":
        current = json.dumps(value) if isinstance(value, (dict, list)) else (value or "")
        return _TEMPLATES["file"].render(base, current=current)
    if ftype == "node":
        options = ctx["node_options"].get(field.get("name"), [])
        options = [dict(opt, key=_node_key(opt)) for opt in options]
        selected = [_node_key(ref) for ref in _selected_values(value)]
        return _TEMPLATES["node"].render(base, options=options, selected=selected)
    if ftype == "array":
        return _TEMPLATES["array"].render(base, items=_selected_values(value))
    if ftype == "blocks":
        return _blocks_control(field, value, path, ctx, depth, base)
    return _TEMPLATES["unsupported"].render(base)


def _blocks_control(field: dict, value: Any, path: str, ctx: dict, depth: int, base: dict) -> str:
    max_depth = ctx["max_depth"]
    if depth >= max_depth:
        return _TEMPLATES["too_deep"].render(base, max_depth=max_depth)
    block_defs: Mapping[str, dict] = ctx["block_defs"]
    instances = value if isinstance(value, list) else []
    rendered = []
    for idx, block in enumerate(instances):
        if not isinstance(block, dict):
            continue
        block_def = block_defs.get(block.get("type"))
        prefix = f"{path}[{idx}]."
        if block_def is None:
            body = _TEMPLATES["unknown_block"].render(block_type=block.get("type"))
            title = str(block.get("type"))
        else:
            data = block.get("data") or {}
            body = "".join(
                _render(sub, data.get(sub.get("name")), ctx, prefix=prefix, depth=depth + 1)
                for sub in sort_fields(block_def.get("fields") or [])
            )
            title = block_def.get("displayName") or block_def.get("type")
        rendered.append({"id": block.get("id"), "type": block.get("type"), "title": title, "body": body})
    allowed = field.get("allowedBlocks") or []
    addable = [d for name, d in block_defs.items() if not allowed or name in allowed]
    max_blocks = field.get("maxBlocks")
    can_add = bool(addable) and (not max_blocks or len(instances) < max_blocks)
    return _TEMPLATES["blocks"].render(base, rendered=rendered, addable=addable, can_add=can_add, depth=depth)


def _render(field: dict, value: Any, ctx: dict, prefix: str = "", depth: int = 0) -> str:
    path = f"{prefix}{field.get('name')}"
    ui = field.get("ui") or {}
    if ui.get("hidden"):
        stored = json.dumps(value) if isinstance(value, (dict, list)) else value
        return _TEMPLATES["hidden"].render(path=path, value=stored)
    control = _control(field, value, path, ctx, depth)
    return _WRAPPER_TEMPLATE.render(
        field=field,
        path=path,
        dom_id=_dom_id(path),
        ui=ui,
        required=bool((field.get("validation") or {}).get("required")),
        control=control,
        error=ctx["errors"].get(path),
    )


def _context(
    block_defs: Mapping[str, dict] | None,
    node_options: Mapping[str, list] | None,
    errors: Mapping[str, str] | None,
    max_depth: int | None,
) -> dict:
    return {
        "block_defs": dict(block_defs or {}),
        "node_options": dict(node_options or {}),
        "errors": dict(errors or {}),
        "max_depth": MAX_BLOCK_DEPTH if max_depth is None else max_depth,
    }


def render_field(
    field: FieldDefinition | Mapping[str, Any],
    value: Any = None,
    *,
    block_defs: Mapping[str, dict] | None = None,
    node_options: Mapping[str, list] | None = None,
    errors: Mapping[str, str] | None = None,
    max_depth: int | None = None,
) -> str:
    return _render(wire_field(field), value, _context(block_defs, node_options, errors, max_depth))


def render_form(
    fields: Iterable[FieldDefinition | Mapping[str, Any]],
    values: Mapping[str, Any] | None = None,
    *,
    block_defs: Mapping[str, dict] | None = None,
    node_options: Mapping[str, list] | None = None,
    errors: Mapping[str, str] | None = None,
    action: str = "",
    method: str = "post",
    title: str | None = None,
    node_type: str | None = None,
    submit_label: str = "Save",
    max_depth: int | None = None,
) -> str:
    values = values or {}
    ctx = _context(block_defs, node_options, errors, max_depth)
    rendered = [_render(f, values.get(f.get("name")), ctx) for f in sort_fields(fields)]
    return _FORM_TEMPLATE.render(
        fields=rendered,
        action=action,
        method=method,
        title=title,
        node_type=node_type,
        submit_label=submit_label,
    )


# block list editing


def _find_index(instances: list, block_id: str) -> int:
    for idx, block in enumerate(instances):
        if isinstance(block, dict) and block.get("id") == block_id:
            return idx
    return -1


def add_block(
    instances: list | None,
    block_type: str,
    field: FieldDefinition | Mapping[str, Any] | None = None,
    block_def: Mapping[str, Any] | None = None,
) -> list:
    instances = list(instances or [])
    wired = wire_field(field) if field is not None else {}
    allowed = wired.get("allowedBlocks") or []
    if allowed and block_type not in allowed:
        raise BlockLimitError(f"Block type '{block_type}' is not allowed in {wired.get('name')}")
    max_blocks = wired.get("maxBlocks")
    if max_blocks and len(instances) >= max_blocks:
        raise BlockLimitError(f"{wired.get('name')} already holds {max_blocks} blocks")
    data: dict = {}
    for sub in (block_def or {}).get("fields") or []:
        sub = wire_field(sub)
        if "defaultValue" in sub:
            data[sub["name"]] = copy.deepcopy(sub["defaultValue"])
    instances.append({"id": new_block_id(), "type": block_type, "data": data})
    return instances


def remove_block(instances: list | None, block_id: str) -> list:
    return [b for b in (instances or []) if not (isinstance(b, dict) and b.get("id") == block_id)]


def move_block(instances: list | None, block_id: str, direction: str) -> list:
    instances = list(instances or [])
    idx = _find_index(instances, block_id)
    if idx == -1:
        return instances
    target = idx - 1 if direction == "up" else idx + 1
    if target < 0 or target >= len(instances):
        return instances
    moved = instances.pop(idx)
    instances.insert(target, moved)
    return instances


def update_block_field(instances: list | None, block_id: str, name: str, value: Any) -> list:
    updated = []
    for block in instances or []:
        if isinstance(block, dict) and block.get("id") == block_id:
            block = {**block, "data": {**(block.get("data") or {}), name: value}}
        updated.append(block)
    return updated


# node references


def toggle_node(selection: Any, node: dict, multiple: bool) -> Any:
    """Select ``node``; in multiple mode a second toggle removes it again."""
    ref = {"id": node["id"], "nodeType": node["nodeType"]}
    if "title" in node:
        ref["title"] = node["title"]
    if not multiple:
        return ref
    current = [s for s in _selected_values(selection) if isinstance(s, dict)]
    key = _node_key(ref)
    if any(_node_key(s) == key for s in current):
        return [s for s in current if _node_key(s) != key]
    return current + [ref]


def filter_node_options(options: Iterable[dict], search: str | None) -> list[dict]:
    options = list(options)
    if not search:
        return options
    needle = search.strip().lower()
    return [opt for opt in options if needle in str(opt.get("title") or "").lower()]


async def load_node_options(engine, field: FieldDefinition | Mapping[str, Any], search: str | None = None) -> list[dict]:
    wired = wire_field(field)
    type_names = wired.get("nodeTypes") or engine.registry.nodes.names()
    options: list[dict] = []
    for type_name in type_names:
        try:
            result = await engine.list(type_name, page=1, limit=100)
        except NodeEngineError as exc:
            logger.warning("node_options_failed type=%s error=%s", type_name, exc)
            continue
        for node in result["nodes"]:
            options.append(
                {
                    "id": node.get("id"),
                    "title": node.get("title") or node.get("name") or f"{type_name} #{node.get('id')}",
                    "nodeType": type_name,
                }
            )
    return filter_node_options(options, search)


def validate_form(fields: Iterable[FieldDefinition | Mapping[str, Any]], values: Mapping[str, Any] | None) -> dict[str, str]:
    """First violation per field name; advisory only."""
    values = values or {}
    errors: dict[str, str] = {}
    for item in fields:
        definition = item if isinstance(item, FieldDefinition) else FieldDefinition.from_dict(dict(item))
        messages = field_violations(definition, values.get(definition.name))
        if messages:
            errors[definition.name] = messages[0]
    return errors
