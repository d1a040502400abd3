"""Save/load hook pipeline between request payloads, storage rows and display forms."""

from __future__ import annotations

import copy
import inspect
import logging
from typing import Any

from nodecms.fields import FieldDefinition


logger = logging.getLogger("nodecms.transform")

_UNSET = object()


async def _resolve(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


async def to_storage(
    fields: list[FieldDefinition],
    values: dict[str, Any],
    owner: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Run save hooks over ``values`` and return the map to persist.

    A hook only runs when its field's key is present in ``values``. It is called
    with a working copy of ``owner`` (the stored record on update, an empty map
    on create); keys it sets on that copy are carried into the output, and a
    non-None return value replaces the field's own entry. Hook exceptions
    propagate so a failed transform never reaches the store.
    """
    out = dict(values)
    base = dict(owner or {})
    work = dict(base)
    for field in fields:
        if field.save is None or field.name not in values:
            continue
        try:
            result = await _resolve(field.save(work, values[field.name]))
        except Exception:
            logger.error("save_hook_failed field=%s", field.name)
            raise
        for key, value in work.items():
            if base.get(key, _UNSET) is not value:
                out[key] = value
        base = dict(work)
        if result is not None:
            out[field.name] = result
    return out


async def to_display(fields: list[FieldDefinition], instance: dict[str, Any]) -> dict[str, Any]:
    """Build the display form of a stored record; a failing load hook keeps the raw value."""
    out = dict(instance)
    for field in fields:
        if field.load is None:
            continue
        try:
            result = await _resolve(field.load(copy.deepcopy(instance)))
        except Exception:
            logger.exception("load_hook_failed field=%s id=%s", field.name, instance.get("id"))
            continue
        if result is not None:
            out[field.name] = result
    return out
