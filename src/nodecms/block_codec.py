"""Deterministic encoding of block-instance lists stored in text columns."""

from __future__ import annotations

import json
import math
import time
import uuid
from typing import Any


class BlockCodecError(ValueError):
    """Raised when a block list cannot be encoded or decoded."""


def new_block_id() -> str:
    return f"block-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def _validate(obj: Any, path: str = "$") -> None:
    if isinstance(obj, dict):
        for key, value in obj.items():
            if not isinstance(key, str):
                raise BlockCodecError(f"Unsupported key type at {path}: {type(key).__name__}")
            _validate(value, f"{path}.{key}")
        return
    if isinstance(obj, (list, tuple)):
        for idx, item in enumerate(obj):
            _validate(item, f"{path}[{idx}]")
        return
    if obj is None:
        return
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise BlockCodecError(f"Non-finite float at {path}: {obj!r}")
        return
    if isinstance(obj, (str, int, bool)):
        return
    raise BlockCodecError(f"Unsupported type at {path}: {type(obj).__name__}")


def _check_instances(blocks: Any, path: str = "$") -> None:
    if not isinstance(blocks, list):
        raise BlockCodecError(f"Block list expected at {path}")
    for idx, block in enumerate(blocks):
        where = f"{path}[{idx}]"
        if not isinstance(block, dict):
            raise BlockCodecError(f"Block instance must be an object at {where}")
        if not isinstance(block.get("id"), str) or not isinstance(block.get("type"), str):
            raise BlockCodecError(f"Block instance needs string id and type at {where}")
        if not isinstance(block.get("data", {}), dict):
            raise BlockCodecError(f"Block data must be an object at {where}")


def encode_blocks(blocks: Any) -> str:
    """Serialize a block list to canonical JSON.

    Keys are sorted recursively, list order (block order) is preserved and
    non-ASCII text is kept as is, so equal block lists always encode to the
    same string.
    """
    if blocks is None:
        blocks = []
    if isinstance(blocks, str):
        # already encoded, e.g. a value read back from the column
        blocks = decode_blocks(blocks)
    _check_instances(blocks)
    _validate(blocks)
    return json.dumps(
        blocks,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )


def decode_blocks(text: str | None) -> list[dict]:
    if text is None or text == "":
        return []
    if isinstance(text, list):
        _check_instances(text)
        return text
    try:
        blocks = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise BlockCodecError(f"Stored block list is not valid JSON: {exc}") from exc
    _check_instances(blocks)
    return blocks
