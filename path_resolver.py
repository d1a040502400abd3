"""Map a public URL path onto a (node type, node) pair."""

from __future__ import annotations

import logging
from typing import Iterable

from node_engine import InvalidPath, NodeEngine, NodeNotFound


logger = logging.getLogger("nodecms.engine")


def split_path(path: str | None) -> list[str]:
    if not path:
        return []
    return [segment for segment in path.strip().split("/") if segment]


class PathResolver:
    """Resolve paths in node type registration order.

    A type with a subpath matches when every segment but the last equals the
    subpath; the last segment is the lookup key. A type without a subpath
    treats the whole joined path as the key. The first type holding a
    matching node wins.
    """

    def __init__(self, engine: NodeEngine) -> None:
        self.engine = engine

    async def resolve(self, segments: Iterable[str] | str) -> dict:
        if isinstance(segments, str):
            segments = split_path(segments)
        segments = [segment for segment in segments if segment]
        if not segments:
            raise InvalidPath("Path is required")
        joined = "/".join(segments)
        registry = self.engine.registry
        for name, node_type in registry.nodes.list_all():
            subpath = node_type.settings.subpath
            if subpath:
                if len(segments) < 2 or "/".join(segments[:-1]) != subpath:
                    continue
                key = segments[-1]
            else:
                key = joined
            row = self.engine.find_instance(node_type, key, numeric_slug=True)
            if row is not None:
                logger.info("path_resolved path=%s type=%s id=%s", joined, name, row.get("id"))
                node = await self.engine.display(node_type, row)
                return {"node": node, "nodeType": name}
        for _, node_type in registry.nodes.list_all():
            if node_type.settings.subpath and node_type.settings.subpath == joined:
                raise InvalidPath(f"Path '{joined}' needs a node key after the subpath")
        raise NodeNotFound(f"No node found for path '{joined}'")
