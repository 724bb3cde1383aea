from __future__ import annotations

import asyncio
import copy
from typing import Any

from app.store.base import Store, prune


class MemoryStore(Store):
    """In-process tree. Each ``update`` call is applied under one lock, i.e. atomically."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        super().__init__()
        self._root: dict[str, Any] = prune(copy.deepcopy(initial or {})) or {}
        self._lock = asyncio.Lock()

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._root)

    async def _read(self, parts: tuple[str, ...]) -> Any:
        node: Any = self._root
        for p in parts:
            if not isinstance(node, dict) or p not in node:
                return None
            node = node[p]
        return copy.deepcopy(node) if node != {} else None

    async def _apply(self, items: list[tuple[tuple[str, ...], Any]]) -> None:
        async with self._lock:
            root = copy.deepcopy(self._root)
            for parts, value in items:
                _write(root, parts, value)
            self._root = root


def _write(root: dict[str, Any], parts: tuple[str, ...], value: Any) -> None:
    trail: list[tuple[dict[str, Any], str]] = []
    node = root
    for p in parts[:-1]:
        child = node.get(p)
        if not isinstance(child, dict):
            if value is None:
                return
            child = {}
            node[p] = child
        trail.append((node, p))
        node = child

    leaf = parts[-1]
    if value is None:
        node.pop(leaf, None)
    else:
        node[leaf] = value

    # drop parents left empty by a delete
    while trail and not node:
        parent, key = trail.pop()
        parent.pop(key, None)
        node = parent
