from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Iterable, Mapping

log = logging.getLogger(__name__)

_FORBIDDEN = set(".#$[]")

OnChange = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class StoreError(RuntimeError):
    pass


class InvalidPathError(StoreError):
    pass


class OverlappingPathsError(StoreError):
    """One path of a batch is an ancestor of (or equal to) another one."""


def split_path(path: str) -> tuple[str, ...]:
    """'/users/u1/' -> ('users', 'u1'). Root is the empty tuple."""
    parts = tuple(p for p in (path or "").strip().split("/") if p)
    for p in parts:
        if _FORBIDDEN.intersection(p):
            raise InvalidPathError(f"invalid path segment {p!r} in {path!r}")
    return parts


def join_path(parts: Iterable[str]) -> str:
    return "/".join(parts)


def is_prefix(a: tuple[str, ...], b: tuple[str, ...]) -> bool:
    return len(a) <= len(b) and b[: len(a)] == a


def normalize_updates(updates: Mapping[str, Any]) -> list[tuple[tuple[str, ...], Any]]:
    """Validate a multi-path update.

    Mirrors the hierarchical store contract: every path must be non-root and no
    path may be an ancestor of another path in the same call.
    """
    items = [(split_path(p), v) for p, v in updates.items()]
    for parts, _ in items:
        if not parts:
            raise InvalidPathError("root cannot be written in a multi-path update")
    ordered = sorted(items, key=lambda it: it[0])
    for (a, _), (b, _) in zip(ordered, ordered[1:]):
        if is_prefix(a, b):
            raise OverlappingPathsError(f"paths overlap: /{join_path(a)} and /{join_path(b)}")
    return items


def prune(value: Any) -> Any:
    """Empty objects and None disappear, the same as in the hosted store."""
    if isinstance(value, Mapping):
        out = {}
        for k, v in value.items():
            pv = prune(v)
            if pv is not None:
                out[str(k)] = pv
        return out or None
    if isinstance(value, (list, tuple)):
        return prune({str(i): v for i, v in enumerate(value)})
    return value


class Store:
    """Hierarchical JSON store.

    Subclasses implement ``_read`` and ``_apply``; listener bookkeeping is shared.
    """

    def __init__(self) -> None:
        self._listeners: dict[int, tuple[tuple[str, ...], OnChange]] = {}
        self._next_listener = 0

    async def get(self, path: str) -> Any:
        return await self._read(split_path(path))

    async def update(self, updates: Mapping[str, Any]) -> None:
        items = normalize_updates(updates)
        if not items:
            return
        await self._apply([(parts, prune(copy.deepcopy(v))) for parts, v in items])
        await self._notify([parts for parts, _ in items])

    async def set(self, path: str, value: Any) -> None:
        await self.update({path: value})

    async def remove(self, path: str) -> None:
        await self.update({path: None})

    async def push(self, path: str, value: Any) -> str:
        from app.store.keys import make_push_id

        key = make_push_id()
        await self.update({f"{join_path(split_path(path))}/{key}": value})
        return key

    def subscribe(self, path: str, on_change: OnChange) -> Unsubscribe:
        """Register ``on_change`` for ``path``.

        The callback fires once right away with the current value (scheduled by
        the caller through ``prime``) and after every write that touches the path.
        """
        parts = split_path(path)
        lid = self._next_listener
        self._next_listener += 1
        self._listeners[lid] = (parts, on_change)

        def _unsubscribe() -> None:
            self._listeners.pop(lid, None)

        return _unsubscribe

    async def prime(self, path: str, on_change: OnChange) -> Unsubscribe:
        unsubscribe = self.subscribe(path, on_change)
        on_change(await self.get(path))
        return unsubscribe

    async def _notify(self, written: list[tuple[str, ...]]) -> None:
        for parts, cb in list(self._listeners.values()):
            if not any(is_prefix(parts, w) or is_prefix(w, parts) for w in written):
                continue
            try:
                cb(await self._read(parts))
            except Exception:
                log.exception("store_listener_failed path=/%s", join_path(parts))

    async def _read(self, parts: tuple[str, ...]) -> Any:
        raise NotImplementedError

    async def _apply(self, items: list[tuple[tuple[str, ...], Any]]) -> None:
        raise NotImplementedError
