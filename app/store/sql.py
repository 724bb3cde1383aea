from __future__ import annotations

import logging
from typing import Any, Iterator

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models.store_node import StoreNode
from app.store.base import Store, StoreError, join_path

log = logging.getLogger(__name__)


def flatten(prefix: str, value: Any) -> Iterator[tuple[str, Any]]:
    """Yield (path, leaf) pairs; the tree is stored one row per leaf."""
    if isinstance(value, dict):
        for k, v in value.items():
            yield from flatten(f"{prefix}/{k}" if prefix else str(k), v)
    elif value is not None:
        yield prefix, value


def unflatten(prefix: str, rows: list[tuple[str, Any]]) -> Any:
    tree: dict[str, Any] = {}
    for path, value in rows:
        if path == prefix:
            return value
        rel = path[len(prefix) + 1 :] if prefix else path
        node = tree
        parts = rel.split("/")
        for p in parts[:-1]:
            node = node.setdefault(p, {})
        node[parts[-1]] = value
    return tree or None


class SqlStore(Store):
    """Hierarchical store persisted in the ``store_nodes`` table.

    One ``update`` call runs in one database transaction. Listeners only see
    writes made through this process.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        super().__init__()
        self._sessionmaker = sessionmaker

    async def _read(self, parts: tuple[str, ...]) -> Any:
        prefix = join_path(parts)
        q = select(StoreNode.path, StoreNode.value)
        if prefix:
            q = q.where(or_(StoreNode.path == prefix, StoreNode.path.startswith(prefix + "/", autoescape=True)))
        async with self._sessionmaker() as session:
            rows = [(r[0], r[1]) for r in (await session.execute(q)).all()]
        return unflatten(prefix, rows)

    async def _apply(self, items: list[tuple[tuple[str, ...], Any]]) -> None:
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    for parts, value in items:
                        path = join_path(parts)
                        ancestors = [join_path(parts[:i]) for i in range(1, len(parts))]
                        await session.execute(
                            delete(StoreNode).where(
                                or_(
                                    StoreNode.path == path,
                                    StoreNode.path.startswith(path + "/", autoescape=True),
                                    StoreNode.path.in_(ancestors),
                                )
                            )
                        )
                        session.add_all(StoreNode(path=p, value=v) for p, v in flatten(path, value))
        except StoreError:
            raise
        except Exception as e:
            log.exception("sql_store_apply_failed paths=%s", [join_path(p) for p, _ in items])
            raise StoreError(f"store write failed: {e}") from e
