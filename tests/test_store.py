import asyncio

import pytest

from app.store.base import InvalidPathError, OverlappingPathsError, normalize_updates, prune, split_path
from app.store.keys import make_push_id
from app.store.memory import MemoryStore


def run(coro):
    return asyncio.run(coro)


class TestPaths:
    """Path parsing and multi-path validation."""

    def test_split(self):
        assert split_path("/users/u1/") == ("users", "u1")
        assert split_path("") == ()

    @pytest.mark.parametrize("path", ["users/a.b", "users/#1", "x/$y", "a/[0]"])
    def test_forbidden_characters(self, path):
        with pytest.raises(InvalidPathError):
            split_path(path)

    def test_overlap_rejected(self):
        with pytest.raises(OverlappingPathsError):
            normalize_updates({"users/u1": None, "users/u1/balance": 5})

    def test_siblings_with_common_prefix_allowed(self):
        items = normalize_updates({"users/u1": None, "users/u10/balance": 5})
        assert len(items) == 2

    def test_root_rejected(self):
        with pytest.raises(InvalidPathError):
            normalize_updates({"/": {}})

    def test_prune(self):
        assert prune({"a": {}, "b": None, "c": {"d": {}}}) is None
        assert prune({"a": 1, "b": {"c": None}}) == {"a": 1}
        assert prune([1, None, 3]) == {"0": 1, "2": 3}


class TestMemoryStore:
    """The in-process hierarchical store."""

    def test_get_set_remove(self):
        async def scenario():
            store = MemoryStore({"users": {"u1": {"name": "Alice", "balance": 10}}})
            assert await store.get("users/u1/name") == "Alice"
            await store.set("users/u1/balance", 25)
            assert await store.get("users/u1/balance") == 25
            await store.remove("users/u1/name")
            await store.remove("users/u1/balance")
            # parent disappears once its last child is gone
            assert await store.get("users/u1") is None
            assert await store.get("users") is None

        run(scenario())

    def test_missing_paths_read_none(self):
        store = MemoryStore({"a": {"b": 1}})
        assert run(store.get("a/b/c")) is None
        assert run(store.get("nope")) is None

    def test_multi_path_update_is_all_or_nothing(self):
        store = MemoryStore({"users": {"u1": {"balance": 10}}})
        with pytest.raises(OverlappingPathsError):
            run(store.update({"users/u1/balance": 20, "users/u1": {"balance": 30}, "other": 1}))
        assert store.snapshot() == {"users": {"u1": {"balance": 10}}}

    def test_update_writes_every_path(self):
        store = MemoryStore({"orders": {"o1": {"status": "Pending"}}})
        run(store.update({"orders/o1/status": "Completed", "users/u1/status": "active", "orders/o2": None}))
        assert store.snapshot() == {
            "orders": {"o1": {"status": "Completed"}},
            "users": {"u1": {"status": "active"}},
        }

    def test_reads_are_copies(self):
        store = MemoryStore({"a": {"b": {"c": 1}}})
        value = run(store.get("a"))
        value["b"]["c"] = 99
        assert run(store.get("a/b/c")) == 1

    def test_push_keys_sort_by_creation(self):
        async def scenario():
            store = MemoryStore()
            return [await store.push("commissions", {"n": i}) for i in range(5)]

        keys = run(scenario())
        assert keys == sorted(keys)
        assert all(len(k) == 20 for k in keys)

    def test_push_ids_within_one_millisecond(self):
        ids = [make_push_id(1_700_000_000_000) for _ in range(50)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 50
        assert make_push_id(1_700_000_000_001) > ids[-1]


class TestSubscriptions:
    """Listeners see the current value first, then every relevant write."""

    def test_prime_then_changes(self):
        async def scenario():
            store = MemoryStore({"users": {"u1": {"name": "A"}}})
            seen = []
            unsubscribe = await store.prime("users", seen.append)
            await store.set("users/u2/name", "B")
            await store.set("orders/o1/status", "Completed")  # unrelated
            unsubscribe()
            await store.set("users/u3/name", "C")
            return seen

        seen = run(scenario())
        assert seen == [
            {"u1": {"name": "A"}},
            {"u1": {"name": "A"}, "u2": {"name": "B"}},
        ]

    def test_ancestor_write_notifies_child_listener(self):
        async def scenario():
            store = MemoryStore({"users": {"u1": {"balance": 1}}})
            seen = []
            store.subscribe("users/u1/balance", seen.append)
            await store.remove("users/u1")
            return seen

        assert run(scenario()) == [None]

    def test_failing_listener_does_not_break_writes(self):
        async def scenario():
            store = MemoryStore()
            seen = []

            def boom(_value):
                raise RuntimeError("listener bug")

            store.subscribe("users", boom)
            store.subscribe("users", seen.append)
            await store.set("users/u1/name", "A")
            return store, seen

        store, seen = run(scenario())
        assert store.snapshot() == {"users": {"u1": {"name": "A"}}}
        assert seen == [{"u1": {"name": "A"}}]
