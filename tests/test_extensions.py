"""
Tests for the capability extension framework.
"""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, AsyncIterator, Iterable

import orjson
import pytest
from pydantic import BaseModel, ValidationError

from kvps.backends.memory import MemoryStore
from kvps.exceptions import ConfigurationError
from kvps.extensions import (
    ExtendedStore,
    deserialize_value,
    extend,
    serialize_value,
)
from kvps.store import BatchStore, FullStore, KVStore
from kvps.types import Capability, Entry, Query


class Quote(BaseModel):
    ticker: str
    price: float
    as_of: date


class RecordingStore(MemoryStore):
    """Memory store that logs calls and fails on selected keys."""

    def __init__(self, fail_on: set[str] | None = None) -> None:
        super().__init__()
        self.fail_on = fail_on or set()
        self.calls: list[tuple[str, str]] = []

    def _check(self, op: str, key: str) -> None:
        self.calls.append((op, key))
        if key in self.fail_on:
            raise OSError(f"backend failure on {key}")

    async def get_info(self, key: str) -> Entry | None:
        self._check("get_info", key)
        return await super().get_info(key)

    async def read(self, key: str) -> bytes | None:
        self._check("read", key)
        return await super().read(key)

    async def write(self, key: str, data: bytes) -> None:
        self._check("write", key)
        await super().write(key, data)

    async def delete(self, key: str) -> None:
        self._check("delete", key)
        await super().delete(key)


class NativeBatchStore(MemoryStore, BatchStore):
    """Memory store with its own batch implementation."""

    capabilities = Capability.BATCH

    def __init__(self) -> None:
        super().__init__()
        self.batch_calls: list[str] = []

    async def get_info_many(self, keys: Iterable[str]) -> AsyncIterator[tuple[str, Entry | None]]:
        self.batch_calls.append("get_info_many")
        for key in keys:
            yield key, await self.get_info(key)

    async def read_many(self, keys: Iterable[str]) -> AsyncIterator[tuple[str, bytes | None]]:
        self.batch_calls.append("read_many")
        for key in keys:
            yield key, await self.read(key)

    async def write_many(self, items: Iterable[tuple[str, bytes]]) -> None:
        self.batch_calls.append("write_many")
        for key, data in items:
            await self.write(key, data)

    async def delete_many(self, keys: Iterable[str]) -> None:
        self.batch_calls.append("delete_many")
        for key in keys:
            await self.delete(key)


class LyingStore(MemoryStore):
    """Declares batch support without implementing it."""

    capabilities = Capability.BATCH


class TestSequentialBatch:
    """Tests for the synthesized batch operations."""

    @pytest.mark.asyncio
    async def test_write_many_in_order(self) -> None:
        store = RecordingStore()

        await extend(store).write_many([("b", b"2"), ("a", b"1"), ("c", b"3")])

        assert store.calls == [("write", "b"), ("write", "a"), ("write", "c")]
        assert await store.read("a") == b"1"

    @pytest.mark.asyncio
    async def test_write_many_stops_at_first_failure(self) -> None:
        """Items after the failing one are never attempted."""
        store = RecordingStore(fail_on={"k2"})
        items = [(f"k{i}", b"x") for i in range(5)]

        with pytest.raises(OSError, match="k2"):
            await extend(store).write_many(items)

        assert store.calls == [("write", "k0"), ("write", "k1"), ("write", "k2")]
        assert await store.get_info("k3") is None

    @pytest.mark.asyncio
    async def test_delete_many_stops_at_first_failure(self) -> None:
        store = RecordingStore(fail_on={"b"})
        for key in ("a", "b", "c"):
            await MemoryStore.write(store, key, b"x")

        with pytest.raises(OSError):
            await extend(store).delete_many(["a", "b", "c"])

        assert await MemoryStore.read(store, "a") is None
        assert await MemoryStore.read(store, "c") == b"x"

    @pytest.mark.asyncio
    async def test_read_many_yields_pairs_in_input_order(self) -> None:
        store = MemoryStore()
        await store.write("a", b"1")
        await store.write("c", b"3")

        results = [item async for item in extend(store).read_many(["c", "missing", "a"])]

        assert results == [("c", b"3"), ("missing", None), ("a", b"1")]

    @pytest.mark.asyncio
    async def test_get_info_many(self) -> None:
        store = MemoryStore()
        await store.write("a", b"12")

        results = [item async for item in extend(store).get_info_many(["a", "b"])]

        assert results[0][0] == "a"
        assert results[0][1] is not None and results[0][1].length == 2
        assert results[1] == ("b", None)

    @pytest.mark.asyncio
    async def test_read_many_surfaces_failure_after_earlier_items(self) -> None:
        store = RecordingStore(fail_on={"bad"})
        seen: list[str] = []

        with pytest.raises(OSError):
            async for key, _ in extend(store).read_many(["ok", "bad", "never"]):
                seen.append(key)

        assert seen == ["ok"]
        assert ("read", "never") not in store.calls

    @pytest.mark.asyncio
    async def test_cancellation_stops_batch(self) -> None:
        started = asyncio.Event()

        class SlowStore(RecordingStore):
            async def write(self, key: str, data: bytes) -> None:
                await super().write(key, data)
                started.set()
                await asyncio.sleep(10)

        slow = SlowStore()
        task = asyncio.create_task(extend(slow).write_many([("a", b"1"), ("b", b"2")]))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert slow.calls == [("write", "a")]


class TestPassThrough:
    """Tests for native capability detection."""

    def test_native_batch_is_used(self) -> None:
        store = NativeBatchStore()

        extended = extend(store)

        assert isinstance(extended, ExtendedStore)
        assert extended.native == Capability.BATCH
        assert extended.parent is store

    @pytest.mark.asyncio
    async def test_native_batch_calls_go_straight_through(self) -> None:
        store = NativeBatchStore()
        extended = extend(store)

        await extended.write_many([("a", b"1")])
        _ = [item async for item in extended.read_many(["a"])]
        _ = [item async for item in extended.get_info_many(["a"])]
        await extended.delete_many(["a"])

        assert store.batch_calls == ["write_many", "read_many", "get_info_many", "delete_many"]

    def test_full_store_is_not_wrapped(self) -> None:
        extended = extend(MemoryStore())

        assert extend(extended) is extended
        assert isinstance(extended, FullStore)

    def test_declared_but_missing_capability(self) -> None:
        with pytest.raises(ConfigurationError):
            extend(LyingStore())

    @pytest.mark.asyncio
    async def test_basic_operations_delegate(self) -> None:
        store = MemoryStore()
        extended = extend(store)

        await extended.write("k1", b"v")
        await extended.write("a3", b"v")

        assert await store.read("k1") == b"v"
        assert await extended.get_info("missing") is None
        entries = [e.key async for e in extended.enumerate(Query(prefix="k"))]
        assert entries == ["k1"]
        await extended.delete("k1")
        assert await extended.read("k1") is None

    @pytest.mark.asyncio
    async def test_close_closes_parent(self) -> None:
        closed: list[bool] = []

        class ClosingStore(MemoryStore):
            async def close(self) -> None:
                closed.append(True)

        async with extend(ClosingStore()):
            pass

        assert closed == [True]


class TestStructuredValues:
    """Tests for JSON value operations."""

    @pytest.mark.asyncio
    async def test_round_trip_plain_values(self, memory_store: MemoryStore) -> None:
        store = extend(memory_store)

        await store.write_json("doc", {"a": [1, 2, 3], "b": None, "c": "text"})

        assert await store.read_json("doc") == {"a": [1, 2, 3], "b": None, "c": "text"}
        assert orjson.loads(await memory_store.read("doc") or b"") == {
            "a": [1, 2, 3],
            "b": None,
            "c": "text",
        }

    @pytest.mark.asyncio
    async def test_pydantic_model(self, memory_store: MemoryStore) -> None:
        store = extend(memory_store)
        quote = Quote(ticker="GOOGL", price=171.5, as_of=date(2025, 1, 2))

        await store.write_json("quote", quote)

        assert await store.read_json("quote", Quote) == quote
        assert await store.read_json("quote") == {
            "ticker": "GOOGL",
            "price": 171.5,
            "as_of": "2025-01-02",
        }

    @pytest.mark.asyncio
    async def test_typed_collections(self, memory_store: MemoryStore) -> None:
        store = extend(memory_store)
        quotes = [Quote(ticker="A", price=1.0, as_of=date(2024, 5, 1))]

        await store.write_json("list", quotes)

        assert await store.read_json("list", list[Quote]) == quotes

    @pytest.mark.asyncio
    async def test_absent_and_empty_read_as_none(self, memory_store: MemoryStore) -> None:
        store = extend(memory_store)
        await memory_store.write("empty", b"")

        assert await store.read_json("missing") is None
        assert await store.read_json("empty", Quote) is None

    @pytest.mark.asyncio
    async def test_writing_none_stores_empty_payload(self, memory_store: MemoryStore) -> None:
        store = extend(memory_store)

        await store.write_json("nothing", None)

        assert await memory_store.read("nothing") == b""
        assert await store.read_json("nothing") is None

    @pytest.mark.asyncio
    async def test_validation_failure_propagates(self, memory_store: MemoryStore) -> None:
        store = extend(memory_store)
        await store.write_json("bad", {"ticker": "X"})

        with pytest.raises(ValidationError):
            await store.read_json("bad", Quote)

    @pytest.mark.asyncio
    async def test_invalid_json_propagates(self, memory_store: MemoryStore) -> None:
        await memory_store.write("garbage", b"{not json")

        with pytest.raises(orjson.JSONDecodeError):
            await extend(memory_store).read_json("garbage")

    def test_serialize_nested_models_and_sets(self) -> None:
        payload: Any = {
            "quote": Quote(ticker="A", price=2.0, as_of=date(2024, 1, 1)),
            "tags": {"b", "a"},
        }

        assert orjson.loads(serialize_value(payload)) == {
            "quote": {"ticker": "A", "price": 2.0, "as_of": "2024-01-01"},
            "tags": ["a", "b"],
        }

    def test_serialize_unsupported_type(self) -> None:
        with pytest.raises(TypeError):
            serialize_value({"obj": object()})

    def test_deserialize_none(self) -> None:
        assert deserialize_value(None) is None
        assert deserialize_value(b"", int) is None
        assert deserialize_value(b"42", int) == 42


class TestStoreContract:
    """Tests for the abstract store classes."""

    def test_minimal_store_declares_nothing(self) -> None:
        assert MemoryStore.capabilities == Capability.NONE
        assert KVStore.capabilities == Capability.NONE

    def test_incomplete_store_cannot_be_instantiated(self) -> None:
        class Incomplete(KVStore):
            async def read(self, key: str) -> bytes | None:
                return None

        with pytest.raises(TypeError):
            Incomplete()  # type: ignore[abstract]
