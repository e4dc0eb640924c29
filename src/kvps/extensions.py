"""
Capability extensions for stores that implement only the minimal contract.

``extend(store)`` returns a FullStore. For every extension group the
wrapped store declares natively, calls pass straight through; the others
are synthesized here:

- batch operations run strictly sequentially in input order and stop at
  the first failure, which propagates unchanged. Later items are never
  attempted and no partial-success report is produced.
- structured values are serialized with orjson and, when a target type is
  given, validated with a pydantic TypeAdapter.

The decision is made once, when the wrapper is built.
"""

from __future__ import annotations

import asyncio
from functools import lru_cache
from typing import Any, AsyncIterator, Iterable

import orjson
from pydantic import BaseModel, TypeAdapter

from kvps.exceptions import ConfigurationError
from kvps.logging import get_logger
from kvps.store import BatchStore, FullStore, KVStore, StructuredStore
from kvps.types import Capability, Entry, Query

logger = get_logger(__name__)


# Sequential batch helpers


async def sequential_get_info(
    store: KVStore, keys: Iterable[str]
) -> AsyncIterator[tuple[str, Entry | None]]:
    for key in keys:
        await asyncio.sleep(0)  # cancellation point between items
        yield key, await store.get_info(key)


async def sequential_read(
    store: KVStore, keys: Iterable[str]
) -> AsyncIterator[tuple[str, bytes | None]]:
    for key in keys:
        await asyncio.sleep(0)
        yield key, await store.read(key)


async def sequential_write(store: KVStore, items: Iterable[tuple[str, bytes]]) -> None:
    for key, data in items:
        await asyncio.sleep(0)
        await store.write(key, data)


async def sequential_delete(store: KVStore, keys: Iterable[str]) -> None:
    for key in keys:
        await asyncio.sleep(0)
        await store.delete(key)


# Structured value helpers


def _default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Type is not JSON serializable: {type(value).__name__}")


def serialize_value(value: Any) -> bytes:
    """Encode a value as JSON bytes. None encodes as an empty payload."""
    if value is None:
        return b""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    return orjson.dumps(value, default=_default)


@lru_cache(maxsize=256)
def _adapter(type_: Any) -> TypeAdapter[Any]:
    return TypeAdapter(type_)


def deserialize_value(data: bytes | None, type_: Any = None) -> Any:
    """Decode JSON bytes; absent or empty payloads decode to None.

    Raises:
        orjson.JSONDecodeError: If the payload is not valid JSON.
        pydantic.ValidationError: If the value does not match ``type_``.
    """
    if not data:
        return None
    obj = orjson.loads(data)
    if type_ is None:
        return obj
    return _adapter(type_).validate_python(obj)


class ExtendedStore(FullStore):
    """Wraps a store, synthesizing the extensions it lacks.

    Attributes:
        native: The capabilities the wrapped store implements itself.
    """

    def __init__(self, parent: KVStore) -> None:
        self._parent = parent
        self.native = parent.capabilities

        self._batch: BatchStore | None = None
        if Capability.BATCH in self.native:
            if not isinstance(parent, BatchStore):
                raise ConfigurationError(
                    f"{type(parent).__name__} declares batch support but is not a BatchStore"
                )
            self._batch = parent

        self._structured: StructuredStore | None = None
        if Capability.STRUCTURED in self.native:
            if not isinstance(parent, StructuredStore):
                raise ConfigurationError(
                    f"{type(parent).__name__} declares structured support "
                    "but is not a StructuredStore"
                )
            self._structured = parent

        logger.debug(
            "Extended store",
            parent=type(parent).__name__,
            native=str(self.native),
        )

    @property
    def parent(self) -> KVStore:
        return self._parent

    async def get_info(self, key: str) -> Entry | None:
        return await self._parent.get_info(key)

    async def read(self, key: str) -> bytes | None:
        return await self._parent.read(key)

    async def write(self, key: str, data: bytes) -> None:
        await self._parent.write(key, data)

    async def delete(self, key: str) -> None:
        await self._parent.delete(key)

    def enumerate(self, query: Query | None = None) -> AsyncIterator[Entry]:
        return self._parent.enumerate(query)

    async def close(self) -> None:
        await self._parent.close()

    def get_info_many(self, keys: Iterable[str]) -> AsyncIterator[tuple[str, Entry | None]]:
        if self._batch is not None:
            return self._batch.get_info_many(keys)
        return sequential_get_info(self._parent, keys)

    def read_many(self, keys: Iterable[str]) -> AsyncIterator[tuple[str, bytes | None]]:
        if self._batch is not None:
            return self._batch.read_many(keys)
        return sequential_read(self._parent, keys)

    async def write_many(self, items: Iterable[tuple[str, bytes]]) -> None:
        if self._batch is not None:
            await self._batch.write_many(items)
        else:
            await sequential_write(self._parent, items)

    async def delete_many(self, keys: Iterable[str]) -> None:
        if self._batch is not None:
            await self._batch.delete_many(keys)
        else:
            await sequential_delete(self._parent, keys)

    async def read_json(self, key: str, type_: Any = None) -> Any:
        if self._structured is not None:
            return await self._structured.read_json(key, type_)
        return deserialize_value(await self._parent.read(key), type_)

    async def write_json(self, key: str, value: Any) -> None:
        if self._structured is not None:
            await self._structured.write_json(key, value)
        else:
            await self._parent.write(key, serialize_value(value))


def extend(store: KVStore) -> FullStore:
    """Expose the batch and structured extensions on any store.

    Stores that already implement both are returned unchanged.
    """
    if isinstance(store, FullStore):
        return store
    return ExtendedStore(store)
