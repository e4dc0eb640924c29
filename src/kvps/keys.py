"""
Key transformation around any store.

A KeyTransformer maps keys in both directions:

- ``local_to_remote``: the key the caller uses -> the key the backend sees
- ``remote_to_local``: the reverse; raises InvalidKeyError when the remote
  key could not have been produced by ``local_to_remote``

KeyMappedStore applies a transformer to every operation, including the
query prefix and result keys of an enumeration.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Iterable

from kvps.exceptions import InvalidKeyError
from kvps.extensions import (
    deserialize_value,
    sequential_delete,
    sequential_get_info,
    sequential_read,
    sequential_write,
    serialize_value,
)
from kvps.store import BatchStore, FullStore, KVStore, StructuredStore
from kvps.types import Capability, Entry, Query


class KeyTransformer(ABC):
    """Bidirectional key mapping."""

    @abstractmethod
    def local_to_remote(self, key: str) -> str:
        ...

    @abstractmethod
    def remote_to_local(self, key: str) -> str:
        ...


class PrefixKeyTransformer(KeyTransformer):
    """Adds a fixed prefix on the way in and strips it on the way out."""

    def __init__(self, prefix: str | None) -> None:
        self.prefix = prefix or ""

    def local_to_remote(self, key: str) -> str:
        return self.prefix + key

    def remote_to_local(self, key: str) -> str:
        if not key.startswith(self.prefix):
            raise InvalidKeyError(
                "Key does not carry the expected prefix",
                context={"key": key, "prefix": self.prefix},
            )
        return key[len(self.prefix):]

    def __repr__(self) -> str:
        return f"PrefixKeyTransformer({self.prefix!r})"


class KeyMappedStore(FullStore):
    """A store view whose keys pass through a KeyTransformer.

    ``capabilities`` mirrors the wrapped store: extensions the parent
    implements natively are called with mapped keys, the rest fall back to
    the sequential and JSON helpers over this view.
    """

    def __init__(self, parent: KVStore, transformer: KeyTransformer) -> None:
        self._parent = parent
        self._keys = transformer
        self.capabilities = parent.capabilities

        self._batch = parent if isinstance(parent, BatchStore) and (
            Capability.BATCH in parent.capabilities
        ) else None
        self._structured = parent if isinstance(parent, StructuredStore) and (
            Capability.STRUCTURED in parent.capabilities
        ) else None

    @property
    def parent(self) -> KVStore:
        return self._parent

    @property
    def transformer(self) -> KeyTransformer:
        return self._keys

    async def get_info(self, key: str) -> Entry | None:
        entry = await self._parent.get_info(self._keys.local_to_remote(key))
        if entry is None:
            return None
        return entry.with_key(key)

    async def read(self, key: str) -> bytes | None:
        return await self._parent.read(self._keys.local_to_remote(key))

    async def write(self, key: str, data: bytes) -> None:
        await self._parent.write(self._keys.local_to_remote(key), data)

    async def delete(self, key: str) -> None:
        await self._parent.delete(self._keys.local_to_remote(key))

    async def enumerate(self, query: Query | None = None) -> AsyncIterator[Entry]:
        query = query or Query.EMPTY
        prefix = query.prefix if query.has_prefix else ""
        remote_query = query.with_prefix(self._keys.local_to_remote(prefix))
        async for entry in self._parent.enumerate(remote_query):
            yield entry.with_key(self._keys.remote_to_local(entry.key))

    async def close(self) -> None:
        await self._parent.close()

    async def get_info_many(self, keys: Iterable[str]) -> AsyncIterator[tuple[str, Entry | None]]:
        if self._batch is None:
            async for item in sequential_get_info(self, keys):
                yield item
            return

        async for remote, entry in self._batch.get_info_many(self._remote(keys)):
            local = self._keys.remote_to_local(remote)
            yield local, None if entry is None else entry.with_key(local)

    async def read_many(self, keys: Iterable[str]) -> AsyncIterator[tuple[str, bytes | None]]:
        if self._batch is None:
            async for item in sequential_read(self, keys):
                yield item
            return

        async for remote, data in self._batch.read_many(self._remote(keys)):
            yield self._keys.remote_to_local(remote), data

    async def write_many(self, items: Iterable[tuple[str, bytes]]) -> None:
        if self._batch is None:
            await sequential_write(self, items)
            return
        await self._batch.write_many(
            (self._keys.local_to_remote(key), data) for key, data in items
        )

    async def delete_many(self, keys: Iterable[str]) -> None:
        if self._batch is None:
            await sequential_delete(self, keys)
            return
        await self._batch.delete_many(self._remote(keys))

    async def read_json(self, key: str, type_: Any = None) -> Any:
        if self._structured is not None:
            return await self._structured.read_json(self._keys.local_to_remote(key), type_)
        return deserialize_value(await self.read(key), type_)

    async def write_json(self, key: str, value: Any) -> None:
        if self._structured is not None:
            await self._structured.write_json(self._keys.local_to_remote(key), value)
        else:
            await self.write(key, serialize_value(value))

    def _remote(self, keys: Iterable[str]) -> list[str]:
        return [self._keys.local_to_remote(key) for key in keys]


def with_key_prefix(store: KVStore, prefix: str | None) -> KVStore:
    """Scope a store to keys under ``prefix``. A blank prefix is a no-op."""
    if not prefix:
        return store
    return KeyMappedStore(store, PrefixKeyTransformer(prefix))
