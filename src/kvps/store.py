"""
The store contract.

This module defines:
- KVStore: the minimal interface every backend implements
- BatchStore: the optional multi-key extension
- StructuredStore: the optional typed (JSON) value extension
- FullStore: a store exposing both extensions

Each store class declares its natively implemented extensions in the
``capabilities`` attribute; wrappers decide once, at construction, whether
to pass calls through or synthesize them (see kvps.extensions).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any, AsyncIterator, Iterable, TypeVar

from kvps.types import Capability, Entry, Query

T = TypeVar("T")


class KVStore(ABC):
    """Abstract interface for key-value-pair stores.

    ``get_info`` and ``read`` return None for a missing key; that is not an
    error. Backend I/O failures propagate as raised by the backend client.
    """

    capabilities: Capability = Capability.NONE

    @abstractmethod
    async def get_info(self, key: str) -> Entry | None:
        """Get metadata for the entry at ``key``."""
        ...

    @abstractmethod
    async def read(self, key: str) -> bytes | None:
        """Get the content stored at ``key``."""
        ...

    @abstractmethod
    async def write(self, key: str, data: bytes) -> None:
        """Create or overwrite the entry at ``key``."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the entry at ``key`` if it exists."""
        ...

    @abstractmethod
    def enumerate(self, query: Query | None = None) -> AsyncIterator[Entry]:
        """List entries matching the query, lazily, one page at a time."""
        ...

    async def close(self) -> None:
        """Release backend resources. Safe to call more than once."""
        return None

    async def __aenter__(self: T) -> T:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


class BatchStore(KVStore):
    """Multi-key variants of the basic operations.

    Results are produced in input order, one ``(key, value)`` pair per key,
    with None for missing keys.
    """

    capabilities: Capability = Capability.BATCH

    @abstractmethod
    def get_info_many(self, keys: Iterable[str]) -> AsyncIterator[tuple[str, Entry | None]]:
        ...

    @abstractmethod
    def read_many(self, keys: Iterable[str]) -> AsyncIterator[tuple[str, bytes | None]]:
        ...

    @abstractmethod
    async def write_many(self, items: Iterable[tuple[str, bytes]]) -> None:
        ...

    @abstractmethod
    async def delete_many(self, keys: Iterable[str]) -> None:
        ...


class StructuredStore(KVStore):
    """Typed value access on top of raw bytes."""

    capabilities: Capability = Capability.STRUCTURED

    @abstractmethod
    async def read_json(self, key: str, type_: Any = None) -> Any:
        """Read and decode the value at ``key``; validate as ``type_`` if given."""
        ...

    @abstractmethod
    async def write_json(self, key: str, value: Any) -> None:
        """Encode ``value`` and write it to ``key``."""
        ...


class FullStore(BatchStore, StructuredStore):
    """A store exposing both the batch and structured extensions."""

    capabilities: Capability = Capability.FULL
