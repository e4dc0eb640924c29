"""
In-memory store with no persistence.

Keys are kept in a sorted index so enumeration is ordered and pages can be
sliced by position. Each ``create`` call returns a fresh, empty store.
"""

from __future__ import annotations

import bisect
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator

from kvps.logging import get_logger
from kvps.pagination import paginate_by_offset
from kvps.registry import StoreFactory
from kvps.store import KVStore
from kvps.types import Entry, Query, content_hash, utc_now

logger = get_logger(__name__)

CURSOR_TAG = "mem1"


@dataclass(frozen=True)
class _Item:
    data: bytes
    created: datetime
    last_modified: datetime
    etag: str

    def to_entry(self, key: str) -> Entry:
        return Entry(
            key=key,
            length=len(self.data),
            created=self.created,
            last_modified=self.last_modified,
            etag=self.etag,
        )


class MemoryStore(KVStore):
    """A dict-backed store with a sorted key index."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[str, _Item] = {}
        self._keys: list[str] = []

    def __len__(self) -> int:
        return len(self._items)

    async def get_info(self, key: str) -> Entry | None:
        item = self._items.get(key)
        return None if item is None else item.to_entry(key)

    async def read(self, key: str) -> bytes | None:
        item = self._items.get(key)
        return None if item is None else item.data

    async def write(self, key: str, data: bytes) -> None:
        data = bytes(data)
        now = utc_now()
        with self._lock:
            previous = self._items.get(key)
            if previous is None:
                bisect.insort(self._keys, key)
            self._items[key] = _Item(
                data=data,
                created=previous.created if previous else now,
                last_modified=now,
                etag=content_hash(data),
            )
        logger.debug("Wrote entry", key=key, size=len(data))

    async def delete(self, key: str) -> None:
        with self._lock:
            if self._items.pop(key, None) is None:
                return
            index = bisect.bisect_left(self._keys, key)
            del self._keys[index]
        logger.debug("Deleted entry", key=key)

    def _page(self, query: Query, offset: int, limit: int) -> list[Entry]:
        prefix = query.prefix if query.has_prefix else ""
        with self._lock:
            start = bisect.bisect_left(self._keys, prefix) + offset
            page: list[Entry] = []
            for key in self._keys[start:start + limit]:
                if not query.matches(key):
                    break
                page.append(self._items[key].to_entry(key))
            return page

    def enumerate(self, query: Query | None = None) -> AsyncIterator[Entry]:
        query = query or Query.EMPTY

        async def fetch_page(offset: int, limit: int) -> list[Entry]:
            return self._page(query, offset, limit)

        return paginate_by_offset(fetch_page, query, CURSOR_TAG)


class MemoryStoreFactory(StoreFactory):
    """Factory for in-memory stores."""

    schemes = ("memory", "test")
    description = "An in-memory provider with no persistence"

    def create(self, connection_string: str) -> MemoryStore:
        return MemoryStore()
