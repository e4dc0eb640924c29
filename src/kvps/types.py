"""
Core types for the key-value-pair store library.

This module defines the data structures shared by every backend:
- Entry: immutable metadata snapshot of one stored item
- Query: immutable enumeration request
- OptionSpec: advertised description of one connection option
- Capability: flags for the optional extension groups a store supports
- Helper functions for timestamps and content hashes
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Flag, auto
from typing import Any, ClassVar

DEFAULT_PAGE_SIZE = 1000


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest used as an etag by backends without a native one."""
    return hashlib.sha256(data).hexdigest()


class Capability(Flag):
    """Optional operation groups a store may implement natively."""

    NONE = 0
    BATCH = auto()
    STRUCTURED = auto()
    FULL = BATCH | STRUCTURED


@dataclass(frozen=True)
class Entry:
    """Metadata for one stored item.

    Entries are produced fresh by each call and are never live handles;
    they describe the item as it was when the call observed it.
    """

    key: str
    length: int | None = None
    created: datetime | None = None
    last_modified: datetime | None = None
    cursor: str | None = None  # Set when produced by a paginated enumeration
    etag: str | None = None
    extra: Any = None  # Provider specific

    def with_key(self, key: str) -> Entry:
        """Return a copy of the entry carrying a different key."""
        return replace(self, key=key)

    def with_cursor(self, cursor: str | None) -> Entry:
        """Return a copy of the entry carrying a resume cursor."""
        return replace(self, cursor=cursor)


@dataclass(frozen=True)
class Query:
    """An enumeration request.

    The empty query matches every entry. ``page_size`` is a hint for the
    backend's fetch granularity; ``max_results`` caps the total number of
    entries produced; ``cursor`` resumes an earlier enumeration made with
    the same parameters.
    """

    prefix: str | None = None
    page_size: int | None = None
    max_results: int | None = None
    cursor: str | None = None

    EMPTY: ClassVar[Query]

    def __post_init__(self) -> None:
        if self.page_size is not None and self.page_size <= 0:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        if self.max_results is not None and self.max_results < 0:
            raise ValueError(f"max_results must not be negative, got {self.max_results}")

    @property
    def effective_page_size(self) -> int:
        """The page hint, falling back to the protocol default."""
        return self.page_size or DEFAULT_PAGE_SIZE

    @property
    def has_prefix(self) -> bool:
        """True when the prefix restricts results (blank prefixes do not)."""
        return bool(self.prefix and self.prefix.strip())

    def with_prefix(self, prefix: str | None) -> Query:
        """Return a query that also applies a key prefix."""
        return replace(self, prefix=prefix)

    def with_cursor(self, cursor: str | None) -> Query:
        """Return a query resuming from the given cursor."""
        return replace(self, cursor=cursor)

    def matches(self, key: str) -> bool:
        """Evaluate locally whether a key satisfies the prefix filter."""
        if not self.has_prefix:
            return True
        return key.startswith(self.prefix)  # type: ignore[arg-type]


Query.EMPTY = Query()


@dataclass(frozen=True)
class OptionSpec:
    """Describes one configurable connection option.

    Used for discovery and help output, independent of any connection string.
    """

    name: str
    description: str | None = None
    required: bool = False
    default: Any = None
