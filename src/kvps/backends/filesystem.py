"""
Local filesystem stores.

Two layouts are supported under a root directory:

- path-mapped: a key is a relative POSIX path below the root, so ``a/b.txt``
  lives at ``<root>/a/b.txt``. Keys must already be in normal form (no
  ``.``/``..`` segments, doubled or trailing slashes) and must not contain
  ``\\``, ``:`` or NUL. A prefix filter that no valid key can start with
  (``a//``, ``../x``) matches nothing.
- encoded (default): every key is URL-safe base64 encoded into a flat file
  name directly in the root. Any non-empty key is accepted.

Blocking filesystem calls run in a worker thread via ``asyncio.to_thread``.
Enumeration re-scans the directory for every page and orders entries by
key, so cursors are positional offsets into the sorted listing.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import os
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator

from kvps.exceptions import InvalidKeyError
from kvps.logging import get_logger
from kvps.options import OptionField, OptionKind, OptionSchema, parse_connection_string
from kvps.pagination import paginate_by_offset
from kvps.registry import StoreFactory
from kvps.store import KVStore
from kvps.types import Entry, Query

logger = get_logger(__name__)

CURSOR_TAG = "fs1"

_INVALID_KEY_CHARS = frozenset("\\:\0")


def _timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, timezone.utc)


def _entry_from_stat(key: str, st: os.stat_result) -> Entry:
    return Entry(
        key=key,
        length=st.st_size,
        created=_timestamp(getattr(st, "st_birthtime", st.st_ctime)),
        last_modified=_timestamp(st.st_mtime),
    )


class FileStoreBase(KVStore):
    """Shared file I/O for both layouts.

    Subclasses map keys to paths and list the ``(key, path)`` pairs
    present under the root.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    @abstractmethod
    def _local_path(self, key: str) -> Path:
        """Map a key to its file path. Raises InvalidKeyError."""
        ...

    @abstractmethod
    def _scan(self, query: Query) -> list[tuple[str, Path]]:
        """List stored ``(key, path)`` pairs matching the query prefix, sorted by key."""
        ...

    def _stat(self, key: str) -> Entry | None:
        path = self._local_path(key)
        try:
            st = path.stat()
        except FileNotFoundError:
            return None
        if not path.is_file():
            return None
        return _entry_from_stat(key, st)

    def _read(self, key: str) -> bytes | None:
        path = self._local_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def _write(self, key: str, data: bytes) -> None:
        path = self._local_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def _delete(self, key: str) -> None:
        path = self._local_path(key)
        path.unlink(missing_ok=True)

    async def get_info(self, key: str) -> Entry | None:
        return await asyncio.to_thread(self._stat, key)

    async def read(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._read, key)

    async def write(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._write, key, bytes(data))
        logger.debug("Wrote file", key=key, size=len(data))

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)
        logger.debug("Deleted file", key=key)

    def _page(self, query: Query, offset: int, limit: int) -> list[Entry]:
        page: list[Entry] = []
        for key, path in self._scan(query)[offset:]:
            if len(page) >= limit:
                break
            try:
                st = path.stat()
            except FileNotFoundError:
                # Removed between listing and stat
                continue
            page.append(_entry_from_stat(key, st))
        return page

    def enumerate(self, query: Query | None = None) -> AsyncIterator[Entry]:
        query = query or Query.EMPTY

        async def fetch_page(offset: int, limit: int) -> list[Entry]:
            return await asyncio.to_thread(self._page, query, offset, limit)

        return paginate_by_offset(fetch_page, query, CURSOR_TAG)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.root)!r})"


class PathMappedFileStore(FileStoreBase):
    """Keys are relative paths below the root directory."""

    def _local_path(self, key: str) -> Path:
        if not key:
            raise InvalidKeyError("The key is empty")
        if any(ch in _INVALID_KEY_CHARS for ch in key):
            raise InvalidKeyError("The key contains invalid characters", context={"key": key})
        if key.startswith("/"):
            raise InvalidKeyError("The key must be relative", context={"key": key})

        path = Path(os.path.normpath(self.root / key))
        if path == self.root or not path.is_relative_to(self.root):
            raise InvalidKeyError("Local path was outside root", context={"key": key})
        if path.relative_to(self.root).as_posix() != key:
            raise InvalidKeyError("The key is not a normalized path", context={"key": key})
        return path

    def _scan(self, query: Query) -> list[tuple[str, Path]]:
        # Only the directory holding the prefix's last segment needs walking
        directory, _, _ = (query.prefix if query.has_prefix else "").rpartition("/")
        try:
            start = self._local_path(directory) if directory else self.root
        except InvalidKeyError:
            # No stored key can live below a directory that is not a valid key
            return []
        if not start.is_dir():
            return []

        found: list[tuple[str, Path]] = []
        for dirpath, _, filenames in os.walk(start):
            for name in filenames:
                path = Path(dirpath, name)
                key = path.relative_to(self.root).as_posix()
                if query.matches(key):
                    found.append((key, path))
        found.sort(key=lambda item: item[0])
        return found


class EncodedFileStore(FileStoreBase):
    """Keys are base64 encoded as flat file names in the root directory."""

    @staticmethod
    def encode_key(key: str) -> str:
        return base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii")

    @staticmethod
    def decode_key(name: str) -> str:
        key = base64.urlsafe_b64decode(name.encode("ascii")).decode("utf-8")
        if not key or EncodedFileStore.encode_key(key) != name:
            raise ValueError(f"Not an encoded key: {name}")
        return key

    def _local_path(self, key: str) -> Path:
        if not key:
            raise InvalidKeyError("The key is empty")
        return self.root / self.encode_key(key)

    def _scan(self, query: Query) -> list[tuple[str, Path]]:
        found: list[tuple[str, Path]] = []
        with os.scandir(self.root) as it:
            for item in it:
                if not item.is_file():
                    continue
                try:
                    key = self.decode_key(item.name)
                except (binascii.Error, UnicodeError, ValueError):
                    logger.warning("Skipping file with undecodable name", name=item.name)
                    continue
                if query.matches(key):
                    found.append((key, Path(item.path)))
        found.sort(key=lambda entry: entry[0])
        return found


@dataclass(frozen=True)
class FileConfig:
    pathmapped: bool = False
    create: bool = False


FILE_OPTIONS = OptionSchema(
    FileConfig,
    (
        OptionField(
            "pathmapped",
            OptionKind.BOOL,
            default=False,
            description="Enable mapping keys to local paths",
        ),
        OptionField(
            "create",
            OptionKind.BOOL,
            default=False,
            description="Create the root folder if it does not exist",
        ),
    ),
)


class FileStoreFactory(StoreFactory):
    """Factory for filesystem stores."""

    schemes = ("file", "local", "path")
    description = "A file-based storage provider mapping to a folder in the local filesystem"
    usage = "file://<folder>?pathmapped=true"
    options_schema = FILE_OPTIONS

    def create(self, connection_string: str) -> FileStoreBase:
        descriptor, config = parse_connection_string(connection_string, FILE_OPTIONS)
        root = Path(descriptor.require_path().path).expanduser()

        if not root.is_dir():
            if not config.create:
                raise FileNotFoundError(
                    f"Cannot create a store for non-existing root folder: {descriptor.path}"
                )
            root.mkdir(parents=True, exist_ok=True)
            logger.info("Created root folder", root=str(root))

        store: FileStoreBase = (
            PathMappedFileStore(root) if config.pathmapped else EncodedFileStore(root)
        )
        logger.info("Opened file store", root=str(store.root), pathmapped=config.pathmapped)
        return store
