"""
SQLite store via aiosqlite.

Entries live in a single table:

    CREATE TABLE kvps (
        keyname TEXT PRIMARY KEY,
        keyvalue BLOB NOT NULL,
        size INTEGER NOT NULL,
        created TEXT NOT NULL,
        last_modified TEXT NOT NULL
    )

The connection is opened lazily on first use. Batch writes run in a single
transaction; batch deletes use ``IN`` lists.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Iterable

import aiosqlite

from kvps.exceptions import InvalidOptionError
from kvps.extensions import sequential_get_info, sequential_read
from kvps.logging import get_logger
from kvps.options import OptionField, OptionKind, OptionSchema, parse_connection_string
from kvps.pagination import paginate_by_offset
from kvps.registry import StoreFactory
from kvps.store import BatchStore
from kvps.types import Entry, Query, utc_now

logger = get_logger(__name__)

CURSOR_TAG = "sq1"
MEMORY_DATABASE = ":memory:"

# Stays well below SQLite's bound parameter limit
DELETE_CHUNK_SIZE = 500

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _row_to_entry(row: aiosqlite.Row) -> Entry:
    return Entry(
        key=row["keyname"],
        length=row["size"],
        created=datetime.fromisoformat(row["created"]),
        last_modified=datetime.fromisoformat(row["last_modified"]),
    )


class SQLiteStore(BatchStore):
    """A store backed by one table of an SQLite database."""

    def __init__(
        self,
        database: str | Path,
        table: str = "kvps",
        create_table: bool = True,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the store.

        Args:
            database: Database file path, or ``:memory:``.
            table: Table holding the entries.
            create_table: Create the table on first use if missing.
            timeout: Seconds to wait on a locked database.
        """
        if not _IDENTIFIER.match(table):
            raise InvalidOptionError(
                "The table name must be a plain identifier",
                context={"option": "table", "value": table},
            )
        self.database = database
        self.table = table
        self._create_table = create_table
        self._timeout = timeout
        self._db: aiosqlite.Connection | None = None
        self._open_lock = asyncio.Lock()

    async def _connection(self) -> aiosqlite.Connection:
        if self._db is not None:
            return self._db

        async with self._open_lock:
            if self._db is None:
                db = await aiosqlite.connect(self.database, timeout=self._timeout)
                db.row_factory = aiosqlite.Row
                if self._create_table:
                    await db.execute(f"""
                        CREATE TABLE IF NOT EXISTS {self.table} (
                            keyname TEXT PRIMARY KEY,
                            keyvalue BLOB NOT NULL,
                            size INTEGER NOT NULL,
                            created TEXT NOT NULL,
                            last_modified TEXT NOT NULL
                        )
                    """)
                    await db.commit()
                self._db = db
                logger.info("SQLite store opened", database=str(self.database), table=self.table)
        return self._db

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("SQLite store closed", database=str(self.database))

    @property
    def _upsert_sql(self) -> str:
        return f"""
            INSERT INTO {self.table} (keyname, keyvalue, size, created, last_modified)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (keyname) DO UPDATE SET
                keyvalue = excluded.keyvalue,
                size = excluded.size,
                last_modified = excluded.last_modified
        """

    async def get_info(self, key: str) -> Entry | None:
        db = await self._connection()
        async with db.execute(
            f"SELECT keyname, size, created, last_modified FROM {self.table} WHERE keyname = ?",
            (key,),
        ) as cursor:
            row = await cursor.fetchone()
        return None if row is None else _row_to_entry(row)

    async def read(self, key: str) -> bytes | None:
        db = await self._connection()
        async with db.execute(
            f"SELECT keyvalue FROM {self.table} WHERE keyname = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        return None if row is None else bytes(row["keyvalue"])

    async def write(self, key: str, data: bytes) -> None:
        db = await self._connection()
        now = utc_now().isoformat()
        data = bytes(data)
        await db.execute(self._upsert_sql, (key, data, len(data), now, now))
        await db.commit()
        logger.debug("Wrote row", key=key, size=len(data))

    async def delete(self, key: str) -> None:
        db = await self._connection()
        await db.execute(f"DELETE FROM {self.table} WHERE keyname = ?", (key,))
        await db.commit()
        logger.debug("Deleted row", key=key)

    async def _page(self, prefix: str, offset: int, limit: int) -> list[Entry]:
        db = await self._connection()
        params: list[Any] = []
        where = ""
        if prefix:
            where = "WHERE substr(keyname, 1, ?) = ?"
            params.extend([len(prefix), prefix])
        params.extend([limit, offset])

        async with db.execute(
            f"""
            SELECT keyname, size, created, last_modified
            FROM {self.table}
            {where}
            ORDER BY keyname
            LIMIT ? OFFSET ?
            """,
            params,
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_entry(row) for row in rows]

    def enumerate(self, query: Query | None = None) -> AsyncIterator[Entry]:
        query = query or Query.EMPTY
        prefix = query.prefix if query.has_prefix else ""

        async def fetch_page(offset: int, limit: int) -> list[Entry]:
            return await self._page(prefix, offset, limit)

        return paginate_by_offset(fetch_page, query, CURSOR_TAG)

    def get_info_many(self, keys: Iterable[str]) -> AsyncIterator[tuple[str, Entry | None]]:
        return sequential_get_info(self, keys)

    def read_many(self, keys: Iterable[str]) -> AsyncIterator[tuple[str, bytes | None]]:
        return sequential_read(self, keys)

    async def write_many(self, items: Iterable[tuple[str, bytes]]) -> None:
        """Write all items in one transaction; nothing is written on failure."""
        now = utc_now().isoformat()
        rows = [(key, bytes(data), len(data), now, now) for key, data in items]
        if not rows:
            return

        db = await self._connection()
        try:
            await db.executemany(self._upsert_sql, rows)
            await db.commit()
        except BaseException:
            await db.rollback()
            raise
        logger.debug("Wrote rows", count=len(rows))

    async def delete_many(self, keys: Iterable[str]) -> None:
        key_list = list(keys)
        if not key_list:
            return

        db = await self._connection()
        try:
            for start in range(0, len(key_list), DELETE_CHUNK_SIZE):
                chunk = key_list[start:start + DELETE_CHUNK_SIZE]
                placeholders = ", ".join("?" for _ in chunk)
                await db.execute(
                    f"DELETE FROM {self.table} WHERE keyname IN ({placeholders})", chunk
                )
            await db.commit()
        except BaseException:
            await db.rollback()
            raise
        logger.debug("Deleted rows", count=len(key_list))

    def __repr__(self) -> str:
        return f"SQLiteStore({str(self.database)!r}, table={self.table!r})"


@dataclass(frozen=True)
class SQLiteConfig:
    table: str = "kvps"
    create_table: bool = True
    timeout: float = 30.0


SQLITE_OPTIONS = OptionSchema(
    SQLiteConfig,
    (
        OptionField("table", default="kvps", description="The table used for key-value storage"),
        OptionField(
            "create_table",
            OptionKind.BOOL,
            default=True,
            description="Create the table if it does not exist",
        ),
        OptionField(
            "timeout",
            OptionKind.FLOAT,
            default=30.0,
            description="Seconds to wait for a locked database",
        ),
    ),
)


class SQLiteStoreFactory(StoreFactory):
    """Factory for SQLite stores."""

    schemes = ("sqlite", "sqlite3")
    description = "An SQLite storage provider keeping all entries in one table"
    usage = (
        "sqlite://<database file>?table=kvps\n"
        "Use sqlite://:memory: for a private in-memory database."
    )
    options_schema = SQLITE_OPTIONS

    def create(self, connection_string: str) -> SQLiteStore:
        descriptor, config = parse_connection_string(connection_string, SQLITE_OPTIONS)
        path = descriptor.require_path().path
        database: str | Path = path if path == MEMORY_DATABASE else Path(path).expanduser()
        return SQLiteStore(
            database,
            table=config.table,
            create_table=config.create_table,
            timeout=config.timeout,
        )
