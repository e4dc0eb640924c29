"""
S3-compatible object storage via boto3.

Connection strings look like::

    s3://bucket/prefix?username=<access key>&password=<secret key>

The bucket and prefix can be overridden with the ``bucket`` and ``prefix``
options; ``service_url`` points the client at a non-AWS endpoint.

boto3 is synchronous, so every client call runs in a worker thread.
Listing follows S3's native (lexicographic) order. Cursors have the form
``cv1:<skip>:<continuation token>``: the token that fetched the page the
entry came from, and the entry's 1-based position within that page.
Resuming re-requests the page and skips that many objects. Entries added
or removed before the cursor position between the two calls can shift the
page, so a resumed listing may then repeat or miss entries near the page
boundary.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterable

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from kvps.exceptions import InvalidOptionError
from kvps.extensions import sequential_get_info, sequential_read, sequential_write
from kvps.keys import PrefixKeyTransformer
from kvps.logging import get_logger
from kvps.options import (
    REQUIRED,
    OptionField,
    OptionKind,
    OptionSchema,
    parse_connection_string,
)
from kvps.pagination import decode_cursor, encode_cursor, parse_count
from kvps.registry import StoreFactory
from kvps.store import BatchStore
from kvps.types import Entry, Query

logger = get_logger(__name__)

CURSOR_TAG = "cv1"

# Service limits for ListObjectsV2 and DeleteObjects
MAX_LIST_KEYS = 1000
MAX_DELETE_KEYS = 1000

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


def _is_not_found(err: Exception) -> bool:
    if isinstance(err, ClientError):
        code = err.response.get("Error", {}).get("Code", "")
        return code in _NOT_FOUND_CODES
    return False


class S3Store(BatchStore):
    """A store keeping each entry as one object under a bucket prefix."""

    def __init__(self, client: Any, bucket: str, prefix: str = "") -> None:
        """Initialize the store.

        Args:
            client: A boto3 S3 client (or any object with the same methods).
            bucket: Bucket name.
            prefix: Object key prefix prepended to every key.
        """
        if not bucket or not bucket.strip():
            raise InvalidOptionError("The bucket name is required", context={"option": "bucket"})
        self._client = client
        self.bucket = bucket
        self._keys = PrefixKeyTransformer(prefix)

    @property
    def prefix(self) -> str:
        return self._keys.prefix

    def _head(self, key: str) -> Entry | None:
        try:
            resp = self._client.head_object(
                Bucket=self.bucket, Key=self._keys.local_to_remote(key)
            )
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise
        return Entry(
            key=key,
            length=resp.get("ContentLength"),
            last_modified=resp.get("LastModified"),
            etag=resp.get("ETag"),
        )

    def _get(self, key: str) -> bytes | None:
        try:
            resp = self._client.get_object(
                Bucket=self.bucket, Key=self._keys.local_to_remote(key)
            )
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise
        body = resp["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def _put(self, key: str, data: bytes) -> None:
        self._client.put_object(
            Bucket=self.bucket, Key=self._keys.local_to_remote(key), Body=data
        )

    def _delete(self, key: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=self._keys.local_to_remote(key))

    def _list_page(self, prefix: str, token: str, max_keys: int) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"Bucket": self.bucket, "MaxKeys": max_keys}
        if prefix:
            kwargs["Prefix"] = prefix
        if token:
            kwargs["ContinuationToken"] = token
        return self._client.list_objects_v2(**kwargs)

    def _delete_chunk(self, keys: list[str]) -> None:
        resp = self._client.delete_objects(
            Bucket=self.bucket,
            Delete={
                "Objects": [{"Key": self._keys.local_to_remote(k)} for k in keys],
                "Quiet": True,
            },
        )
        errors = resp.get("Errors") or []
        if errors:
            logger.error("Multi-object delete failed", failed=len(errors), bucket=self.bucket)
            raise ClientError({"Error": errors[0]}, "DeleteObjects")

    async def get_info(self, key: str) -> Entry | None:
        return await asyncio.to_thread(self._head, key)

    async def read(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._get, key)

    async def write(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._put, key, bytes(data))
        logger.debug("Wrote object", key=key, size=len(data))

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)
        logger.debug("Deleted object", key=key)

    async def enumerate(self, query: Query | None = None) -> AsyncIterator[Entry]:
        query = query or Query.EMPTY

        skip = 0
        token = ""
        if query.cursor:
            raw_skip, token = decode_cursor(query.cursor, CURSOR_TAG, 2)
            skip = parse_count(raw_skip, query.cursor, CURSOR_TAG)

        remaining = query.max_results
        page_size = min(query.effective_page_size, MAX_LIST_KEYS)
        prefix = self._keys.local_to_remote(query.prefix if query.has_prefix else "")

        while remaining is None or remaining > 0:
            wanted = page_size if remaining is None else min(page_size, remaining + skip)
            resp = await asyncio.to_thread(
                self._list_page, prefix, token, min(wanted, MAX_LIST_KEYS)
            )

            position = 0
            for obj in resp.get("Contents", []):
                position += 1
                if skip > 0:
                    skip -= 1
                    continue

                yield Entry(
                    key=self._keys.remote_to_local(obj["Key"]),
                    length=obj.get("Size"),
                    last_modified=obj.get("LastModified"),
                    etag=obj.get("ETag"),
                    cursor=encode_cursor(CURSOR_TAG, position, token),
                )

                if remaining is not None:
                    remaining -= 1
                    if remaining <= 0:
                        return

            token = resp.get("NextContinuationToken") or ""
            if not resp.get("IsTruncated") or not token:
                return

    def get_info_many(self, keys: Iterable[str]) -> AsyncIterator[tuple[str, Entry | None]]:
        return sequential_get_info(self, keys)

    def read_many(self, keys: Iterable[str]) -> AsyncIterator[tuple[str, bytes | None]]:
        return sequential_read(self, keys)

    async def write_many(self, items: Iterable[tuple[str, bytes]]) -> None:
        await sequential_write(self, items)

    async def delete_many(self, keys: Iterable[str]) -> None:
        """Delete keys with multi-object requests, stopping at the first failed chunk."""
        key_list = list(keys)
        for start in range(0, len(key_list), MAX_DELETE_KEYS):
            await asyncio.to_thread(self._delete_chunk, key_list[start:start + MAX_DELETE_KEYS])
        logger.debug("Deleted objects", count=len(key_list))

    async def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await asyncio.to_thread(close)
        logger.info("S3 store closed", bucket=self.bucket)

    def __repr__(self) -> str:
        return f"S3Store(bucket={self.bucket!r}, prefix={self.prefix!r})"


@dataclass(frozen=True)
class S3Config:
    username: str
    password: str
    bucket: str | None = None
    prefix: str | None = None
    service_url: str | None = None
    region: str | None = None
    pathstyle: bool = False


S3_OPTIONS = OptionSchema(
    S3Config,
    (
        OptionField("username", default=REQUIRED, description="The S3 access key or username"),
        OptionField("password", default=REQUIRED, description="The S3 secret key or password"),
        OptionField(
            "bucket",
            default=None,
            description="Override for the bucket name, using the URL bucket name if not provided",
        ),
        OptionField(
            "prefix",
            default=None,
            description="Override for the path prefix, using the URL after bucket name if not provided",
        ),
        OptionField("service_url", default=None, description="The service URL if not using AWS S3"),
        OptionField("region", default=None, description="The region of the bucket"),
        OptionField(
            "pathstyle",
            OptionKind.BOOL,
            default=False,
            description="Use path-style bucket addressing",
        ),
    ),
)


def create_client(config: S3Config) -> Any:
    """Build a boto3 S3 client from bound options."""
    session = boto3.session.Session()
    return session.client(
        "s3",
        aws_access_key_id=config.username,
        aws_secret_access_key=config.password,
        endpoint_url=config.service_url or None,
        region_name=config.region or None,
        config=BotoConfig(
            retries={"max_attempts": 5, "mode": "standard"},
            s3={"addressing_style": "path" if config.pathstyle else "auto"},
        ),
    )


class S3StoreFactory(StoreFactory):
    """Factory for S3 stores."""

    schemes = ("s3", "aws")
    description = "An S3-compatible storage provider"
    usage = "s3://bucket.name/prefix?username=...&password=..."
    options_schema = S3_OPTIONS

    def create(self, connection_string: str) -> S3Store:
        descriptor, config = parse_connection_string(connection_string, S3_OPTIONS)
        descriptor.get_required_credentials()

        bucket, _, prefix = descriptor.path.partition("/")
        if config.bucket is not None:
            bucket = config.bucket
        if config.prefix is not None:
            prefix = config.prefix

        if not bucket.strip():
            raise InvalidOptionError("The bucket name is required", context={"option": "bucket"})

        store = S3Store(create_client(config), bucket, prefix)
        logger.info("Opened S3 store", bucket=bucket, prefix=prefix, endpoint=config.service_url)
        return store
