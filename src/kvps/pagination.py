"""
Enumeration paging and resume cursors.

Every backend's ``enumerate`` honors the same contract:

- ``prefix`` restricts results to keys starting with it (blank matches all)
- ``page_size`` is a fetch granularity hint (default 1000)
- ``max_results`` stops the sequence after exactly that many entries
- ``cursor`` resumes right after the entry that carried it

Cursors are opaque strings of the form ``<tag>:<part>[:<part>...]``. The tag
versions the encoding so a cursor from another backend (or an older format)
is rejected with InvalidCursorError instead of being misread.

Backends with a positional index (memory, filesystem, SQLite) supply a page
fetcher to ``paginate_by_offset``; the object store backend drives its own
token-based loop and only uses the cursor helpers.
"""

from __future__ import annotations

from typing import AsyncIterator, Awaitable, Callable, Sequence

from kvps.exceptions import InvalidCursorError
from kvps.types import Entry, Query

PageFetcher = Callable[[int, int], Awaitable[Sequence[Entry]]]


def encode_cursor(tag: str, *parts: object) -> str:
    """Build a versioned cursor string."""
    return ":".join([tag, *(str(p) for p in parts)])


def decode_cursor(cursor: str, tag: str, parts: int) -> list[str]:
    """Split a cursor and check its version tag.

    The last part may itself contain ``:`` characters (continuation tokens
    are opaque to us too).

    Args:
        cursor: The cursor received from the caller.
        tag: The version tag this backend writes.
        parts: Number of parts expected after the tag.

    Returns:
        The parts following the tag.

    Raises:
        InvalidCursorError: If the tag or the number of parts does not match.
    """
    pieces = cursor.split(":", parts)
    if len(pieces) != parts + 1 or pieces[0] != tag:
        raise InvalidCursorError(
            "Invalid cursor format",
            context={"cursor": cursor, "expected": tag},
        )
    return pieces[1:]


def decode_offset(cursor: str, tag: str) -> int:
    """Decode a ``<tag>:<offset>`` cursor into a non-negative offset."""
    (raw,) = decode_cursor(cursor, tag, 1)
    return parse_count(raw, cursor, tag)


def parse_count(raw: str, cursor: str, tag: str) -> int:
    """Parse a non-negative integer cursor component."""
    if not (raw.isascii() and raw.isdigit()):
        raise InvalidCursorError(
            "Invalid cursor offset",
            context={"cursor": cursor, "expected": tag},
        )
    return int(raw)


async def paginate_by_offset(
    fetch_page: PageFetcher,
    query: Query,
    tag: str,
) -> AsyncIterator[Entry]:
    """Drive an offset-based page fetcher according to the query contract.

    ``fetch_page(offset, limit)`` returns up to ``limit`` entries in a stable
    order starting at position ``offset`` of the filtered result set. Pages
    are fetched lazily, one at a time; a page shorter than requested ends
    the enumeration.

    Each produced entry carries a ``<tag>:<n>`` cursor where ``n`` counts
    the entries consumed so far, so resuming with it continues after that
    entry.
    """
    offset = decode_offset(query.cursor, tag) if query.cursor else 0
    remaining = query.max_results
    page_size = query.effective_page_size

    while remaining is None or remaining > 0:
        limit = page_size if remaining is None else min(page_size, remaining)
        page = await fetch_page(offset, limit)

        for entry in page:
            offset += 1
            yield entry.with_cursor(encode_cursor(tag, offset))
            if remaining is not None:
                remaining -= 1
                if remaining <= 0:
                    return

        if len(page) < limit:
            return


async def collect(entries: AsyncIterator[Entry]) -> list[Entry]:
    """Realize an enumeration into a list."""
    return [entry async for entry in entries]
