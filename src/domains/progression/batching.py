# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Chunked reads and chunked commits.

Reads: ``gather_in_chunks`` splits an id list into groups no larger than
the query limit, fetches each group sequentially and keeps going when a
group fails. The caller gets the merged result plus the failed groups and
decides what to do with them.

Writes: an apply is an ordered list of ``WriteOperation`` groups committed
in sequential chunks. A group (a mutation and its audit entry) is never
split across two chunks. Each operation is idempotent ("set" merges a full
row, "delete" is a filtered delete), so a failed apply can be re-run from
the start without corrupting already-committed chunks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Iterable, Iterator, Literal, Sequence, TypeVar

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database.models.base import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_QUERY_BATCH_SIZE = 10
DEFAULT_COMMIT_BATCH_SIZE = 500


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of ``items`` with at most ``size`` elements."""
    if size < 1:
        raise ValueError("size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def unique_ids(ids: Iterable[T]) -> list[T]:
    """Drop falsy values and duplicates, keeping first-seen order."""
    seen: set[T] = set()
    result: list[T] = []
    for value in ids:
        if not value or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


@dataclass
class ChunkedResult(Generic[R]):
    """Merged output of a chunked read."""

    items: list[R] = field(default_factory=list)
    failed_chunks: list[list[Any]] = field(default_factory=list)

    @property
    def failed_ids(self) -> list[Any]:
        return [value for chunk in self.failed_chunks for value in chunk]


async def gather_in_chunks(
    ids: Iterable[T],
    fetch: Callable[[list[T]], Awaitable[Iterable[R]]],
    batch_size: int = DEFAULT_QUERY_BATCH_SIZE,
    label: str = "chunk",
) -> ChunkedResult[R]:
    """Fetch ``ids`` in sequential chunks, skipping chunks that fail.

    Args:
        ids: Ids to fetch; duplicates and empty values are dropped.
        fetch: Coroutine fetching one chunk.
        batch_size: Maximum ids per fetch call.
        label: Name used in log messages.

    Returns:
        ChunkedResult with every fetched item and the failed chunks.
    """
    result: ChunkedResult[R] = ChunkedResult()
    chunks = list(chunked(unique_ids(ids), batch_size))

    for index, chunk in enumerate(chunks, start=1):
        try:
            items = await fetch(chunk)
        except Exception as e:
            logger.error(
                "Failed to fetch %s %d/%d, skipping: %s (contents: %s)",
                label,
                index,
                len(chunks),
                str(e),
                chunk,
            )
            result.failed_chunks.append(chunk)
            continue
        result.items.extend(items)

    return result


@dataclass(frozen=True)
class WriteOperation:
    """One idempotent write of an apply plan."""

    kind: Literal["set", "delete"]
    model: type[Base]
    values: dict[str, Any]
    description: str = ""

    @classmethod
    def set(cls, model: type[Base], description: str = "", **values: Any) -> "WriteOperation":
        return cls("set", model, values, description)

    @classmethod
    def delete(cls, model: type[Base], description: str = "", **criteria: Any) -> "WriteOperation":
        if not criteria:
            raise ValueError("delete requires at least one criterion")
        return cls("delete", model, criteria, description)

    async def execute(self, session: AsyncSession) -> None:
        if self.kind == "set":
            await session.merge(self.model(**self.values))
            # Flush now so plan order is the write order.
            await session.flush()
        else:
            await session.execute(
                delete(self.model).filter_by(**self.values).execution_options(synchronize_session=False)
            )

    def __str__(self) -> str:
        return self.description or f"{self.kind} {self.model.__tablename__} {self.values}"


class ChunkCommitError(Exception):
    """Raised when a commit chunk fails.

    Attributes:
        chunk_index: Zero-based index of the failed chunk.
        committed_chunks: Number of chunks committed before the failure.
        total_chunks: Number of chunks in the plan.
    """

    def __init__(
        self,
        chunk_index: int,
        committed_chunks: int,
        total_chunks: int,
        original_error: Exception,
    ) -> None:
        super().__init__(
            f"Commit chunk {chunk_index + 1}/{total_chunks} failed "
            f"after {committed_chunks} committed: {original_error}"
        )
        self.chunk_index = chunk_index
        self.committed_chunks = committed_chunks
        self.total_chunks = total_chunks
        self.original_error = original_error


OperationGroup = Sequence[WriteOperation]


def pack_groups(
    operations: Sequence[WriteOperation | OperationGroup],
    size: int,
) -> Iterator[list[WriteOperation]]:
    """Pack operations into chunks of at most ``size`` without splitting groups.

    A bare WriteOperation is a group of one. A group larger than ``size``
    becomes a chunk of its own.
    """
    if size < 1:
        raise ValueError("size must be at least 1")
    current: list[WriteOperation] = []
    for item in operations:
        group = [item] if isinstance(item, WriteOperation) else list(item)
        if current and len(current) + len(group) > size:
            yield current
            current = []
        current.extend(group)
        if len(current) >= size:
            yield current
            current = []
    if current:
        yield current


async def commit_in_chunks(
    session: AsyncSession,
    operations: Sequence[WriteOperation | OperationGroup],
    batch_size: int = DEFAULT_COMMIT_BATCH_SIZE,
) -> int:
    """Execute operations in sequential transactions of at most ``batch_size``.

    Nested sequences are committed atomically (see pack_groups). A failing
    chunk is rolled back and stops the run; earlier chunks stay committed.

    Returns:
        Number of committed chunks.

    Raises:
        ChunkCommitError: If a chunk fails.
    """
    chunks = list(pack_groups(operations, batch_size))
    committed = 0

    for index, chunk in enumerate(chunks):
        try:
            for operation in chunk:
                await operation.execute(session)
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(
                "Commit chunk %d/%d failed (%d operations, %d chunks committed): %s",
                index + 1,
                len(chunks),
                len(chunk),
                committed,
                str(e),
            )
            raise ChunkCommitError(index, committed, len(chunks), e) from e

        committed += 1
        logger.debug("Committed chunk %d/%d (%d operations)", index + 1, len(chunks), len(chunk))

    return committed
