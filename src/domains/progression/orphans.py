# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Find parents left without any remaining student.

A parent stays alive iff at least one student outside the removal set
references it. The check is recomputed from the roster on every apply.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from src.domains.progression.batching import DEFAULT_QUERY_BATCH_SIZE, gather_in_chunks
from src.domains.progression.roster import StudentRoster
from src.infrastructure.database.models import Parent

logger = logging.getLogger(__name__)


def remaining_parent_ids(
    parent_links: Mapping[str, Iterable[str]],
    removed_ids: Iterable[str],
    protected_parent_ids: Iterable[str] = (),
) -> set[str]:
    """Parents referenced by at least one student that is not being removed.

    Args:
        parent_links: Student id -> parent ids for the whole roster.
        removed_ids: Students removed in this apply.
        protected_parent_ids: Parents kept alive regardless, e.g. parents of
            students enrolled by the same apply.
    """
    removed = set(removed_ids)
    remaining = set(protected_parent_ids)
    for student_id, parent_ids in parent_links.items():
        if student_id not in removed:
            remaining.update(parent_ids)
    return remaining


def find_orphaned_parents(
    removed_ids: Iterable[str],
    parent_links: Mapping[str, Iterable[str]],
    protected_parent_ids: Iterable[str] = (),
) -> set[str]:
    """Parents referenced only by removed students.

    Example:
        >>> find_orphaned_parents({"s3"}, {"s1": ["g1"], "s3": ["g2"]})
        {'g2'}
    """
    removed = set(removed_ids)
    remaining = remaining_parent_ids(parent_links, removed, protected_parent_ids)
    orphaned: set[str] = set()
    for student_id in removed:
        orphaned.update(p for p in parent_links.get(student_id, ()) if p not in remaining)
    return orphaned


@dataclass
class OrphanResolution:
    """Outcome of resolving orphaned parents against the database."""

    parents: list[Parent] = field(default_factory=list)
    failed_chunks: list[list[str]] = field(default_factory=list)

    @property
    def parent_ids(self) -> list[str]:
        return [parent.id for parent in self.parents]


async def resolve_orphaned_parents(
    roster: StudentRoster,
    removed_ids: Iterable[str],
    remaining: set[str],
    batch_size: int = DEFAULT_QUERY_BATCH_SIZE,
) -> OrphanResolution:
    """Look up the orphaned parents of removed students.

    Parent references of the removed students are read in chunks of at
    most ``batch_size``. A failing chunk is logged and skipped, so its
    parents are simply not removed this run. Orphaned parents are then
    loaded the same way.

    Args:
        roster: Roster queries.
        removed_ids: Students removed in this apply.
        remaining: Parent ids that must stay (see remaining_parent_ids).
        batch_size: Maximum ids per query.

    Returns:
        OrphanResolution with the parents to delete and the failed chunks.
    """
    resolution = OrphanResolution()
    removed = sorted(set(removed_ids))
    if not removed:
        return resolution

    links = await gather_in_chunks(
        removed,
        roster.get_parent_links,
        batch_size,
        label="removed students chunk",
    )
    resolution.failed_chunks.extend(links.failed_chunks)

    orphan_ids = sorted({parent_id for _, parent_id in links.items if parent_id not in remaining})
    if not orphan_ids:
        return resolution

    parents = await gather_in_chunks(
        orphan_ids,
        roster.get_parents_by_ids,
        batch_size,
        label="orphaned parents chunk",
    )
    resolution.failed_chunks.extend(parents.failed_chunks)
    resolution.parents = sorted(parents.items, key=lambda parent: parent.id)

    logger.info(
        "Resolved %d orphaned parents from %d removed students (%d failed chunks)",
        len(resolution.parents),
        len(removed),
        len(resolution.failed_chunks),
    )
    return resolution
