# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for orphaned parent detection."""

from itertools import chain, combinations
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from src.domains.progression.orphans import (
    find_orphaned_parents,
    remaining_parent_ids,
    resolve_orphaned_parents,
)

PARENT_LINKS = {
    "s1": ["g1"],
    "s2": ["g1", "g3"],
    "s3": ["g2"],
    "s4": ["g3", "g4"],
    "s5": [],
}


def _subsets(values):
    return chain.from_iterable(combinations(values, n) for n in range(len(values) + 1))


class TestFindOrphanedParents:
    """Tests for the pure orphan computation."""

    def test_parent_shared_with_remaining_student_is_kept(self) -> None:
        assert find_orphaned_parents({"s1"}, PARENT_LINKS) == set()

    def test_only_child_removed_orphans_parent(self) -> None:
        assert find_orphaned_parents({"s3"}, PARENT_LINKS) == {"g2"}

    def test_protected_parent_is_kept(self) -> None:
        assert find_orphaned_parents({"s3"}, PARENT_LINKS, protected_parent_ids={"g2"}) == set()

    @pytest.mark.parametrize("removed", list(_subsets(sorted(PARENT_LINKS))))
    def test_orphaned_iff_every_child_removed(self, removed) -> None:
        """A parent is orphaned exactly when all of its children are removed."""
        removed = set(removed)
        children: dict[str, set[str]] = {}
        for student_id, parent_ids in PARENT_LINKS.items():
            for parent_id in parent_ids:
                children.setdefault(parent_id, set()).add(student_id)

        expected = {parent_id for parent_id, kids in children.items() if kids <= removed}

        assert find_orphaned_parents(removed, PARENT_LINKS) == expected

    def test_remaining_parent_ids_includes_protected(self) -> None:
        remaining = remaining_parent_ids(PARENT_LINKS, {"s1", "s2", "s3", "s4"}, {"g9"})

        assert remaining == {"g9"}


class TestResolveOrphanedParents:
    """Tests for resolving orphans against the roster in chunks."""

    @staticmethod
    def _roster(links: dict[str, list[str]], failing: set[str] = frozenset()) -> MagicMock:
        roster = MagicMock()

        async def get_parent_links(student_ids):
            if failing & set(student_ids):
                raise RuntimeError("read failed")
            return [(s, p) for s in student_ids for p in links.get(s, [])]

        async def get_parents_by_ids(parent_ids):
            return [SimpleNamespace(id=p, email=f"{p}@example.com") for p in parent_ids]

        roster.get_parent_links = get_parent_links
        roster.get_parents_by_ids = get_parents_by_ids
        return roster

    @pytest.mark.asyncio
    async def test_resolves_orphans(self) -> None:
        roster = self._roster(PARENT_LINKS)
        removed = {"s3", "s4"}
        remaining = remaining_parent_ids(PARENT_LINKS, removed)

        resolution = await resolve_orphaned_parents(roster, removed, remaining)

        assert sorted(resolution.parent_ids) == ["g2", "g4"]
        assert resolution.failed_chunks == []

    @pytest.mark.asyncio
    async def test_failed_chunk_keeps_its_parents(self) -> None:
        links = {f"s{n:02d}": [f"g{n:02d}"] for n in range(15)}
        removed = set(links)
        roster = self._roster(links, failing={"s12"})

        resolution = await resolve_orphaned_parents(roster, removed, set(), batch_size=10)

        assert sorted(resolution.parent_ids) == [f"g{n:02d}" for n in range(10)]
        assert resolution.failed_chunks == [[f"s{n:02d}" for n in range(10, 15)]]

    @pytest.mark.asyncio
    async def test_no_removals(self) -> None:
        resolution = await resolve_orphaned_parents(self._roster(PARENT_LINKS), [], set())

        assert resolution.parents == []
