# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Read access to the live roster for the progression workflow.

Id-list lookups are capped at ``MAX_IN_QUERY_IDS`` per call so callers
always go through ``gather_in_chunks`` for larger sets.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database.models import Parent, ParentStudentRelation, Student

logger = logging.getLogger(__name__)

MAX_IN_QUERY_IDS = 10


@dataclass(frozen=True)
class RosterStudent:
    """Snapshot of one student and its parent references."""

    id: str
    first_name: str | None
    last_name: str | None
    level: int | None
    class_name: str | None
    parent_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "level": self.level,
            "class_name": self.class_name,
        }


def _check_limit(values: list[Any], what: str) -> None:
    if len(values) > MAX_IN_QUERY_IDS:
        raise ValueError(
            f"{what} lookup accepts at most {MAX_IN_QUERY_IDS} values, got {len(values)}"
        )


class StudentRoster:
    """Roster queries used by the progression service.

    Attributes:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def list_students(self) -> list[RosterStudent]:
        """List every student with its parent references, ordered by id."""
        students = (await self.db.execute(select(Student).order_by(Student.id))).scalars().all()
        links = (
            await self.db.execute(
                select(ParentStudentRelation.student_id, ParentStudentRelation.parent_id).order_by(
                    ParentStudentRelation.student_id, ParentStudentRelation.parent_id
                )
            )
        ).all()

        parents_by_student: dict[str, list[str]] = defaultdict(list)
        for student_id, parent_id in links:
            parents_by_student[student_id].append(parent_id)

        return [
            RosterStudent(
                id=student.id,
                first_name=student.first_name,
                last_name=student.last_name,
                level=student.level,
                class_name=student.class_name,
                parent_ids=tuple(parents_by_student.get(student.id, ())),
            )
            for student in students
        ]

    async def get_parent_links(self, student_ids: list[str]) -> list[tuple[str, str]]:
        """Get (student_id, parent_id) edges for up to 10 students.

        Raises:
            ValueError: If more than MAX_IN_QUERY_IDS ids are given.
        """
        _check_limit(student_ids, "Parent link")
        if not student_ids:
            return []
        rows = await self.db.execute(
            select(ParentStudentRelation.student_id, ParentStudentRelation.parent_id).where(
                ParentStudentRelation.student_id.in_(student_ids)
            )
        )
        return [(student_id, parent_id) for student_id, parent_id in rows.all()]

    async def get_parents_by_ids(self, parent_ids: list[str]) -> list[Parent]:
        """Get up to 10 parents by id.

        Raises:
            ValueError: If more than MAX_IN_QUERY_IDS ids are given.
        """
        _check_limit(parent_ids, "Parent id")
        if not parent_ids:
            return []
        result = await self.db.execute(select(Parent).where(Parent.id.in_(parent_ids)))
        return list(result.scalars().all())

    async def get_parents_by_emails(self, emails: list[str]) -> list[Parent]:
        """Get up to 10 parents by (lower-cased) email.

        Raises:
            ValueError: If more than MAX_IN_QUERY_IDS emails are given.
        """
        _check_limit(emails, "Parent email")
        if not emails:
            return []
        normalized = [email.strip().lower() for email in emails]
        result = await self.db.execute(select(Parent).where(Parent.email.in_(normalized)))
        return list(result.scalars().all())
