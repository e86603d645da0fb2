# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Roster backup taken before an apply commits."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from src.domains.progression.roster import RosterStudent
from src.infrastructure.database.models import StudentBackup
from src.utils.datetime import filename_timestamp

logger = logging.getLogger(__name__)


def backup_id() -> str:
    return f"students_{filename_timestamp()}"


async def create_student_backup(
    db: AsyncSession,
    students: Iterable[RosterStudent],
    workflow_id: str | None = None,
) -> StudentBackup:
    """Store a snapshot of the given students and their parent links.

    The backup is committed on its own, before any apply chunk.

    Args:
        db: Async database session.
        students: Roster snapshot to store.
        workflow_id: Workflow being applied, if any.

    Returns:
        The stored backup row.
    """
    data = {
        student.id: {**student.to_row(), "parent_ids": list(student.parent_ids)}
        for student in students
    }
    backup = StudentBackup(
        id=backup_id(),
        workflow_id=workflow_id,
        student_count=len(data),
        data=data,
    )
    db.add(backup)
    await db.commit()

    logger.info("Backup created: %s (%d students)", backup.id, backup.student_count)
    return backup
