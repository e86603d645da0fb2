# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy ORM models.

- directory: the live roster (students, parents, parent-student relations)
- progression: school-year progression workflows, their staged child rows,
  the audit trail and roster backups
"""

from src.infrastructure.database.models.base import Base, TimestampMixin
from src.infrastructure.database.models.directory import (
    Parent,
    ParentStudentRelation,
    Student,
)
from src.infrastructure.database.models.progression import (
    ClassAssignment,
    DepartingStudent,
    NewStudentEntry,
    ProgressionAuditEntry,
    ProgressionChange,
    ProgressionWorkflow,
    StudentBackup,
)

__all__ = [
    "Base",
    "TimestampMixin",
    # Directory
    "Parent",
    "ParentStudentRelation",
    "Student",
    # Progression
    "ProgressionWorkflow",
    "ProgressionChange",
    "ClassAssignment",
    "DepartingStudent",
    "NewStudentEntry",
    "ProgressionAuditEntry",
    "StudentBackup",
]
