# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""School-year progression workflow models.

A ProgressionWorkflow is keyed by school year. Its child rows stage the
proposed outcome of every student until the workflow is applied:

- ProgressionChange: one per student, the rule's outcome (or an override)
- ClassAssignment: students whose new level needs an operator-chosen class
- DepartingStudent: students leaving before their normal outcome
- NewStudentEntry: students (and parents) to enroll on apply

ProgressionAuditEntry rows are appended while applying and never modified.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database.models.base import Base
from src.utils.datetime import utc_now


class ProgressionWorkflow(Base):
    """One year's progression run (status: active -> completed)."""

    __tablename__ = "progression_workflows"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="school_progression")
    school_year: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", index=True)
    phase: Mapped[str] = mapped_column(String(50), nullable=False)
    stats: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    started_by: Mapped[str] = mapped_column(String(255), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class ProgressionChange(Base):
    """Staged outcome for one student."""

    __tablename__ = "progression_changes"

    workflow_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("progression_workflows.id", ondelete="CASCADE"),
        primary_key=True,
    )
    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    student_name: Mapped[str] = mapped_column(String(201), nullable=False, default="")
    current_level: Mapped[int] = mapped_column(Integer, nullable=False)
    current_class: Mapped[str | None] = mapped_column(String(20))
    new_level: Mapped[int | None] = mapped_column(Integer)
    new_class: Mapped[str | None] = mapped_column(String(20))
    change_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    requires_assignment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Reserved for resumable applies; apply does not read it.
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    warnings: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class ClassAssignment(Base):
    """Operator-supplied destination class for a needs_reassignment student."""

    __tablename__ = "progression_class_assignments"

    workflow_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("progression_workflows.id", ondelete="CASCADE"),
        primary_key=True,
    )
    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    student_name: Mapped[str] = mapped_column(String(201), nullable=False, default="")
    current_level: Mapped[int] = mapped_column(Integer, nullable=False)
    current_class: Mapped[str | None] = mapped_column(String(20))
    new_level: Mapped[int] = mapped_column(Integer, nullable=False)
    assigned_class: Mapped[str | None] = mapped_column(String(20))
    assigned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assigned_by: Mapped[str | None] = mapped_column(String(255))
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)


class DepartingStudent(Base):
    """Marks a student as leaving early; flips its change to departing."""

    __tablename__ = "progression_departing_students"

    workflow_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("progression_workflows.id", ondelete="CASCADE"),
        primary_key=True,
    )
    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    student_name: Mapped[str] = mapped_column(String(201), nullable=False, default="")
    current_level: Mapped[int | None] = mapped_column(Integer)
    current_class: Mapped[str | None] = mapped_column(String(20))
    departure_reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    marked_by: Mapped[str] = mapped_column(String(255), nullable=False)
    marked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)


class NewStudentEntry(Base):
    """A student (with one or two parents) to enroll when applying."""

    __tablename__ = "progression_new_students"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workflow_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("progression_workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    parent1: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    parent2: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    added_by: Mapped[str] = mapped_column(String(255), nullable=False)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)

    @property
    def parents(self) -> list[dict[str, Any]]:
        return [p for p in (self.parent1, self.parent2) if p]


class ProgressionAuditEntry(Base):
    """Append-only record of one mutation performed while applying."""

    __tablename__ = "progression_audit_entries"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    workflow_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("progression_workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entry_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    student_id: Mapped[str | None] = mapped_column(String(64))
    parent_id: Mapped[str | None] = mapped_column(String(64))
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)


class StudentBackup(Base):
    """Snapshot of the roster taken before an apply commits."""

    __tablename__ = "student_backups"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    workflow_id: Mapped[str | None] = mapped_column(String(64))
    student_count: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
