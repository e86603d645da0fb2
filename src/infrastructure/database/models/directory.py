# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Live roster models: students, parents and the edges between them."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.infrastructure.database.models.base import Base, TimestampMixin
from src.utils.datetime import utc_now


def _new_id() -> str:
    return str(uuid4())


class Parent(Base, TimestampMixin):
    """A parent or guardian linked to one or more students."""

    __tablename__ = "parents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    phone: Mapped[str | None] = mapped_column(String(30))
    address: Mapped[str | None] = mapped_column(Text)

    relations: Mapped[list[ParentStudentRelation]] = relationship(
        back_populates="parent",
        passive_deletes=True,
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Student(Base, TimestampMixin):
    """A student on the live roster.

    ``level`` is nullable: imported rows may carry no level, and the
    progression rule treats a missing level as 0.
    """

    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    level: Mapped[int | None] = mapped_column(Integer)
    class_name: Mapped[str | None] = mapped_column(String(20), index=True)

    relations: Mapped[list[ParentStudentRelation]] = relationship(
        back_populates="student",
        passive_deletes=True,
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def parent_ids(self) -> list[str]:
        return [relation.parent_id for relation in self.relations]


class ParentStudentRelation(Base):
    """Edge between a parent and a student.

    A student's parent references are exactly its relation rows.
    """

    __tablename__ = "parent_student_relations"

    parent_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("parents.id", ondelete="CASCADE"),
        primary_key=True,
    )
    student_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("students.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )

    parent: Mapped[Parent] = relationship(back_populates="relations")
    student: Mapped[Student] = relationship(back_populates="relations")
