# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Initial directory schema: roster and progression workflow tables.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-06-01
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create roster and progression tables."""

    # =========================================================================
    # ROSTER
    # =========================================================================

    op.create_table(
        "parents",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("address", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_parents_email", "parents", ["email"], unique=True)

    op.create_table(
        "students",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("level", sa.Integer, nullable=True),
        sa.Column("class_name", sa.String(20), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_students_class_name", "students", ["class_name"])

    op.create_table(
        "parent_student_relations",
        sa.Column(
            "parent_id",
            sa.String(64),
            sa.ForeignKey("parents.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "student_id",
            sa.String(64),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_parent_student_relations_student_id",
        "parent_student_relations",
        ["student_id"],
    )

    # =========================================================================
    # PROGRESSION WORKFLOW
    # =========================================================================

    op.create_table(
        "progression_workflows",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("type", sa.String(50), nullable=False, server_default="school_progression"),
        sa.Column("school_year", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        # 'active', 'completed'
        sa.Column("phase", sa.String(50), nullable=False),
        sa.Column("stats", sa.JSON, nullable=False),
        sa.Column("started_by", sa.String(255), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_progression_workflows_status", "progression_workflows", ["status"])

    op.create_table(
        "progression_changes",
        sa.Column(
            "workflow_id",
            sa.String(64),
            sa.ForeignKey("progression_workflows.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("student_id", sa.String(64), primary_key=True),
        sa.Column("student_name", sa.String(201), nullable=False, server_default=""),
        sa.Column("current_level", sa.Integer, nullable=False),
        sa.Column("current_class", sa.String(20), nullable=True),
        sa.Column("new_level", sa.Integer, nullable=True),
        sa.Column("new_class", sa.String(20), nullable=True),
        sa.Column("change_type", sa.String(30), nullable=False),
        # 'advance_in_place', 'needs_reassignment', 'graduating', 'departing', 'invalid'
        sa.Column("requires_assignment", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("processed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("warnings", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_progression_changes_change_type", "progression_changes", ["change_type"])

    op.create_table(
        "progression_class_assignments",
        sa.Column(
            "workflow_id",
            sa.String(64),
            sa.ForeignKey("progression_workflows.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("student_id", sa.String(64), primary_key=True),
        sa.Column("student_name", sa.String(201), nullable=False, server_default=""),
        sa.Column("current_level", sa.Integer, nullable=False),
        sa.Column("current_class", sa.String(20), nullable=True),
        sa.Column("new_level", sa.Integer, nullable=False),
        sa.Column("assigned_class", sa.String(20), nullable=True),
        sa.Column("assigned", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("assigned_by", sa.String(255), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "progression_departing_students",
        sa.Column(
            "workflow_id",
            sa.String(64),
            sa.ForeignKey("progression_workflows.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("student_id", sa.String(64), primary_key=True),
        sa.Column("student_name", sa.String(201), nullable=False, server_default=""),
        sa.Column("current_level", sa.Integer, nullable=True),
        sa.Column("current_class", sa.String(20), nullable=True),
        sa.Column("departure_reason", sa.Text, nullable=False, server_default=""),
        sa.Column("marked_by", sa.String(255), nullable=False),
        sa.Column("marked_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "progression_new_students",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "workflow_id",
            sa.String(64),
            sa.ForeignKey("progression_workflows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("student", sa.JSON, nullable=False),
        sa.Column("parent1", sa.JSON, nullable=False),
        sa.Column("parent2", sa.JSON, nullable=True),
        sa.Column("added_by", sa.String(255), nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_progression_new_students_workflow_id", "progression_new_students", ["workflow_id"])

    op.create_table(
        "progression_audit_entries",
        sa.Column("id", sa.String(200), primary_key=True),
        sa.Column(
            "workflow_id",
            sa.String(64),
            sa.ForeignKey("progression_workflows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("entry_type", sa.String(30), nullable=False),
        # 'progressed', 'graduated', 'departed', 'dependent_added', 'guardian_removed'
        sa.Column("student_id", sa.String(64), nullable=True),
        sa.Column("parent_id", sa.String(64), nullable=True),
        sa.Column("details", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_progression_audit_entries_workflow_id", "progression_audit_entries", ["workflow_id"])
    op.create_index("ix_progression_audit_entries_entry_type", "progression_audit_entries", ["entry_type"])

    op.create_table(
        "student_backups",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("workflow_id", sa.String(64), nullable=True),
        sa.Column("student_count", sa.Integer, nullable=False),
        sa.Column("data", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    """Drop roster and progression tables."""
    op.drop_table("student_backups")
    op.drop_table("progression_audit_entries")
    op.drop_table("progression_new_students")
    op.drop_table("progression_departing_students")
    op.drop_table("progression_class_assignments")
    op.drop_table("progression_changes")
    op.drop_table("progression_workflows")
    op.drop_table("parent_student_relations")
    op.drop_table("students")
    op.drop_table("parents")
