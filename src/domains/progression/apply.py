# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Apply engine for school progression workflows.

Applying a workflow is split in three steps:

1. ``load_context`` reads the staged rows and a roster snapshot into a
   request-scoped ApplyContext.
2. ``build_plan`` turns the context into an ordered ApplyPlan of
   idempotent write operations and the resulting stats. Nothing is
   written; dry runs stop here.
3. ``commit`` executes the plan in sequential chunks. A mutation and its
   audit entry always land in the same chunk.

Plan order:
    orphaned parents -> removed students -> progressed students ->
    new students -> workflow completion

Orphaned parents come first so a retry after a partial commit still sees
the parent links it needs. Workflow completion is the last operation, so
a failed apply leaves the workflow active and can be re-run.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config.settings import ProgressionSettings
from src.domains.progression.batching import WriteOperation, commit_in_chunks, gather_in_chunks
from src.domains.progression.orphans import remaining_parent_ids, resolve_orphaned_parents
from src.domains.progression.roster import RosterStudent, StudentRoster
from src.infrastructure.database.models import (
    DepartingStudent,
    NewStudentEntry,
    Parent,
    ParentStudentRelation,
    ProgressionAuditEntry,
    ProgressionChange,
    ProgressionWorkflow,
    Student,
)
from src.models.progression import ApplyStats, AuditEntryType, ChangeType, WorkflowStatus
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)

PHASE_CHANGES_APPLIED = "changes_applied"
DEFAULT_DEPARTURE_REASON = "Not specified"
ORPHAN_REMOVAL_REASON = "No remaining students"
NEW_STUDENT_LEVEL = 1

# Namespace for ids of parents created from new-student entries.
NEW_PARENT_NAMESPACE = uuid.UUID("6f1c2a4e-5b7d-4e2a-9c3f-8a1d0b7e4c21")


def new_parent_id(entry_id: str, slot: str) -> str:
    """Deterministic id of a parent created for a new-student entry."""
    return str(uuid.uuid5(NEW_PARENT_NAMESPACE, f"{entry_id}:{slot}"))


def audit_entry_id(workflow_id: str, entry_type: AuditEntryType, subject_id: str) -> str:
    return f"{workflow_id}:{entry_type.value}:{subject_id}"


@dataclass
class ApplyContext:
    """Everything an apply reads, loaded once per request."""

    workflow: ProgressionWorkflow
    changes: list[ProgressionChange]
    departing: dict[str, DepartingStudent]
    new_students: list[NewStudentEntry]
    students: dict[str, RosterStudent]

    @property
    def removal_ids(self) -> list[str]:
        return [
            change.student_id
            for change in self.changes
            if change.change_type in (ChangeType.GRADUATING.value, ChangeType.DEPARTING.value)
        ]

    @property
    def parent_links(self) -> dict[str, tuple[str, ...]]:
        return {student_id: student.parent_ids for student_id, student in self.students.items()}


@dataclass
class ApplyPlan:
    """Ordered write operations for one apply.

    Each group holds one mutation and its audit entry; a group is never
    split across commit chunks.
    """

    workflow_id: str
    groups: list[list[WriteOperation]] = field(default_factory=list)
    stats: ApplyStats = field(default_factory=ApplyStats)
    removed_student_ids: list[str] = field(default_factory=list)
    orphaned_parent_ids: list[str] = field(default_factory=list)
    failed_chunks: list[list[str]] = field(default_factory=list)

    @property
    def operations(self) -> list[WriteOperation]:
        return [operation for group in self.groups for operation in group]

    @property
    def operation_count(self) -> int:
        return sum(len(group) for group in self.groups)


class ProgressionApplier:
    """Builds and commits apply plans.

    Attributes:
        db: Async database session.
        settings: Progression settings (batch sizes).
        roster: Roster queries.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: ProgressionSettings,
        roster: StudentRoster | None = None,
    ) -> None:
        self.db = db
        self.settings = settings
        self.roster = roster or StudentRoster(db)

    async def load_context(self, workflow: ProgressionWorkflow) -> ApplyContext:
        """Load staged rows and the roster snapshot for a workflow."""
        changes = (
            await self.db.execute(
                select(ProgressionChange)
                .where(ProgressionChange.workflow_id == workflow.id)
                .order_by(ProgressionChange.student_id)
            )
        ).scalars().all()
        departing = (
            await self.db.execute(
                select(DepartingStudent).where(DepartingStudent.workflow_id == workflow.id)
            )
        ).scalars().all()
        new_students = (
            await self.db.execute(
                select(NewStudentEntry)
                .where(NewStudentEntry.workflow_id == workflow.id)
                .order_by(NewStudentEntry.added_at, NewStudentEntry.id)
            )
        ).scalars().all()
        students = await self.roster.list_students()

        return ApplyContext(
            workflow=workflow,
            changes=list(changes),
            departing={row.student_id: row for row in departing},
            new_students=list(new_students),
            students={student.id: student for student in students},
        )

    async def build_plan(self, context: ApplyContext) -> ApplyPlan:
        """Compute every write of the apply without executing anything."""
        workflow_id = context.workflow.id
        plan = ApplyPlan(workflow_id=workflow_id)

        intake_groups, protected_parent_ids = await self._plan_new_students(context, plan)
        change_groups = self._plan_changes(context, plan)
        orphan_groups = await self._plan_orphans(context, plan, protected_parent_ids)

        plan.groups.extend(orphan_groups)
        plan.groups.extend(change_groups)
        plan.groups.extend(intake_groups)
        plan.groups.append([self._completion_operation(context.workflow, plan.stats)])

        logger.info(
            "Built apply plan for %s: %d operations, stats=%s",
            workflow_id,
            plan.operation_count,
            plan.stats.model_dump(),
        )
        return plan

    async def commit(self, plan: ApplyPlan) -> int:
        """Commit the plan in sequential chunks.

        Raises:
            ChunkCommitError: If a chunk fails.
        """
        return await commit_in_chunks(self.db, plan.groups, self.settings.commit_batch_size)

    # ------------------------------------------------------------------
    # Plan steps
    # ------------------------------------------------------------------

    def _plan_changes(self, context: ApplyContext, plan: ApplyPlan) -> list[list[WriteOperation]]:
        workflow_id = context.workflow.id
        removals: list[list[WriteOperation]] = []
        updates: list[list[WriteOperation]] = []

        for change in context.changes:
            student_id = change.student_id

            if change.change_type == ChangeType.GRADUATING.value:
                removals.append(
                    [
                        self._audit(
                            workflow_id,
                            AuditEntryType.GRADUATED,
                            student_id,
                            student_id=student_id,
                            details={
                                "student_name": change.student_name,
                                "current_level": change.current_level,
                                "current_class": change.current_class,
                            },
                        ),
                        *self._removal_operations(student_id),
                    ]
                )
                plan.removed_student_ids.append(student_id)
                plan.stats.graduated += 1

            elif change.change_type == ChangeType.DEPARTING.value:
                departing = context.departing.get(student_id)
                reason = (departing.departure_reason if departing else "").strip()
                removals.append(
                    [
                        self._audit(
                            workflow_id,
                            AuditEntryType.DEPARTED,
                            student_id,
                            student_id=student_id,
                            details={
                                "student_name": change.student_name,
                                "current_level": change.current_level,
                                "current_class": change.current_class,
                                "departure_reason": reason or DEFAULT_DEPARTURE_REASON,
                            },
                        ),
                        *self._removal_operations(student_id),
                    ]
                )
                plan.removed_student_ids.append(student_id)
                plan.stats.departed += 1

            elif change.new_class and change.new_level:
                student = context.students.get(student_id)
                if student is None:
                    logger.warning(
                        "Student %s is no longer on the roster, skipping progression",
                        student_id,
                    )
                    continue
                updates.append(
                    [
                        WriteOperation.set(
                            Student,
                            f"progress student {student_id}",
                            **{**student.to_row(), "level": change.new_level, "class_name": change.new_class},
                        ),
                        self._audit(
                            workflow_id,
                            AuditEntryType.PROGRESSED,
                            student_id,
                            student_id=student_id,
                            details={
                                "student_name": change.student_name,
                                "old_level": change.current_level,
                                "new_level": change.new_level,
                                "old_class": change.current_class,
                                "new_class": change.new_class,
                            },
                        ),
                    ]
                )
                plan.stats.progressed += 1

            elif change.change_type == ChangeType.NEEDS_REASSIGNMENT.value:
                logger.warning(
                    "Student %s (%s) needs a class assignment and was left unchanged",
                    student_id,
                    change.student_name,
                )
                plan.stats.skipped_unassigned += 1

        return removals + updates

    async def _plan_new_students(
        self,
        context: ApplyContext,
        plan: ApplyPlan,
    ) -> tuple[list[list[WriteOperation]], set[str]]:
        """Plan inserts for staged new students, one group per student.

        Returns:
            The operation groups and the ids of already existing parents they
            link to; those parents must survive the orphan cleanup.
        """
        groups: list[list[WriteOperation]] = []
        protected: set[str] = set()
        if not context.new_students:
            return groups, protected

        emails = [
            parent["email"].strip().lower()
            for entry in context.new_students
            for parent in entry.parents
            if parent.get("email")
        ]
        lookup = await gather_in_chunks(
            emails,
            self.roster.get_parents_by_emails,
            self.settings.query_batch_size,
            label="parent emails chunk",
        )
        if lookup.failed_chunks:
            logger.warning("Parent email lookup failed for %s", lookup.failed_ids)
        known: dict[str, str] = {parent.email.lower(): parent.id for parent in lookup.items}
        created: dict[str, str] = {}

        for entry in context.new_students:
            student = entry.student
            student_id = entry.id
            student_name = f"{student.get('first_name', '')} {student.get('last_name', '')}".strip()
            operations: list[WriteOperation] = []

            operations.append(
                WriteOperation.set(
                    Student,
                    f"add student {student_id}",
                    id=student_id,
                    first_name=student.get("first_name"),
                    last_name=student.get("last_name"),
                    level=NEW_STUDENT_LEVEL,
                    class_name=student.get("class_name"),
                )
            )

            linked: list[dict[str, Any]] = []
            for slot, info in (("parent1", entry.parent1), ("parent2", entry.parent2)):
                if not info:
                    continue
                email = (info.get("email") or "").strip().lower()
                parent_id = known.get(email) or created.get(email)

                if info.get("is_existing"):
                    if parent_id is None:
                        logger.warning(
                            "Existing parent %s of new student %s not found, not linked",
                            email,
                            student_id,
                        )
                        continue
                    protected.add(parent_id)
                elif parent_id is not None:
                    if email in known:
                        logger.warning(
                            "Parent %s of new student %s already exists, reusing %s",
                            email,
                            student_id,
                            parent_id,
                        )
                        protected.add(parent_id)
                else:
                    parent_id = new_parent_id(student_id, slot)
                    created[email] = parent_id
                    operations.append(
                        WriteOperation.set(
                            Parent,
                            f"add parent {parent_id}",
                            id=parent_id,
                            email=email,
                            first_name=info.get("first_name"),
                            last_name=info.get("last_name"),
                            phone=info.get("phone"),
                            address=info.get("address"),
                        )
                    )
                    plan.stats.parents_added += 1

                operations.append(
                    WriteOperation.set(
                        ParentStudentRelation,
                        f"link parent {parent_id} to {student_id}",
                        parent_id=parent_id,
                        student_id=student_id,
                    )
                )
                linked.append(
                    {
                        "slot": slot,
                        "parent_id": parent_id,
                        "email": email,
                        "type": "existing" if info.get("is_existing") else "new",
                    }
                )

            operations.append(
                self._audit(
                    context.workflow.id,
                    AuditEntryType.DEPENDENT_ADDED,
                    student_id,
                    student_id=student_id,
                    details={
                        "student_name": student_name,
                        "class_name": student.get("class_name"),
                        "level": NEW_STUDENT_LEVEL,
                        "parents": linked,
                    },
                )
            )
            groups.append(operations)
            plan.stats.students_added += 1

        return groups, protected

    async def _plan_orphans(
        self,
        context: ApplyContext,
        plan: ApplyPlan,
        protected_parent_ids: set[str],
    ) -> list[list[WriteOperation]]:
        groups: list[list[WriteOperation]] = []
        removed = context.removal_ids
        if not removed:
            return groups

        remaining = remaining_parent_ids(context.parent_links, removed, protected_parent_ids)
        resolution = await resolve_orphaned_parents(
            self.roster,
            removed,
            remaining,
            self.settings.query_batch_size,
        )
        plan.failed_chunks.extend(resolution.failed_chunks)
        plan.stats.orphan_lookup_failures = len(resolution.failed_chunks)

        for parent in resolution.parents:
            groups.append(
                [
                    self._audit(
                        context.workflow.id,
                        AuditEntryType.GUARDIAN_REMOVED,
                        parent.id,
                        parent_id=parent.id,
                        details={
                            "parent_email": parent.email,
                            "parent_name": parent.full_name,
                            "reason": ORPHAN_REMOVAL_REASON,
                        },
                    ),
                    WriteOperation.delete(
                        ParentStudentRelation,
                        f"unlink parent {parent.id}",
                        parent_id=parent.id,
                    ),
                    WriteOperation.delete(Parent, f"remove parent {parent.id}", id=parent.id),
                ]
            )
            plan.orphaned_parent_ids.append(parent.id)
            plan.stats.parents_removed += 1

        return groups

    # ------------------------------------------------------------------
    # Operation builders
    # ------------------------------------------------------------------

    @staticmethod
    def _removal_operations(student_id: str) -> list[WriteOperation]:
        return [
            WriteOperation.delete(
                ParentStudentRelation,
                f"unlink student {student_id}",
                student_id=student_id,
            ),
            WriteOperation.delete(Student, f"remove student {student_id}", id=student_id),
        ]

    @staticmethod
    def _audit(
        workflow_id: str,
        entry_type: AuditEntryType,
        subject_id: str,
        student_id: str | None = None,
        parent_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> WriteOperation:
        return WriteOperation.set(
            ProgressionAuditEntry,
            f"audit {entry_type.value} {subject_id}",
            id=audit_entry_id(workflow_id, entry_type, subject_id),
            workflow_id=workflow_id,
            entry_type=entry_type.value,
            student_id=student_id,
            parent_id=parent_id,
            details=details or {},
        )

    @staticmethod
    def _completion_operation(workflow: ProgressionWorkflow, stats: ApplyStats) -> WriteOperation:
        now = utc_now()
        return WriteOperation.set(
            ProgressionWorkflow,
            f"complete workflow {workflow.id}",
            id=workflow.id,
            type=workflow.type,
            school_year=workflow.school_year,
            status=WorkflowStatus.COMPLETED.value,
            phase=PHASE_CHANGES_APPLIED,
            stats={**(workflow.stats or {}), **stats.model_dump()},
            started_by=workflow.started_by,
            started_at=workflow.started_at,
            updated_at=now,
            completed_at=now,
        )
