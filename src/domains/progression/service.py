# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""School progression service for moving the roster into a new school year.

This module provides the SchoolProgressionService class for:
- Starting a year-keyed workflow that stages one change per student
- Class assignment for students moving to a new class
- Marking and unmarking departing students
- Staging new students with their parents
- Applying the staged changes to the live roster
"""

from __future__ import annotations

import logging
import secrets
import string

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import get_settings
from src.core.config.settings import ProgressionSettings
from src.domains.progression.apply import ProgressionApplier
from src.domains.progression.backup import create_student_backup
from src.domains.progression.batching import ChunkCommitError
from src.domains.progression.locks import ApplyInProgressError, ApplyLockRegistry
from src.domains.progression.roster import StudentRoster
from src.domains.progression.rules import class_level_warnings, determine_progression
from src.infrastructure.database.models import (
    ClassAssignment,
    DepartingStudent,
    NewStudentEntry,
    ProgressionChange,
    ProgressionWorkflow,
)
from src.models.progression import (
    ApplyResultResponse,
    AssignmentResponse,
    ChangeResponse,
    ChangeType,
    DepartingResponse,
    DepartingStudentItem,
    NewStudentRequest,
    NewStudentResponse,
    ProgressionStatusResponse,
    StartWorkflowResponse,
    WorkflowResponse,
    WorkflowStatus,
)
from src.utils.datetime import epoch_millis, utc_now
from src.utils.logging import workflow_log_context

logger = logging.getLogger(__name__)

WORKFLOW_TYPE = "school_progression"
PHASE_ANALYSIS_COMPLETE = "analysis_complete"

_ID_ALPHABET = string.digits + string.ascii_lowercase


class ProgressionServiceError(Exception):
    """Base exception for school progression service errors."""

    pass


class WorkflowNotFoundError(ProgressionServiceError):
    """Raised when workflow is not found."""

    pass


class StudentNotFoundError(ProgressionServiceError):
    """Raised when a student has no staged record in the workflow."""

    pass


class WorkflowConflictError(ProgressionServiceError):
    """Raised when the workflow state does not allow the operation."""

    pass


class ProgressionValidationError(ProgressionServiceError):
    """Raised when a required field is missing or empty.

    Attributes:
        field: Name of the offending field.
    """

    def __init__(self, message: str, field: str) -> None:
        super().__init__(message)
        self.field = field


class ApplyCommitError(ProgressionServiceError):
    """Raised when applying fails while committing.

    Chunks committed before the failure stay committed and the workflow
    stays active, so the apply can be re-run.

    Attributes:
        chunk_index: Zero-based index of the failed chunk, None if the
            failure happened before the first chunk.
        committed_chunks: Number of chunks committed before the failure.
    """

    def __init__(
        self,
        message: str,
        chunk_index: int | None = None,
        committed_chunks: int = 0,
    ) -> None:
        super().__init__(message)
        self.chunk_index = chunk_index
        self.committed_chunks = committed_chunks


def new_student_id() -> str:
    """Generate an id of the form ``new_{epoch_ms}_{6 base36 chars}``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"new_{epoch_millis()}_{suffix}"


class SchoolProgressionService:
    """Service for school-year progression workflows.

    Attributes:
        db: Async database session.
        settings: Progression settings.
        locks: Registry guarding concurrent applies.
        roster: Roster queries.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: ProgressionSettings | None = None,
        locks: ApplyLockRegistry | None = None,
    ) -> None:
        """Initialize school progression service.

        Args:
            db: Async database session.
            settings: Progression settings, defaults to the application settings.
            locks: Apply lock registry shared by every service of the process.
        """
        self.db = db
        self.settings = settings or get_settings().progression
        self.locks = locks or ApplyLockRegistry()
        self.roster = StudentRoster(db)

    def workflow_id_for(self, year: str) -> str:
        return f"{self.settings.workflow_id_prefix}_{year}"

    async def start_workflow(self, year: str, started_by: str) -> StartWorkflowResponse:
        """Start the progression workflow for a school year.

        Runs the progression rule for every student and stages one change
        per student plus one class assignment per student that needs one.
        Everything is written in a single commit.

        Args:
            year: School year key.
            started_by: Operator starting the workflow.

        Returns:
            Workflow id and outcome counts.

        Raises:
            ProgressionValidationError: If year is blank.
            WorkflowConflictError: If a workflow already exists for the year.
        """
        year = (year or "").strip()
        if not year:
            raise ProgressionValidationError("School year is required", field="year")

        workflow_id = self.workflow_id_for(year)
        if await self.db.get(ProgressionWorkflow, workflow_id) is not None:
            raise WorkflowConflictError(f"Workflow already exists for year {year}")

        students = await self.roster.list_students()
        stats = {
            "total_students": len(students),
            ChangeType.ADVANCE_IN_PLACE.value: 0,
            ChangeType.NEEDS_REASSIGNMENT.value: 0,
            ChangeType.GRADUATING.value: 0,
            ChangeType.INVALID.value: 0,
        }

        workflow = ProgressionWorkflow(
            id=workflow_id,
            type=WORKFLOW_TYPE,
            school_year=year,
            status=WorkflowStatus.ACTIVE.value,
            phase=PHASE_ANALYSIS_COMPLETE,
            stats=stats,
            started_by=started_by,
        )

        try:
            self.db.add(workflow)
            await self.db.flush()

            for student in students:
                outcome = determine_progression(student.level, student.class_name)
                warnings = class_level_warnings(
                    student.id, student.full_name, student.level, student.class_name
                )
                for warning in warnings:
                    logger.warning("%s", warning)

                self.db.add(
                    ProgressionChange(
                        workflow_id=workflow_id,
                        student_id=student.id,
                        student_name=student.full_name,
                        current_level=outcome.current_level,
                        current_class=student.class_name,
                        new_level=outcome.new_level,
                        new_class=outcome.new_class,
                        change_type=outcome.change_type.value,
                        requires_assignment=outcome.requires_assignment,
                        processed=False,
                        warnings=warnings,
                    )
                )
                stats[outcome.change_type.value] += 1

                if outcome.requires_assignment:
                    self.db.add(
                        ClassAssignment(
                            workflow_id=workflow_id,
                            student_id=student.id,
                            student_name=student.full_name,
                            current_level=outcome.current_level,
                            current_class=student.class_name,
                            new_level=outcome.new_level,
                            assigned_class=None,
                            assigned=False,
                        )
                    )

            workflow.stats = dict(stats)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise WorkflowConflictError(f"Workflow already exists for year {year}") from e
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        logger.info(
            "Started progression workflow %s by %s: %s",
            workflow_id,
            started_by,
            stats,
        )

        return StartWorkflowResponse(workflow_id=workflow_id, stats=stats)

    async def get_status(self, workflow_id: str) -> ProgressionStatusResponse:
        """Get the full staged state of a workflow.

        Raises:
            WorkflowNotFoundError: If workflow not found.
        """
        workflow = await self._get_workflow(workflow_id)

        changes = await self._list_rows(ProgressionChange, workflow_id, ProgressionChange.student_id)
        assignments = await self._list_rows(ClassAssignment, workflow_id, ClassAssignment.student_id)
        new_students = await self._list_rows(NewStudentEntry, workflow_id, NewStudentEntry.id)
        departing = await self._list_rows(DepartingStudent, workflow_id, DepartingStudent.student_id)

        history = (
            await self.db.execute(
                select(ProgressionWorkflow)
                .where(ProgressionWorkflow.id != workflow_id)
                .order_by(ProgressionWorkflow.started_at.desc(), ProgressionWorkflow.id)
                .limit(self.settings.history_limit)
            )
        ).scalars().all()

        return ProgressionStatusResponse(
            workflow=WorkflowResponse.model_validate(workflow),
            changes=[ChangeResponse.model_validate(row) for row in changes],
            assignments=[AssignmentResponse.model_validate(row) for row in assignments],
            new_students=[NewStudentResponse.model_validate(row) for row in new_students],
            departing=[DepartingResponse.model_validate(row) for row in departing],
            history=[WorkflowResponse.model_validate(row) for row in history],
        )

    async def get_change(self, workflow_id: str, student_id: str) -> ChangeResponse:
        """Get the staged change of one student.

        Raises:
            WorkflowNotFoundError: If workflow not found.
            StudentNotFoundError: If the student has no change.
        """
        await self._get_workflow(workflow_id)
        change = await self._get_change(workflow_id, student_id)
        return ChangeResponse.model_validate(change)

    async def list_changes(self, workflow_id: str) -> list[ChangeResponse]:
        """List staged changes ordered by student id.

        Raises:
            WorkflowNotFoundError: If workflow not found.
        """
        await self._get_workflow(workflow_id)
        changes = await self._list_rows(ProgressionChange, workflow_id, ProgressionChange.student_id)
        return [ChangeResponse.model_validate(row) for row in changes]

    async def assign_class(
        self,
        workflow_id: str,
        student_id: str,
        class_name: str,
        assigned_by: str,
    ) -> AssignmentResponse:
        """Assign the destination class of a student needing reassignment.

        Updates the assignment and the student's change together.

        Args:
            workflow_id: Workflow ID.
            student_id: Student ID.
            class_name: Destination class; surrounding whitespace is removed.
            assigned_by: Operator making the assignment.

        Returns:
            Updated assignment.

        Raises:
            ProgressionValidationError: If class_name is blank.
            WorkflowNotFoundError: If workflow not found.
            WorkflowConflictError: If workflow is completed.
            StudentNotFoundError: If the student has no assignment.
        """
        class_name = (class_name or "").strip()
        if not class_name:
            raise ProgressionValidationError("Class name is required", field="assigned_class")

        await self._get_active_workflow(workflow_id)

        assignment = await self.db.get(ClassAssignment, (workflow_id, student_id))
        if assignment is None:
            raise StudentNotFoundError(f"No class assignment for student {student_id}")
        change = await self._get_change(workflow_id, student_id)

        now = utc_now()
        assignment.assigned_class = class_name
        assignment.assigned = True
        assignment.assigned_by = assigned_by
        assignment.assigned_at = now
        change.new_class = class_name
        change.updated_at = now

        await self.db.commit()

        logger.info(
            "Assigned class %s to student %s in %s by %s",
            class_name,
            student_id,
            workflow_id,
            assigned_by,
        )

        return AssignmentResponse.model_validate(assignment)

    async def mark_departing(
        self,
        workflow_id: str,
        students: list[DepartingStudentItem],
        marked_by: str,
    ) -> list[DepartingResponse]:
        """Mark students as leaving instead of progressing or graduating.

        Raises:
            ProgressionValidationError: If no students are given.
            WorkflowNotFoundError: If workflow not found.
            WorkflowConflictError: If workflow is completed.
            StudentNotFoundError: If a student has no change; nothing is written.
        """
        if not students:
            raise ProgressionValidationError("At least one student is required", field="students")

        await self._get_active_workflow(workflow_id)

        student_ids = list(dict.fromkeys(item.student_id for item in students))
        rows = await self.db.execute(
            select(ProgressionChange).where(
                ProgressionChange.workflow_id == workflow_id,
                ProgressionChange.student_id.in_(student_ids),
            )
        )
        changes = {change.student_id: change for change in rows.scalars().all()}
        missing = [student_id for student_id in student_ids if student_id not in changes]
        if missing:
            raise StudentNotFoundError(f"Students not found in workflow: {', '.join(missing)}")

        now = utc_now()
        departing: list[DepartingStudent] = []
        for item in students:
            change = changes[item.student_id]
            row = await self.db.merge(
                DepartingStudent(
                    workflow_id=workflow_id,
                    student_id=item.student_id,
                    student_name=change.student_name,
                    current_level=change.current_level,
                    current_class=change.current_class,
                    departure_reason=item.reason.strip(),
                    marked_by=marked_by,
                    marked_at=now,
                )
            )
            departing.append(row)
            change.change_type = ChangeType.DEPARTING.value
            change.updated_at = now

        await self.db.commit()

        logger.info(
            "Marked %d students as departing in %s by %s",
            len(student_ids),
            workflow_id,
            marked_by,
        )

        unique = {row.student_id: row for row in departing}
        return [DepartingResponse.model_validate(row) for row in unique.values()]

    async def unmark_departing(self, workflow_id: str, student_id: str) -> ChangeResponse:
        """Remove a departure mark and restore the rule's outcome.

        If the student needs a new class and one was already assigned, the
        assigned class is restored instead of the None the rule stages, so
        the change and its assignment row stay in agreement.

        Raises:
            WorkflowNotFoundError: If workflow not found.
            WorkflowConflictError: If workflow is completed.
            StudentNotFoundError: If the student is not marked as departing.
        """
        await self._get_active_workflow(workflow_id)

        departing = await self.db.get(DepartingStudent, (workflow_id, student_id))
        if departing is None:
            raise StudentNotFoundError(f"Student {student_id} is not marked as departing")
        change = await self._get_change(workflow_id, student_id)

        outcome = determine_progression(change.current_level, change.current_class)
        new_class = outcome.new_class
        if outcome.requires_assignment:
            assignment = await self.db.get(ClassAssignment, (workflow_id, student_id))
            if assignment is not None and assignment.assigned and assignment.assigned_class:
                new_class = assignment.assigned_class

        change.change_type = outcome.change_type.value
        change.new_level = outcome.new_level
        change.new_class = new_class
        change.requires_assignment = outcome.requires_assignment
        change.updated_at = utc_now()
        await self.db.delete(departing)

        await self.db.commit()

        logger.info(
            "Unmarked departing student %s in %s, restored %s",
            student_id,
            workflow_id,
            change.change_type,
        )

        return ChangeResponse.model_validate(change)

    async def add_new_student(
        self,
        workflow_id: str,
        request: NewStudentRequest,
        added_by: str,
    ) -> NewStudentResponse:
        """Stage a new student, always at level 1.

        Raises:
            WorkflowNotFoundError: If workflow not found.
            WorkflowConflictError: If workflow is completed.
        """
        await self._get_active_workflow(workflow_id)

        parents = [p for p in (request.parent1, request.parent2) if p is not None]
        entry = NewStudentEntry(
            id=new_student_id(),
            workflow_id=workflow_id,
            student={
                "first_name": request.student.first_name,
                "last_name": request.student.last_name,
                "class_name": request.student.class_name,
                "level": 1,
                "parent_emails": [p.email for p in parents],
            },
            parent1=request.parent1.model_dump(),
            parent2=request.parent2.model_dump() if request.parent2 else None,
            added_by=added_by,
            added_at=utc_now(),
        )
        self.db.add(entry)
        await self.db.commit()

        logger.info("Staged new student %s in %s by %s", entry.id, workflow_id, added_by)

        return NewStudentResponse.model_validate(entry)

    async def apply_workflow(self, workflow_id: str, dry_run: bool = False) -> ApplyResultResponse:
        """Apply the staged changes to the live roster.

        Args:
            workflow_id: Workflow ID.
            dry_run: Only compute the plan and its stats.

        Returns:
            Apply stats and the number of write operations.

        Raises:
            WorkflowNotFoundError: If workflow not found.
            WorkflowConflictError: If workflow is not active or is being applied.
            ApplyCommitError: If the backup or a commit chunk fails.
        """
        try:
            with self.locks.hold(workflow_id), workflow_log_context(workflow_id):
                return await self._apply_locked(workflow_id, dry_run)
        except ApplyInProgressError as e:
            raise WorkflowConflictError(str(e)) from e

    async def _apply_locked(self, workflow_id: str, dry_run: bool) -> ApplyResultResponse:
        workflow = await self._get_active_workflow(workflow_id)

        applier = ProgressionApplier(self.db, self.settings, self.roster)
        context = await applier.load_context(workflow)
        plan = await applier.build_plan(context)

        result = ApplyResultResponse(
            workflow_id=workflow_id,
            stats=plan.stats,
            dry_run=dry_run,
            operation_count=plan.operation_count,
        )
        if dry_run:
            logger.info("Dry run of %s: %s", workflow_id, plan.stats.model_dump())
            return result

        if self.settings.backup_before_apply:
            try:
                await create_student_backup(self.db, context.students.values(), workflow_id)
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise ApplyCommitError(f"Failed to create student backup: {e}") from e

        try:
            chunks = await applier.commit(plan)
        except ChunkCommitError as e:
            raise ApplyCommitError(
                str(e),
                chunk_index=e.chunk_index,
                committed_chunks=e.committed_chunks,
            ) from e

        logger.info(
            "Applied progression workflow %s in %d chunks: %s",
            workflow_id,
            chunks,
            plan.stats.model_dump(),
        )
        return result

    async def _get_workflow(self, workflow_id: str) -> ProgressionWorkflow:
        workflow = await self.db.get(ProgressionWorkflow, workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def _get_active_workflow(self, workflow_id: str) -> ProgressionWorkflow:
        workflow = await self._get_workflow(workflow_id)
        if workflow.status != WorkflowStatus.ACTIVE.value:
            raise WorkflowConflictError(f"Workflow {workflow_id} is {workflow.status}")
        return workflow

    async def _get_change(self, workflow_id: str, student_id: str) -> ProgressionChange:
        change = await self.db.get(ProgressionChange, (workflow_id, student_id))
        if change is None:
            raise StudentNotFoundError(f"Student {student_id} not found in workflow {workflow_id}")
        return change

    async def _list_rows(self, model, workflow_id: str, order_by) -> list:
        result = await self.db.execute(
            select(model).where(model.workflow_id == workflow_id).order_by(order_by)
        )
        return list(result.scalars().all())
