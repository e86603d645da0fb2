# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for the progression workflow on an in-memory database."""

from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from src.core.config.settings import ProgressionSettings
from src.domains.progression.apply import ProgressionApplier, new_parent_id
from src.domains.progression.batching import ChunkCommitError, WriteOperation, commit_in_chunks
from src.domains.progression.locks import ApplyLockRegistry
from src.domains.progression.service import (
    ApplyCommitError,
    SchoolProgressionService,
    StudentNotFoundError,
    WorkflowConflictError,
)
from src.infrastructure.database.models import (
    Parent,
    ParentStudentRelation,
    ProgressionAuditEntry,
    ProgressionWorkflow,
    Student,
    StudentBackup,
)
from src.models.progression import (
    ChangeType,
    DepartingStudentItem,
    NewStudentInfo,
    NewStudentRequest,
    ParentInfo,
    WorkflowStatus,
)

YEAR = "2025-2026"
WORKFLOW_ID = f"school_progression_{YEAR}"
OPERATOR = "admin@example.com"

pytestmark = pytest.mark.integration


@pytest.fixture
def service(seeded_session, progression_settings) -> SchoolProgressionService:
    """Service over the seeded roster."""
    return SchoolProgressionService(seeded_session, settings=progression_settings)


async def _students(session_factory) -> dict[str, Student]:
    async with session_factory() as session:
        rows = (await session.execute(select(Student))).scalars().all()
        return {student.id: student for student in rows}


async def _parent_ids(session_factory) -> set[str]:
    async with session_factory() as session:
        return set((await session.execute(select(Parent.id))).scalars().all())


async def _links(session_factory) -> set[tuple[str, str]]:
    async with session_factory() as session:
        rows = await session.execute(
            select(ParentStudentRelation.parent_id, ParentStudentRelation.student_id)
        )
        return {(parent_id, student_id) for parent_id, student_id in rows.all()}


async def _audit_types(session_factory) -> list[tuple[str, str]]:
    async with session_factory() as session:
        rows = await session.execute(
            select(ProgressionAuditEntry.entry_type, ProgressionAuditEntry.id).order_by(
                ProgressionAuditEntry.id
            )
        )
        return [(entry_type, entry_id) for entry_type, entry_id in rows.all()]


async def _workflow_status(session_factory) -> str:
    async with session_factory() as session:
        workflow = await session.get(ProgressionWorkflow, WORKFLOW_ID)
        return workflow.status


class TestStartWorkflow:
    """Tests for starting a workflow."""

    @pytest.mark.asyncio
    async def test_stages_one_change_per_student(self, service) -> None:
        started = await service.start_workflow(YEAR, started_by=OPERATOR)

        assert started.workflow_id == WORKFLOW_ID
        assert started.stats["total_students"] == 3
        assert started.stats["advance_in_place"] == 1
        assert started.stats["needs_reassignment"] == 1
        assert started.stats["graduating"] == 1

        status = await service.get_status(WORKFLOW_ID)
        changes = {change.student_id: change for change in status.changes}
        assert changes["s1"].change_type == ChangeType.ADVANCE_IN_PLACE
        assert (changes["s1"].new_level, changes["s1"].new_class) == (2, "1A")
        assert changes["s2"].change_type == ChangeType.NEEDS_REASSIGNMENT
        assert changes["s2"].new_class is None
        assert changes["s3"].change_type == ChangeType.GRADUATING
        assert [a.student_id for a in status.assignments] == ["s2"]
        assert status.assignments[0].assigned is False
        assert status.workflow.status == WorkflowStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_list_changes_ordered_by_student(self, service) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)

        changes = await service.list_changes(WORKFLOW_ID)

        assert [change.student_id for change in changes] == ["s1", "s2", "s3"]
        assert all(change.processed is False for change in changes)

    @pytest.mark.asyncio
    async def test_second_start_conflicts(self, service) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)

        with pytest.raises(WorkflowConflictError):
            await service.start_workflow(YEAR, started_by=OPERATOR)


class TestStagingOperations:
    """Tests for assignments and departure overrides."""

    @pytest.mark.asyncio
    async def test_assign_updates_change(self, service) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)

        assignment = await service.assign_class(WORKFLOW_ID, "s2", " 3B ", assigned_by=OPERATOR)
        change = await service.get_change(WORKFLOW_ID, "s2")

        assert assignment.assigned is True
        assert assignment.assigned_class == "3B"
        assert assignment.assigned_by == OPERATOR
        assert change.new_class == "3B"
        assert change.new_level == 3

    @pytest.mark.asyncio
    async def test_assign_student_without_assignment(self, service) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)

        with pytest.raises(StudentNotFoundError):
            await service.assign_class(WORKFLOW_ID, "s1", "1A", assigned_by=OPERATOR)

    @pytest.mark.asyncio
    async def test_unmark_restores_rule_outcome(self, service) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)
        await service.mark_departing(
            WORKFLOW_ID,
            [DepartingStudentItem(student_id="s1", reason="Moving")],
            marked_by=OPERATOR,
        )
        assert (await service.get_change(WORKFLOW_ID, "s1")).change_type == ChangeType.DEPARTING

        restored = await service.unmark_departing(WORKFLOW_ID, "s1")

        assert restored.change_type == ChangeType.ADVANCE_IN_PLACE
        assert (restored.new_level, restored.new_class) == (2, "1A")
        assert (await service.get_status(WORKFLOW_ID)).departing == []

    @pytest.mark.asyncio
    async def test_unmark_keeps_assigned_class_instead_of_none(self, service) -> None:
        """An assigned class survives unmarking; the rule alone would give None."""
        await service.start_workflow(YEAR, started_by=OPERATOR)
        await service.assign_class(WORKFLOW_ID, "s2", "3B", assigned_by=OPERATOR)
        await service.mark_departing(
            WORKFLOW_ID,
            [DepartingStudentItem(student_id="s2", reason="")],
            marked_by=OPERATOR,
        )

        restored = await service.unmark_departing(WORKFLOW_ID, "s2")

        assert restored.change_type == ChangeType.NEEDS_REASSIGNMENT
        assert restored.new_class == "3B"

    @pytest.mark.asyncio
    async def test_mark_unknown_student_writes_nothing(self, service) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)

        with pytest.raises(StudentNotFoundError):
            await service.mark_departing(
                WORKFLOW_ID,
                [
                    DepartingStudentItem(student_id="s1", reason="Moving"),
                    DepartingStudentItem(student_id="ghost", reason=""),
                ],
                marked_by=OPERATOR,
            )

        status = await service.get_status(WORKFLOW_ID)
        assert status.departing == []
        assert {c.student_id: c.change_type for c in status.changes}["s1"] == ChangeType.ADVANCE_IN_PLACE

    @pytest.mark.asyncio
    async def test_status_is_stable(self, service) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)

        assert await service.get_status(WORKFLOW_ID) == await service.get_status(WORKFLOW_ID)


class TestApplyWorkflow:
    """Tests for applying a workflow."""

    @pytest.mark.asyncio
    async def test_full_year_transition(self, service, session_factory) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)
        await service.assign_class(WORKFLOW_ID, "s2", "3B", assigned_by=OPERATOR)

        result = await service.apply_workflow(WORKFLOW_ID)

        assert result.dry_run is False
        assert result.stats.progressed == 2
        assert result.stats.graduated == 1
        assert result.stats.parents_removed == 1
        assert result.stats.skipped_unassigned == 0

        students = await _students(session_factory)
        assert set(students) == {"s1", "s2"}
        assert (students["s1"].level, students["s1"].class_name) == (2, "1A")
        assert (students["s2"].level, students["s2"].class_name) == (3, "3B")
        assert await _parent_ids(session_factory) == {"g1"}
        assert await _links(session_factory) == {("g1", "s1"), ("g1", "s2")}

        audit = await _audit_types(session_factory)
        assert sorted(entry_type for entry_type, _ in audit) == [
            "graduated",
            "guardian_removed",
            "progressed",
            "progressed",
        ]
        assert (
            "graduated",
            f"{WORKFLOW_ID}:graduated:s3",
        ) in audit

        assert await _workflow_status(session_factory) == WorkflowStatus.COMPLETED.value
        async with session_factory() as session:
            backups = (await session.execute(select(StudentBackup))).scalars().all()
        assert len(backups) == 1
        assert backups[0].student_count == 3
        assert backups[0].data["s3"]["parent_ids"] == ["g2"]

    @pytest.mark.asyncio
    async def test_unassigned_student_is_left_unchanged(self, service, session_factory) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)

        result = await service.apply_workflow(WORKFLOW_ID)

        assert result.stats.progressed == 1
        assert result.stats.graduated == 1
        assert result.stats.skipped_unassigned == 1
        students = await _students(session_factory)
        assert (students["s2"].level, students["s2"].class_name) == (2, "2A")
        assert ("g1", "s2") in await _links(session_factory)

    @pytest.mark.asyncio
    async def test_departing_student_is_removed_with_reason(
        self, service, session_factory
    ) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)
        await service.assign_class(WORKFLOW_ID, "s2", "3B", assigned_by=OPERATOR)
        await service.mark_departing(
            WORKFLOW_ID,
            [DepartingStudentItem(student_id="s1", reason="")],
            marked_by=OPERATOR,
        )

        result = await service.apply_workflow(WORKFLOW_ID)

        assert result.stats.departed == 1
        assert result.stats.progressed == 1
        assert "s1" not in await _students(session_factory)
        # g1 still has s2
        assert "g1" in await _parent_ids(session_factory)
        async with session_factory() as session:
            entry = await session.get(ProgressionAuditEntry, f"{WORKFLOW_ID}:departed:s1")
        assert entry.details["departure_reason"] == "Not specified"

    @pytest.mark.asyncio
    async def test_parent_of_departing_students_is_removed(
        self, service, session_factory
    ) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)
        await service.mark_departing(
            WORKFLOW_ID,
            [
                DepartingStudentItem(student_id="s1", reason="Moving"),
                DepartingStudentItem(student_id="s2", reason="Moving"),
            ],
            marked_by=OPERATOR,
        )

        result = await service.apply_workflow(WORKFLOW_ID)

        assert result.stats.departed == 2
        assert result.stats.graduated == 1
        assert result.stats.parents_removed == 2
        assert await _students(session_factory) == {}
        assert await _parent_ids(session_factory) == set()
        assert await _links(session_factory) == set()
        async with session_factory() as session:
            entry = await session.get(ProgressionAuditEntry, f"{WORKFLOW_ID}:guardian_removed:g1")
        assert entry.parent_id == "g1"
        assert entry.details["parent_email"] == "g1@example.com"

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, service, session_factory) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)
        await service.assign_class(WORKFLOW_ID, "s2", "3B", assigned_by=OPERATOR)

        result = await service.apply_workflow(WORKFLOW_ID, dry_run=True)

        assert result.dry_run is True
        assert result.stats.progressed == 2
        assert result.operation_count == 11
        assert set(await _students(session_factory)) == {"s1", "s2", "s3"}
        assert await _audit_types(session_factory) == []
        assert await _workflow_status(session_factory) == WorkflowStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_completed_workflow_rejects_changes(self, service, session_factory) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)
        await service.apply_workflow(WORKFLOW_ID)
        audit_before = await _audit_types(session_factory)

        with pytest.raises(WorkflowConflictError):
            await service.apply_workflow(WORKFLOW_ID)
        with pytest.raises(WorkflowConflictError):
            await service.mark_departing(
                WORKFLOW_ID,
                [DepartingStudentItem(student_id="s1", reason="")],
                marked_by=OPERATOR,
            )

        assert await _audit_types(session_factory) == audit_before
        status_first = await service.get_status(WORKFLOW_ID)
        assert status_first == await service.get_status(WORKFLOW_ID)
        assert status_first.workflow.status == WorkflowStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_concurrent_apply_conflicts(self, seeded_session, progression_settings) -> None:
        locks = ApplyLockRegistry()
        service = SchoolProgressionService(seeded_session, settings=progression_settings, locks=locks)
        await service.start_workflow(YEAR, started_by=OPERATOR)
        locks.try_acquire(WORKFLOW_ID)

        with pytest.raises(WorkflowConflictError):
            await service.apply_workflow(WORKFLOW_ID)

        locks.release(WORKFLOW_ID)
        result = await service.apply_workflow(WORKFLOW_ID)
        assert result.stats.graduated == 1


class TestNewStudents:
    """Tests for staging and applying new students."""

    @pytest.mark.asyncio
    async def test_new_student_with_existing_and_new_parent(
        self, service, session_factory
    ) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)
        entry = await service.add_new_student(
            WORKFLOW_ID,
            NewStudentRequest(
                student=NewStudentInfo(first_name="Nia", last_name="New", class_name="1B"),
                parent1=ParentInfo(is_existing=True, email="G1@Example.com"),
                parent2=ParentInfo(
                    email="nora@example.com", first_name="Nora", last_name="New"
                ),
            ),
            added_by=OPERATOR,
        )
        assert entry.student["level"] == 1

        result = await service.apply_workflow(WORKFLOW_ID)

        assert result.stats.students_added == 1
        assert result.stats.parents_added == 1
        students = await _students(session_factory)
        assert (students[entry.id].level, students[entry.id].class_name) == (1, "1B")
        created_parent = new_parent_id(entry.id, "parent2")
        assert created_parent in await _parent_ids(session_factory)
        links = await _links(session_factory)
        assert ("g1", entry.id) in links
        assert (created_parent, entry.id) in links

    @pytest.mark.asyncio
    async def test_existing_parent_of_graduate_is_kept(self, service, session_factory) -> None:
        await service.start_workflow(YEAR, started_by=OPERATOR)
        entry = await service.add_new_student(
            WORKFLOW_ID,
            NewStudentRequest(
                student=NewStudentInfo(first_name="Tom", last_name="Two", class_name="1A"),
                parent1=ParentInfo(is_existing=True, email="g2@example.com"),
            ),
            added_by=OPERATOR,
        )

        result = await service.apply_workflow(WORKFLOW_ID)

        assert result.stats.graduated == 1
        assert result.stats.parents_removed == 0
        assert "g2" in await _parent_ids(session_factory)
        assert await _links(session_factory) >= {("g2", entry.id)}


class TestCommitFailure:
    """Tests for failures while committing."""

    @pytest.mark.asyncio
    async def test_failed_chunk_reports_progress(self, db_session) -> None:
        ops = [
            WriteOperation.set(Parent, id="p1", email="a@example.com"),
            WriteOperation.set(Parent, id="p2", email="b@example.com"),
            WriteOperation.set(Parent, id="p3", email="a@example.com"),
        ]

        with pytest.raises(ChunkCommitError) as exc_info:
            await commit_in_chunks(db_session, ops, batch_size=2)

        assert exc_info.value.chunk_index == 1
        assert exc_info.value.committed_chunks == 1
        count = await db_session.scalar(select(func.count()).select_from(Parent))
        assert count == 2

    @pytest.mark.asyncio
    async def test_failed_apply_keeps_workflow_active_and_can_rerun(
        self, seeded_session, session_factory
    ) -> None:
        settings = ProgressionSettings(commit_batch_size=3, backup_before_apply=False)
        service = SchoolProgressionService(seeded_session, settings=settings)
        await service.start_workflow(YEAR, started_by=OPERATOR)
        await service.assign_class(WORKFLOW_ID, "s2", "3B", assigned_by=OPERATOR)

        # Completion clashes with g1's unique email, failing the last chunk.
        failing_completion = WriteOperation.set(Parent, id="dup", email="g1@example.com")
        with patch.object(
            ProgressionApplier,
            "_completion_operation",
            return_value=failing_completion,
        ):
            with pytest.raises(ApplyCommitError) as exc_info:
                await service.apply_workflow(WORKFLOW_ID)

        assert exc_info.value.chunk_index == 3
        assert exc_info.value.committed_chunks == 3
        assert await _workflow_status(session_factory) == WorkflowStatus.ACTIVE.value
        assert "s3" not in await _students(session_factory)

        await service.apply_workflow(WORKFLOW_ID)

        students = await _students(session_factory)
        assert (students["s1"].level, students["s1"].class_name) == (2, "1A")
        assert (students["s2"].level, students["s2"].class_name) == (3, "3B")
        assert await _parent_ids(session_factory) == {"g1"}
        assert len(await _audit_types(session_factory)) == 4
        assert await _workflow_status(session_factory) == WorkflowStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_parent_removal_and_audit_commit_together(
        self, seeded_session, session_factory
    ) -> None:
        settings = ProgressionSettings(commit_batch_size=2, backup_before_apply=False)
        service = SchoolProgressionService(seeded_session, settings=settings)
        await service.start_workflow(YEAR, started_by=OPERATOR)
        await service.assign_class(WORKFLOW_ID, "s2", "3B", assigned_by=OPERATOR)

        execute = WriteOperation.execute

        async def failing_parent_unlink(operation, session):
            if str(operation) == "unlink parent g2":
                raise OperationalError("DELETE", {}, Exception("disk I/O error"))
            await execute(operation, session)

        with patch.object(WriteOperation, "execute", failing_parent_unlink):
            with pytest.raises(ApplyCommitError) as exc_info:
                await service.apply_workflow(WORKFLOW_ID)

        assert exc_info.value.committed_chunks == 0
        assert await _parent_ids(session_factory) == {"g1", "g2"}
        assert ("g2", "s3") in await _links(session_factory)
        assert await _audit_types(session_factory) == []

        await service.apply_workflow(WORKFLOW_ID)

        assert await _parent_ids(session_factory) == {"g1"}
        assert sorted(entry_type for entry_type, _ in await _audit_types(session_factory)) == [
            "graduated",
            "guardian_removed",
            "progressed",
            "progressed",
        ]
        assert await _workflow_status(session_factory) == WorkflowStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_failure_after_committed_groups_reruns_cleanly(
        self, seeded_session, session_factory
    ) -> None:
        settings = ProgressionSettings(commit_batch_size=2, backup_before_apply=False)
        service = SchoolProgressionService(seeded_session, settings=settings)
        await service.start_workflow(YEAR, started_by=OPERATOR)
        await service.assign_class(WORKFLOW_ID, "s2", "3B", assigned_by=OPERATOR)

        execute = WriteOperation.execute

        async def failing_student_unlink(operation, session):
            if str(operation) == "unlink student s3":
                raise OperationalError("DELETE", {}, Exception("disk I/O error"))
            await execute(operation, session)

        with patch.object(WriteOperation, "execute", failing_student_unlink):
            with pytest.raises(ApplyCommitError) as exc_info:
                await service.apply_workflow(WORKFLOW_ID)

        # The g2 group committed in full before the s3 group failed.
        assert exc_info.value.chunk_index == 1
        assert exc_info.value.committed_chunks == 1
        assert await _parent_ids(session_factory) == {"g1"}
        assert [entry_type for entry_type, _ in await _audit_types(session_factory)] == [
            "guardian_removed"
        ]

        await service.apply_workflow(WORKFLOW_ID)

        assert set(await _students(session_factory)) == {"s1", "s2"}
        assert sorted(entry_type for entry_type, _ in await _audit_types(session_factory)) == [
            "graduated",
            "guardian_removed",
            "progressed",
            "progressed",
        ]
