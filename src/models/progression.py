# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""School progression API models.

This module defines request/response schemas for the school-year
progression workflow: starting a workflow, class assignment, departure
overrides, new-student intake and applying the staged changes.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ChangeType(str, Enum):
    """Outcome staged for a student."""

    ADVANCE_IN_PLACE = "advance_in_place"
    NEEDS_REASSIGNMENT = "needs_reassignment"
    GRADUATING = "graduating"
    DEPARTING = "departing"
    INVALID = "invalid"


class WorkflowStatus(str, Enum):
    """Workflow lifecycle status."""

    ACTIVE = "active"
    COMPLETED = "completed"


class AuditEntryType(str, Enum):
    """Kinds of mutation recorded while applying a workflow."""

    PROGRESSED = "progressed"
    GRADUATED = "graduated"
    DEPARTED = "departed"
    DEPENDENT_ADDED = "dependent_added"
    GUARDIAN_REMOVED = "guardian_removed"


def _strip_required(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


# ============================================================================
# Requests
# ============================================================================


class StartWorkflowRequest(BaseModel):
    """Request to start the progression workflow for a school year."""

    year: str = Field(
        min_length=1,
        max_length=20,
        description="School year key, e.g. '2025-2026'.",
    )

    @field_validator("year")
    @classmethod
    def strip_year(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("year must not be blank")
        return v


class AssignClassRequest(BaseModel):
    """Assign the destination class of a student needing reassignment.

    Blank class names are rejected by the service with a field-level
    validation error, so this model accepts any string.
    """

    student_id: str = Field(min_length=1, description="Student ID.")
    assigned_class: str = Field(description="Destination class name, e.g. '3B'.")


class DepartingStudentItem(BaseModel):
    """One student to mark as departing."""

    student_id: str = Field(min_length=1, description="Student ID.")
    reason: str = Field(default="", max_length=500, description="Departure reason.")


class MarkDepartingRequest(BaseModel):
    """Mark students as leaving before their normal outcome."""

    students: list[DepartingStudentItem] = Field(
        default_factory=list,
        description="Students to mark as departing.",
    )


class ParentInfo(BaseModel):
    """Parent details attached to a new student.

    An existing parent is identified by email alone. A new parent needs
    an email plus first and last name.
    """

    is_existing: bool = Field(default=False, description="Parent already in the directory.")
    email: str | None = Field(default=None, description="Parent email address.")
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=30)
    address: str | None = Field(default=None)

    @model_validator(mode="after")
    def check_required_fields(self) -> "ParentInfo":
        self.email = _strip_required(self.email)
        if self.email is None:
            raise ValueError("email is required")
        self.email = self.email.lower()
        if not self.is_existing:
            self.first_name = _strip_required(self.first_name)
            self.last_name = _strip_required(self.last_name)
            missing = [
                name
                for name, value in (("first_name", self.first_name), ("last_name", self.last_name))
                if value is None
            ]
            if missing:
                raise ValueError(f"new parent requires {', '.join(missing)}")
        return self


class NewStudentInfo(BaseModel):
    """Identity and class of a new student. Level is always set to 1."""

    first_name: str = Field(max_length=100)
    last_name: str = Field(max_length=100)
    class_name: str = Field(max_length=20)

    @field_validator("first_name", "last_name", "class_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class NewStudentRequest(BaseModel):
    """Stage a new student with one or two parents."""

    student: NewStudentInfo
    parent1: ParentInfo
    parent2: ParentInfo | None = None


# ============================================================================
# Responses
# ============================================================================


class WorkflowResponse(BaseModel):
    """Progression workflow summary."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    school_year: str
    status: WorkflowStatus
    phase: str
    stats: dict[str, int] = Field(default_factory=dict)
    started_by: str
    started_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class ChangeResponse(BaseModel):
    """Staged change for one student."""

    model_config = ConfigDict(from_attributes=True)

    student_id: str
    student_name: str
    current_level: int
    current_class: str | None = None
    new_level: int | None = None
    new_class: str | None = None
    change_type: ChangeType
    requires_assignment: bool = False
    processed: bool = False
    warnings: list[str] = Field(default_factory=list)


class AssignmentResponse(BaseModel):
    """Class assignment for a student needing reassignment."""

    model_config = ConfigDict(from_attributes=True)

    student_id: str
    student_name: str
    current_level: int
    current_class: str | None = None
    new_level: int
    assigned_class: str | None = None
    assigned: bool = False
    assigned_by: str | None = None
    assigned_at: datetime | None = None


class DepartingResponse(BaseModel):
    """Student marked as departing."""

    model_config = ConfigDict(from_attributes=True)

    student_id: str
    student_name: str
    current_level: int | None = None
    current_class: str | None = None
    departure_reason: str = ""
    marked_by: str
    marked_at: datetime


class NewStudentResponse(BaseModel):
    """Staged new student."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    student: dict[str, Any]
    parent1: dict[str, Any]
    parent2: dict[str, Any] | None = None
    added_by: str
    added_at: datetime


class ProgressionStatusResponse(BaseModel):
    """Full staged state of a workflow plus recent workflow history."""

    workflow: WorkflowResponse
    changes: list[ChangeResponse] = Field(default_factory=list)
    assignments: list[AssignmentResponse] = Field(default_factory=list)
    new_students: list[NewStudentResponse] = Field(default_factory=list)
    departing: list[DepartingResponse] = Field(default_factory=list)
    history: list[WorkflowResponse] = Field(default_factory=list)


class StartWorkflowResponse(BaseModel):
    """Result of starting a workflow."""

    workflow_id: str
    stats: dict[str, int]


class ApplyStats(BaseModel):
    """Counts produced by applying a workflow."""

    progressed: int = 0
    graduated: int = 0
    departed: int = 0
    students_added: int = 0
    parents_added: int = 0
    parents_removed: int = 0
    skipped_unassigned: int = 0
    orphan_lookup_failures: int = 0


class ApplyResultResponse(BaseModel):
    """Result of applying (or previewing) a workflow."""

    workflow_id: str
    stats: ApplyStats
    dry_run: bool = False
    operation_count: int = 0
