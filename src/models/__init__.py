# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API request and response models."""

from src.models.progression import (
    ApplyResultResponse,
    ApplyStats,
    AssignClassRequest,
    AssignmentResponse,
    AuditEntryType,
    ChangeResponse,
    ChangeType,
    DepartingResponse,
    DepartingStudentItem,
    MarkDepartingRequest,
    NewStudentInfo,
    NewStudentRequest,
    NewStudentResponse,
    ParentInfo,
    ProgressionStatusResponse,
    StartWorkflowRequest,
    StartWorkflowResponse,
    WorkflowResponse,
    WorkflowStatus,
)

__all__ = [
    "ApplyResultResponse",
    "ApplyStats",
    "AssignClassRequest",
    "AssignmentResponse",
    "AuditEntryType",
    "ChangeResponse",
    "ChangeType",
    "DepartingResponse",
    "DepartingStudentItem",
    "MarkDepartingRequest",
    "NewStudentInfo",
    "NewStudentRequest",
    "NewStudentResponse",
    "ParentInfo",
    "ProgressionStatusResponse",
    "StartWorkflowRequest",
    "StartWorkflowResponse",
    "WorkflowResponse",
    "WorkflowStatus",
]
