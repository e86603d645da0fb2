# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""School progression API endpoints.

This module provides endpoints for the school-year progression workflow:
- POST /start - Start the workflow for a school year
- GET /{workflow_id} - Get the staged state of a workflow
- POST /{workflow_id}/assignments - Assign a student's new class
- POST /{workflow_id}/departing - Mark students as departing
- DELETE /{workflow_id}/departing/{student_id} - Unmark a departing student
- POST /{workflow_id}/new-students - Stage a new student
- POST /{workflow_id}/apply - Apply (or preview) the staged changes

All endpoints require an operator token with the admin claim.
"""

import logging
from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_apply_locks, get_db, require_admin
from src.api.middleware.auth import CurrentOperator
from src.core.config import get_settings
from src.domains.progression.locks import ApplyLockRegistry
from src.domains.progression.service import (
    ApplyCommitError,
    ProgressionServiceError,
    ProgressionValidationError,
    SchoolProgressionService,
    StudentNotFoundError,
    WorkflowConflictError,
    WorkflowNotFoundError,
)
from src.models.progression import (
    ApplyResultResponse,
    AssignClassRequest,
    AssignmentResponse,
    ChangeResponse,
    DepartingResponse,
    MarkDepartingRequest,
    NewStudentRequest,
    NewStudentResponse,
    ProgressionStatusResponse,
    StartWorkflowRequest,
    StartWorkflowResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_service(db: AsyncSession, locks: ApplyLockRegistry) -> SchoolProgressionService:
    """Get school progression service instance.

    Args:
        db: Directory database session.
        locks: Process-wide apply lock registry.

    Returns:
        Configured SchoolProgressionService instance.
    """
    return SchoolProgressionService(db=db, settings=get_settings().progression, locks=locks)


def _raise_http_error(error: ProgressionServiceError) -> NoReturn:
    """Map a service error to an HTTP error."""
    if isinstance(error, ProgressionValidationError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"field": error.field, "message": str(error)},
        )
    if isinstance(error, (WorkflowNotFoundError, StudentNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, WorkflowConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, ApplyCommitError):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": str(error),
                "chunk_index": error.chunk_index,
                "committed_chunks": error.committed_chunks,
            },
        )
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


@router.post(
    "/start",
    response_model=StartWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start progression workflow",
    description="Stage the progression of every student for a school year.",
)
async def start_workflow(
    data: StartWorkflowRequest,
    operator: CurrentOperator = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    locks: ApplyLockRegistry = Depends(get_apply_locks),
) -> StartWorkflowResponse:
    """Start the progression workflow for a school year."""
    logger.info("Starting progression workflow for %s by %s", data.year, operator.actor)

    service = _get_service(db, locks)
    try:
        return await service.start_workflow(year=data.year, started_by=operator.actor)
    except ProgressionServiceError as e:
        _raise_http_error(e)


@router.get(
    "/{workflow_id}",
    response_model=ProgressionStatusResponse,
    summary="Get workflow status",
)
async def get_status(
    workflow_id: str,
    operator: CurrentOperator = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    locks: ApplyLockRegistry = Depends(get_apply_locks),
) -> ProgressionStatusResponse:
    """Get the workflow with its staged rows and recent history."""
    service = _get_service(db, locks)
    try:
        return await service.get_status(workflow_id)
    except ProgressionServiceError as e:
        _raise_http_error(e)


@router.post(
    "/{workflow_id}/assignments",
    response_model=AssignmentResponse,
    summary="Assign class",
)
async def assign_class(
    workflow_id: str,
    data: AssignClassRequest,
    operator: CurrentOperator = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    locks: ApplyLockRegistry = Depends(get_apply_locks),
) -> AssignmentResponse:
    """Assign the new class of a student moving to another class."""
    service = _get_service(db, locks)
    try:
        return await service.assign_class(
            workflow_id=workflow_id,
            student_id=data.student_id,
            class_name=data.assigned_class,
            assigned_by=operator.actor,
        )
    except ProgressionServiceError as e:
        _raise_http_error(e)


@router.post(
    "/{workflow_id}/departing",
    response_model=list[DepartingResponse],
    summary="Mark departing students",
)
async def mark_departing(
    workflow_id: str,
    data: MarkDepartingRequest,
    operator: CurrentOperator = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    locks: ApplyLockRegistry = Depends(get_apply_locks),
) -> list[DepartingResponse]:
    """Mark students as leaving before their normal outcome."""
    service = _get_service(db, locks)
    try:
        return await service.mark_departing(
            workflow_id=workflow_id,
            students=data.students,
            marked_by=operator.actor,
        )
    except ProgressionServiceError as e:
        _raise_http_error(e)


@router.delete(
    "/{workflow_id}/departing/{student_id}",
    response_model=ChangeResponse,
    summary="Unmark departing student",
)
async def unmark_departing(
    workflow_id: str,
    student_id: str,
    operator: CurrentOperator = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    locks: ApplyLockRegistry = Depends(get_apply_locks),
) -> ChangeResponse:
    """Remove a departure mark and return the restored change."""
    service = _get_service(db, locks)
    try:
        return await service.unmark_departing(workflow_id=workflow_id, student_id=student_id)
    except ProgressionServiceError as e:
        _raise_http_error(e)


@router.post(
    "/{workflow_id}/new-students",
    response_model=NewStudentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add new student",
)
async def add_new_student(
    workflow_id: str,
    data: NewStudentRequest,
    operator: CurrentOperator = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    locks: ApplyLockRegistry = Depends(get_apply_locks),
) -> NewStudentResponse:
    """Stage a new student with one or two parents."""
    service = _get_service(db, locks)
    try:
        return await service.add_new_student(
            workflow_id=workflow_id,
            request=data,
            added_by=operator.actor,
        )
    except ProgressionServiceError as e:
        _raise_http_error(e)


@router.post(
    "/{workflow_id}/apply",
    response_model=ApplyResultResponse,
    summary="Apply staged changes",
    description="Apply every staged change. With dry_run=true only the plan is computed.",
)
async def apply_workflow(
    workflow_id: str,
    dry_run: Annotated[bool, Query(description="Compute the plan without writing")] = False,
    operator: CurrentOperator = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    locks: ApplyLockRegistry = Depends(get_apply_locks),
) -> ApplyResultResponse:
    """Apply the staged changes to the live roster."""
    logger.info("Applying %s (dry_run=%s) by %s", workflow_id, dry_run, operator.actor)

    service = _get_service(db, locks)
    try:
        return await service.apply_workflow(workflow_id=workflow_id, dry_run=dry_run)
    except ProgressionServiceError as e:
        _raise_http_error(e)
