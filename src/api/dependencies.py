# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI dependency injection definitions.

This module provides dependency functions for FastAPI endpoints.
Dependencies are used to:
- Get database sessions
- Get the authenticated operator
- Get the process-wide apply lock registry

Example:
    @router.get("/{workflow_id}")
    async def get_status(
        db: AsyncSession = Depends(get_db),
        operator: CurrentOperator = Depends(require_admin),
    ):
        ...
"""

import logging
from typing import AsyncGenerator

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.middleware.auth import CurrentOperator, get_current_operator
from src.core.config import get_settings
from src.domains.progression.locks import ApplyLockRegistry
from src.infrastructure.database.connection import close_database, get_session, init_database

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """Initialize the directory database connection."""
    await init_database(get_settings())


async def close_db() -> None:
    """Close the directory database connection."""
    await close_database()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a directory database session.

    Yields:
        AsyncSession for the directory database.
    """
    async with get_session() as session:
        yield session


def get_apply_locks(request: Request) -> ApplyLockRegistry:
    """Get the apply lock registry shared by every request of the app."""
    return request.app.state.apply_locks


# =========================================================================
# Authentication Dependencies
# =========================================================================


def require_auth(request: Request) -> CurrentOperator:
    """Require an authenticated operator.

    Raises:
        HTTPException: If not authenticated.
    """
    operator = get_current_operator(request)
    if not operator:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return operator


def require_admin(request: Request) -> CurrentOperator:
    """Require an operator with the admin claim.

    Raises:
        HTTPException: If not authenticated or not admin.
    """
    operator = require_auth(request)
    if not operator.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return operator
