# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Health check endpoint."""

import logging
import time
from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel, Field

from src.core.config import get_settings
from src.infrastructure.database.connection import check_database_connection
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()

# Track server start time for uptime calculation
_server_start_time = time.time()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(description="Overall health status")
    database: str = Field(description="Directory database status")
    environment: str = Field(description="Deployment environment")
    uptime_seconds: int = Field(description="Server uptime in seconds")
    checked_at: datetime = Field(description="When health was checked")


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health() -> HealthResponse:
    """Report whether the API and its database are reachable."""
    database_ok = await check_database_connection()
    if not database_ok:
        logger.warning("Health check: directory database unreachable")

    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        database="healthy" if database_ok else "unhealthy",
        environment=get_settings().environment,
        uptime_seconds=int(time.time() - _server_start_time),
        checked_at=utc_now(),
    )
