# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API v1 routes package.

Modules:
    school_progression: School-year progression workflow endpoints.
"""

from fastapi import APIRouter

from src.api.v1 import school_progression

# Create the main v1 router
router = APIRouter(prefix="/api/v1")

router.include_router(
    school_progression.router,
    prefix="/school-progression",
    tags=["School Progression"],
)
