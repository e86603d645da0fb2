# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""School progression domain package.

This package provides the school-year progression workflow including:
- The progression rule shared by staging and departure reversal
- Staged changes, class assignments, departures and new students
- Orphaned parent cleanup and chunked apply with an audit trail
"""

from src.domains.progression.locks import ApplyLockRegistry
from src.domains.progression.rules import (
    ProgressionOutcome,
    class_level_warnings,
    determine_progression,
    parse_level,
)
from src.domains.progression.service import (
    ApplyCommitError,
    ProgressionServiceError,
    ProgressionValidationError,
    SchoolProgressionService,
    StudentNotFoundError,
    WorkflowConflictError,
    WorkflowNotFoundError,
)

__all__ = [
    "ApplyCommitError",
    "ApplyLockRegistry",
    "ProgressionOutcome",
    "ProgressionServiceError",
    "ProgressionValidationError",
    "SchoolProgressionService",
    "StudentNotFoundError",
    "WorkflowConflictError",
    "WorkflowNotFoundError",
    "class_level_warnings",
    "determine_progression",
    "parse_level",
]
