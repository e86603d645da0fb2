# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Utility functions and helpers for the school directory backend.

This package contains cross-cutting utilities:
- logging: Structured logging with structlog
- datetime: Timezone-aware datetime operations
"""

from src.utils.datetime import ensure_utc, epoch_millis, filename_timestamp, utc_now
from src.utils.logging import setup_logging, workflow_log_context

__all__ = [
    # Logging
    "setup_logging",
    "workflow_log_context",
    # Datetime
    "utc_now",
    "ensure_utc",
    "epoch_millis",
    "filename_timestamp",
]
