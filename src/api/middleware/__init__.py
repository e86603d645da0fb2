# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API middleware components.

Exports:
    AuthMiddleware: Operator bearer token authentication middleware.
"""

from src.api.middleware.auth import AuthMiddleware, CurrentOperator

__all__ = [
    "AuthMiddleware",
    "CurrentOperator",
]
