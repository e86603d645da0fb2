# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Authentication domain services.

Operators sign in through the external identity provider. This package
only verifies the signed bearer tokens it issues.

Exports:
    OperatorTokenManager: Operator token creation and validation.
"""

from src.domains.auth.jwt import (
    InvalidTokenError,
    JWTError,
    OperatorTokenManager,
    TokenExpiredError,
    TokenPayload,
)

__all__ = [
    "InvalidTokenError",
    "JWTError",
    "OperatorTokenManager",
    "TokenExpiredError",
    "TokenPayload",
]
