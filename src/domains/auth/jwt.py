# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Operator token management.

Operators are authenticated by the identity provider, which issues HS256
tokens signed with the shared secret. This module decodes those tokens
and exposes the operator identity and its ``admin`` claim. Token creation
is used by the CLI and by tests.

Example:
    >>> from src.core.config import get_settings
    >>> manager = OperatorTokenManager(get_settings().jwt)
    >>> token = manager.create_access_token(operator_id="op-1", email="a@school.org", admin=True)
    >>> claims = manager.decode_token(token)
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, jwt
from pydantic import BaseModel

from src.core.config.settings import JWTSettings

logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    """Operator token claims.

    Attributes:
        sub: Subject (operator ID).
        email: Operator email, used as the actor in workflow records.
        admin: Whether the operator may run administrative workflows.
        exp: Expiration timestamp.
        iat: Issued at timestamp.
        jti: JWT ID for token tracking.
    """

    sub: str
    email: str | None = None
    admin: bool = False
    exp: int
    iat: int
    jti: str

    @property
    def actor(self) -> str:
        return self.email or self.sub


class JWTError(Exception):
    """Base exception for JWT operations."""

    pass


class TokenExpiredError(JWTError):
    """Raised when a token has expired."""

    pass


class InvalidTokenError(JWTError):
    """Raised when a token is invalid."""

    pass


class OperatorTokenManager:
    """Operator token creation and validation.

    Attributes:
        _settings: JWT configuration settings.
    """

    def __init__(self, settings: JWTSettings) -> None:
        """Initialize the token manager.

        Args:
            settings: JWT configuration settings.
        """
        self._settings = settings

    def create_access_token(
        self,
        operator_id: str,
        email: str | None = None,
        admin: bool = False,
        expires_minutes: int | None = None,
    ) -> str:
        """Create a signed operator token.

        Args:
            operator_id: Operator identifier.
            email: Operator email.
            admin: Grant the admin claim.
            expires_minutes: Lifetime, defaults to the configured value.

        Returns:
            JWT string.
        """
        now = datetime.now(timezone.utc)
        minutes = (
            self._settings.access_token_expire_minutes if expires_minutes is None else expires_minutes
        )
        payload = {
            "sub": operator_id,
            "email": email,
            "admin": admin,
            "exp": int((now + timedelta(minutes=minutes)).timestamp()),
            "iat": int(now.timestamp()),
            "jti": secrets.token_urlsafe(16),
        }

        return jwt.encode(
            payload,
            self._settings.secret_key.get_secret_value(),
            algorithm=self._settings.algorithm,
        )

    def decode_token(self, token: str) -> TokenPayload:
        """Decode and validate an operator token.

        Args:
            token: JWT string.

        Returns:
            TokenPayload with decoded claims.

        Raises:
            TokenExpiredError: If the token has expired.
            InvalidTokenError: If the token is invalid.
        """
        try:
            payload = jwt.decode(
                token,
                self._settings.secret_key.get_secret_value(),
                algorithms=[self._settings.algorithm],
            )
            return TokenPayload(
                sub=payload["sub"],
                email=payload.get("email"),
                admin=payload.get("admin") is True,
                exp=payload["exp"],
                iat=payload["iat"],
                jti=payload["jti"],
            )

        except ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except Exception as e:
            logger.warning("Token decode failed: %s", str(e))
            raise InvalidTokenError(f"Invalid token: {str(e)}")

    def verify_token(self, token: str) -> bool:
        """Check whether a token is valid."""
        try:
            self.decode_token(token)
            return True
        except (TokenExpiredError, InvalidTokenError):
            return False
