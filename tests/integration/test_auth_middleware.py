# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for operator authentication middleware.

Tests the middleware in isolation from the database.
"""

from unittest.mock import MagicMock

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient
from pydantic import SecretStr

from src.api.dependencies import require_admin
from src.api.middleware.auth import AuthMiddleware, CurrentOperator, get_current_operator
from src.domains.auth.jwt import OperatorTokenManager


@pytest.fixture
def jwt_settings() -> MagicMock:
    """Create mock JWT settings."""
    settings = MagicMock()
    settings.secret_key = SecretStr("test-secret-key-for-jwt-testing")
    settings.algorithm = "HS256"
    settings.access_token_expire_minutes = 30
    return settings


@pytest.fixture
def token_manager(jwt_settings: MagicMock) -> OperatorTokenManager:
    """Create token manager with test settings."""
    return OperatorTokenManager(jwt_settings)


@pytest.fixture
def client(jwt_settings: MagicMock) -> TestClient:
    """App echoing the authenticated operator."""
    app = FastAPI()
    app.add_middleware(AuthMiddleware, settings=jwt_settings)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/whoami")
    async def whoami(request: Request) -> dict:
        operator = get_current_operator(request)
        if operator is None:
            return {"operator": None}
        return {"operator": operator.actor, "admin": operator.is_admin}

    @app.get("/admin")
    async def admin(operator: CurrentOperator = Depends(require_admin)) -> dict:
        return {"operator": operator.actor}

    return TestClient(app)


class TestAuthMiddleware:
    """Tests for AuthMiddleware."""

    def test_public_path_bypasses_auth(self, client: TestClient) -> None:
        """Test that public paths don't require authentication."""
        response = client.get("/health")

        assert response.status_code == 200

    def test_valid_token_sets_operator(
        self,
        client: TestClient,
        token_manager: OperatorTokenManager,
    ) -> None:
        """Test that a valid token sets request.state.operator."""
        token = token_manager.create_access_token("op-1", email="ops@example.com", admin=True)

        response = client.get("/whoami", headers={"Authorization": f"Bearer {token}"})

        assert response.json() == {"operator": "ops@example.com", "admin": True}

    def test_missing_token_leaves_operator_empty(self, client: TestClient) -> None:
        response = client.get("/whoami")

        assert response.json() == {"operator": None}

    @pytest.mark.parametrize("header", ["Bearer garbage", "Token abc", "Bearer"])
    def test_bad_header_leaves_operator_empty(self, client: TestClient, header: str) -> None:
        response = client.get("/whoami", headers={"Authorization": header})

        assert response.json() == {"operator": None}

    def test_expired_token_is_ignored(
        self,
        client: TestClient,
        token_manager: OperatorTokenManager,
    ) -> None:
        token = token_manager.create_access_token("op-1", admin=True, expires_minutes=-1)

        response = client.get("/admin", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401


class TestRequireAdmin:
    """Tests for the admin dependency."""

    def test_requires_token(self, client: TestClient) -> None:
        response = client.get("/admin")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_requires_admin_claim(
        self,
        client: TestClient,
        token_manager: OperatorTokenManager,
    ) -> None:
        token = token_manager.create_access_token("op-1", email="viewer@example.com")

        response = client.get("/admin", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403

    def test_admin_allowed(
        self,
        client: TestClient,
        token_manager: OperatorTokenManager,
    ) -> None:
        token = token_manager.create_access_token("op-1", email="ops@example.com", admin=True)

        response = client.get("/admin", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json() == {"operator": "ops@example.com"}
