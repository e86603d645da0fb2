# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI Application Factory.

This module provides the main application factory for the school
directory administration API.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.dependencies import close_db, init_db
from src.api.middleware.auth import AuthMiddleware
from src.api.routes import health
from src.api.v1 import router as v1_router
from src.core.config import Settings, get_settings
from src.domains.progression.locks import ApplyLockRegistry
from src.infrastructure.database.connection import create_schema
from src.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Initializes the directory database on startup (creating the schema
    in development) and closes it on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    settings = get_settings()
    logger.info(
        "Starting school directory API (environment=%s, debug=%s)",
        settings.environment,
        settings.debug,
    )

    # =========================================================================
    # Startup
    # =========================================================================

    try:
        await init_db()
        if settings.is_development:
            await create_schema()
        logger.info("Database connection initialized")
    except Exception as e:
        logger.warning("Failed to initialize database connection: %s", str(e))

    yield

    # =========================================================================
    # Shutdown
    # =========================================================================

    try:
        await close_db()
        logger.info("Database connection closed")
    except Exception as e:
        logger.warning("Error closing database connection: %s", str(e))

    logger.info("Shutting down school directory API")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use, defaults to get_settings().

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="School Directory API",
        description="School directory administration backend",
        version="1.0.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        # Redirects from /path to /path/ drop the Authorization header
        redirect_slashes=False,
    )

    # =========================================================================
    # State
    # =========================================================================
    app.state.apply_locks = ApplyLockRegistry()

    # =========================================================================
    # Middleware (order matters - last added is first executed)
    # =========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.origins_list,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=settings.cors.allow_methods,
        allow_headers=settings.cors.allow_headers,
    )

    app.add_middleware(AuthMiddleware, settings=settings.jwt)

    # =========================================================================
    # Routes
    # =========================================================================
    app.include_router(health.router, tags=["Health"])
    app.include_router(v1_router)

    return app
