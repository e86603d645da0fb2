# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for the school
directory backend. Settings are loaded from environment variables with
sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from src.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.progression.commit_batch_size)
    500
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Directory database configuration.

    The directory database stores the live roster (students, parents and
    their relations) alongside the progression workflows and their audit
    trail.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        url_override: Full connection URL, takes precedence over components.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        extra="ignore",
        populate_by_name=True,
    )

    user: str = "directory"
    password: SecretStr = SecretStr("directory_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "school_directory"
    url_override: str | None = Field(default=None, validation_alias="DB_URL")
    pool_size: int = 10
    max_overflow: int = 20

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        if self.url_override:
            return self.url_override
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"

    @property
    def is_sqlite(self) -> bool:
        """Whether the configured URL targets SQLite."""
        return self.url.startswith("sqlite")


class JWTSettings(BaseSettings):
    """Operator token configuration.

    Attributes:
        secret_key: Secret key for signing tokens.
        algorithm: JWT signing algorithm.
        access_token_expire_minutes: Access token expiration time.
    """

    model_config = SettingsConfigDict(
        env_prefix="JWT_",
        extra="ignore",
        populate_by_name=True,
    )

    secret_key: SecretStr = SecretStr("change-this-in-production")
    algorithm: str = "HS256"
    access_token_expire_minutes: int = Field(
        default=60,
        validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )


class CORSSettings(BaseSettings):
    """CORS configuration for API.

    Attributes:
        origins: Comma-separated list of allowed origins.
        allow_credentials: Whether to allow credentials.
        allow_methods: Allowed HTTP methods.
        allow_headers: Allowed HTTP headers.
    """

    model_config = SettingsConfigDict(
        env_prefix="CORS_",
        extra="ignore",
    )

    origins: str = "http://localhost:3000,http://localhost:5173"
    allow_credentials: bool = True
    allow_methods: list[str] = ["GET", "POST", "DELETE", "OPTIONS"]
    allow_headers: list[str] = ["Content-Type", "Authorization"]

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into a list."""
        return [origin.strip() for origin in self.origins.split(",") if origin.strip()]


class ProgressionSettings(BaseSettings):
    """School-year progression workflow configuration.

    Attributes:
        query_batch_size: Maximum ids per "fetch by id list" query.
        commit_batch_size: Maximum write operations per commit.
        history_limit: Number of past workflows returned with a status.
        backup_before_apply: Snapshot the roster before applying changes.
        workflow_id_prefix: Prefix of year-keyed workflow ids.
    """

    model_config = SettingsConfigDict(
        env_prefix="PROGRESSION_",
        extra="ignore",
    )

    query_batch_size: int = Field(default=10, ge=1, le=10)
    commit_batch_size: int = Field(default=500, ge=1, le=500)
    history_limit: int = 10
    backup_before_apply: bool = True
    workflow_id_prefix: str = "school_progression"


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        database: Directory database settings.
        jwt: Operator token settings.
        cors: CORS settings.
        progression: Progression workflow settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    # Subsettings - loaded with their own env prefixes
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    jwt: JWTSettings = Field(default_factory=JWTSettings)
    cors: CORSSettings = Field(default_factory=CORSSettings)
    progression: ProgressionSettings = Field(default_factory=ProgressionSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with insecure defaults.
        """
        if self.environment == "production":
            default_jwt_secret = "change-this-in-production"
            if self.jwt.secret_key.get_secret_value() == default_jwt_secret:
                raise ValueError(
                    "JWT secret key must be changed from default in production. "
                    "Set JWT_SECRET_KEY environment variable."
                )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
