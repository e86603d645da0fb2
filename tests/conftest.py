# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and fixtures for school directory tests."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.core.config.settings import ProgressionSettings
from src.infrastructure.database.connection import (
    create_engine_for_url,
    create_schema,
    create_sessionmaker,
)
from src.infrastructure.database.models import Parent, ParentStudentRelation, Student

MEMORY_DB_URL = "sqlite+aiosqlite:///:memory:"


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory SQLite)")
    config.addinivalue_line("markers", "slow: Slow running tests")


@pytest.fixture
def progression_settings() -> ProgressionSettings:
    """Progression settings with the default batch sizes."""
    return ProgressionSettings(
        query_batch_size=10,
        commit_batch_size=500,
        history_limit=10,
        backup_before_apply=True,
    )


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory directory database with every table."""
    engine = create_engine_for_url(MEMORY_DB_URL)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessionmaker bound to the in-memory database."""
    return create_sessionmaker(engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session used by the code under test."""
    async with session_factory() as session:
        yield session


async def seed_roster(session: AsyncSession) -> None:
    """Seed a small roster.

    s1 level 1 in 1A and s2 level 2 in 2A share parent g1; s3 level 6 in
    6A is the only child of g2.
    """
    session.add_all(
        [
            Parent(id="g1", email="g1@example.com", first_name="Grace", last_name="One"),
            Parent(id="g2", email="g2@example.com", first_name="Gus", last_name="Two"),
            Student(id="s1", first_name="Sam", last_name="One", level=1, class_name="1A"),
            Student(id="s2", first_name="Sue", last_name="One", level=2, class_name="2A"),
            Student(id="s3", first_name="Sid", last_name="Two", level=6, class_name="6A"),
        ]
    )
    await session.flush()
    session.add_all(
        [
            ParentStudentRelation(parent_id="g1", student_id="s1"),
            ParentStudentRelation(parent_id="g1", student_id="s2"),
            ParentStudentRelation(parent_id="g2", student_id="s3"),
        ]
    )
    await session.commit()


@pytest_asyncio.fixture
async def seeded_session(db_session: AsyncSession) -> AsyncSession:
    """Session over a database holding the small roster."""
    await seed_roster(db_session)
    return db_session


@pytest.fixture
def roster_seeder():
    """seed_roster for tests that manage their own engine."""
    return seed_roster
