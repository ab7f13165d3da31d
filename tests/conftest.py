"""
Shared test fixtures.

Provides: in-memory async database, embedding cache store, scripted tool
runner.
"""

import pytest
from sqlalchemy.pool import StaticPool

from docrag.db import Database, EmbeddingCacheStore

from helpers import FakeRunner


@pytest.fixture
async def database():
    """In-memory SQLite database with the schema created."""
    db = Database(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await db.create_schema()
    yield db
    await db.dispose()


@pytest.fixture
def store(database):
    return EmbeddingCacheStore(database)


@pytest.fixture
def runner():
    return FakeRunner()
