"""
E2E test fixtures for temporal_tables.

These tests require a running PostgreSQL reachable through
TEMPORAL_TABLES_DATABASE_URL. Every test works in a schema of its own,
dropped afterwards.
"""

import os
import uuid
from typing import Generator

import pytest
import sqlalchemy as sa
from sqlalchemy.engine import Engine

from temporal_tables.config import Settings

# Skip E2E tests if not in E2E mode
E2E_ENABLED = os.environ.get("TEMPORAL_TABLES_E2E_TESTS", "0") == "1"

pytestmark = pytest.mark.skipif(
    not E2E_ENABLED,
    reason="E2E tests disabled. Set TEMPORAL_TABLES_E2E_TESTS=1 to enable."
)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    """Engine for the database under test."""
    if not E2E_ENABLED:
        pytest.skip("E2E tests disabled")
    engine = sa.create_engine(Settings().database_url)
    yield engine
    engine.dispose()


@pytest.fixture
def schema(engine: Engine) -> Generator[str, None, None]:
    """Unique schema for test isolation."""
    name = f"tt_e2e_{uuid.uuid4().hex[:8]}"
    with engine.begin() as conn:
        conn.exec_driver_sql(f"CREATE SCHEMA {name}")
    yield name
    with engine.begin() as conn:
        conn.exec_driver_sql(f"DROP SCHEMA {name} CASCADE")


@pytest.fixture
def users(engine: Engine, schema: str) -> str:
    """users(id, name, sys_period) and a LIKE history table in ``schema``."""
    with engine.begin() as conn:
        conn.exec_driver_sql(
            f"CREATE TABLE {schema}.users ("
            "id integer PRIMARY KEY, name text, sys_period tstzrange NOT NULL DEFAULT tstzrange(now(), NULL))"
        )
        conn.exec_driver_sql(f"CREATE TABLE {schema}.users_history (LIKE {schema}.users)")
    return f"{schema}.users"
