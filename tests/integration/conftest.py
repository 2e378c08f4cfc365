"""
Shared fixtures for integration tests.

PostgreSQL-backed tests use the configured DATABASE_URL and are skipped
when no database is reachable.
"""

from collections.abc import Generator

import pytest
from psycopg_pool import ConnectionPool, PoolTimeout

from src.adapters.repository.postgres import run_migrations
from src.config.settings import get_settings


@pytest.fixture(scope="module")
def pool() -> Generator[ConnectionPool, None, None]:
    """Create connection pool for integration tests, or skip without a database."""
    settings = get_settings()
    pool = ConnectionPool(conninfo=settings.database_url, min_size=1, max_size=10, open=True)
    try:
        pool.wait(timeout=3.0)
    except PoolTimeout:
        pool.close()
        pytest.skip(f"PostgreSQL not reachable at {settings.database_url}")
    run_migrations(pool)
    yield pool
    pool.close()


@pytest.fixture
def clean_database(pool: ConnectionPool) -> Generator[None, None, None]:
    """Empty all activation tables before each test."""
    with pool.connection() as conn:
        conn.execute("DELETE FROM payment_intents")
        conn.execute("DELETE FROM accounts")
        conn.execute("DELETE FROM otp_challenges")
        conn.execute("DELETE FROM pending_registrations")
        conn.commit()
    yield
