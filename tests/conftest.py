"""Global pytest configuration.

Sets environment variables at module level, before any ``scrapebot`` module
is imported, so that ``scrapebot.config.constants`` picks up deterministic
test values.

Rules:
- Do NOT import ``scrapebot.config.constants`` at module level here; the env
  vars below have to be applied first.
- Use ``setdefault`` so that real env vars set by CI or the developer's shell
  are not clobbered.

Fixtures:
    engine   in-memory SQLite engine with the full ScrapeBot schema
    db       open DatabaseConnection on top of ``engine``
    insert   helper inserting one row into a table and returning its uid
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Callable, Iterator

import pytest

# ---------------------------------------------------------------------------
# Environment consumed by scrapebot.config.constants
# ---------------------------------------------------------------------------

_TEST_ENV: dict[str, str] = {
    "SCRAPEBOT_SERVICE_NAME": "scrapebot-client-test",
    "SCRAPEBOT_LOG_LEVEL": "ERROR",
    "SCRAPEBOT_FETCH_CHUNK_SIZE": "2",
    "SCRAPEBOT_DEFAULT_REGION": "eu-central-1",
    "SCRAPEBOT_AWS_SECTION": "AWS",
    "SCRAPEBOT_KEYPAIR_NAME": "scrapebot-test",
    "SCRAPEBOT_POLL_INTERVAL_SECONDS": "0",
    "SCRAPEBOT_WRITE_VERIFY_ATTEMPTS": "3",
}

for _key, _value in _TEST_ENV.items():
    os.environ.setdefault(_key, _value)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine() -> Iterator[Any]:
    """SQLite engine shared across connections of one test (StaticPool)."""
    import sqlalchemy as sa
    from sqlalchemy.pool import StaticPool

    from scrapebot.infra.tables import metadata

    eng = sa.create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def db(engine: Any) -> Any:
    from scrapebot.infra.db import DatabaseConnection

    return DatabaseConnection(
        engine,
        credentials_section="scrapebot on localhost",
        db_type="sqlite on memory",
        db_version="test",
        db_timeout=28800,
    )


@pytest.fixture()
def insert(engine: Any) -> Callable[..., int]:
    """Return ``insert(table, **values) -> uid`` for seeding rows directly."""
    import sqlalchemy as sa

    def _insert(table: sa.Table, **values: Any) -> int:
        values.setdefault("created", datetime(2021, 3, 1, 10, 0, 0))
        with engine.begin() as conn:
            result = conn.execute(sa.insert(table).values(**values))
        return int(result.inserted_primary_key[0])

    return _insert


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _configure_logging() -> None:
    """Route structlog through stdlib logging at ``SCRAPEBOT_LOG_LEVEL``."""
    from scrapebot.config.logging_setup import configure_logging

    configure_logging()
