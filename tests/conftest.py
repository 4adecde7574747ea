"""
Pytest configuration and shared fixtures.
"""

import os
from datetime import datetime
from typing import Any, Dict, Optional

import pytest

from tagbackfill.database import Connection, EndUser, get_engine, get_session, init_database
from tagbackfill.logger import reset_logger

SEEDED_AT = datetime(2024, 1, 1, 12, 0, 0)

BACKFILL_ENV_VARS = [
    "DATABASE_URL",
    "BACKFILL_DB_TIMEOUT_MS",
    "BACKFILL_MIGRATION_TABLE",
    "BACKFILL_LOG_LEVEL",
    "BACKFILL_LOG_DIR",
]


@pytest.fixture(autouse=True)
def fresh_logger():
    """Each test gets its own global logger and metrics."""
    reset_logger()
    yield
    reset_logger()


@pytest.fixture
def clean_env(monkeypatch):
    """Hide backfill settings from the real environment.

    .env loading writes os.environ directly, so values are also dropped
    after the test.
    """
    for name in BACKFILL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    for name in BACKFILL_ENV_VARS:
        os.environ.pop(name, None)


@pytest.fixture
def seeded_at():
    """Timestamp stamped on seeded connections."""
    return SEEDED_AT


@pytest.fixture
def db_path(tmp_path):
    """SQLite database with all tables created."""
    path = tmp_path / "test.db"
    init_database(path)
    return path


@pytest.fixture
def db_session(db_path):
    """Session on the temporary database."""
    engine = get_engine(db_path)
    session = get_session(engine)
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def make_end_user(db_session):
    """Factory inserting an end user."""

    def _make(
        end_user_id: str,
        email: str,
        display_name: Optional[str] = None,
        organization: Optional[Dict[str, Any]] = None,
        tags: Optional[Dict[str, Any]] = None,
        environment_id: int = 1,
    ) -> EndUser:
        end_user = EndUser(
            end_user_id=end_user_id,
            environment_id=environment_id,
            email=email,
            display_name=display_name,
            organization_id=organization["organization_id"] if organization else None,
            organization_display_name=organization.get("display_name") if organization else None,
            tags=tags or {},
        )
        db_session.add(end_user)
        db_session.commit()
        return end_user

    return _make


@pytest.fixture
def make_connection(db_session):
    """Factory inserting a github connection, optionally linked to an end user."""
    created = []

    def _make(
        tags: Optional[Dict[str, str]] = None,
        end_user: Optional[EndUser] = None,
        environment_id: int = 1,
    ) -> Connection:
        connection = Connection(
            connection_id=f"conn-{len(created) + 1}",
            provider_config_key="github",
            environment_id=environment_id,
            end_user_id=end_user.id if end_user is not None else None,
            tags=tags if tags is not None else {},
            created_at=SEEDED_AT,
            updated_at=SEEDED_AT,
        )
        db_session.add(connection)
        db_session.commit()
        created.append(connection)
        return connection

    return _make


@pytest.fixture
def stored_tags(db_session):
    """Re-read a connection's tags from the database."""

    def _read(connection_id: int) -> Dict[str, str]:
        db_session.expire_all()
        return db_session.get(Connection, connection_id).tags

    return _read


@pytest.fixture
def edge_cases(make_end_user, make_connection):
    """Connections covering the merge edge cases, with their expected tags."""
    cases = {}

    special = make_end_user(
        "user id/1?=+&",
        "user+test@example.com",
        display_name="Jane Doe (R&D)",
        organization={"organization_id": "org:alpha/1", "display_name": "Org & Co"},
        tags={"project": "R&D / alpha", "team": "core team", "ip": "2001:db8::1"},
    )
    cases["special"] = (make_connection(tags={}, end_user=special), {
        "end_user_id": "user id/1?=+&",
        "end_user_email": "user+test@example.com",
        "end_user_display_name": "Jane Doe (R&D)",
        "organization_id": "org:alpha/1",
        "organization_display_name": "Org & Co",
        "project": "R&D / alpha",
        "team": "core team",
        "ip": "2001:db8::1",
    })

    override = make_end_user("user-override", "original@example.com")
    cases["override"] = (
        make_connection(
            tags={"end_user_email": "override@example.com", "custom": "keep"},
            end_user=override,
        ),
        {
            "end_user_id": "user-override",
            "end_user_email": "override@example.com",
            "custom": "keep",
        },
    )

    invalid_key = make_end_user("user-invalid-key", "invalid@example.com", tags={"1bad": "value"})
    cases["invalid_key"] = (make_connection(tags={"existing": "yes"}, end_user=invalid_key), {
        "end_user_id": "user-invalid-key",
        "end_user_email": "invalid@example.com",
        "existing": "yes",
    })

    many = {f"tag{i}": f"value{i}" for i in range(1, 10)}
    too_many = make_end_user("user-too-many", "too-many@example.com", tags=many)
    cases["too_many"] = (make_connection(tags={"existing": "yes"}, end_user=too_many), {
        "end_user_id": "user-too-many",
        "end_user_email": "too-many@example.com",
        **many,
        "existing": "yes",
    })

    long_value = "a" * 201
    too_long = make_end_user("user-long", "long@example.com", tags={"long": long_value})
    cases["too_long"] = (make_connection(tags={"existing": "yes"}, end_user=too_long), {
        "end_user_id": "user-long",
        "end_user_email": "long@example.com",
        "long": long_value,
        "existing": "yes",
    })

    cases["no_end_user"] = (make_connection(tags={"existing": "yes"}), {"existing": "yes"})

    return {name: (conn.id, expected) for name, (conn, expected) in cases.items()}
