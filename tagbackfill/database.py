"""
Database schema and connection management.

Models the three relations the backfill touches: end users, connections
and the migrations bookkeeping table. Works against PostgreSQL (JSONB tag
columns) and SQLite (JSON1).
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from sqlalchemy import (
    create_engine,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    MetaData,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from .config import DEFAULT_MIGRATION_TABLE

Base = declarative_base()

TagMap = JSON().with_variant(JSONB(), "postgresql")


class EndUser(Base):
    """Person or organization that authorized one or more connections."""

    __tablename__ = "end_users"
    __table_args__ = (UniqueConstraint("end_user_id", "environment_id"),)

    id = Column(Integer, primary_key=True)
    end_user_id = Column(String, nullable=False)  # external identifier
    environment_id = Column(Integer, nullable=False)
    email = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    organization_id = Column(String, nullable=True)
    organization_display_name = Column(String, nullable=True)
    tags = Column(TagMap, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    def as_record(self) -> Dict[str, Any]:
        """
        Shape the row as the record the merge engine consumes.

        Organization is nested and only present when organization_id is set.
        """
        record: Dict[str, Any] = {
            "end_user_id": self.end_user_id,
            "email": self.email,
            "display_name": self.display_name,
            "tags": self.tags or {},
        }
        if self.organization_id is not None:
            record["organization"] = {
                "organization_id": self.organization_id,
                "display_name": self.organization_display_name,
            }
        return record


class Connection(Base):
    """Authorized integration instance carrying a tag map."""

    __tablename__ = "connections"

    id = Column(Integer, primary_key=True)
    connection_id = Column(String, nullable=False)
    provider_config_key = Column(String, nullable=False)
    environment_id = Column(Integer, nullable=False)
    end_user_id = Column(Integer, ForeignKey("end_users.id"), nullable=True)
    tags = Column(TagMap, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    end_user = relationship(EndUser)

    @property
    def linked_end_user(self) -> Optional[EndUser]:
        """End user linked within the same environment, if any."""
        if self.end_user is None or self.end_user.environment_id != self.environment_id:
            return None
        return self.end_user


class MigrationRecord(Base):
    """One row per applied one-off migration."""

    __tablename__ = DEFAULT_MIGRATION_TABLE

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    batch = Column(Integer, nullable=False)
    migration_time = Column(DateTime, nullable=False, default=datetime.now)


def bookkeeping_table(name: str = DEFAULT_MIGRATION_TABLE) -> Table:
    """
    Table object for the migrations bookkeeping relation.

    The default name maps to MigrationRecord; other names describe an
    existing table of the same shape owned by another migration runner.
    """
    if name == MigrationRecord.__tablename__:
        return MigrationRecord.__table__
    return Table(
        name,
        MetaData(),
        Column("id", Integer, primary_key=True),
        Column("name", String, nullable=False, unique=True),
        Column("batch", Integer, nullable=False),
        Column("migration_time", DateTime, nullable=False),
    )


def database_url(target: Union[str, Path]) -> str:
    """Accept a SQLAlchemy URL or a path to a SQLite file."""
    if isinstance(target, Path):
        return f"sqlite:///{target}"
    return target


def get_engine(target: Union[str, Path], timeout_ms: Optional[int] = None) -> Engine:
    """
    Create an engine for the given database.

    Args:
        target: SQLAlchemy URL or SQLite file path
        timeout_ms: Statement timeout (PostgreSQL) or busy timeout (SQLite)
    """
    url = database_url(target)
    connect_args: Dict[str, Any] = {}
    if timeout_ms is not None:
        if url.startswith("sqlite"):
            connect_args["timeout"] = timeout_ms / 1000
        elif url.startswith("postgresql"):
            connect_args["options"] = f"-c statement_timeout={timeout_ms}"
    return create_engine(url, connect_args=connect_args)


def init_database(target: Union[str, Path]) -> None:
    """
    Initialize database and create tables.

    Args:
        target: SQLAlchemy URL or SQLite file path
    """
    if isinstance(target, Path):
        target.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(target)
    try:
        Base.metadata.create_all(engine)
    finally:
        engine.dispose()


def get_session(target: Union[str, Path, Engine]):
    """
    Get database session.

    Args:
        target: Engine, SQLAlchemy URL or SQLite file path

    Returns:
        SQLAlchemy session
    """
    engine = target if isinstance(target, Engine) else get_engine(target)
    Session = sessionmaker(bind=engine)
    return Session()
