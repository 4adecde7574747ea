"""
Connection tags backfill.

Three phases, strictly in order:
1. count the connections whose merged tags differ from what is stored;
2. write the merged tags to exactly those rows, in one statement;
3. record the backfill in the migrations table, once.

Dry runs stop after the count. Marking only happens after a successful
apply phase, so a failure never leaves the backfill recorded as done.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, insert, literal, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import DEFAULT_MIGRATION_NAME, DEFAULT_MIGRATION_TABLE
from .database import bookkeeping_table
from .exceptions import BackfillError
from .logger import get_logger
from .sql import SQLITE, build_count_sql, build_update_sql


@dataclass
class BackfillOptions:
    dry_run: bool = False
    mark_migration: bool = False
    migration_name: str = DEFAULT_MIGRATION_NAME
    migration_table: str = DEFAULT_MIGRATION_TABLE


@dataclass
class BackfillResult:
    rows_to_update: int
    rows_updated: int = 0
    applied: bool = False
    marked: bool = False


def _dialect(session: Session) -> str:
    return session.get_bind().dialect.name


def compute_affected_count(session: Session) -> int:
    """
    Count connections whose tags would change. Read-only.

    Args:
        session: Open database session

    Returns:
        Number of connections the apply phase would update
    """
    logger = get_logger()
    try:
        count = int(session.execute(build_count_sql(_dialect(session))).scalar() or 0)
        logger.record_statement()
    finally:
        # Nothing was written; end the read transaction.
        session.rollback()

    logger.record_rows_to_update(count)
    logger.debug("Computed affected connections", rows_to_update=count)
    return count


def _rows_changed(session: Session, result) -> int:
    """Rows written by the last statement, asking SQLite when the driver can't say."""
    if result.rowcount is not None and result.rowcount >= 0:
        return result.rowcount
    if _dialect(session) == SQLITE:
        return int(session.execute(text("SELECT changes()")).scalar())
    raise BackfillError(
        f"Database driver did not report updated rows (rowcount={result.rowcount})"
    )


def apply_merge(session: Session) -> int:
    """
    Write merged tags to every connection where they differ.

    Issued as a single UPDATE so the store applies it atomically; rows that
    already hold their merged tags are not touched.

    Returns:
        Number of rows the database reports as updated
    """
    logger = get_logger()
    try:
        result = session.execute(
            build_update_sql(_dialect(session)), {"now": datetime.now()}
        )
        logger.record_statement()
        updated = _rows_changed(session, result)
        session.commit()
    except (SQLAlchemyError, BackfillError):
        session.rollback()
        raise

    logger.record_rows_updated(updated)
    logger.info("Applied connection tags merge", rows_updated=updated)
    return updated


def mark_applied(
    session: Session,
    name: str = DEFAULT_MIGRATION_NAME,
    table: str = DEFAULT_MIGRATION_TABLE,
) -> bool:
    """
    Record a one-off migration as applied, at most once per name.

    The batch number and the existence guard live in the same
    INSERT ... SELECT, so two concurrent callers cannot both insert.

    Args:
        session: Open database session
        name: Migration name
        table: Bookkeeping table name

    Returns:
        True if a row was inserted, False if the name was already recorded
    """
    logger = get_logger()
    migrations = bookkeeping_table(table)

    try:
        existing = session.execute(
            select(migrations.c.name).where(migrations.c.name == name)
        ).first()
        logger.record_statement()
        if existing is not None:
            session.rollback()
            logger.info(f"Migration already marked: {name}", table=table)
            return False

        next_batch = (
            select(func.coalesce(func.max(migrations.c.batch), 0) + 1)
            .correlate(None)
            .scalar_subquery()
        )
        already_marked = (
            select(migrations.c.name)
            .where(migrations.c.name == name)
            .correlate(None)
            .exists()
        )
        guarded = select(
            literal(name),
            next_batch,
            literal(datetime.now(), type_=migrations.c.migration_time.type),
        ).where(~already_marked)
        result = session.execute(
            insert(migrations).from_select(["name", "batch", "migration_time"], guarded)
        )
        logger.record_statement()
        inserted = result.rowcount
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise

    if not inserted:
        logger.info(f"Migration already marked: {name}", table=table)
        return False

    logger.record_migration_marked()
    logger.info(f"Migration marked as applied: {name}", table=table)
    return True


def run_backfill(session: Session, options: BackfillOptions) -> BackfillResult:
    """
    Run the count, apply and mark phases.

    Args:
        session: Open database session; the caller owns its lifetime
        options: Phase selection

    Returns:
        BackfillResult describing what happened
    """
    rows_to_update = compute_affected_count(session)
    print(f"Rows to update: {rows_to_update}")
    result = BackfillResult(rows_to_update=rows_to_update)

    if not options.dry_run and rows_to_update > 0:
        result.rows_updated = apply_merge(session)
        result.applied = True
        print(f"Updated rows: {result.rows_updated}")

    if not options.dry_run and options.mark_migration:
        result.marked = mark_applied(
            session, options.migration_name, options.migration_table
        )
        if result.marked:
            print(f"Migration marked as applied: {options.migration_name}")
        else:
            print(f"Migration already marked: {options.migration_name}")

    return result
