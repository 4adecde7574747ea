"""
Command line entry point for the connection tags backfill.

    tagbackfill [--dry-run] [--mark-migration] [--database-url URL]
"""

import argparse
import sys
from typing import List, Optional

from . import __version__
from .backfill import BackfillOptions, run_backfill
from .config import DEFAULT_MIGRATION_NAME, LOG_LEVELS, BackfillConfig
from .database import get_engine, get_session
from .env import load_env
from .exceptions import BackfillError
from .logger import get_logger, reset_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tagbackfill",
        description="Merge end-user tags into connection tags",
    )
    parser.add_argument("--dry-run", action="store_true",
                        help="Only report how many connections would change")
    parser.add_argument("--mark-migration", action="store_true",
                        help="Record the backfill in the migrations table after applying")
    parser.add_argument("--database-url", default=None,
                        help="SQLAlchemy database URL (default: $DATABASE_URL)")
    parser.add_argument("--migration-name", default=DEFAULT_MIGRATION_NAME,
                        help="Name recorded in the migrations table "
                             "($BACKFILL_MIGRATION_TABLE, default: migrations)")
    parser.add_argument("--log-level", default=None, type=str.upper,
                        choices=LOG_LEVELS,
                        help="Log level (default: $BACKFILL_LOG_LEVEL or INFO)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def run(args: argparse.Namespace, config: BackfillConfig) -> None:
    options = BackfillOptions(
        dry_run=args.dry_run,
        mark_migration=args.mark_migration,
        migration_name=args.migration_name,
        migration_table=config.migration_table,
    )

    engine = get_engine(config.database_url, timeout_ms=config.timeout_ms)
    session = get_session(engine)

    print("Starting connection tags migration")
    print(f"Dry run: {'true' if options.dry_run else 'false'}")
    print(f"Mark migration: {'true' if options.mark_migration else 'false'}")

    try:
        run_backfill(session, options)
    finally:
        session.close()
        engine.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    load_env()

    try:
        config = BackfillConfig.from_env(database_url=args.database_url)
    except BackfillError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    reset_logger()
    logger = get_logger(level=args.log_level or config.log_level, log_dir=config.log_dir)

    try:
        run(args, config)
    except Exception as e:
        logger.record_error(type(e).__name__)
        logger.error(f"Connection tags migration failed: {e}", error_type=type(e).__name__)
        return 1
    finally:
        logger.log_metrics_summary()

    return 0


if __name__ == "__main__":
    sys.exit(main())
