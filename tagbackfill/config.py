"""
Runtime configuration for the backfill.

Values come from the environment (optionally seeded from .env) and can be
overridden by command line flags.

The migration defaults name this package's own bookkeeping table. To record
the backfill in an existing runner's ledger, set BACKFILL_MIGRATION_TABLE to
that table and pass --migration-name with the exact name the runner uses
(knex, for one, keeps the file extension: "...connection_tags.cjs").
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .exceptions import ConfigError

DEFAULT_TIMEOUT_MS = 60000
DEFAULT_MIGRATION_TABLE = "migrations"
DEFAULT_MIGRATION_NAME = "20260128120000_backfill_connection_tags"
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@dataclass
class BackfillConfig:
    database_url: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    migration_table: str = DEFAULT_MIGRATION_TABLE
    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    @classmethod
    def from_env(cls, database_url: Optional[str] = None) -> "BackfillConfig":
        """
        Build config from environment variables.

        Args:
            database_url: Explicit URL, takes precedence over DATABASE_URL

        Raises:
            ConfigError: If no database URL is available or the timeout
                is not a positive integer
        """
        url = database_url or os.getenv("DATABASE_URL")
        if not url:
            raise ConfigError("DATABASE_URL not set. Set env var or pass --database-url.")

        raw_timeout = os.getenv("BACKFILL_DB_TIMEOUT_MS", str(DEFAULT_TIMEOUT_MS))
        try:
            timeout_ms = int(raw_timeout)
        except ValueError:
            raise ConfigError(f"BACKFILL_DB_TIMEOUT_MS must be an integer, got {raw_timeout!r}")
        if timeout_ms <= 0:
            raise ConfigError("BACKFILL_DB_TIMEOUT_MS must be positive")

        log_level = os.getenv("BACKFILL_LOG_LEVEL", "INFO").upper()
        if log_level not in LOG_LEVELS:
            raise ConfigError(f"BACKFILL_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")

        log_dir = os.getenv("BACKFILL_LOG_DIR")

        return cls(
            database_url=url,
            timeout_ms=timeout_ms,
            migration_table=os.getenv("BACKFILL_MIGRATION_TABLE", DEFAULT_MIGRATION_TABLE),
            log_level=log_level,
            log_dir=Path(log_dir) if log_dir else None,
        )
