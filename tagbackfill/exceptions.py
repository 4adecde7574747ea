"""Exceptions raised by the backfill package."""


class BackfillError(Exception):
    """Base class for backfill errors."""
    pass


class ConfigError(BackfillError):
    """Raised when required configuration is missing or malformed."""
    pass


class UnsupportedDialectError(BackfillError):
    """Raised when the merge statement cannot be expressed for a database."""

    def __init__(self, dialect: str):
        self.dialect = dialect
        super().__init__(
            f"Unsupported database dialect: {dialect} (expected postgresql or sqlite)"
        )
