"""
Connection tag backfill.

Merges end-user derived tags into connection tags with a single set-based
statement, and records the backfill as applied exactly once.
"""

__version__ = "0.1.0"
