#!/usr/bin/env python3
"""
Validate that every connection carries its merged tags.

Usage:
    python scripts/validate_backfill.py --database-url postgresql://localhost/app
    python scripts/validate_backfill.py --db data/app.db
"""

import argparse
import os
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tagbackfill.database import Connection, get_session
from tagbackfill.env import load_env
from tagbackfill.verify import find_mismatches


def validate(target) -> bool:
    """
    Compare stored connection tags with the merge rules.

    Returns True if every connection matches, False otherwise.
    """
    print(f"Querying database at {target}...")
    session = get_session(target)
    try:
        total = session.query(Connection).count()
        print(f"  Connections: {total}")

        mismatches = find_mismatches(session)
    finally:
        session.close()

    if not mismatches:
        print("✅ All connections carry their merged tags")
        return True

    print(f"\n❌ TAG MISMATCHES: {len(mismatches)} connections")
    for mismatch in mismatches[:5]:
        print(f"   - connection {mismatch['connection_id']}")
        print(f"     expected: {mismatch['expected']}")
        print(f"     actual:   {mismatch['actual']}")
        if mismatch["skipped_keys"]:
            print(f"     skipped end-user keys: {', '.join(mismatch['skipped_keys'])}")
    if len(mismatches) > 5:
        print(f"   ... and {len(mismatches) - 5} more")

    return False


def main():
    parser = argparse.ArgumentParser(description="Validate the connection tags backfill")
    parser.add_argument("--database-url", default=None,
                       help="SQLAlchemy database URL (default: $DATABASE_URL)")
    parser.add_argument("--db", type=Path, default=None,
                       help="Path to SQLite database file")

    args = parser.parse_args()
    load_env()

    target = args.db or args.database_url or os.getenv("DATABASE_URL")
    if target is None:
        print("❌ No database given. Pass --db, --database-url or set DATABASE_URL.")
        sys.exit(1)

    if isinstance(target, Path) and not target.exists():
        print(f"❌ Database file not found: {target}")
        sys.exit(1)

    success = validate(target)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
