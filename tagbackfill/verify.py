"""
Compare stored connection tags with what the merge rules expect.

Loads rows through the ORM and runs the Python merge, independently of the
SQL that performed the backfill.
"""

from typing import Any, Dict, List

from sqlalchemy.orm import Session, joinedload

from .database import Connection
from .merge import compute_merged_tags
from .schema import invalid_tag_keys


def find_mismatches(session: Session) -> List[Dict[str, Any]]:
    """
    Return one entry per connection whose stored tags differ from the merge.

    Each entry holds the connection's primary key, the expected and actual
    tags, and the end-user tag keys that were skipped as invalid.
    """
    mismatches = []
    connections = (
        session.query(Connection)
        .options(joinedload(Connection.end_user))
        .order_by(Connection.id)
        .all()
    )
    for connection in connections:
        end_user = connection.linked_end_user
        record = end_user.as_record() if end_user is not None else None
        actual = connection.tags or {}
        expected = compute_merged_tags(record, actual)
        if expected != actual:
            mismatches.append({
                "connection_id": connection.id,
                "expected": expected,
                "actual": actual,
                "skipped_keys": invalid_tag_keys(record),
            })
    return mismatches
