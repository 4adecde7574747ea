"""
Set-based SQL for the connection tag merge.

Every statement reads from the same `merged` subquery: one row per connection
with its stored tags and the tags the merge rules produce for it. The count
and the update both filter on "merged differs from stored", so rows that
would not change are never written.

PostgreSQL compares jsonb values directly. SQLite stores JSON as text, so
the comparison there walks both objects with json_each and ignores key
order and whitespace.
"""

from sqlalchemy import DateTime, bindparam
from sqlalchemy.sql.elements import TextClause
from sqlalchemy import text

from .exceptions import UnsupportedDialectError

POSTGRESQL = "postgresql"
SQLITE = "sqlite"

_POSTGRESQL_MERGED = """
    SELECT
        c.id AS id,
        c.tags AS existing_tags,
        CASE
            WHEN eu.id IS NULL THEN c.tags
            ELSE jsonb_strip_nulls(jsonb_build_object(
                    'end_user_id', eu.end_user_id,
                    'end_user_email', eu.email,
                    'end_user_display_name', eu.display_name,
                    'organization_id', eu.organization_id,
                    'organization_display_name',
                        CASE WHEN eu.organization_id IS NOT NULL THEN eu.organization_display_name END
                ))
                || COALESCE((
                    SELECT jsonb_object_agg(t.key, t.value)
                    FROM jsonb_each(COALESCE(eu.tags, CAST('{}' AS jsonb))) AS t
                    WHERE t.key ~ '^[A-Za-z][A-Za-z0-9_]*$'
                ), CAST('{}' AS jsonb))
                || COALESCE(c.tags, CAST('{}' AS jsonb))
        END AS merged_tags
    FROM connections AS c
    LEFT JOIN end_users AS eu
        ON eu.id = c.end_user_id
       AND eu.environment_id = c.environment_id
"""

_POSTGRESQL_DIFFERS = "merged.merged_tags IS DISTINCT FROM merged.existing_tags"

# json_patch follows RFC 7396: patching '{}' with an object drops its NULL
# members, and later patches overwrite earlier keys.
_SQLITE_MERGED = """
    SELECT
        c.id AS id,
        c.tags AS existing_tags,
        CASE
            WHEN eu.id IS NULL THEN c.tags
            ELSE json_patch(
                json_patch(
                    json_patch('{}', json_object(
                        'end_user_id', eu.end_user_id,
                        'end_user_email', eu.email,
                        'end_user_display_name', eu.display_name,
                        'organization_id', eu.organization_id,
                        'organization_display_name',
                            CASE WHEN eu.organization_id IS NOT NULL THEN eu.organization_display_name END
                    )),
                    (
                        SELECT json_group_object(t.key, t.value)
                        FROM json_each(COALESCE(eu.tags, '{}')) AS t
                        WHERE t.key GLOB '[A-Za-z]*'
                          AND substr(t.key, 2) NOT GLOB '*[^A-Za-z0-9_]*'
                    )
                ),
                COALESCE(c.tags, '{}')
            )
        END AS merged_tags
    FROM connections AS c
    LEFT JOIN end_users AS eu
        ON eu.id = c.end_user_id
       AND eu.environment_id = c.environment_id
"""

_SQLITE_DIFFERS = """merged.merged_tags IS NOT merged.existing_tags
  AND (
    (SELECT COUNT(*) FROM json_each(merged.merged_tags))
        <> (SELECT COUNT(*) FROM json_each(merged.existing_tags))
    OR EXISTS (
        SELECT 1
        FROM json_each(merged.merged_tags) AS m
        WHERE NOT EXISTS (
            SELECT 1
            FROM json_each(merged.existing_tags) AS e
            WHERE e.key = m.key
              AND e.type = m.type
              AND e.value IS m.value
        )
    )
  )"""

_DIALECTS = {
    POSTGRESQL: (_POSTGRESQL_MERGED, _POSTGRESQL_DIFFERS),
    SQLITE: (_SQLITE_MERGED, _SQLITE_DIFFERS),
}


def _dialect_sql(dialect: str):
    try:
        return _DIALECTS[dialect]
    except KeyError:
        raise UnsupportedDialectError(dialect) from None


def build_merged_select(dialect: str) -> str:
    """Return the `merged` SELECT shared by the count and the update."""
    merged, _ = _dialect_sql(dialect)
    return merged


def build_count_sql(dialect: str) -> TextClause:
    """Count connections whose merged tags differ from the stored tags."""
    merged, differs = _dialect_sql(dialect)
    return text(f"""SELECT COUNT(*) AS rows_to_update
FROM ({merged}) AS merged
WHERE {differs}""")


def build_update_sql(dialect: str) -> TextClause:
    """
    Write merged tags to every connection where they differ.

    Binds `now`, stamped on updated_at of the rows that change. The
    statement starts with UPDATE so drivers report its rowcount.
    """
    merged, differs = _dialect_sql(dialect)
    statement = text(f"""UPDATE connections
SET tags = merged.merged_tags,
    updated_at = :now
FROM ({merged}) AS merged
WHERE connections.id = merged.id
  AND {differs}""")
    return statement.bindparams(bindparam("now", type_=DateTime()))
