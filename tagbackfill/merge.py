"""
Tag merge rules.

A connection's tags are the tags derived from its end user with the
connection's own tags laid on top. Connection tags always win, so running
the merge again over its own output changes nothing.
"""

from typing import Any, Dict, Optional

from .schema import is_valid_tag_key

Tags = Dict[str, str]

# Derived keys, in the order they are added.
END_USER_ID = "end_user_id"
END_USER_EMAIL = "end_user_email"
END_USER_DISPLAY_NAME = "end_user_display_name"
ORGANIZATION_ID = "organization_id"
ORGANIZATION_DISPLAY_NAME = "organization_display_name"


def derive_end_user_tags(end_user: Dict[str, Any]) -> Tags:
    """
    Build the tags an end user contributes to its connections.

    Fields that are missing or None are left out entirely, never replaced
    with an empty string. Custom tags with keys that are not identifiers are
    skipped; values are copied as stored.

    Args:
        end_user: Record as produced by EndUser.as_record()

    Returns:
        Derived tag map
    """
    derived: Tags = {
        END_USER_ID: end_user["end_user_id"],
        END_USER_EMAIL: end_user["email"],
    }

    if end_user.get("display_name") is not None:
        derived[END_USER_DISPLAY_NAME] = end_user["display_name"]

    # An organization without an id contributes nothing, display name included.
    organization = end_user.get("organization")
    if organization is not None and organization.get("organization_id") is not None:
        derived[ORGANIZATION_ID] = organization["organization_id"]
        if organization.get("display_name") is not None:
            derived[ORGANIZATION_DISPLAY_NAME] = organization["display_name"]

    for key, value in (end_user.get("tags") or {}).items():
        if is_valid_tag_key(key):
            derived[key] = value

    return derived


def compute_merged_tags(end_user: Optional[Dict[str, Any]], existing_tags: Tags) -> Tags:
    """
    Compute the tags a connection should carry.

    Args:
        end_user: Linked end-user record, or None when the connection has none
        existing_tags: Tags currently stored on the connection

    Returns:
        existing_tags itself when there is no end user, otherwise a new map
        of derived tags overlaid with existing_tags
    """
    if end_user is None:
        return existing_tags

    merged = derive_end_user_tags(end_user)
    merged.update(existing_tags or {})
    return merged
