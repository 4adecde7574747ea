import re
from typing import Any, Dict, List, Optional

# Tag keys must look like identifiers. Anything else is dropped at merge time.
TAG_KEY_PATTERN = re.compile(r"[A-Za-z][A-Za-z0-9_]*")


def is_valid_tag_key(key: Any) -> bool:
    return isinstance(key, str) and TAG_KEY_PATTERN.fullmatch(key) is not None


def invalid_tag_keys(end_user: Optional[Dict[str, Any]]) -> List[str]:
    """
    Returns the end-user tag keys the merge will skip, in stored order.
    Never raises: a bad key is not an error, it just does not propagate.
    """
    if not end_user:
        return []
    return [k for k in (end_user.get("tags") or {}) if not is_valid_tag_key(k)]

