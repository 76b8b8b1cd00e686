"""
Admin permission checks.

Every admin-only handler asks one of these two functions instead of
re-implementing the "owner or roster member" condition at the call site.
"""

from typing import Any, Iterable, List, Optional


def _normalize_id(value: Any) -> Optional[str]:
    """String form of a Telegram identifier, None for missing/blank values."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def parse_admin_ids(raw: Optional[str]) -> List[str]:
    """Parses ADMIN_IDS env value: "111, 222,333" -> ["111", "222", "333"]."""
    if not raw:
        return []
    return [part for part in (_normalize_id(p) for p in raw.split(",")) if part]


def is_roster_admin(user_id: Any, admin_ids: Optional[Iterable[Any]]) -> bool:
    """True if user_id is listed in admin_ids."""
    candidate = _normalize_id(user_id)
    if candidate is None or not admin_ids or isinstance(admin_ids, bool):
        return False
    if isinstance(admin_ids, (str, int)):
        # a raw ADMIN_IDS value or a single id, never iterated per character
        admin_ids = parse_admin_ids(str(admin_ids))
    try:
        return any(_normalize_id(admin_id) == candidate for admin_id in admin_ids)
    except TypeError:
        return _normalize_id(admin_ids) == candidate


def is_admin(user_id: Any, admin_ids: Optional[Iterable[Any]], owner_id: Any = None) -> bool:
    """
    True if user_id is the owner or is listed in admin_ids.

    The owner is privileged even when the roster is empty. With no owner
    configured (owner_id=None) this is exactly is_roster_admin().
    """
    candidate = _normalize_id(user_id)
    if candidate is None:
        return False

    owner = _normalize_id(owner_id)
    if owner is not None and owner == candidate:
        return True

    return is_roster_admin(candidate, admin_ids)
