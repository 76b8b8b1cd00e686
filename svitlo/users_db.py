"""
User records: everything persisted about a user after the setup wizard.

Functions take an aiosqlite connection and return plain dicts. Storage
errors are logged and reported as None/False so a failing write never
takes a handler down with it.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Dict, Any, Optional

import aiosqlite
import pytz

logger = logging.getLogger(__name__)

KYIV_TZ = pytz.timezone('Europe/Kiev')

USER_COLUMNS = (
    'id', 'telegram_id', 'username', 'region', 'queue',
    'channel_id', 'channel_title', 'notify_target',
    'router_ip', 'power_state', 'power_changed_at',
    'alerts_enabled', 'alert_lead_time', 'last_alert_event',
    'last_schedule_hash', 'is_active',
    'schedule_caption', 'period_format', 'power_off_text', 'power_on_text',
    'delete_old_message', 'picture_only', 'last_schedule_message_id',
    'created_at', 'updated_at',
)
_SELECT_USER = f"SELECT {', '.join(USER_COLUMNS)} FROM users"

NOTIFY_TARGETS = ('bot', 'channel', 'both')

# Text templates a user can edit; None in the DB means "use the default"
FORMAT_TEXT_FIELDS = ('schedule_caption', 'period_format', 'power_off_text', 'power_on_text')
FORMAT_FLAG_FIELDS = ('delete_old_message', 'picture_only')

DEFAULT_FORMAT_SETTINGS: Dict[str, Any] = {
    'schedule_caption': "📅 Графік відключень на {dd}, {d}\n📍 {region}, черга {queue}",
    'period_format': "{s} - {f} ({h})",
    'power_off_text': "🔴 {time} Світло зникло",
    'power_on_text': "🟢 {time} Світло з'явилося\n⏱ Не було світла: {duration}",
    'delete_old_message': 0,
    'picture_only': 0,
}


def _row_to_user(row) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return dict(zip(USER_COLUMNS, row))


def _now() -> datetime:
    return datetime.now(KYIV_TZ)


async def get_user_by_telegram_id(conn: aiosqlite.Connection, telegram_id: Any) -> Optional[Dict[str, Any]]:
    if not conn:
        return None

    try:
        async with conn.execute(f"{_SELECT_USER} WHERE telegram_id = ?", (str(telegram_id),)) as cursor:
            return _row_to_user(await cursor.fetchone())
    except Exception as e:
        logger.error(f"Failed to get user {telegram_id}: {e}")
        return None


async def get_user_by_channel_id(conn: aiosqlite.Connection, channel_id: Any) -> Optional[Dict[str, Any]]:
    """Owner of a connected channel, if any."""
    if not conn:
        return None

    try:
        async with conn.execute(f"{_SELECT_USER} WHERE channel_id = ?", (str(channel_id),)) as cursor:
            return _row_to_user(await cursor.fetchone())
    except Exception as e:
        logger.error(f"Failed to get user by channel {channel_id}: {e}")
        return None


async def create_user(
    conn: aiosqlite.Connection,
    telegram_id: Any,
    username: Optional[str],
    region: str,
    queue: str
) -> Optional[Dict[str, Any]]:
    """
    Creates the user record (wizard confirmation).
    Upsert on telegram_id: a repeated call updates the same row.
    """
    if not conn:
        return None

    now = _now().isoformat()
    try:
        await conn.execute("""
            INSERT INTO users (telegram_id, username, region, queue, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(telegram_id) DO UPDATE SET
                username = excluded.username,
                region = excluded.region,
                queue = excluded.queue,
                is_active = 1,
                updated_at = excluded.updated_at
        """, (str(telegram_id), username, region, queue, now, now))
        await conn.commit()
    except Exception as e:
        logger.error(f"Failed to create user {telegram_id}: {e}")
        return None

    logger.info(f"User {telegram_id} saved: region={region}, queue={queue}")
    return await get_user_by_telegram_id(conn, telegram_id)


async def update_user_region_queue(
    conn: aiosqlite.Connection,
    telegram_id: Any,
    region: str,
    queue: str
) -> Optional[Dict[str, Any]]:
    """
    Changes region/queue of an existing user. Returns None if there is no
    such user. The schedule hash is reset so the new queue gets published.
    """
    if not conn:
        return None

    try:
        cursor = await conn.execute("""
            UPDATE users
            SET region = ?, queue = ?, last_schedule_hash = NULL, last_alert_event = NULL, updated_at = ?
            WHERE telegram_id = ?
        """, (region, queue, _now().isoformat(), str(telegram_id)))
        await conn.commit()
        if cursor.rowcount == 0:
            return None
    except Exception as e:
        logger.error(f"Failed to update region/queue for {telegram_id}: {e}")
        return None

    return await get_user_by_telegram_id(conn, telegram_id)


async def _update_fields(conn: aiosqlite.Connection, telegram_id: Any, fields: Dict[str, Any]) -> bool:
    """UPDATE users SET <fields> WHERE telegram_id = ?; column names come from callers in this module."""
    if not conn or not fields:
        return False

    assignments = ", ".join(f"{name} = ?" for name in fields)
    params = list(fields.values()) + [_now().isoformat(), str(telegram_id)]
    try:
        cursor = await conn.execute(
            f"UPDATE users SET {assignments}, updated_at = ? WHERE telegram_id = ?",
            params
        )
        await conn.commit()
        return cursor.rowcount > 0
    except Exception as e:
        logger.error(f"Failed to update {', '.join(fields)} for {telegram_id}: {e}")
        return False


async def update_user_channel(
    conn: aiosqlite.Connection,
    telegram_id: Any,
    channel_id: Optional[Any],
    channel_title: Optional[str] = None
) -> bool:
    """Binds a channel to the user; channel_id=None disconnects it."""
    fields: Dict[str, Any] = {
        'channel_id': str(channel_id) if channel_id is not None else None,
        'channel_title': channel_title if channel_id is not None else None,
        'last_schedule_message_id': None,
    }
    if channel_id is None:
        fields['notify_target'] = 'bot'
    return await _update_fields(conn, telegram_id, fields)


async def clear_channel_binding(conn: aiosqlite.Connection, channel_id: Any) -> bool:
    """Drops the channel from whichever user had it (bot removed from channel)."""
    owner = await get_user_by_channel_id(conn, channel_id)
    if owner is None:
        return False
    return await update_user_channel(conn, owner['telegram_id'], None)


async def update_user_notify_target(conn: aiosqlite.Connection, telegram_id: Any, target: str) -> bool:
    if target not in NOTIFY_TARGETS:
        logger.warning(f"Unknown notify target {target!r} for {telegram_id}")
        return False
    return await _update_fields(conn, telegram_id, {'notify_target': target})


async def update_user_router_ip(conn: aiosqlite.Connection, telegram_id: Any, router_ip: Optional[str]) -> bool:
    """Sets router address; clearing it also forgets the last known power state."""
    return await _update_fields(conn, telegram_id, {
        'router_ip': router_ip,
        'power_state': None,
        'power_changed_at': None,
    })


async def update_user_alert_settings(
    conn: aiosqlite.Connection,
    telegram_id: Any,
    enabled: Optional[bool] = None,
    lead_time: Optional[int] = None
) -> bool:
    fields: Dict[str, Any] = {}
    if enabled is not None:
        fields['alerts_enabled'] = 1 if enabled else 0
    if lead_time is not None:
        fields['alert_lead_time'] = int(lead_time)
    return await _update_fields(conn, telegram_id, fields)


async def update_user_format_settings(conn: aiosqlite.Connection, telegram_id: Any, **settings: Any) -> bool:
    """
    Updates any of the format columns. Text fields accept None (back to
    default); flags are stored as 0/1. Unknown names are rejected.
    """
    fields: Dict[str, Any] = {}
    for name, value in settings.items():
        if name in FORMAT_TEXT_FIELDS:
            fields[name] = value
        elif name in FORMAT_FLAG_FIELDS:
            fields[name] = 1 if value else 0
        else:
            logger.warning(f"Ignoring unknown format setting {name!r}")
    return await _update_fields(conn, telegram_id, fields)


async def reset_user_format_settings(conn: aiosqlite.Connection, telegram_id: Any) -> bool:
    return await update_user_format_settings(
        conn, telegram_id,
        **{name: None for name in FORMAT_TEXT_FIELDS},
        **{name: 0 for name in FORMAT_FLAG_FIELDS}
    )


def resolve_format_settings(user: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """User's format columns with defaults filled in."""
    resolved = dict(DEFAULT_FORMAT_SETTINGS)
    if user:
        for name in FORMAT_TEXT_FIELDS:
            if user.get(name):
                resolved[name] = user[name]
        for name in FORMAT_FLAG_FIELDS:
            resolved[name] = 1 if user.get(name) else 0
    return resolved


async def get_user_format_settings(conn: aiosqlite.Connection, telegram_id: Any) -> Optional[Dict[str, Any]]:
    user = await get_user_by_telegram_id(conn, telegram_id)
    if user is None:
        return None
    return resolve_format_settings(user)


async def update_last_schedule_message_id(conn: aiosqlite.Connection, telegram_id: Any, message_id: Optional[int]) -> bool:
    return await _update_fields(conn, telegram_id, {'last_schedule_message_id': message_id})


async def update_user_schedule_hash(conn: aiosqlite.Connection, telegram_id: Any, schedule_hash: Optional[str]) -> bool:
    return await _update_fields(conn, telegram_id, {'last_schedule_hash': schedule_hash})


async def update_user_power_state(
    conn: aiosqlite.Connection,
    telegram_id: Any,
    power_state: str,
    changed_at: datetime
) -> bool:
    return await _update_fields(conn, telegram_id, {
        'power_state': power_state,
        'power_changed_at': changed_at.isoformat(),
    })


async def update_user_last_alert(conn: aiosqlite.Connection, telegram_id: Any, event_key: str) -> bool:
    return await _update_fields(conn, telegram_id, {'last_alert_event': event_key})


async def delete_user(conn: aiosqlite.Connection, telegram_id: Any) -> bool:
    """Removes the user and their outage history."""
    if not conn:
        return False

    try:
        cursor = await conn.execute("DELETE FROM users WHERE telegram_id = ?", (str(telegram_id),))
        await conn.execute("DELETE FROM power_history WHERE telegram_id = ?", (str(telegram_id),))
        await conn.commit()
        return cursor.rowcount > 0
    except Exception as e:
        logger.error(f"Failed to delete user {telegram_id}: {e}")
        return False


async def get_active_users(conn: aiosqlite.Connection) -> List[Dict[str, Any]]:
    if not conn:
        return []

    try:
        async with conn.execute(f"{_SELECT_USER} WHERE is_active = 1 ORDER BY region, queue") as cursor:
            return [_row_to_user(row) for row in await cursor.fetchall()]
    except Exception as e:
        logger.error(f"Failed to list active users: {e}")
        return []


async def get_users_with_router_ip(conn: aiosqlite.Connection) -> List[Dict[str, Any]]:
    if not conn:
        return []

    try:
        async with conn.execute(
            f"{_SELECT_USER} WHERE is_active = 1 AND router_ip IS NOT NULL AND router_ip != ''"
        ) as cursor:
            return [_row_to_user(row) for row in await cursor.fetchall()]
    except Exception as e:
        logger.error(f"Failed to list users with router IP: {e}")
        return []


async def add_power_event(
    conn: aiosqlite.Connection,
    telegram_id: Any,
    event_type: str,
    started_at: datetime,
    duration_seconds: Optional[int] = None
) -> bool:
    """Records a finished outage ('outage') or other power event."""
    if not conn:
        return False

    try:
        await conn.execute(
            "INSERT INTO power_history (telegram_id, event_type, started_at, duration_seconds) VALUES (?, ?, ?, ?)",
            (str(telegram_id), event_type, started_at.isoformat(), duration_seconds)
        )
        await conn.commit()
        return True
    except Exception as e:
        logger.error(f"Failed to record power event for {telegram_id}: {e}")
        return False


async def get_power_stats(
    conn: aiosqlite.Connection,
    telegram_id: Any,
    days: int = 7,
    now: Optional[datetime] = None
) -> Dict[str, int]:
    """Outage count, total and longest duration (seconds) over the last `days` days."""
    stats = {'count': 0, 'total_seconds': 0, 'longest_seconds': 0}
    if not conn:
        return stats

    since = (now or _now()) - timedelta(days=days)
    try:
        async with conn.execute("""
            SELECT COUNT(*), COALESCE(SUM(duration_seconds), 0), COALESCE(MAX(duration_seconds), 0)
            FROM power_history
            WHERE telegram_id = ? AND event_type = 'outage' AND started_at >= ?
        """, (str(telegram_id), since.isoformat())) as cursor:
            row = await cursor.fetchone()
        stats['count'], stats['total_seconds'], stats['longest_seconds'] = int(row[0]), int(row[1]), int(row[2])
    except Exception as e:
        logger.error(f"Failed to get power stats for {telegram_id}: {e}")
    return stats


async def get_user_counts(conn: aiosqlite.Connection) -> Dict[str, int]:
    """Totals for the admin panel."""
    counts = {'total': 0, 'active': 0, 'with_channel': 0, 'with_router': 0, 'new_week': 0}
    if not conn:
        return counts

    week_ago = (_now() - timedelta(days=7)).isoformat()
    async with conn.execute("""
        SELECT
            COUNT(*),
            COALESCE(SUM(is_active), 0),
            COALESCE(SUM(CASE WHEN channel_id IS NOT NULL THEN 1 ELSE 0 END), 0),
            COALESCE(SUM(CASE WHEN router_ip IS NOT NULL AND router_ip != '' THEN 1 ELSE 0 END), 0),
            COALESCE(SUM(CASE WHEN created_at >= ? THEN 1 ELSE 0 END), 0)
        FROM users
    """, (week_ago,)) as cursor:
        row = await cursor.fetchone()
    counts['total'], counts['active'], counts['with_channel'], counts['with_router'], counts['new_week'] = (int(v) for v in row)
    return counts


EXPORT_COLUMNS = ('telegram_id', 'username', 'region', 'queue', 'channel_id', 'notify_target', 'router_ip', 'created_at')


async def export_users_rows(conn: aiosqlite.Connection) -> List[tuple]:
    """Rows for the admin CSV export, newest users first."""
    async with conn.execute(
        f"SELECT {', '.join(EXPORT_COLUMNS)} FROM users ORDER BY created_at DESC"
    ) as cursor:
        return list(await cursor.fetchall())


class SqliteUserRepository:
    """The wizard's view of the users table."""

    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn

    async def create_user(self, telegram_id: str, username: Optional[str], region: str, queue: str) -> Optional[Dict[str, Any]]:
        return await create_user(self.conn, telegram_id, username, region, queue)

    async def update_user_region_queue(self, telegram_id: str, region: str, queue: str) -> Optional[Dict[str, Any]]:
        return await update_user_region_queue(self.conn, telegram_id, region, queue)

    async def get_user_by_telegram_id(self, telegram_id: str) -> Optional[Dict[str, Any]]:
        return await get_user_by_telegram_id(self.conn, telegram_id)
