"""
Background tasks: schedule publication, router power monitor and
upcoming-outage alerts.

Each *_cycle coroutine does one full pass and can be called on its own;
the *_task loops only sleep and call them.
"""

import asyncio
import logging
import re
from datetime import datetime
from typing import Dict, Any, Tuple, List, Optional, Callable, Awaitable

from aiogram import Bot
import pytz

from svitlo.bot_base import (
    BotContext,
    REGIONS,
    SCHEDULE_DATA_CACHE,
    DEFAULT_SCHEDULE_CHECK_INTERVAL,
    DEFAULT_POWER_CHECK_INTERVAL,
    ALERT_CHECK_INTERVAL_SECONDS,
    SETTING_SCHEDULE_INTERVAL,
    SETTING_POWER_INTERVAL,
    get_int_setting,
    is_bot_paused,
)
from svitlo.formatting import (
    get_schedule_hash,
    get_outage_intervals,
    format_power_message,
    build_alert_message,
)
from svitlo.users_db import (
    get_active_users,
    get_users_with_router_ip,
    update_user_schedule_hash,
    update_user_power_state,
    update_user_last_alert,
    add_power_event,
    resolve_format_settings,
)
from svitlo.publisher import publish_schedule, publish_text
from svitlo.log_context import user_context

KYIV_TZ = pytz.timezone('Europe/Kiev')

DEFAULT_ROUTER_PORT = 80
ROUTER_PROBE_TIMEOUT_SECONDS = 5

_HOSTNAME_RE = re.compile(r'^(?=.{1,253}$)([A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$')
_IPV4_RE = re.compile(r'^\d{1,3}(\.\d{1,3}){3}$')


# --- Router monitor helpers ---
def parse_router_address(text: Optional[str]) -> Optional[Tuple[str, int]]:
    """
    "192.168.1.1", "1.2.3.4:8080" or "home.example.net" -> (host, port).
    None if the text is not a usable address.
    """
    if not text:
        return None
    value = text.strip()
    if not value or ' ' in value:
        return None

    host, port = value, DEFAULT_ROUTER_PORT
    if value.count(':') == 1:
        host, port_str = value.split(':')
        if not port_str.isdigit():
            return None
        port = int(port_str)
        if not 0 < port < 65536:
            return None

    if _IPV4_RE.match(host):
        if any(int(part) > 255 for part in host.split('.')):
            return None
        return host, port
    if _HOSTNAME_RE.match(host) and '.' in host:
        return host, port
    return None


async def check_router_reachable(host: str, port: int, timeout: float = ROUTER_PROBE_TIMEOUT_SECONDS) -> bool:
    """TCP connect probe: reachable router means there is power at home."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    return dt if dt.tzinfo else KYIV_TZ.localize(dt)


# --- Schedule checker ---
async def fetch_schedules(ctx: BotContext, pairs: List[Tuple[str, str]]) -> Dict[Tuple[str, str], Dict[str, Any]]:
    """Fetches each (region, queue) once; failures are logged and left out."""
    logger = ctx.get_logger()
    results: Dict[Tuple[str, str], Dict[str, Any]] = {}
    for region, queue in pairs:
        try:
            data = await ctx.data_source.get_schedule(region, queue)
        except (ValueError, ConnectionError) as e:
            logger.warning(f"Schedule for {region}/{queue} unavailable: {e}")
            continue
        except Exception as e:
            logger.error(f"Unexpected error fetching {region}/{queue}: {e}", exc_info=True)
            continue
        SCHEDULE_DATA_CACHE[(region, queue)] = data
        results[(region, queue)] = data
    return results


async def run_schedule_check_cycle(bot: Bot, ctx: BotContext, now: Optional[datetime] = None) -> int:
    """
    Publishes the schedule to every active user whose stored hash differs
    from the current one. Returns the number of users notified.
    """
    logger = ctx.get_logger()
    conn = ctx.db_conn
    if conn is None:
        return 0
    if await is_bot_paused(conn):
        logger.debug("Schedule check skipped: bot is paused")
        return 0

    now = now or datetime.now(KYIV_TZ)
    users = await get_active_users(conn)
    if not users:
        return 0

    pairs = sorted({(u['region'], u['queue']) for u in users if u.get('region') and u.get('queue')})
    logger.debug(f"Schedule check: {len(users)} users, {len(pairs)} queues")
    schedules = await fetch_schedules(ctx, pairs)

    published = 0
    for user in users:
        data = schedules.get((user.get('region'), user.get('queue')))
        if data is None:
            continue

        with user_context(user['telegram_id']):
            schedule = data.get('schedule') or {}
            new_hash = get_schedule_hash(schedule)
            if new_hash == user.get('last_schedule_hash'):
                continue

            logger.info(f"Schedule changed for {user['region']}/{user['queue']} ({new_hash[:8]}), publishing")
            region_name = REGIONS.get(user['region'], user['region'])
            try:
                sent = await publish_schedule(bot, conn, user, schedule, region_name, ctx.font_path, now)
            except Exception as e:
                logger.error(f"Failed to publish schedule: {e}", exc_info=True)
                continue

            if sent:
                await update_user_schedule_hash(conn, user['telegram_id'], new_hash)
                published += 1

    return published


# --- Router power monitor ---
async def run_power_check_cycle(
    bot: Bot,
    ctx: BotContext,
    now: Optional[datetime] = None,
    probe: Callable[[str, int], Awaitable[bool]] = check_router_reachable
) -> int:
    """
    Probes every configured router. The first observation only stores the
    state; later changes are announced and finished outages recorded.
    Returns the number of state changes announced.
    """
    logger = ctx.get_logger()
    conn = ctx.db_conn
    if conn is None:
        return 0
    if await is_bot_paused(conn):
        logger.debug("Power check skipped: bot is paused")
        return 0

    now = now or datetime.now(KYIV_TZ)
    changes = 0
    for user in await get_users_with_router_ip(conn):
        with user_context(user['telegram_id']):
            address = parse_router_address(user['router_ip'])
            if address is None:
                logger.warning(f"Invalid router address {user['router_ip']!r}, skipping")
                continue

            try:
                reachable = await probe(*address)
            except Exception as e:
                logger.error(f"Router probe failed: {e}", exc_info=True)
                continue

            new_state = 'on' if reachable else 'off'
            old_state = user.get('power_state')
            if old_state == new_state:
                continue

            if old_state is None:
                logger.info(f"Initial power state: {new_state}")
                await update_user_power_state(conn, user['telegram_id'], new_state, now)
                continue

            settings = resolve_format_settings(user)
            changed_at = _parse_timestamp(user.get('power_changed_at'))
            if new_state == 'off':
                text = format_power_message(settings['power_off_text'], now)
            else:
                duration = (now - changed_at).total_seconds() if changed_at else None
                text = format_power_message(settings['power_on_text'], now, duration)
                if changed_at:
                    await add_power_event(conn, user['telegram_id'], 'outage', changed_at, int(duration))

            logger.info(f"Power state changed: {old_state} -> {new_state}")
            await publish_text(bot, user, text)
            await update_user_power_state(conn, user['telegram_id'], new_state, now)
            changes += 1

    return changes


# --- Alerts ---
def find_next_event(schedule: Dict[str, Any], now: datetime) -> Optional[Tuple[datetime, str]]:
    """Next outage start ('off') or end ('on') strictly after now."""
    events = []
    for start_dt, end_dt in get_outage_intervals(schedule, now):
        events.append((start_dt, 'off'))
        events.append((end_dt, 'on'))
    future = [event for event in events if event[0] > now]
    return min(future, key=lambda e: e[0]) if future else None


async def run_alert_check_cycle(bot: Bot, ctx: BotContext, now: Optional[datetime] = None) -> int:
    """
    Warns users lead_time minutes before the next outage start/end, once
    per event. Uses cached schedules only. Returns the number of alerts sent.
    """
    logger = ctx.get_logger()
    conn = ctx.db_conn
    if conn is None:
        return 0
    if await is_bot_paused(conn):
        return 0

    now = now or datetime.now(KYIV_TZ)
    sent = 0
    for user in await get_active_users(conn):
        if not user.get('alerts_enabled'):
            continue

        data = SCHEDULE_DATA_CACHE.get((user.get('region'), user.get('queue')))
        if not data:
            continue

        with user_context(user['telegram_id']):
            next_event = find_next_event(data.get('schedule') or {}, now)
            if next_event is None:
                continue

            event_dt, event_type = next_event
            minutes_left = (event_dt - now).total_seconds() / 60.0
            lead_time = user.get('alert_lead_time') or 0
            if not 0 < minutes_left <= lead_time:
                continue

            event_key = f"{event_type}:{event_dt.isoformat()}"
            if user.get('last_alert_event') == event_key:
                continue

            logger.info(f"Sending alert: {event_type} at {event_dt.strftime('%H:%M')} in {int(minutes_left)} min")
            if await publish_text(bot, user, build_alert_message(event_type, event_dt, max(1, int(round(minutes_left))))):
                await update_user_last_alert(conn, user['telegram_id'], event_key)
                sent += 1

    return sent


# --- Loops ---
async def schedule_checker_task(bot: Bot, ctx: BotContext) -> None:
    logger = ctx.get_logger()
    logger.info("Schedule checker started.")
    while True:
        try:
            await run_schedule_check_cycle(bot, ctx)
        except Exception as e:
            logger.error(f"Error in schedule_checker_task loop: {e}", exc_info=True)
        interval = await get_int_setting(ctx.db_conn, SETTING_SCHEDULE_INTERVAL, DEFAULT_SCHEDULE_CHECK_INTERVAL)
        await asyncio.sleep(interval)


async def power_monitor_task(bot: Bot, ctx: BotContext) -> None:
    logger = ctx.get_logger()
    logger.info("Power monitor started.")
    while True:
        try:
            await run_power_check_cycle(bot, ctx)
        except Exception as e:
            logger.error(f"Error in power_monitor_task loop: {e}", exc_info=True)
        interval = await get_int_setting(ctx.db_conn, SETTING_POWER_INTERVAL, DEFAULT_POWER_CHECK_INTERVAL)
        await asyncio.sleep(interval)


async def alert_checker_task(bot: Bot, ctx: BotContext) -> None:
    logger = ctx.get_logger()
    logger.info("Alert checker started.")
    while True:
        await asyncio.sleep(ALERT_CHECK_INTERVAL_SECONDS)
        try:
            await run_alert_check_cycle(bot, ctx)
        except Exception as e:
            logger.error(f"Error in alert_checker_task loop: {e}", exc_info=True)
