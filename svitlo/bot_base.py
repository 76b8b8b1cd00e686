"""
Shared bot foundation: configuration constants, BotContext, FSM states,
database connection and the key/value settings store.
"""

import os
import logging
import aiosqlite
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Tuple, Optional

import pytz
from aiogram.fsm.state import State, StatesGroup

from svitlo.wizard import OnboardingWizard, WizardSessionStore
from svitlo.users_db import SqliteUserRepository

KYIV_TZ = pytz.timezone('Europe/Kiev')

# --- Regions and queues offered by the setup wizard ---
REGIONS: Dict[str, str] = {
    "kyiv": "Київ",
    "kyiv-region": "Київщина",
    "dnipro": "Дніпропетровщина",
    "odesa": "Одещина",
}

QUEUES: List[str] = [f"{group}.{sub}" for group in range(1, 7) for sub in (1, 2)]

# --- Configuration Constants (with environment variable fallback) ---
# Pause between "settings saved" and the main menu
POST_SETUP_DELAY_SECONDS = float(os.getenv("POST_SETUP_DELAY_SECONDS", "4"))

# Background task intervals; admins can override them from the admin panel
DEFAULT_SCHEDULE_CHECK_INTERVAL = int(os.getenv("DEFAULT_SCHEDULE_CHECK_INTERVAL", str(5 * 60)))
DEFAULT_POWER_CHECK_INTERVAL = int(os.getenv("DEFAULT_POWER_CHECK_INTERVAL", str(2 * 60)))
ALERT_CHECK_INTERVAL_SECONDS = 60

# --- Settings keys ---
SETTING_SCHEDULE_INTERVAL = "schedule_check_interval"
SETTING_POWER_INTERVAL = "power_check_interval"
SETTING_BOT_PAUSED = "bot_paused"
SETTING_PAUSE_MESSAGE = "pause_message"
SETTING_PAUSE_SHOW_SUPPORT = "pause_show_support"

DEFAULT_PAUSE_MESSAGE = "🔧 Бот тимчасово на технічному обслуговуванні. Спробуйте пізніше."
SUPPORT_HINT = "💬 Якщо маєте питання, напишіть адміністратору бота."

PAUSE_TEMPLATES: List[str] = [
    DEFAULT_PAUSE_MESSAGE,
    "⏸ Бот на паузі. Ми оновлюємо сервіс і скоро повернемось.",
    "🔄 Триває оновлення. Підключення нових каналів тимчасово недоступне.",
    "⚠️ Джерело графіків недоступне. Публікації відновляться автоматично.",
    "🛠 Планові роботи. Дякуємо за терпіння!",
]

# --- Global Caches ---
# (region, queue) -> last fetched ScheduleData
SCHEDULE_DATA_CACHE: Dict[Tuple[str, str], Dict[str, Any]] = {}


@dataclass
class BotContext:
    """
    Everything the handlers need, passed explicitly instead of module globals.
    """
    bot_name: str = "СвітлоБот"
    db_conn: Any = None                     # aiosqlite.Connection
    admin_ids: List[str] = field(default_factory=list)
    owner_id: Optional[str] = None
    sessions: WizardSessionStore = field(default_factory=WizardSessionStore)
    # channel_id -> {"channel_id", "title", "added_by", "added_at"}
    pending_channels: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    data_source: Any = None                 # ScheduleDataSource
    font_path: str = ""
    post_setup_delay: float = POST_SETUP_DELAY_SECONDS
    logger: Optional[logging.Logger] = None

    def get_logger(self) -> logging.Logger:
        return self.logger or logging.getLogger("svitlo")

    def wizard(self) -> OnboardingWizard:
        """Wizard bound to this context's session store and database."""
        return OnboardingWizard(
            self.sessions,
            SqliteUserRepository(self.db_conn),
            regions=REGIONS.keys(),
            queues=QUEUES,
            logger=self.get_logger(),
        )


# --- FSM States (free-text conversations) ---
class FormatTextState(StatesGroup):
    """Editing one of the publication templates"""
    waiting_for_text = State()


class RouterIpState(StatesGroup):
    """Entering the router address for power monitoring"""
    waiting_for_ip = State()


class PauseMessageState(StatesGroup):
    """Admin types a custom pause message"""
    waiting_for_text = State()


async def init_db(db_path: str) -> aiosqlite.Connection:
    """
    Open the database connection.

    Schema is managed by the migration runner:
        python -m svitlo.migrate --db-path <path>
    """
    db_dir = os.path.dirname(db_path)
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    await conn.execute("PRAGMA journal_mode=WAL;")

    try:
        cursor = await conn.execute("SELECT MAX(version) FROM schema_version")
        version = (await cursor.fetchone())[0]
        if version:
            logging.info(f"Database connected at {db_path} (schema version: {version})")
        else:
            logging.warning(f"Database at {db_path} has no migrations applied. Run: python -m svitlo.migrate --db-path {db_path}")
    except aiosqlite.Error:
        logging.warning(f"Database at {db_path} may not be migrated. Run: python -m svitlo.migrate --db-path {db_path}")

    return conn


# --- Settings store ---
async def get_setting(conn: aiosqlite.Connection, key: str, default: Optional[str] = None) -> Optional[str]:
    """Returns stored value for key, or default if missing."""
    if not conn:
        return default

    try:
        async with conn.execute("SELECT value FROM settings WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        if row is None or row[0] is None:
            return default
        return row[0]
    except Exception as e:
        logging.error(f"Failed to read setting {key}: {e}")
        return default


async def set_setting(conn: aiosqlite.Connection, key: str, value: Any) -> bool:
    if not conn:
        return False

    now = datetime.now(KYIV_TZ).isoformat()
    try:
        await conn.execute("""
            INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """, (key, str(value), now))
        await conn.commit()
        return True
    except Exception as e:
        logging.error(f"Failed to save setting {key}: {e}")
        return False


async def get_int_setting(conn: aiosqlite.Connection, key: str, default: int) -> int:
    value = await get_setting(conn, key)
    try:
        return int(value) if value is not None else default
    except ValueError:
        logging.warning(f"Setting {key} has non-integer value {value!r}, using {default}")
        return default


async def is_bot_paused(conn: aiosqlite.Connection) -> bool:
    return await get_setting(conn, SETTING_BOT_PAUSED, "0") == "1"


async def get_pause_message(conn: aiosqlite.Connection) -> str:
    """Pause text shown to users, with the support hint when enabled."""
    message = await get_setting(conn, SETTING_PAUSE_MESSAGE, DEFAULT_PAUSE_MESSAGE)
    if await get_setting(conn, SETTING_PAUSE_SHOW_SUPPORT, "0") == "1":
        message = f"{message}\n\n{SUPPORT_HINT}"
    return message


def format_user_info(user) -> str:
    """Formats Telegram user for logging."""
    username = user.username or "N/A"
    full_name = f"{user.first_name or ''} {user.last_name or ''}".strip() or "N/A"
    return f"{user.id} (@{username}) {full_name}"


def get_display_name(user) -> str:
    """Name stored with the user record: username, else first name, else the id."""
    if user.username:
        return user.username
    return (user.first_name or "").strip() or str(user.id)
