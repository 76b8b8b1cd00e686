"""
Inline keyboards. Callback data prefixes are what the routers in
svitlo.bot dispatch on.
"""

from typing import List, Dict, Any, Optional, Iterable

from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton

from svitlo.bot_base import REGIONS, QUEUES, PAUSE_TEMPLATES
from svitlo.wizard import REGION_PREFIX, QUEUE_PREFIX, CONFIRM_DATA, BACK_TO_REGION_DATA

ALERT_LEAD_TIMES = [5, 10, 15, 30, 60]
SCHEDULE_INTERVALS = [60, 300, 600, 900, 1800]
IP_INTERVALS = [30, 60, 120, 300, 600]


def _button(text: str, callback_data: str) -> InlineKeyboardButton:
    return InlineKeyboardButton(text=text, callback_data=callback_data)


def _nav_row(back_to: Optional[str] = "menu_settings") -> List[InlineKeyboardButton]:
    """← Назад + ⤴︎ Меню"""
    row = []
    if back_to:
        row.append(_button("← Назад", back_to))
    row.append(_button("⤴︎ Меню", "back_to_main"))
    return row


def format_interval(seconds: int) -> str:
    if seconds % 3600 == 0:
        return f"{seconds // 3600} год"
    if seconds % 60 == 0:
        return f"{seconds // 60} хв"
    return f"{seconds} с"


# --- Main menu ---
def get_main_menu_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [_button("📅 Графік", "menu_schedule")],
        [_button("📊 Статистика", "menu_stats"), _button("⚙️ Налаштування", "menu_settings")],
    ])


def get_menu_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[_nav_row(None)])


# --- Setup wizard ---
def get_region_keyboard(regions: Optional[Dict[str, str]] = None, allow_cancel: bool = False) -> InlineKeyboardMarkup:
    regions = regions or REGIONS
    buttons = [[_button(name, f"{REGION_PREFIX}{code}")] for code, name in regions.items()]
    if allow_cancel:
        buttons.append([_button("❌ Скасувати", "wizard_cancel")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def get_queue_keyboard(queues: Optional[Iterable[str]] = None, per_row: int = 3) -> InlineKeyboardMarkup:
    queues = list(queues or QUEUES)
    buttons = []
    for i in range(0, len(queues), per_row):
        buttons.append([_button(q, f"{QUEUE_PREFIX}{q}") for q in queues[i:i + per_row]])
    buttons.append([_button("← Назад", BACK_TO_REGION_DATA)])
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def get_confirm_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [_button("✅ Підтвердити", CONFIRM_DATA)],
        [_button("← Змінити регіон", BACK_TO_REGION_DATA)],
    ])


def get_wizard_notify_target_keyboard() -> InlineKeyboardMarkup:
    """Where to send notifications, asked right after the first setup."""
    return InlineKeyboardMarkup(inline_keyboard=[
        [_button("📱 Сповіщати в боті", "wizard_notify_bot")],
        [_button("📺 Сповіщати в каналі", "wizard_notify_channel")],
    ])


def get_region_queue_updated_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[_nav_row("menu_settings")])


# --- Settings ---
def get_settings_keyboard(is_admin: bool = False) -> InlineKeyboardMarkup:
    buttons = [
        [_button("📍 Регіон і черга", "settings_region")],
        [_button("🔔 Сповіщення", "settings_alerts"), _button("📺 Канал", "settings_channel")],
        [_button("📨 Куди надсилати", "settings_notify"), _button("🎨 Формат", "settings_format")],
        [_button("📡 IP роутера", "settings_ip")],
        [_button("🗑 Видалити мої дані", "settings_delete")],
    ]
    if is_admin:
        buttons.append([_button("👑 Адмін-панель", "admin_panel")])
    buttons.append([_button("⤴︎ Меню", "back_to_main")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def get_alerts_settings_keyboard(enabled: bool, lead_time: int) -> InlineKeyboardMarkup:
    toggle_text = "🔕 Вимкнути сповіщення" if enabled else "🔔 Увімкнути сповіщення"
    return InlineKeyboardMarkup(inline_keyboard=[
        [_button(toggle_text, "alert_toggle")],
        [_button(f"⏰ Попереджати за {lead_time} хв", "alert_time_menu")],
        _nav_row("menu_settings"),
    ])


def get_alert_time_keyboard(current: int) -> InlineKeyboardMarkup:
    row = [
        _button(f"{'✓ ' if minutes == current else ''}{minutes} хв", f"alert_time_{minutes}")
        for minutes in ALERT_LEAD_TIMES
    ]
    return InlineKeyboardMarkup(inline_keyboard=[row, _nav_row("settings_alerts")])


def get_notify_target_keyboard(current: str, has_channel: bool) -> InlineKeyboardMarkup:
    options = [("bot", "📱 Лише бот")]
    if has_channel:
        options += [("channel", "📺 Лише канал"), ("both", "📱+📺 Бот і канал")]
    buttons = [
        [_button(f"{'✓ ' if target == current else ''}{label}", f"notify_target_{target}")]
        for target, label in options
    ]
    buttons.append(_nav_row("menu_settings"))
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def get_channel_keyboard(user: Dict[str, Any]) -> InlineKeyboardMarkup:
    buttons = []
    if user.get('channel_id'):
        buttons.append([_button("❌ Відключити канал", "channel_disconnect")])
    else:
        buttons.append([_button("➕ Підключити канал", "channel_connect")])
    buttons.append(_nav_row("menu_settings"))
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def get_pending_channels_keyboard(channels: List[Dict[str, Any]]) -> InlineKeyboardMarkup:
    buttons = [
        [_button(f"📺 {channel.get('title') or channel['channel_id']}", f"channel_confirm_{channel['channel_id']}")]
        for channel in channels
    ]
    buttons.append(_nav_row("settings_channel"))
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def get_format_settings_keyboard(user: Dict[str, Any]) -> InlineKeyboardMarkup:
    delete_mark = "✅" if user.get('delete_old_message') else "⬜"
    picture_mark = "✅" if user.get('picture_only') else "⬜"
    return InlineKeyboardMarkup(inline_keyboard=[
        [_button("━━ ГРАФІК ВІДКЛЮЧЕНЬ ━━", "format_noop")],
        [_button("✏️ Заголовок", "format_caption"), _button("✏️ Формат періодів", "format_periods")],
        [_button(f"{delete_mark} Видаляти попередній пост", "format_toggle_delete")],
        [_button(f"{picture_mark} Лише картинка", "format_toggle_picture")],
        [_button("━━ ФАКТИЧНИЙ СТАН ━━", "format_noop")],
        [_button("✏️ Світло зникло", "format_power_off"), _button("✏️ Світло з'явилося", "format_power_on")],
        [_button("🧪 Тестова публікація", "format_test")],
        [_button("↺ Скинути до стандартних", "format_reset")],
        _nav_row("menu_settings"),
    ])


def get_format_edit_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [_button("↺ Стандартний текст", "format_default")],
        [_button("❌ Скасувати", "format_cancel")],
    ])


def get_test_publication_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [_button("📅 Графік", "test_schedule")],
        [_button("🔴 Світло зникло", "test_power_off"), _button("🟢 Світло з'явилося", "test_power_on")],
        _nav_row("settings_format"),
    ])


def get_router_ip_keyboard(has_ip: bool) -> InlineKeyboardMarkup:
    buttons = []
    if has_ip:
        buttons.append([_button("🗑 Видалити IP", "ip_clear")])
    buttons.append(_nav_row("menu_settings"))
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def get_delete_confirm_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [_button("🗑 Так, видалити", "delete_confirm")],
        [_button("← Скасувати", "menu_settings")],
    ])


# --- Admin ---
def get_admin_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [_button("📊 Статистика", "admin_stats"), _button("📥 Експорт CSV", "admin_export")],
        [_button("⏱ Інтервали", "admin_intervals")],
        [_button("⏸ Режим паузи", "admin_pause")],
        [_button("⤴︎ Меню", "back_to_main")],
    ])


def get_admin_intervals_keyboard(schedule_interval: int, ip_interval: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [_button(f"📅 Графіки: {format_interval(schedule_interval)}", "admin_interval_schedule")],
        [_button(f"📡 Роутери: {format_interval(ip_interval)}", "admin_interval_ip")],
        [_button("← Назад", "admin_panel")],
    ])


def get_schedule_interval_keyboard(current: int) -> InlineKeyboardMarkup:
    row = [
        _button(f"{'✓ ' if seconds == current else ''}{format_interval(seconds)}", f"admin_schedule_{seconds}")
        for seconds in SCHEDULE_INTERVALS
    ]
    return InlineKeyboardMarkup(inline_keyboard=[row, [_button("← Назад", "admin_intervals")]])


def get_ip_interval_keyboard(current: int) -> InlineKeyboardMarkup:
    row = [
        _button(f"{'✓ ' if seconds == current else ''}{format_interval(seconds)}", f"admin_ip_{seconds}")
        for seconds in IP_INTERVALS
    ]
    return InlineKeyboardMarkup(inline_keyboard=[row, [_button("← Назад", "admin_intervals")]])


def get_pause_menu_keyboard(is_paused: bool) -> InlineKeyboardMarkup:
    toggle_text = "▶️ Відновити роботу" if is_paused else "⏸ Поставити на паузу"
    return InlineKeyboardMarkup(inline_keyboard=[
        [_button(toggle_text, "pause_toggle")],
        [_button("💬 Повідомлення паузи", "pause_message")],
        [_button("← Назад", "admin_panel")],
    ])


def get_pause_message_keyboard(show_support: bool) -> InlineKeyboardMarkup:
    buttons = [
        [_button(template[:40], f"pause_template_{index}")]
        for index, template in enumerate(PAUSE_TEMPLATES, start=1)
    ]
    buttons.append([_button("✏️ Свій текст", "pause_custom")])
    support_mark = "✅" if show_support else "⬜"
    buttons.append([_button(f"{support_mark} Показувати контакт підтримки", "pause_toggle_support")])
    buttons.append([_button("← Назад", "admin_pause")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)
