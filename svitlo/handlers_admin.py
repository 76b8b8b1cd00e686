"""
Admin panel: statistics and export, background task intervals, pause mode.

Every entry point checks is_admin(user, ctx.admin_ids, ctx.owner_id).
"""

import csv
import io
from datetime import datetime

from aiogram import types
from aiogram.types import CallbackQuery, BufferedInputFile
from aiogram.fsm.context import FSMContext

from svitlo.auth import is_admin
from svitlo.bot_base import (
    BotContext,
    KYIV_TZ,
    PAUSE_TEMPLATES,
    DEFAULT_PAUSE_MESSAGE,
    DEFAULT_SCHEDULE_CHECK_INTERVAL,
    DEFAULT_POWER_CHECK_INTERVAL,
    SETTING_SCHEDULE_INTERVAL,
    SETTING_POWER_INTERVAL,
    SETTING_BOT_PAUSED,
    SETTING_PAUSE_MESSAGE,
    SETTING_PAUSE_SHOW_SUPPORT,
    PauseMessageState,
    get_setting,
    set_setting,
    get_int_setting,
    is_bot_paused,
    get_pause_message,
)
from svitlo.formatting import build_admin_stats_message
from svitlo.handlers import show
from svitlo.keyboards import (
    SCHEDULE_INTERVALS,
    IP_INTERVALS,
    format_interval,
    get_admin_keyboard,
    get_admin_intervals_keyboard,
    get_schedule_interval_keyboard,
    get_ip_interval_keyboard,
    get_pause_menu_keyboard,
    get_pause_message_keyboard,
)
from svitlo.users_db import EXPORT_COLUMNS, get_user_counts, export_users_rows

ACCESS_DENIED_TEXT = "⛔ **Відмовлено в доступі.**"
ADMIN_PANEL_TEXT = "👑 **Адмін-панель**"
MAX_PAUSE_MESSAGE_LENGTH = 1000


def _is_admin(user_id, ctx: BotContext) -> bool:
    return is_admin(user_id, ctx.admin_ids, ctx.owner_id)


async def _deny_callback(callback: CallbackQuery, ctx: BotContext) -> bool:
    """True (and the user is told off) when the caller is not an admin."""
    if _is_admin(callback.from_user.id, ctx):
        return False
    ctx.get_logger().warning(f"Admin action {callback.data!r} denied")
    await callback.answer("⛔ Відмовлено в доступі", show_alert=True)
    return True


async def handle_admin_command(message: types.Message, ctx: BotContext) -> None:
    """Handle /admin command."""
    if not _is_admin(message.from_user.id, ctx):
        ctx.get_logger().warning("/admin denied")
        await message.answer(ACCESS_DENIED_TEXT)
        return
    await message.answer(ADMIN_PANEL_TEXT, reply_markup=get_admin_keyboard())


async def handle_admin_panel(callback: CallbackQuery, state: FSMContext, ctx: BotContext) -> None:
    if await _deny_callback(callback, ctx):
        return
    await state.clear()
    await callback.answer()
    await show(callback, ADMIN_PANEL_TEXT, get_admin_keyboard())


async def handle_admin_stats(callback: CallbackQuery, ctx: BotContext) -> None:
    if await _deny_callback(callback, ctx):
        return
    logger = ctx.get_logger()
    await callback.answer()
    try:
        counts = await get_user_counts(ctx.db_conn)
        paused = await is_bot_paused(ctx.db_conn)
    except Exception as e:
        logger.error(f"Error generating stats: {e}", exc_info=True)
        await callback.message.answer("❌ Помилка при формуванні статистики.")
        return

    logger.info("Stats requested (admin)")
    await show(callback, build_admin_stats_message(counts, paused), get_admin_keyboard())


async def handle_admin_export(callback: CallbackQuery, ctx: BotContext) -> None:
    """CSV export of all users."""
    if await _deny_callback(callback, ctx):
        return
    logger = ctx.get_logger()
    await callback.answer("⏳ Формую файл...")
    try:
        csv_buffer = io.StringIO()
        writer = csv.writer(csv_buffer)
        writer.writerow(EXPORT_COLUMNS)
        for row in await export_users_rows(ctx.db_conn):
            writer.writerow(row)

        timestamp = datetime.now(KYIV_TZ).strftime("%Y%m%d_%H%M%S")
        csv_file = BufferedInputFile(csv_buffer.getvalue().encode('utf-8'), filename=f"svitlo_users_export_{timestamp}.csv")
        await callback.message.answer_document(csv_file, caption="📁 Експорт користувачів")
        logger.info("Users export sent (admin)")
    except Exception as e:
        logger.error(f"Error exporting users: {e}", exc_info=True)
        await callback.message.answer("❌ Помилка при експорті користувачів.")


# --- Intervals ---
async def _current_intervals(ctx: BotContext):
    schedule_interval = await get_int_setting(ctx.db_conn, SETTING_SCHEDULE_INTERVAL, DEFAULT_SCHEDULE_CHECK_INTERVAL)
    ip_interval = await get_int_setting(ctx.db_conn, SETTING_POWER_INTERVAL, DEFAULT_POWER_CHECK_INTERVAL)
    return schedule_interval, ip_interval


async def handle_admin_intervals(callback: CallbackQuery, ctx: BotContext) -> None:
    if await _deny_callback(callback, ctx):
        return
    await callback.answer()
    schedule_interval, ip_interval = await _current_intervals(ctx)
    await show(
        callback,
        "⏱ **Інтервали перевірок**\n\n"
        f"📅 Перевірка графіків: кожні {format_interval(schedule_interval)}\n"
        f"📡 Перевірка роутерів: кожні {format_interval(ip_interval)}",
        get_admin_intervals_keyboard(schedule_interval, ip_interval)
    )


async def handle_admin_interval_menu(callback: CallbackQuery, ctx: BotContext) -> None:
    """admin_interval_schedule / admin_interval_ip"""
    if await _deny_callback(callback, ctx):
        return
    await callback.answer()
    schedule_interval, ip_interval = await _current_intervals(ctx)
    if callback.data == "admin_interval_schedule":
        await show(callback, "📅 **Як часто перевіряти графіки?**", get_schedule_interval_keyboard(schedule_interval))
    else:
        await show(callback, "📡 **Як часто перевіряти роутери?**", get_ip_interval_keyboard(ip_interval))


async def handle_admin_set_interval(callback: CallbackQuery, ctx: BotContext) -> None:
    """admin_schedule_<seconds> / admin_ip_<seconds>"""
    if await _deny_callback(callback, ctx):
        return

    if callback.data.startswith("admin_schedule_"):
        key, allowed, raw = SETTING_SCHEDULE_INTERVAL, SCHEDULE_INTERVALS, callback.data.removeprefix("admin_schedule_")
    else:
        key, allowed, raw = SETTING_POWER_INTERVAL, IP_INTERVALS, callback.data.removeprefix("admin_ip_")

    try:
        seconds = int(raw)
    except ValueError:
        await callback.answer()
        return
    if seconds not in allowed:
        await callback.answer()
        return

    if not await set_setting(ctx.db_conn, key, seconds):
        await callback.answer("❌ Не вдалося зберегти", show_alert=True)
        return

    ctx.get_logger().info(f"Admin set {key} = {seconds}s")
    await handle_admin_intervals(callback, ctx)


# --- Pause mode ---
async def build_pause_menu_text(ctx: BotContext) -> str:
    paused = await is_bot_paused(ctx.db_conn)
    status = "⏸ **Бот на паузі**" if paused else "▶️ **Бот працює**"
    return (
        f"{status}\n\n"
        "На паузі бот не публікує графіки, не перевіряє роутери та не підключає нові канали.\n\n"
        f"Повідомлення для користувачів:\n{await get_pause_message(ctx.db_conn)}"
    )


async def handle_admin_pause(callback: CallbackQuery, state: FSMContext, ctx: BotContext) -> None:
    if await _deny_callback(callback, ctx):
        return
    await state.clear()
    await callback.answer()
    await show(callback, await build_pause_menu_text(ctx), get_pause_menu_keyboard(await is_bot_paused(ctx.db_conn)))


async def show_pause_message_menu(callback: CallbackQuery, ctx: BotContext) -> None:
    show_support = await get_setting(ctx.db_conn, SETTING_PAUSE_SHOW_SUPPORT, "0") == "1"
    current = await get_setting(ctx.db_conn, SETTING_PAUSE_MESSAGE, DEFAULT_PAUSE_MESSAGE)
    await show(
        callback,
        f"💬 **Повідомлення паузи**\n\nЗараз:\n{current}\n\nОберіть шаблон або введіть свій текст.",
        get_pause_message_keyboard(show_support)
    )


async def handle_pause_callback(callback: CallbackQuery, state: FSMContext, ctx: BotContext) -> None:
    """pause_toggle, pause_message, pause_toggle_support, pause_template_<n>, pause_custom"""
    if await _deny_callback(callback, ctx):
        return
    logger = ctx.get_logger()
    data = callback.data

    if data == "pause_toggle":
        paused = not await is_bot_paused(ctx.db_conn)
        await set_setting(ctx.db_conn, SETTING_BOT_PAUSED, "1" if paused else "0")
        logger.info(f"Bot {'paused' if paused else 'resumed'} by admin")
        await callback.answer("⏸ Паузу увімкнено" if paused else "▶️ Роботу відновлено")
        await show(callback, await build_pause_menu_text(ctx), get_pause_menu_keyboard(paused))
    elif data == "pause_message":
        await callback.answer()
        await show_pause_message_menu(callback, ctx)
    elif data == "pause_toggle_support":
        show_support = await get_setting(ctx.db_conn, SETTING_PAUSE_SHOW_SUPPORT, "0") == "1"
        await set_setting(ctx.db_conn, SETTING_PAUSE_SHOW_SUPPORT, "0" if show_support else "1")
        await callback.answer()
        await show_pause_message_menu(callback, ctx)
    elif data.startswith("pause_template_"):
        try:
            index = int(data.removeprefix("pause_template_"))
        except ValueError:
            await callback.answer()
            return
        if not 1 <= index <= len(PAUSE_TEMPLATES):
            await callback.answer()
            return
        await set_setting(ctx.db_conn, SETTING_PAUSE_MESSAGE, PAUSE_TEMPLATES[index - 1])
        await callback.answer("✅ Шаблон обрано")
        await show_pause_message_menu(callback, ctx)
    elif data == "pause_custom":
        await state.set_state(PauseMessageState.waiting_for_text)
        await callback.answer()
        await show(callback, "✏️ Надішліть текст повідомлення паузи. /cancel для скасування.")
    else:
        await callback.answer()


async def handle_pause_custom_text(message: types.Message, state: FSMContext, ctx: BotContext) -> None:
    if not _is_admin(message.from_user.id, ctx):
        await state.clear()
        return

    text = (message.text or "").strip()
    if not text:
        await message.answer("⚠️ Надішліть текст повідомлення.")
        return
    if len(text) > MAX_PAUSE_MESSAGE_LENGTH:
        await message.answer(f"⚠️ Занадто довгий текст (максимум {MAX_PAUSE_MESSAGE_LENGTH} символів).")
        return

    await set_setting(ctx.db_conn, SETTING_PAUSE_MESSAGE, text)
    await state.clear()
    ctx.get_logger().info("Custom pause message set by admin")
    await message.answer("✅ Повідомлення паузи збережено.", reply_markup=get_pause_menu_keyboard(await is_bot_paused(ctx.db_conn)))
