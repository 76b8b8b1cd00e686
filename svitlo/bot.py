"""
Svitlo Telegram bot: outage schedules for a region/queue, channel
publishing and router-based power monitoring.

Run: python -m svitlo.bot
"""

import os
import asyncio
import logging

from aiogram import Bot, Dispatcher, types, F
from aiogram.filters import Command
from aiogram.types import BotCommand, CallbackQuery, ChatMemberUpdated
from aiogram.client.default import DefaultBotProperties
from aiogram.fsm.context import FSMContext

from svitlo.auth import parse_admin_ids
from svitlo.bot_base import (
    init_db,
    BotContext,
    FormatTextState,
    RouterIpState,
    PauseMessageState,
)
from svitlo.data_source import get_data_source
from svitlo.logging_config import setup_logging
from svitlo.middleware import UserContextMiddleware
from svitlo.migrate import migrate
from svitlo.wizard import is_wizard_callback
from svitlo import handlers, handlers_admin, handlers_channel
from svitlo.tasks import schedule_checker_task, power_monitor_task, alert_checker_task

# --- Configuration ---
BOT_TOKEN = os.getenv("BOT_TOKEN")
OWNER_ID = os.getenv("OWNER_ID")
ADMIN_IDS = parse_admin_ids(os.getenv("ADMIN_IDS", ""))
DB_PATH = os.getenv("DB_PATH", os.path.join(os.path.dirname(__file__), "..", "data", "svitlo.db"))
FONT_PATH = os.getenv("FONT_PATH", os.path.join(os.path.dirname(__file__), "..", "resources", "DejaVuSans.ttf"))
LOG_DIR = os.getenv("LOG_DIR")
AUTO_MIGRATE = os.getenv("AUTO_MIGRATE", "1") == "1"

logger = setup_logging("svitlo", LOG_DIR)

# Dispatcher
dp = Dispatcher()

ctx: BotContext = None


def get_ctx() -> BotContext:
    global ctx
    if ctx is None:
        ctx = BotContext(
            admin_ids=ADMIN_IDS,
            owner_id=OWNER_ID,
            data_source=get_data_source(),
            font_path=FONT_PATH,
            logger=logger,
        )
    return ctx


# --- Commands ---
async def command_start_handler(message: types.Message, state: FSMContext) -> None:
    await handlers.handle_start_command(message, state, get_ctx())


async def command_cancel_handler(message: types.Message, state: FSMContext) -> None:
    await handlers.handle_cancel(message, state, get_ctx())


async def command_schedule_handler(message: types.Message) -> None:
    await handlers.handle_schedule_command(message, get_ctx())


async def command_admin_handler(message: types.Message) -> None:
    await handlers_admin.handle_admin_command(message, get_ctx())


# --- Free-text input (FSM) ---
async def format_text_handler(message: types.Message, state: FSMContext) -> None:
    await handlers.handle_format_text(message, state, get_ctx())


async def router_ip_handler(message: types.Message, state: FSMContext) -> None:
    await handlers.handle_router_ip_input(message, state, get_ctx())


async def pause_text_handler(message: types.Message, state: FSMContext) -> None:
    await handlers_admin.handle_pause_custom_text(message, state, get_ctx())


# --- Callbacks ---
async def wizard_callback(callback: CallbackQuery) -> None:
    await handlers.handle_wizard_callback(callback, get_ctx())


async def wizard_cancel_callback(callback: CallbackQuery, state: FSMContext) -> None:
    await handlers.handle_wizard_cancel(callback, state, get_ctx())


async def wizard_notify_callback(callback: CallbackQuery) -> None:
    await handlers.handle_wizard_notify_target(callback, get_ctx())


async def back_to_main_callback(callback: CallbackQuery, state: FSMContext) -> None:
    await handlers.handle_back_to_main(callback, state, get_ctx())


async def menu_schedule_callback(callback: CallbackQuery) -> None:
    await handlers.handle_menu_schedule(callback, get_ctx())


async def menu_stats_callback(callback: CallbackQuery) -> None:
    await handlers.handle_menu_stats(callback, get_ctx())


async def menu_settings_callback(callback: CallbackQuery, state: FSMContext) -> None:
    await handlers.handle_menu_settings(callback, state, get_ctx())


async def settings_region_callback(callback: CallbackQuery) -> None:
    await handlers.handle_settings_region(callback, get_ctx())


async def settings_alerts_callback(callback: CallbackQuery) -> None:
    await handlers.handle_settings_alerts(callback, get_ctx())


async def alert_toggle_callback(callback: CallbackQuery) -> None:
    await handlers.handle_alert_toggle(callback, get_ctx())


async def alert_time_menu_callback(callback: CallbackQuery) -> None:
    await handlers.handle_alert_time_menu(callback, get_ctx())


async def alert_time_callback(callback: CallbackQuery) -> None:
    await handlers.handle_alert_time(callback, get_ctx())


async def settings_notify_callback(callback: CallbackQuery) -> None:
    await handlers.handle_settings_notify(callback, get_ctx())


async def notify_target_callback(callback: CallbackQuery) -> None:
    await handlers.handle_notify_target(callback, get_ctx())


async def settings_format_callback(callback: CallbackQuery, state: FSMContext) -> None:
    await handlers.handle_settings_format(callback, state, get_ctx())


async def format_callback(callback: CallbackQuery, state: FSMContext) -> None:
    await handlers.handle_format_callback(callback, state, get_ctx())


async def test_publication_callback(callback: CallbackQuery) -> None:
    await handlers.handle_test_publication(callback, get_ctx())


async def settings_ip_callback(callback: CallbackQuery, state: FSMContext) -> None:
    await handlers.handle_settings_ip(callback, state, get_ctx())


async def ip_clear_callback(callback: CallbackQuery, state: FSMContext) -> None:
    await handlers.handle_ip_clear(callback, state, get_ctx())


async def settings_delete_callback(callback: CallbackQuery) -> None:
    await handlers.handle_settings_delete(callback, get_ctx())


async def delete_confirm_callback(callback: CallbackQuery, state: FSMContext) -> None:
    await handlers.handle_delete_confirm(callback, state, get_ctx())


async def settings_channel_callback(callback: CallbackQuery) -> None:
    await handlers_channel.handle_settings_channel(callback, get_ctx())


async def channel_connect_callback(callback: CallbackQuery) -> None:
    await handlers_channel.handle_channel_connect(callback, get_ctx())


async def channel_confirm_callback(callback: CallbackQuery) -> None:
    await handlers_channel.handle_channel_confirm(callback, get_ctx())


async def channel_disconnect_callback(callback: CallbackQuery) -> None:
    await handlers_channel.handle_channel_disconnect(callback, get_ctx())


async def my_chat_member_handler(update: ChatMemberUpdated, bot: Bot) -> None:
    await handlers_channel.handle_my_chat_member(update, bot, get_ctx())


async def admin_panel_callback(callback: CallbackQuery, state: FSMContext) -> None:
    await handlers_admin.handle_admin_panel(callback, state, get_ctx())


async def admin_stats_callback(callback: CallbackQuery) -> None:
    await handlers_admin.handle_admin_stats(callback, get_ctx())


async def admin_export_callback(callback: CallbackQuery) -> None:
    await handlers_admin.handle_admin_export(callback, get_ctx())


async def admin_intervals_callback(callback: CallbackQuery) -> None:
    await handlers_admin.handle_admin_intervals(callback, get_ctx())


async def admin_interval_menu_callback(callback: CallbackQuery) -> None:
    await handlers_admin.handle_admin_interval_menu(callback, get_ctx())


async def admin_set_interval_callback(callback: CallbackQuery) -> None:
    await handlers_admin.handle_admin_set_interval(callback, get_ctx())


async def admin_pause_callback(callback: CallbackQuery, state: FSMContext) -> None:
    await handlers_admin.handle_admin_pause(callback, state, get_ctx())


async def pause_callback(callback: CallbackQuery, state: FSMContext) -> None:
    await handlers_admin.handle_pause_callback(callback, state, get_ctx())


def register_handlers(dispatcher: Dispatcher) -> None:
    middleware = UserContextMiddleware()
    dispatcher.message.middleware(middleware)
    dispatcher.callback_query.middleware(middleware)
    dispatcher.my_chat_member.middleware(middleware)

    # Commands (cancel must be first)
    dispatcher.message.register(command_cancel_handler, Command("cancel"))
    dispatcher.message.register(command_start_handler, Command("start"))
    dispatcher.message.register(command_schedule_handler, Command("schedule"))
    dispatcher.message.register(command_admin_handler, Command("admin"))

    dispatcher.message.register(format_text_handler, FormatTextState.waiting_for_text, F.text)
    dispatcher.message.register(router_ip_handler, RouterIpState.waiting_for_ip, F.text)
    dispatcher.message.register(pause_text_handler, PauseMessageState.waiting_for_text, F.text)

    cq = dispatcher.callback_query
    cq.register(wizard_callback, F.data.func(is_wizard_callback))
    cq.register(wizard_cancel_callback, F.data == "wizard_cancel")
    cq.register(wizard_notify_callback, F.data.startswith("wizard_notify_"))
    cq.register(back_to_main_callback, F.data == "back_to_main")
    cq.register(menu_schedule_callback, F.data == "menu_schedule")
    cq.register(menu_stats_callback, F.data == "menu_stats")
    cq.register(menu_settings_callback, F.data == "menu_settings")

    cq.register(settings_region_callback, F.data == "settings_region")
    cq.register(settings_alerts_callback, F.data == "settings_alerts")
    cq.register(alert_toggle_callback, F.data == "alert_toggle")
    cq.register(alert_time_menu_callback, F.data == "alert_time_menu")
    cq.register(alert_time_callback, F.data.startswith("alert_time_"))
    cq.register(settings_notify_callback, F.data == "settings_notify")
    cq.register(notify_target_callback, F.data.startswith("notify_target_"))
    cq.register(settings_format_callback, F.data == "settings_format")
    cq.register(format_callback, F.data.startswith("format_"))
    cq.register(test_publication_callback, F.data.startswith("test_"))
    cq.register(settings_ip_callback, F.data == "settings_ip")
    cq.register(ip_clear_callback, F.data == "ip_clear")
    cq.register(settings_delete_callback, F.data == "settings_delete")
    cq.register(delete_confirm_callback, F.data == "delete_confirm")

    cq.register(settings_channel_callback, F.data == "settings_channel")
    cq.register(channel_connect_callback, F.data == "channel_connect")
    cq.register(channel_confirm_callback, F.data.startswith("channel_confirm_"))
    cq.register(channel_disconnect_callback, F.data == "channel_disconnect")
    dispatcher.my_chat_member.register(my_chat_member_handler)

    cq.register(admin_panel_callback, F.data == "admin_panel")
    cq.register(admin_stats_callback, F.data == "admin_stats")
    cq.register(admin_export_callback, F.data == "admin_export")
    cq.register(admin_intervals_callback, F.data == "admin_intervals")
    cq.register(admin_interval_menu_callback, F.data.startswith("admin_interval_"))
    cq.register(admin_set_interval_callback, F.data.startswith("admin_schedule_") | F.data.startswith("admin_ip_"))
    cq.register(admin_pause_callback, F.data == "admin_pause")
    cq.register(pause_callback, F.data.startswith("pause_"))


async def set_default_commands(bot: Bot):
    """Sets the command list shown in the Telegram menu."""
    commands = [
        BotCommand(command="start", description="Головне меню / налаштування"),
        BotCommand(command="schedule", description="Графік відключень"),
        BotCommand(command="cancel", description="Скасувати поточну дію"),
        BotCommand(command="admin", description="👑 Адмін-панель"),
    ]
    try:
        await bot.set_my_commands(commands)
        logger.info("Default commands set successfully.")
    except Exception as e:
        logger.error(f"Failed to set default commands: {e}")


async def main():
    if not BOT_TOKEN:
        logger.error("BOT_TOKEN is not set. Exiting.")
        return

    if AUTO_MIGRATE and not migrate(DB_PATH):
        logger.error(f"Database migration failed for {DB_PATH}. Exiting.")
        return

    bot_ctx = get_ctx()
    try:
        bot_ctx.db_conn = await init_db(DB_PATH)
    except Exception as e:
        logger.error(f"Failed to initialize database at {DB_PATH}: {e}", exc_info=True)
        return

    bot = Bot(token=BOT_TOKEN, default=DefaultBotProperties(parse_mode="Markdown"))
    await set_default_commands(bot)
    register_handlers(dp)

    tasks = [
        asyncio.create_task(schedule_checker_task(bot, bot_ctx)),
        asyncio.create_task(power_monitor_task(bot, bot_ctx)),
        asyncio.create_task(alert_checker_task(bot, bot_ctx)),
    ]

    logger.info("Svitlo bot started. Beginning polling...")
    try:
        await bot.delete_webhook(drop_pending_updates=True)
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        logger.info("Stopping bot. Cancelling background tasks...")
        for task in tasks:
            task.cancel()
        await bot_ctx.db_conn.close()
        logger.info("Database connection closed.")
        await bot.session.close()
        logger.info("Bot session closed.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Svitlo bot stopped.")
