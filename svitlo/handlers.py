"""
User-facing handlers: /start, setup wizard, main menu, schedule,
statistics and personal settings.

Handlers receive the BotContext explicitly; svitlo.bot wraps them for the
dispatcher.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Dict, Any

from aiogram import types
from aiogram.exceptions import TelegramBadRequest
from aiogram.types import CallbackQuery, BufferedInputFile, InlineKeyboardMarkup
from aiogram.fsm.context import FSMContext

from svitlo.auth import is_admin
from svitlo.bot_base import (
    BotContext,
    KYIV_TZ,
    REGIONS,
    SCHEDULE_DATA_CACHE,
    FormatTextState,
    RouterIpState,
    get_display_name,
)
from svitlo.formatting import (
    format_schedule_message,
    format_power_message,
    build_power_stats_message,
)
from svitlo.keyboards import (
    ALERT_LEAD_TIMES,
    get_main_menu_keyboard,
    get_menu_keyboard,
    get_region_keyboard,
    get_queue_keyboard,
    get_confirm_keyboard,
    get_wizard_notify_target_keyboard,
    get_region_queue_updated_keyboard,
    get_settings_keyboard,
    get_alerts_settings_keyboard,
    get_alert_time_keyboard,
    get_notify_target_keyboard,
    get_channel_keyboard,
    get_format_settings_keyboard,
    get_format_edit_keyboard,
    get_test_publication_keyboard,
    get_router_ip_keyboard,
    get_delete_confirm_keyboard,
)
from svitlo.publisher import CAPTION_LIMIT, publish_schedule, publish_text
from svitlo.tasks import parse_router_address
from svitlo.users_db import (
    FORMAT_TEXT_FIELDS,
    get_user_by_telegram_id,
    update_user_alert_settings,
    update_user_notify_target,
    update_user_format_settings,
    reset_user_format_settings,
    update_user_router_ip,
    resolve_format_settings,
    get_power_stats,
    delete_user,
)
from svitlo.visualization import generate_schedule_image
from svitlo.wizard import (
    WizardMode,
    WizardResult,
    WizardSession,
    WizardStep,
    WizardCommitError,
    decode_wizard_callback,
)

SETUP_FIRST_TEXT = "❌ Спочатку налаштуйте бота командою /start"
USER_NOT_FOUND_TEXT = "❌ Користувач не знайдений. Налаштуйте бота командою /start"

WELCOME_TEXT = (
    "👋 **Вітаю!** Я надсилатиму графіки відключень світла для вашої черги, "
    "попереджатиму про відключення і можу публікувати графіки у ваш канал.\n\n"
)
REGION_PROMPT = "📍 **Оберіть ваш регіон:**"

FORMAT_FIELD_PROMPTS = {
    'schedule_caption': (
        "✏️ **Заголовок графіка**\n\n"
        "Змінні: `{dd}` (сьогодні/завтра), `{d}` (дата), `{dm}` (день.місяць), "
        "`{region}`, `{queue}`"
    ),
    'period_format': (
        "✏️ **Формат періоду**\n\n"
        "Змінні: `{s}` (початок), `{f}` (кінець), `{h}` (тривалість)"
    ),
    'power_off_text': (
        "✏️ **Текст «Світло зникло»**\n\n"
        "Змінні: `{time}`, `{date}`"
    ),
    'power_on_text': (
        "✏️ **Текст «Світло з'явилося»**\n\n"
        "Змінні: `{time}`, `{date}`, `{duration}` (скільки не було світла)"
    ),
}
FORMAT_CALLBACK_FIELDS = {
    'format_caption': 'schedule_caption',
    'format_periods': 'period_format',
    'format_power_off': 'power_off_text',
    'format_power_on': 'power_on_text',
}
MAX_TEMPLATE_LENGTH = 500
SAMPLE_OUTAGE_SECONDS = 2 * 3600 + 15 * 60


# ============================================================
# HELPERS
# ============================================================

async def show(callback: CallbackQuery, text: str, reply_markup: Optional[InlineKeyboardMarkup] = None) -> None:
    """Replace the callback's message; photos and stale messages get a new one instead."""
    try:
        await callback.message.edit_text(text, reply_markup=reply_markup)
    except TelegramBadRequest as e:
        if "message is not modified" in str(e):
            return
        await callback.message.answer(text, reply_markup=reply_markup)


async def get_user_or_reply(callback: CallbackQuery, ctx: BotContext, text: str = USER_NOT_FOUND_TEXT) -> Optional[Dict[str, Any]]:
    """User record, or None after telling the user to run /start."""
    user = await get_user_by_telegram_id(ctx.db_conn, callback.from_user.id)
    if user is None:
        await callback.answer()
        await callback.message.answer(text)
    return user


def region_name(region: Optional[str]) -> str:
    return REGIONS.get(region, region or "—")


def build_main_menu_text(user: Dict[str, Any]) -> str:
    lines = [
        "🏠 **Головне меню**\n",
        f"📍 {region_name(user['region'])}, черга {user['queue']}",
    ]
    if user.get('channel_id'):
        lines.append(f"📺 Канал: {user.get('channel_title') or user['channel_id']}")
    lines.append(f"🔔 Попередження: {'увімкнено' if user.get('alerts_enabled') else 'вимкнено'}")
    return "\n".join(lines)


def build_settings_text(user: Dict[str, Any]) -> str:
    targets = {'bot': "бот", 'channel': "канал", 'both': "бот і канал"}
    return (
        "⚙️ **Налаштування**\n\n"
        f"📍 Регіон: {region_name(user['region'])}\n"
        f"⚡ Черга: {user['queue']}\n"
        f"📨 Сповіщення: {targets.get(user.get('notify_target'), 'бот')}\n"
        f"📺 Канал: {user.get('channel_title') or ('підключено' if user.get('channel_id') else 'не підключено')}\n"
        f"📡 Роутер: {user.get('router_ip') or 'не вказано'}"
    )


def build_channel_menu_text(user: Dict[str, Any]) -> str:
    if user.get('channel_id'):
        return (
            "📺 **Канал**\n\n"
            f"Підключено: **{user.get('channel_title') or user['channel_id']}**\n"
            "Графіки та сповіщення публікуються відповідно до налаштувань «Куди надсилати»."
        )
    return (
        "📺 **Канал**\n\n"
        "Щоб публікувати графіки у свій канал:\n"
        "1. Додайте бота до каналу як адміністратора з правом публікації.\n"
        "2. Натисніть «➕ Підключити канал» і підтвердіть канал."
    )


def build_queue_prompt(session: WizardSession) -> str:
    return f"📍 Регіон: **{region_name(session.region)}**\n\n⚡ **Оберіть вашу чергу:**"


def build_confirm_text(session: WizardSession) -> str:
    return (
        "Перевірте налаштування:\n\n"
        f"📍 Регіон: **{region_name(session.region)}**\n"
        f"⚡ Черга: **{session.queue}**\n\n"
        "Все вірно?"
    )


async def send_main_menu(message: types.Message, ctx: BotContext, user_id: Any) -> None:
    user = await get_user_by_telegram_id(ctx.db_conn, user_id)
    if user is None:
        await message.answer(USER_NOT_FOUND_TEXT)
        return
    await message.answer(build_main_menu_text(user), reply_markup=get_main_menu_keyboard())


async def send_main_menu_after_delay(message: types.Message, ctx: BotContext, user_id: Any) -> None:
    """Main menu follows a "saved" message after a short pause."""
    await asyncio.sleep(ctx.post_setup_delay)
    await send_main_menu(message, ctx, user_id)


# ============================================================
# COMMANDS
# ============================================================

async def handle_start_command(message: types.Message, state: FSMContext, ctx: BotContext) -> None:
    """
    Known user -> main menu. Unknown user -> a fresh setup wizard session
    (any unfinished one is replaced) and the region keyboard.
    """
    user_id = message.from_user.id
    logger = ctx.get_logger()
    logger.info("Command /start")

    await state.clear()
    user = await get_user_by_telegram_id(ctx.db_conn, user_id)
    if user is not None:
        ctx.sessions.discard(user_id)
        await message.answer(build_main_menu_text(user), reply_markup=get_main_menu_keyboard())
        return

    ctx.wizard().start(user_id, WizardMode.NEW)
    await message.answer(WELCOME_TEXT + REGION_PROMPT, reply_markup=get_region_keyboard())


async def handle_cancel(message: types.Message, state: FSMContext, ctx: BotContext) -> None:
    """Handle /cancel command."""
    had_state = await state.get_state() is not None
    had_session = ctx.sessions.discard(message.from_user.id) is not None
    await state.clear()
    if not had_state and not had_session:
        await message.answer("Немає активних дій для скасування.")
        return
    await message.answer("Дію скасовано.", reply_markup=get_menu_keyboard())


async def handle_schedule_command(message: types.Message, ctx: BotContext) -> None:
    user = await get_user_by_telegram_id(ctx.db_conn, message.from_user.id)
    if user is None:
        await message.answer(SETUP_FIRST_TEXT)
        return
    await send_user_schedule(message, user, ctx)


# ============================================================
# SETUP WIZARD
# ============================================================

async def render_wizard_step(callback: CallbackQuery, session: WizardSession) -> None:
    if session.step == WizardStep.AWAITING_REGION:
        await show(callback, REGION_PROMPT, get_region_keyboard(allow_cancel=session.mode == WizardMode.EDIT))
    elif session.step == WizardStep.AWAITING_QUEUE:
        await show(callback, build_queue_prompt(session), get_queue_keyboard())
    else:
        await show(callback, build_confirm_text(session), get_confirm_keyboard())


async def handle_wizard_callback(callback: CallbackQuery, ctx: BotContext) -> None:
    """region_*, queue_*, back_to_region and confirm_setup."""
    logger = ctx.get_logger()
    event = decode_wizard_callback(callback.data)
    if event is None:
        await callback.answer()
        return

    user_id = callback.from_user.id
    try:
        result, session = await ctx.wizard().handle(user_id, get_display_name(callback.from_user), event)
    except WizardCommitError as e:
        logger.warning("Setup not saved, waiting for retry")
        await callback.answer("❌ Не вдалося зберегти")
        await show(
            callback,
            build_confirm_text(e.session) + "\n\n❌ **Не вдалося зберегти налаштування.** Спробуйте ще раз.",
            get_confirm_keyboard()
        )
        return

    if result == WizardResult.IGNORED:
        if session is None:
            await callback.answer("Налаштування вже завершено. Надішліть /start", show_alert=True)
        else:
            await callback.answer()
        return

    await callback.answer()
    if result == WizardResult.ADVANCED:
        await render_wizard_step(callback, session)
        return

    if session.mode == WizardMode.EDIT:
        await show(
            callback,
            f"✅ **Регіон і чергу оновлено!**\n\n📍 {region_name(session.region)}, черга {session.queue}",
            get_region_queue_updated_keyboard()
        )
        await send_main_menu_after_delay(callback.message, ctx, user_id)
    else:
        await show(
            callback,
            f"✅ **Налаштування збережено!**\n\n📍 {region_name(session.region)}, черга {session.queue}\n\n"
            "📨 Куди надсилати сповіщення?",
            get_wizard_notify_target_keyboard()
        )


async def handle_wizard_cancel(callback: CallbackQuery, state: FSMContext, ctx: BotContext) -> None:
    """Abandon a region/queue change."""
    ctx.sessions.discard(callback.from_user.id)
    await handle_menu_settings(callback, state, ctx)


async def handle_wizard_notify_target(callback: CallbackQuery, ctx: BotContext) -> None:
    """wizard_notify_bot / wizard_notify_channel after the first setup."""
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return

    await callback.answer()
    if callback.data == "wizard_notify_channel":
        # posts go to the bot chat until a channel is connected
        await update_user_notify_target(ctx.db_conn, user['telegram_id'], 'channel')
        user = await get_user_by_telegram_id(ctx.db_conn, user['telegram_id']) or user
        await show(callback, build_channel_menu_text(user), get_channel_keyboard(user))
        return

    await update_user_notify_target(ctx.db_conn, user['telegram_id'], 'bot')
    await show(callback, "✅ Сповіщення надходитимуть у цей бот.")
    await send_main_menu_after_delay(callback.message, ctx, callback.from_user.id)


# ============================================================
# MAIN MENU
# ============================================================

async def handle_back_to_main(callback: CallbackQuery, state: FSMContext, ctx: BotContext) -> None:
    await state.clear()
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await callback.answer()
    await show(callback, build_main_menu_text(user), get_main_menu_keyboard())


async def send_user_schedule(message: types.Message, user: Dict[str, Any], ctx: BotContext) -> None:
    """Current schedule of the user's queue in their format, with the 24h picture."""
    logger = ctx.get_logger()
    key = (user['region'], user['queue'])

    try:
        data = await ctx.data_source.get_schedule(*key)
        SCHEDULE_DATA_CACHE[key] = data
    except ValueError as e:
        await message.answer(f"❌ {e}")
        return
    except ConnectionError as e:
        data = SCHEDULE_DATA_CACHE.get(key)
        if data is None:
            await message.answer(f"❌ {e}")
            return
        logger.warning(f"Schedule source unavailable, showing cached data: {e}")
    except Exception as e:
        logger.error(f"Error fetching schedule: {e}", exc_info=True)
        await message.answer("❌ Не вдалося отримати графік. Спробуйте пізніше.")
        return

    try:
        schedule = data.get('schedule') or {}
        now = datetime.now(KYIV_TZ)
        text = format_schedule_message(schedule, region_name(user['region']), user['queue'], resolve_format_settings(user), now)
        image_data = generate_schedule_image(schedule, ctx.font_path, current_time=now)

        if image_data and len(text) <= CAPTION_LIMIT:
            image_file = BufferedInputFile(image_data, filename="schedule_24h.png")
            await message.answer_photo(photo=image_file, caption=text, reply_markup=get_menu_keyboard())
        elif image_data:
            image_file = BufferedInputFile(image_data, filename="schedule_24h.png")
            await message.answer_photo(photo=image_file)
            await message.answer(text, reply_markup=get_menu_keyboard())
        else:
            await message.answer(text, reply_markup=get_menu_keyboard())
    except Exception as e:
        logger.error(f"Error in send_user_schedule: {e}", exc_info=True)
        await message.answer("❌ Сталася помилка під час формування графіка.")


async def handle_menu_schedule(callback: CallbackQuery, ctx: BotContext) -> None:
    user = await get_user_or_reply(callback, ctx, SETUP_FIRST_TEXT)
    if user is None:
        return
    await callback.answer()
    await send_user_schedule(callback.message, user, ctx)


async def handle_menu_stats(callback: CallbackQuery, ctx: BotContext) -> None:
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await callback.answer()

    stats = await get_power_stats(ctx.db_conn, user['telegram_id'], days=7)
    await show(callback, build_power_stats_message(stats, 7, has_router=bool(user.get('router_ip'))), get_menu_keyboard())


# ============================================================
# SETTINGS
# ============================================================

async def handle_menu_settings(callback: CallbackQuery, state: FSMContext, ctx: BotContext) -> None:
    await state.clear()
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await callback.answer()
    admin = is_admin(callback.from_user.id, ctx.admin_ids, ctx.owner_id)
    await show(callback, build_settings_text(user), get_settings_keyboard(is_admin=admin))


async def handle_settings_region(callback: CallbackQuery, ctx: BotContext) -> None:
    """Starts an edit session pre-filled with the current region/queue."""
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await callback.answer()

    ctx.wizard().start(callback.from_user.id, WizardMode.EDIT, user['region'], user['queue'])
    await show(
        callback,
        f"Зараз: 📍 {region_name(user['region'])}, черга {user['queue']}\n\n{REGION_PROMPT}",
        get_region_keyboard(allow_cancel=True)
    )


def build_alerts_text(user: Dict[str, Any]) -> str:
    state = "увімкнено ✅" if user.get('alerts_enabled') else "вимкнено"
    return (
        "🔔 **Попередження про відключення**\n\n"
        f"Стан: {state}\n"
        f"Попереджати за: {user.get('alert_lead_time')} хв до відключення та включення"
    )


async def handle_settings_alerts(callback: CallbackQuery, ctx: BotContext) -> None:
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await callback.answer()
    await show(callback, build_alerts_text(user), get_alerts_settings_keyboard(bool(user.get('alerts_enabled')), user.get('alert_lead_time')))


async def handle_alert_toggle(callback: CallbackQuery, ctx: BotContext) -> None:
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await update_user_alert_settings(ctx.db_conn, user['telegram_id'], enabled=not user.get('alerts_enabled'))
    await handle_settings_alerts(callback, ctx)


async def handle_alert_time_menu(callback: CallbackQuery, ctx: BotContext) -> None:
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await callback.answer()
    await show(callback, "⏰ **За скільки хвилин попереджати?**", get_alert_time_keyboard(user.get('alert_lead_time')))


async def handle_alert_time(callback: CallbackQuery, ctx: BotContext) -> None:
    """alert_time_<minutes>"""
    try:
        minutes = int(callback.data.removeprefix("alert_time_"))
    except ValueError:
        await callback.answer()
        return
    if minutes not in ALERT_LEAD_TIMES:
        await callback.answer()
        return

    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await update_user_alert_settings(ctx.db_conn, user['telegram_id'], enabled=True, lead_time=minutes)
    await handle_settings_alerts(callback, ctx)


async def handle_settings_notify(callback: CallbackQuery, ctx: BotContext) -> None:
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await callback.answer()
    text = "📨 **Куди надсилати графіки та сповіщення?**"
    if not user.get('channel_id'):
        text += "\n\nПідключіть канал, щоб публікувати в нього."
    await show(callback, text, get_notify_target_keyboard(user.get('notify_target') or 'bot', bool(user.get('channel_id'))))


async def handle_notify_target(callback: CallbackQuery, ctx: BotContext) -> None:
    """notify_target_<bot|channel|both>"""
    target = callback.data.removeprefix("notify_target_")
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    if target in ('channel', 'both') and not user.get('channel_id'):
        await callback.answer("Спочатку підключіть канал", show_alert=True)
        return
    if not await update_user_notify_target(ctx.db_conn, user['telegram_id'], target):
        await callback.answer("❌ Не вдалося зберегти")
        return
    await handle_settings_notify(callback, ctx)


# --- Format settings ---
def build_format_text(user: Dict[str, Any]) -> str:
    settings = resolve_format_settings(user)
    return (
        "🎨 **Формат публікацій**\n\n"
        f"Заголовок:\n`{settings['schedule_caption']}`\n\n"
        f"Період:\n`{settings['period_format']}`\n\n"
        f"Світло зникло:\n`{settings['power_off_text']}`\n\n"
        f"Світло з'явилося:\n`{settings['power_on_text']}`"
    )


async def handle_settings_format(callback: CallbackQuery, state: FSMContext, ctx: BotContext) -> None:
    await state.clear()
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await callback.answer()
    await show(callback, build_format_text(user), get_format_settings_keyboard(user))


async def handle_format_callback(callback: CallbackQuery, state: FSMContext, ctx: BotContext) -> None:
    """All format_* buttons."""
    data = callback.data
    if data == "format_noop":
        await callback.answer()
        return

    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    user_id = user['telegram_id']

    if data in ("format_toggle_delete", "format_toggle_picture"):
        field = 'delete_old_message' if data == "format_toggle_delete" else 'picture_only'
        await update_user_format_settings(ctx.db_conn, user_id, **{field: not user.get(field)})
        await handle_settings_format(callback, state, ctx)
    elif data in FORMAT_CALLBACK_FIELDS:
        field = FORMAT_CALLBACK_FIELDS[data]
        current = resolve_format_settings(user)[field]
        await state.set_state(FormatTextState.waiting_for_text)
        await state.update_data(format_field=field)
        await callback.answer()
        await show(
            callback,
            f"{FORMAT_FIELD_PROMPTS[field]}\n\nЗараз:\n`{current}`\n\nНадішліть новий текст.",
            get_format_edit_keyboard()
        )
    elif data == "format_default":
        field = (await state.get_data()).get('format_field')
        if field in FORMAT_TEXT_FIELDS:
            await update_user_format_settings(ctx.db_conn, user_id, **{field: None})
        await handle_settings_format(callback, state, ctx)
    elif data == "format_cancel":
        await handle_settings_format(callback, state, ctx)
    elif data == "format_reset":
        await reset_user_format_settings(ctx.db_conn, user_id)
        await state.clear()
        await callback.answer("↺ Стандартні налаштування відновлено")
        user = await get_user_by_telegram_id(ctx.db_conn, user_id) or user
        await show(callback, build_format_text(user), get_format_settings_keyboard(user))
    elif data == "format_test":
        await callback.answer()
        await show(callback, "🧪 **Тестова публікація**\n\nОберіть, що надіслати:", get_test_publication_keyboard())
    else:
        await callback.answer()


async def handle_format_text(message: types.Message, state: FSMContext, ctx: BotContext) -> None:
    """New text for the template chosen in handle_format_callback."""
    field = (await state.get_data()).get('format_field')
    if field not in FORMAT_TEXT_FIELDS:
        await state.clear()
        return

    text = (message.text or "").strip()
    if not text:
        await message.answer("⚠️ Надішліть текст шаблону.")
        return
    if len(text) > MAX_TEMPLATE_LENGTH:
        await message.answer(f"⚠️ Занадто довгий текст (максимум {MAX_TEMPLATE_LENGTH} символів).")
        return

    if not await update_user_format_settings(ctx.db_conn, message.from_user.id, **{field: text}):
        await message.answer("❌ Не вдалося зберегти шаблон.")
        return

    await state.clear()
    user = await get_user_by_telegram_id(ctx.db_conn, message.from_user.id)
    await message.answer("✅ Шаблон збережено.\n\n" + build_format_text(user), reply_markup=get_format_settings_keyboard(user))


async def handle_test_publication(callback: CallbackQuery, ctx: BotContext) -> None:
    """test_schedule / test_power_off / test_power_on: sample posts to the user's targets."""
    logger = ctx.get_logger()
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return

    settings = resolve_format_settings(user)
    now = datetime.now(KYIV_TZ)
    kind = callback.data.removeprefix("test_")
    try:
        if kind == "schedule":
            key = (user['region'], user['queue'])
            try:
                data = await ctx.data_source.get_schedule(*key)
                SCHEDULE_DATA_CACHE[key] = data
            except (ValueError, ConnectionError) as e:
                data = SCHEDULE_DATA_CACHE.get(key)
                if data is None:
                    await callback.answer(f"❌ {e}", show_alert=True)
                    return
            sent = await publish_schedule(
                callback.bot, ctx.db_conn, user, data.get('schedule') or {},
                region_name(user['region']), ctx.font_path, now
            )
        elif kind == "power_off":
            sent = await publish_text(callback.bot, user, format_power_message(settings['power_off_text'], now))
        elif kind == "power_on":
            sent = await publish_text(callback.bot, user, format_power_message(settings['power_on_text'], now, SAMPLE_OUTAGE_SECONDS))
        else:
            await callback.answer()
            return
    except Exception as e:
        logger.error(f"Test publication failed: {e}", exc_info=True)
        sent = False

    logger.info(f"Test publication {kind}: {'sent' if sent else 'failed'}")
    await callback.answer("✅ Надіслано" if sent else "❌ Не вдалося надіслати", show_alert=not sent)


# --- Router IP ---
async def handle_settings_ip(callback: CallbackQuery, state: FSMContext, ctx: BotContext) -> None:
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await callback.answer()
    await state.set_state(RouterIpState.waiting_for_ip)
    current = user.get('router_ip')
    await show(
        callback,
        "📡 **Моніторинг світла через роутер**\n\n"
        "Бот періодично перевіряє, чи доступний ваш роутер з інтернету. "
        "Недоступний роутер означає, що світла немає.\n\n"
        f"Зараз: `{current or 'не вказано'}`\n\n"
        "Надішліть IP-адресу або домен роутера, наприклад `93.184.216.34` або `myhome.ddns.net:8080`.",
        get_router_ip_keyboard(bool(current))
    )


async def handle_router_ip_input(message: types.Message, state: FSMContext, ctx: BotContext) -> None:
    value = (message.text or "").strip()
    if parse_router_address(value) is None:
        await message.answer("❌ Невірний формат адреси. Приклад: `93.184.216.34` або `myhome.ddns.net:8080`")
        return

    if not await update_user_router_ip(ctx.db_conn, message.from_user.id, value):
        await message.answer(USER_NOT_FOUND_TEXT)
        await state.clear()
        return

    await state.clear()
    ctx.get_logger().info(f"Router address set to {value}")
    await message.answer(f"✅ Адресу роутера збережено: `{value}`", reply_markup=get_region_queue_updated_keyboard())


async def handle_ip_clear(callback: CallbackQuery, state: FSMContext, ctx: BotContext) -> None:
    await state.clear()
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await update_user_router_ip(ctx.db_conn, user['telegram_id'], None)
    await callback.answer("🗑 IP видалено")
    await show(callback, "📡 Моніторинг роутера вимкнено.", get_region_queue_updated_keyboard())


# --- Delete data ---
async def handle_settings_delete(callback: CallbackQuery, ctx: BotContext) -> None:
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await callback.answer()
    await show(
        callback,
        "⚠️ **Видалити всі ваші дані?**\n\nНалаштування, канал та статистику буде видалено без можливості відновлення.",
        get_delete_confirm_keyboard()
    )


async def handle_delete_confirm(callback: CallbackQuery, state: FSMContext, ctx: BotContext) -> None:
    user_id = callback.from_user.id
    await state.clear()
    ctx.sessions.discard(user_id)
    if not await delete_user(ctx.db_conn, user_id):
        await callback.answer()
        await callback.message.answer(USER_NOT_FOUND_TEXT)
        return

    ctx.get_logger().info("User data deleted")
    await callback.answer()
    await show(callback, "✅ Ваші дані видалено.\n\nЩоб почати знову, надішліть /start")
