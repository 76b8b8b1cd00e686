"""
Tests for user-facing handlers: /start, setup wizard, menus and settings
"""
import pytest
from unittest.mock import AsyncMock, patch

from aiogram.exceptions import TelegramBadRequest

from conftest import make_message, make_callback, USER_ID, OWNER_ID
from svitlo import handlers
from svitlo.bot_base import FormatTextState, RouterIpState, SCHEDULE_DATA_CACHE
from svitlo.users_db import (
    create_user,
    get_user_by_telegram_id,
    get_user_counts,
    update_user_channel,
    update_user_router_ip,
)
from svitlo.wizard import WizardMode, WizardStep


def answered_texts(mock):
    return [c.args[0] for c in mock.call_args_list if c.args]


def markup_callbacks(markup):
    return [button.callback_data for row in markup.inline_keyboard for button in row]


SCHEDULE = {"19.10.26": [{"shutdown": "12:00–14:00"}]}


# ============================================================
# /start AND THE SETUP WIZARD
# ============================================================

@pytest.mark.asyncio
async def test_start_unknown_user_starts_wizard(ctx, state):
    message = make_message(text="/start")
    await handlers.handle_start_command(message, state, ctx)

    session = ctx.sessions.get(USER_ID)
    assert session.mode == WizardMode.NEW
    assert session.step == WizardStep.AWAITING_REGION
    assert await get_user_by_telegram_id(ctx.db_conn, USER_ID) is None

    text = message.answer.call_args.args[0]
    assert handlers.REGION_PROMPT in text
    assert markup_callbacks(message.answer.call_args.kwargs['reply_markup'])[0] == "region_kyiv"


@pytest.mark.asyncio
async def test_start_known_user_gets_main_menu(ctx, state):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")
    ctx.wizard().start(USER_ID)
    message = make_message(text="/start")

    await handlers.handle_start_command(message, state, ctx)

    assert USER_ID not in ctx.sessions
    assert "Головне меню" in message.answer.call_args.args[0]
    state.clear.assert_awaited()


@pytest.mark.asyncio
async def test_wizard_flow_creates_record_on_confirm(ctx, state):
    await handlers.handle_start_command(make_message(text="/start"), state, ctx)

    callback = make_callback("region_kyiv")
    await handlers.handle_wizard_callback(callback, ctx)
    assert "Оберіть вашу чергу" in callback.message.edit_text.call_args.args[0]

    callback = make_callback("queue_3.1")
    await handlers.handle_wizard_callback(callback, ctx)
    assert "Все вірно?" in callback.message.edit_text.call_args.args[0]
    assert await get_user_by_telegram_id(ctx.db_conn, USER_ID) is None

    callback = make_callback("confirm_setup")
    await handlers.handle_wizard_callback(callback, ctx)

    user = await get_user_by_telegram_id(ctx.db_conn, USER_ID)
    assert user['region'] == "kyiv"
    assert user['queue'] == "3.1"
    assert user['username'] == "tester"
    assert USER_ID not in ctx.sessions
    assert "Налаштування збережено" in callback.message.edit_text.call_args.args[0]
    reply_markup = callback.message.edit_text.call_args.kwargs['reply_markup']
    assert markup_callbacks(reply_markup) == ["wizard_notify_bot", "wizard_notify_channel"]


@pytest.mark.asyncio
async def test_wizard_commit_failure_keeps_session_for_retry(ctx, state):
    await handlers.handle_start_command(make_message(text="/start"), state, ctx)
    await handlers.handle_wizard_callback(make_callback("region_kyiv"), ctx)
    await handlers.handle_wizard_callback(make_callback("queue_3.1"), ctx)

    callback = make_callback("confirm_setup")
    with patch("svitlo.users_db.create_user", AsyncMock(return_value=None)):
        await handlers.handle_wizard_callback(callback, ctx)

    assert callback.answer.call_args.args[0] == "❌ Не вдалося зберегти"
    assert "Не вдалося зберегти налаштування" in callback.message.edit_text.call_args.args[0]
    assert ctx.sessions.get(USER_ID).step == WizardStep.AWAITING_CONFIRMATION
    assert await get_user_by_telegram_id(ctx.db_conn, USER_ID) is None

    await handlers.handle_wizard_callback(make_callback("confirm_setup"), ctx)
    assert (await get_user_counts(ctx.db_conn))['total'] == 1
    assert USER_ID not in ctx.sessions


@pytest.mark.asyncio
async def test_stale_wizard_button_without_session(ctx):
    callback = make_callback("confirm_setup")
    await handlers.handle_wizard_callback(callback, ctx)
    assert callback.answer.call_args.kwargs.get('show_alert') is True
    assert (await get_user_counts(ctx.db_conn))['total'] == 0


@pytest.mark.asyncio
async def test_edit_region_updates_record(ctx, state):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")

    callback = make_callback("settings_region")
    await handlers.handle_settings_region(callback, ctx)
    session = ctx.sessions.get(USER_ID)
    assert session.mode == WizardMode.EDIT
    assert (session.region, session.queue) == ("kyiv", "3.1")

    await handlers.handle_wizard_callback(make_callback("region_dnipro"), ctx)
    await handlers.handle_wizard_callback(make_callback("queue_2.2"), ctx)
    callback = make_callback("confirm_setup")
    await handlers.handle_wizard_callback(callback, ctx)

    user = await get_user_by_telegram_id(ctx.db_conn, USER_ID)
    assert (user['region'], user['queue']) == ("dnipro", "2.2")
    assert (await get_user_counts(ctx.db_conn))['total'] == 1
    assert "Регіон і чергу оновлено" in callback.message.edit_text.call_args.args[0]
    # Main menu follows after the post-setup delay
    assert "Головне меню" in callback.message.answer.call_args.args[0]


@pytest.mark.asyncio
async def test_wizard_cancel_returns_to_settings(ctx, state):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")
    await handlers.handle_settings_region(make_callback("settings_region"), ctx)

    callback = make_callback("wizard_cancel")
    await handlers.handle_wizard_cancel(callback, state, ctx)

    assert USER_ID not in ctx.sessions
    assert "Налаштування" in callback.message.edit_text.call_args.args[0]
    assert (await get_user_by_telegram_id(ctx.db_conn, USER_ID))['region'] == "kyiv"


@pytest.mark.asyncio
async def test_notify_target_choice_after_setup(ctx):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")

    callback = make_callback("wizard_notify_channel")
    await handlers.handle_wizard_notify_target(callback, ctx)
    assert markup_callbacks(callback.message.edit_text.call_args.kwargs['reply_markup'])[0] == "channel_connect"
    assert (await get_user_by_telegram_id(ctx.db_conn, USER_ID))['notify_target'] == "channel"

    callback = make_callback("wizard_notify_bot")
    await handlers.handle_wizard_notify_target(callback, ctx)
    assert "Головне меню" in callback.message.answer.call_args.args[0]
    assert (await get_user_by_telegram_id(ctx.db_conn, USER_ID))['notify_target'] == "bot"


@pytest.mark.asyncio
async def test_cancel(ctx, state):
    message = make_message(text="/cancel")
    await handlers.handle_cancel(message, state, ctx)
    assert message.answer.call_args.args[0] == "Немає активних дій для скасування."

    ctx.wizard().start(USER_ID)
    await handlers.handle_cancel(message, state, ctx)
    assert message.answer.call_args.args[0] == "Дію скасовано."
    assert USER_ID not in ctx.sessions


# ============================================================
# RECORD-EXISTS GUARD
# ============================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("handler", [
    handlers.handle_menu_stats,
    handlers.handle_settings_alerts,
    handlers.handle_settings_notify,
    handlers.handle_settings_delete,
])
async def test_unknown_user_is_sent_to_start(ctx, handler):
    callback = make_callback("x")
    await handler(callback, ctx)
    assert callback.message.answer.call_args.args[0] == handlers.USER_NOT_FOUND_TEXT
    callback.message.edit_text.assert_not_called()


@pytest.mark.asyncio
async def test_schedule_command_requires_setup(ctx):
    message = make_message(text="/schedule")
    await handlers.handle_schedule_command(message, ctx)
    assert message.answer.call_args.args[0] == handlers.SETUP_FIRST_TEXT
    ctx.data_source.get_schedule.assert_not_called()


# ============================================================
# SCHEDULE & STATS
# ============================================================

@pytest.mark.asyncio
async def test_schedule_command_sends_schedule(ctx):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")
    ctx.data_source.get_schedule.return_value = {'region': "kyiv", 'queue': "3.1", 'schedule': {}}
    message = make_message(text="/schedule")

    await handlers.handle_schedule_command(message, ctx)

    ctx.data_source.get_schedule.assert_awaited_once_with("kyiv", "3.1")
    assert "Графік ще не опубліковано" in message.answer.call_args.args[0]
    assert ("kyiv", "3.1") in SCHEDULE_DATA_CACHE


@pytest.mark.asyncio
async def test_schedule_falls_back_to_cache(ctx):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")
    SCHEDULE_DATA_CACHE[("kyiv", "3.1")] = {'schedule': {}}
    ctx.data_source.get_schedule.side_effect = ConnectionError("down")
    message = make_message()

    await handlers.handle_schedule_command(message, ctx)
    assert "Графік ще не опубліковано" in message.answer.call_args.args[0]


@pytest.mark.asyncio
async def test_schedule_source_error_without_cache(ctx):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")
    ctx.data_source.get_schedule.side_effect = ConnectionError("down")
    message = make_message()

    await handlers.handle_schedule_command(message, ctx)
    assert message.answer.call_args.args[0] == "❌ down"


@pytest.mark.asyncio
async def test_menu_stats_without_router(ctx):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")
    callback = make_callback("menu_stats")
    await handlers.handle_menu_stats(callback, ctx)
    assert "IP роутера" in callback.message.edit_text.call_args.args[0]


# ============================================================
# SETTINGS
# ============================================================

@pytest.mark.asyncio
async def test_settings_menu_admin_button(ctx, state):
    await create_user(ctx.db_conn, OWNER_ID, "owner", "kyiv", "3.1")
    callback = make_callback("menu_settings", user_id=int(OWNER_ID))
    await handlers.handle_menu_settings(callback, state, ctx)
    assert "admin_panel" in markup_callbacks(callback.message.edit_text.call_args.kwargs['reply_markup'])

    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")
    callback = make_callback("menu_settings")
    await handlers.handle_menu_settings(callback, state, ctx)
    assert "admin_panel" not in markup_callbacks(callback.message.edit_text.call_args.kwargs['reply_markup'])


@pytest.mark.asyncio
async def test_alert_settings(ctx):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")

    await handlers.handle_alert_toggle(make_callback("alert_toggle"), ctx)
    assert (await get_user_by_telegram_id(ctx.db_conn, USER_ID))['alerts_enabled'] == 0

    await handlers.handle_alert_time(make_callback("alert_time_30"), ctx)
    user = await get_user_by_telegram_id(ctx.db_conn, USER_ID)
    assert user['alert_lead_time'] == 30
    assert user['alerts_enabled'] == 1

    await handlers.handle_alert_time(make_callback("alert_time_7"), ctx)
    assert (await get_user_by_telegram_id(ctx.db_conn, USER_ID))['alert_lead_time'] == 30


@pytest.mark.asyncio
async def test_notify_target_requires_channel(ctx):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")

    callback = make_callback("notify_target_both")
    await handlers.handle_notify_target(callback, ctx)
    assert callback.answer.call_args.kwargs.get('show_alert') is True
    assert (await get_user_by_telegram_id(ctx.db_conn, USER_ID))['notify_target'] == "bot"

    await update_user_channel(ctx.db_conn, USER_ID, "-1001", "Chan")
    await handlers.handle_notify_target(make_callback("notify_target_both"), ctx)
    assert (await get_user_by_telegram_id(ctx.db_conn, USER_ID))['notify_target'] == "both"


@pytest.mark.asyncio
async def test_format_template_edit(ctx, state):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")

    await handlers.handle_format_callback(make_callback("format_power_off"), state, ctx)
    state.set_state.assert_awaited_with(FormatTextState.waiting_for_text)
    state.update_data.assert_awaited_with(format_field='power_off_text')

    state.get_data.return_value = {'format_field': 'power_off_text'}
    message = make_message(text="🔴 {time} Немає світла")
    await handlers.handle_format_text(message, state, ctx)

    user = await get_user_by_telegram_id(ctx.db_conn, USER_ID)
    assert user['power_off_text'] == "🔴 {time} Немає світла"
    assert message.answer.call_args.args[0].startswith("✅ Шаблон збережено.")


@pytest.mark.asyncio
async def test_format_text_too_long(ctx, state):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")
    state.get_data.return_value = {'format_field': 'period_format'}
    message = make_message(text="x" * (handlers.MAX_TEMPLATE_LENGTH + 1))

    await handlers.handle_format_text(message, state, ctx)
    assert "Занадто довгий" in message.answer.call_args.args[0]
    assert (await get_user_by_telegram_id(ctx.db_conn, USER_ID))['period_format'] is None


@pytest.mark.asyncio
async def test_format_toggles_and_reset(ctx, state):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")

    await handlers.handle_format_callback(make_callback("format_toggle_picture"), state, ctx)
    assert (await get_user_by_telegram_id(ctx.db_conn, USER_ID))['picture_only'] == 1

    callback = make_callback("format_reset")
    await handlers.handle_format_callback(callback, state, ctx)
    assert (await get_user_by_telegram_id(ctx.db_conn, USER_ID))['picture_only'] == 0
    callback.answer.assert_awaited_once()


@pytest.mark.asyncio
async def test_test_publication_power_on(ctx):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")
    callback = make_callback("test_power_on")

    await handlers.handle_test_publication(callback, ctx)

    text = callback.bot.send_message.call_args.kwargs['text']
    assert "Світло з'явилося" in text
    assert "2 год 15 хв" in text
    assert callback.answer.call_args.args[0] == "✅ Надіслано"


@pytest.mark.asyncio
async def test_router_ip_input(ctx, state):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")

    await handlers.handle_settings_ip(make_callback("settings_ip"), state, ctx)
    state.set_state.assert_awaited_with(RouterIpState.waiting_for_ip)

    message = make_message(text="not an address")
    await handlers.handle_router_ip_input(message, state, ctx)
    assert "Невірний формат" in message.answer.call_args.args[0]

    message = make_message(text="myhome.ddns.net:8080")
    await handlers.handle_router_ip_input(message, state, ctx)
    assert (await get_user_by_telegram_id(ctx.db_conn, USER_ID))['router_ip'] == "myhome.ddns.net:8080"

    await handlers.handle_ip_clear(make_callback("ip_clear"), state, ctx)
    assert (await get_user_by_telegram_id(ctx.db_conn, USER_ID))['router_ip'] is None


@pytest.mark.asyncio
async def test_delete_confirm(ctx, state):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")
    await update_user_router_ip(ctx.db_conn, USER_ID, "10.0.0.1")

    callback = make_callback("delete_confirm")
    await handlers.handle_delete_confirm(callback, state, ctx)
    assert await get_user_by_telegram_id(ctx.db_conn, USER_ID) is None
    assert "Ваші дані видалено" in callback.message.edit_text.call_args.args[0]


# ============================================================
# show()
# ============================================================

@pytest.mark.asyncio
async def test_show_falls_back_to_new_message():
    callback = make_callback("x")
    callback.message.edit_text.side_effect = TelegramBadRequest(method=AsyncMock(), message="there is no text in the message to edit")
    await handlers.show(callback, "hello")
    callback.message.answer.assert_awaited_once_with("hello", reply_markup=None)


@pytest.mark.asyncio
async def test_show_ignores_not_modified():
    callback = make_callback("x")
    callback.message.edit_text.side_effect = TelegramBadRequest(method=AsyncMock(), message="Bad Request: message is not modified")
    await handlers.show(callback, "hello")
    callback.message.answer.assert_not_called()
