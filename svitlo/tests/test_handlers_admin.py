"""
Tests for the admin panel handlers
"""
import pytest

from conftest import make_message, make_callback, OWNER_ID, ADMIN_ID, USER_ID
from svitlo import handlers_admin
from svitlo.bot_base import (
    PAUSE_TEMPLATES,
    PauseMessageState,
    SETTING_SCHEDULE_INTERVAL,
    SETTING_POWER_INTERVAL,
    SETTING_PAUSE_MESSAGE,
    get_setting,
    get_int_setting,
    is_bot_paused,
)
from svitlo.users_db import create_user


@pytest.mark.asyncio
async def test_admin_command_access_control(ctx):
    message = make_message(user_id=USER_ID, text="/admin")
    await handlers_admin.handle_admin_command(message, ctx)
    message.answer.assert_awaited_with(handlers_admin.ACCESS_DENIED_TEXT)

    for user_id in (OWNER_ID, ADMIN_ID):
        message = make_message(user_id=int(user_id), text="/admin")
        await handlers_admin.handle_admin_command(message, ctx)
        assert message.answer.call_args.args[0] == handlers_admin.ADMIN_PANEL_TEXT


@pytest.mark.asyncio
async def test_owner_without_roster_is_admin(ctx):
    ctx.admin_ids = []
    message = make_message(user_id=int(OWNER_ID), text="/admin")
    await handlers_admin.handle_admin_command(message, ctx)
    assert message.answer.call_args.args[0] == handlers_admin.ADMIN_PANEL_TEXT


@pytest.mark.asyncio
@pytest.mark.parametrize("data", ["admin_stats", "admin_export", "admin_intervals", "admin_schedule_600"])
async def test_admin_callbacks_denied_for_users(ctx, data):
    callback = make_callback(data, user_id=USER_ID)
    handler = {
        "admin_stats": handlers_admin.handle_admin_stats,
        "admin_export": handlers_admin.handle_admin_export,
        "admin_intervals": handlers_admin.handle_admin_intervals,
        "admin_schedule_600": handlers_admin.handle_admin_set_interval,
    }[data]

    await handler(callback, ctx)

    callback.answer.assert_awaited_once_with("⛔ Відмовлено в доступі", show_alert=True)
    callback.message.edit_text.assert_not_called()
    callback.message.answer_document.assert_not_called()
    assert await get_setting(ctx.db_conn, SETTING_SCHEDULE_INTERVAL) is None


@pytest.mark.asyncio
async def test_admin_stats(ctx):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")
    callback = make_callback("admin_stats", user_id=int(ADMIN_ID))
    await handlers_admin.handle_admin_stats(callback, ctx)
    assert "Користувачів: **1**" in callback.message.edit_text.call_args.args[0]


@pytest.mark.asyncio
async def test_admin_export(ctx):
    await create_user(ctx.db_conn, USER_ID, "tester", "kyiv", "3.1")
    callback = make_callback("admin_export", user_id=int(OWNER_ID))

    await handlers_admin.handle_admin_export(callback, ctx)

    document = callback.message.answer_document.call_args.args[0]
    content = document.data.decode('utf-8')
    assert content.splitlines()[0].startswith("telegram_id,username,region,queue")
    assert "100,tester,kyiv,3.1" in content
    assert document.filename.startswith("svitlo_users_export_")


@pytest.mark.asyncio
async def test_set_intervals(ctx):
    callback = make_callback("admin_schedule_600", user_id=int(ADMIN_ID))
    await handlers_admin.handle_admin_set_interval(callback, ctx)
    assert await get_int_setting(ctx.db_conn, SETTING_SCHEDULE_INTERVAL, 0) == 600
    assert "10 хв" in callback.message.edit_text.call_args.args[0]

    await handlers_admin.handle_admin_set_interval(make_callback("admin_ip_60", user_id=int(ADMIN_ID)), ctx)
    assert await get_int_setting(ctx.db_conn, SETTING_POWER_INTERVAL, 0) == 60


@pytest.mark.asyncio
async def test_interval_outside_choices_rejected(ctx):
    await handlers_admin.handle_admin_set_interval(make_callback("admin_schedule_5", user_id=int(ADMIN_ID)), ctx)
    await handlers_admin.handle_admin_set_interval(make_callback("admin_ip_abc", user_id=int(ADMIN_ID)), ctx)
    assert await get_setting(ctx.db_conn, SETTING_SCHEDULE_INTERVAL) is None
    assert await get_setting(ctx.db_conn, SETTING_POWER_INTERVAL) is None


@pytest.mark.asyncio
async def test_pause_toggle(ctx, state):
    callback = make_callback("pause_toggle", user_id=int(OWNER_ID))
    await handlers_admin.handle_pause_callback(callback, state, ctx)
    assert await is_bot_paused(ctx.db_conn) is True
    assert "Бот на паузі" in callback.message.edit_text.call_args.args[0]

    await handlers_admin.handle_pause_callback(make_callback("pause_toggle", user_id=int(OWNER_ID)), state, ctx)
    assert await is_bot_paused(ctx.db_conn) is False


@pytest.mark.asyncio
async def test_pause_template_and_custom_text(ctx, state):
    await handlers_admin.handle_pause_callback(make_callback("pause_template_2", user_id=int(OWNER_ID)), state, ctx)
    assert await get_setting(ctx.db_conn, SETTING_PAUSE_MESSAGE) == PAUSE_TEMPLATES[1]

    await handlers_admin.handle_pause_callback(make_callback("pause_template_99", user_id=int(OWNER_ID)), state, ctx)
    assert await get_setting(ctx.db_conn, SETTING_PAUSE_MESSAGE) == PAUSE_TEMPLATES[1]

    await handlers_admin.handle_pause_callback(make_callback("pause_custom", user_id=int(OWNER_ID)), state, ctx)
    state.set_state.assert_awaited_with(PauseMessageState.waiting_for_text)

    message = make_message(user_id=int(OWNER_ID), text="  Оновлення до 18:00  ")
    await handlers_admin.handle_pause_custom_text(message, state, ctx)
    assert await get_setting(ctx.db_conn, SETTING_PAUSE_MESSAGE) == "Оновлення до 18:00"
    state.clear.assert_awaited()


@pytest.mark.asyncio
async def test_pause_custom_text_ignored_for_non_admin(ctx, state):
    message = make_message(user_id=USER_ID, text="hacked")
    await handlers_admin.handle_pause_custom_text(message, state, ctx)
    assert await get_setting(ctx.db_conn, SETTING_PAUSE_MESSAGE) is None
    message.answer.assert_not_called()
