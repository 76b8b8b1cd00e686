"""
Channel connection.

The bot learns about a channel from my_chat_member when it is made an
administrator there. The channel waits in ctx.pending_channels until the
user who added the bot confirms it with channel_confirm_<id>.
"""

from datetime import datetime

from aiogram import Bot
from aiogram.types import CallbackQuery, ChatMemberUpdated

from svitlo.bot_base import BotContext, KYIV_TZ, is_bot_paused, get_pause_message
from svitlo.handlers import (
    show,
    get_user_or_reply,
    build_channel_menu_text,
    send_main_menu_after_delay,
)
from svitlo.keyboards import get_channel_keyboard, get_pending_channels_keyboard
from svitlo.users_db import (
    get_user_by_telegram_id,
    get_user_by_channel_id,
    update_user_channel,
    update_user_notify_target,
    clear_channel_binding,
)

ADMIN_STATUSES = ("administrator", "creator")
REMOVED_STATUSES = ("left", "kicked")


async def handle_my_chat_member(update: ChatMemberUpdated, bot: Bot, ctx: BotContext) -> None:
    """Bot's own membership changed in some chat."""
    chat = update.chat
    if chat.type != "channel":
        return

    logger = ctx.get_logger()
    channel_id = str(chat.id)
    status = update.new_chat_member.status
    added_by = str(update.from_user.id)

    if status in ADMIN_STATUSES:
        if await is_bot_paused(ctx.db_conn):
            logger.info(f"Channel {channel_id} added while paused, not offered")
            await _notify(bot, ctx, added_by, await get_pause_message(ctx.db_conn))
            return

        owner = await get_user_by_channel_id(ctx.db_conn, channel_id)
        if owner is not None:
            if str(owner['telegram_id']) != added_by:
                logger.warning(f"Channel {channel_id} already connected by another user")
                await _notify(bot, ctx, added_by, f"⚠️ Канал «{chat.title}» вже підключено іншим користувачем.")
            return

        ctx.pending_channels[channel_id] = {
            'channel_id': channel_id,
            'title': chat.title,
            'added_by': added_by,
            'added_at': datetime.now(KYIV_TZ),
        }
        logger.info(f"Channel {channel_id} ({chat.title}) pending confirmation")
        await _notify(
            bot, ctx, added_by,
            f"📺 Бота додано до каналу «{chat.title}».\n\nПідключити його для публікацій?",
            reply_markup=get_pending_channels_keyboard([ctx.pending_channels[channel_id]])
        )
        return

    # No longer an admin there
    ctx.pending_channels.pop(channel_id, None)
    if status in REMOVED_STATUSES:
        owner = await get_user_by_channel_id(ctx.db_conn, channel_id)
        if owner is not None and await clear_channel_binding(ctx.db_conn, channel_id):
            logger.info(f"Bot removed from channel {channel_id}, binding cleared")
            await _notify(bot, ctx, owner['telegram_id'], f"📺 Бота видалено з каналу «{chat.title}». Канал відключено.")


async def _notify(bot: Bot, ctx: BotContext, chat_id, text: str, reply_markup=None) -> None:
    # The user may never have started a private chat with the bot
    try:
        await bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup)
    except Exception as e:
        ctx.get_logger().warning(f"Failed to notify {chat_id}: {e}")


async def handle_settings_channel(callback: CallbackQuery, ctx: BotContext) -> None:
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await callback.answer()
    await show(callback, build_channel_menu_text(user), get_channel_keyboard(user))


async def handle_channel_connect(callback: CallbackQuery, ctx: BotContext) -> None:
    """Lists channels this user added the bot to."""
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return
    await callback.answer()

    if await is_bot_paused(ctx.db_conn):
        await show(callback, await get_pause_message(ctx.db_conn), get_channel_keyboard(user))
        return

    user_id = str(callback.from_user.id)
    pending = [c for c in ctx.pending_channels.values() if c['added_by'] == user_id]
    if not pending:
        await show(
            callback,
            "📺 Каналів для підключення не знайдено.\n\n"
            "Додайте бота до свого каналу як адміністратора, після чого тут з'явиться кнопка підтвердження.",
            get_channel_keyboard(user)
        )
        return

    await show(callback, "📺 **Оберіть канал для підключення:**", get_pending_channels_keyboard(pending))


async def handle_channel_confirm(callback: CallbackQuery, ctx: BotContext) -> None:
    """channel_confirm_<channel_id>"""
    logger = ctx.get_logger()
    channel_id = callback.data.removeprefix("channel_confirm_")
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return

    if await is_bot_paused(ctx.db_conn):
        await callback.answer()
        await show(callback, await get_pause_message(ctx.db_conn))
        return

    pending = ctx.pending_channels.get(channel_id)
    if pending is None or pending['added_by'] != str(callback.from_user.id):
        await callback.answer("Канал не знайдено. Додайте бота до каналу ще раз.", show_alert=True)
        return

    owner = await get_user_by_channel_id(ctx.db_conn, channel_id)
    if owner is not None and str(owner['telegram_id']) != str(user['telegram_id']):
        ctx.pending_channels.pop(channel_id, None)
        await callback.answer("Канал вже підключено іншим користувачем.", show_alert=True)
        return

    if not await update_user_channel(ctx.db_conn, user['telegram_id'], channel_id, pending.get('title')):
        await callback.answer("❌ Не вдалося підключити канал", show_alert=True)
        return

    ctx.pending_channels.pop(channel_id, None)
    if (user.get('notify_target') or 'bot') == 'bot':
        await update_user_notify_target(ctx.db_conn, user['telegram_id'], 'channel')

    logger.info(f"Channel {channel_id} connected")
    await callback.answer()
    await show(callback, f"✅ Канал «{pending.get('title') or channel_id}» підключено!\n\nГрафіки публікуватимуться в канал.")
    await send_main_menu_after_delay(callback.message, ctx, callback.from_user.id)


async def handle_channel_disconnect(callback: CallbackQuery, ctx: BotContext) -> None:
    user = await get_user_or_reply(callback, ctx)
    if user is None:
        return

    await update_user_channel(ctx.db_conn, user['telegram_id'], None)
    ctx.get_logger().info(f"Channel {user.get('channel_id')} disconnected")
    await callback.answer("Канал відключено")
    user = await get_user_by_telegram_id(ctx.db_conn, user['telegram_id']) or user
    await show(callback, build_channel_menu_text(user), get_channel_keyboard(user))
