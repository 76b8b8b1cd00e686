"""
Delivery of schedule posts and power notifications to a user's bot chat
and/or connected channel.
"""

import logging
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple

import aiosqlite
from aiogram import Bot
from aiogram.types import BufferedInputFile

from svitlo.formatting import format_schedule_message
from svitlo.users_db import resolve_format_settings, update_last_schedule_message_id
from svitlo.visualization import generate_schedule_image

logger = logging.getLogger(__name__)

CAPTION_LIMIT = 1024


def get_target_chats(user: Dict[str, Any]) -> List[Tuple[str, str]]:
    """
    [(kind, chat_id)] for the user's notify target. A channel target
    without a connected channel falls back to the bot chat.
    """
    target = user.get('notify_target') or 'bot'
    channel_id = user.get('channel_id')
    bot_chat = ('bot', str(user['telegram_id']))

    if not channel_id or target == 'bot':
        return [bot_chat]
    if target == 'channel':
        return [('channel', str(channel_id))]
    return [bot_chat, ('channel', str(channel_id))]


async def send_schedule_post(
    bot: Bot,
    chat_id: str,
    text: str,
    image_data: Optional[bytes],
    picture_only: bool = False,
    filename: str = "schedule_24h.png"
):
    """Sends the post and returns the main (first) message."""
    if not image_data:
        return await bot.send_message(chat_id=chat_id, text=text)

    image_file = BufferedInputFile(image_data, filename=filename)
    if picture_only:
        return await bot.send_photo(chat_id=chat_id, photo=image_file)

    if len(text) <= CAPTION_LIMIT:
        return await bot.send_photo(chat_id=chat_id, photo=image_file, caption=text)

    # Caption too long: picture first, text as a separate message
    first = await bot.send_photo(chat_id=chat_id, photo=image_file)
    await bot.send_message(chat_id=chat_id, text=text, disable_notification=True)
    return first


async def publish_schedule(
    bot: Bot,
    conn: aiosqlite.Connection,
    user: Dict[str, Any],
    schedule: Dict[str, List[Dict[str, Any]]],
    region_name: str,
    font_path: str,
    now: Optional[datetime] = None
) -> bool:
    """
    Publishes the queue schedule with the user's format settings.
    In the channel the previous post is deleted first when
    delete_old_message is on. Returns True if at least one chat got it.
    """
    settings = resolve_format_settings(user)
    text = format_schedule_message(schedule, region_name, user['queue'], settings, now)
    image_data = generate_schedule_image(schedule, font_path, current_time=now)

    sent_any = False
    for kind, chat_id in get_target_chats(user):
        if kind == 'channel' and settings['delete_old_message'] and user.get('last_schedule_message_id'):
            try:
                await bot.delete_message(chat_id=chat_id, message_id=int(user['last_schedule_message_id']))
            except Exception as e:
                logger.warning(f"Failed to delete previous post in {chat_id}: {e}")

        try:
            message = await send_schedule_post(bot, chat_id, text, image_data, bool(settings['picture_only']))
        except Exception as e:
            logger.error(f"Failed to publish schedule to {kind} {chat_id}: {e}")
            continue

        sent_any = True
        if kind == 'channel' and message is not None:
            await update_last_schedule_message_id(conn, user['telegram_id'], message.message_id)

    return sent_any


async def publish_text(bot: Bot, user: Dict[str, Any], text: str) -> bool:
    """Sends a plain notification to every target chat of the user."""
    sent_any = False
    for kind, chat_id in get_target_chats(user):
        try:
            await bot.send_message(chat_id=chat_id, text=text)
            sent_any = True
        except Exception as e:
            logger.error(f"Failed to send notification to {kind} {chat_id}: {e}")
    return sent_any
