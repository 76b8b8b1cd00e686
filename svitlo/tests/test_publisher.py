"""
Tests for svitlo.publisher
"""
import pytest
from unittest.mock import AsyncMock

from svitlo.publisher import CAPTION_LIMIT, get_target_chats, send_schedule_post, publish_text


@pytest.mark.unit
class TestGetTargetChats:

    def test_bot_only(self):
        assert get_target_chats({'telegram_id': "1", 'notify_target': "bot", 'channel_id': "-5"}) == [('bot', "1")]

    def test_channel_without_channel_falls_back_to_bot(self):
        assert get_target_chats({'telegram_id': "1", 'notify_target': "channel", 'channel_id': None}) == [('bot', "1")]

    def test_channel(self):
        assert get_target_chats({'telegram_id': "1", 'notify_target': "channel", 'channel_id': "-5"}) == [('channel', "-5")]

    def test_both(self):
        assert get_target_chats({'telegram_id': "1", 'notify_target': "both", 'channel_id': "-5"}) == [
            ('bot', "1"), ('channel', "-5")
        ]

    def test_missing_target_defaults_to_bot(self):
        assert get_target_chats({'telegram_id': 1}) == [('bot', "1")]


@pytest.mark.asyncio
async def test_text_only_without_image():
    bot = AsyncMock()
    await send_schedule_post(bot, "1", "text", None)
    bot.send_message.assert_awaited_once_with(chat_id="1", text="text")
    bot.send_photo.assert_not_called()


@pytest.mark.asyncio
async def test_photo_with_caption():
    bot = AsyncMock()
    await send_schedule_post(bot, "1", "text", b"png")
    assert bot.send_photo.call_args.kwargs['caption'] == "text"
    bot.send_message.assert_not_called()


@pytest.mark.asyncio
async def test_picture_only():
    bot = AsyncMock()
    await send_schedule_post(bot, "1", "text", b"png", picture_only=True)
    assert 'caption' not in bot.send_photo.call_args.kwargs
    bot.send_message.assert_not_called()


@pytest.mark.asyncio
async def test_long_text_goes_after_photo():
    bot = AsyncMock()
    text = "x" * (CAPTION_LIMIT + 1)
    first = await send_schedule_post(bot, "1", text, b"png")
    assert first is bot.send_photo.return_value
    assert 'caption' not in bot.send_photo.call_args.kwargs
    assert bot.send_message.call_args.kwargs['text'] == text


@pytest.mark.asyncio
async def test_publish_text_continues_after_failure():
    bot = AsyncMock()
    bot.send_message.side_effect = [RuntimeError("blocked"), None]
    user = {'telegram_id': "1", 'notify_target': "both", 'channel_id': "-5"}

    assert await publish_text(bot, user, "hi") is True
    assert bot.send_message.await_count == 2
