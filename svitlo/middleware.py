"""
aiogram middleware that scopes logging to the user behind each update.
"""

from typing import Callable, Dict, Any, Awaitable
from aiogram import BaseMiddleware
from aiogram.types import Message, CallbackQuery, ChatMemberUpdated, TelegramObject
from svitlo.log_context import set_user_context, clear_user_context


class UserContextMiddleware(BaseMiddleware):
    """
    Sets the sender's id in the logging context for messages, callbacks
    and chat-member updates, and clears it once the handler returns.
    """

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        user_id = None

        if isinstance(event, (Message, CallbackQuery, ChatMemberUpdated)):
            user_id = event.from_user.id if event.from_user else None

        if user_id:
            set_user_context(user_id)

        try:
            return await handler(event, data)
        finally:
            clear_user_context()
