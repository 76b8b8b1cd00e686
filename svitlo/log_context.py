"""
Per-user logging context.
Every log line written while a user's event (or a background job for that
user) is being processed gets a `user_<id> | ` prefix.
"""

import contextvars
import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Union

# Identifier of the user whose event is being handled
current_user_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'current_user_id', default=None
)


def set_user_context(user_id: Union[int, str]) -> None:
    """Set user identifier in current context."""
    current_user_id.set(str(user_id))


def get_user_context() -> Optional[str]:
    """Get user identifier from current context."""
    return current_user_id.get()


def clear_user_context() -> None:
    """Clear user identifier from current context."""
    current_user_id.set(None)


@contextmanager
def user_context(user_id: Union[int, str]) -> Iterator[None]:
    """
    Scope log lines to a user for the duration of the block.
    Used by background tasks that iterate over many users.
    """
    token = current_user_id.set(str(user_id))
    try:
        yield
    finally:
        current_user_id.reset(token)


class UserContextFilter(logging.Filter):
    """Adds `user_id` attribute (prefix or empty string) to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        user_id = get_user_context()
        record.user_id = f"user_{user_id} | " if user_id is not None else ""
        return True
