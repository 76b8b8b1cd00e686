"""
Shared pytest fixtures for the Svitlo bot
"""
import sys
import os
import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

from pytest_asyncio import fixture as async_fixture

# Project root (the directory holding svitlo/) on PYTHONPATH
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from svitlo.bot_base import BotContext, KYIV_TZ, SCHEDULE_DATA_CACHE, init_db  # noqa: E402
from svitlo.migrate import migrate  # noqa: E402

OWNER_ID = "42"
ADMIN_ID = "7"
USER_ID = 100


@pytest.fixture(autouse=True)
def clean_global_caches():
    """Clears the schedule cache after every test"""
    yield
    SCHEDULE_DATA_CACHE.clear()


@async_fixture
async def db(tmp_path):
    """Migrated temporary database"""
    db_path = str(tmp_path / "test.db")
    assert migrate(db_path)
    conn = await init_db(db_path)
    yield conn
    await conn.close()


@pytest.fixture
def data_source():
    source = MagicMock()
    source.get_schedule = AsyncMock()
    return source


@pytest.fixture
def ctx(db, data_source):
    return BotContext(
        db_conn=db,
        admin_ids=[ADMIN_ID],
        owner_id=OWNER_ID,
        data_source=data_source,
        font_path="",
        post_setup_delay=0,
    )


@pytest.fixture
def now():
    return KYIV_TZ.localize(datetime(2026, 10, 19, 10, 0))


def make_user(user_id=USER_ID, username="tester", first_name="Test"):
    user = MagicMock()
    user.id = user_id
    user.username = username
    user.first_name = first_name
    user.last_name = None
    return user


def make_message(user_id=USER_ID, text=""):
    message = MagicMock()
    message.from_user = make_user(user_id)
    message.text = text
    message.answer = AsyncMock()
    message.answer_photo = AsyncMock()
    message.answer_document = AsyncMock()
    message.edit_text = AsyncMock()
    return message


def make_callback(data, user_id=USER_ID):
    callback = MagicMock()
    callback.data = data
    callback.from_user = make_user(user_id)
    callback.answer = AsyncMock()
    callback.message = make_message(user_id)
    callback.bot = AsyncMock()
    return callback


@pytest.fixture
def state():
    """Mock for FSM State context"""
    state = AsyncMock()
    state.get_data = AsyncMock(return_value={})
    state.update_data = AsyncMock()
    state.set_state = AsyncMock()
    state.clear = AsyncMock()
    state.get_state = AsyncMock(return_value=None)
    return state
