"""
Tests for the HTTP schedule data source
"""
import os
import pytest
import aiohttp
from unittest.mock import patch
from aioresponses import aioresponses

from svitlo.data_source import HttpScheduleDataSource, get_data_source, DEFAULT_SCHEDULE_API_URL

BASE_URL = "http://schedules.test/api"
KYIV_URL = f"{BASE_URL}/kyiv.json"

PAYLOAD = {
    "region": "kyiv",
    "updated_at": "2026-10-19T09:00:00+03:00",
    "queues": {
        "3.1": {"19.10.26": [{"shutdown": "12:00–14:00"}]},
        "3.2": {},
    },
}


@pytest.fixture
def source():
    return HttpScheduleDataSource(BASE_URL + "/")


@pytest.mark.asyncio
async def test_get_schedule(source):
    with aioresponses() as mocked:
        mocked.get(KYIV_URL, payload=PAYLOAD)
        data = await source.get_schedule("kyiv", "3.1")

    assert data['region'] == "kyiv"
    assert data['queue'] == "3.1"
    assert data['schedule'] == {"19.10.26": [{"shutdown": "12:00–14:00"}]}
    assert data['updated_at'] == "2026-10-19T09:00:00+03:00"


@pytest.mark.asyncio
async def test_empty_queue_schedule(source):
    with aioresponses() as mocked:
        mocked.get(KYIV_URL, payload=PAYLOAD)
        data = await source.get_schedule("kyiv", "3.2")
    assert data['schedule'] == {}


@pytest.mark.asyncio
async def test_unknown_queue(source):
    with aioresponses() as mocked:
        mocked.get(KYIV_URL, payload=PAYLOAD)
        with pytest.raises(ValueError):
            await source.get_schedule("kyiv", "9.9")


@pytest.mark.asyncio
async def test_unknown_region(source):
    with aioresponses() as mocked:
        mocked.get(f"{BASE_URL}/mars.json", status=404)
        with pytest.raises(ValueError):
            await source.get_schedule("mars", "3.1")


@pytest.mark.asyncio
async def test_server_error_is_connection_error(source):
    with aioresponses() as mocked:
        mocked.get(KYIV_URL, status=500)
        with pytest.raises(ConnectionError):
            await source.get_schedule("kyiv", "3.1")


@pytest.mark.asyncio
async def test_network_failure_is_connection_error(source):
    with aioresponses() as mocked:
        mocked.get(KYIV_URL, exception=aiohttp.ClientConnectionError("refused"))
        with pytest.raises(ConnectionError):
            await source.get_schedule("kyiv", "3.1")


@pytest.mark.asyncio
async def test_non_json_response(source):
    with aioresponses() as mocked:
        mocked.get(KYIV_URL, body="<html>maintenance</html>", content_type="text/html")
        with pytest.raises(ConnectionError):
            await source.get_schedule("kyiv", "3.1")


def test_factory_reads_environment():
    with patch.dict(os.environ, {"SCHEDULE_API_URL": "http://other.test/"}):
        assert get_data_source().base_url == "http://other.test"
    with patch.dict(os.environ, {}, clear=True):
        assert get_data_source().base_url == DEFAULT_SCHEDULE_API_URL
