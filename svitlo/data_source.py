from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, TypedDict
import os
import asyncio
import logging

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE_API_URL = "http://localhost:8000/schedules"
REQUEST_TIMEOUT_SECONDS = 30

# --- Data Models ---

class ShutdownSlot(TypedDict):
    shutdown: str  # Format: "HH:MM–HH:MM"

class ScheduleData(TypedDict, total=False):
    region: str
    queue: str
    schedule: Dict[str, List[ShutdownSlot]]  # Key: "dd.mm.yy"
    updated_at: Optional[str]

# --- Abstract Base Class ---

class ScheduleDataSource(ABC):
    """
    Abstract interface for retrieving outage schedules of one queue.
    """

    @abstractmethod
    async def get_schedule(self, region: str, queue: str) -> ScheduleData:
        """
        Retrieves the outage schedule for a queue of a region.

        Raises:
            ValueError: If the region or queue is unknown.
            ConnectionError: If data source is unreachable.
        """
        pass


class HttpScheduleDataSource(ScheduleDataSource):
    """
    Reads schedules from the JSON API:

        GET {base_url}/{region}.json
        {"region": "kyiv", "updated_at": "...",
         "queues": {"3.1": {"19.10.26": [{"shutdown": "08:00–12:00"}]}}}
    """

    def __init__(self, base_url: str, timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    async def _fetch_region(self, region: str) -> Dict[str, Any]:
        url = f"{self.base_url}/{region}.json"
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as response:
                if response.status == 404:
                    raise ValueError(f"Регіон {region} не знайдено")
                response.raise_for_status()
                try:
                    return await response.json()
                except aiohttp.ContentTypeError:
                    raise ConnectionError(f"Schedule API returned non-JSON response for {region}")

    async def get_schedule(self, region: str, queue: str) -> ScheduleData:
        logger.info(f"Fetching schedule for {region}, queue {queue}")
        try:
            data = await self._fetch_region(region)
        except aiohttp.ClientError as e:
            logger.error(f"Schedule API connection error for {region}: {e}", exc_info=True)
            raise ConnectionError("Помилка підключення до джерела графіків. Спробуйте пізніше.") from e
        except asyncio.TimeoutError as e:
            raise ConnectionError("Таймаут запиту до джерела графіків.") from e

        queues = data.get("queues") or {}
        if queue not in queues:
            raise ValueError(f"Черга {queue} відсутня у графіку регіону {region}")

        return ScheduleData(
            region=data.get("region", region),
            queue=queue,
            schedule=queues.get(queue) or {},
            updated_at=data.get("updated_at"),
        )


def get_data_source() -> ScheduleDataSource:
    """Factory for the configured schedule source."""
    base_url = os.getenv("SCHEDULE_API_URL", DEFAULT_SCHEDULE_API_URL)
    return HttpScheduleDataSource(base_url)
