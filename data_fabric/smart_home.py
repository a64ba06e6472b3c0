"""
Smart Home Integration

Polls a smart home platform (Home Assistant style ``GET /api/states``),
normalizes each device record and publishes it on the source's bus topic.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import httpx

from backend.app.core.logging import correlation_id_ctx, correlation_scope
from backend.app.core.resilience import exponential_backoff, retry_async
from backend.app.events.bus import EventBus
from backend.app.events.schemas import utc_now
from backend.app.events.topics import source_topic
from data_fabric.device_normalizer import DeviceNormalizer, MalformedRecordError

logger = logging.getLogger(__name__)


@dataclass
class SmartHomeConfig:
    base_url: str
    token: Optional[str] = None
    source: str = "ha"
    platform: str = "home_assistant"
    timeout: float = 10.0
    max_attempts: int = 1
    backoff_base: float = 0.5


class SmartHomeIntegration:
    """
    Fetches current device states and publishes them as canonical Events.

    poll() never raises: a failed fetch is logged and yields 0 published
    events, so the external scheduler can simply try again next tick.
    Re-polling unchanged state publishes duplicates; subscribers must treat
    delivery as at-least-once.
    """

    def __init__(
        self,
        config: SmartHomeConfig,
        bus: EventBus,
        normalizer: Optional[DeviceNormalizer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.bus = bus
        self.normalizer = normalizer or DeviceNormalizer()
        self.transport = transport
        self.topic = source_topic(config.source)

        self._fetch = retry_async(
            max_attempts=config.max_attempts,
            backoff=exponential_backoff(config.backoff_base),
        )(self._fetch_states)

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    async def _fetch_states(self) -> List[Any]:
        async with httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            transport=self.transport,
        ) as client:
            resp = await asyncio.wait_for(
                client.get("/api/states", headers=self._headers()),
                timeout=self.config.timeout,
            )
            resp.raise_for_status()
            data = resp.json()

        if not isinstance(data, list):
            raise ValueError(f"Expected a list of states, got {type(data).__name__}")
        return data

    async def poll(self) -> int:
        """Fetch, normalize and publish one batch. Returns the number of events published."""
        # a scheduled tick gets its own correlation id; a request-driven poll keeps the caller's
        with correlation_scope(correlation_id_ctx.get()):
            return await self._poll_once()

    async def _poll_once(self) -> int:
        try:
            records = await self._fetch()
        except Exception as e:
            logger.error(f"Smart home poll failed ({self.config.source} @ {self.config.base_url}): {e}")
            return 0

        captured_at = utc_now()
        published = 0
        skipped = 0
        for record in records:
            try:
                event = self.normalizer.normalize(record, self.config.platform, captured_at=captured_at)
            except MalformedRecordError as e:
                skipped += 1
                logger.warning(f"Skipping malformed device record from {self.config.source}: {e}")
                continue

            self.bus.publish(self.topic, event)
            published += 1

        logger.info(
            f"Smart home poll: published={published}, skipped={skipped}, topic={self.topic}"
        )
        return published
