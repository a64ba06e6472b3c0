"""Liveness aggregation over partner destinations: one probe each, no retry."""
import asyncio
import logging
from typing import Dict, Iterable, Mapping, Optional

import httpx

from backend.app.services.forwarding_gateway import Destination

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"


class HealthAggregator:
    """
    Probes ``GET {base_url}/health`` of each destination once.

    2xx -> "online"; any other status, timeout or transport error ->
    "offline". Probes run concurrently and independently; nothing is cached
    between calls.
    """

    def __init__(
        self,
        destinations: Mapping[str, Destination],
        timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        always_report: Iterable[str] = (),
    ):
        self.destinations = dict(destinations)
        self.timeout = timeout
        self.transport = transport
        # reported even when unconfigured (as "offline")
        self.always_report = tuple(always_report)

    async def check_health(self, names: Optional[Iterable[str]] = None) -> Dict[str, str]:
        if names is None:
            names = [*self.always_report, *self.destinations]
        names = list(dict.fromkeys(names))
        if not names:
            return {}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            statuses = await asyncio.gather(*(self._probe(client, name) for name in names))

        return dict(zip(names, statuses))

    async def _probe(self, client: httpx.AsyncClient, name: str) -> str:
        destination = self.destinations.get(name)
        if destination is None:
            return OFFLINE

        try:
            resp = await asyncio.wait_for(client.get(destination.health_url), timeout=self.timeout)
        except Exception as e:
            logger.warning(f"Health probe for {name} failed: {e!r}")
            return OFFLINE

        if resp.is_success:
            return ONLINE
        logger.warning(f"Health probe for {name} returned {resp.status_code}")
        return OFFLINE
