"""
Pytest configuration and fixtures.

Partner systems and the smart home platform are faked with
httpx.MockTransport; no network access is needed.
"""

import asyncio
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, List

import httpx
import pytest
from httpx import AsyncClient, ASGITransport

from backend.app.main import app
from backend.app.core.pipeline import get_bus, get_gateway, get_health_aggregator
from backend.app.events.bus import EventBus
from backend.app.events.schemas import Event
from backend.app.services.forwarding_gateway import Destination, ForwardingGateway
from backend.app.services.health_aggregator import HealthAggregator

HEARTWARE_URL = "http://heartware.test"
TERRACARE_URL = "http://terracare.test"


class FakePartners:
    """
    Scriptable stand-in for every external HTTP endpoint.

    script(host, *outcomes) queues outcomes for a host; the last one repeats.
    An outcome is an int status, a dict (200 JSON body), an exception
    instance to raise, or "hang" to never answer within any test timeout.
    Unscripted hosts answer 200 {"received": true}.
    """

    def __init__(self):
        self.calls: List[httpx.Request] = []
        self._scripts: Dict[str, list] = {}

    def script(self, host: str, *outcomes) -> None:
        self._scripts[host] = list(outcomes)

    def hosts_called(self) -> List[str]:
        return [request.url.host for request in self.calls]

    def calls_to(self, host: str) -> List[httpx.Request]:
        return [request for request in self.calls if request.url.host == host]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        outcomes = self._scripts.get(request.url.host)
        if not outcomes:
            return httpx.Response(200, json={"received": True})

        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if outcome == "hang":
            await asyncio.sleep(30)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            return httpx.Response(outcome, json={"status": outcome})
        return httpx.Response(200, json=outcome)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def partners() -> FakePartners:
    return FakePartners()


@pytest.fixture
def bus() -> EventBus:
    """Fresh bus per test."""
    return EventBus(history_size=20)


@pytest.fixture
def sensor_event() -> Event:
    return Event(
        id="sensor.living_room_motion",
        kind="sensor",
        state="on",
        attributes={"location": "living_room", "battery": 98},
        observed_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def destinations() -> Dict[str, Destination]:
    return {
        "heartware": Destination("heartware", HEARTWARE_URL, events_path="/api/events"),
        "terracare": Destination("terracare", TERRACARE_URL, events_path="/api/proofs"),
    }


@pytest.fixture
def gateway(destinations, partners) -> ForwardingGateway:
    return ForwardingGateway(
        destinations,
        max_attempts=3,
        backoff_base=0.01,
        timeout=0.5,
        transport=partners.transport,
    )


@pytest.fixture
def health_aggregator(destinations, partners) -> HealthAggregator:
    return HealthAggregator(destinations, timeout=0.1, transport=partners.transport)


@pytest.fixture(scope="function")
async def client(bus, gateway, health_aggregator) -> AsyncGenerator[AsyncClient, None]:
    """
    Test client with pipeline components overridden by test instances.
    """
    app.dependency_overrides[get_bus] = lambda: bus
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_health_aggregator] = lambda: health_aggregator

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
