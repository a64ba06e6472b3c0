"""
Startup wiring.

Builds the event bus and every component around it once, and hands them to
each other explicitly. main.py stores the result on ``app.state.pipeline``;
routes reach components through the dependency getters below, which tests
override with components built around mock transports.
"""
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
from fastapi import Request

from backend.app.core.config import Settings
from backend.app.core.logging import get_logger
from backend.app.events.bus import EventBus
from backend.app.events.topics import source_topic
from backend.app.services.forwarding_gateway import PARTNER_NAMES, Destination, ForwardingGateway
from backend.app.services.health_aggregator import HealthAggregator
from backend.app.services.partner_clients import (
    LedgerClient,
    SpatialDataClient,
    get_ledger_client,
    get_spatial_client,
)
from backend.app.services.rituals_engine import RuleEngine, load_rules
from data_fabric.smart_home import SmartHomeConfig, SmartHomeIntegration

logger = get_logger(__name__)


@dataclass
class Pipeline:
    bus: EventBus
    rituals: RuleEngine
    gateway: ForwardingGateway
    health: HealthAggregator
    ledger: LedgerClient
    spatial: SpatialDataClient
    smart_home: Optional[SmartHomeIntegration] = None


def build_destinations(settings: Settings) -> Dict[str, Destination]:
    """Partner destinations with a configured base URL."""
    destinations = {}
    if settings.heartware_api_url:
        destinations["heartware"] = Destination("heartware", settings.heartware_api_url, events_path="/api/events")
    if settings.terracare_api_url:
        destinations["terracare"] = Destination("terracare", settings.terracare_api_url, events_path="/api/proofs")
    return destinations


def build_pipeline(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> Pipeline:
    bus = EventBus(history_size=settings.bus_history_size)

    smart_home = None
    if settings.home_assistant_url:
        smart_home = SmartHomeIntegration(
            SmartHomeConfig(
                base_url=settings.home_assistant_url,
                token=settings.home_assistant_token,
                source=settings.smart_home_source,
                platform=settings.smart_home_platform,
                timeout=settings.smart_home_timeout_seconds,
                max_attempts=settings.smart_home_poll_max_attempts,
            ),
            bus,
            transport=transport,
        )

    rituals = RuleEngine(bus, load_rules(settings.rituals_path), policy=settings.rituals_match_policy)
    rituals.attach(source_topic(settings.smart_home_source))

    destinations = build_destinations(settings)
    gateway = ForwardingGateway(
        destinations,
        max_attempts=settings.forward_max_attempts,
        backoff_base=settings.forward_backoff_base_seconds,
        timeout=settings.forward_timeout_seconds,
        transport=transport,
    )
    health = HealthAggregator(
        destinations,
        timeout=settings.health_timeout_seconds,
        transport=transport,
        always_report=PARTNER_NAMES,
    )

    logger.info(
        f"Pipeline built: destinations={sorted(destinations)}, "
        f"smart_home={'on' if smart_home else 'off'}, rituals={len(rituals.rules)}"
    )
    return Pipeline(
        bus=bus,
        rituals=rituals,
        gateway=gateway,
        health=health,
        ledger=get_ledger_client(settings),
        spatial=get_spatial_client(settings),
        smart_home=smart_home,
    )


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def get_bus(request: Request) -> EventBus:
    return get_pipeline(request).bus


def get_gateway(request: Request) -> ForwardingGateway:
    return get_pipeline(request).gateway


def get_health_aggregator(request: Request) -> HealthAggregator:
    return get_pipeline(request).health
