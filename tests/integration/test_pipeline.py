"""
End-to-end: smart home poll -> bus -> rituals engine -> completion topic,
with every external system behind a mock transport.
"""
import asyncio

import pytest

from backend.app.core.config import Settings
from backend.app.core.pipeline import build_destinations, build_pipeline
from backend.app.events.topics import Topics
from backend.app.services.forwarding_gateway import ForwardFailure
from backend.app.workers.scheduled import start_scheduler, stop_scheduler

STATES = [
    {"entity_id": "sensor.hall_motion", "state": "on", "attributes": {"battery": 71}},
    {"entity_id": "light.hall", "state": "on", "attributes": {}},
    {"entity_id": "sensor.porch_motion", "state": "off", "attributes": {}},
]


def make_settings(**overrides) -> Settings:
    values = dict(
        home_assistant_url="http://homeassistant.test",
        home_assistant_token="token",
        heartware_api_url="http://heartware.test",
        terracare_api_url="http://terracare.test",
        forward_backoff_base_seconds=0.01,
        health_timeout_seconds=0.1,
    )
    values.update(overrides)
    return Settings(**values)


def test_destinations_require_a_base_url():
    destinations = build_destinations(make_settings(terracare_api_url=None))

    assert list(destinations) == ["heartware"]
    assert destinations["heartware"].forward_url == "http://heartware.test/api/events"


def test_no_smart_home_without_url(partners):
    pipeline = build_pipeline(make_settings(home_assistant_url=None), transport=partners.transport)

    assert pipeline.smart_home is None
    assert pipeline.bus.subscriber_count(Topics.SMART_HOME_HA) == 1


@pytest.mark.asyncio
async def test_poll_drives_rituals(partners):
    partners.script("homeassistant.test", STATES)
    pipeline = build_pipeline(make_settings(), transport=partners.transport)
    completions = []
    pipeline.bus.subscribe(Topics.RITUAL_COMPLETED, completions.append)

    assert await pipeline.smart_home.poll() == 3

    assert [c.source_event.id for c in completions] == ["sensor.hall_motion"]
    assert completions[0].rule == "sensor_activation"


@pytest.mark.asyncio
async def test_first_match_policy_from_settings(partners, tmp_path):
    rules = tmp_path / "rituals.yaml"
    rules.write_text(
        "rituals:\n"
        "  - name: anything_on\n"
        "    condition: state == 'on'\n"
        "    reaction: log_ritual\n"
        "  - name: sensor_on\n"
        "    condition: kind == 'sensor' and state == 'on'\n"
        "    reaction: log_ritual\n"
    )
    partners.script("homeassistant.test", STATES[:1])
    pipeline = build_pipeline(
        make_settings(rituals_path=str(rules), rituals_match_policy="first"),
        transport=partners.transport,
    )
    completions = []
    pipeline.bus.subscribe(Topics.RITUAL_COMPLETED, completions.append)

    await pipeline.smart_home.poll()

    assert [c.rule for c in completions] == ["anything_on"]


@pytest.mark.asyncio
async def test_completed_ritual_can_be_relayed(partners):
    partners.script("homeassistant.test", STATES[:1])
    partners.script("terracare.test", 503)
    pipeline = build_pipeline(make_settings(), transport=partners.transport)
    relayed = []

    async def relay(completion):
        relayed.append(
            await pipeline.gateway.forward(completion.source_event, ["heartware", "terracare"])
        )

    pipeline.bus.subscribe(Topics.RITUAL_COMPLETED, relay)

    await pipeline.smart_home.poll()
    await pipeline.bus.drain()

    (outcomes,) = relayed
    assert outcomes["heartware"] == {"received": True}
    assert isinstance(outcomes["terracare"], ForwardFailure)
    assert await pipeline.health.check_health() == {"heartware": "online", "terracare": "offline"}


@pytest.mark.asyncio
async def test_scheduler_polls_until_stopped(partners):
    partners.script("homeassistant.test", STATES)
    pipeline = build_pipeline(make_settings(), transport=partners.transport)

    task = start_scheduler(0.01, pipeline.smart_home.poll)
    await asyncio.sleep(0.1)
    await stop_scheduler(task)
    polls = len(partners.calls)

    assert polls >= 2
    assert task.done()
    await asyncio.sleep(0.03)
    assert len(partners.calls) == polls


@pytest.mark.asyncio
async def test_health_lists_partners_without_urls(partners):
    pipeline = build_pipeline(
        make_settings(heartware_api_url=None, terracare_api_url=None),
        transport=partners.transport,
    )

    assert await pipeline.health.check_health() == {"heartware": "offline", "terracare": "offline"}
    assert partners.calls == []
