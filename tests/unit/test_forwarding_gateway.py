"""
Unit tests for the forwarding gateway (retries, isolation, outcome map).
"""
import asyncio
import json
import time

import httpx
import pytest

from backend.app.services.forwarding_gateway import ForwardFailure, ForwardingGateway


@pytest.mark.asyncio
async def test_forwards_only_to_requested_destination(gateway, partners, sensor_event):
    outcomes = await gateway.forward(sensor_event, ["heartware"])

    assert partners.hosts_called() == ["heartware.test"]
    assert outcomes == {"heartware": {"received": True}}


@pytest.mark.asyncio
async def test_forwards_to_both_destinations(gateway, partners, sensor_event):
    outcomes = await gateway.forward(sensor_event, ["heartware", "terracare"])

    assert sorted(partners.hosts_called()) == ["heartware.test", "terracare.test"]
    assert set(outcomes) == {"heartware", "terracare"}
    assert partners.calls_to("heartware.test")[0].url.path == "/api/events"
    assert partners.calls_to("terracare.test")[0].url.path == "/api/proofs"


@pytest.mark.asyncio
async def test_unknown_destination_is_ignored(gateway, partners, sensor_event):
    assert await gateway.forward(sensor_event, ["zeta"]) == {}
    assert partners.calls == []

    outcomes = await gateway.forward(sensor_event, ["zeta", "terracare"])
    assert list(outcomes) == ["terracare"]


@pytest.mark.asyncio
async def test_duplicate_names_are_sent_once(gateway, partners, sensor_event):
    await gateway.forward(sensor_event, ["heartware", "heartware"])
    assert partners.hosts_called() == ["heartware.test"]


@pytest.mark.asyncio
async def test_request_body_carries_the_event(gateway, partners, sensor_event):
    await gateway.forward(sensor_event, ["heartware"])

    body = json.loads(partners.calls[0].content)
    assert body == {"event": sensor_event.to_payload()}


@pytest.mark.asyncio
async def test_succeeds_on_third_attempt_after_two_backoffs(destinations, partners, sensor_event):
    partners.script("heartware.test", 503, httpx.ConnectError("refused"), {"accepted": 1})
    gateway = ForwardingGateway(destinations, backoff_base=0.05, transport=partners.transport)

    started = time.monotonic()
    outcomes = await gateway.forward(sensor_event, ["heartware"])
    elapsed = time.monotonic() - started

    assert outcomes == {"heartware": {"accepted": 1}}
    assert len(partners.calls) == 3
    assert elapsed >= 0.05 + 0.10


@pytest.mark.asyncio
async def test_backoff_delays_double(destinations, partners, sensor_event):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    partners.script("heartware.test", 500)
    gateway = ForwardingGateway(
        destinations, max_attempts=3, backoff_base=0.5, transport=partners.transport, sleep=fake_sleep
    )

    await gateway.forward(sensor_event, ["heartware"])

    assert delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_exhausted_retries_yield_retryable_failure(gateway, partners, sensor_event):
    partners.script("terracare.test", 500, 502, httpx.ConnectError("connection refused"))

    outcomes = await gateway.forward(sensor_event, ["terracare"])

    failure = outcomes["terracare"]
    assert isinstance(failure, ForwardFailure)
    assert failure.retryable is True
    assert failure.attempts == 3
    assert failure.error == "connection refused"
    assert len(partners.calls) == 3


@pytest.mark.asyncio
async def test_client_error_is_not_retried(gateway, partners, sensor_event):
    partners.script("terracare.test", 404)

    outcomes = await gateway.forward(sensor_event, ["terracare"])

    failure = outcomes["terracare"]
    assert failure.retryable is False
    assert failure.attempts == 1
    assert failure.status_code == 404
    assert failure.error == "404 Not Found"


@pytest.mark.asyncio
async def test_one_failing_destination_does_not_affect_the_other(gateway, partners, sensor_event):
    partners.script("heartware.test", 500)

    outcomes = await gateway.forward(sensor_event, ["heartware", "terracare"])

    assert isinstance(outcomes["heartware"], ForwardFailure)
    assert outcomes["terracare"] == {"received": True}


@pytest.mark.asyncio
async def test_hung_destination_is_bounded_by_timeout(destinations, partners, sensor_event):
    partners.script("heartware.test", "hang")
    gateway = ForwardingGateway(
        destinations, max_attempts=2, backoff_base=0.01, timeout=0.05, transport=partners.transport
    )

    outcomes = await asyncio.wait_for(
        gateway.forward(sensor_event, ["heartware", "terracare"]), timeout=2
    )

    assert outcomes["heartware"].retryable is True
    assert outcomes["heartware"].attempts == 2
    assert outcomes["heartware"].error == "timed out after 0.05s"
    assert outcomes["terracare"] == {"received": True}


@pytest.mark.asyncio
async def test_non_json_success_body(destinations, sensor_event):
    transport = httpx.MockTransport(lambda request: httpx.Response(202, text="queued"))
    gateway = ForwardingGateway(destinations, transport=transport)

    outcomes = await gateway.forward(sensor_event, ["heartware"])

    assert outcomes == {"heartware": {"status_code": 202, "body": "queued"}}
