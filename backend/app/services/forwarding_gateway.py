"""
Forwarding Gateway.

Relays canonical events to named partner systems (Heartware, Terracare
ledger). Each destination gets one POST ``{"event": ...}`` with bounded
retries; destinations are attempted concurrently and in isolation, so one
slow or failing partner never blocks or aborts the others.

Outcome per destination is either the partner's response body or a
ForwardFailure. Unknown destination names are ignored: no entry, no call.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

import httpx
from pydantic import BaseModel, Field

from backend.app.core.logging import get_logger
from backend.app.core.resilience import exponential_backoff, is_transient_error, retry_async
from backend.app.events.schemas import Event

logger = get_logger(__name__)

# Built-in partner systems
PARTNER_NAMES = ("heartware", "terracare")


@dataclass(frozen=True)
class Destination:
    """A partner system reachable over HTTP."""
    name: str
    base_url: str
    events_path: str = "/api/events"
    health_path: str = "/health"

    @property
    def forward_url(self) -> str:
        return self.base_url.rstrip("/") + self.events_path

    @property
    def health_url(self) -> str:
        return self.base_url.rstrip("/") + self.health_path


class ForwardFailure(BaseModel):
    """Failure descriptor for one destination after retries are exhausted."""

    error: str = Field(description="Message of the last error")
    retryable: bool = Field(description="True if the last error was transient (network, timeout, 5xx, 429)")
    attempts: int = Field(description="Attempts made, including the first")
    status_code: Optional[int] = Field(default=None, description="HTTP status of the last response, if any")


def describe_error(exc: BaseException, timeout: Optional[float] = None) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"{exc.response.status_code} {exc.response.reason_phrase}".strip()
    if isinstance(exc, asyncio.TimeoutError) or isinstance(exc, httpx.TimeoutException):
        return str(exc) or f"timed out after {timeout}s"
    return str(exc) or exc.__class__.__name__


def response_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return {"status_code": resp.status_code, "body": resp.text}


class ForwardingGateway:
    """
    Forwards events to configured destinations.

    Retry policy: up to ``max_attempts`` total attempts per destination,
    waiting backoff_base, 2*backoff_base, ... between attempts. Only
    transient failures are retried; a 4xx rejection fails immediately with
    ``retryable=False``.
    """

    def __init__(
        self,
        destinations: Mapping[str, Destination],
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.destinations: Dict[str, Destination] = dict(destinations)
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.timeout = timeout
        self.transport = transport
        self._sleep = sleep

    def resolve(self, names: Iterable[str]) -> List[Destination]:
        """Known destinations in request order, duplicates collapsed."""
        resolved: List[Destination] = []
        seen = set()
        for name in names:
            if name in seen:
                continue
            seen.add(name)
            destination = self.destinations.get(name)
            if destination is None:
                logger.debug(f"Ignoring unknown destination: {name}")
                continue
            resolved.append(destination)
        return resolved

    async def forward(self, event: Event, destinations: Iterable[str]) -> Dict[str, Any]:
        """Forward one event. Never raises for destination failures."""
        targets = self.resolve(destinations)
        if not targets:
            return {}

        payload = {"event": event.to_payload()}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            outcomes = await asyncio.gather(
                *(self._forward_one(client, destination, payload) for destination in targets)
            )

        results = {destination.name: outcome for destination, outcome in zip(targets, outcomes)}
        failed = [name for name, outcome in results.items() if isinstance(outcome, ForwardFailure)]
        logger.info(
            f"Forwarded event {event.id} to {len(results)} destination(s), failed={failed}"
        )
        return results

    async def _forward_one(self, client: httpx.AsyncClient, destination: Destination, payload: dict) -> Any:
        attempts = 0

        @retry_async(
            max_attempts=self.max_attempts,
            backoff=exponential_backoff(self.backoff_base),
            retry_on=is_transient_error,
            sleep=self._sleep,
        )
        async def send() -> httpx.Response:
            nonlocal attempts
            attempts += 1
            resp = await asyncio.wait_for(
                client.post(destination.forward_url, json=payload),
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return resp

        try:
            resp = await send()
        except Exception as e:
            status_code = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            failure = ForwardFailure(
                error=describe_error(e, self.timeout),
                retryable=is_transient_error(e),
                attempts=attempts,
                status_code=status_code,
            )
            logger.warning(
                f"Forward to {destination.name} failed after {attempts} attempt(s): {failure.error}",
                extra={"extra_data": {"destination": destination.name, "retryable": failure.retryable}},
            )
            return failure

        return response_body(resp)
