"""
Integration Relay Endpoints.

Forwards selected smart home / ritual events to partner systems and reports
partner liveness. Partial destination failures never fail the request:
callers must read the per-destination outcome map.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from backend.app.core.pipeline import get_bus, get_gateway, get_health_aggregator
from backend.app.events.bus import EventBus
from backend.app.events.schemas import Event
from backend.app.services.forwarding_gateway import ForwardingGateway
from backend.app.services.health_aggregator import HealthAggregator

logger = logging.getLogger(__name__)

router = APIRouter()


class ForwardRequest(BaseModel):
    """
    Body of POST /forward.

    Fields are typed loosely so that every malformed body is answered by the
    handler with 400 ``{"error": ...}`` rather than FastAPI's generic 422.
    """

    model_config = ConfigDict(populate_by_name=True)

    event: Any = Field(
        default=None,
        description="Canonical event (id, kind|type, state, attributes, observedAt|timestamp)"
    )

    forward_to: Any = Field(
        default=None,
        alias="forwardTo",
        description="Destination names, e.g. ['heartware', 'terracare']"
    )


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


def _destination_names(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list) or not all(isinstance(name, str) for name in value):
        return None
    return value


@router.post(
    "/forward",
    summary="Forward an event to partner systems",
    description="Relays the event to each named destination with bounded retries; always 200 once validated",
)
async def forward_event(
    body: Any = Body(default=None),
    gateway: ForwardingGateway = Depends(get_gateway),
):
    request = ForwardRequest.model_validate(body) if isinstance(body, dict) else ForwardRequest()
    if not request.event or request.forward_to is None:
        logger.warning("Forward request rejected: missing event or forwardTo")
        return _bad_request("Missing event or forwardTo")

    if not isinstance(request.event, dict):
        logger.warning("Forward request rejected: event is not an object")
        return _bad_request("Invalid event: must be an object")

    names = _destination_names(request.forward_to)
    if names is None:
        logger.warning(f"Forward request rejected: bad forwardTo {request.forward_to!r}")
        return _bad_request("Invalid forwardTo: must be a list of destination names")

    try:
        event = Event.model_validate(request.event)
    except ValidationError as e:
        logger.warning(f"Forward request rejected: invalid event: {e.error_count()} error(s)")
        return _bad_request(f"Invalid event: {e.errors(include_url=False)[0]['msg']}")

    outcomes = await gateway.forward(event, names)
    return JSONResponse(status_code=status.HTTP_200_OK, content=jsonable_encoder(outcomes))


@router.get("/health", summary="Partner liveness")
async def destinations_health(
    health: HealthAggregator = Depends(get_health_aggregator),
) -> Dict[str, str]:
    """One probe per destination, never fails: unreachable partners report 'offline'."""
    return await health.check_health()


@router.get("/bus", summary="Internal event bus statistics")
async def bus_stats(bus: EventBus = Depends(get_bus)) -> Dict[str, Any]:
    return bus.stats()
