"""
Event Schema Definitions for the smart home event pipeline.

Every producer (smart home pollers, test scripts, the relay API) emits the
same canonical Event shape; the bus never inspects or mutates it.
"""
from datetime import datetime, timezone
from typing import Any, Dict

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Event(BaseModel):
    """
    Canonical device/sensor state change.

    Accepts the legacy field names on input (``type`` for kind, ``timestamp``
    for observedAt, epoch numbers for timestamps) and serializes with
    camelCase keys.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(
        min_length=1,
        description="Device/source identifier (e.g. 'sensor.living_room_motion')"
    )

    kind: str = Field(
        min_length=1,
        validation_alias=AliasChoices("kind", "type"),
        description="Device domain/category (e.g. 'sensor', 'light')"
    )

    state: str = Field(
        default="",
        description="Reported device state (e.g. 'on', 'off', '21.5')"
    )

    attributes: Dict[str, Any] = Field(
        default_factory=dict,
        description="Platform attributes passed through untouched"
    )

    observed_at: datetime = Field(
        validation_alias=AliasChoices("observedAt", "observed_at", "timestamp"),
        serialization_alias="observedAt",
        description="When the state was captured (UTC)"
    )

    @field_validator("state", mode="before")
    @classmethod
    def _stringify_state(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    @field_validator("observed_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-safe dict with camelCase keys, as sent to partner systems."""
        return self.model_dump(mode="json", by_alias=True)


class RitualCompletion(BaseModel):
    """
    Published on the completion topic once per successful rule firing.
    """

    model_config = ConfigDict(frozen=True)

    source_event: Event
    rule: str = Field(description="Name of the rule that fired")
    triggered_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def for_event(cls, event: Event, rule: str) -> "RitualCompletion":
        # A device clock running ahead must not produce a completion that
        # precedes its source event.
        triggered_at = max(utc_now(), event.observed_at)
        return cls(source_event=event, rule=rule, triggered_at=triggered_at)
