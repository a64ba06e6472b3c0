"""
Device Normalizer

Translates platform-specific smart home device records (Home Assistant,
generic hubs) into the canonical Event shape.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError

from backend.app.events.schemas import Event, utc_now

logger = logging.getLogger(__name__)


class MalformedRecordError(ValueError):
    """Raised when a raw device record cannot be mapped to an Event."""


class DeviceNormalizer:
    """
    Normalizes raw device records into canonical Events.

    observed_at is always the capture time handed in by the caller (or now),
    not a platform timestamp: the platform's own clocks are only kept as
    attributes.
    """

    PLATFORMS = ("home_assistant", "generic")

    def normalize(
        self,
        record: Any,
        platform: str = "home_assistant",
        captured_at: Optional[datetime] = None,
    ) -> Event:
        """
        Main entry point for normalization.
        """
        if not isinstance(record, dict):
            raise MalformedRecordError(f"Expected a mapping, got {type(record).__name__}")

        observed_at = captured_at or utc_now()
        if platform.lower() == "home_assistant":
            fields = self._map_home_assistant(record)
        else:
            fields = self._map_generic(record)

        try:
            return Event(observed_at=observed_at, **fields)
        except ValidationError as e:
            raise MalformedRecordError(str(e)) from e

    def _map_home_assistant(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Home Assistant /api/states entries: entity_id is '<domain>.<object_id>'.
        """
        entity_id = record.get("entity_id")
        if not isinstance(entity_id, str) or not entity_id:
            raise MalformedRecordError("Missing entity_id")

        attributes = record.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise MalformedRecordError(f"attributes of {entity_id} is not a mapping")

        return {
            "id": entity_id,
            "kind": record.get("domain") or self._domain_of(entity_id),
            "state": record.get("state"),
            "attributes": attributes,
        }

    def _map_generic(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Fallback for hubs already emitting id/type/state/attributes."""
        device_id = record.get("id") or record.get("entity_id")
        if not device_id:
            raise MalformedRecordError("Missing id")

        return {
            "id": str(device_id),
            "kind": record.get("type") or record.get("kind") or record.get("domain") or "",
            "state": record.get("state"),
            "attributes": record.get("attributes") or {},
        }

    @staticmethod
    def _domain_of(entity_id: str) -> str:
        domain, _, _ = entity_id.partition(".")
        return domain
