"""Services package."""

from backend.app.services.forwarding_gateway import Destination, ForwardFailure, ForwardingGateway
from backend.app.services.health_aggregator import HealthAggregator
from backend.app.services.rituals_engine import Rule, RuleEngine, load_rules

__all__ = [
    "Destination",
    "ForwardFailure",
    "ForwardingGateway",
    "HealthAggregator",
    "Rule",
    "RuleEngine",
    "load_rules",
]
