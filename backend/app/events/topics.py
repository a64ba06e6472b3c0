"""Bus topic names. Topics are opaque strings; the bus does not parse them."""


class Topics:
    """In-process topic names."""
    SMART_HOME_HA = "smartHome.ha.event"
    RITUAL_COMPLETED = "ritual.completed"


def source_topic(source: str) -> str:
    """Canonical-event topic for one integration source ('ha' -> 'smartHome.ha.event')."""
    return f"smartHome.{source}.event"
