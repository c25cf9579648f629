"""MQTT topic constants."""

from __future__ import annotations


def build_topics(prefix: str = "solaris") -> dict[str, str]:
    """Build the fixed MQTT topic strings from a configurable prefix."""
    return {
        "telemetry": f"{prefix}/telemetry",
        "relay_all": f"{prefix}/relay/+",
    }


def relay_topic(prefix: str, relay_id: int) -> str:
    """Build the retained state topic for one relay."""
    return f"{prefix}/relay/{relay_id}"


def relay_id_from_topic(prefix: str, topic: str) -> int | None:
    """Extract the relay id from a relay state topic, or None if it isn't one."""
    head = f"{prefix}/relay/"
    if not topic.startswith(head):
        return None
    tail = topic[len(head):]
    return int(tail) if tail.isdigit() else None


def relay_pin_topic(prefix: str, relay_id: int) -> str:
    """Build the device pin command topic for one relay."""
    return f"{prefix}/device/relay/{relay_id}/pin"
