"""Event emission for protection decisions.

The protection core reports notable decisions (blocks, detections, mitigations)
through an ``EventSink`` handed to it at construction time. The web layer can
plug in a websocket broadcaster; by default events are only logged.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

logger = logging.getLogger(__name__)

IP_BLOCKED = "ip_blocked"
IP_UNBLOCKED = "ip_unblocked"
IP_WHITELISTED = "ip_whitelisted"
BRUTE_FORCE_DETECTED = "brute_force_detected"
DDOS_DETECTED = "ddos_detected"
DDOS_MITIGATED = "ddos_mitigated"


class EventSink(Protocol):
    """Callable receiving protection events."""

    def __call__(self, event: str, payload: Mapping[str, Any]) -> None: ...


class LoggingEventSink:
    """Event sink that writes every event to the module logger."""

    def __call__(self, event: str, payload: Mapping[str, Any]) -> None:
        logger.info("protection event %s: %s", event, dict(payload))


class RecordingEventSink:
    """Event sink that keeps events in memory, used by admin tooling and tests."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, event: str, payload: Mapping[str, Any]) -> None:
        self.events.append((event, dict(payload)))

    def named(self, event: str) -> list[dict[str, Any]]:
        """Return payloads of all recorded events with the given name."""
        return [payload for name, payload in self.events if name == event]


def emit(sink: EventSink | None, event: str, payload: Mapping[str, Any]) -> None:
    """Deliver an event, never letting a faulty sink break the caller."""
    if sink is None:
        return
    try:
        sink(event, payload)
    except Exception:  # pragma: no cover - sink implementations are external
        logger.exception("Event sink failed while handling %s", event)
