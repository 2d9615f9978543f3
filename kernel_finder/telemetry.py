"""
Telemetry sink for kernel selection events.

Events are fire-and-forget: a failing sink is logged and never interrupts
the computation that reported the event.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Event names
PREFERRED_KERNEL = "DATASCIENCE.PREFERRED_KERNEL"
PREFERRED_KERNEL_EXACT_MATCH = "DATASCIENCE.PREFERRED_KERNEL_EXACT_MATCH"
KERNEL_RESOURCE_INFO = "DATASCIENCE.KERNEL_RESOURCE_INFO"


@dataclass
class TelemetryEvent:
    """One reported event."""
    name: str
    measures: Dict[str, float] = field(default_factory=dict)
    properties: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "measures": self.measures,
            "properties": self.properties,
            "timestamp": self.timestamp,
        }


class Telemetry:
    """Default sink: logs events at DEBUG level and keeps the most recent ones."""

    def __init__(self, max_events: int = 1000):
        self.max_events = max_events
        self.events: List[TelemetryEvent] = []

    def send_event(
        self,
        name: str,
        measures: Optional[Dict[str, float]] = None,
        properties: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            event = TelemetryEvent(name=name, measures=dict(measures or {}), properties=dict(properties or {}))
            self.events.append(event)
            if len(self.events) > self.max_events:
                del self.events[: len(self.events) - self.max_events]
            self._emit(event)
        except Exception as e:
            logger.warning(f"Failed to send telemetry event {name}: {e}")

    def _emit(self, event: TelemetryEvent) -> None:
        logger.debug(f"Telemetry {event.name}: measures={event.measures} properties={event.properties}")

    def events_named(self, name: str) -> List[TelemetryEvent]:
        return [event for event in self.events if event.name == name]

