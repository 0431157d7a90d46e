"""Event sink that records everything it receives."""

from __future__ import annotations

from typing import List, Optional

from xl2_logger.core.devices.types import DeviceRole
from xl2_logger.core.events import EventType, RigEvent


class RecordingEventSink:
    def __init__(self) -> None:
        self.events: List[RigEvent] = []

    def emit(self, event: RigEvent) -> None:
        self.events.append(event)

    def types(self) -> List[EventType]:
        return [event.type for event in self.events]

    def of_type(self, event_type: EventType, role: Optional[DeviceRole] = None) -> List[RigEvent]:
        return [
            event for event in self.events
            if event.type is event_type and (role is None or event.role is role)
        ]

    def clear(self) -> None:
        self.events.clear()
