"""
Rig Events - typed lifecycle and measurement notifications.

The core only writes events into an :class:`EventSink`; broadcast layers
subscribe by draining a sink, they never call back into the core.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol

from .constants import EVENT_QUEUE_SIZE
from .devices.types import DeviceRole
from .logging_utils import get_module_logger

logger = get_module_logger("Events")


class EventType(str, Enum):
    SCAN_STARTED = "scan-started"
    SCAN_COMPLETED = "scan-completed"
    ROLE_CONNECTED = "role-connected"
    ROLE_DISCONNECTED = "role-disconnected"
    ROLE_ERROR = "role-error"
    DEVICE_INFO = "device-info"
    MEASUREMENT = "measurement"
    FREQUENCY_TABLE = "frequency-table"
    SPECTRUM = "spectrum"
    COMMAND_SENT = "command-sent"
    STARTUP_PHASE = "startup-phase"
    STARTUP_COMPLETE = "startup-complete"
    CONNECTION_STATUS = "connection-status"
    RECONNECT_STARTED = "reconnect-started"
    RECONNECT_SUCCEEDED = "reconnect-succeeded"
    RECONNECT_PARTIAL = "reconnect-partial"
    RECONNECT_FAILED = "reconnect-failed"
    RECONNECT_EXHAUSTED = "reconnect-exhausted"
    GPS_POSITION = "gps-position"
    LOGGING_STARTED = "logging-started"
    LOGGING_STOPPED = "logging-stopped"


@dataclass(frozen=True)
class RigEvent:
    """
    One notification produced by the core.

    Attributes:
        type: What happened
        role: Device role the event concerns, None for rig-wide events
        payload: Event-specific data, JSON-friendly
        timestamp: When the event was produced (UTC)
    """
    type: EventType
    role: Optional[DeviceRole] = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "role": self.role.value if self.role else None,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


class EventSink(Protocol):
    """Receiver of rig events. ``emit`` must never block."""

    def emit(self, event: RigEvent) -> None:
        ...


class NullEventSink:
    """Discards everything."""

    def emit(self, event: RigEvent) -> None:
        return None


class LoggingEventSink:
    """Writes each event to the log at DEBUG."""

    def __init__(self) -> None:
        self._logger = get_module_logger("Events")

    def emit(self, event: RigEvent) -> None:
        role = event.role.value if event.role else "-"
        self._logger.debug("%s (%s) %s", event.type.value, role, event.payload)


class QueueEventSink:
    """Bounded asyncio queue of events; the oldest event is dropped on overflow."""

    def __init__(self, maxsize: int = EVENT_QUEUE_SIZE) -> None:
        self._queue: asyncio.Queue[RigEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def emit(self, event: RigEvent) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                except asyncio.QueueEmpty:  # pragma: no cover - maxsize <= 0 never fills
                    return
                self.dropped += 1
                if self.dropped == 1 or self.dropped % 100 == 0:
                    logger.warning("Event queue full, dropped %d events so far", self.dropped)

    async def get(self) -> RigEvent:
        return await self._queue.get()

    def get_nowait(self) -> RigEvent:
        return self._queue.get_nowait()

    def qsize(self) -> int:
        return self._queue.qsize()


__all__ = [
    "EventSink",
    "EventType",
    "LoggingEventSink",
    "NullEventSink",
    "QueueEventSink",
    "RigEvent",
]
