"""
Reconnect supervisor - brings lost devices back without operator action.

Every ``interval`` seconds (or shortly after ``trigger()``), if any role is
disconnected, the full startup sequence is run again. Attempts are counted;
after ``max_attempts`` consecutive attempts without every role connected the
supervisor only reports exhaustion until all roles are back.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from xl2_logger.core.asyncio_utils import cancel_task, create_logged_task
from xl2_logger.core.constants import RECONNECT_CHECK_INTERVAL, RECONNECT_MAX_ATTEMPTS
from xl2_logger.core.events import EventSink, EventType, NullEventSink, RigEvent
from xl2_logger.core.logging_utils import get_module_logger
from .orchestrator import ConnectionOrchestrator

logger = get_module_logger("ReconnectSupervisor")

TRIGGER_DELAY = 2.0


class ReconnectOutcome(Enum):
    HEALTHY = "healthy"
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


@dataclass
class ReconnectConfig:
    """Configuration for reconnection behavior."""
    interval: float = RECONNECT_CHECK_INTERVAL
    max_attempts: int = RECONNECT_MAX_ATTEMPTS
    trigger_delay: float = TRIGGER_DELAY


class ReconnectSupervisor:
    """Periodically re-runs startup while any role is disconnected."""

    def __init__(
        self,
        orchestrator: ConnectionOrchestrator,
        config: Optional[ReconnectConfig] = None,
        sink: Optional[EventSink] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self.config = config or ReconnectConfig()
        self._sink = sink or NullEventSink()
        self._attempts = 0
        self._in_progress = False
        self._task: Optional[asyncio.Task[Any]] = None
        self._wake = asyncio.Event()

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _disconnected_roles(self) -> list[str]:
        return [
            role.value
            for role, session in self._orchestrator.sessions.items()
            if role in self._orchestrator.roles and not session.is_connected
        ]

    def _connected_map(self) -> dict[str, bool]:
        return {
            role.value: self._orchestrator.sessions[role].is_connected
            for role in self._orchestrator.roles
        }

    def _emit(self, event_type: EventType, **payload: Any) -> None:
        self._sink.emit(RigEvent(event_type, payload=payload))

    async def check_once(self) -> ReconnectOutcome:
        """Run one health check, reconnecting if needed."""
        if self._in_progress:
            return ReconnectOutcome.SKIPPED

        missing = self._disconnected_roles()
        if not missing:
            if self._attempts:
                logger.info("All devices connected, resetting attempt counter")
                self._attempts = 0
            return ReconnectOutcome.HEALTHY

        if self._attempts >= self.config.max_attempts:
            logger.warning(
                "Maximum reconnection attempts (%d) reached, manual intervention required",
                self.config.max_attempts,
            )
            self._emit(EventType.RECONNECT_EXHAUSTED, max_attempts=self.config.max_attempts, **self._connected_map())
            return ReconnectOutcome.EXHAUSTED

        self._in_progress = True
        self._attempts += 1
        try:
            logger.warning(
                "Disconnected: %s, reconnection attempt %d/%d",
                ", ".join(missing), self._attempts, self.config.max_attempts,
            )
            self._emit(EventType.RECONNECT_STARTED, attempt=self._attempts, max_attempts=self.config.max_attempts)
            result = await self._orchestrator.run_startup()
        finally:
            self._in_progress = False

        connected = self._connected_map()
        if all(connected.values()):
            logger.info("Device reconnection successful, all devices connected")
            self._attempts = 0
            self._emit(EventType.RECONNECT_SUCCEEDED, **connected)
            return ReconnectOutcome.SUCCEEDED
        if any(connected.values()):
            logger.warning("Partial reconnection: %s", connected)
            self._emit(EventType.RECONNECT_PARTIAL, attempt=self._attempts, **connected)
            return ReconnectOutcome.PARTIAL

        logger.error("Reconnection attempt %d failed: %s", self._attempts, "; ".join(result.summary.errors) or "no devices")
        self._emit(
            EventType.RECONNECT_FAILED,
            attempt=self._attempts,
            max_attempts=self.config.max_attempts,
            errors=list(result.summary.errors),
        )
        return ReconnectOutcome.FAILED

    def trigger(self) -> None:
        """Request a check soon, e.g. right after a disconnect event."""
        self._wake.set()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = create_logged_task(self._run(), logger=logger, name="reconnect-supervisor")
        logger.info("Automatic device reconnection every %.0fs", self.config.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        await cancel_task(task)

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.config.interval)
            except asyncio.TimeoutError:
                pass
            else:
                self._wake.clear()
                # let the session finish its cleanup first
                await asyncio.sleep(self.config.trigger_delay)
            try:
                await self.check_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Reconnection check failed")


__all__ = ["ReconnectConfig", "ReconnectOutcome", "ReconnectSupervisor"]
