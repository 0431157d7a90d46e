"""
Connection orchestrator - discovery, then connection, for every device role.

``run_startup`` runs three phases, each announced as a ``startup-phase``
event:

    scanning    enumerate ports and classify them
    connecting  per role, connect the best candidate; on failure walk the
                remaining candidates by descending confidence
    finalizing  count what connected and publish the result

Startup never raises. A role that found no device, or whose every candidate
failed, is reported as unsuccessful and the process keeps running.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from xl2_logger.core.devices.classifier import DeviceClassifier
from xl2_logger.core.devices.port_enumerator import PortEnumerator
from xl2_logger.core.devices.types import ACTIVE_ROLES, DeviceCandidate, DeviceRole, ScanResult, ScanSummary
from xl2_logger.core.errors import OrchestrationError
from xl2_logger.core.events import EventSink, EventType, NullEventSink, RigEvent
from xl2_logger.core.logging_utils import get_module_logger
from .base_session import RoleSession

logger = get_module_logger("Orchestrator")

PHASE_SCANNING = "scanning"
PHASE_CONNECTING = "connecting"
PHASE_FINALIZING = "finalizing"


@dataclass(frozen=True)
class RoleConnection:
    success: bool = False
    port: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "port": self.port, "error": self.error}


@dataclass(frozen=True)
class StartupSummary:
    devices_found: int = 0
    devices_connected: int = 0
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class StartupResult:
    """Outcome of one orchestration run. Never mutated after return."""
    connections: Mapping[DeviceRole, RoleConnection]
    summary: StartupSummary
    scan: Optional[ScanResult] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def connection(self, role: DeviceRole) -> RoleConnection:
        return self.connections.get(role, RoleConnection())

    def to_dict(self) -> dict[str, Any]:
        return {
            "connections": {role.value: conn.to_dict() for role, conn in self.connections.items()},
            "summary": {
                "devices_found": self.summary.devices_found,
                "devices_connected": self.summary.devices_connected,
                "errors": list(self.summary.errors),
            },
            "scan": self.scan.summary.to_dict() if self.scan else None,
            "timestamp": self.timestamp.isoformat(),
        }


class ConnectionOrchestrator:
    """
    Sequences discovery and connection for the XL2 and GPS roles.

    Usage:
        orchestrator = ConnectionOrchestrator(enumerator, classifier, sessions, sink)
        result = await orchestrator.run_startup()
        if not result.connection(DeviceRole.XL2).success:
            ...
    """

    def __init__(
        self,
        enumerator: PortEnumerator,
        classifier: DeviceClassifier,
        sessions: Mapping[DeviceRole, RoleSession],
        sink: Optional[EventSink] = None,
        roles: Iterable[DeviceRole] = ACTIVE_ROLES,
    ) -> None:
        self._enumerator = enumerator
        self._classifier = classifier
        self._sessions = dict(sessions)
        self._sink = sink or NullEventSink()
        self._roles = tuple(role for role in roles if role in self._sessions)
        self._last_startup: Optional[StartupResult] = None
        self._startup_lock = asyncio.Lock()
        self._current_phase: Optional[str] = None

    @property
    def sessions(self) -> dict[DeviceRole, RoleSession]:
        return dict(self._sessions)

    @property
    def roles(self) -> tuple[DeviceRole, ...]:
        return self._roles

    @property
    def last_startup(self) -> Optional[StartupResult]:
        return self._last_startup

    # ------------------------------------------------------------------
    # Operations

    async def run_startup(self) -> StartupResult:
        """Scan, connect and report. Never raises."""
        async with self._startup_lock:
            return await self._run_startup()

    async def _run_startup(self) -> StartupResult:
        logger.info("Starting device detection and connection sequence")
        connections: dict[DeviceRole, RoleConnection] = {role: RoleConnection() for role in self._roles}
        errors: list[str] = []
        scan: Optional[ScanResult] = None

        try:
            self._phase(PHASE_SCANNING, "Scanning for devices...")
            scan = await self.rescan()

            self._phase(PHASE_CONNECTING, "Connecting to devices...")
            for role in self._roles:
                connections[role] = await self._connect_role(role, scan, errors)

            self._phase(PHASE_FINALIZING, "Finalizing startup...")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            wrapped = exc if isinstance(exc, OrchestrationError) else OrchestrationError(
                f"Startup sequence failed: {exc}", phase=self._current_phase
            )
            logger.error("Startup sequence failed during %s: %s", wrapped.phase, exc)
            errors.append(wrapped.message)
            for role in self._roles:
                if not connections[role].success and connections[role].error is None:
                    connections[role] = RoleConnection(success=False, error=str(exc))

        result = StartupResult(
            connections=dict(connections),
            summary=StartupSummary(
                devices_found=scan.summary.total_ports if scan else 0,
                devices_connected=sum(1 for conn in connections.values() if conn.success),
                errors=tuple(errors),
            ),
            scan=scan,
        )
        self._last_startup = result
        self._sink.emit(RigEvent(EventType.STARTUP_COMPLETE, payload=result.to_dict()))
        logger.info(
            "Startup sequence completed: %d found, %d connected, %d errors",
            result.summary.devices_found, result.summary.devices_connected, len(errors),
        )
        return result

    async def rescan(self) -> ScanResult:
        """Enumerate and classify ports again; connections are left alone.

        Ports owned by connected sessions are not probed.
        """
        logger.info("Scanning for devices")
        try:
            ports = await self._enumerator.list_ports()
            return await self._classifier.classify(ports, held=self._held_ports())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Device scan failed: %s", exc)
            raise OrchestrationError(f"Device scan failed: {exc}", phase=PHASE_SCANNING) from exc

    async def reconnect(self) -> dict[DeviceRole, RoleConnection]:
        """Connect every role again from the last scan, without re-probing."""
        scan = self._classifier.last_result
        if scan is None:
            raise OrchestrationError(
                "No scan results available, run rescan() first", phase=PHASE_CONNECTING
            )
        logger.info("Reconnecting to devices")
        errors: list[str] = []
        return {role: await self._connect_role(role, scan, errors) for role in self._roles}

    def best_candidate(self, role: DeviceRole) -> Optional[DeviceCandidate]:
        return self._classifier.best(role)

    def all_candidates(self) -> tuple[DeviceCandidate, ...]:
        return self._classifier.all_candidates()

    def scan_summary(self) -> Optional[ScanSummary]:
        return self._classifier.summary()

    # ------------------------------------------------------------------
    # Internals

    def _phase(self, phase: str, message: str) -> None:
        self._current_phase = phase
        logger.info("Phase: %s", phase)
        self._sink.emit(RigEvent(EventType.STARTUP_PHASE, payload={"phase": phase, "message": message}))

    def _held_ports(self) -> dict[str, DeviceRole]:
        return {
            session.port: role
            for role, session in self._sessions.items()
            if session.is_connected and session.port
        }

    def _status(self, role: DeviceRole, success: bool, message: str, **extra: Any) -> None:
        self._sink.emit(
            RigEvent(
                EventType.CONNECTION_STATUS,
                role=role,
                payload={"success": success, "message": message, **extra},
            )
        )

    async def _connect_role(self, role: DeviceRole, scan: ScanResult, errors: list[str]) -> RoleConnection:
        label = role.label
        session = self._sessions[role]
        candidates = scan.for_role(role)

        if not candidates:
            logger.warning("No %s devices detected during scan", label)
            self._status(role, False, f"No {label} devices found during scan")
            return RoleConnection(success=False, error=f"No {label} devices found")

        last_error: Optional[str] = None
        for attempt, candidate in enumerate(candidates):
            kind = "best" if attempt == 0 else "alternative"
            logger.info(
                "Connecting to %s %s device at %s (%d%% confidence)",
                kind, label, candidate.path, candidate.confidence,
            )
            self._status(role, False, f"Connecting to {label} at {candidate.path}...")
            try:
                port = await session.connect(candidate.path)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = str(exc)
                if attempt == 0:
                    logger.error("Failed to connect to %s at %s: %s", label, candidate.path, exc)
                    errors.append(f"{label} connection failed: {exc}")
                else:
                    logger.warning("Alternative %s device at %s failed: %s", label, candidate.path, exc)
                self._status(role, False, f"{label} connection failed: {exc}", error=str(exc))
                continue

            logger.info("%s connected to %s", label, port)
            self._status(role, True, f"{label} connected to {port}", port=port)
            return RoleConnection(success=True, port=port)

        if len(candidates) > 1:
            logger.warning("All alternative %s devices failed", label)
        return RoleConnection(success=False, error=last_error)


__all__ = [
    "ConnectionOrchestrator",
    "RoleConnection",
    "StartupResult",
    "StartupSummary",
]
