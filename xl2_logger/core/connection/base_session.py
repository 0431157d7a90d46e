"""
Line session base - one live serial link for one device role.

Holds what the XL2 and GPS sessions share: the connect lock (a caller that
arrives while a connect is in flight waits for it instead of racing it),
the background line reader, link-loss handling and state reset.

Subclasses implement ``_establish`` (open the port, then ``_attach``) and
``handle_line``; the remaining hooks are optional.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, Protocol

from xl2_logger.core.asyncio_utils import cancel_task, create_logged_task
from xl2_logger.core.devices.types import DeviceRole
from xl2_logger.core.errors import NotConnectedError, PortIOError, RigError, ValidationError
from xl2_logger.core.events import EventSink, EventType, NullEventSink, RigEvent
from xl2_logger.core.logging_utils import StructuredLogger
from xl2_logger.core.validation import validate_port_path
from .serial_transport import SerialLineTransport, TransportFactory

PortLocator = Callable[[], Awaitable[Optional[str]]]


class RoleSession(Protocol):
    """What the orchestrator needs from a session."""

    role: DeviceRole

    @property
    def is_connected(self) -> bool:
        ...

    @property
    def port(self) -> Optional[str]:
        ...

    async def connect(self, port: Optional[str] = None) -> str:
        ...

    async def disconnect(self) -> None:
        ...


class LineSession:
    """Base class for sessions that own one line-oriented serial link."""

    role: DeviceRole = DeviceRole.UNKNOWN

    def __init__(
        self,
        logger: StructuredLogger,
        sink: Optional[EventSink] = None,
        transport_factory: TransportFactory = SerialLineTransport,
        port_locator: Optional[PortLocator] = None,
        default_port: Optional[str] = None,
    ) -> None:
        self.logger = logger
        self._sink = sink or NullEventSink()
        self._transport_factory = transport_factory
        self._port_locator = port_locator
        self._default_port = default_port

        self._transport: Optional[SerialLineTransport] = None
        self._port: Optional[str] = None
        self._reader_task: Optional[asyncio.Task[Any]] = None
        self._connect_lock = asyncio.Lock()
        self._connecting = False

    # ------------------------------------------------------------------
    # Properties

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_connected

    @property
    def port(self) -> Optional[str]:
        return self._port if self.is_connected else None

    @property
    def is_connecting(self) -> bool:
        return self._connecting

    def set_port_locator(self, locator: Optional[PortLocator]) -> None:
        self._port_locator = locator

    # ------------------------------------------------------------------
    # Lifecycle

    async def connect(self, port: Optional[str] = None) -> str:
        """Connect to ``port``, or to the configured/located port when None.

        Already connected to the same port (or no port requested): no-op.
        Connected elsewhere: the old link is closed first.
        """
        label = self.role.label
        if self._connect_lock.locked():
            self.logger.info("%s connection already in progress, waiting", label)

        async with self._connect_lock:
            if self.is_connected:
                if port is None or port == self._port:
                    self.logger.info("%s already connected to %s", label, self._port)
                    return self._port
                self.logger.info("%s connected to %s, switching to %s", label, self._port, port)
                await self.disconnect()

            self._connecting = True
            try:
                selected = validate_port_path(await self._select_port(port))
                self.logger.info("Connecting to %s at %s", label, selected)
                await self._establish(selected)
                await self._after_connect()
            except asyncio.CancelledError:
                await self._reset()
                raise
            except RigError as exc:
                self.logger.error("%s connection failed: %s", label, exc)
                await self._reset()
                raise
            except Exception as exc:
                self.logger.exception("%s connection failed", label)
                await self._reset()
                raise PortIOError(f"{label} connection failed: {exc}") from exc
            finally:
                self._connecting = False

        self.logger.info("%s connected on %s", label, selected)
        self._emit(EventType.ROLE_CONNECTED, port=selected)
        self._emit_status()
        return selected

    async def disconnect(self) -> None:
        """Best-effort shutdown, then close the port and reset all state."""
        if not self.is_connected:
            await self._reset()
            return

        port = self._port
        try:
            await self._before_disconnect()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.warning("Could not stop %s cleanly: %s", self.role.label, exc)

        await self._reset()
        self.logger.info("%s disconnected from %s", self.role.label, port)
        self._emit(EventType.ROLE_DISCONNECTED, port=port)
        self._emit_status()

    # ------------------------------------------------------------------
    # Subclass hooks

    async def _establish(self, port: str) -> None:
        raise NotImplementedError

    async def _after_connect(self) -> None:
        return None

    async def _before_disconnect(self) -> None:
        return None

    async def _on_reset(self) -> None:
        return None

    async def handle_line(self, line: str) -> None:
        raise NotImplementedError

    def status_payload(self) -> dict[str, Any]:
        return {"connected": self.is_connected, "port": self.port}

    # ------------------------------------------------------------------
    # Helpers

    async def _select_port(self, port: Optional[str]) -> str:
        if port:
            return port
        if self._default_port:
            return self._default_port
        if self._port_locator is not None:
            located = await self._port_locator()
            if located:
                return located
            raise ValidationError(f"No {self.role.label} device found")
        raise ValidationError(f"No {self.role.label} port specified")

    def _attach(self, transport: SerialLineTransport, port: str) -> None:
        self._transport = transport
        self._port = port
        self._reader_task = create_logged_task(
            self._read_loop(transport),
            logger=self.logger,
            name=f"{self.role.value}-reader",
        )

    def _require_connected(self) -> SerialLineTransport:
        transport = self._transport
        if transport is None or not transport.is_connected:
            raise NotConnectedError(f"Not connected to {self.role.label} device")
        return transport

    async def _read_loop(self, transport: SerialLineTransport) -> None:
        try:
            while self._transport is transport:
                line = await transport.read_line()
                if not line:
                    continue
                try:
                    await self.handle_line(line)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    self.logger.exception("Error handling %s line: %s", self.role.label, line)
        except PortIOError as exc:
            if self._transport is transport:
                await self._on_link_lost(exc)

    async def _on_link_lost(self, exc: Exception) -> None:
        port = self._port
        self.logger.warning("%s link lost on %s: %s", self.role.label, port, exc)
        self._emit(EventType.ROLE_ERROR, port=port, error=str(exc))
        await self._reset()
        self._emit(EventType.ROLE_DISCONNECTED, port=port, reason=str(exc))
        self._emit_status()

    async def _reset(self) -> None:
        transport, self._transport = self._transport, None
        self._port = None
        await self._on_reset()
        reader, self._reader_task = self._reader_task, None
        await cancel_task(reader)
        if transport is not None:
            await transport.close()

    def _emit(self, event_type: EventType, **payload: Any) -> None:
        self._sink.emit(RigEvent(event_type, role=self.role, payload=payload))

    def _emit_status(self) -> None:
        self._emit(EventType.CONNECTION_STATUS, **self.status_payload())


__all__ = ["LineSession", "PortLocator", "RoleSession"]
