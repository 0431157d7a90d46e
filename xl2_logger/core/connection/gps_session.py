"""GPS session - holds the receiver's serial link and forwards its sentences.

Decoding is left to the sentence handler; this session only finds the baud
rate the receiver talks at and keeps the stream flowing.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from xl2_logger.core.config import GpsConfig
from xl2_logger.core.constants import CONNECTION_TIMEOUT, GPS_BAUD_RATES_UNIX
from xl2_logger.core.devices.probes import prioritized_baud_rates
from xl2_logger.core.devices.types import DeviceRole
from xl2_logger.core.errors import DeviceTimeoutError, PortIOError
from xl2_logger.core.events import EventSink
from xl2_logger.core.logging_utils import get_module_logger
from .base_session import LineSession, PortLocator
from .serial_transport import SerialLineTransport, TransportFactory

logger = get_module_logger("GpsSession")

SentenceHandler = Callable[[str], Union[Awaitable[None], None]]


class GpsSession(LineSession):
    """Serial link to the GPS receiver.

    Example:
        session = GpsSession(sentence_handler=parser.feed)
        await session.connect("/dev/ttyACM1")
    """

    role = DeviceRole.GPS

    def __init__(
        self,
        config: Optional[GpsConfig] = None,
        sink: Optional[EventSink] = None,
        transport_factory: TransportFactory = SerialLineTransport,
        port_locator: Optional[PortLocator] = None,
        baud_rates: Sequence[int] = GPS_BAUD_RATES_UNIX,
        sentence_handler: Optional[SentenceHandler] = None,
        sentence_timeout: float = CONNECTION_TIMEOUT,
    ) -> None:
        self.config = config or GpsConfig()
        super().__init__(
            logger,
            sink=sink,
            transport_factory=transport_factory,
            port_locator=port_locator,
            default_port=self.config.port,
        )
        self.baud_rates = tuple(baud_rates)
        self.sentence_handler = sentence_handler
        self.sentence_timeout = sentence_timeout

        self._baud_rate: Optional[int] = None
        self._sentence_count = 0
        self._last_sentence: Optional[str] = None

    @property
    def baud_rate(self) -> Optional[int]:
        return self._baud_rate if self.is_connected else None

    @property
    def sentence_count(self) -> int:
        return self._sentence_count

    @property
    def last_sentence(self) -> Optional[str]:
        return self._last_sentence

    async def _establish(self, port: str) -> None:
        last_error: Optional[Exception] = None
        for baudrate in prioritized_baud_rates(self.baud_rates):
            transport = self._transport_factory(port, baudrate)
            try:
                await transport.open(timeout=self.sentence_timeout)
                first = await self._wait_for_sentence(transport)
            except asyncio.CancelledError:
                await transport.close()
                raise
            except (PortIOError, DeviceTimeoutError) as exc:
                await transport.close()
                last_error = exc
                logger.debug("No GPS data on %s at %d baud: %s", port, baudrate, exc)
                continue

            if first is None:
                await transport.close()
                logger.debug("No GPS data on %s at %d baud", port, baudrate)
                continue

            self._baud_rate = baudrate
            self._attach(transport, port)
            logger.info("GPS streaming on %s at %d baud", port, baudrate)
            try:
                await self.handle_line(first)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error handling GPS line: %s", first)
            return

        if isinstance(last_error, PortIOError):
            raise last_error
        raise DeviceTimeoutError(f"No GPS data on {port} at any baud rate")

    async def _wait_for_sentence(self, transport: SerialLineTransport) -> Optional[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.sentence_timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            line = await transport.read_line(timeout=remaining)
            if line is None:
                return None
            if line.startswith("$"):
                return line

    async def _on_reset(self) -> None:
        self._baud_rate = None

    async def handle_line(self, line: str) -> None:
        if not line.startswith("$"):
            return
        self._sentence_count += 1
        self._last_sentence = line
        if self.sentence_handler is None:
            return
        result = self.sentence_handler(line)
        if inspect.isawaitable(result):
            await result

    def status_payload(self) -> dict[str, Any]:
        return {
            "connected": self.is_connected,
            "port": self.port,
            "baud_rate": self.baud_rate,
            "sentences": self._sentence_count,
        }


__all__ = ["GpsSession", "SentenceHandler"]
