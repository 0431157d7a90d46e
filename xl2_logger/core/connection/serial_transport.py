"""Line-oriented serial transport on top of pyserial-asyncio.

Both device roles speak ASCII lines: the XL2 answers CRLF-terminated SCPI
style commands, GPS receivers stream NMEA sentences. This transport owns one
open port and hands out decoded, stripped lines.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Callable, Optional

import serial
import serial_asyncio

from xl2_logger.core.constants import LINE_TERMINATOR, PORT_CLOSE_TIMEOUT, PORT_OPEN_TIMEOUT
from xl2_logger.core.errors import NotConnectedError, PortIOError, with_timeout
from xl2_logger.core.logging_utils import get_module_logger

logger = get_module_logger("SerialTransport")


class SerialLineTransport:
    """Serial port exchanging text lines.

    Example:
        transport = SerialLineTransport("/dev/ttyACM0", 115200)
        await transport.open()
        try:
            await transport.write_line("*IDN?")
            print(await transport.read_line(timeout=3.0))
        finally:
            await transport.close()
    """

    def __init__(self, port: str, baudrate: int, encoding: str = "ascii") -> None:
        self.port = port
        self.baudrate = baudrate
        self.encoding = encoding

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._last_error: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self._reader is not None and self._writer is not None

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    async def open(self, timeout: float = PORT_OPEN_TIMEOUT) -> None:
        """Open the port. Raises PortIOError, or DeviceTimeoutError on timeout."""
        if self.is_connected:
            return
        try:
            self._reader, self._writer = await with_timeout(
                serial_asyncio.open_serial_connection(url=self.port, baudrate=self.baudrate),
                timeout,
                f"Opening {self.port}",
            )
        except asyncio.CancelledError:
            raise
        except TimeoutError as exc:
            self._last_error = str(exc)
            raise
        except (serial.SerialException, OSError, ValueError) as exc:
            self._last_error = str(exc)
            logger.debug("Failed to open %s at %d baud: %s", self.port, self.baudrate, exc)
            raise PortIOError(f"Failed to open {self.port}: {exc}") from exc
        self._last_error = None
        logger.debug("Opened %s at %d baud", self.port, self.baudrate)

    async def close(self) -> None:
        """Close the port. Safe to call repeatedly."""
        writer = self._writer
        self._writer = None
        self._reader = None
        if writer is None:
            return

        with contextlib.suppress(Exception):
            writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=PORT_CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.debug("Timeout waiting for serial close on %s", self.port)
        except Exception as exc:
            logger.debug("Error closing serial on %s: %s", self.port, exc)
        logger.debug("Closed %s", self.port)

    async def write_line(self, text: str) -> None:
        if self._writer is None:
            raise NotConnectedError(f"Port {self.port} is not open")
        logger.tx(self.port, text)
        try:
            self._writer.write((text + LINE_TERMINATOR).encode(self.encoding))
            await self._writer.drain()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._last_error = str(exc)
            raise PortIOError(f"Write error on {self.port}: {exc}") from exc

    async def read_line(self, timeout: Optional[float] = None) -> Optional[str]:
        """Read one line.

        Returns the stripped line, or None when ``timeout`` elapses first.
        Raises PortIOError when the stream ends or the read fails.
        """
        if self._reader is None:
            raise NotConnectedError(f"Port {self.port} is not open")
        try:
            if timeout is None:
                raw = await self._reader.readline()
            else:
                raw = await asyncio.wait_for(self._reader.readline(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._last_error = str(exc)
            raise PortIOError(f"Read error on {self.port}: {exc}") from exc

        if not raw:
            self._last_error = "Stream ended (EOF)"
            raise PortIOError(f"Serial stream ended on {self.port}")

        line = raw.decode(self.encoding, errors="ignore").strip()
        logger.rx(self.port, line)
        return line


TransportFactory = Callable[[str, int], SerialLineTransport]


__all__ = ["SerialLineTransport", "TransportFactory"]
