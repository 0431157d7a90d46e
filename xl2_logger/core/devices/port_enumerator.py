"""
Serial port enumeration.

Lists every serial port on the host together with the USB metadata the
classifier scores on. Pure query, no state.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, Optional

import serial.tools.list_ports

from xl2_logger.core.constants import PORT_SCAN_TIMEOUT
from xl2_logger.core.errors import PortIOError, with_timeout
from xl2_logger.core.logging_utils import get_module_logger
from .types import PortDescriptor

logger = get_module_logger("PortEnumerator")


def _hex_id(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return f"{int(value):04x}"


def describe_port(port_info: Any) -> PortDescriptor:
    """Convert a pyserial ``ListPortInfo`` to a PortDescriptor."""
    manufacturer = getattr(port_info, "manufacturer", None) or None
    return PortDescriptor(
        path=port_info.device,
        manufacturer=manufacturer,
        vendor_id=_hex_id(getattr(port_info, "vid", None)),
        product_id=_hex_id(getattr(port_info, "pid", None)),
    )


class PortEnumerator:
    """
    Lists serial ports via pyserial.

    Usage:
        enumerator = PortEnumerator()
        ports = await enumerator.list_ports()
    """

    def __init__(
        self,
        comports: Callable[[], Iterable[Any]] = serial.tools.list_ports.comports,
        timeout: float = PORT_SCAN_TIMEOUT,
    ) -> None:
        self._comports = comports
        self._timeout = timeout

    async def list_ports(self) -> list[PortDescriptor]:
        try:
            # comports() blocks on sysfs / SetupAPI, keep it off the loop
            raw_ports = await with_timeout(
                asyncio.to_thread(lambda: list(self._comports())),
                self._timeout,
                "Port enumeration",
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Failed to list serial ports: %s", exc)
            raise PortIOError(f"Failed to list serial ports: {exc}") from exc

        ports = [describe_port(info) for info in raw_ports]
        logger.info("Found %d serial ports", len(ports))
        for port in ports:
            logger.debug(
                "  %s manufacturer=%s vid=%s pid=%s",
                port.path, port.manufacturer, port.vendor_id, port.product_id,
            )
        return ports


__all__ = ["PortEnumerator", "describe_port"]
