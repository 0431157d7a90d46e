"""
Active identification probes.

``probe_analyzer`` asks the port for its identity; ``probe_gps`` listens for
NMEA sentences, since GPS receivers talk without being asked. Every probe
closes the port it opened, whatever the outcome.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from xl2_logger.core.connection.serial_transport import SerialLineTransport, TransportFactory
from xl2_logger.core.constants import (
    CMD_IDENTIFY,
    DEVICE_RESPONSE_TIMEOUT,
    GPS_PARALLEL_BAUD_RATES,
    GPS_PREFERRED_BAUD_RATE,
    PORT_SCAN_TIMEOUT,
)
from xl2_logger.core.errors import DeviceTimeoutError
from xl2_logger.core.logging_utils import get_module_logger
from .platform_profile import PlatformProfile
from .types import PortDescriptor

logger = get_module_logger("PortProber")


def prioritized_baud_rates(rates: tuple[int, ...], preferred: int = GPS_PREFERRED_BAUD_RATE) -> list[int]:
    """Most common rate first, the rest in profile order."""
    if preferred in rates:
        return [preferred] + [rate for rate in rates if rate != preferred]
    return list(rates)


class SerialPortProber:
    """Probes one port at a time for each device role.

    Args:
        profile: Supplies baud rates for both roles.
        transport_factory: Builds a transport for (path, baudrate).
        open_timeout: Bound on opening a port.
        response_timeout: Bound on waiting for the identifying line.
    """

    def __init__(
        self,
        profile: PlatformProfile,
        transport_factory: TransportFactory = SerialLineTransport,
        open_timeout: float = PORT_SCAN_TIMEOUT,
        response_timeout: float = DEVICE_RESPONSE_TIMEOUT,
    ) -> None:
        self._profile = profile
        self._transport_factory = transport_factory
        self._open_timeout = open_timeout
        self._response_timeout = response_timeout

    async def probe_analyzer(self, port: PortDescriptor) -> str:
        """Send the identification command and return the first line received."""
        transport = self._transport_factory(port.path, self._profile.analyzer_baud_rate)
        try:
            await transport.open(timeout=self._open_timeout)
            await transport.write_line(CMD_IDENTIFY)
            line = await self._first_line(transport, lambda text: bool(text))
        finally:
            await transport.close()
        if line is None:
            raise DeviceTimeoutError(
                f"XL2 device identification timed out after {int(self._response_timeout * 1000)}ms"
            )
        return line

    async def probe_gps(self, port: PortDescriptor) -> str:
        """Listen for an NMEA sentence, trying baud rates most-common first.

        The first rates are raced against each other; the remainder are
        tried one after another.
        """
        rates = prioritized_baud_rates(self._profile.gps_baud_rates)
        parallel, sequential = rates[:GPS_PARALLEL_BAUD_RATES], rates[GPS_PARALLEL_BAUD_RATES:]

        if parallel:
            sentence = await self._race_baud_rates(port, parallel)
            if sentence is not None:
                return sentence

        for baudrate in sequential:
            try:
                sentence = await self._listen_at(port, baudrate)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.debug("GPS probe %s @ %d failed: %s", port.path, baudrate, exc)
                continue
            logger.debug("GPS found at %s using fallback baud rate %d", port.path, baudrate)
            return sentence

        raise DeviceTimeoutError(f"No GPS response at any baud rate on {port.path}")

    async def _race_baud_rates(self, port: PortDescriptor, rates: list[int]) -> Optional[str]:
        tasks = {
            asyncio.create_task(self._listen_at(port, rate), name=f"gps-probe-{port.path}-{rate}"): rate
            for rate in rates
        }
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task.cancelled():
                        continue
                    exc = task.exception()
                    if exc is not None:
                        logger.debug("GPS probe %s @ %d failed: %s", port.path, tasks[task], exc)
                        continue
                    logger.debug("GPS found at %s using baud rate %d", port.path, tasks[task])
                    return task.result()
            return None
        finally:
            for task in pending:
                task.cancel()
            if pending:
                # Let the losers run their finally blocks and close their ports
                await asyncio.wait(pending)

    async def _listen_at(self, port: PortDescriptor, baudrate: int) -> str:
        transport = self._transport_factory(port.path, baudrate)
        try:
            await transport.open(timeout=self._open_timeout)
            line = await self._first_line(transport, lambda text: text.startswith("$"))
        finally:
            await transport.close()
        if line is None:
            raise DeviceTimeoutError(f"No GPS data received at {baudrate} baud")
        return line

    async def _first_line(self, transport: SerialLineTransport, accept) -> Optional[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._response_timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            line = await transport.read_line(timeout=remaining)
            if line is None:
                return None
            if accept(line):
                return line


__all__ = ["SerialPortProber", "prioritized_baud_rates"]
