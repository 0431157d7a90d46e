"""
XL2 analyzer session.

Lifecycle::

    Disconnected -> Connecting -> Connected -> Initializing -> Measuring -> Disconnected

``connect`` opens the port, identifies the device, puts it into FFT mode
and starts the continuous sampling loop. The loop triggers a measurement
and requests the live spectrum on a fixed interval; replies are picked up
by the line reader and turned into measurements and events.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from xl2_logger.core.asyncio_utils import cancel_task, create_logged_task
from xl2_logger.core.config import AnalyzerConfig
from xl2_logger.core.constants import (
    CMD_FFT_START,
    CMD_FFT_ZOOM,
    CMD_FREQUENCY_TABLE,
    CMD_FUNC_FFT,
    CMD_IDENTIFY,
    CMD_INIT_START,
    CMD_INIT_STOP,
    CMD_RESET,
    CMD_SPECTRUM,
    CMD_TRIGGER,
    CONNECTION_TIMEOUT,
)
from xl2_logger.core.devices.types import DeviceRole
from xl2_logger.core.errors import ProtocolError
from xl2_logger.core.events import EventSink, EventType
from xl2_logger.core.logging_utils import get_module_logger
from xl2_logger.core.validation import (
    validate_command,
    validate_frequency,
    validate_limit,
    validate_zoom,
)
from .base_session import LineSession, PortLocator
from .response_parser import AnalyzerResponse, ResponseKind, find_target_bin, parse_response
from .serial_transport import SerialLineTransport, TransportFactory

logger = get_module_logger("AnalyzerSession")


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    INITIALIZING = "initializing"
    MEASURING = "measuring"


class MeasurementKind(Enum):
    SINGLE_VALUE = "single_value"
    SPECTRUM = "spectrum"


@dataclass(frozen=True)
class Measurement:
    """One reading taken from the analyzer. Immutable once in history."""
    kind: MeasurementKind
    raw: str
    values: tuple[float, ...]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    target_value: Optional[float] = None
    target_index: Optional[int] = None
    target_frequency: Optional[float] = None
    status: Optional[str] = None

    @property
    def is_target(self) -> bool:
        return self.target_value is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "raw": self.raw,
            "values": list(self.values),
            "target_value": self.target_value,
            "target_index": self.target_index,
            "target_frequency": self.target_frequency,
            "status": self.status,
            "is_target": self.is_target,
        }


@dataclass(frozen=True)
class SessionTiming:
    """Settle delays (seconds) the XL2 needs after each setup command."""
    reset: float = 1.0
    function: float = 0.5
    start: float = 2.0
    zoom: float = 0.3
    fstart: float = 0.3
    trigger: float = 0.5
    tick_trigger: float = 0.3
    frequency_table: float = 0.5
    open_timeout: float = CONNECTION_TIMEOUT

    @classmethod
    def immediate(cls) -> "SessionTiming":
        """No settle delays; for simulated devices."""
        return cls(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, CONNECTION_TIMEOUT)


@dataclass(frozen=True)
class SessionStatus:
    state: SessionState
    connected: bool
    port: Optional[str]
    device_info: Optional[str]
    last_measurement: Optional[Measurement]
    history_count: int
    measuring: bool
    continuous: bool
    frequency_bins: int
    target_index: Optional[int]
    current_frequency: Optional[float]
    protocol_errors: int = 0
    last_protocol_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "connected": self.connected,
            "port": self.port,
            "device_info": self.device_info,
            "last_measurement": self.last_measurement.to_dict() if self.last_measurement else None,
            "history_count": self.history_count,
            "measuring": self.measuring,
            "continuous": self.continuous,
            "frequency_bins": self.frequency_bins,
            "target_index": self.target_index,
            "current_frequency": self.current_frequency,
            "protocol_errors": self.protocol_errors,
            "last_protocol_error": self.last_protocol_error,
        }


MeasurementHandler = Callable[[Measurement], Union[Awaitable[None], None]]


class AnalyzerSession(LineSession):
    """Protocol session for the XL2 analyzer.

    Args:
        config: Acquisition settings (FFT zoom/start, target bin, history size).
        sink: Receives lifecycle and measurement events.
        transport_factory: Builds the serial transport for (path, baudrate).
        port_locator: Async callable naming a port when ``connect()`` gets none.
        timing: Settle delays; ``SessionTiming.immediate()`` in tests.
        measurement_handler: Called with every target-frequency measurement.
    """

    role = DeviceRole.XL2

    def __init__(
        self,
        config: Optional[AnalyzerConfig] = None,
        sink: Optional[EventSink] = None,
        transport_factory: TransportFactory = SerialLineTransport,
        port_locator: Optional[PortLocator] = None,
        timing: SessionTiming = SessionTiming(),
        measurement_handler: Optional[MeasurementHandler] = None,
    ) -> None:
        self.config = config or AnalyzerConfig()
        super().__init__(
            logger,
            sink=sink,
            transport_factory=transport_factory,
            port_locator=port_locator,
            default_port=self.config.port,
        )
        self.timing = timing
        self.measurement_handler = measurement_handler

        self._init_lock = asyncio.Lock()
        self._history: deque[Measurement] = deque(maxlen=self.config.history_size)
        self._frequencies: tuple[float, ...] = ()
        self._target_bin: Optional[tuple[int, float]] = None
        self._device_info: Optional[str] = None
        self._last_measurement: Optional[Measurement] = None
        self._current_frequency: Optional[float] = None
        self._measuring = False
        self._continuous = False
        self._sampling_task: Optional[asyncio.Task[Any]] = None
        self._protocol_errors = 0
        self._last_protocol_error: Optional[str] = None

    # ------------------------------------------------------------------
    # State

    @property
    def state(self) -> SessionState:
        if self._connecting and not self.is_connected:
            return SessionState.CONNECTING
        if not self.is_connected:
            return SessionState.DISCONNECTED
        if self._init_lock.locked():
            return SessionState.INITIALIZING
        if self._continuous:
            return SessionState.MEASURING
        return SessionState.CONNECTED

    @property
    def is_continuous(self) -> bool:
        return self._continuous

    @property
    def is_measuring(self) -> bool:
        return self._measuring

    @property
    def frequencies(self) -> tuple[float, ...]:
        return self._frequencies

    @property
    def target_bin(self) -> Optional[tuple[int, float]]:
        return self._target_bin

    @property
    def device_info(self) -> Optional[str]:
        return self._device_info

    # ------------------------------------------------------------------
    # Connection hooks

    async def _establish(self, port: str) -> None:
        transport = self._transport_factory(port, self.config.baud_rate)
        await transport.open(timeout=self.timing.open_timeout)
        self._attach(transport, port)

    async def _after_connect(self) -> None:
        await self.send_command(CMD_IDENTIFY)
        if self._continuous or self._init_lock.locked():
            logger.info("XL2 already initialized and measuring, skipping auto-initialization")
            return
        await self.initialize_fft()
        await self.start_continuous_fft()

    async def _before_disconnect(self) -> None:
        await self.stop_continuous_fft()
        await self.send_command(CMD_INIT_STOP)

    async def _on_reset(self) -> None:
        self._continuous = False
        self._measuring = False
        sampling, self._sampling_task = self._sampling_task, None
        await cancel_task(sampling)
        self._frequencies = ()
        self._target_bin = None
        self._device_info = None
        self._last_measurement = None
        self._history.clear()
        self._protocol_errors = 0
        self._last_protocol_error = None

    # ------------------------------------------------------------------
    # Commands

    async def send_command(self, command: str) -> None:
        validate_command(command)
        transport = self._require_connected()
        self._emit(EventType.COMMAND_SENT, command=command)
        await transport.write_line(command)

    async def initialize_fft(self) -> None:
        """Put the XL2 into FFT mode.

        No-op while continuous measuring is active, so a live device is never
        reset mid-measurement. A caller arriving during a running
        initialization waits for it and returns.
        """
        self._require_connected()
        if self._continuous and self._measuring:
            logger.info("XL2 already initialized and measuring continuously, skipping initialization")
            return
        if self._init_lock.locked():
            logger.info("FFT initialization already in progress, waiting")
            async with self._init_lock:
                return

        async with self._init_lock:
            logger.info("Initializing XL2 for FFT measurements")
            steps = (
                (CMD_RESET, self.timing.reset),
                (CMD_FUNC_FFT, self.timing.function),
                (CMD_INIT_START, self.timing.start),
                (CMD_FFT_ZOOM.format(zoom=self.config.fft_zoom), self.timing.zoom),
                (CMD_FFT_START.format(frequency=self.config.fft_start_hz), self.timing.fstart),
                (CMD_TRIGGER, self.timing.trigger),
            )
            for command, settle in steps:
                await self.send_command(command)
                await asyncio.sleep(settle)
            self._measuring = True
            logger.info("XL2 FFT initialization complete")

    async def start_continuous_fft(self) -> None:
        """Start the sampling loop. Calling it while running does nothing."""
        self._require_connected()
        if self._continuous:
            logger.info("Continuous FFT already running")
            return
        if self._init_lock.locked():
            logger.info("Waiting for FFT initialization before starting continuous mode")
            async with self._init_lock:
                pass
            if self._continuous:
                return

        self._continuous = True
        try:
            if not self._frequencies:
                await self.request_frequency_table()
                await asyncio.sleep(self.timing.frequency_table)
        except BaseException:
            self._continuous = False
            raise

        self._sampling_task = create_logged_task(
            self._sampling_loop(),
            logger=logger,
            name="xl2-continuous-fft",
        )
        self._measuring = True
        logger.info(
            "Continuous FFT started, triggering every %.0fms",
            self.config.sampling_interval_s * 1000,
        )

    async def stop_continuous_fft(self) -> None:
        """Stop the sampling loop. Idempotent."""
        was_running = self._continuous or self._sampling_task is not None
        self._continuous = False
        self._measuring = False
        task, self._sampling_task = self._sampling_task, None
        await cancel_task(task)
        if was_running:
            logger.info("Continuous FFT stopped")

    async def request_frequency_table(self, force: bool = False) -> None:
        self._require_connected()
        if self._frequencies and not force:
            logger.debug("FFT frequencies already available, skipping request")
            return
        await self.send_command(CMD_FREQUENCY_TABLE)

    async def request_spectrum(self) -> None:
        await self.send_command(CMD_SPECTRUM)

    async def set_fft_zoom(self, zoom: Any) -> int:
        self._require_connected()
        value = validate_zoom(zoom)
        logger.info("Setting FFT zoom to %d", value)
        await self.send_command(CMD_FFT_ZOOM.format(zoom=value))
        await asyncio.sleep(self.timing.zoom)
        self._invalidate_frequencies()
        await self.request_frequency_table()
        return value

    async def set_fft_start(self, frequency: Any) -> float:
        self._require_connected()
        value = validate_frequency(frequency)
        logger.info("Setting FFT start frequency to %s Hz", value)
        await self.send_command(CMD_FFT_START.format(frequency=value))
        await asyncio.sleep(self.timing.fstart)
        self._invalidate_frequencies()
        await self.request_frequency_table()
        return value

    def set_frequency(self, frequency: Any) -> float:
        """Set the frequency context that single-value readings refer to."""
        self._current_frequency = validate_frequency(frequency)
        logger.info("Frequency context set to %s Hz", self._current_frequency)
        return self._current_frequency

    def _invalidate_frequencies(self) -> None:
        # Bins change with zoom/start; stale bins would mislabel the target
        self._frequencies = ()
        self._target_bin = None

    # ------------------------------------------------------------------
    # Sampling loop

    async def _sampling_loop(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.config.sampling_interval_s
        next_tick = loop.time() + interval
        while self._continuous and self.is_connected:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            if not (self._continuous and self.is_connected):
                break
            await self._sample_once()
            next_tick += interval
            now = loop.time()
            if next_tick < now:
                # A slow tick swallowed whole intervals; skip them
                next_tick = now + interval

    async def _sample_once(self) -> None:
        try:
            await self.send_command(CMD_TRIGGER)
            await asyncio.sleep(self.timing.tick_trigger)
            await self.request_spectrum()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Error in continuous FFT: %s", exc)
            try:
                if self.is_connected and self._continuous:
                    await self.request_spectrum()
            except asyncio.CancelledError:
                raise
            except Exception as fallback_exc:
                logger.error("Fallback FFT also failed: %s", fallback_exc)

    # ------------------------------------------------------------------
    # Incoming lines

    async def handle_line(self, line: str) -> None:
        response = parse_response(line)
        if response.kind is ResponseKind.IDENTIFICATION:
            self._device_info = line
            self._emit(EventType.DEVICE_INFO, info=line)
        elif response.kind is ResponseKind.FREQUENCY_TABLE:
            self._on_frequency_table(response)
        elif response.kind is ResponseKind.SPECTRUM:
            await self._on_spectrum(response)
        elif response.kind is ResponseKind.SINGLE_VALUE:
            await self._on_single_value(response)
        else:
            self._on_unclassified(line)

    def _on_unclassified(self, line: str) -> None:
        error = ProtocolError(f"Unclassified XL2 response: {line}")
        self._protocol_errors += 1
        self._last_protocol_error = error.message
        logger.debug("%s", error.message)
        self._emit(EventType.ROLE_ERROR, port=self.port, error=error.message, code=error.code)

    def _on_frequency_table(self, response: AnalyzerResponse) -> None:
        if not response.values:
            return
        self._frequencies = response.values
        self._target_bin = find_target_bin(
            response.values,
            self.config.target_frequency_hz,
            self.config.frequency_tolerance_hz,
        )
        index, frequency = self._target_bin
        logger.info(
            "FFT frequencies received: %d bins (%s - %s Hz), target bin %d = %s Hz",
            len(response.values), response.values[0], response.values[-1], index, frequency,
        )
        self._emit(
            EventType.FREQUENCY_TABLE,
            frequencies=list(response.values),
            target_index=index,
            target_frequency=frequency,
        )

    async def _on_spectrum(self, response: AnalyzerResponse) -> None:
        values = response.values
        if not values:
            return
        measurement = Measurement(MeasurementKind.SPECTRUM, response.raw, values)
        if self._target_bin is not None and len(self._frequencies) == len(values):
            index, frequency = self._target_bin
            measurement = replace(
                measurement,
                target_value=values[index],
                target_index=index,
                target_frequency=frequency,
            )
            logger.debug("Target measurement: %.2f dB at %s Hz (bin %d)", values[index], frequency, index)

        await self._record(measurement)
        self._emit(
            EventType.SPECTRUM,
            spectrum=list(values),
            target_value=measurement.target_value,
            target_index=measurement.target_index,
            target_frequency=measurement.target_frequency,
        )

    async def _on_single_value(self, response: AnalyzerResponse) -> None:
        measurement = Measurement(
            MeasurementKind.SINGLE_VALUE,
            response.raw,
            response.values,
            status=response.status,
        )
        target = self.config.target_frequency_hz
        if (
            self._current_frequency is not None
            and abs(self._current_frequency - target) < self.config.frequency_tolerance_hz
        ):
            measurement = replace(
                measurement,
                target_value=response.value,
                target_index=0,
                target_frequency=target,
            )
        await self._record(measurement)

    async def _record(self, measurement: Measurement) -> None:
        self._history.append(measurement)
        self._last_measurement = measurement
        self._emit(EventType.MEASUREMENT, **measurement.to_dict())

        if measurement.is_target and self.measurement_handler is not None:
            try:
                result = self.measurement_handler(measurement)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Measurement handler failed")

    # ------------------------------------------------------------------
    # Queries

    def status(self) -> SessionStatus:
        return SessionStatus(
            state=self.state,
            connected=self.is_connected,
            port=self.port,
            device_info=self._device_info,
            last_measurement=self._last_measurement,
            history_count=len(self._history),
            measuring=self._measuring,
            continuous=self._continuous,
            frequency_bins=len(self._frequencies),
            target_index=self._target_bin[0] if self._target_bin else None,
            current_frequency=self._current_frequency,
            protocol_errors=self._protocol_errors,
            last_protocol_error=self._last_protocol_error,
        )

    def status_payload(self) -> dict[str, Any]:
        return self.status().to_dict()

    def measurement_history(self, limit: Optional[Any] = None) -> list[Measurement]:
        """Most recent measurements, oldest first; ``limit`` defaults to 100."""
        count = validate_limit(limit)
        history = list(self._history)
        return history[-count:]

    def target_measurements(self) -> list[Measurement]:
        return [m for m in self._history if m.is_target]


__all__ = [
    "AnalyzerSession",
    "Measurement",
    "MeasurementKind",
    "SessionState",
    "SessionStatus",
    "SessionTiming",
]
