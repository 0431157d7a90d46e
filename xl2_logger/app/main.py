import argparse
import asyncio
import signal
from pathlib import Path
from typing import Optional

from xl2_logger.core.config import AppConfig
from xl2_logger.core.connection.analyzer_session import AnalyzerSession
from xl2_logger.core.connection.gps_session import GpsSession
from xl2_logger.core.connection.orchestrator import ConnectionOrchestrator, StartupResult
from xl2_logger.core.connection.reconnect import ReconnectConfig, ReconnectSupervisor
from xl2_logger.core.devices.classifier import ClassificationCache, DeviceClassifier
from xl2_logger.core.devices.platform_profile import select_profile
from xl2_logger.core.devices.port_enumerator import PortEnumerator
from xl2_logger.core.devices.probes import SerialPortProber
from xl2_logger.core.devices.types import DeviceRole
from xl2_logger.core.errors import RecordingError, RigError
from xl2_logger.core.events import EventType, QueueEventSink, RigEvent
from xl2_logger.core.logging_config import configure_logging
from xl2_logger.core.logging_utils import get_module_logger
from xl2_logger.core.platform_info import detect_platform
from xl2_logger.core.recording import MeasurementLogger, PositionTracker


logger = get_module_logger("Main")

DEFAULT_CONFIG_PATH = Path("config.txt")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments. Unset options fall back to config and environment."""
    parser = argparse.ArgumentParser(
        description="XL2 Logger - NTi XL2 sound analyzer and GPS acquisition"
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to key = value config file (default: config.txt)"
    )

    parser.add_argument(
        "--log-level",
        choices=['debug', 'info', 'warning', 'error', 'critical'],
        default=None,
        help="Logging level (default: info)"
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write a rotating log file at this path"
    )

    parser.add_argument(
        "--xl2-port",
        default=None,
        help="Serial port of the XL2, used when a connect names no port"
    )

    parser.add_argument(
        "--gps-port",
        default=None,
        help="Serial port of the GPS receiver, used when a connect names no port"
    )

    parser.add_argument(
        "--no-auto-reconnect",
        action="store_true",
        help="Do not re-run startup when a device disappears"
    )

    parser.add_argument(
        "--log-measurements",
        action="store_true",
        help="Log every target reading with its GPS position from startup on"
    )

    parser.add_argument(
        "--measurement-log-dir",
        type=Path,
        default=None,
        help="Directory of the measurement CSV (default: logs)"
    )

    parser.add_argument(
        "--dev",
        action="store_true",
        help="Development mode (error payloads carry tracebacks)"
    )

    return parser.parse_args(argv)


class Rig:
    """All long-lived components of one process, wired together."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.platform = detect_platform()
        self.profile = select_profile(self.platform)
        self.sink = QueueEventSink()

        self.enumerator = PortEnumerator()
        self.classifier = DeviceClassifier(
            self.profile,
            SerialPortProber(self.profile),
            cache=ClassificationCache(ttl=config.discovery.cache_ttl_s),
            sink=self.sink,
        )

        self.tracker = PositionTracker(self.sink)
        self.recorder = MeasurementLogger(self.tracker, config.recording.log_dir, sink=self.sink)

        self.analyzer = AnalyzerSession(
            config.analyzer, sink=self.sink, measurement_handler=self.recorder.log_measurement
        )
        self.gps = GpsSession(
            config.gps,
            sink=self.sink,
            baud_rates=self.profile.gps_baud_rates,
            sentence_handler=self.tracker.feed,
        )
        if config.analyzer.auto_detect:
            self.analyzer.set_port_locator(self._locate(DeviceRole.XL2))
        if config.gps.auto_connect:
            self.gps.set_port_locator(self._locate(DeviceRole.GPS))

        roles = [DeviceRole.XL2]
        if config.gps.auto_connect:
            roles.append(DeviceRole.GPS)
        self.orchestrator = ConnectionOrchestrator(
            self.enumerator,
            self.classifier,
            {DeviceRole.XL2: self.analyzer, DeviceRole.GPS: self.gps},
            sink=self.sink,
            roles=roles,
        )
        self.supervisor = ReconnectSupervisor(
            self.orchestrator,
            ReconnectConfig(
                interval=config.discovery.reconnect_interval_s,
                max_attempts=config.discovery.reconnect_max_attempts,
            ),
            sink=self.sink,
        )

    def _locate(self, role: DeviceRole):
        async def locate() -> Optional[str]:
            best = self.classifier.best(role)
            if best is None:
                await self.orchestrator.rescan()
                best = self.classifier.best(role)
            return best.path if best else None
        return locate

    async def start(self) -> StartupResult:
        logger.info("Platform: %s", self.platform)
        result = await self.orchestrator.run_startup()
        _log_startup(result)
        if self.config.discovery.auto_reconnect:
            self.supervisor.start()
        else:
            logger.info("Automatic device reconnection disabled")
        if self.config.recording.enabled:
            try:
                await self.recorder.start_logging()
            except RecordingError as exc:
                logger.error("Measurement logging not started: %s", exc)
        return result

    async def start_logging(self) -> Path:
        return await self.recorder.start_logging()

    async def stop_logging(self) -> Optional[dict]:
        return await self.recorder.stop_logging()

    async def pump_events(self) -> None:
        """Drain the event queue into the log, waking the supervisor on disconnects."""
        while True:
            event = await self.sink.get()
            _log_event(event)
            if event.type is not EventType.ROLE_DISCONNECTED:
                continue
            if event.role is DeviceRole.GPS:
                self.tracker.reset()
            if self.config.discovery.auto_reconnect:
                self.supervisor.trigger()

    async def shutdown(self) -> None:
        logger.info("Shutting down")
        await self.supervisor.stop()
        await self.recorder.close()
        for session in (self.analyzer, self.gps):
            try:
                await session.disconnect()
            except RigError as exc:
                logger.warning("Error disconnecting %s: %s", session.role.label, exc)


def _log_startup(result: StartupResult) -> None:
    for role, conn in result.connections.items():
        if conn.success:
            logger.info("%s: connected (%s)", role.label, conn.port)
        else:
            logger.warning("%s: not connected (%s)", role.label, conn.error or "unknown")
    for error in result.summary.errors:
        logger.warning("Startup error: %s", error)


def _log_event(event: RigEvent) -> None:
    if event.type is EventType.MEASUREMENT and event.payload.get("is_target"):
        logger.info(
            "%.2f Hz: %s dB",
            event.payload.get("target_frequency") or 0.0,
            event.payload.get("target_value"),
        )
        return
    role = event.role.label if event.role else "-"
    logger.debug("event %s [%s] %s", event.type.value, role, event.payload)


async def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level or "info", log_file=args.log_file)

    try:
        config = await AppConfig.load(args.config, args=args)
    except RigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2
    configure_logging(config.log_level, force=True, log_file=config.log_file)

    rig = Rig(config)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass  # Windows doesn't support add_signal_handler

    pump = asyncio.create_task(rig.pump_events(), name="event-pump")
    try:
        await rig.start()
        await stop.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        await rig.shutdown()
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)
    return 0
