"""Position-tagged measurement log.

While logging is active every target-frequency reading is appended to one
CSV file together with the GPS position known at that moment. The file is
reused across sessions: the header is written only when the file is new.
"""

from __future__ import annotations

import asyncio
import csv
import io
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiofiles

from xl2_logger.core.connection.analyzer_session import Measurement
from xl2_logger.core.constants import MEASUREMENT_LOG_DIR, MEASUREMENT_LOG_FILENAME
from xl2_logger.core.errors import RecordingError
from xl2_logger.core.events import EventSink, EventType, NullEventSink, RigEvent
from xl2_logger.core.logging_utils import get_module_logger
from .position import PositionTracker

logger = get_module_logger("MeasurementLogger")

CSV_HEADER = (
    "timestamp",
    "target_frequency_hz",
    "level_db",
    "latitude",
    "longitude",
    "altitude_m",
    "satellites",
    "fix_quality",
)


def _cell(value: Any, fmt: Optional[str] = None) -> str:
    if value is None:
        return ""
    return format(value, fmt) if fmt else str(value)


def _csv_line(row: tuple[str, ...]) -> str:
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(row)
    return buffer.getvalue()


class MeasurementLogger:
    """
    Appends target readings plus the current GPS fix to a CSV file.

    Usage:
        recorder = MeasurementLogger(tracker, Path("logs"))
        analyzer.measurement_handler = recorder.log_measurement
        await recorder.start_logging()
        ...
        await recorder.stop_logging()
    """

    def __init__(
        self,
        tracker: PositionTracker,
        log_dir: Path = Path(MEASUREMENT_LOG_DIR),
        filename: str = MEASUREMENT_LOG_FILENAME,
        sink: Optional[EventSink] = None,
    ) -> None:
        self.tracker = tracker
        self.log_dir = Path(log_dir)
        self.filename = filename
        self._sink = sink or NullEventSink()
        self._file = None
        self._file_path: Optional[Path] = None
        self._started_at: Optional[datetime] = None
        self._rows = 0
        self._lock = asyncio.Lock()

    @property
    def is_logging(self) -> bool:
        return self._file is not None

    @property
    def file_path(self) -> Optional[Path]:
        return self._file_path

    @property
    def rows_written(self) -> int:
        return self._rows

    async def start_logging(self) -> Path:
        """Open the log for appending. Already logging: returns the open file."""
        async with self._lock:
            if self._file is not None:
                logger.warning("Logging already active")
                return self._file_path

            path = self.log_dir / self.filename
            try:
                await asyncio.to_thread(self.log_dir.mkdir, parents=True, exist_ok=True)
                is_new = not await asyncio.to_thread(path.exists)
                handle = await aiofiles.open(path, "a", encoding="utf-8", newline="")
            except OSError as exc:
                raise RecordingError(f"Failed to open measurement log {path}: {exc}") from exc

            try:
                if is_new:
                    await handle.write(_csv_line(CSV_HEADER))
                    await handle.flush()
            except OSError as exc:
                await handle.close()
                raise RecordingError(f"Failed to write measurement log {path}: {exc}") from exc

            self._file = handle
            self._file_path = path
            self._started_at = datetime.now(timezone.utc)
            self._rows = 0

        logger.info("%s log file: %s", "Creating new" if is_new else "Appending to existing", path)
        self._sink.emit(RigEvent(EventType.LOGGING_STARTED, payload=self.status()))
        return path

    async def stop_logging(self) -> Optional[dict[str, Any]]:
        """Close the log. Returns what was logged, or None when not logging."""
        async with self._lock:
            if self._file is None:
                logger.warning("No active logging to stop")
                return None

            handle, self._file = self._file, None
            info = {
                "file_path": str(self._file_path),
                "start_time": self._started_at.isoformat() if self._started_at else None,
                "end_time": datetime.now(timezone.utc).isoformat(),
                "rows": self._rows,
            }
            self._file_path = None
            self._started_at = None
            try:
                await handle.close()
            except OSError as exc:
                logger.warning("Error closing measurement log: %s", exc)

        logger.info("Stopped logging, %d rows saved to %s", info["rows"], info["file_path"])
        self._sink.emit(RigEvent(EventType.LOGGING_STOPPED, payload=info))
        return info

    async def log_measurement(self, measurement: Measurement) -> bool:
        """Append one target reading. Non-target readings and inactive logging are skipped."""
        if self._file is None or not measurement.is_target:
            return False

        position = self.tracker.position
        row = (
            measurement.timestamp.isoformat(),
            _cell(measurement.target_frequency),
            _cell(measurement.target_value, ".2f"),
            _cell(position.latitude, ".6f"),
            _cell(position.longitude, ".6f"),
            _cell(position.altitude_m),
            _cell(position.satellites),
            _cell(position.fix_quality),
        )
        async with self._lock:
            if self._file is None:
                return False
            try:
                await self._file.write(_csv_line(row))
                await self._file.flush()
            except OSError as exc:
                logger.error("Error writing to measurement log: %s", exc)
                return False
            self._rows += 1

        logger.debug(
            "Logged %.2f dB | GPS: %s, %s",
            measurement.target_value, row[3] or "N/A", row[4] or "N/A",
        )
        return True

    def status(self) -> dict[str, Any]:
        return {
            "active": self.is_logging,
            "file_path": str(self._file_path) if self._file_path else None,
            "start_time": self._started_at.isoformat() if self._started_at else None,
            "rows": self._rows,
            "position": self.tracker.position.to_dict(),
        }

    async def close(self) -> None:
        if self.is_logging:
            await self.stop_logging()


__all__ = ["CSV_HEADER", "MeasurementLogger"]
