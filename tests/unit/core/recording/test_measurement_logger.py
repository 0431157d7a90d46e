"""
Tests for MeasurementLogger.

Tests cover:
- Start / stop lifecycle and the shared CSV file
- Rows tagged with the current GPS fix
- Feeding from a live AnalyzerSession
"""

import csv
from datetime import datetime, timezone

import pytest

from xl2_logger.core.config import AnalyzerConfig
from xl2_logger.core.connection.analyzer_session import AnalyzerSession, Measurement, MeasurementKind
from xl2_logger.core.errors import RecordingError
from xl2_logger.core.events import EventType
from xl2_logger.core.recording import MeasurementLogger, PositionTracker
from xl2_logger.core.recording.measurement_log import CSV_HEADER

from tests.infrastructure.helpers import wait_until
from tests.infrastructure.mocks.serial_mocks import GPGGA, xl2_device

TIMESTAMP = datetime(2024, 5, 1, 10, 30, 0, tzinfo=timezone.utc)


def target_reading(level: float = -45.3) -> Measurement:
    return Measurement(
        kind=MeasurementKind.SPECTRUM,
        raw="-45.3dB, -46.0dB",
        values=(level, -46.0),
        timestamp=TIMESTAMP,
        target_value=level,
        target_index=0,
        target_frequency=12.5,
    )


def read_rows(path):
    with open(path, newline="", encoding="utf-8") as handle:
        return list(csv.reader(handle))


@pytest.fixture
def tracker():
    return PositionTracker()


@pytest.fixture
def recorder(tmp_path, tracker, event_sink):
    return MeasurementLogger(tracker, tmp_path / "logs", sink=event_sink)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_creates_file_with_header(self, recorder, tmp_path):
        path = await recorder.start_logging()
        assert path == tmp_path / "logs" / "xl2_measurements.csv"
        assert recorder.is_logging
        await recorder.stop_logging()
        assert read_rows(path) == [list(CSV_HEADER)]

    @pytest.mark.asyncio
    async def test_start_twice_keeps_file(self, recorder):
        first = await recorder.start_logging()
        try:
            assert await recorder.start_logging() == first
        finally:
            await recorder.stop_logging()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, recorder):
        assert await recorder.stop_logging() is None

    @pytest.mark.asyncio
    async def test_sessions_append_to_same_file(self, recorder):
        path = await recorder.start_logging()
        await recorder.log_measurement(target_reading(-40.0))
        await recorder.stop_logging()
        await recorder.start_logging()
        await recorder.log_measurement(target_reading(-41.0))
        await recorder.stop_logging()

        rows = read_rows(path)
        assert rows[0] == list(CSV_HEADER)
        assert [row[2] for row in rows[1:]] == ["-40.00", "-41.00"]

    @pytest.mark.asyncio
    async def test_events_and_summary(self, recorder, event_sink):
        await recorder.start_logging()
        await recorder.log_measurement(target_reading())
        info = await recorder.stop_logging()

        assert info["rows"] == 1
        assert info["file_path"].endswith("xl2_measurements.csv")
        assert event_sink.types() == [EventType.LOGGING_STARTED, EventType.LOGGING_STOPPED]
        assert event_sink.events[0].payload["active"] is True
        assert event_sink.events[1].payload["rows"] == 1

    @pytest.mark.asyncio
    async def test_unusable_directory(self, tmp_path, tracker):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        recorder = MeasurementLogger(tracker, blocker)
        with pytest.raises(RecordingError):
            await recorder.start_logging()
        assert not recorder.is_logging


class TestRows:
    @pytest.mark.asyncio
    async def test_row_carries_position(self, recorder, tracker):
        tracker.feed(GPGGA)
        path = await recorder.start_logging()
        assert await recorder.log_measurement(target_reading()) is True
        await recorder.stop_logging()

        assert read_rows(path)[1] == [
            "2024-05-01T10:30:00+00:00", "12.5", "-45.30",
            "48.117300", "11.516667", "545.4", "8", "1",
        ]

    @pytest.mark.asyncio
    async def test_row_without_fix_leaves_position_blank(self, recorder):
        path = await recorder.start_logging()
        await recorder.log_measurement(target_reading())
        await recorder.stop_logging()
        assert read_rows(path)[1][3:] == ["", "", "", "", ""]

    @pytest.mark.asyncio
    async def test_skipped_when_not_logging(self, recorder):
        assert await recorder.log_measurement(target_reading()) is False
        assert recorder.rows_written == 0

    @pytest.mark.asyncio
    async def test_non_target_readings_skipped(self, recorder):
        single = Measurement(kind=MeasurementKind.SINGLE_VALUE, raw="-45.3 dB,OK", values=(-45.3,))
        await recorder.start_logging()
        try:
            assert await recorder.log_measurement(single) is False
            assert recorder.rows_written == 0
        finally:
            await recorder.stop_logging()


class TestWithAnalyzer:
    @pytest.mark.asyncio
    async def test_sampling_loop_feeds_log(self, recorder, tracker, serial_bus, event_sink, fast_timing):
        serial_bus.add("/dev/ttyACM0", xl2_device())
        tracker.feed(GPGGA)
        session = AnalyzerSession(
            AnalyzerConfig(sampling_interval_s=0.01),
            sink=event_sink,
            transport_factory=serial_bus,
            timing=fast_timing,
            measurement_handler=recorder.log_measurement,
        )
        path = await recorder.start_logging()
        try:
            await session.connect("/dev/ttyACM0")
            await wait_until(lambda: recorder.rows_written >= 2)
        finally:
            await session.disconnect()
            await recorder.stop_logging()

        rows = read_rows(path)[1:]
        assert len(rows) >= 2
        assert rows[0][2] == "-40.00"
        assert rows[0][3] == "48.117300"
