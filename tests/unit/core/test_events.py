"""Tests for rig events and sinks."""

import logging

import pytest

from xl2_logger.core.devices.types import DeviceRole
from xl2_logger.core.events import (
    EventType,
    LoggingEventSink,
    NullEventSink,
    QueueEventSink,
    RigEvent,
)


class TestRigEvent:
    def test_to_dict(self):
        event = RigEvent(EventType.ROLE_CONNECTED, role=DeviceRole.XL2, payload={"port": "/dev/ttyACM0"})
        data = event.to_dict()
        assert data["type"] == "role-connected"
        assert data["role"] == "xl2"
        assert data["payload"] == {"port": "/dev/ttyACM0"}
        assert data["timestamp"].endswith("+00:00")

    def test_rig_wide_event_has_no_role(self):
        assert RigEvent(EventType.SCAN_STARTED).to_dict()["role"] is None


class TestQueueEventSink:
    """Bounded queue that never blocks the producer."""

    @pytest.mark.asyncio
    async def test_fifo(self):
        sink = QueueEventSink(maxsize=10)
        sink.emit(RigEvent(EventType.SCAN_STARTED))
        sink.emit(RigEvent(EventType.SCAN_COMPLETED))
        assert (await sink.get()).type is EventType.SCAN_STARTED
        assert sink.get_nowait().type is EventType.SCAN_COMPLETED
        assert sink.qsize() == 0

    @pytest.mark.asyncio
    async def test_overflow_drops_oldest(self):
        sink = QueueEventSink(maxsize=2)
        for index in range(5):
            sink.emit(RigEvent(EventType.MEASUREMENT, payload={"n": index}))
        assert sink.dropped == 3
        assert [sink.get_nowait().payload["n"] for _ in range(2)] == [3, 4]


class TestOtherSinks:
    def test_null_sink_discards(self):
        assert NullEventSink().emit(RigEvent(EventType.SCAN_STARTED)) is None

    def test_logging_sink(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="xl2_logger"):
            LoggingEventSink().emit(RigEvent(EventType.DEVICE_INFO, role=DeviceRole.XL2, payload={"info": "XL2"}))
        assert "[Events] device-info (xl2)" in caplog.text
