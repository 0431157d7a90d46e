"""Tests for structured loggers, logging setup and task helpers."""

import asyncio
import logging
from logging.handlers import RotatingFileHandler

import pytest

from xl2_logger.core.asyncio_utils import cancel_task, create_logged_task
from xl2_logger.core.logging_config import coerce_level, configure_logging
from xl2_logger.core.logging_utils import (
    StructuredLogger,
    ensure_structured_logger,
    get_module_logger,
)


class TestStructuredLogger:
    """Component prefixes and namespacing."""

    def test_namespace_and_component(self):
        logger = get_module_logger("Classifier")
        assert logger.name == "xl2_logger.Classifier"
        assert logger.component == "Classifier"

    def test_prefix(self, caplog):
        logger = get_module_logger("Orchestrator")
        with caplog.at_level(logging.INFO, logger="xl2_logger"):
            logger.info("Phase: %s", "scanning")
        assert caplog.records[-1].getMessage() == "[Orchestrator] Phase: scanning"

    def test_serial_traffic_helpers(self, caplog):
        logger = get_module_logger("SerialTransport")
        with caplog.at_level(logging.DEBUG, logger="xl2_logger"):
            logger.tx("/dev/ttyACM0", "*IDN?")
            logger.rx(None, "NTiAudio,XL2")
        messages = [record.getMessage() for record in caplog.records]
        assert "[SerialTransport] TX /dev/ttyACM0: *IDN?" in messages
        assert "[SerialTransport] RX -: NTiAudio,XL2" in messages

    def test_bad_format_args_do_not_raise(self, caplog):
        logger = get_module_logger("Test")
        with caplog.at_level(logging.INFO, logger="xl2_logger"):
            logger.info("%d items", "several")
        assert "args=several" in caplog.text

    def test_ensure_structured_logger(self):
        wrapped = ensure_structured_logger(logging.getLogger("xl2_logger.Wrapped"))
        assert isinstance(wrapped, StructuredLogger)
        assert wrapped.component == "Wrapped"
        assert ensure_structured_logger(None, fallback_name="asyncio").name == "xl2_logger.asyncio"


class TestConfigureLogging:
    def test_coerce_level(self):
        assert coerce_level("debug") == logging.DEBUG
        assert coerce_level(logging.WARNING) == logging.WARNING

    def test_rotating_file(self, tmp_path):
        log_file = tmp_path / "logs" / "xl2.log"
        root = logging.getLogger()
        saved = list(root.handlers)
        try:
            configure_logging("info", force=True, console=False, log_file=log_file)
            handlers = [h for h in root.handlers if isinstance(h, RotatingFileHandler)]
            assert len(handlers) == 1
            assert handlers[0].maxBytes == 500 * 1024
            assert handlers[0].backupCount == 2
            assert logging.getLogger("serial_asyncio").level == logging.WARNING
            assert log_file.parent.exists()
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()
            for handler in saved:
                root.addHandler(handler)


class TestTaskHelpers:
    """create_logged_task and cancel_task."""

    @pytest.mark.asyncio
    async def test_logged_task_reports_exception(self, caplog):
        async def boom():
            raise RuntimeError("kaput")

        with caplog.at_level(logging.ERROR, logger="xl2_logger"):
            task = create_logged_task(boom(), logger=get_module_logger("Test"), name="boom")
            await asyncio.wait({task})
            await asyncio.sleep(0)
        assert "Unhandled exception in boom" in caplog.text

    @pytest.mark.asyncio
    async def test_pending_set_tracks_task(self):
        pending = set()
        task = create_logged_task(asyncio.sleep(0), pending=pending)
        assert task in pending
        await task
        await asyncio.sleep(0)
        assert task not in pending

    @pytest.mark.asyncio
    async def test_cancel_task(self):
        task = asyncio.create_task(asyncio.sleep(10))
        await cancel_task(task)
        assert task.cancelled()
        await cancel_task(None)
        await cancel_task(task)

    @pytest.mark.asyncio
    async def test_cancel_current_task_is_refused(self):
        async def self_cancel():
            await cancel_task(asyncio.current_task())
            return "still running"

        assert await asyncio.create_task(self_cancel()) == "still running"
