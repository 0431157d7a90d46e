"""
Tests for DeviceClassifier.

Tests cover:
- Fast hardware path (no probing)
- Probe ordering and fallback to hardware guesses
- Classification cache TTL
- Ranking and best-candidate selection
- Concurrent scan requests
"""

import asyncio
from typing import Dict, List, Optional

import pytest

from xl2_logger.core.devices.classifier import ClassificationCache, DeviceClassifier
from xl2_logger.core.devices.platform_profile import RASPBERRY_PI_PROFILE, UNIX_PROFILE
from xl2_logger.core.devices.probes import SerialPortProber
from xl2_logger.core.devices.types import DeviceRole, PortDescriptor
from xl2_logger.core.errors import DeviceTimeoutError
from xl2_logger.core.events import EventType

from tests.infrastructure.mocks.serial_mocks import GPGGA, XL2_IDN, gps_device, xl2_device


class StubProber:
    """Prober answering from a table; records every call in order."""

    def __init__(self, analyzer: Optional[Dict[str, str]] = None, gps: Optional[Dict[str, str]] = None,
                 delay: float = 0.0):
        self.analyzer = analyzer or {}
        self.gps = gps or {}
        self.delay = delay
        self.calls: List[tuple] = []

    async def probe_analyzer(self, port: PortDescriptor) -> str:
        self.calls.append(("xl2", port.path))
        await asyncio.sleep(self.delay)
        if port.path in self.analyzer:
            return self.analyzer[port.path]
        raise DeviceTimeoutError("XL2 device identification timed out after 3000ms")

    async def probe_gps(self, port: PortDescriptor) -> str:
        self.calls.append(("gps", port.path))
        await asyncio.sleep(self.delay)
        if port.path in self.gps:
            return self.gps[port.path]
        raise DeviceTimeoutError("No GPS response at any baud rate")


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestIdentification:
    """Per-port identification pipeline."""

    @pytest.mark.asyncio
    async def test_fast_path_never_probes(self):
        prober = StubProber()
        classifier = DeviceClassifier(UNIX_PROFILE, prober)
        result = await classifier.classify([
            PortDescriptor("/dev/ttyACM0", manufacturer="NTi Audio AG"),
            PortDescriptor("/dev/ttyACM1", manufacturer="u-blox AG", vendor_id="1546", product_id="01a7"),
        ])
        assert prober.calls == []
        assert result.best(DeviceRole.XL2).confidence == 70
        assert result.best(DeviceRole.GPS).confidence == 75
        assert result.best(DeviceRole.GPS).response.startswith("Hardware-based identification")

    @pytest.mark.asyncio
    async def test_probe_identifies_xl2(self):
        prober = StubProber(analyzer={"/dev/ttyACM0": XL2_IDN})
        result = await DeviceClassifier(UNIX_PROFILE, prober).classify([PortDescriptor("/dev/ttyACM0")])
        candidate = result.best(DeviceRole.XL2)
        assert candidate.confidence == 80
        assert candidate.response == XL2_IDN
        assert prober.calls == [("xl2", "/dev/ttyACM0")]

    @pytest.mark.asyncio
    async def test_gps_tested_first_when_hardware_suggests_gps(self):
        prober = StubProber(gps={"/dev/ttyUSB0": GPGGA})
        port = PortDescriptor("/dev/ttyUSB0", manufacturer="CH340")
        result = await DeviceClassifier(UNIX_PROFILE, prober).classify([port])
        assert prober.calls == [("gps", "/dev/ttyUSB0")]
        # $GP (30) + GPGGA (20) + ch340 (15)
        assert result.best(DeviceRole.GPS).confidence == 65

    @pytest.mark.asyncio
    async def test_falls_through_to_second_role(self):
        prober = StubProber(gps={"/dev/ttyACM0": GPGGA})
        result = await DeviceClassifier(UNIX_PROFILE, prober).classify([PortDescriptor("/dev/ttyACM0")])
        assert prober.calls == [("xl2", "/dev/ttyACM0"), ("gps", "/dev/ttyACM0")]
        assert result.best(DeviceRole.GPS) is not None

    @pytest.mark.asyncio
    async def test_preferred_gps_path_tested_gps_first(self):
        prober = StubProber(gps={"/dev/ttyACM1": GPGGA})
        await DeviceClassifier(RASPBERRY_PI_PROFILE, prober).classify([PortDescriptor("/dev/ttyACM1")])
        assert prober.calls[0] == ("gps", "/dev/ttyACM1")

    @pytest.mark.asyncio
    async def test_falls_back_to_hardware_guess(self):
        prober = StubProber()
        port = PortDescriptor("/dev/ttyUSB0", vendor_id="0403", product_id="0004")
        result = await DeviceClassifier(UNIX_PROFILE, prober).classify([port])
        candidate = result.best(DeviceRole.XL2)
        assert candidate.confidence == 60
        assert "FTDI" in candidate.response
        assert candidate.error is not None

    @pytest.mark.asyncio
    async def test_unknown_port(self):
        result = await DeviceClassifier(UNIX_PROFILE, StubProber()).classify([PortDescriptor("/dev/ttyACM3")])
        assert result.summary.unknown_count == 1
        assert result.for_role(DeviceRole.UNKNOWN)[0].confidence == 0

    @pytest.mark.asyncio
    async def test_non_candidates_are_not_probed(self):
        prober = StubProber()
        result = await DeviceClassifier(UNIX_PROFILE, prober).classify([PortDescriptor("/dev/ttyS0")])
        assert prober.calls == []
        assert result.summary.total_ports == 0


class TestRanking:
    @pytest.mark.asyncio
    async def test_best_is_highest_confidence(self):
        prober = StubProber(analyzer={
            "/dev/ttyACM0": "XL2",  # 40
            "/dev/ttyACM1": XL2_IDN,  # 80
        })
        classifier = DeviceClassifier(UNIX_PROFILE, prober)
        result = await classifier.classify([PortDescriptor("/dev/ttyACM0"), PortDescriptor("/dev/ttyACM1")])
        assert [c.path for c in result.for_role(DeviceRole.XL2)] == ["/dev/ttyACM1", "/dev/ttyACM0"]
        assert classifier.best(DeviceRole.XL2).path == "/dev/ttyACM1"
        assert result.summary.best_xl2.path == "/dev/ttyACM1"
        assert len(classifier.all_candidates()) == 2

    @pytest.mark.asyncio
    async def test_ties_keep_scan_order(self):
        prober = StubProber(analyzer={"/dev/ttyACM0": XL2_IDN, "/dev/ttyACM1": XL2_IDN})
        result = await DeviceClassifier(UNIX_PROFILE, prober).classify(
            [PortDescriptor("/dev/ttyACM0"), PortDescriptor("/dev/ttyACM1")]
        )
        assert result.best(DeviceRole.XL2).path == "/dev/ttyACM0"

    @pytest.mark.asyncio
    async def test_confidence_always_in_bounds(self):
        prober = StubProber(
            analyzer={"/dev/ttyACM0": "NTiAudio NTi Audio XL2"},
            gps={"/dev/ttyUSB0": GPGGA},
        )
        ports = [
            PortDescriptor("/dev/ttyACM0", manufacturer="NTi", vendor_id="0403", product_id="0004"),
            PortDescriptor("/dev/ttyUSB0", manufacturer="CH340 u-blox", vendor_id="1546", product_id="7523"),
            PortDescriptor("/dev/ttyACM5"),
        ]
        result = await DeviceClassifier(UNIX_PROFILE, prober).classify(ports)
        assert all(0 <= c.confidence <= 100 for c in result.candidates)

    def test_no_scan_yet(self):
        classifier = DeviceClassifier(UNIX_PROFILE, StubProber())
        assert classifier.best(DeviceRole.XL2) is None
        assert classifier.all_candidates() == ()
        assert classifier.summary() is None


class TestCache:
    """Results are reused until the TTL expires."""

    @pytest.mark.asyncio
    async def test_cache_avoids_reprobe(self):
        prober = StubProber(analyzer={"/dev/ttyACM0": XL2_IDN})
        classifier = DeviceClassifier(UNIX_PROFILE, prober)
        ports = [PortDescriptor("/dev/ttyACM0")]
        first = await classifier.classify(ports)
        second = await classifier.classify(ports)
        assert len(prober.calls) == 1
        assert second.best(DeviceRole.XL2) == first.best(DeviceRole.XL2)
        assert classifier.cache_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_reprobed(self):
        clock = FakeClock()
        prober = StubProber(analyzer={"/dev/ttyACM0": XL2_IDN})
        classifier = DeviceClassifier(UNIX_PROFILE, prober, cache=ClassificationCache(ttl=30, clock=clock))
        ports = [PortDescriptor("/dev/ttyACM0")]
        await classifier.classify(ports)
        clock.now += 30
        await classifier.classify(ports)
        assert len(prober.calls) == 2

    @pytest.mark.asyncio
    async def test_clear_cache(self):
        prober = StubProber(analyzer={"/dev/ttyACM0": XL2_IDN})
        classifier = DeviceClassifier(UNIX_PROFILE, prober)
        await classifier.classify([PortDescriptor("/dev/ttyACM0")])
        classifier.clear_cache()
        assert classifier.cache_stats()["size"] == 0
        await classifier.classify([PortDescriptor("/dev/ttyACM0")])
        assert len(prober.calls) == 2

    @pytest.mark.asyncio
    async def test_unknowns_are_cached(self):
        prober = StubProber()
        classifier = DeviceClassifier(UNIX_PROFILE, prober)
        await classifier.classify([PortDescriptor("/dev/ttyACM7")])
        calls = len(prober.calls)
        await classifier.classify([PortDescriptor("/dev/ttyACM7")])
        assert len(prober.calls) == calls

    @pytest.mark.asyncio
    async def test_held_port_is_not_probed_after_expiry(self):
        clock = FakeClock()
        prober = StubProber(analyzer={"/dev/ttyACM0": XL2_IDN}, gps={"/dev/ttyACM1": GPGGA})
        classifier = DeviceClassifier(UNIX_PROFILE, prober, cache=ClassificationCache(ttl=30, clock=clock))
        ports = [PortDescriptor("/dev/ttyACM0"), PortDescriptor("/dev/ttyACM1")]
        first = await classifier.classify(ports)
        calls = len(prober.calls)

        clock.now += 60
        second = await classifier.classify(ports, held={"/dev/ttyACM0": DeviceRole.XL2})
        probed = [path for _, path in prober.calls[calls:]]
        assert "/dev/ttyACM0" not in probed
        assert "/dev/ttyACM1" in probed
        assert second.best(DeviceRole.XL2) == first.best(DeviceRole.XL2)

    @pytest.mark.asyncio
    async def test_held_port_without_history(self):
        prober = StubProber()
        classifier = DeviceClassifier(UNIX_PROFILE, prober)
        result = await classifier.classify(
            [PortDescriptor("/dev/ttyACM5")], held={"/dev/ttyACM5": DeviceRole.GPS}
        )
        assert prober.calls == []
        best = result.best(DeviceRole.GPS)
        assert best.path == "/dev/ttyACM5"
        assert best.confidence == 100

    def test_stats(self):
        clock = FakeClock()
        cache = ClassificationCache(ttl=10, clock=clock)
        stats = cache.stats()
        assert stats == {"size": 0, "fresh": 0, "expired": 0, "ttl_s": 10, "hits": 0, "misses": 0}


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_second_request_gets_running_scan_result(self):
        prober = StubProber(analyzer={"/dev/ttyACM0": XL2_IDN}, delay=0.05)
        classifier = DeviceClassifier(UNIX_PROFILE, prober)
        ports = [PortDescriptor("/dev/ttyACM0")]
        first, second = await asyncio.gather(classifier.classify(ports), classifier.classify(ports))
        assert first is second
        assert len(prober.calls) == 1

    @pytest.mark.asyncio
    async def test_ports_identified_concurrently(self):
        prober = StubProber(analyzer={f"/dev/ttyACM{i}": XL2_IDN for i in range(5)}, delay=0.1)
        classifier = DeviceClassifier(UNIX_PROFILE, prober)
        loop = asyncio.get_running_loop()
        start = loop.time()
        await classifier.classify([PortDescriptor(f"/dev/ttyACM{i}") for i in range(5)])
        assert loop.time() - start < 0.4


class TestEvents:
    @pytest.mark.asyncio
    async def test_scan_events(self, event_sink):
        classifier = DeviceClassifier(UNIX_PROFILE, StubProber(), sink=event_sink)
        await classifier.classify([PortDescriptor("/dev/ttyACM0", manufacturer="NTi Audio")])
        assert event_sink.types() == [EventType.SCAN_STARTED, EventType.SCAN_COMPLETED]
        assert event_sink.events[1].payload["xl2_count"] == 1


class TestWithSimulatedPorts:
    """Classifier plus real prober over the fake serial bus."""

    @pytest.mark.asyncio
    async def test_classifies_xl2_and_gps(self, serial_bus):
        serial_bus.add("/dev/ttyACM0", xl2_device())
        serial_bus.add("/dev/ttyUSB0", gps_device(baudrate=4800))
        prober = SerialPortProber(UNIX_PROFILE, transport_factory=serial_bus,
                                  open_timeout=0.1, response_timeout=0.05)
        result = await DeviceClassifier(UNIX_PROFILE, prober).classify(
            [PortDescriptor("/dev/ttyACM0"), PortDescriptor("/dev/ttyUSB0")]
        )
        assert result.best(DeviceRole.XL2).path == "/dev/ttyACM0"
        assert result.best(DeviceRole.GPS).path == "/dev/ttyUSB0"
        assert all(t.closed for t in serial_bus.transports)
