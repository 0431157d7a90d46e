"""
Device classifier - decides which serial port hosts which device role.

Given all ports on the host, the classifier shortlists candidates with the
platform profile, identifies every candidate concurrently and ranks the
results per role by confidence.

Per port, identification goes:
    1. cached result younger than the TTL -> reuse, no I/O
    2. hardware guess >= FAST_PATH_CONFIDENCE -> accept, no I/O
    3. active probes, most likely role first; first match wins
    4. no probe matched -> fall back to the hardware guess, if any
Every result is cached, including unknowns. Ports held by a connected
session skip all of the above and keep their last classification.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol

from xl2_logger.core.constants import CLASSIFICATION_CACHE_TTL
from xl2_logger.core.events import EventSink, EventType, NullEventSink, RigEvent
from xl2_logger.core.logging_utils import get_module_logger
from .platform_profile import PlatformProfile
from .scoring import (
    DEFAULT_WEIGHTS,
    FAST_PATH_CONFIDENCE,
    ScoringWeights,
    guess_from_hardware,
    is_gps_response,
    is_xl2_response,
    score_gps,
    score_xl2,
)
from .types import DeviceCandidate, DeviceRole, HardwareGuess, PortDescriptor, ScanResult, ScanSummary

logger = get_module_logger("DeviceClassifier")


class PortProber(Protocol):
    async def probe_analyzer(self, port: PortDescriptor) -> str:
        ...

    async def probe_gps(self, port: PortDescriptor) -> str:
        ...


@dataclass(frozen=True)
class ClassificationCacheEntry:
    candidate: DeviceCandidate
    timestamp: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.timestamp < ttl


class ClassificationCache:
    """TTL cache of classification results keyed by port identity."""

    def __init__(self, ttl: float = CLASSIFICATION_CACHE_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[tuple, ClassificationCacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, port: PortDescriptor) -> Optional[DeviceCandidate]:
        entry = self._entries.get(port.cache_key)
        if entry is None:
            self.misses += 1
            return None
        if not entry.is_fresh(self._clock(), self.ttl):
            del self._entries[port.cache_key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.candidate

    def put(self, candidate: DeviceCandidate) -> None:
        self._entries[candidate.port.cache_key] = ClassificationCacheEntry(candidate, self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        fresh = sum(1 for entry in self._entries.values() if entry.is_fresh(now, self.ttl))
        return {
            "size": len(self._entries),
            "fresh": fresh,
            "expired": len(self._entries) - fresh,
            "ttl_s": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
        }


class DeviceClassifier:
    """
    Classifies serial ports into device roles.

    Usage:
        classifier = DeviceClassifier(profile, SerialPortProber(profile))
        result = await classifier.classify(await enumerator.list_ports())
        best_xl2 = result.best(DeviceRole.XL2)
    """

    def __init__(
        self,
        profile: PlatformProfile,
        prober: PortProber,
        cache: Optional[ClassificationCache] = None,
        sink: Optional[EventSink] = None,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
    ) -> None:
        self._profile = profile
        self._prober = prober
        self._cache = cache if cache is not None else ClassificationCache()
        self._sink = sink or NullEventSink()
        self._weights = weights
        self._scan_lock = asyncio.Lock()
        self._last_result: Optional[ScanResult] = None

    # ------------------------------------------------------------------
    # Scanning

    async def classify(
        self,
        ports: Iterable[PortDescriptor],
        held: Optional[Mapping[str, DeviceRole]] = None,
    ) -> ScanResult:
        """Classify ``ports``. A call made during a running scan gets that scan's result.

        ``held`` maps port paths owned by live sessions to their role. Those
        ports are never opened; they keep their previous classification.
        """
        waited = self._scan_lock.locked()
        if waited:
            logger.warning("Device scan already in progress, waiting for completion")
        async with self._scan_lock:
            if waited and self._last_result is not None:
                return self._last_result
            return await self._run_scan(list(ports), dict(held or {}))

    async def _run_scan(self, ports: list[PortDescriptor], held: dict[str, DeviceRole]) -> ScanResult:
        self._sink.emit(RigEvent(EventType.SCAN_STARTED, payload={"total_ports": len(ports)}))

        candidates = self._profile.shortlist(ports)
        shortlisted = {port.path for port in candidates}
        # A held port must stay in the result even if the profile would skip it
        candidates += [port for port in ports if port.path in held and port.path not in shortlisted]
        logger.info("Testing %d of %d ports concurrently", len(candidates), len(ports))

        previous = {c.path: c for c in self._last_result.candidates} if self._last_result else {}

        async def identify(port: PortDescriptor) -> DeviceCandidate:
            role = held.get(port.path)
            if role is None:
                return await self._identify_safe(port)
            return self._held_candidate(port, role, previous.get(port.path))

        results = await asyncio.gather(*(identify(port) for port in candidates))
        result = ScanResult.from_candidates(results)
        self._last_result = result

        summary = result.summary
        logger.info(
            "Device scan completed: %d XL2, %d GPS, %d unknown (%d tested)",
            summary.xl2_count, summary.gps_count, summary.unknown_count, summary.total_ports,
        )
        self._sink.emit(RigEvent(EventType.SCAN_COMPLETED, payload=summary.to_dict()))
        return result

    async def _identify_safe(self, port: PortDescriptor) -> DeviceCandidate:
        try:
            return await self._identify(port)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("Port %s test failed: %s", port.path, exc)
            return DeviceCandidate(
                port=port,
                role=DeviceRole.UNKNOWN,
                confidence=0,
                response=f"No response ({exc})",
                error=str(exc),
            )

    async def _identify(self, port: PortDescriptor) -> DeviceCandidate:
        cached = self._cache.get(port)
        if cached is not None:
            logger.debug("Using cached result for %s: %s", port.path, cached.role.value)
            return cached

        guess = guess_from_hardware(port)
        if guess.confidence >= FAST_PATH_CONFIDENCE:
            logger.info(
                "Fast hardware identification: %s at %s (%d%% confidence)",
                guess.role.label, port.path, guess.confidence,
            )
            candidate = self._from_guess(port, guess)
            self._cache.put(candidate)
            return candidate

        error: Optional[str] = None
        for role in self._test_order(port, guess):
            try:
                candidate = await self._test_role(port, role)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.debug("%s test failed for %s: %s", role.label, port.path, exc)
                error = str(exc)
                continue
            if candidate is not None:
                logger.info(
                    "Identified %s device at %s (%d%% confidence)",
                    role.label, port.path, candidate.confidence,
                )
                self._cache.put(candidate)
                return candidate

        if guess.role is not DeviceRole.UNKNOWN:
            candidate = self._from_guess(port, guess, error=error)
        else:
            candidate = DeviceCandidate(port=port, role=DeviceRole.UNKNOWN, confidence=0, error=error)
        self._cache.put(candidate)
        return candidate

    def _held_candidate(
        self, port: PortDescriptor, role: DeviceRole, previous: Optional[DeviceCandidate]
    ) -> DeviceCandidate:
        if previous is not None and previous.role is role:
            candidate = DeviceCandidate(port, role, previous.confidence, previous.response)
        else:
            candidate = DeviceCandidate(port, role, 100, f"In use by connected {role.label} session")
        logger.debug("Skipping %s, held by %s session", port.path, role.label)
        self._cache.put(candidate)
        return candidate

    def _test_order(self, port: PortDescriptor, guess: HardwareGuess) -> tuple[DeviceRole, DeviceRole]:
        likely = guess.role
        if likely is DeviceRole.UNKNOWN:
            # Boards with fixed wiring name a role per path
            if port.path in self._profile.preferred_for(DeviceRole.GPS):
                likely = DeviceRole.GPS
        if likely is DeviceRole.GPS:
            return (DeviceRole.GPS, DeviceRole.XL2)
        return (DeviceRole.XL2, DeviceRole.GPS)

    async def _test_role(self, port: PortDescriptor, role: DeviceRole) -> Optional[DeviceCandidate]:
        if role is DeviceRole.XL2:
            response = await self._prober.probe_analyzer(port)
            if is_xl2_response(response):
                return DeviceCandidate(port, DeviceRole.XL2, score_xl2(response, port, self._weights), response)
            return None
        response = await self._prober.probe_gps(port)
        if is_gps_response(response):
            return DeviceCandidate(port, DeviceRole.GPS, score_gps(response, port, self._weights), response)
        return None

    @staticmethod
    def _from_guess(port: PortDescriptor, guess: HardwareGuess, error: Optional[str] = None) -> DeviceCandidate:
        return DeviceCandidate(
            port=port,
            role=guess.role,
            confidence=guess.confidence,
            response=f"Hardware-based identification: {guess.reason}",
            error=error,
        )

    # ------------------------------------------------------------------
    # Results

    @property
    def last_result(self) -> Optional[ScanResult]:
        return self._last_result

    def best(self, role: DeviceRole) -> Optional[DeviceCandidate]:
        if self._last_result is None:
            return None
        return self._last_result.best(role)

    def all_candidates(self) -> tuple[DeviceCandidate, ...]:
        if self._last_result is None:
            return ()
        return self._last_result.candidates

    def summary(self) -> Optional[ScanSummary]:
        return self._last_result.summary if self._last_result else None

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Device detection cache cleared")

    def cache_stats(self) -> dict[str, Any]:
        return self._cache.stats()


__all__ = [
    "ClassificationCache",
    "ClassificationCacheEntry",
    "DeviceClassifier",
    "PortProber",
]
