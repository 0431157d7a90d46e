"""NMEA position tracking for the GPS receiver.

Feeds on raw sentences from the GPS session and keeps the latest fix.
Decoding is done by pynmea2; only GGA and RMC are used. GGA carries
position, altitude, satellites and fix quality; RMC adds ground speed. A GGA
without a fix leaves the last good position in place.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import asdict, dataclass, replace
from typing import Any, Optional

import pynmea2

from xl2_logger.core.devices.types import DeviceRole
from xl2_logger.core.events import EventSink, EventType, NullEventSink, RigEvent
from xl2_logger.core.logging_utils import get_module_logger

logger = get_module_logger("PositionTracker")

KMH_PER_KNOT = 1.852


@dataclass(frozen=True)
class GpsPosition:
    """Latest known fix. Fields stay None until a sentence provides them."""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude_m: Optional[float] = None
    satellites: Optional[int] = None
    fix_quality: Optional[int] = None
    speed_kmh: Optional[float] = None
    fix_time: Optional[dt.time] = None

    @property
    def has_fix(self) -> bool:
        return (
            self.latitude is not None
            and self.longitude is not None
            and (self.fix_quality or 0) > 0
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["fix_time"] = self.fix_time.isoformat() if self.fix_time else None
        return data


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class PositionTracker:
    """
    Keeps the current position from a stream of NMEA sentences.

    Usage:
        tracker = PositionTracker(sink)
        gps = GpsSession(sentence_handler=tracker.feed)
        ...
        tracker.position.latitude
    """

    def __init__(self, sink: Optional[EventSink] = None) -> None:
        self._sink = sink or NullEventSink()
        self._position = GpsPosition()
        self.sentences_decoded = 0
        self.sentences_rejected = 0

    @property
    def position(self) -> GpsPosition:
        return self._position

    @property
    def has_fix(self) -> bool:
        return self._position.has_fix

    def reset(self) -> None:
        """Forget the current fix, e.g. after the receiver went away."""
        self._position = GpsPosition()

    def feed(self, sentence: str) -> bool:
        """Decode one sentence. Returns True when it changed the position.

        Sentences with a wrong checksum are rejected; sentences without one
        are accepted.
        """
        sentence = sentence.strip()
        if not sentence.startswith("$"):
            return False
        try:
            message = pynmea2.parse(sentence)
        except pynmea2.ParseError as exc:
            self.sentences_rejected += 1
            logger.debug("Unparseable NMEA sentence %s: %s", sentence, exc)
            return False

        kind = getattr(message, "sentence_type", None)
        if kind == "GGA":
            updated = self._apply_gga(message)
        elif kind == "RMC":
            updated = self._apply_rmc(message)
        else:
            return False
        if updated:
            self.sentences_decoded += 1
        return updated

    def _apply_gga(self, message: Any) -> bool:
        quality = _to_int(message.gps_qual)
        if not quality or not message.lat or not message.lon:
            return False

        self._position = replace(
            self._position,
            latitude=message.latitude,
            longitude=message.longitude,
            altitude_m=message.altitude,
            satellites=_to_int(message.num_sats),
            fix_quality=quality,
            fix_time=message.timestamp,
        )
        logger.debug(
            "GPS: %.6f, %.6f | Alt: %s m | Sats: %s",
            self._position.latitude, self._position.longitude,
            self._position.altitude_m, self._position.satellites,
        )
        self._sink.emit(RigEvent(EventType.GPS_POSITION, role=DeviceRole.GPS, payload=self._position.to_dict()))
        return True

    def _apply_rmc(self, message: Any) -> bool:
        if message.status != "A" or message.spd_over_grnd is None:
            return False
        self._position = replace(self._position, speed_kmh=float(message.spd_over_grnd) * KMH_PER_KNOT)
        return True


__all__ = ["GpsPosition", "PositionTracker"]
