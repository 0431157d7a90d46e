"""
Confidence scoring for port classification.

Two kinds of evidence are scored: what a device said when probed (response
content) and what the USB stack reports about it (manufacturer, vendor and
product id). Response evidence weighs more. Scores add up and are capped at
``MAX_CONFIDENCE``. The weights are heuristics tuned against real hardware;
override them through :class:`ScoringWeights` rather than editing the rules.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from xl2_logger.core.constants import XL2_RESPONSE_KEYWORDS
from .types import DeviceRole, HardwareGuess, PortDescriptor

MAX_CONFIDENCE = 100
FAST_PATH_CONFIDENCE = 70

GPS_SENTENCE_PATTERNS = (
    re.compile(r"^\$GP"),  # GPS
    re.compile(r"^\$GL"),  # GLONASS
    re.compile(r"^\$GA"),  # Galileo
    re.compile(r"^\$GN"),  # combined GNSS
    re.compile(r"^\$BD"),  # BeiDou
    re.compile(r"GPGGA|GPRMC|GPGSV|GPGSA"),
)


@dataclass(frozen=True)
class ScoringWeights:
    """Additive weights; each field is one piece of evidence."""

    # XL2 response content
    xl2_keyword_ntiaudio: int = 40
    xl2_keyword_xl2: int = 40
    xl2_keyword_nti_audio: int = 30
    # XL2 hardware
    xl2_manufacturer_nti: int = 15
    xl2_manufacturer_xl2: int = 15
    xl2_ftdi_product: int = 10

    # GPS response content
    gps_prefix_gp: int = 30
    gps_prefix_gn: int = 25
    gps_sentence_gga: int = 20
    gps_sentence_rmc: int = 20
    # GPS manufacturer
    gps_manufacturer_ch34x: int = 15
    gps_manufacturer_prolific: int = 10
    gps_manufacturer_ftdi: int = 10
    gps_manufacturer_ublox: int = 20
    gps_manufacturer_microsoft_ublox: int = 15
    # GPS vendor / product ids
    gps_vendor_ids: dict[str, int] = field(
        default_factory=lambda: {"1a86": 15, "1546": 20, "067b": 10, "0403": 10}
    )
    gps_product_ids: dict[str, int] = field(
        default_factory=lambda: {"01a7": 15, "7523": 15, "2303": 10}
    )


DEFAULT_WEIGHTS = ScoringWeights()


def _fields(port: PortDescriptor) -> tuple[str, str, str]:
    return (
        (port.manufacturer or "").lower(),
        (port.vendor_id or "").lower(),
        (port.product_id or "").lower(),
    )


def is_xl2_response(response: Optional[str], keywords=XL2_RESPONSE_KEYWORDS) -> bool:
    if not response:
        return False
    upper = response.upper()
    return any(keyword.upper() in upper for keyword in keywords)


def is_gps_response(response: Optional[str]) -> bool:
    if not response:
        return False
    return any(pattern.search(response) for pattern in GPS_SENTENCE_PATTERNS)


def score_xl2(response: str, port: PortDescriptor, weights: ScoringWeights = DEFAULT_WEIGHTS) -> int:
    manufacturer, vendor_id, product_id = _fields(port)
    confidence = 0
    if "NTiAudio" in response:
        confidence += weights.xl2_keyword_ntiaudio
    if "XL2" in response:
        confidence += weights.xl2_keyword_xl2
    if "NTi Audio" in response:
        confidence += weights.xl2_keyword_nti_audio

    if "nti" in manufacturer:
        confidence += weights.xl2_manufacturer_nti
    if "xl2" in manufacturer:
        confidence += weights.xl2_manufacturer_xl2
    if vendor_id == "0403" and "0004" in product_id:
        confidence += weights.xl2_ftdi_product
    return min(confidence, MAX_CONFIDENCE)


def score_gps(response: str, port: PortDescriptor, weights: ScoringWeights = DEFAULT_WEIGHTS) -> int:
    manufacturer, vendor_id, product_id = _fields(port)
    confidence = 0
    if response.startswith("$GP"):
        confidence += weights.gps_prefix_gp
    if response.startswith("$GN"):
        confidence += weights.gps_prefix_gn
    if "GPGGA" in response:
        confidence += weights.gps_sentence_gga
    if "GPRMC" in response:
        confidence += weights.gps_sentence_rmc

    if "ch340" in manufacturer or "ch341" in manufacturer:
        confidence += weights.gps_manufacturer_ch34x
    if "prolific" in manufacturer:
        confidence += weights.gps_manufacturer_prolific
    if "ftdi" in manufacturer:
        confidence += weights.gps_manufacturer_ftdi
    if "u-blox" in manufacturer or "ublox" in manufacturer:
        confidence += weights.gps_manufacturer_ublox
    if "microsoft" in manufacturer and vendor_id == "1546":
        confidence += weights.gps_manufacturer_microsoft_ublox

    confidence += weights.gps_vendor_ids.get(vendor_id, 0)
    confidence += weights.gps_product_ids.get(product_id, 0)
    return min(confidence, MAX_CONFIDENCE)


# (predicate over (manufacturer, vendor_id, product_id), role, confidence, reason)
HardwareRule = tuple[Callable[[str, str, str], bool], DeviceRole, int, str]

# First match wins, so the most specific signature comes first.
HARDWARE_RULES: tuple[HardwareRule, ...] = (
    (lambda m, v, p: v == "1546" and p == "01a7",
     DeviceRole.GPS, 75, "u-blox GPS product/vendor ID combination"),
    (lambda m, v, p: "nti" in m or "xl2" in m,
     DeviceRole.XL2, 70, "NTi/XL2 manufacturer"),
    (lambda m, v, p: v == "0403" and "0004" in p,
     DeviceRole.XL2, 60, "FTDI with XL2 product ID"),
    (lambda m, v, p: "u-blox" in m or "ublox" in m,
     DeviceRole.GPS, 70, "u-blox GPS manufacturer"),
    (lambda m, v, p: v == "1546",
     DeviceRole.GPS, 65, "u-blox vendor ID"),
    (lambda m, v, p: "ch340" in m or "ch341" in m,
     DeviceRole.GPS, 50, "CH340/CH341 chip (common in GPS modules)"),
    (lambda m, v, p: v == "1a86",
     DeviceRole.GPS, 45, "CH340 vendor ID (common in GPS modules)"),
)

NO_GUESS = HardwareGuess(DeviceRole.UNKNOWN, 0, "No matching hardware patterns")


def guess_from_hardware(port: PortDescriptor, rules=HARDWARE_RULES) -> HardwareGuess:
    """Hardware-only guess, used for the fast path and as a last resort."""
    manufacturer, vendor_id, product_id = _fields(port)
    for predicate, role, confidence, reason in rules:
        if predicate(manufacturer, vendor_id, product_id):
            return HardwareGuess(role, confidence, reason)
    return NO_GUESS


__all__ = [
    "DEFAULT_WEIGHTS",
    "FAST_PATH_CONFIDENCE",
    "HARDWARE_RULES",
    "MAX_CONFIDENCE",
    "ScoringWeights",
    "guess_from_hardware",
    "is_gps_response",
    "is_xl2_response",
    "score_gps",
    "score_xl2",
]
