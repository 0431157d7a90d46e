"""Classification of lines received from the XL2.

The analyzer does not tag its replies, so the kind of a line is inferred
from its shape, checked in this order:

    identification   contains a product keyword (NTiAudio, XL2)
    frequency table  comma list with a "Hz" token and more than 10 fields
    spectrum         comma list without "Hz" and more than 10 fields
    single value     contains "dB"
    unknown          anything else

Known weakness: any unrelated line with more than 10 comma-separated fields
(a long NMEA sentence echoed onto the wrong port, say) is taken for spectrum
data purely on field count. Values that fail to parse are dropped, so such a
line usually yields a short, meaningless spectrum rather than an error.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from xl2_logger.core.constants import FREQUENCY_TOLERANCE, TARGET_FREQUENCY, XL2_RESPONSE_KEYWORDS

MIN_LIST_FIELDS = 10
FREQUENCY_UNIT = "Hz"
DECIBEL_UNIT = "dB"

_DB_VALUE = re.compile(r"([-+]?\d*\.?\d+)\s*dB", re.IGNORECASE)
_DB_TOKEN = re.compile(r"dB", re.IGNORECASE)


class ResponseKind(Enum):
    IDENTIFICATION = "identification"
    FREQUENCY_TABLE = "frequency_table"
    SPECTRUM = "spectrum"
    SINGLE_VALUE = "single_value"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AnalyzerResponse:
    """One classified line.

    ``values`` holds frequencies (Hz) for a frequency table, levels (dB) for
    a spectrum, and a single level for a single value.
    """
    kind: ResponseKind
    raw: str
    values: tuple[float, ...] = ()
    status: Optional[str] = None

    @property
    def value(self) -> Optional[float]:
        return self.values[0] if self.values else None


def _parse_floats(fields: Sequence[str]) -> tuple[float, ...]:
    parsed = []
    for item in fields:
        try:
            number = float(item.strip())
        except ValueError:
            continue
        if not math.isnan(number):
            parsed.append(number)
    return tuple(parsed)


def _is_list(line: str) -> bool:
    return "," in line and len(line.split(",")) > MIN_LIST_FIELDS


def parse_response(line: str, keywords: Sequence[str] = XL2_RESPONSE_KEYWORDS) -> AnalyzerResponse:
    if any(keyword in line for keyword in keywords):
        return AnalyzerResponse(ResponseKind.IDENTIFICATION, line)

    if _is_list(line) and FREQUENCY_UNIT in line:
        values = _parse_floats(line.replace(FREQUENCY_UNIT, "").split(","))
        return AnalyzerResponse(ResponseKind.FREQUENCY_TABLE, line, values)

    if _is_list(line):
        values = _parse_floats(_DB_TOKEN.sub("", line).split(","))
        return AnalyzerResponse(ResponseKind.SPECTRUM, line, values)

    if DECIBEL_UNIT in line:
        match = _DB_VALUE.search(line)
        if match:
            status = "OK" if "OK" in line else "UNKNOWN"
            return AnalyzerResponse(ResponseKind.SINGLE_VALUE, line, (float(match.group(1)),), status)

    return AnalyzerResponse(ResponseKind.UNKNOWN, line)


def find_target_bin(
    frequencies: Sequence[float],
    target: float = TARGET_FREQUENCY,
    tolerance: float = FREQUENCY_TOLERANCE,
) -> tuple[int, float]:
    """Return ``(index, frequency)`` of the bin for ``target``.

    With FSTART set to the target the first bin is the target, so index 0
    wins whenever it lies within ``tolerance``. Otherwise the bin minimizing
    ``|f - target|`` is chosen; on a tie the lowest index wins.
    """
    if not frequencies:
        raise ValueError("frequency table is empty")
    if abs(frequencies[0] - target) < tolerance:
        return 0, frequencies[0]

    best_index = 0
    best_diff = math.inf
    for index, frequency in enumerate(frequencies):
        diff = abs(frequency - target)
        if diff < best_diff:
            best_diff = diff
            best_index = index
    return best_index, frequencies[best_index]


__all__ = [
    "AnalyzerResponse",
    "ResponseKind",
    "find_target_bin",
    "parse_response",
]
