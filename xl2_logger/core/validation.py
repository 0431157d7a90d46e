"""Input validators. Each raises ValidationError before any I/O happens."""

from __future__ import annotations

import re
from typing import Any, Optional

from .constants import DEFAULT_HISTORY_LIMIT
from .errors import ValidationError

PORT_PATH_PATTERN = re.compile(r"^(COM\d+|/dev/(tty|cu\.)[A-Za-z0-9._-]+|/dev/serial\d+)$")
FORBIDDEN_COMMAND_PATTERN = re.compile(r"[;&|`$()\x00\r\n]")
MAX_COMMAND_LENGTH = 1000

MIN_FREQUENCY_HZ = 0.1
MAX_FREQUENCY_HZ = 100000.0
MIN_ZOOM = 1
MAX_ZOOM = 20
MIN_LIMIT = 1
MAX_LIMIT = 10000


def validate_port_path(port: Any) -> str:
    if not port or not isinstance(port, str):
        raise ValidationError("Port path must be a non-empty string")
    if not PORT_PATH_PATTERN.match(port):
        raise ValidationError(f"Invalid port path format: {port}")
    return port


def validate_command(command: Any) -> str:
    if not command or not isinstance(command, str):
        raise ValidationError("Command must be a non-empty string")
    if FORBIDDEN_COMMAND_PATTERN.search(command):
        raise ValidationError("Command contains invalid characters")
    if len(command) > MAX_COMMAND_LENGTH:
        raise ValidationError(f"Command too long (max {MAX_COMMAND_LENGTH} characters)")
    return command


def _to_float(value: Any, label: str) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{label} must be a valid number") from exc
    if result != result:  # NaN
        raise ValidationError(f"{label} must be a valid number")
    return result


def _to_int(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a valid integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{label} must be a valid integer") from exc


def validate_frequency(frequency: Any) -> float:
    value = _to_float(frequency, "Frequency")
    if not MIN_FREQUENCY_HZ <= value <= MAX_FREQUENCY_HZ:
        raise ValidationError(
            f"Frequency must be between {MIN_FREQUENCY_HZ} and {MAX_FREQUENCY_HZ:g} Hz"
        )
    return value


def validate_zoom(zoom: Any) -> int:
    value = _to_int(zoom, "Zoom")
    if not MIN_ZOOM <= value <= MAX_ZOOM:
        raise ValidationError(f"Zoom must be between {MIN_ZOOM} and {MAX_ZOOM}")
    return value


def validate_limit(limit: Optional[Any]) -> int:
    """Return a history limit; ``None`` selects the default."""
    if limit is None:
        return DEFAULT_HISTORY_LIMIT
    value = _to_int(limit, "Limit")
    if not MIN_LIMIT <= value <= MAX_LIMIT:
        raise ValidationError(f"Limit must be between {MIN_LIMIT} and {MAX_LIMIT}")
    return value


__all__ = [
    "validate_command",
    "validate_frequency",
    "validate_limit",
    "validate_port_path",
    "validate_zoom",
]
