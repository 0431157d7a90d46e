"""Error taxonomy for discovery, sessions and orchestration.

Every error carries a machine-readable ``code`` and an HTTP-style
``status_code`` so an outer API layer can turn it into a structured payload
with :func:`error_payload` without knowing the concrete type.
"""

from __future__ import annotations

import asyncio
import traceback
from datetime import datetime, timezone
from typing import Any, Awaitable, Optional, TypeVar

T = TypeVar("T")


class RigError(Exception):
    """Base class for all errors raised by xl2_logger."""

    code = "RIG_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self, include_traceback: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "timestamp": self.timestamp.isoformat(),
        }
        if include_traceback:
            data["traceback"] = "".join(
                traceback.format_exception(type(self), self, self.__traceback__)
            )
        return data


class PortIOError(RigError):
    """Opening, writing to or reading from a serial port failed."""

    code = "PORT_IO_ERROR"


class NotConnectedError(PortIOError):
    code = "NOT_CONNECTED"
    status_code = 503


class DeviceTimeoutError(RigError, TimeoutError):
    """A device did not answer within its bound."""

    code = "TIMEOUT_ERROR"
    status_code = 408


class ProtocolError(RigError):
    code = "PROTOCOL_ERROR"
    status_code = 502


class ValidationError(RigError, ValueError):
    """Rejected input; raised before any I/O happens."""

    code = "VALIDATION_ERROR"
    status_code = 400


class ConfigError(RigError):
    code = "CONFIG_ERROR"


class RecordingError(RigError):
    """The measurement log could not be opened or written."""

    code = "RECORDING_ERROR"


class OrchestrationError(RigError):
    """Wraps a failed orchestration phase."""

    code = "ORCHESTRATION_ERROR"

    def __init__(self, message: str, *, phase: Optional[str] = None) -> None:
        super().__init__(message)
        self.phase = phase

    def to_dict(self, include_traceback: bool = False) -> dict[str, Any]:
        data = super().to_dict(include_traceback)
        data["phase"] = self.phase
        return data


def error_payload(exc: BaseException, *, development: bool = False) -> dict[str, Any]:
    """Structured failure body; traceback only in development mode."""
    if isinstance(exc, RigError):
        error = exc.to_dict(include_traceback=development)
    else:
        error = {
            "name": type(exc).__name__,
            "message": str(exc) or type(exc).__name__,
            "code": "INTERNAL_ERROR",
            "status_code": 500,
        }
        if development:
            error["traceback"] = "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            )
    return {"success": False, "error": error}


async def with_timeout(awaitable: Awaitable[T], seconds: float, operation: str) -> T:
    """Await ``awaitable``, converting a timeout into DeviceTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, seconds)
    except asyncio.TimeoutError as exc:
        raise DeviceTimeoutError(
            f"{operation} timed out after {int(seconds * 1000)}ms"
        ) from exc


__all__ = [
    "ConfigError",
    "DeviceTimeoutError",
    "NotConnectedError",
    "OrchestrationError",
    "PortIOError",
    "ProtocolError",
    "RecordingError",
    "RigError",
    "ValidationError",
    "error_payload",
    "with_timeout",
]
