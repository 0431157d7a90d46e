"""Value types shared by enumeration, classification and orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class DeviceRole(str, Enum):
    """Role a serial port plays on the rig."""
    XL2 = "xl2"
    GPS = "gps"
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        return self.value.upper()


# Roles the rig actually connects to, in connection order.
ACTIVE_ROLES = (DeviceRole.XL2, DeviceRole.GPS)


@dataclass(frozen=True)
class PortDescriptor:
    """
    Snapshot of one serial port taken at enumeration time.

    Attributes:
        path: OS path or name (``/dev/ttyACM0``, ``COM3``)
        manufacturer: USB manufacturer string, if reported
        vendor_id: USB vendor id as 4-digit lowercase hex
        product_id: USB product id as 4-digit lowercase hex
    """
    path: str
    manufacturer: Optional[str] = None
    vendor_id: Optional[str] = None
    product_id: Optional[str] = None

    @property
    def cache_key(self) -> tuple[str, Optional[str], Optional[str]]:
        return (self.path, self.vendor_id, self.product_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "manufacturer": self.manufacturer,
            "vendor_id": self.vendor_id,
            "product_id": self.product_id,
        }


@dataclass(frozen=True)
class HardwareGuess:
    role: DeviceRole
    confidence: int
    reason: str


@dataclass(frozen=True)
class DeviceCandidate:
    """A port suspected of hosting ``role`` with ``confidence`` in 0-100."""
    port: PortDescriptor
    role: DeviceRole
    confidence: int = 0
    response: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", max(0, min(100, int(self.confidence))))

    @property
    def path(self) -> str:
        return self.port.path

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.port.to_dict(),
            "role": self.role.value,
            "confidence": self.confidence,
            "response": self.response,
            "error": self.error,
        }


@dataclass(frozen=True)
class ScanSummary:
    total_ports: int = 0
    xl2_count: int = 0
    gps_count: int = 0
    unknown_count: int = 0
    best_xl2: Optional[DeviceCandidate] = None
    best_gps: Optional[DeviceCandidate] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_ports": self.total_ports,
            "xl2_count": self.xl2_count,
            "gps_count": self.gps_count,
            "unknown_count": self.unknown_count,
            "best_xl2": self.best_xl2.to_dict() if self.best_xl2 else None,
            "best_gps": self.best_gps.to_dict() if self.best_gps else None,
        }


@dataclass(frozen=True)
class ScanResult:
    """
    Outcome of one classification pass.

    Attributes:
        by_role: Candidates per role, confidence descending
        summary: Aggregate counts and best candidates
        candidates: Every classified port, in input order
    """
    by_role: dict[DeviceRole, tuple[DeviceCandidate, ...]] = field(default_factory=dict)
    summary: ScanSummary = field(default_factory=ScanSummary)
    candidates: tuple[DeviceCandidate, ...] = ()

    @classmethod
    def from_candidates(cls, candidates: list[DeviceCandidate] | tuple[DeviceCandidate, ...]) -> "ScanResult":
        by_role: dict[DeviceRole, tuple[DeviceCandidate, ...]] = {}
        for role in DeviceRole:
            matching = [c for c in candidates if c.role is role]
            # sorted() is stable, equal confidences keep probe order
            by_role[role] = tuple(sorted(matching, key=lambda c: c.confidence, reverse=True))

        def _best(role: DeviceRole) -> Optional[DeviceCandidate]:
            ranked = by_role[role]
            return ranked[0] if ranked else None

        summary = ScanSummary(
            total_ports=len(candidates),
            xl2_count=len(by_role[DeviceRole.XL2]),
            gps_count=len(by_role[DeviceRole.GPS]),
            unknown_count=len(by_role[DeviceRole.UNKNOWN]),
            best_xl2=_best(DeviceRole.XL2),
            best_gps=_best(DeviceRole.GPS),
        )
        return cls(by_role=by_role, summary=summary, candidates=tuple(candidates))

    def best(self, role: DeviceRole) -> Optional[DeviceCandidate]:
        ranked = self.by_role.get(role, ())
        return ranked[0] if ranked else None

    def for_role(self, role: DeviceRole) -> tuple[DeviceCandidate, ...]:
        return self.by_role.get(role, ())


__all__ = [
    "ACTIVE_ROLES",
    "DeviceCandidate",
    "DeviceRole",
    "HardwareGuess",
    "PortDescriptor",
    "ScanResult",
    "ScanSummary",
]
