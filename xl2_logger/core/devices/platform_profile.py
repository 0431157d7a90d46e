"""
Platform profiles - which ports are worth probing, and how.

One profile is selected at startup and passed to the classifier, so no
platform checks happen inside the scan itself.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from xl2_logger.core.constants import (
    GPS_BAUD_RATES_UNIX,
    GPS_BAUD_RATES_WINDOWS,
    XL2_BAUD_RATE,
)
from xl2_logger.core.logging_utils import get_module_logger
from xl2_logger.core.platform_info import PlatformInfo, detect_platform
from .types import DeviceRole, PortDescriptor

logger = get_module_logger("PlatformProfile")


@dataclass(frozen=True)
class RoleIdentifiers:
    """USB signatures that hint at a role. Matching is case-insensitive."""
    manufacturers: tuple[str, ...] = ()
    vendor_ids: tuple[str, ...] = ()
    product_ids: tuple[str, ...] = ()

    def matches(self, port: PortDescriptor) -> bool:
        manufacturer = (port.manufacturer or "").lower()
        vendor_id = (port.vendor_id or "").lower()
        product_id = (port.product_id or "").lower()
        return (
            any(m in manufacturer for m in self.manufacturers)
            or vendor_id in self.vendor_ids
            or any(p in product_id for p in self.product_ids)
        )


@dataclass(frozen=True)
class PlatformProfile:
    """
    Port filtering rules and serial settings for one platform.

    Attributes:
        name: Profile name for logs
        port_pattern: Regex every candidate path must match, if set
        path_keywords: Path substrings that mark a port as a candidate
        identifiers: Per-role USB signatures that mark a port as a candidate
        preferred_paths: Per-role paths always considered candidates
        permissive: Probe every pattern-matching port when nothing matched
        gps_baud_rates: Baud rates tried when probing for GPS
        analyzer_baud_rate: Baud rate of the XL2
    """
    name: str
    port_pattern: Optional[str] = None
    path_keywords: tuple[str, ...] = ()
    identifiers: dict[DeviceRole, RoleIdentifiers] = field(default_factory=dict)
    preferred_paths: dict[DeviceRole, tuple[str, ...]] = field(default_factory=dict)
    permissive: bool = False
    gps_baud_rates: tuple[int, ...] = GPS_BAUD_RATES_UNIX
    analyzer_baud_rate: int = XL2_BAUD_RATE

    def _pattern_ok(self, port: PortDescriptor) -> bool:
        if self.port_pattern is None:
            return True
        return re.match(self.port_pattern, port.path, re.IGNORECASE) is not None

    def is_candidate(self, port: PortDescriptor) -> bool:
        if not self._pattern_ok(port):
            return False
        if any(port.path in paths for paths in self.preferred_paths.values()):
            return True
        path = port.path.lower()
        if any(keyword in path for keyword in self.path_keywords):
            return True
        return any(ids.matches(port) for ids in self.identifiers.values())

    def shortlist(self, ports: Iterable[PortDescriptor]) -> list[PortDescriptor]:
        ports = list(ports)
        selected = [port for port in ports if self.is_candidate(port)]
        if not selected and self.permissive:
            selected = [port for port in ports if self._pattern_ok(port)]
            if selected:
                logger.debug("%s: no signature matched, probing all %d ports", self.name, len(selected))
        return selected

    def preferred_for(self, role: DeviceRole) -> tuple[str, ...]:
        return self.preferred_paths.get(role, ())


UNIX_IDENTIFIERS = {
    DeviceRole.XL2: RoleIdentifiers(manufacturers=("nti", "xl2"), product_ids=("0004",)),
    DeviceRole.GPS: RoleIdentifiers(
        manufacturers=("ch340", "ch341", "prolific", "ftdi"),
        product_ids=("ch340", "ch341"),
    ),
}

UNIX_PROFILE = PlatformProfile(
    name="unix",
    path_keywords=("ttyusb", "ttyacm", "xl2", "gps"),
    identifiers=UNIX_IDENTIFIERS,
)

RASPBERRY_PI_PROFILE = PlatformProfile(
    name="raspberry_pi",
    path_keywords=UNIX_PROFILE.path_keywords,
    identifiers=UNIX_IDENTIFIERS,
    preferred_paths={
        DeviceRole.XL2: ("/dev/ttyACM0",),
        DeviceRole.GPS: ("/dev/ttyACM1",),
    },
)

WINDOWS_PROFILE = PlatformProfile(
    name="windows",
    port_pattern=r"^COM\d+$",
    identifiers={
        DeviceRole.XL2: RoleIdentifiers(
            manufacturers=("nti", "xl2", "nti audio", "usb serial", "ftdi", "prolific",
                           "silicon labs", "ch340", "ch341"),
            vendor_ids=("0403", "067b", "10c4", "1a86"),
            product_ids=("0004", "6001", "6015", "ea60", "7523"),
        ),
        DeviceRole.GPS: RoleIdentifiers(
            manufacturers=("ch340", "ch341", "prolific", "ftdi", "silicon labs",
                           "usb serial", "gps", "u-blox", "mediatek"),
            vendor_ids=("1a86", "067b", "0403", "10c4"),
            product_ids=("7523", "2303", "6001", "ea60"),
        ),
    },
    permissive=True,
    gps_baud_rates=GPS_BAUD_RATES_WINDOWS,
)


def select_profile(platform_info: Optional[PlatformInfo] = None) -> PlatformProfile:
    """Pick the profile for this host. Call once at startup."""
    info = platform_info or detect_platform()
    if info.is_windows:
        profile = WINDOWS_PROFILE
    elif info.is_raspberry_pi:
        profile = RASPBERRY_PI_PROFILE
    else:
        profile = UNIX_PROFILE
    logger.info("Using %s port profile", profile.name)
    return profile


__all__ = [
    "PlatformProfile",
    "RASPBERRY_PI_PROFILE",
    "RoleIdentifiers",
    "UNIX_PROFILE",
    "WINDOWS_PROFILE",
    "select_profile",
]
