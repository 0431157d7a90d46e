"""
Host platform detection.

Runs once at startup; the result picks the port-filtering profile used by
device discovery.
"""

import platform
import sys
from dataclasses import dataclass
from typing import Optional

from xl2_logger.core.logging_utils import get_module_logger

logger = get_module_logger("PlatformInfo")

MODEL_PATHS = (
    "/proc/device-tree/model",
    "/sys/firmware/devicetree/base/model",
)


@dataclass(frozen=True)
class PlatformInfo:
    """Immutable platform information detected at boot.

    Attributes:
        platform: ``sys.platform`` value ('linux', 'darwin', 'win32')
        architecture: CPU architecture ('x86_64', 'aarch64', ...)
        is_raspberry_pi: True if the device tree names a Raspberry Pi
        pi_model: Raspberry Pi model string if applicable
    """

    platform: str
    architecture: str
    is_raspberry_pi: bool = False
    pi_model: Optional[str] = None

    @property
    def is_windows(self) -> bool:
        return self.platform.startswith("win")

    def __str__(self) -> str:
        if self.is_raspberry_pi:
            return f"{self.pi_model or 'Raspberry Pi'} ({self.architecture})"
        return f"{self.platform} ({self.architecture})"


def _detect_raspberry_pi(model_paths=MODEL_PATHS) -> tuple[bool, Optional[str]]:
    for path in model_paths:
        try:
            with open(path, "r", encoding="utf-8") as f:
                model = f.read().strip().rstrip("\x00")
        except OSError:
            continue
        if "raspberry pi" in model.lower():
            return True, model
    return False, None


def detect_platform() -> PlatformInfo:
    """Detect the current platform. Call once and pass the result along."""
    is_pi, pi_model = (False, None)
    if sys.platform.startswith("linux"):
        is_pi, pi_model = _detect_raspberry_pi()

    info = PlatformInfo(
        platform=sys.platform,
        architecture=platform.machine(),
        is_raspberry_pi=is_pi,
        pi_model=pi_model,
    )
    logger.info("Platform detected: %s", info)
    return info


__all__ = ["PlatformInfo", "detect_platform"]
