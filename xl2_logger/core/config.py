"""Typed application configuration.

Values are layered, later sources winning:

    defaults -> config file (key = value) -> environment -> CLI arguments
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from xl2_logger.core.config_manager import ConfigManager
from xl2_logger.core.constants import (
    CLASSIFICATION_CACHE_TTL,
    CONTINUOUS_FFT_INTERVAL,
    DEFAULT_FFT_START,
    DEFAULT_FFT_ZOOM,
    FREQUENCY_TOLERANCE,
    MEASUREMENT_HISTORY_SIZE,
    MEASUREMENT_LOG_DIR,
    RECONNECT_CHECK_INTERVAL,
    RECONNECT_MAX_ATTEMPTS,
    TARGET_FREQUENCY,
    XL2_BAUD_RATE,
)
from xl2_logger.core.errors import ConfigError, ValidationError
from xl2_logger.core.logging_utils import get_module_logger
from xl2_logger.core.validation import validate_frequency, validate_port_path, validate_zoom

logger = get_module_logger("Config")

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _positive_int(value: Any) -> int:
    number = int(value)
    if number < 1:
        raise ValueError(f"must be >= 1, got {number}")
    return number


def _positive_float(value: Any) -> float:
    number = float(value)
    if number <= 0:
        raise ValueError(f"must be > 0, got {number}")
    return number


def _optional_port(value: Any) -> Optional[str]:
    text = str(value).strip() if value is not None else ""
    return validate_port_path(text) if text else None


def _optional_path(value: Any) -> Optional[Path]:
    text = str(value).strip() if value is not None else ""
    return Path(text) if text else None


def _log_level(value: Any) -> str:
    level = str(value).strip().lower()
    if level not in {"debug", "info", "warning", "error", "critical"}:
        raise ValueError(f"unknown log level {value!r}")
    return level


@dataclass(slots=True)
class AnalyzerConfig:
    """XL2 connection and FFT acquisition settings."""

    port: Optional[str] = None
    auto_detect: bool = True
    baud_rate: int = XL2_BAUD_RATE
    history_size: int = MEASUREMENT_HISTORY_SIZE
    fft_zoom: int = DEFAULT_FFT_ZOOM
    fft_start_hz: float = DEFAULT_FFT_START
    target_frequency_hz: float = TARGET_FREQUENCY
    frequency_tolerance_hz: float = FREQUENCY_TOLERANCE
    sampling_interval_s: float = CONTINUOUS_FFT_INTERVAL


@dataclass(slots=True)
class GpsConfig:
    port: Optional[str] = None
    auto_connect: bool = True


@dataclass(slots=True)
class DiscoveryConfig:
    cache_ttl_s: float = CLASSIFICATION_CACHE_TTL
    auto_reconnect: bool = True
    reconnect_interval_s: float = RECONNECT_CHECK_INTERVAL
    reconnect_max_attempts: int = RECONNECT_MAX_ATTEMPTS


@dataclass(slots=True)
class RecordingConfig:
    """Position-tagged measurement log."""

    enabled: bool = False
    log_dir: Path = Path(MEASUREMENT_LOG_DIR)


def _log_dir(value: Any) -> Path:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValueError("empty directory")
    return Path(text)


# key -> (section or None for top level, attribute, converter)
_KEYS: dict[str, tuple[Optional[str], str, Callable[[Any], Any]]] = {
    "log_level": (None, "log_level", _log_level),
    "log_file": (None, "log_file", _optional_path),
    "environment": (None, "environment", lambda v: str(v).strip().lower()),
    "xl2_port": ("analyzer", "port", _optional_port),
    "xl2_auto_detect": ("analyzer", "auto_detect", _to_bool),
    "xl2_baud_rate": ("analyzer", "baud_rate", _positive_int),
    "history_size": ("analyzer", "history_size", _positive_int),
    "fft_zoom": ("analyzer", "fft_zoom", validate_zoom),
    "fft_start_hz": ("analyzer", "fft_start_hz", validate_frequency),
    "target_frequency_hz": ("analyzer", "target_frequency_hz", validate_frequency),
    "frequency_tolerance_hz": ("analyzer", "frequency_tolerance_hz", _positive_float),
    "sampling_interval_s": ("analyzer", "sampling_interval_s", _positive_float),
    "gps_port": ("gps", "port", _optional_port),
    "gps_auto_connect": ("gps", "auto_connect", _to_bool),
    "cache_ttl_s": ("discovery", "cache_ttl_s", _positive_float),
    "auto_reconnect": ("discovery", "auto_reconnect", _to_bool),
    "reconnect_interval_s": ("discovery", "reconnect_interval_s", _positive_float),
    "reconnect_max_attempts": ("discovery", "reconnect_max_attempts", _positive_int),
    "log_measurements": ("recording", "enabled", _to_bool),
    "measurement_log_dir": ("recording", "log_dir", _log_dir),
}

# environment variable -> (config key, value transform)
ENV_KEYS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "XL2_SERIAL_PORT": ("xl2_port", str),
    "XL2_AUTO_DETECT": ("xl2_auto_detect", str),
    "GPS_SERIAL_PORT": ("gps_port", str),
    "GPS_AUTO_CONNECT": ("gps_auto_connect", str),
    "MEASUREMENT_HISTORY_SIZE": ("history_size", str),
    "DISABLE_AUTO_RECONNECT": ("auto_reconnect", lambda v: not _to_bool(v)),
    "APP_ENV": ("environment", str),
    "LOG_LEVEL": ("log_level", str),
    "LOG_MEASUREMENTS": ("log_measurements", str),
    "MEASUREMENT_LOG_DIR": ("measurement_log_dir", str),
}

# argparse attribute -> config key
ARG_KEYS = {
    "log_level": "log_level",
    "log_file": "log_file",
    "xl2_port": "xl2_port",
    "gps_port": "gps_port",
    "measurement_log_dir": "measurement_log_dir",
}


@dataclass(slots=True)
class AppConfig:
    """Typed configuration for the whole process."""

    log_level: str = "info"
    log_file: Optional[Path] = None
    environment: str = "production"
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    gps: GpsConfig = field(default_factory=GpsConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def set(self, key: str, value: Any) -> None:
        """Set one flat config key, converting and validating ``value``."""
        try:
            section, attribute, convert = _KEYS[key]
        except KeyError:
            raise ConfigError(f"Unknown config key '{key}'") from None
        try:
            converted = convert(value)
        except (ValueError, TypeError, ValidationError) as exc:
            raise ConfigError(f"Invalid value for '{key}': {exc}") from exc
        target = self if section is None else getattr(self, section)
        setattr(target, attribute, converted)

    def update(self, values: Mapping[str, Any], *, source: str = "config") -> "AppConfig":
        for key, value in values.items():
            if key not in _KEYS:
                logger.warning("Ignoring unknown %s key '%s'", source, key)
                continue
            self.set(key, value)
        return self

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        environ = os.environ if environ is None else environ
        for env_name, (key, transform) in ENV_KEYS.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                value = transform(raw)
            except ValueError as exc:
                raise ConfigError(f"Invalid value for {env_name}: {exc}") from exc
            self.set(key, value)
        return self

    def _apply_args_override(self, args: Any) -> "AppConfig":
        for arg_name, key in ARG_KEYS.items():
            value = getattr(args, arg_name, None)
            if value is not None:
                self.set(key, value)
        if getattr(args, "no_auto_reconnect", False):
            self.discovery.auto_reconnect = False
        if getattr(args, "log_measurements", False):
            self.recording.enabled = True
        if getattr(args, "dev", False):
            self.environment = "development"
        return self

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "AppConfig":
        return cls().update(values)

    @classmethod
    async def load(
        cls,
        config_path: Optional[Path] = None,
        args: Any = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "AppConfig":
        """Build the config from every source."""
        config = cls()
        if config_path is not None:
            config.update(await ConfigManager().read_config_async(config_path))
        config.apply_env(environ)
        if args is not None:
            config._apply_args_override(args)
        return config

    def to_dict(self) -> dict[str, Any]:
        """Export config values as dictionary."""
        return asdict(self)


__all__ = [
    "AnalyzerConfig",
    "AppConfig",
    "DiscoveryConfig",
    "GpsConfig",
    "RecordingConfig",
]
