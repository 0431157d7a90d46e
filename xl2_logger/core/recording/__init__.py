"""GPS position tracking and the position-tagged measurement log."""

from .measurement_log import MeasurementLogger
from .position import GpsPosition, PositionTracker

__all__ = ["GpsPosition", "MeasurementLogger", "PositionTracker"]
