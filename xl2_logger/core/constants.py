"""Timeouts, intervals and serial settings shared across the rig components."""

from __future__ import annotations

# Timeouts (seconds)
PORT_SCAN_TIMEOUT = 2.0
DEVICE_RESPONSE_TIMEOUT = 3.0
CONNECTION_TIMEOUT = 3.0
PORT_OPEN_TIMEOUT = 2.0
PORT_CLOSE_TIMEOUT = 1.0

# Continuous sampling
CONTINUOUS_FFT_INTERVAL = 1.5
MEASUREMENT_HISTORY_SIZE = 1000
DEFAULT_HISTORY_LIMIT = 100

# Analyzer serial settings
XL2_BAUD_RATE = 115200
XL2_RESPONSE_KEYWORDS = ("NTiAudio", "XL2")
LINE_TERMINATOR = "\r\n"

# GPS serial settings
GPS_BAUD_RATES_UNIX = (4800, 9600)
GPS_BAUD_RATES_WINDOWS = (4800, 9600, 38400, 57600, 115200)
GPS_PREFERRED_BAUD_RATE = 9600
GPS_PARALLEL_BAUD_RATES = 2

# FFT defaults
TARGET_FREQUENCY = 12.5
FREQUENCY_TOLERANCE = 0.1
DEFAULT_FFT_ZOOM = 9
DEFAULT_FFT_START = 12.5

# Classification
CLASSIFICATION_CACHE_TTL = 30.0

# Auto-reconnect
RECONNECT_CHECK_INTERVAL = 15.0
RECONNECT_MAX_ATTEMPTS = 5

# Event fan-out
EVENT_QUEUE_SIZE = 1000

# Analyzer commands
CMD_IDENTIFY = "*IDN?"
CMD_RESET = "*RST"
CMD_FUNC_FFT = "MEAS:FUNC FFT"
CMD_INIT_START = "INIT START"
CMD_INIT_STOP = "INIT STOP"
CMD_FFT_ZOOM = "MEAS:FFT:ZOOM {zoom}"
CMD_FFT_START = "MEAS:FFT:FSTART {frequency}"
CMD_TRIGGER = "MEAS:INIT"
CMD_FREQUENCY_TABLE = "MEAS:FFT:F?"
CMD_SPECTRUM = "MEAS:FFT? LIVE"

# Measurement log
MEASUREMENT_LOG_DIR = "logs"
MEASUREMENT_LOG_FILENAME = "xl2_measurements.csv"
