"""Shared pytest configuration and fixtures for the XL2 Logger test suite."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "hardware: mark test as requiring a physical XL2 or GPS receiver"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Run tests that require physical hardware",
    )


def pytest_collection_modifyitems(config, items):
    """Skip hardware tests unless --run-hardware is specified."""
    if config.getoption("--run-hardware"):
        return

    skip_hardware = pytest.mark.skip(reason="Need --run-hardware option to run")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def serial_bus():
    """Transport factory backed by simulated devices."""
    from tests.infrastructure.mocks.serial_mocks import FakeSerialBus
    return FakeSerialBus()


@pytest.fixture
def event_sink():
    """Sink that records every emitted event."""
    from tests.infrastructure.mocks.event_mocks import RecordingEventSink
    return RecordingEventSink()


@pytest.fixture
def fast_timing():
    """Analyzer settle delays switched off."""
    from xl2_logger.core.connection.analyzer_session import SessionTiming
    return SessionTiming.immediate()
