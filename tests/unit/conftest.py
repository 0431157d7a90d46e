"""Unit test fixtures for isolated, fast test execution.

Unit tests never touch real serial ports; everything below the transport is
simulated (see tests/infrastructure/mocks). This file adds environment
isolation so config tests do not pick up variables from the developer's
shell.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from xl2_logger.core.config import ENV_KEYS


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every environment variable the config layer reads."""
    for name in ENV_KEYS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path: Path):
    """Write a ``key = value`` config file and return its path.

    Example:
        def test_reads_port(config_file):
            path = config_file("xl2_port = /dev/ttyACM0")
    """
    def _write(text: str, name: str = "config.txt") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write
