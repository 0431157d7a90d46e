"""Reader for ``key = value`` configuration files."""

import asyncio
from pathlib import Path
from typing import Dict, Iterable

import aiofiles

from xl2_logger.core.errors import ConfigError
from xl2_logger.core.logging_utils import get_module_logger

logger = get_module_logger("ConfigManager")


class ConfigManager:
    """Parses flat config files.

    Lines are ``key = value``; ``#`` starts a comment, blank lines are
    ignored and surrounding quotes are stripped from values.
    """

    @staticmethod
    def parse_lines(lines: Iterable[str]) -> Dict[str, str]:
        config: Dict[str, str] = {}

        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue

            key, value = line.split('=', 1)
            key = key.strip()
            value = value.split('#', 1)[0].strip()

            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]

            if key:
                config[key] = value

        return config

    def read_config(self, config_path: Path) -> Dict[str, str]:
        """Read a config file; a missing file yields an empty mapping."""
        if not config_path.exists():
            logger.debug("No config file at %s, using defaults", config_path)
            return {}
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                return self.parse_lines(f)
        except OSError as e:
            raise ConfigError(f"Failed to read config {config_path}: {e}") from e

    async def read_config_async(self, config_path: Path) -> Dict[str, str]:
        if not await asyncio.to_thread(config_path.exists):
            logger.debug("No config file at %s, using defaults", config_path)
            return {}
        try:
            lines: list[str] = []
            async with aiofiles.open(config_path, 'r', encoding='utf-8') as f:
                async for line in f:
                    lines.append(line)
        except OSError as e:
            raise ConfigError(f"Failed to read config {config_path}: {e}") from e
        return self.parse_lines(lines)


__all__ = ["ConfigManager"]
