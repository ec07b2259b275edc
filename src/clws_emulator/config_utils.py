"""
Configuration utilities for the emulator

Loads the TOML configuration file, applies defaults for missing keys and
resolves paths with environment variable and user expansion.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import (
    EPM_DEFAULT_PORT,
    GPS_LEAP_SECONDS,
    MAX_OPEN_CACHE_RETRIES,
    RETRY_PAUSE,
)

logger = logging.getLogger(__name__)

SOURCE_RECORDED = 'recorded'
SOURCE_CONSTRUCTED = 'constructed'
SOURCE_MODES = (SOURCE_RECORDED, SOURCE_CONSTRUCTED)


def _expand_path(value: str) -> Path:
    return Path(os.path.expanduser(os.path.expandvars(value)))


@dataclass
class ServerConfig:
    host: str = '0.0.0.0'
    port: int = EPM_DEFAULT_PORT


@dataclass
class SourceConfig:
    mode: str = SOURCE_RECORDED
    capture_file: Path = Path('./GripPacketsForSimulator.gpk')
    loop: bool = True
    seed: Optional[int] = None

    def __post_init__(self):
        if self.mode not in SOURCE_MODES:
            raise ValueError(f"source.mode must be one of {SOURCE_MODES}, got '{self.mode}'")


@dataclass
class CacheConfig:
    root: Path = Path('./cache/GripPackets')
    max_open_retries: int = MAX_OPEN_CACHE_RETRIES
    retry_pause_sec: float = RETRY_PAUSE

    def __post_init__(self):
        if self.max_open_retries < 1:
            raise ValueError("cache.max_open_retries must be at least 1")


@dataclass
class EmulatorConfig:
    """Complete emulator configuration"""
    server: ServerConfig = field(default_factory=ServerConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    leap_seconds: int = GPS_LEAP_SECONDS
    log_level: str = 'INFO'

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'EmulatorConfig':
        """
        Build configuration from a parsed TOML dictionary

        Args:
            config: Parsed TOML configuration (missing sections use defaults)
        """
        server = config.get('server', {})
        source = config.get('source', {})
        cache = config.get('cache', {})

        defaults_source = SourceConfig()
        defaults_cache = CacheConfig()

        return cls(
            server=ServerConfig(
                host=server.get('host', ServerConfig.host),
                port=int(server.get('port', ServerConfig.port)),
            ),
            source=SourceConfig(
                mode=source.get('mode', SOURCE_RECORDED).lower(),
                capture_file=_expand_path(str(source.get('capture_file', defaults_source.capture_file))),
                loop=bool(source.get('loop', True)),
                seed=source.get('seed'),
            ),
            cache=CacheConfig(
                root=_expand_path(str(cache.get('root', defaults_cache.root))),
                max_open_retries=int(cache.get('max_open_retries', MAX_OPEN_CACHE_RETRIES)),
                retry_pause_sec=float(cache.get('retry_pause_sec', RETRY_PAUSE)),
            ),
            leap_seconds=int(config.get('time', {}).get('leap_seconds', GPS_LEAP_SECONDS)),
            log_level=str(config.get('logging', {}).get('level', 'INFO')).upper(),
        )


def load_config(config_file: Optional[Path] = None) -> EmulatorConfig:
    """
    Load configuration from a TOML file

    Args:
        config_file: Path to TOML configuration file, or None for defaults

    Returns:
        EmulatorConfig

    Raises:
        FileNotFoundError: If config_file does not exist
        ValueError: If a value is invalid
    """
    import toml

    if config_file is None:
        logger.info("No configuration file given, using defaults")
        return EmulatorConfig()

    with open(config_file, 'r') as f:
        config = toml.load(f)

    logger.info(f"Loaded configuration from {config_file}")
    return EmulatorConfig.from_dict(config)
