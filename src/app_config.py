"""
Application configuration loaded from config.ini.

All settings have defaults, so the application runs without a config file.
Example config.ini:

    [Database]
    Path = ~/.resi_checker/orders.db
    ConnectionTimeout = 5

    [History]
    RetentionDays = 7
    DefaultDaysBack = 7

    [Scanner]
    DebounceMs = 500
    SoundEnabled = true
"""

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from exceptions import ConfigError
from logger import get_logger

logger = get_logger(__name__)

DEFAULT_DB_PATH = Path(os.path.expanduser("~")) / ".resi_checker" / "orders.db"
DEFAULT_RETENTION_DAYS = 7
DEFAULT_DAYS_BACK = 7
DEFAULT_DEBOUNCE_MS = 500
DEFAULT_CONNECTION_TIMEOUT = 5


@dataclass
class AppConfig:
    """
    Resolved application settings.

    Attributes:
        db_path: SQLite database file holding the orders table
        connection_timeout: Seconds to wait for a locked database
        retention_days: Archived orders older than this are purged at startup
        default_days_back: Default window for the history listing
        scan_debounce_ms: Identical scans within this window are ignored
        sound_enabled: Whether the scan station plays feedback sounds
    """
    db_path: Path = DEFAULT_DB_PATH
    connection_timeout: float = DEFAULT_CONNECTION_TIMEOUT
    retention_days: int = DEFAULT_RETENTION_DAYS
    default_days_back: int = DEFAULT_DAYS_BACK
    scan_debounce_ms: int = DEFAULT_DEBOUNCE_MS
    sound_enabled: bool = True


def _get_non_negative_int(config: configparser.ConfigParser, section: str,
                          option: str, fallback: int) -> int:
    try:
        value = config.getint(section, option, fallback=fallback)
    except ValueError as e:
        raise ConfigError(f"[{section}] {option} must be an integer: {e}")
    if value < 0:
        raise ConfigError(f"[{section}] {option} must not be negative, got {value}")
    return value


def load_config(config_path: Union[str, Path, None] = "config.ini") -> AppConfig:
    """
    Load settings from config.ini.

    A missing file or missing keys fall back to defaults.

    Args:
        config_path: Path to the ini file, None to use only defaults

    Returns:
        AppConfig with every field resolved

    Raises:
        ConfigError: If a numeric or boolean value cannot be parsed, or a
                     numeric value is negative
    """
    config = configparser.ConfigParser()

    if config_path is not None and Path(config_path).exists():
        config.read(config_path, encoding='utf-8')
        logger.debug(f"Loaded configuration from {config_path}")
    else:
        logger.debug("No config.ini found, using defaults")

    db_path = Path(os.path.expanduser(
        config.get('Database', 'Path', fallback=str(DEFAULT_DB_PATH))
    ))

    try:
        sound_enabled = config.getboolean('Scanner', 'SoundEnabled', fallback=True)
    except ValueError as e:
        raise ConfigError(f"[Scanner] SoundEnabled must be true/false: {e}")

    return AppConfig(
        db_path=db_path,
        connection_timeout=_get_non_negative_int(
            config, 'Database', 'ConnectionTimeout', DEFAULT_CONNECTION_TIMEOUT),
        retention_days=_get_non_negative_int(
            config, 'History', 'RetentionDays', DEFAULT_RETENTION_DAYS),
        default_days_back=_get_non_negative_int(
            config, 'History', 'DefaultDaysBack', DEFAULT_DAYS_BACK),
        scan_debounce_ms=_get_non_negative_int(
            config, 'Scanner', 'DebounceMs', DEFAULT_DEBOUNCE_MS),
        sound_enabled=sound_enabled,
    )


def get_db_path(config: Optional[AppConfig] = None) -> Path:
    """Return the database path, creating its directory if needed."""
    path = (config or AppConfig()).db_path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path
