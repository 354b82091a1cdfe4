r"""
Centralized logging configuration for Resi Checker.

This module provides the logging system shared by every module:
- Structured JSON logging for easy parsing and analysis
- Automatic file rotation (prevents log files from growing indefinitely)
- Configurable log levels (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- Automatic cleanup of old logs (retention policy)
- Both file and console output
- Context-aware logging (station_id, import_batch_id)

Log file location: LogDir from config.ini, default ~/.resi_checker/logs
Log file format: YYYY-MM-DD.log

Example log entry (JSON format):
    {"timestamp": "2025-11-05T14:30:45.123", "level": "INFO", "tool": "resi_checker",
     "station_id": "PACK-1", "import_batch_id": null, "module": "order_store",
     "function": "mark_scanned", "line": 310, "message": "Order scanned: JX123"}
"""

import logging
import json
import os
from datetime import datetime, timedelta
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any
import configparser
from contextvars import ContextVar


# Context variables for structured logging
_station_id: ContextVar[Optional[str]] = ContextVar('station_id', default=None)
_import_batch_id: ContextVar[Optional[str]] = ContextVar('import_batch_id', default=None)

DEFAULT_LOG_DIR = Path(os.path.expanduser("~")) / ".resi_checker" / "logs"


class StructuredJSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Outputs log records as JSON with fields:
    - timestamp: ISO 8601 format with milliseconds
    - level: Log level
    - tool: Always "resi_checker"
    - station_id: Current scan station context (if set)
    - import_batch_id: Current import batch context (if set)
    - module, function, line: Origin of the record
    - message: Log message
    - exc_info: Exception information (if present)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'tool': 'resi_checker',
            'station_id': _station_id.get(),
            'import_batch_id': _import_batch_id.get(),
            'module': record.name,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_data['exc_info'] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_data['extra'] = record.extra_data

        return json.dumps(log_data, ensure_ascii=False)


class AppLogger:
    """
    Centralized application logger with file rotation and cleanup.

    Logging is configured once, on the first get_logger() call, from the
    [Logging] section of config.ini:
    - LogLevel: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - LogDir: Directory for daily log files
    - MaxLogSizeMB: Maximum size per log file before rotation
    - LogRetentionDays: How many days of logs to keep
    """

    _initialized: bool = False

    @classmethod
    def get_logger(cls, name: str = 'ResiChecker') -> logging.Logger:
        """
        Get or create application logger with lazy initialization.

        Usage in modules:
            from logger import get_logger
            logger = get_logger(__name__)
            logger.info("Starting operation")

        Args:
            name: Logger name, typically the module name (__name__)

        Returns:
            Configured logger instance for the specified name
        """
        if not cls._initialized:
            cls._setup_logging()
            cls._initialized = True

        return logging.getLogger(name)

    @classmethod
    def _setup_logging(cls):
        """
        Setup logging configuration from config.ini.

        Configures the log directory, level, JSON file handler with rotation,
        console handler, and removes logs older than the retention period.
        Falls back to ~/.resi_checker/logs when the configured directory
        cannot be created.
        """
        config = cls._load_config()

        log_dir = Path(os.path.expanduser(
            config.get('Logging', 'LogDir', fallback=str(DEFAULT_LOG_DIR))
        ))

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log_dir = DEFAULT_LOG_DIR
            log_dir.mkdir(parents=True, exist_ok=True)
            print(f"Warning: Could not create configured log directory. Using: {log_dir}. Error: {e}")

        log_file = log_dir / f"{datetime.now():%Y-%m-%d}.log"

        log_level_str = config.get('Logging', 'LogLevel', fallback='INFO')
        log_level = getattr(logging, log_level_str.upper(), logging.INFO)

        max_log_size = config.getint('Logging', 'MaxLogSizeMB', fallback=10) * 1024 * 1024

        json_formatter = StructuredJSONFormatter()

        # Format: timestamp | module | level | function:line | message
        console_formatter = logging.Formatter(
            fmt='%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=30,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(json_formatter)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(console_formatter)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

        retention_days = config.getint('Logging', 'LogRetentionDays', fallback=30)
        cls._cleanup_old_logs(log_dir, retention_days)

        logger = logging.getLogger('ResiChecker')
        logger.info("=" * 80)
        logger.info("Resi Checker Started")
        logger.info(f"Log Level: {log_level_str}")
        logger.info(f"Log File: {log_file}")
        logger.info("=" * 80)

    @staticmethod
    def _load_config() -> configparser.ConfigParser:
        """
        Load configuration from config.ini in the working directory.

        Returns an empty ConfigParser if the file does not exist, in which case
        every setting uses its fallback.
        """
        config = configparser.ConfigParser()
        config_path = Path('config.ini')

        if config_path.exists():
            config.read(config_path, encoding='utf-8')

        return config

    @staticmethod
    def _cleanup_old_logs(log_dir: Path, retention_days: int):
        """
        Delete log files older than the retention period.

        Args:
            log_dir: Directory containing log files
            retention_days: Number of days to keep logs, 0 or negative disables cleanup
        """
        if retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=retention_days)

        try:
            for log_file in log_dir.glob("*.log*"):
                file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)
                if file_mtime < cutoff_date:
                    log_file.unlink()
                    logging.getLogger('ResiChecker').debug(f"Deleted old log: {log_file.name}")

        except OSError as e:
            # Non-fatal: a log file held open by another process must not stop startup
            logging.getLogger('ResiChecker').warning(f"Failed to cleanup old logs: {e}")


def get_logger(name: str = 'ResiChecker') -> logging.Logger:
    """
    Get application logger.

    Example:
        >>> from logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Starting import")
    """
    return AppLogger.get_logger(name)


def set_station_context(station_id: Optional[str]) -> None:
    """
    Set the scan station identifier included in subsequent log entries.

    Example:
        >>> set_station_context("PACK-1")
        >>> logger.info("Scan received")  # Will include station_id="PACK-1"
    """
    _station_id.set(station_id)


def set_import_batch_context(import_batch_id: Optional[str]) -> None:
    """Set the import batch identifier included in subsequent log entries."""
    _import_batch_id.set(import_batch_id)


def clear_logging_context() -> None:
    """Clear all logging context (station_id, import_batch_id)."""
    _station_id.set(None)
    _import_batch_id.set(None)
