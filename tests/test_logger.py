"""
Unit tests for centralized logging system.

Tests cover:
- Structured JSON logging format
- Context variables (station_id, import_batch_id)
- Log directory and daily file creation from the [Logging] config section
- Cleanup of old log files
"""

import configparser
import json
import logging
import os
import shutil
import sys
import tempfile
import time
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from logger import (
    AppLogger,
    StructuredJSONFormatter,
    clear_logging_context,
    get_logger,
    set_import_batch_context,
    set_station_context,
)


def make_record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="TestLogger",
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
        func="test_function"
    )


def make_config(log_dir, level='INFO', retention_days=None):
    config = configparser.ConfigParser()
    config.add_section('Logging')
    config.set('Logging', 'LogDir', str(log_dir))
    config.set('Logging', 'LogLevel', level)
    if retention_days is not None:
        config.set('Logging', 'LogRetentionDays', str(retention_days))
    return config


def close_root_handlers():
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)


@pytest.fixture
def temp_dir_with_cleanup():
    """Create temp directory with proper cleanup of file handlers."""
    temp_dir = tempfile.mkdtemp()

    yield temp_dir

    close_root_handlers()
    try:
        shutil.rmtree(temp_dir)
    except PermissionError:
        time.sleep(0.1)
        shutil.rmtree(temp_dir, ignore_errors=True)


class TestStructuredJSONFormatter:
    """Test the JSON formatter for structured logging."""

    def test_basic_json_format(self):
        formatter = StructuredJSONFormatter()

        log_data = json.loads(formatter.format(make_record()))

        assert log_data["level"] == "INFO"
        assert log_data["tool"] == "resi_checker"
        assert log_data["module"] == "TestLogger"
        assert log_data["function"] == "test_function"
        assert log_data["line"] == 42
        assert log_data["message"] == "Test message"
        assert log_data["station_id"] is None
        assert log_data["import_batch_id"] is None
        datetime.fromisoformat(log_data["timestamp"])

    def test_json_format_with_context(self):
        formatter = StructuredJSONFormatter()
        set_station_context("PACK-1")
        set_import_batch_context("a1b2c3")

        try:
            log_data = json.loads(formatter.format(make_record("Scan received")))
        finally:
            clear_logging_context()

        assert log_data["station_id"] == "PACK-1"
        assert log_data["import_batch_id"] == "a1b2c3"

    def test_json_format_with_exception(self):
        formatter = StructuredJSONFormatter()

        try:
            raise ValueError("database is locked")
        except ValueError:
            exc_info = sys.exc_info()

        log_data = json.loads(formatter.format(make_record("Error", logging.ERROR, exc_info)))

        assert "ValueError" in log_data["exc_info"]
        assert "database is locked" in log_data["exc_info"]

    def test_json_format_keeps_non_ascii(self):
        formatter = StructuredJSONFormatter()
        result = formatter.format(make_record("Penerima: Budi Śantoso"))
        assert "Budi Śantoso" in result


class TestContextVariables:

    def test_set_station_context(self):
        from logger import _station_id
        set_station_context("PACK-1")
        assert _station_id.get() == "PACK-1"
        set_station_context(None)
        assert _station_id.get() is None

    def test_clear_logging_context(self):
        from logger import _import_batch_id, _station_id
        set_station_context("PACK-1")
        set_import_batch_context("a1b2c3")

        clear_logging_context()

        assert _station_id.get() is None
        assert _import_batch_id.get() is None


class TestAppLogger:
    """Test AppLogger class and logging setup."""

    @pytest.fixture(autouse=True)
    def reset_logger(self):
        """Reset logger state around each test."""
        close_root_handlers()
        AppLogger._initialized = False
        yield
        close_root_handlers()
        AppLogger._initialized = False

    def test_get_logger_returns_named_logger(self, temp_dir_with_cleanup):
        with patch('logger.AppLogger._load_config') as mock_config:
            mock_config.return_value = make_config(temp_dir_with_cleanup)

            logger = get_logger("order_store")

            assert isinstance(logger, logging.Logger)
            assert logger.name == "order_store"
            assert AppLogger._initialized

    def test_logger_creates_daily_log_file(self, temp_dir_with_cleanup):
        log_dir = Path(temp_dir_with_cleanup) / "logs"
        with patch('logger.AppLogger._load_config') as mock_config:
            mock_config.return_value = make_config(log_dir)

            get_logger("Test").info("Test message")
            close_root_handlers()

            assert log_dir.is_dir()
            assert (log_dir / f"{datetime.now():%Y-%m-%d}.log").exists()

    def test_logger_writes_json_format(self, temp_dir_with_cleanup):
        with patch('logger.AppLogger._load_config') as mock_config:
            mock_config.return_value = make_config(temp_dir_with_cleanup)

            logger = get_logger("Test")
            set_station_context("PACK-2")
            try:
                logger.info("JSON test message")
            finally:
                clear_logging_context()
            close_root_handlers()

            log_file = Path(temp_dir_with_cleanup) / f"{datetime.now():%Y-%m-%d}.log"
            with open(log_file, 'r', encoding='utf-8') as f:
                lines = f.readlines()

            log_data = json.loads(lines[-1])
            assert log_data["message"] == "JSON test message"
            assert log_data["station_id"] == "PACK-2"
            assert log_data["tool"] == "resi_checker"

    def test_log_level_from_config(self, temp_dir_with_cleanup):
        with patch('logger.AppLogger._load_config') as mock_config:
            mock_config.return_value = make_config(temp_dir_with_cleanup, level='WARNING')

            get_logger("Test")

            assert logging.getLogger().level == logging.WARNING

    def test_setup_runs_once(self, temp_dir_with_cleanup):
        with patch('logger.AppLogger._load_config') as mock_config:
            mock_config.return_value = make_config(temp_dir_with_cleanup)

            get_logger("A")
            get_logger("B")

            assert mock_config.call_count == 1


class TestLogCleanup:

    def test_cleanup_removes_old_logs(self, temp_dir_with_cleanup):
        log_dir = Path(temp_dir_with_cleanup)
        old_log = log_dir / "2020-01-01.log"
        new_log = log_dir / "today.log"
        old_log.write_text("old")
        new_log.write_text("new")
        old_time = (datetime.now() - timedelta(days=40)).timestamp()
        os.utime(old_log, (old_time, old_time))

        AppLogger._cleanup_old_logs(log_dir, retention_days=30)

        assert not old_log.exists()
        assert new_log.exists()

    def test_cleanup_disabled_with_zero_retention(self, temp_dir_with_cleanup):
        log_dir = Path(temp_dir_with_cleanup)
        old_log = log_dir / "2020-01-01.log"
        old_log.write_text("old")
        old_time = (datetime.now() - timedelta(days=400)).timestamp()
        os.utime(old_log, (old_time, old_time))

        AppLogger._cleanup_old_logs(log_dir, retention_days=0)

        assert old_log.exists()
