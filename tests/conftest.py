"""
Pytest configuration file for Resi Checker tests.

Adds the 'src' directory to sys.path so tests import modules the same way
the application does, and provides shared store fixtures.
"""

import os
import sys
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent

src_dir = repo_root / 'src'
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

# Qt widgets need a platform plugin; run headless unless one is configured
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from order_store import OrderStore  # noqa: E402


class FakeClock:
    """Controllable UTC clock; every call advances one second."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current += timedelta(seconds=1)
        return value

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


@pytest.fixture
def test_dir():
    """Create a temporary directory for tests."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(test_dir, clock):
    """OrderStore on a fresh database with a controllable clock."""
    return OrderStore(Path(test_dir) / 'orders.db', clock=clock)
