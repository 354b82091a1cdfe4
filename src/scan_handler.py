"""
Scan station logic: turns raw scanner/keyboard input into store scans.

A handheld scanner behaves like a keyboard that types the tracking number and
presses Enter; camera decoders can fire the same code several times per
second. ScanHandler trims input, ignores repeats inside the debounce window,
marks the order scanned, and reports the outcome to the UI through a Qt
signal and an optional feedback sound.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from PySide6.QtCore import QObject, Signal

from app_config import AppConfig
from exceptions import StorageError
from logger import get_logger
from models import ScanOutcome, ScanResult

logger = get_logger(__name__)


@dataclass
class ScanSettings:
    """
    Scan station settings, passed in explicitly rather than held globally.

    Attributes:
        sound_enabled: Play feedback sounds after each scan
        scan_debounce_ms: Ignore the same value scanned again within this window
    """
    sound_enabled: bool = True
    scan_debounce_ms: int = 500

    @classmethod
    def from_config(cls, config: AppConfig) -> 'ScanSettings':
        return cls(sound_enabled=config.sound_enabled,
                   scan_debounce_ms=config.scan_debounce_ms)


class ScanHandler(QObject):
    """
    Processes scans for one scan station.

    Attributes:
        scan_processed (Signal): Emitted with the ScanResult after every
                                 processed (not ignored) scan
        store: OrderStore used to mark orders scanned
        settings (ScanSettings): Sound and debounce settings
        sound_player: Callable invoked with "success", "warning" or "error"
                      when sound is enabled
    """
    scan_processed = Signal(object)

    def __init__(self, store, settings: Optional[ScanSettings] = None,
                 sound_player: Optional[Callable[[str], None]] = None,
                 monotonic: Callable[[], float] = time.monotonic):
        super().__init__()
        self.store = store
        self.settings = settings or ScanSettings()
        self.sound_player = sound_player
        self._monotonic = monotonic
        self._last_scan: Optional[tuple] = None

    def set_sound_enabled(self, enabled: bool):
        self.settings.sound_enabled = enabled
        logger.info(f"Scan sound {'enabled' if enabled else 'disabled'}")

    def _is_repeat(self, value: str, now: float) -> bool:
        if self._last_scan is None:
            return False
        last_value, last_time = self._last_scan
        return last_value == value and (now - last_time) * 1000 < self.settings.scan_debounce_ms

    def process_scan(self, raw_text: str) -> Optional[ScanResult]:
        """
        Process one scanned or typed tracking number.

        Returns:
            ScanResult for the scan, or None when the input was empty or a
            repeat of the previous value inside the debounce window.
            Storage failures are reported as ScanOutcome.ERROR, never raised.
        """
        tracking_number = (raw_text or "").strip()
        if not tracking_number:
            return None

        now = self._monotonic()
        if self._is_repeat(tracking_number, now):
            logger.debug(f"Duplicate scan ignored: {tracking_number}")
            return None
        self._last_scan = (tracking_number, now)

        try:
            result = self.store.mark_scanned(tracking_number)
        except StorageError as e:
            logger.error(f"Scan failed for {tracking_number}: {e}")
            result = ScanResult(ScanOutcome.ERROR, tracking_number, message=e.get_display_message())
            # A failed scan must not debounce its own retry
            self._last_scan = None

        self._play_feedback(result.feedback_kind)
        self.scan_processed.emit(result)
        return result

    def _play_feedback(self, kind: str):
        if not self.settings.sound_enabled or self.sound_player is None:
            return
        try:
            self.sound_player(kind)
        except Exception as e:
            # Audio device problems must never block scanning
            logger.warning(f"Failed to play scan sound: {e}")
