"""Reassemble keyboard-wedge keystrokes into discrete barcode scans.

A wedge scanner types into the same stream as a human at the keyboard and
gives no "scan started" signal. Scans are told apart purely by cadence: the
scanner bursts characters a few milliseconds apart and (usually) ends with
Enter, while people type far slower than the scan timeout.
"""

import logging
import threading
from typing import Callable, Optional

from terminal_models import RawKeyEvent

DEFAULT_SCAN_TIMEOUT = 0.3
DEFAULT_MIN_BARCODE_LENGTH = 3


def is_scan_char(char: Optional[str]) -> bool:
    return bool(char) and len(char) == 1 and (char.isalnum() or char == ' ')


class ScanFramer:
    """Buffer keystrokes and emit complete barcodes to ``on_barcode``.

    A scan is finalized on a terminator key or after ``scan_timeout`` seconds
    of silence, so scanners configured without an Enter suffix still work.
    Buffers shorter than ``min_length`` are dropped as stray typing.
    """

    def __init__(self, on_barcode: Callable[[str], None],
                 scan_timeout: float = DEFAULT_SCAN_TIMEOUT,
                 min_length: int = DEFAULT_MIN_BARCODE_LENGTH,
                 timer_factory=threading.Timer):
        self.on_barcode = on_barcode
        self.scan_timeout = scan_timeout
        self.min_length = min_length
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._buffer = []
        self._last_input_ts = None
        self._timer = None
        # Bumped on every arm/cancel; a timer only acts if its generation is current.
        self._timer_generation = 0
        self._closed = False

    @property
    def buffer(self) -> str:
        with self._lock:
            return "".join(self._buffer)

    @property
    def closed(self) -> bool:
        return self._closed

    def handle_key(self, event: RawKeyEvent) -> bool:
        """Feed one key. Returns True when the framer consumed it."""
        if not event.key_down:
            return False

        finished = barcode = None
        with self._lock:
            if self._closed:
                return False

            if self._last_input_ts is not None and event.timestamp - self._last_input_ts >= self.scan_timeout:
                # Quiet period elapsed before its timer ran: that buffer is a complete scan.
                finished = self._take_buffer()
            self._last_input_ts = event.timestamp

            if event.is_terminator:
                barcode = self._take_buffer()
                consumed = True
            elif is_scan_char(event.char):
                self._buffer.append(event.char)
                self._arm_timer()
                consumed = True
            else:
                # Unresolvable scan-range keys are swallowed; anything else is
                # left to the host's default key handling.
                consumed = event.scan_key

        self._emit(finished)
        self._emit(barcode)
        return consumed

    def flush(self):
        """Finalize whatever is buffered, as if a terminator had arrived."""
        with self._lock:
            if self._closed:
                return
            barcode = self._take_buffer()
        self._emit(barcode)

    def close(self):
        with self._lock:
            self._closed = True
            self._cancel_timer()
            self._buffer.clear()

    def _arm_timer(self):
        self._cancel_timer()
        generation = self._timer_generation
        timer = self._timer_factory(self.scan_timeout, self._on_quiet_period, args=(generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer(self):
        self._timer_generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_quiet_period(self, generation):
        with self._lock:
            if self._closed or generation != self._timer_generation:
                return
            self._timer = None
            barcode = self._take_buffer()
        self._emit(barcode)

    def _take_buffer(self) -> Optional[str]:
        """Clear state and return the trimmed buffer if it is long enough."""
        self._cancel_timer()
        code = "".join(self._buffer).strip()
        self._buffer.clear()
        if len(code) < self.min_length:
            if code:
                logging.debug("Discarded short keystroke burst (%d chars)", len(code))
            return None
        return code

    def _emit(self, barcode: Optional[str]):
        if barcode is None:
            return
        logging.info("USB scanner detected: %s", barcode)
        self.on_barcode(barcode)
