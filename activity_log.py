"""Operator-facing activity log.

Keeps the most recent entries for the terminal display and mirrors every
entry into the process log, where full history survives in the rotating file.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, List

from terminal_models import LogEntry, LogLevel

MAX_ENTRIES = 100

_LOGGING_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class ActivityLog:
    def __init__(self, max_entries: int = MAX_ENTRIES, clock=time.time):
        self._entries = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self._clock = clock
        self._listeners: List[Callable[[List[LogEntry]], None]] = []

    def add(self, message: str, level: LogLevel = LogLevel.INFO) -> LogEntry:
        entry = LogEntry(message=message, timestamp=self._clock(), level=level)
        with self._lock:
            self._entries.append(entry)
        logging.log(_LOGGING_LEVELS[level], message)
        self._notify()
        return entry

    def info(self, message: str) -> LogEntry:
        return self.add(message, LogLevel.INFO)

    def success(self, message: str) -> LogEntry:
        return self.add(message, LogLevel.SUCCESS)

    def warning(self, message: str) -> LogEntry:
        return self.add(message, LogLevel.WARNING)

    def error(self, message: str) -> LogEntry:
        return self.add(message, LogLevel.ERROR)

    def entries(self) -> List[LogEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self):
        with self._lock:
            self._entries.clear()
        logging.info("Activity log cleared")
        self._notify()

    def subscribe(self, callback: Callable[[List[LogEntry]], None]):
        self._listeners.append(callback)

    def _notify(self):
        snapshot = self.entries()
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception as e:
                logging.warning("Activity log listener failed: %s", e)

    def __len__(self):
        with self._lock:
            return len(self._entries)
