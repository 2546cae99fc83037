"""Read a USB keyboard-wedge barcode scanner through evdev.

Translates Linux key events into ``RawKeyEvent`` values and feeds them to a
``ScanFramer``. Framing itself (timing, terminator, minimum length) is the
framer's job; this module only knows about key codes, shift state and the
device lifecycle.
"""

import logging
import threading
import time

from terminal_models import RawKeyEvent

try:
    import evdev
    from evdev import ecodes, InputDevice
    EVDEV_AVAILABLE = True
except ImportError:
    evdev = None
    ecodes = None
    InputDevice = None
    EVDEV_AVAILABLE = False

SCANNER_NAME_HINTS = ("scanner", "barcode", "honeywell", "symbol", "datalogic", "zebra")

# evdev key values
KEY_UP = 0
KEY_DOWN = 1


def _build_key_maps():
    """Return (scan_keys, fallback_keys) keyed by evdev key name.

    ``scan_keys`` are the digit/letter/space keys the framer always claims.
    ``fallback_keys`` are other keys with a printable translation (keypad
    digits and punctuation); the framer decides whether to keep them.
    """
    scan_keys = {f"KEY_{i}": (str(i), str(i)) for i in range(10)}
    scan_keys.update({f"KEY_{chr(code)}": (chr(code + 32), chr(code)) for code in range(ord('A'), ord('Z') + 1)})
    scan_keys["KEY_SPACE"] = (" ", " ")

    fallback_keys = {f"KEY_KP{i}": (str(i), str(i)) for i in range(10)}
    fallback_keys.update({
        "KEY_MINUS": ("-", "_"),
        "KEY_EQUAL": ("=", "+"),
        "KEY_COMMA": (",", "<"),
        "KEY_DOT": (".", ">"),
        "KEY_SLASH": ("/", "?"),
        "KEY_SEMICOLON": (";", ":"),
        "KEY_APOSTROPHE": ("'", '"'),
        "KEY_LEFTBRACE": ("[", "{"),
        "KEY_RIGHTBRACE": ("]", "}"),
        "KEY_BACKSLASH": ("\\", "|"),
        "KEY_KPMINUS": ("-", "-"),
        "KEY_KPDOT": (".", "."),
    })
    return scan_keys, fallback_keys


SCAN_KEYS, FALLBACK_KEYS = _build_key_maps()
TERMINATOR_KEYS = {"KEY_ENTER", "KEY_KPENTER"}
SHIFT_KEYS = {"KEY_LEFTSHIFT", "KEY_RIGHTSHIFT"}


def translate_key(key_name, shift_active, key_down, timestamp):
    """Turn one evdev key name into a RawKeyEvent (None for modifier keys)."""
    if key_name in SHIFT_KEYS:
        return None
    if key_name in TERMINATOR_KEYS:
        return RawKeyEvent(is_terminator=True, timestamp=timestamp, key_down=key_down)
    if key_name in SCAN_KEYS:
        lower, upper = SCAN_KEYS[key_name]
        return RawKeyEvent(char=upper if shift_active else lower, timestamp=timestamp,
                           key_down=key_down, scan_key=True)
    if key_name in FALLBACK_KEYS:
        plain, shifted = FALLBACK_KEYS[key_name]
        return RawKeyEvent(char=shifted if shift_active else plain, timestamp=timestamp, key_down=key_down)
    return RawKeyEvent(timestamp=timestamp, key_down=key_down)


def _key_name(code):
    name = ecodes.KEY.get(code) if ecodes else None
    # Some codes alias several names; evdev returns a list for those.
    if isinstance(name, (list, tuple)):
        name = name[0]
    return name


def list_input_devices():
    """Return [(path, name, looks_like_scanner)] for keyboard-like devices."""
    if not EVDEV_AVAILABLE:
        raise RuntimeError("evdev not available; install evdev to use barcode scanners")
    found = []
    for path in evdev.list_devices():
        dev = InputDevice(path)
        try:
            caps = dev.capabilities().get(ecodes.EV_KEY, [])
            if not caps or ecodes.KEY_ENTER not in caps:
                continue
            name = dev.name or "unknown"
            lowered = name.lower()
            if "hdmi" in lowered or "vc4" in lowered:
                continue
            found.append((path, name, any(hint in lowered for hint in SCANNER_NAME_HINTS)))
        finally:
            dev.close()
    return found


class WedgeScannerReader:
    """Feed key events from one input device into a ScanFramer."""

    def __init__(self, framer, device_path=None, grab=True):
        if not EVDEV_AVAILABLE:
            raise RuntimeError("evdev not available; install evdev to use barcode scanners")
        self.framer = framer
        self.grab = grab
        self.device_path = device_path or self._auto_detect_device()
        self._closed = threading.Event()
        self._thread = None
        self.device = None
        self._reconnects = 0
        self._last_error_log_ts = 0.0
        self._open_device()

    def _open_device(self):
        self.device = InputDevice(self.device_path)
        if self.grab:
            try:
                self.device.grab()
            except OSError:
                logging.warning("Unable to grab %s; scanner keystrokes may reach the desktop", self.device_path)
        logging.info("Using barcode scanner device %s (%s)", self.device_path, self.device.name)

    def _auto_detect_device(self):
        devices = list_input_devices()
        if not devices:
            raise RuntimeError(
                "No keyboard-like input devices found. Set input.barcode_device in config.json "
                "to the correct /dev/input/eventX path."
            )
        logging.info("Input devices detected: %s", ", ".join(f"{p} ({n})" for p, n, _ in devices))
        for path, _name, is_scanner in devices:
            if is_scanner:
                return path
        return devices[0][0]

    def start(self):
        self._thread = threading.Thread(target=self.run, name="woclock-wedge", daemon=True)
        self._thread.start()
        return self._thread

    def run(self):
        """Read events until closed, reopening the device after USB hiccups."""
        shift_active = False
        backoff_s = 0.25
        backoff_max_s = 10.0

        while not self._closed.is_set():
            try:
                if self.device is None:
                    raise OSError(f"{self.device_path} is not open")
                for event in self.device.read_loop():
                    if self._closed.is_set():
                        return
                    if event.type != ecodes.EV_KEY:
                        continue

                    key_name = _key_name(event.code)
                    if key_name in SHIFT_KEYS:
                        shift_active = event.value != KEY_UP
                        continue

                    raw = translate_key(key_name, shift_active, event.value == KEY_DOWN, event.timestamp())
                    if raw is None:
                        continue
                    if not self.framer.handle_key(raw) and raw.key_down:
                        logging.debug("Key %s not handled by scanner framer", key_name)

                # read_loop should be infinite; if it ends, treat as device issue.
                raise OSError("evdev read_loop ended")
            except OSError as exc:
                if self._closed.is_set():
                    return

                now = time.time()
                # Rate-limit warnings so a flapping device doesn't flood the log.
                if (now - self._last_error_log_ts) >= 5.0:
                    logging.warning("Barcode device read error (%s). Will retry in %.2fs", exc, backoff_s)
                    self._last_error_log_ts = now
                self._release_device()

                self._closed.wait(backoff_s)
                backoff_s = min(backoff_s * 2.0, backoff_max_s)
                if self._closed.is_set():
                    return
                try:
                    self._reconnects += 1
                    self._open_device()
                    shift_active = False
                    backoff_s = 0.25
                except OSError as reopen_exc:
                    logging.warning("Barcode device reopen failed (%s). Continuing retries.", reopen_exc)

    def _release_device(self):
        if not self.device:
            return
        try:
            if self.grab:
                self.device.ungrab()
        except OSError:
            pass
        try:
            self.device.close()
        except OSError:
            pass
        self.device = None

    def close(self):
        self._closed.set()
        self._release_device()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
