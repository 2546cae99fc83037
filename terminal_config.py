"""Configuration management for the clock terminal"""

import copy
import json
import logging
import os
from pathlib import Path

from terminal_errors import ConfigurationError

DEFAULT_SERVER_URL = "http://192.168.1.100:5000"

# Environment variables that win over config.json when set.
ENV_OVERRIDES = {
    "WOCLOCK_SERVER_URL": "server.base_url",
    "WOCLOCK_DASHBOARD_HOST": "dashboard.host",
    "WOCLOCK_DASHBOARD_PORT": "dashboard.port",
}

HOME_ENV = "WOCLOCK_HOME"


def terminal_home() -> Path:
    """Directory that relative config and log paths hang off."""
    override = (os.environ.get(HOME_ENV) or "").strip()
    if not override:
        return Path(__file__).resolve().parent
    return Path(os.path.expandvars(override)).expanduser().resolve()


def terminal_path(name) -> Path:
    path = Path(os.path.expandvars(str(name))).expanduser()
    return path if path.is_absolute() else terminal_home() / path


def ensure_terminal_dir(name) -> Path:
    """Create (if needed) and return a directory under the terminal home."""
    path = terminal_path(name)
    if path.is_file():
        # A stray file named like the directory blocks mkdir; move it aside.
        path.rename(path.with_name(path.name + ".bak"))
    path.mkdir(parents=True, exist_ok=True)
    return path


def env_int(name: str, default: int) -> int:
    try:
        return int((os.environ.get(name) or "").strip() or default)
    except Exception:
        return default


class TerminalConfig:
    """JSON-backed terminal settings with dotted-key access"""

    def __init__(self, config_file='config.json'):
        self.config_file = terminal_path(config_file)
        self.default_config = {
            "terminal_id": "Terminal_1",
            "server": {
                "base_url": DEFAULT_SERVER_URL,
                "timeout_seconds": 10,
                "command_timeout_seconds": 30.0,
                "poll_interval_seconds": 1.0,
                # 0 disables the periodic probe; the terminal still checks at startup.
                "health_check_interval_seconds": 30.0
            },
            "scanning": {
                "scan_timeout_ms": 300,
                "min_barcode_length": 3
            },
            "input": {
                "barcode_device": "",
                "grab": True
            },
            "dashboard": {
                "enabled": True,
                "host": "0.0.0.0",
                "port": 5006
            }
        }
        self.load_config()

    def load_config(self):
        """Load configuration from file or create default"""
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    self.config = json.load(f)
            except (OSError, ValueError) as e:
                raise ConfigurationError(f"Could not read {self.config_file}: {e}") from e
            if not isinstance(self.config, dict):
                raise ConfigurationError(f"{self.config_file} must hold a JSON object")
        else:
            self.config = copy.deepcopy(self.default_config)
            try:
                self.save_config()
            except OSError as e:
                # Read-only images still run on defaults.
                logging.warning("Could not write default config %s: %s", self.config_file, e)

    def save_config(self):
        """Save current configuration to file"""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, 'w', encoding='utf-8') as f:
            json.dump(self.config, f, indent=2)

    @staticmethod
    def _lookup(tree, key_path):
        value = tree
        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                raise KeyError(key_path)
        return value

    def get(self, key_path, default=None):
        """Get nested configuration value (env override, file, then built-in default)"""
        for env_name, env_key in ENV_OVERRIDES.items():
            if env_key == key_path and (os.environ.get(env_name) or "").strip():
                if key_path.endswith(".port"):
                    return env_int(env_name, default)
                return os.environ[env_name].strip()
        try:
            return self._lookup(self.config, key_path)
        except KeyError:
            pass
        try:
            return self._lookup(self.default_config, key_path)
        except KeyError:
            return default

    def get_float(self, key_path, default: float) -> float:
        try:
            return float(self.get(key_path, default))
        except (TypeError, ValueError):
            logging.warning("Config %s is not a number; using %s", key_path, default)
            return default

    def set(self, key_path, value, persist=True):
        """Set nested configuration value, creating intermediate sections"""
        keys = key_path.split('.')
        node = self.config
        for key in keys[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[keys[-1]] = value
        if persist:
            self.save_config()
