"""Terminal configuration tests"""

import json
import os
import shutil
import sys
import tempfile
import unittest
from unittest.mock import patch

# Make the top-level modules importable when running from a checkout
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import terminal_runtime
from terminal_config import TerminalConfig, DEFAULT_SERVER_URL, env_int
from terminal_errors import ConfigurationError


class TestTerminalConfig(unittest.TestCase):

    def setUp(self):
        """Temporary config location"""
        self.temp_dir = tempfile.mkdtemp()
        self.config_file = os.path.join(self.temp_dir, "config.json")

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_create_default_config(self):
        config = TerminalConfig(self.config_file)

        self.assertTrue(os.path.exists(self.config_file))
        self.assertEqual(config.get('server.base_url'), DEFAULT_SERVER_URL)
        self.assertEqual(config.get('scanning.scan_timeout_ms'), 300)
        self.assertEqual(config.get('scanning.min_barcode_length'), 3)
        self.assertEqual(config.get('server.command_timeout_seconds'), 30.0)

    def test_missing_keys_fall_back_to_defaults(self):
        with open(self.config_file, 'w', encoding='utf-8') as f:
            json.dump({"server": {"base_url": "http://10.1.1.1:5000"}}, f)

        config = TerminalConfig(self.config_file)

        self.assertEqual(config.get('server.base_url'), "http://10.1.1.1:5000")
        self.assertEqual(config.get('server.poll_interval_seconds'), 1.0)
        self.assertIsNone(config.get('nonexistent.key'))
        self.assertEqual(config.get('nonexistent.key', 'default'), 'default')

    def test_set_persists(self):
        config = TerminalConfig(self.config_file)
        config.set('server.base_url', 'http://10.2.2.2:5000')

        reloaded = TerminalConfig(self.config_file)
        self.assertEqual(reloaded.get('server.base_url'), 'http://10.2.2.2:5000')

    def test_set_without_persist(self):
        config = TerminalConfig(self.config_file)
        config.set('server.base_url', 'http://temp:5000', persist=False)
        self.assertEqual(config.get('server.base_url'), 'http://temp:5000')
        self.assertEqual(TerminalConfig(self.config_file).get('server.base_url'), DEFAULT_SERVER_URL)

    def test_environment_override(self):
        config = TerminalConfig(self.config_file)
        with patch.dict(os.environ, {'WOCLOCK_SERVER_URL': 'http://env:5000', 'WOCLOCK_DASHBOARD_PORT': '8080'}):
            self.assertEqual(config.get('server.base_url'), 'http://env:5000')
            self.assertEqual(config.get('dashboard.port'), 8080)

    def test_get_float(self):
        with open(self.config_file, 'w', encoding='utf-8') as f:
            json.dump({"server": {"poll_interval_seconds": "fast"}}, f)
        config = TerminalConfig(self.config_file)
        self.assertEqual(config.get_float('server.poll_interval_seconds', 1.0), 1.0)

    def test_malformed_file(self):
        with open(self.config_file, 'w', encoding='utf-8') as f:
            f.write("{not json")
        with self.assertRaises(ConfigurationError):
            TerminalConfig(self.config_file)


class TestEnvInt(unittest.TestCase):

    def test_parses_and_falls_back(self):
        with patch.dict(os.environ, {'WOCLOCK_LOG_MAX_MB': ' 20 ', 'WOCLOCK_LOG_BACKUPS': 'many'}):
            self.assertEqual(env_int('WOCLOCK_LOG_MAX_MB', 50), 20)
            self.assertEqual(env_int('WOCLOCK_LOG_BACKUPS', 3), 3)
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(env_int('WOCLOCK_LOG_MAX_MB', 50), 50)

    def test_runtime_shares_config_helper(self):
        self.assertIs(terminal_runtime.env_int, env_int)


if __name__ == '__main__':
    unittest.main()
