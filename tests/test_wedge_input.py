"""Key translation tests (no input device needed)"""

import unittest
import sys
import os

# Make the top-level modules importable when running from a checkout
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scan_framer import ScanFramer
from wedge_input import translate_key


class TestTranslateKey(unittest.TestCase):

    def test_letters_follow_shift(self):
        self.assertEqual(translate_key("KEY_A", False, True, 0.0).char, "a")
        upper = translate_key("KEY_A", True, True, 0.0)
        self.assertEqual(upper.char, "A")
        self.assertTrue(upper.scan_key)

    def test_digits_ignore_shift(self):
        self.assertEqual(translate_key("KEY_5", True, True, 0.0).char, "5")

    def test_enter_is_terminator(self):
        self.assertTrue(translate_key("KEY_ENTER", False, True, 0.0).is_terminator)
        self.assertTrue(translate_key("KEY_KPENTER", False, True, 0.0).is_terminator)

    def test_keypad_digits_use_fallback(self):
        event = translate_key("KEY_KP7", False, True, 0.0)
        self.assertEqual(event.char, "7")
        self.assertFalse(event.scan_key)

    def test_shift_keys_produce_nothing(self):
        self.assertIsNone(translate_key("KEY_LEFTSHIFT", False, True, 0.0))

    def test_unknown_key(self):
        event = translate_key("KEY_F1", False, True, 0.0)
        self.assertIsNone(event.char)
        self.assertFalse(event.scan_key)

    def test_key_up_flag(self):
        self.assertFalse(translate_key("KEY_A", False, False, 0.0).key_down)


class TestWedgeToFramer(unittest.TestCase):

    def test_shifted_badge_scan(self):
        scans = []
        framer = ScanFramer(scans.append)
        keys = [("KEY_A", True)] + [(f"KEY_{d}", False) for d in "12345"] + [("KEY_ENTER", False)]
        for i, (name, shift) in enumerate(keys):
            framer.handle_key(translate_key(name, shift, True, 100.0 + i * 0.005))
        framer.close()
        self.assertEqual(scans, ["A12345"])


if __name__ == '__main__':
    unittest.main()
