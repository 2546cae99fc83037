"""Barcode classification tests"""

import unittest
import sys
import os

# Make the top-level modules importable when running from a checkout
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scan_classifier import (
    InvalidScan, UserScan, WorkOrderScan, OPERATIONS, REASON_FORMAT, REASON_UNKNOWN_OPERATION,
    classify,
)


class TestUserPattern(unittest.TestCase):
    """User badge scans"""

    def test_user_badge(self):
        self.assertEqual(classify("A12345"), UserScan(raw="A12345", user_id="12345"))

    def test_single_digit_user(self):
        self.assertEqual(classify("A7").user_id, "7")

    def test_lowercase_prefix_is_invalid(self):
        self.assertIsInstance(classify("a12345"), InvalidScan)

    def test_prefix_without_digits_is_invalid(self):
        self.assertIsInstance(classify("A"), InvalidScan)

    def test_trailing_text_is_invalid(self):
        result = classify("A123X")
        self.assertIsInstance(result, InvalidScan)
        self.assertEqual(result.reason, REASON_FORMAT)

    def test_trailing_newline_is_invalid(self):
        self.assertIsInstance(classify("A123\n"), InvalidScan)


class TestWorkOrderPattern(unittest.TestCase):
    """Work order traveller scans"""

    def test_work_order(self):
        result = classify("3136O51R80")
        self.assertEqual(result, WorkOrderScan(
            raw="3136O51R80",
            wo_number="3136",
            operation_id="51",
            operation="OP Laser Cutting",
            router_id="80",
        ))

    def test_every_known_operation(self):
        for op_id, name in OPERATIONS.items():
            result = classify(f"100O{op_id}R2")
            self.assertIsInstance(result, WorkOrderScan)
            self.assertEqual(result.operation, name)

    def test_unknown_operation_is_distinct_from_format_error(self):
        result = classify("3136O99R80")
        self.assertIsInstance(result, InvalidScan)
        self.assertTrue(result.unknown_operation)
        self.assertEqual(result.reason, REASON_UNKNOWN_OPERATION)
        self.assertEqual(result.operation_id, "99")

    def test_lowercase_separators_are_invalid(self):
        result = classify("3136o51r80")
        self.assertIsInstance(result, InvalidScan)
        self.assertFalse(result.unknown_operation)

    def test_missing_router_is_invalid(self):
        self.assertEqual(classify("3136O51R").reason, REASON_FORMAT)

    def test_garbage(self):
        self.assertEqual(classify("hello world"), InvalidScan(raw="hello world"))


if __name__ == '__main__':
    unittest.main()
