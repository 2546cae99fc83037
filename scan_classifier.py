"""Classify decoded barcode strings into terminal scan events.

Two label formats are printed on the floor:

* user badges: ``A`` followed by the employee number, e.g. ``A12345``
* work order travellers: ``<wo>O<operation>R<router>``, e.g. ``3136O51R80``
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union

USER_PATTERN = re.compile(r'A(\d+)')
WORK_ORDER_PATTERN = re.compile(r'(\d+)O(\d+)R(\d+)')

OPERATIONS = {
    "51": "OP Laser Cutting",
    "52": "OP Forming",
    "53": "OP Welding",
    "54": "OP QC",
    "55": "OP Painting",
}

REASON_FORMAT = "format"
REASON_UNKNOWN_OPERATION = "unknown_operation"


@dataclass(frozen=True)
class UserScan:
    raw: str
    user_id: str


@dataclass(frozen=True)
class WorkOrderScan:
    raw: str
    wo_number: str
    operation_id: str
    operation: str
    router_id: str


@dataclass(frozen=True)
class InvalidScan:
    raw: str
    reason: str = REASON_FORMAT
    operation_id: Optional[str] = None

    @property
    def unknown_operation(self) -> bool:
        return self.reason == REASON_UNKNOWN_OPERATION


ScanEvent = Union[UserScan, WorkOrderScan, InvalidScan]


def classify(code: str) -> ScanEvent:
    """Parse a decoded scan. The user pattern is tried first."""
    match = USER_PATTERN.fullmatch(code)
    if match:
        return UserScan(raw=code, user_id=match.group(1))

    match = WORK_ORDER_PATTERN.fullmatch(code)
    if match:
        wo_number, operation_id, router_id = match.groups()
        operation = OPERATIONS.get(operation_id)
        if operation is None:
            return InvalidScan(raw=code, reason=REASON_UNKNOWN_OPERATION, operation_id=operation_id)
        return WorkOrderScan(
            raw=code,
            wo_number=wo_number,
            operation_id=operation_id,
            operation=operation,
            router_id=router_id,
        )

    return InvalidScan(raw=code)
