from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class LogLevel(str, Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


class TerminalState(str, Enum):
    IDLE = "idle"
    AWAITING_ACTION = "awaiting_action"
    SUBMITTING = "submitting"
    AWAITING_QUANTITY = "awaiting_quantity"


@dataclass(frozen=True)
class RawKeyEvent:
    """One key from the input device, already translated by the host.

    ``scan_key`` marks keys from the digit/letter/space range, which the
    framer claims even when no character could be resolved for them.
    """
    char: Optional[str] = None
    is_terminator: bool = False
    timestamp: float = field(default_factory=time.monotonic)
    key_down: bool = True
    scan_key: bool = False


@dataclass(frozen=True)
class RemoteCommand:
    id: str
    type: str
    status: str
    message: str
    timestamp: str

    @classmethod
    def from_json(cls, data: dict) -> "RemoteCommand":
        return cls(
            id=str(data["id"]),
            type=str(data.get("type", "")),
            status=str(data["status"]),
            message=str(data.get("message") or ""),
            timestamp=str(data.get("timestamp") or ""),
        )


@dataclass(frozen=True)
class CommandResult:
    success: bool
    message: str
    timed_out: bool = False


@dataclass(frozen=True)
class QueueStatus:
    running: bool
    pending_commands: int
    total_commands: int


@dataclass(frozen=True)
class PendingClockOut:
    """Work order identity held while the operator enters a clock-out quantity."""
    user_id: str
    wo_number: str
    operation: str
    router_id: str
    operation_id: str = ""

    @property
    def work_order_code(self) -> str:
        return f"{self.wo_number}O{self.operation_id}R{self.router_id}"

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "wo_number": self.wo_number,
            "operation": self.operation,
            "router_id": self.router_id,
            "work_order_code": self.work_order_code,
        }


@dataclass(frozen=True)
class LogEntry:
    message: str
    timestamp: float
    level: LogLevel = LogLevel.INFO

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "timestamp": self.timestamp,
            "level": self.level.value,
        }
