from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from terminal_errors import CommunicationError, PollCancelled
from terminal_models import CommandResult, QueueStatus, RemoteCommand

DEFAULT_BASE_URL = "http://192.168.1.100:5000/api"

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TIMEOUT_MESSAGE = "Timed out waiting for server response"


def normalize_base_url(url: str) -> str:
    """Return the API root for a server URL given with or without ``/api``."""
    base = (url or "").strip().rstrip("/")
    if not base:
        raise ValueError("server URL must not be empty")
    if base.endswith("/api"):
        return base
    return base + "/api"


@dataclass
class CommandClientConfig:
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = 10
    command_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 1.0


class CommandClient:
    """
    Client for the remote clock-in/clock-out command queue.
    - Commands are submitted with a POST and return a command id.
    - Results are obtained by polling {base_url}/status/<id>.
    """

    def __init__(self, cfg: Optional[CommandClientConfig] = None, session: Optional[requests.Session] = None):
        self.cfg = cfg or CommandClientConfig()
        self.base_url = normalize_base_url(self.cfg.base_url)
        self.session = session or requests.Session()
        self.timeout = max(1, int(self.cfg.timeout_seconds or 10))
        self.command_timeout = float(self.cfg.command_timeout_seconds)
        self.poll_interval = float(self.cfg.poll_interval_seconds)

    def update_base_url(self, new_url: str) -> str:
        self.base_url = normalize_base_url(new_url)
        logging.info("Command queue endpoint set to %s", self.base_url)
        return self.base_url

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json; charset=utf-8",
            "Accept": "application/json",
        }

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Perform one call and return the decoded success envelope.

        Raises CommunicationError on transport errors, non-2xx responses,
        undecodable bodies and ``success: false`` envelopes.
        """
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, headers=self._headers(), json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise CommunicationError(str(e)) from e

        if resp.status_code < 200 or resp.status_code >= 300:
            raise CommunicationError(f"HTTP {resp.status_code}: {resp.reason}")

        try:
            body = resp.json()
        except ValueError as e:
            raise CommunicationError(f"Invalid response from server: {e}") from e
        if not isinstance(body, dict):
            raise CommunicationError("Invalid response from server: expected a JSON object")

        if not body.get("success"):
            raise CommunicationError(str(body.get("error") or "Unknown error"))
        return body

    def _submit(self, path: str, payload: Dict[str, Any]) -> str:
        body = self._request("POST", path, payload)
        command_id = body.get("command_id")
        if command_id in (None, ""):
            raise CommunicationError("Server accepted the command but returned no command_id")
        return str(command_id)

    def check_health(self) -> bool:
        """Best-effort probe; never raises."""
        try:
            resp = self.session.get(f"{self.base_url}/health", headers=self._headers(), timeout=self.timeout)
            if resp.status_code < 200 or resp.status_code >= 300:
                return False
            return resp.json().get("status") == "ok"
        except Exception as e:
            logging.debug("Health check failed: %s", e)
            return False

    def ping(self) -> bool:
        return self.check_health()

    def submit_clock_in(self, user_id: str, wo_number: str, operation: str, router_id: str) -> str:
        payload = {
            "user_id": user_id,
            "wo_number": wo_number,
            "operation": operation,
            "router_id": router_id,
        }
        return self._submit("/clockin-wo", payload)

    def submit_clock_out(self, user_id: str, wo_number: str, qty: float) -> str:
        payload = {
            "user_id": user_id,
            "wo_number": wo_number,
            "qty": float(qty),
        }
        return self._submit("/clockout", payload)

    def get_command_status(self, command_id: str) -> RemoteCommand:
        body = self._request("GET", f"/status/{command_id}")
        try:
            return RemoteCommand.from_json(body["command"])
        except (KeyError, TypeError) as e:
            raise CommunicationError(f"Malformed command status: {e}") from e

    def await_completion(self, command_id: str, cancel_event: Optional[threading.Event] = None) -> CommandResult:
        """Poll a command until it completes, fails or the command timeout passes.

        A failed fetch does not end the wait; the next poll simply retries.
        Setting ``cancel_event`` abandons the wait with PollCancelled.
        """
        cancel_event = cancel_event or threading.Event()
        deadline = time.monotonic() + self.command_timeout

        while time.monotonic() < deadline:
            if cancel_event.is_set():
                raise PollCancelled(f"Stopped waiting for command {command_id}")
            try:
                command = self.get_command_status(command_id)
            except CommunicationError as e:
                logging.debug("Status poll for %s failed (will retry): %s", command_id, e)
            else:
                if command.status == STATUS_COMPLETED:
                    return CommandResult(True, command.message)
                if command.status == STATUS_FAILED:
                    return CommandResult(False, command.message)
                if command.status not in (STATUS_PENDING, STATUS_PROCESSING):
                    return CommandResult(False, f"Unknown status: {command.status}")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if cancel_event.wait(min(self.poll_interval, remaining)):
                raise PollCancelled(f"Stopped waiting for command {command_id}")

        logging.warning("Command %s did not finish within %.0fs", command_id, self.command_timeout)
        return CommandResult(False, TIMEOUT_MESSAGE, timed_out=True)

    def list_commands(self) -> List[RemoteCommand]:
        body = self._request("GET", "/commands")
        try:
            return [RemoteCommand.from_json(item) for item in body.get("commands") or []]
        except (KeyError, TypeError) as e:
            raise CommunicationError(f"Malformed command list: {e}") from e

    def get_queue_status(self) -> QueueStatus:
        body = self._request("GET", "/queue/status")
        try:
            return QueueStatus(
                running=bool(body["running"]),
                pending_commands=int(body["pending_commands"]),
                total_commands=int(body["total_commands"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CommunicationError(f"Malformed queue status: {e}") from e

    def close(self) -> None:
        self.session.close()
