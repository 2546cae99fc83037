"""Drive the user -> work order -> command queue flow for one terminal.

The orchestrator is a small actor: scanner callbacks, operator input and
network completions all post messages to one mailbox, and a single worker
applies them in order, so session state only ever has one writer. Network
calls run on a thread pool and report back through the same mailbox, which
keeps key input responsive while a command is in flight.
"""

import logging
import math
import queue
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor

from activity_log import ActivityLog
from command_client import normalize_base_url
from scan_classifier import InvalidScan, UserScan, classify
from terminal_errors import (
    CommandRejected, CommunicationError, DuplicateClockIn, InvalidFormat, InvalidQuantity,
    NoActiveUser, PollCancelled, PollTimeout, ServerUnavailable, TerminalError, UnknownOperation,
)
from terminal_models import PendingClockOut, TerminalState

# Known phrasings of the server's "active clock in exists" failure (English
# and Spanish server builds). Matched as case-insensitive substrings.
DUPLICATE_CLOCK_IN_PHRASES = (
    "already has an active clock in",
    "already has an active clock-in",
    "already clocked in",
    "ya tiene un clock in activo",
    "ya tiene una entrada activa",
)

HINT_SCAN_USER = {"title": "Scan your user ID", "detail": "Format: A12345"}
HINT_SCAN_WORK_ORDER = {"title": "Scan Work Order", "detail": "Format: 1234O56R78"}
HINT_PROCESSING = {"title": "Processing...", "detail": "Waiting for server"}

SUCCESS_CLOCK_IN = "CLOCK IN SUCCESSFUL"
SUCCESS_CLOCK_OUT = "CLOCK OUT SUCCESSFUL"

OBSERVABLE_FIELDS = (
    "state",
    "current_user",
    "waiting_for_action",
    "server_connected",
    "loading",
    "error_message",
    "success_message",
    "quantity_request",
    "scanner_hint",
    "logs",
)


def is_duplicate_clock_in(message) -> bool:
    """True when a failed clock-in means the user is already clocked in on the work order."""
    text = (message or "").lower()
    return any(phrase in text for phrase in DUPLICATE_CLOCK_IN_PHRASES)


class ScanOrchestrator:
    """Session state machine for one terminal.

    Public methods are safe to call from any thread; they only enqueue work.
    Use ``start()`` to process the mailbox on a worker thread, or ``pump()``
    to process it on the calling thread.
    """

    def __init__(self, client, activity_log=None, executor=None, classifier=classify):
        self.client = client
        self.activity = activity_log or ActivityLog()
        self.classifier = classifier

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="woclock-net")
        self._mailbox = queue.Queue()
        self._shutdown = threading.Event()
        self._worker = None
        self._inflight = set()
        self._inflight_lock = threading.Lock()
        self._health_reported = False

        self._subscribers = defaultdict(list)
        self._values = {
            "state": TerminalState.IDLE,
            "current_user": None,
            "waiting_for_action": False,
            "server_connected": False,
            "loading": False,
            "error_message": "",
            "success_message": "",
            "quantity_request": None,
            "scanner_hint": HINT_SCAN_USER,
        }
        self.activity.subscribe(lambda entries: self._notify("logs", entries))

    # -- observable state -------------------------------------------------

    @property
    def state(self):
        return self._values["state"]

    @property
    def current_user(self):
        return self._values["current_user"]

    @property
    def waiting_for_action(self):
        return self._values["waiting_for_action"]

    @property
    def server_connected(self):
        return self._values["server_connected"]

    @property
    def loading(self):
        return self._values["loading"]

    @property
    def error_message(self):
        return self._values["error_message"]

    @property
    def success_message(self):
        return self._values["success_message"]

    @property
    def quantity_request(self):
        return self._values["quantity_request"]

    @property
    def scanner_hint(self):
        return self._values["scanner_hint"]

    def subscribe(self, field, callback):
        """Call ``callback(value)`` whenever ``field`` changes."""
        if field not in OBSERVABLE_FIELDS:
            raise ValueError(f"Unknown field: {field}")
        self._subscribers[field].append(callback)

    def snapshot(self) -> dict:
        values = dict(self._values)
        pending = values["quantity_request"]
        return {
            "state": values["state"].value,
            "current_user": values["current_user"],
            "waiting_for_action": values["waiting_for_action"],
            "server_connected": values["server_connected"],
            "loading": values["loading"],
            "error_message": values["error_message"],
            "success_message": values["success_message"],
            "quantity_request": pending.to_dict() if pending else None,
            "scanner_hint": values["scanner_hint"],
            "server_url": self.client.base_url,
        }

    def _set(self, **changes):
        for field, value in changes.items():
            if self._values.get(field) == value:
                continue
            self._values[field] = value
            self._notify(field, value)

    def _notify(self, field, value):
        for callback in list(self._subscribers.get(field, ())):
            try:
                callback(value)
            except Exception as e:
                logging.warning("Subscriber for %s failed: %s", field, e)

    # -- entry points (any thread) ------------------------------------------

    def process_scanned_code(self, code):
        """Single entry point for decoded scans and manually typed codes."""
        self._post(self._handle_scan, code)

    def submit_user_scan(self, user_id):
        user_id = str(user_id).strip()
        self._post(self._handle_scan, f"A{user_id}")

    def submit_work_order_scan(self, code):
        self._post(self._handle_work_order_code, code)

    def confirm_quantity(self, qty):
        """Clock out the pending work order. Raises InvalidQuantity unless 0 < qty < inf."""
        try:
            qty = float(qty)
        except (TypeError, ValueError) as e:
            raise InvalidQuantity(f"Quantity is not a number: {qty!r}") from e
        if not math.isfinite(qty):
            raise InvalidQuantity(f"Quantity must be a finite number, got {qty}")
        if not qty > 0:
            raise InvalidQuantity(f"Quantity must be greater than 0, got {qty}")
        self._post(self._on_quantity_confirmed, qty)

    def cancel_quantity(self):
        self._post(self._on_quantity_cancelled)

    def check_server_connection(self):
        self._post(self._start_health_check)

    def update_server_url(self, url):
        """Point the client at a new server and re-check connectivity. Raises ValueError on empty URL."""
        normalize_base_url(url)
        self._post(self._on_update_server_url, url)

    def clear_error_message(self):
        self._post(self._set, error_message="")

    def clear_success_message(self):
        self._post(self._set, success_message="")

    def clear_logs(self):
        self._post(self.activity.clear)

    # -- mailbox ------------------------------------------------------------

    def start(self):
        if self._worker and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._run, name="woclock-orchestrator", daemon=True)
        self._worker.start()
        logging.info("Scan orchestrator started")

    def stop(self, timeout=2.0):
        """Stop the worker and abandon in-flight polls."""
        self._shutdown.set()
        self._mailbox.put(None)
        if self._worker and self._worker.is_alive():
            self._worker.join(timeout=timeout)
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        logging.info("Scan orchestrator stopped")

    def pump(self, timeout=5.0) -> bool:
        """Process messages on the calling thread until nothing is queued or in flight.

        Returns False if work was still pending when ``timeout`` expired.
        """
        if self._worker and self._worker.is_alive():
            raise RuntimeError("pump() cannot be used while the worker thread is running")
        deadline = time.monotonic() + timeout
        while True:
            try:
                item = self._mailbox.get(timeout=0.01)
            except queue.Empty:
                with self._inflight_lock:
                    busy = any(not future.done() for future in self._inflight)
                if not busy and self._mailbox.empty():
                    return True
                if time.monotonic() >= deadline:
                    return False
                continue
            if item is None:
                return True
            self._dispatch(*item)

    def _post(self, fn, *args, **kwargs):
        if self._shutdown.is_set():
            logging.debug("Orchestrator stopped; dropping %s", getattr(fn, "__name__", fn))
            return
        self._mailbox.put((fn, args, kwargs))

    def _run(self):
        while not self._shutdown.is_set():
            try:
                item = self._mailbox.get(timeout=0.5)
            except queue.Empty:
                continue
            if item is None:
                break
            self._dispatch(*item)

    def _dispatch(self, fn, args, kwargs):
        try:
            fn(*args, **kwargs)
        except Exception:
            logging.exception("Unhandled error in orchestrator step %s", getattr(fn, "__name__", fn))

    def _run_in_background(self, fn, *args):
        future = self._executor.submit(fn, *args)
        with self._inflight_lock:
            self._inflight.add(future)
        future.add_done_callback(self._forget_future)

    def _forget_future(self, future):
        with self._inflight_lock:
            self._inflight.discard(future)

    # -- scan handling (worker) ----------------------------------------------

    def _handle_scan(self, code):
        code = (code or "").strip()
        self.activity.info(f"🔍 Code scanned: {code}")
        event = self.classifier(code)
        try:
            if isinstance(event, UserScan):
                self._on_user_scan(event)
            else:
                self._on_work_order_scan(event)
        except TerminalError as e:
            self._report_error(e)

    def _handle_work_order_code(self, code):
        code = (code or "").strip()
        self.activity.info(f"🔍 Work order entered: {code}")
        event = self.classifier(code)
        if isinstance(event, UserScan):
            event = InvalidScan(raw=code)
        try:
            self._on_work_order_scan(event)
        except TerminalError as e:
            self._report_error(e)

    def _on_user_scan(self, event: UserScan):
        pending = self.quantity_request
        if pending is not None:
            # A new badge overrides an unanswered quantity prompt without warning.
            logging.info("Pending clock out for WO %s dropped by user scan", pending.wo_number)
        self._set(
            current_user=event.user_id,
            waiting_for_action=True,
            quantity_request=None,
            state=TerminalState.AWAITING_ACTION,
            scanner_hint=HINT_SCAN_WORK_ORDER,
        )
        self.activity.info(f"👤 User scanned: {event.user_id}")

    def _on_work_order_scan(self, event):
        user_id = self.current_user
        if self.state != TerminalState.AWAITING_ACTION or not user_id:
            raise NoActiveUser(f"⚠️ Scan your user ID first (got {event.raw})")
        if not self.server_connected:
            raise ServerUnavailable("❌ Server not available")
        if isinstance(event, InvalidScan):
            if event.unknown_operation:
                raise UnknownOperation(f"❌ Unknown operation: {event.operation_id}")
            raise InvalidFormat(f"❌ Invalid code: {event.raw}")

        identity = PendingClockOut(
            user_id=user_id,
            wo_number=event.wo_number,
            operation=event.operation,
            router_id=event.router_id,
            operation_id=event.operation_id,
        )
        self._set(
            state=TerminalState.SUBMITTING,
            waiting_for_action=False,
            loading=True,
            scanner_hint=HINT_PROCESSING,
        )
        self.activity.info(f"⏳ Sending clock in: user {user_id}, WO {event.wo_number}, {event.operation}, router {event.router_id}")
        self._run_in_background(self._clock_in_job, identity)

    def _clock_in_job(self, identity: PendingClockOut):
        try:
            command_id = self.client.submit_clock_in(
                identity.user_id, identity.wo_number, identity.operation, identity.router_id
            )
            self._post(self.activity.info, f"⏳ Command sent: {command_id}")
            result = self.client.await_completion(command_id, cancel_event=self._shutdown)
        except PollCancelled as e:
            logging.info("%s", e)
            return
        except CommunicationError as e:
            self._post(self._on_command_error, "Clock in", e)
            return
        except Exception as e:
            self._post(self._on_command_error, "Clock in", CommunicationError(str(e)))
            return
        self._post(self._on_clock_in_result, identity, result)

    def _on_clock_in_result(self, identity: PendingClockOut, result):
        if result.success:
            self.activity.success(f"✅ Clock in successful on WO {identity.wo_number}")
            self._set(success_message=SUCCESS_CLOCK_IN)
            self._reset_session()
            return

        if is_duplicate_clock_in(result.message):
            self._request_quantity(identity, DuplicateClockIn(result.message))
            return

        if result.timed_out:
            self._report_error(PollTimeout(f"❌ Clock in timed out on WO {identity.wo_number}: {result.message}"))
        else:
            self._report_error(CommandRejected(f"❌ Clock in failed: {result.message}", "CLOCK IN FAILED"))
        self._reset_session()

    def _request_quantity(self, identity: PendingClockOut, notice: DuplicateClockIn):
        if self.state != TerminalState.SUBMITTING:
            # A badge scan started a new session while the clock in was in flight;
            # the prompt would belong to someone no longer at the terminal.
            self.activity.warning(
                f"⚠️ User {identity.user_id} already clocked in on WO {identity.wo_number}; "
                f"clock out prompt dropped because user {self.current_user} is active"
            )
            self._set(loading=False)
            return
        self.activity.warning(
            f"⚠️ User {identity.user_id} already clocked in on WO {identity.wo_number} ({notice}); quantity needed to clock out"
        )
        self._set(
            state=TerminalState.AWAITING_QUANTITY,
            current_user=identity.user_id,
            waiting_for_action=False,
            loading=False,
            quantity_request=identity,
            scanner_hint={"title": "Enter quantity", "detail": f"Clock out WO {identity.work_order_code}"},
        )

    def _on_quantity_confirmed(self, qty):
        identity = self.quantity_request
        if self.state != TerminalState.AWAITING_QUANTITY or identity is None:
            self.activity.warning(f"⚠️ No clock out pending; quantity {qty} ignored")
            return
        self._set(
            state=TerminalState.SUBMITTING,
            quantity_request=None,
            loading=True,
            scanner_hint=HINT_PROCESSING,
        )
        self.activity.info(f"📦 Quantity entered: {qty} for WO {identity.wo_number}")
        self._run_in_background(self._clock_out_job, identity, qty)

    def _clock_out_job(self, identity: PendingClockOut, qty):
        try:
            command_id = self.client.submit_clock_out(identity.user_id, identity.wo_number, qty)
            self._post(self.activity.info, f"⏳ Clock out command sent: {command_id}")
            result = self.client.await_completion(command_id, cancel_event=self._shutdown)
        except PollCancelled as e:
            logging.info("%s", e)
            return
        except CommunicationError as e:
            self._post(self._on_command_error, "Clock out", e)
            return
        except Exception as e:
            self._post(self._on_command_error, "Clock out", CommunicationError(str(e)))
            return
        self._post(self._on_clock_out_result, identity, qty, result)

    def _on_clock_out_result(self, identity: PendingClockOut, qty, result):
        if result.success:
            self.activity.success(f"✅ Clock out successful on WO {identity.wo_number} (qty {qty})")
            self._set(success_message=SUCCESS_CLOCK_OUT)
        elif result.timed_out:
            self._report_error(PollTimeout(f"❌ Clock out timed out on WO {identity.wo_number}: {result.message}"))
        else:
            self._report_error(CommandRejected(f"❌ Clock out failed: {result.message}", "CLOCK OUT FAILED"))
        self._reset_session()

    def _on_quantity_cancelled(self):
        identity = self.quantity_request
        if identity is None:
            logging.debug("Quantity cancel with nothing pending")
            return
        self.activity.info(f"❌ Clock out cancelled for WO {identity.wo_number}")
        self._set(error_message="", success_message="")
        self._reset_session()

    def _on_command_error(self, action, error: CommunicationError):
        self.activity.error(f"❌ {action} communication error: {error}")
        self._set(error_message=error.user_message)
        self._reset_session()

    def _report_error(self, error: TerminalError):
        self.activity.error(str(error))
        self._set(error_message=error.user_message)

    def _reset_session(self):
        self._set(
            current_user=None,
            waiting_for_action=False,
            loading=False,
            quantity_request=None,
            state=TerminalState.IDLE,
            scanner_hint=HINT_SCAN_USER,
        )

    # -- connectivity (worker) -----------------------------------------------

    def _start_health_check(self):
        self._run_in_background(self._health_job)

    def _health_job(self):
        self._post(self._on_health_result, self.client.check_health())

    def _on_health_result(self, connected):
        changed = connected != self.server_connected
        self._set(server_connected=connected)
        if changed or not self._health_reported:
            self._health_reported = True
            if connected:
                self.activity.success("✅ Server connected")
            else:
                self.activity.warning("🔴 No connection to server")
        else:
            logging.debug("Health check: connected=%s", connected)

    def _on_update_server_url(self, url):
        base_url = self.client.update_base_url(url)
        self.activity.info(f"⚙️ Server URL updated: {base_url}")
        self._health_reported = False
        self._start_health_check()
