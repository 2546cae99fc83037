"""Error taxonomy for the clock terminal.

Every error carries a short, fixed ``user_message`` for the operator display;
the exception text itself keeps the full detail for the activity log.
"""


class TerminalError(Exception):
    """Base class for all terminal errors"""
    user_message = "ERROR"


class ConfigurationError(TerminalError):
    user_message = "CONFIGURATION ERROR"


class InvalidFormat(TerminalError):
    """Scanned code matches no known barcode pattern"""
    user_message = "INVALID BARCODE FORMAT"


class UnknownOperation(TerminalError):
    """Work order code is well formed but its operation id is not in the table"""
    user_message = "UNKNOWN OPERATION ID"


class NoActiveUser(TerminalError):
    user_message = "PLEASE SCAN YOUR USER ID FIRST"


class ServerUnavailable(TerminalError):
    user_message = "SERVER NOT AVAILABLE"


class CommandRejected(TerminalError):
    """Server resolved a command as failed"""
    user_message = "COMMAND FAILED"

    def __init__(self, message, user_message=None):
        super().__init__(message)
        if user_message:
            self.user_message = user_message


class DuplicateClockIn(TerminalError):
    """Server reports an active clock-in already exists; a clock-out is needed"""
    user_message = "ENTER QUANTITY TO CLOCK OUT"


class CommunicationError(TerminalError):
    """Transport, HTTP or envelope failure talking to the command queue"""
    user_message = "COMMUNICATION ERROR"


class PollTimeout(TerminalError):
    user_message = "SERVER TIMEOUT"


class PollCancelled(TerminalError):
    """Raised out of a poll loop when the terminal is shutting down"""
    user_message = "CANCELLED"


class InvalidQuantity(TerminalError, ValueError):
    user_message = "QUANTITY MUST BE GREATER THAN 0"
