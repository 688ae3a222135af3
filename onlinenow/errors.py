"""Error taxonomy shared by probes, the orchestrator and the retry queue."""

import errno
import socket
from enum import Enum

import requests


class ErrorKind(Enum):
    """Classified failure reasons carried by probe results."""

    NO_CONNECTIVITY = "no_connectivity"
    TIMEOUT = "timeout"
    CONNECTION_LOST = "connection_lost"
    INVALID_RESPONSE = "invalid_response"
    CAPTIVE_PORTAL_DETECTED = "captive_portal_detected"
    VERIFICATION_FAILED = "verification_failed"
    UNKNOWN = "unknown"

    @property
    def message(self) -> str:
        """Short human-readable description."""
        return _MESSAGES[self]


_MESSAGES = {
    ErrorKind.NO_CONNECTIVITY: "No internet connection",
    ErrorKind.TIMEOUT: "Request timed out",
    ErrorKind.CONNECTION_LOST: "Connection lost",
    ErrorKind.INVALID_RESPONSE: "Invalid response from server",
    ErrorKind.CAPTIVE_PORTAL_DETECTED: "Behind captive portal",
    ErrorKind.VERIFICATION_FAILED: "Result could not be verified",
    ErrorKind.UNKNOWN: "Unknown error",
}

_UNREACHABLE_ERRNOS = {
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.ENETDOWN,
    errno.EADDRNOTAVAIL,
}


def classify_request_error(exc: BaseException, transfer_started: bool = False) -> ErrorKind:
    """Map a requests exception to an ErrorKind.

    Args:
        exc: Exception raised by requests (or the underlying stream)
        transfer_started: True if response bytes had already been received.
                          Any connection failure after that point is a lost
                          connection rather than missing connectivity.

    Returns:
        Classified error kind
    """
    if isinstance(exc, requests.exceptions.Timeout):
        return ErrorKind.TIMEOUT
    if isinstance(exc, requests.exceptions.ChunkedEncodingError):
        return ErrorKind.CONNECTION_LOST
    if isinstance(exc, requests.exceptions.ConnectionError):
        # iter_content() re-raises urllib3 read timeouts as ConnectionError
        if "timed out" in str(exc).lower():
            return ErrorKind.TIMEOUT
        return ErrorKind.CONNECTION_LOST if transfer_started else ErrorKind.NO_CONNECTIVITY
    if isinstance(exc, (requests.exceptions.InvalidURL, requests.exceptions.TooManyRedirects)):
        return ErrorKind.INVALID_RESPONSE
    if isinstance(exc, (ConnectionResetError, ConnectionAbortedError)):
        return ErrorKind.CONNECTION_LOST
    return ErrorKind.UNKNOWN


def classify_socket_error(exc: BaseException) -> ErrorKind:
    """Map a socket-level exception to an ErrorKind."""
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, socket.gaierror):
        return ErrorKind.NO_CONNECTIVITY
    if isinstance(exc, (ConnectionResetError, ConnectionAbortedError)):
        return ErrorKind.CONNECTION_LOST
    if isinstance(exc, OSError) and exc.errno in _UNREACHABLE_ERRNOS:
        return ErrorKind.NO_CONNECTIVITY
    return ErrorKind.UNKNOWN


class OnlineNowError(Exception):
    """Base class for errors raised by this package."""

    kind = ErrorKind.UNKNOWN


class VerificationFailed(OnlineNowError):
    """Raised by queue consumers when a result cannot be trusted."""

    kind = ErrorKind.VERIFICATION_FAILED


class RetryError(OnlineNowError):
    """Base class for failures reported by the resilient operation queue."""


class MaxRetriesExceeded(RetryError):
    """Every attempt failed."""

    def __init__(self, attempts: int, last_error: BaseException | None = None):
        self.attempts = attempts
        self.last_error = last_error
        detail = str(last_error) if last_error is not None else "Unknown"
        super().__init__(f"Failed after {attempts} attempts. Last error: {detail}")


class OperationTimeout(RetryError):
    """The configured overall timeout elapsed."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str = "Operation timed out"):
        super().__init__(message)


class OperationCancelled(RetryError):
    """The operation was cancelled before it could run."""

    def __init__(self, message: str = "Operation was cancelled"):
        super().__init__(message)
