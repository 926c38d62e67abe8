"""
core/errors.py -- Exception taxonomy for the patron authentication endpoint.

Errors that end a request early (MethodNotAllowed, AuthDisabled, ...) carry
the HTTP status and the statusMessage rendered by the app-level exception
handler in api/main.py.

InvalidCredentials never reaches that handler: the evaluator turns it into a
normal payload with request.errorMsg set.

BlockCheckUnavailable and ExpiryCheckUnavailable are recovered inside the
evaluator (fail-open) and only ever show up in the log.

UnsupportedOutputFormat is a configuration error. It is not a
PatronAuthError so it falls through to the catch-all 500 handler.
"""

from __future__ import annotations


class PatronAuthError(Exception):
    """Base class for errors that map onto an HTTP status and a status message."""

    http_status: int = 500
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class MethodNotAllowed(PatronAuthError):
    http_status = 405
    default_message = "Only POST requests are allowed"


class AuthDisabled(PatronAuthError):
    http_status = 423
    default_message = "Login not enabled"


class PermissionDenied(PatronAuthError):
    http_status = 403
    default_message = "Permission denied"


class InvalidCallback(PatronAuthError):
    http_status = 400
    default_message = "Invalid callback"


class InvalidCredentials(PatronAuthError):
    http_status = 401
    default_message = "Invalid Patron Login"


class BlockCheckUnavailable(PatronAuthError):
    default_message = "Account blocks could not be determined"


class ExpiryCheckUnavailable(PatronAuthError):
    default_message = "Account expiry could not be determined"


class UnsupportedOutputFormat(Exception):
    """Raised when a response is requested in an output mode we cannot produce."""
