"""Error taxonomy shared by the pool, executor and HTTP layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


class QualyticsError(Exception):
    """Base class; carries the fields used to build an API error response."""

    code = "INTERNAL_ERROR"
    status_code = 500
    user_message = "An unexpected error occurred. Please try again later."
    retryable = False

    def __init__(self, message: str, *, code: str | None = None, user_message: str | None = None,
                 retryable: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if user_message is not None:
            self.user_message = user_message
        if retryable is not None:
            self.retryable = retryable


class ConfigurationError(QualyticsError, ValueError):
    """Invalid connection settings or process settings."""

    code = "VALIDATION_ERROR"
    status_code = 400
    user_message = "The connection settings are incomplete or invalid."


class NotConnectedError(QualyticsError):
    """No configuration was supplied and none is stored."""

    code = "AUTH_FAILED"
    status_code = 401
    user_message = "Please connect to Snowflake first."

    def __init__(self, message: str = "Not connected to Snowflake") -> None:
        super().__init__(message)


class ConnectionFailedError(QualyticsError):
    """The driver could not open a session."""

    code = "CONNECTION_FAILED"
    status_code = 503
    user_message = "Unable to connect to Snowflake. Please check your connection settings."
    retryable = True

    def __init__(self, message: str, *, errno: int | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.errno = errno

    @classmethod
    def from_driver(cls, exc: BaseException) -> "ConnectionFailedError":
        errno = _errno_of(exc)
        message = _message_of(exc)
        lowered = message.lower()
        if errno == 390100 or "incorrect username or password" in lowered:
            return cls(
                message,
                errno=errno,
                code="AUTH_INVALID_CREDENTIALS",
                user_message="Invalid Snowflake credentials. Please check your username and password.",
                retryable=False,
            )
        if errno == 390114 or "expired" in lowered:
            return cls(
                message,
                errno=errno,
                code="AUTH_EXPIRED",
                user_message="Your Snowflake session has expired. Please reconnect.",
                retryable=False,
            )
        if "timeout" in lowered or "timed out" in lowered:
            return cls(
                message,
                errno=errno,
                code="CONNECTION_TIMEOUT",
                user_message="Connection to Snowflake timed out. Please try again.",
            )
        return cls(message, errno=errno)


class PoolExhaustedError(QualyticsError):
    """No connection capacity became available in time."""

    code = "SERVICE_UNAVAILABLE"
    status_code = 503
    user_message = "All warehouse connections are busy. Please try again shortly."
    retryable = True


class QueryError(QualyticsError):
    """A statement failed; keeps the warehouse error number and message verbatim."""

    code = "QUERY_FAILED"
    status_code = 500
    user_message = "The query failed."

    def __init__(self, message: str, *, errno: int | None = None, sqlstate: str | None = None,
                 **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.errno = errno
        self.sqlstate = sqlstate

    @classmethod
    def from_driver(cls, exc: BaseException) -> "QueryError":
        errno = _errno_of(exc)
        sqlstate = getattr(exc, "sqlstate", None)
        message = _message_of(exc)
        lowered = message.lower()
        # Error numbers take precedence over message text
        kind = _QUERY_ERRNOS.get(errno) if errno is not None else None
        if kind is None:
            kind = next((name for name, needles in _QUERY_MESSAGES if any(n in lowered for n in needles)), None)
        if kind is None:
            return cls(message, errno=errno, sqlstate=sqlstate, user_message=message)
        code, hint, retryable = _QUERY_KINDS[kind]
        return cls(message, errno=errno, sqlstate=sqlstate, code=code, user_message=hint, retryable=retryable)

    @classmethod
    def syntax(cls, message: str, *, sqlstate: str = "42000") -> "QueryError":
        """A statement rejected locally, before it reached the warehouse."""
        code, hint, retryable = _QUERY_KINDS["syntax"]
        return cls(message, errno=1003, sqlstate=sqlstate, code=code, user_message=hint, retryable=retryable)


_QUERY_KINDS = {
    "timeout": ("QUERY_TIMEOUT", "Query took too long to execute. Please try again.", True),
    "not_found": ("DATA_NOT_FOUND", "Requested data not found in Snowflake.", False),
    "permission": ("QUERY_PERMISSION_DENIED", "Permission denied. Please check your Snowflake role permissions.", False),
    "syntax": ("QUERY_SYNTAX_ERROR", "Invalid query syntax.", False),
}
_QUERY_ERRNOS = {630: "timeout", 2003: "not_found", 3001: "permission", 1003: "syntax"}
_QUERY_MESSAGES = (
    ("timeout", ("statement timeout", "execution time exceeded")),
    ("not_found", ("does not exist",)),
    ("permission", ("insufficient privileges", "access denied")),
    ("syntax", ("sql compilation error", "syntax error")),
)


def _errno_of(exc: BaseException) -> int | None:
    errno = getattr(exc, "errno", None)
    if isinstance(errno, int) and errno > 0:
        return errno
    return None


def _message_of(exc: BaseException) -> str:
    # snowflake.connector errors keep the bare server message in ``msg``
    msg = getattr(exc, "msg", None)
    if isinstance(msg, str) and msg:
        return msg
    return str(exc) or type(exc).__name__


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Build the JSON error envelope returned by every API route."""
    if isinstance(exc, QualyticsError):
        code, message, user_message, retryable = exc.code, exc.message, exc.user_message, exc.retryable
    else:
        code = QualyticsError.code
        message = str(exc) or type(exc).__name__
        user_message = QualyticsError.user_message
        retryable = True
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "userMessage": user_message,
        },
        "metadata": {
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "retryable": retryable,
        },
    }


def status_code_for(exc: BaseException) -> int:
    if isinstance(exc, QualyticsError):
        return exc.status_code
    return 500


__all__ = [
    "ConfigurationError",
    "ConnectionFailedError",
    "NotConnectedError",
    "PoolExhaustedError",
    "QualyticsError",
    "QueryError",
    "error_payload",
    "status_code_for",
]
