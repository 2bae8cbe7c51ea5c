"""Error taxonomy and translation for the Conductor MCP server.

Every failure that leaves the core is a ConductorError tagged with an
ErrorKind. Raw transport failures (httpx status errors, connection errors,
timeouts) are converted exactly once by the translator below.
"""

import functools
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, NoReturn, ParamSpec, TypeVar

import httpx

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


class ErrorKind(str, Enum):
    """Closed set of domain error kinds."""

    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMIT = "rate_limit"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    GENERIC = "generic"


# Suggested remedies surfaced alongside the message
DEFAULT_ACTIONS: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "Check the tool arguments and try again",
    ErrorKind.AUTHENTICATION: (
        "Check CONDUCTOR_SECRET_KEY or run 'python -m qbconductor_mcp.auth' to store it"
    ),
    ErrorKind.PERMISSION: "Verify the end-user ID and its permissions in Conductor",
    ErrorKind.NOT_FOUND: "Verify the ID exists for this end-user",
    ErrorKind.CONFLICT: "Fetch the record again to get its current revision number, then retry",
    ErrorKind.RATE_LIMIT: "Please wait before making more requests",
    ErrorKind.UPSTREAM_UNAVAILABLE: (
        "Ensure QuickBooks Desktop is running with the company file open "
        "and the Web Connector is connected"
    ),
}

STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.AUTHENTICATION,
    403: ErrorKind.PERMISSION,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    429: ErrorKind.RATE_LIMIT,
    502: ErrorKind.UPSTREAM_UNAVAILABLE,
    503: ErrorKind.UPSTREAM_UNAVAILABLE,
    504: ErrorKind.UPSTREAM_UNAVAILABLE,
}

UPSTREAM_UNAVAILABLE_MESSAGE = (
    "QuickBooks Desktop is not connected or not responding. "
    "Please ensure QuickBooks is running and connected."
)


class ConductorError(Exception):
    """Single error type for all failures surfaced by the server.

    The ``kind`` attribute is the discriminant; callers branch on it rather
    than on subclasses.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        details: Any = None,
        action: str | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            kind: Error kind discriminant.
            message: Human-readable error message.
            status_code: HTTP status of the upstream response, if any.
            code: Machine-readable error code from the upstream API.
            details: Structured details (upstream body, field errors).
            action: Suggested action; defaults per kind.
        """
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details
        self.action = action if action is not None else DEFAULT_ACTIONS.get(kind)

    def __repr__(self) -> str:
        return (
            f"ConductorError(kind={self.kind.value!r}, message={self.message!r}, "
            f"status_code={self.status_code!r})"
        )

    @property
    def is_connectivity_error(self) -> bool:
        """True for transport failures that never produced an HTTP response."""
        return self.kind is ErrorKind.GENERIC and self.status_code is None and (
            self.code in ("NETWORK_ERROR", "TIMEOUT")
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured error responses."""
        result: dict[str, Any] = {
            "error": self.message,
            "error_kind": self.kind.value,
        }
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.code:
            result["code"] = self.code
        if self.action:
            result["action"] = self.action
        return result


class ValidationError(ConductorError):
    """Malformed tool input. Raised before any upstream call is made."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(ErrorKind.VALIDATION, message, details=details)


def _extract_error_body(response: httpx.Response) -> tuple[str | None, str | None, Any]:
    """Pull message, code and body out of an upstream error response.

    Conductor answers with ``{"error": {"message", "userFacingMessage", "code"}}``;
    a flat ``{"message", "code"}`` body is accepted too.
    """
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return (text or None), None, None

    if not isinstance(body, dict):
        return None, None, body

    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("userFacingMessage") or error.get("message")
        return message, error.get("code"), body

    return body.get("message"), body.get("code"), body


def _from_response(response: httpx.Response, fallback: str) -> ConductorError:
    status = response.status_code
    message, code, body = _extract_error_body(response)
    message = message or fallback
    kind = STATUS_KINDS.get(status, ErrorKind.GENERIC)

    if kind is ErrorKind.VALIDATION:
        message = f"Bad request: {message}"
    elif kind is ErrorKind.UPSTREAM_UNAVAILABLE:
        logger.warning(f"QuickBooks Desktop connection error ({status})")
        message = UPSTREAM_UNAVAILABLE_MESSAGE
    elif kind is ErrorKind.CONFLICT and not code:
        code = "CONFLICT_ERROR"

    return ConductorError(kind, message, status_code=status, code=code, details=body)


def to_domain_error(exc: BaseException) -> ConductorError:
    """Convert any exception into a ConductorError without raising it.

    Already-translated errors are returned unchanged.
    """
    if isinstance(exc, ConductorError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        return _from_response(exc.response, str(exc))

    if isinstance(exc, httpx.TimeoutException):
        return ConductorError(
            ErrorKind.GENERIC,
            "Request timed out. The API may be experiencing issues.",
            code="TIMEOUT",
            action="Try again in a moment",
        )

    if isinstance(exc, httpx.TransportError):
        return ConductorError(
            ErrorKind.GENERIC,
            "Network connection failed. Please check your internet connection.",
            code="NETWORK_ERROR",
            action="Check your network connection and try again",
        )

    return ConductorError(ErrorKind.GENERIC, str(exc) or "Unknown error occurred")


def translate_error(exc: BaseException) -> NoReturn:
    """Translate a raw failure into a ConductorError and raise it."""
    error = to_domain_error(exc)
    if error is not exc:
        logger.error(
            f"API error occurred: {error.message} "
            f"(kind={error.kind.value}, status={error.status_code})"
        )
        raise error from exc
    raise error


def with_error_handling(
    func: Callable[P, Awaitable[R]],
) -> Callable[P, Awaitable[R]]:
    """Ensure a coroutine's failures pass through translation exactly once."""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await func(*args, **kwargs)
        except ConductorError:
            raise
        except Exception as e:
            translate_error(e)

    return wrapper
