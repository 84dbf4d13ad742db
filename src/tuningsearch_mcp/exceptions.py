"""Error taxonomy for the TuningSearch MCP server.

Every failure that crosses a component boundary is expressed as one of the
exceptions below. Each kind carries a stable string code, an HTTP-like status
code, a ``retryable`` flag and the time it was created, so the retry engine,
the health checks and the user-facing formatter can all decide what to do
without inspecting messages.

Exception Hierarchy:
    TuningSearchError (base)
    ├── ApiKeyError             API_KEY_ERROR        401  not retryable
    ├── RateLimitError          RATE_LIMIT_ERROR     429  retryable
    ├── NetworkError            NETWORK_ERROR        500  retryable
    ├── RequestTimeoutError     TIMEOUT_ERROR        408  retryable
    ├── ServerError             SERVER_ERROR         any  retryable when >= 500
    ├── ValidationError         VALIDATION_ERROR     400  not retryable
    ├── ConfigurationError      CONFIGURATION_ERROR  500  not retryable
    ├── SecurityError           SECURITY_ERROR       403  not retryable
    └── NotImplementedFeatureError NOT_IMPLEMENTED   501  not retryable
"""

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar


class ErrorCode(str, Enum):
    """Stable error codes, one per error kind."""

    API_KEY_ERROR = "API_KEY_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    SECURITY_ERROR = "SECURITY_ERROR"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"


class TuningSearchError(Exception):
    """Base exception for all TuningSearch errors.

    Subclasses set ``code``, ``default_status`` and ``default_retryable`` at
    class level, so retryability belongs to the kind of error rather than to
    an individual instance.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP-like status code.
        cause: Optional underlying exception that caused this error.
        timestamp: UTC time the error was created.
    """

    code: ClassVar[ErrorCode]
    default_status: ClassVar[int] = 500
    default_retryable: ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            status_code: Overrides the kind's default status code.
            cause: Optional underlying exception that caused this error.
        """
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """Whether the retry engine may try the operation again."""
        return self.default_retryable

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary suitable for structured logs.

        Returns:
            Dictionary with the error's code, message and metadata.
        """
        return {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
        }


class ApiKeyError(TuningSearchError):
    """The API key is missing, invalid or lacks permissions."""

    code = ErrorCode.API_KEY_ERROR
    default_status = 401

    def __init__(self, message: str = "Invalid or missing API key") -> None:
        super().__init__(message)


class RateLimitError(TuningSearchError):
    """The upstream API rejected the request because of rate limiting.

    Attributes:
        reset_time: When the rate limit window resets, if the upstream said so.
    """

    code = ErrorCode.RATE_LIMIT_ERROR
    default_status = 429
    default_retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        reset_time: datetime | None = None,
    ) -> None:
        self.reset_time = reset_time
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["reset_time"] = self.reset_time.isoformat() if self.reset_time else None
        return data


class NetworkError(TuningSearchError):
    """A transport-level failure, or any error that fits no other kind."""

    code = ErrorCode.NETWORK_ERROR
    default_status = 500
    default_retryable = True

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)


class RequestTimeoutError(TuningSearchError):
    """An attempt did not complete within its deadline."""

    code = ErrorCode.TIMEOUT_ERROR
    default_status = 408
    default_retryable = True

    def __init__(self, message: str = "Request timed out") -> None:
        super().__init__(message)


class ServerError(TuningSearchError):
    """The upstream API answered with an error status or a broken body.

    Server-side statuses (>= 500) are retryable, client-side ones are not.
    """

    code = ErrorCode.SERVER_ERROR

    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message, status_code=status_code)

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500


class _MessageListError(TuningSearchError):
    """Base for kinds that carry a list of detail messages."""

    def __init__(self, message: str, messages: Iterable[str] | None = None) -> None:
        self.messages = list(messages or [])
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["messages"] = list(self.messages)
        return data


class ValidationError(_MessageListError):
    """Tool arguments failed validation."""

    code = ErrorCode.VALIDATION_ERROR
    default_status = 400


class ConfigurationError(_MessageListError):
    """Server configuration is missing or invalid."""

    code = ErrorCode.CONFIGURATION_ERROR
    default_status = 500


class SecurityError(_MessageListError):
    """A request was rejected because it targets a forbidden resource."""

    code = ErrorCode.SECURITY_ERROR
    default_status = 403


class NotImplementedFeatureError(TuningSearchError):
    """The requested feature is not available."""

    code = ErrorCode.NOT_IMPLEMENTED
    default_status = 501

    def __init__(self, feature: str) -> None:
        self.feature = feature
        super().__init__(f"Feature not implemented: {feature}")


def _parse_reset_time(headers: Mapping[str, str] | None) -> datetime | None:
    if not headers:
        return None
    raw = None
    for name, value in headers.items():
        if name.lower() == "x-ratelimit-reset":
            raw = value
            break
    if raw is None:
        return None
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def create_error_from_response(
    status: int,
    body: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
    reason: str = "",
) -> TuningSearchError:
    """Map a non-2xx HTTP response to exactly one error kind.

    Args:
        status: HTTP status code.
        body: Parsed JSON error body, if any.
        headers: Response headers; ``X-RateLimit-Reset`` is read for 429s.
        reason: HTTP reason phrase, used when the body has no message.

    Returns:
        The matching TuningSearchError instance.
    """
    message = None
    if body:
        message = body.get("message")
    message = message or reason or "Unknown error"

    if status in (401, 403):
        return ApiKeyError(message)
    if status == 429:
        return RateLimitError(message, reset_time=_parse_reset_time(headers))
    if status == 408:
        return RequestTimeoutError(message)
    return ServerError(message, status_code=status)


def should_retry(error: BaseException, retryable_codes: Iterable[str] = ()) -> bool:
    """Decide whether a failed attempt may be retried.

    Args:
        error: The error raised by the attempt.
        retryable_codes: Codes forced retryable for this call only.

    Returns:
        True if the error kind is retryable or its code is in the allow-list.
    """
    if not isinstance(error, TuningSearchError):
        return False
    if error.retryable:
        return True
    codes = {code.value if isinstance(code, ErrorCode) else code for code in retryable_codes}
    return error.code.value in codes


def coerce_error(error: BaseException) -> TuningSearchError:
    """Return ``error`` as a taxonomy member.

    Unknown exceptions become ``NetworkError`` with the original message
    preserved and the original exception kept as the cause.
    """
    if isinstance(error, TuningSearchError):
        return error
    return NetworkError(str(error) or type(error).__name__, cause=error)
