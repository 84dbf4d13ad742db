"""Turning taxonomy errors into log records and user-facing text."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from tuningsearch_mcp.exceptions import (
    ApiKeyError,
    ConfigurationError,
    ErrorCode,
    NetworkError,
    NotImplementedFeatureError,
    RateLimitError,
    RequestTimeoutError,
    SecurityError,
    ServerError,
    TuningSearchError,
    ValidationError,
    coerce_error,
)
from tuningsearch_mcp.monitoring.metrics import track_error

logger = logging.getLogger(__name__)

API_KEY_MESSAGE = "API key is missing or invalid. Please check your configuration."

_SECRET_PATTERN = re.compile(r"[a-zA-Z0-9]{32,}")
_URL_PATTERN = re.compile(r"https?://\S+")

DEFAULT_LOG_LEVELS: dict[ErrorCode, int] = {
    ErrorCode.API_KEY_ERROR: logging.WARNING,
    ErrorCode.RATE_LIMIT_ERROR: logging.WARNING,
    ErrorCode.NETWORK_ERROR: logging.ERROR,
    ErrorCode.TIMEOUT_ERROR: logging.WARNING,
    ErrorCode.SERVER_ERROR: logging.ERROR,
    ErrorCode.VALIDATION_ERROR: logging.WARNING,
    ErrorCode.CONFIGURATION_ERROR: logging.ERROR,
    ErrorCode.SECURITY_ERROR: logging.WARNING,
    ErrorCode.NOT_IMPLEMENTED: logging.WARNING,
}


@dataclass
class FormattedError:
    """An error prepared for the tool caller."""

    code: str
    message: str
    retryable: bool
    timestamp: str
    context: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
        }
        if self.context:
            data["context"] = "\n".join(self.context)
        return data


def sanitize_message(message: str) -> str:
    """Redact token-like strings and URLs from an error message."""
    message = _SECRET_PATTERN.sub("[REDACTED]", message)
    return _URL_PATTERN.sub("[URL_REDACTED]", message)


def remediation_hints(error: TuningSearchError) -> list[str]:
    """Kind-specific suggestions shown under an error message."""
    match error:
        case ApiKeyError():
            return [
                "Please verify your API key is correctly configured",
                "Check that the API key has the necessary permissions",
            ]
        case RateLimitError(reset_time=reset_time):
            hints = ["Please wait before making additional requests"]
            if reset_time is not None:
                hints.append(f"Rate limit resets at: {reset_time.isoformat()}")
            return hints
        case NetworkError():
            return [
                "Check your internet connection",
                "Verify the API endpoint is accessible",
            ]
        case RequestTimeoutError():
            return [
                "The request took too long to complete",
                "Try again or increase the timeout value",
            ]
        case ServerError(status_code=status) if status >= 500:
            return ["The TuningSearch service is having problems, try again later"]
        case ServerError():
            return ["The TuningSearch API rejected the request"]
        case ValidationError(messages=messages) if messages:
            return ["Validation errors:", *(f"- {m}" for m in messages)]
        case ConfigurationError(messages=messages) if messages:
            return ["Configuration errors:", *(f"- {m}" for m in messages)]
        case SecurityError(messages=messages) if messages:
            return ["Request rejected:", *(f"- {m}" for m in messages)]
        case NotImplementedFeatureError():
            return ["This feature is not available yet"]
        case _:
            return []


class ErrorHandler:
    """Logs errors at a per-code level and formats them for callers.

    Args:
        sanitize: Whether to redact secrets and URLs from messages.
        log_levels: Log level per error code.
        custom_messages: Messages replacing the error's own, per code.
    """

    def __init__(
        self,
        sanitize: bool = True,
        log_levels: dict[ErrorCode, int] | None = None,
        custom_messages: dict[ErrorCode, str] | None = None,
    ) -> None:
        self.sanitize = sanitize
        self.log_levels = {**DEFAULT_LOG_LEVELS, **(log_levels or {})}
        self.custom_messages = dict(custom_messages or {})

    def handle_error(
        self,
        error: BaseException,
        context: str | None = None,
        component: str = "unknown",
    ) -> FormattedError:
        """Log an error and format it for the caller.

        Args:
            error: Any exception; non-taxonomy errors become NetworkError.
            context: Optional description of what was being done.
            component: Operation name used as the metrics label.

        Returns:
            FormattedError with message, retryability and hints.
        """
        processed = coerce_error(error)
        self.log_error(processed, context, component)
        return self.format_error(processed, context)

    def log_error(self, error: TuningSearchError, context: str | None = None, component: str = "unknown") -> None:
        level = self.log_levels.get(error.code, logging.ERROR)
        logger.log(
            level,
            f"TuningSearch error {error.code.value} ({error.status_code}): {error.message}"
            + (f" [{context}]" if context else ""),
        )
        track_error(error.code.value, component)

    def format_error(self, error: TuningSearchError, context: str | None = None) -> FormattedError:
        custom = self.custom_messages.get(error.code)
        message = custom or error.message
        if self.sanitize:
            message = sanitize_message(message)
            if isinstance(error, ApiKeyError) and custom is None:
                message = API_KEY_MESSAGE

        hints = [f"Context: {context}"] if context else []
        hints.extend(remediation_hints(error))
        return FormattedError(
            code=error.code.value,
            message=message,
            retryable=error.retryable,
            timestamp=error.timestamp.isoformat(),
            context=hints,
        )

    def create_user_message(
        self,
        error: BaseException,
        context: str | None = None,
        component: str = "unknown",
    ) -> str:
        """Render an error as the text returned by a tool call."""
        formatted = self.handle_error(error, context, component)
        message = f"Error: {formatted.message}"
        if formatted.context:
            message += "\n\n" + "\n".join(formatted.context)
        if formatted.retryable:
            message += "\n\nThis operation can be retried."
        return message

    @staticmethod
    def should_report(error: BaseException) -> bool:
        """Whether an error is worth reporting to external monitoring.

        User mistakes and expected throttling are not.
        """
        match coerce_error(error):
            case ValidationError() | ApiKeyError() | RateLimitError():
                return False
            case _:
                return True
