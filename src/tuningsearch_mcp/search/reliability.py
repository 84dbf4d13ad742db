"""Retry engine for upstream API calls.

The engine drives repeated attempts of a caller-supplied async operation.
Every failure is mapped onto the error taxonomy and :func:`should_retry`
alone decides whether another attempt is made. Delays grow exponentially,
are capped, and get +/-25% jitter unless jitter is disabled.
"""

import asyncio
import dataclasses
import functools
import inspect
import logging
import random
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, ParamSpec, TypeVar

from tuningsearch_mcp.exceptions import TuningSearchError, coerce_error, should_retry
from tuningsearch_mcp.monitoring.metrics import record_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = ParamSpec("P")

JITTER_RATIO = 0.25


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Total number of attempts, including the first one.
        initial_delay_ms: Delay before the second attempt in milliseconds.
        max_delay_ms: Upper bound for any single delay in milliseconds.
        backoff_factor: Multiplier applied to the delay after each attempt.
        retryable_codes: Error codes forced retryable for calls using this config.
        jitter: Whether to spread delays by +/-25%.
    """

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_factor: float = 2.0
    retryable_codes: tuple[str, ...] = ()
    jitter: bool = True

    def __post_init__(self) -> None:
        """Validate parameters."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("Delays cannot be negative")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be at least 1")

    def replace(self, **overrides: Any) -> "RetryConfig":
        """Return a copy with the given non-None fields overridden."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        if "retryable_codes" in changes:
            changes["retryable_codes"] = tuple(changes["retryable_codes"])
        return dataclasses.replace(self, **changes)


@dataclass
class RetryContext:
    """Mutable state of one logical call while it is in flight."""

    start_time: float
    attempt: int = 1
    last_error: TuningSearchError | None = None


@dataclass(frozen=True)
class RetryAttempt:
    """A failed attempt that is about to be retried.

    Attributes:
        attempt: The 1-based number of the attempt that failed.
        error: The classified error of that attempt.
        delay_ms: Backoff before the next attempt.
        elapsed_ms: Time since the logical call started.
    """

    attempt: int
    error: TuningSearchError
    delay_ms: int
    elapsed_ms: float


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a logical call with per-attempt details."""

    result: T | None = None
    error: TuningSearchError | None = None
    total_attempts: int = 0
    total_elapsed_ms: float = 0.0
    attempts: list[RetryAttempt] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error is None


RetryObserver = Callable[[RetryAttempt], Any]


def calculate_delay(
    attempt: int,
    config: RetryConfig,
    rng: Callable[[], float] = random.random,
) -> int:
    """Calculate the backoff delay after a failed attempt.

    Args:
        attempt: The 1-based number of the attempt that failed.
        config: Retry configuration.
        rng: Source of uniform floats in [0, 1).

    Returns:
        Delay in whole milliseconds, never negative.
    """
    delay = min(
        config.initial_delay_ms * config.backoff_factor ** (attempt - 1),
        config.max_delay_ms,
    )
    if config.jitter:
        delay += (rng() - 0.5) * 2 * JITTER_RATIO * delay
    return round(max(0.0, delay))


class RetryEngine:
    """Runs async operations with classified retries and exponential backoff.

    Args:
        config: Default policy for calls that do not pass their own.
        sleep: Awaitable sleep used for backoff, in seconds.
        clock: Monotonic clock in seconds, used for elapsed times.
        rng: Source of uniform floats in [0, 1) for jitter.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._clock = clock
        self._rng = rng

    async def execute_with_details(
        self,
        operation: Callable[[], Awaitable[T]],
        config: RetryConfig | None = None,
        on_retry: RetryObserver | None = None,
        operation_name: str = "operation",
    ) -> RetryResult[T]:
        """Execute an async operation and report every retried attempt.

        Args:
            operation: Async callable taking no arguments.
            config: Policy for this call; defaults to the engine's policy.
            on_retry: Observer called once per backoff.
            operation_name: Name for logging.

        Returns:
            RetryResult holding either the result or the last error.
        """
        policy = config or self.config
        context = RetryContext(start_time=self._clock())
        attempts: list[RetryAttempt] = []

        while True:
            try:
                result = await operation()
            except Exception as exc:
                error = coerce_error(exc)
                context.last_error = error
                elapsed_ms = self._elapsed_ms(context)

                retry = context.attempt < policy.max_attempts and should_retry(
                    error, policy.retryable_codes
                )
                logger.log(
                    logging.WARNING if retry else logging.ERROR,
                    f"{operation_name} attempt {context.attempt}/{policy.max_attempts} failed: "
                    f"{error.code.value}: {error.message}",
                )
                if not retry:
                    return RetryResult(
                        error=error,
                        total_attempts=context.attempt,
                        total_elapsed_ms=elapsed_ms,
                        attempts=attempts,
                    )

                delay_ms = calculate_delay(context.attempt, policy, self._rng)
                retry_attempt = RetryAttempt(
                    attempt=context.attempt,
                    error=error,
                    delay_ms=delay_ms,
                    elapsed_ms=elapsed_ms,
                )
                attempts.append(retry_attempt)
                record_retry(error.code.value)
                await self._notify(on_retry, retry_attempt, operation_name)

                logger.info(
                    f"{operation_name} retrying in {delay_ms}ms "
                    f"(attempt {context.attempt + 1}/{policy.max_attempts})"
                )
                await self._sleep(delay_ms / 1000)
                context.attempt += 1
                continue

            if context.attempt > 1:
                logger.info(f"{operation_name} succeeded after {context.attempt - 1} retries")
            return RetryResult(
                result=result,
                total_attempts=context.attempt,
                total_elapsed_ms=self._elapsed_ms(context),
                attempts=attempts,
            )

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        config: RetryConfig | None = None,
        on_retry: RetryObserver | None = None,
        operation_name: str = "operation",
    ) -> T:
        """Execute an async operation with retries.

        Returns:
            The operation's result.

        Raises:
            TuningSearchError: The last error once no further attempt is allowed.
        """
        outcome = await self.execute_with_details(operation, config, on_retry, operation_name)
        if outcome.error is not None:
            if outcome.error.cause is not None:
                raise outcome.error from outcome.error.cause
            raise outcome.error
        return outcome.result  # type: ignore[return-value]

    def _elapsed_ms(self, context: RetryContext) -> float:
        return (self._clock() - context.start_time) * 1000

    @staticmethod
    async def _notify(
        on_retry: RetryObserver | None,
        attempt: RetryAttempt,
        operation_name: str,
    ) -> None:
        if on_retry is None:
            return
        try:
            outcome = on_retry(attempt)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"{operation_name} retry observer raised {type(e).__name__}: {e}")


def with_retry(
    operation: Callable[P, Awaitable[T]],
    policy: RetryConfig,
    *,
    engine: RetryEngine | None = None,
    on_retry: RetryObserver | None = None,
    retryable_codes: Iterable[str] | None = None,
) -> Callable[P, Awaitable[T]]:
    """Wrap an async callable so every call runs under a retry policy.

    Args:
        operation: The async callable to wrap.
        policy: Retry policy applied to each call.
        engine: Engine to run on; a default engine is created if omitted.
        on_retry: Observer called once per backoff.
        retryable_codes: Extra codes forced retryable for the wrapped callable.

    Returns:
        An async callable with the same signature as ``operation``.
    """
    runner = engine or RetryEngine(policy)
    if retryable_codes is not None:
        policy = policy.replace(retryable_codes=tuple(policy.retryable_codes) + tuple(retryable_codes))
    name = getattr(operation, "__qualname__", "operation")

    @functools.wraps(operation)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        return await runner.execute(
            lambda: operation(*args, **kwargs),
            policy,
            on_retry=on_retry,
            operation_name=name,
        )

    return wrapper
