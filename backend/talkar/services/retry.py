"""
Retry engine for async operations.

Wraps tenacity so that every provider call and every job poll in the
system goes through the same bounded retry/backoff primitive.
Stage- and provider-agnostic: an exception opts out of retries by
setting ``retryable = False`` (validation errors, rejected credentials).
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from talkar.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


class PollTimeoutError(TimeoutError):
    """Raised when a polled operation never reaches its done state."""

    def __init__(self, label: str, attempts: int):
        self.label = label
        self.attempts = attempts
        super().__init__(f"{label}: not done after {attempts} polls")


def is_retryable(error: BaseException) -> bool:
    """Retry ordinary exceptions unless they opt out via ``retryable``."""
    if not isinstance(error, Exception):
        # CancelledError and friends propagate immediately
        return False
    return getattr(error, "retryable", True)


class RetryEngine:
    """
    Bounded retries with exponential backoff, plus polling.

    Delay before retry ``i`` (0-based) is ``base_delay * 2**i``,
    capped at ``max_delay``.

    Example:
        engine = RetryEngine(max_retries=2, base_delay=0.5)
        text = await engine.run(lambda: provider.generate(request), label="openai")

        status = await engine.poll(
            lambda: client.get_job(job_id),
            is_done=lambda s: s["status"] in ("completed", "failed"),
            interval=2.0,
            max_attempts=30,
        )
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 0.5,
        max_delay: float = 4.0,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Initialize retry engine.

        Args:
            max_retries: Additional attempts after the first failure
            base_delay: Delay before the first retry (seconds)
            max_delay: Upper bound for any single delay (seconds)
            sleep: Sleep coroutine (injectable for tests)
        """
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryEngine":
        """Create engine from application settings."""
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    def delay_for(self, retry_index: int) -> float:
        """Backoff before retry number ``retry_index`` (0-based)."""
        return min(self.base_delay * (2**retry_index), self.max_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        label: str = "operation",
    ) -> T:
        """
        Run operation, retrying on failure.

        Args:
            operation: Zero-argument coroutine factory (called once per attempt)
            label: Name used in log messages

        Returns:
            Result of the first successful attempt

        Raises:
            Exception: The last error, unchanged, after retries are exhausted
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception(is_retryable),
            before_sleep=self._log_retry(label),
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                result = await operation()
        return result

    async def poll(
        self,
        operation: Callable[[], Awaitable[T]],
        is_done: Callable[[T], bool],
        interval: float = 2.0,
        max_attempts: int = 30,
        label: str = "poll",
    ) -> T:
        """
        Call operation until ``is_done(result)`` holds.

        Transient errors of a single poll are tolerated like a not-done
        result; the error of the last poll is re-raised.

        Args:
            operation: Zero-argument coroutine factory returning a status
            is_done: Predicate over the status (terminal failures count as done)
            interval: Fixed delay between polls (seconds)
            max_attempts: Maximum number of polls
            label: Name used in log messages

        Returns:
            First status for which is_done is true

        Raises:
            PollTimeoutError: If no poll reached the done state
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, max_attempts)),
            wait=wait_fixed(interval),
            retry=retry_if_result(lambda status: not is_done(status))
            | retry_if_exception(is_retryable),
            before=lambda state: logger.debug(
                f"{label}: poll {state.attempt_number}/{max_attempts}"
            ),
            sleep=self._sleep,
            reraise=True,
        )

        # Call form: tenacity only sees the returned status this way
        try:
            return await retrying(operation)
        except RetryError as e:
            raise PollTimeoutError(label, e.last_attempt.attempt_number) from e

    def _log_retry(self, label: str) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                f"{label} failed (attempt {retry_state.attempt_number}/"
                f"{self.max_retries + 1}): {error}; retrying in {delay:.2f}s"
            )

        return before_sleep
