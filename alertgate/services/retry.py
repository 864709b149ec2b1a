# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: retry with bounded exponential backoff (tenacity-driven).

Attempt 1 runs immediately; attempt n waits
``min(base_delay * multiplier ** (n - 2), max_delay)`` first. The whole
multi-attempt sequence honours one CancellationToken: a cancelled or expired
token ends a backoff sleep at once and stops further attempts.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from alertgate.core.logging import get_logger
from alertgate.metrics import WEBHOOK_RETRIES

logger = get_logger(__name__)

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"max retry attempts ({attempts}) exceeded, last error: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class RetryCancelledError(Exception):
    """The retry sequence was cancelled or ran past its deadline."""

    retryable = False

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        detail = f", last error: {last_error}" if last_error is not None else ""
        super().__init__(f"operation cancelled after {attempts} attempt(s){detail}")
        self.attempts = attempts
        self.last_error = last_error


class CancellationToken:
    """Thread-safe cancel flag with an optional monotonic deadline."""

    def __init__(self, deadline: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._event = threading.Event()
        self._deadline = deadline
        self._clock = clock

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True means the token fired meanwhile."""
        remaining = self.remaining()
        if remaining is not None and remaining <= timeout:
            self._event.wait(remaining)
            return True
        return self._event.wait(timeout) or self.cancelled


def default_is_retryable(error: BaseException) -> bool:
    """Transient unless the error says otherwise or is a validation failure."""
    retryable = getattr(error, "retryable", None)
    if retryable is not None:
        return bool(retryable)
    # ValueError covers pydantic's ValidationError.
    if isinstance(error, ValueError):
        return False
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration; immutable for the duration of a call.

    max_attempts is the TOTAL number of tries including the first one.
    """

    max_attempts: int = 3
    base_delay: float = 0.1  # seconds
    max_delay: float = 5.0  # seconds
    multiplier: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.multiplier <= 1:
            raise ValueError("multiplier must be > 1")
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValueError("delays must satisfy 0 <= base_delay <= max_delay")

    def delay_before(self, attempt: int) -> float:
        """Backoff slept before ``attempt`` (1-indexed)."""
        if attempt <= 1:
            return 0.0
        return min(self.base_delay * self.multiplier ** (attempt - 2), self.max_delay)


class RetryExecutor:
    """Runs an operation under a RetryPolicy.

    Example:
        executor = RetryExecutor(RetryPolicy(max_attempts=3, base_delay=0.2))
        executor.execute(lambda: processor.process_webhook(webhook),
                         cancel=CancellationToken.with_timeout(30))
    """

    def __init__(
        self,
        policy: RetryPolicy,
        is_retryable: Callable[[BaseException], bool] = default_is_retryable,
    ):
        self._policy = policy
        self._is_retryable = is_retryable

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def execute(self, operation: Callable[[], T],
                cancel: Optional[CancellationToken] = None) -> T:
        """Return the first successful result of ``operation``.

        Raises:
            RetryExhaustedError: every attempt failed with a retryable error.
            RetryCancelledError: ``cancel`` fired before the sequence finished.
            Exception: the operation's own error when it is not retryable.
        """
        token = cancel or CancellationToken()
        attempt = 0
        last_error: Optional[BaseException] = None

        def should_retry(error: BaseException) -> bool:
            if isinstance(error, RetryCancelledError):
                return False
            return self._is_retryable(error)

        def sleep(delay: float):
            if token.wait(delay):
                raise RetryCancelledError(attempt, last_error)

        def before_sleep(retry_state: RetryCallState):
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            error = retry_state.outcome.exception()
            WEBHOOK_RETRIES.inc()
            logger.warning(
                "Attempt %d/%d failed, retrying in %.3fs: %s",
                retry_state.attempt_number, self._policy.max_attempts, delay, error,
                extra={"context": {"attempt": retry_state.attempt_number, "delay": delay}},
            )

        retrying = Retrying(
            stop=stop_after_attempt(self._policy.max_attempts),
            wait=wait_exponential(
                multiplier=self._policy.base_delay,
                exp_base=self._policy.multiplier,
                max=self._policy.max_delay,
            ),
            retry=retry_if_exception(should_retry),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=False,  # RetryError is converted to RetryExhaustedError below
        )

        try:
            for attempt_state in retrying:
                if token.cancelled:
                    raise RetryCancelledError(attempt, last_error)
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return operation()
                    except Exception as exc:
                        last_error = exc
                        if token.cancelled:
                            raise RetryCancelledError(attempt, exc) from exc
                        raise
        except RetryError as exc:
            final_error = last_error or exc.last_attempt.exception()
            raise RetryExhaustedError(attempt, final_error) from final_error

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
