"""
Retry executor — Unit Tests
===========================
Run:  pytest test_retry.py -v
"""
import threading
import time
from unittest.mock import MagicMock

import pytest
from prometheus_client import REGISTRY
from pydantic import BaseModel, ValidationError

from alertgate.core.exceptions import PermanentProcessingError, TransientProcessingError
from alertgate.services.circuit_breaker import CircuitOpenError, CircuitState
from alertgate.services.retry import (
    CancellationToken,
    RetryCancelledError,
    RetryExecutor,
    RetryExhaustedError,
    RetryPolicy,
    default_is_retryable,
)
from conftest import FakeClock

FAST_POLICY = RetryPolicy(max_attempts=3, base_delay=0.2, max_delay=2.0, multiplier=2.0)


class RecordingToken(CancellationToken):
    """Never actually sleeps; remembers every backoff it was asked for."""

    def __init__(self, fire_on_wait: bool = False):
        super().__init__()
        self.waits = []
        self._fire_on_wait = fire_on_wait

    def wait(self, timeout: float) -> bool:
        self.waits.append(timeout)
        return self._fire_on_wait


def _failing(*errors):
    """MagicMock raising ``errors`` in order, then returning "ok"."""
    return MagicMock(side_effect=[*errors, "ok"])


# ═══════════════════════════════════════════════════════════════════════════
# POLICY
# ═══════════════════════════════════════════════════════════════════════════
class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.multiplier == 2.0

    @pytest.mark.parametrize("kwargs", [
        {"max_attempts": 0},
        {"multiplier": 1.0},
        {"base_delay": -1},
        {"base_delay": 3.0, "max_delay": 1.0},
    ])
    def test_rejects_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_delay_before_each_attempt(self):
        assert FAST_POLICY.delay_before(1) == 0.0
        assert FAST_POLICY.delay_before(2) == pytest.approx(0.2)
        assert FAST_POLICY.delay_before(3) == pytest.approx(0.4)

    def test_delay_is_capped(self):
        policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=3.0, multiplier=10.0)
        assert policy.delay_before(4) == 3.0


# ═══════════════════════════════════════════════════════════════════════════
# RETRYABILITY
# ═══════════════════════════════════════════════════════════════════════════
class _Model(BaseModel):
    n: int


class TestDefaultIsRetryable:
    def test_transient_error_is_retryable(self):
        assert default_is_retryable(TransientProcessingError("503")) is True

    def test_permanent_error_is_not_retryable(self):
        assert default_is_retryable(PermanentProcessingError("400")) is False

    def test_open_circuit_is_retryable(self):
        assert default_is_retryable(CircuitOpenError("x", CircuitState.OPEN)) is True

    def test_validation_errors_are_not_retryable(self):
        with pytest.raises(ValidationError) as exc_info:
            _Model(n="not a number")
        assert default_is_retryable(exc_info.value) is False
        assert default_is_retryable(ValueError("bad")) is False

    def test_unknown_errors_are_retryable(self):
        assert default_is_retryable(ConnectionError("reset")) is True
        assert default_is_retryable(RuntimeError("boom")) is True


# ═══════════════════════════════════════════════════════════════════════════
# EXECUTION
# ═══════════════════════════════════════════════════════════════════════════
class TestExecute:
    def test_first_success_runs_once(self):
        token = RecordingToken()
        operation = MagicMock(return_value=42)
        assert RetryExecutor(FAST_POLICY).execute(operation, cancel=token) == 42
        assert operation.call_count == 1
        assert token.waits == []

    def test_succeeds_on_third_attempt_with_exponential_backoff(self):
        token = RecordingToken()
        operation = _failing(TransientProcessingError("a"), TransientProcessingError("b"))
        assert RetryExecutor(FAST_POLICY).execute(operation, cancel=token) == "ok"
        assert operation.call_count == 3
        assert token.waits == [pytest.approx(0.2), pytest.approx(0.4)]

    def test_exhaustion_reports_attempts_and_last_error(self):
        token = RecordingToken()
        last = TransientProcessingError("third")
        operation = MagicMock(side_effect=[
            TransientProcessingError("first"), TransientProcessingError("second"), last,
        ])
        with pytest.raises(RetryExhaustedError) as exc_info:
            RetryExecutor(FAST_POLICY).execute(operation, cancel=token)
        assert operation.call_count == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is last
        assert "max retry attempts (3) exceeded" in str(exc_info.value)
        assert len(token.waits) == 2

    def test_backoff_never_exceeds_max_delay(self):
        token = RecordingToken()
        policy = RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=3.0, multiplier=10.0)
        operation = MagicMock(side_effect=RuntimeError("down"))
        with pytest.raises(RetryExhaustedError):
            RetryExecutor(policy).execute(operation, cancel=token)
        assert token.waits == [pytest.approx(1.0), pytest.approx(3.0), pytest.approx(3.0)]

    def test_single_attempt_policy_never_sleeps(self):
        token = RecordingToken()
        operation = MagicMock(side_effect=RuntimeError("down"))
        with pytest.raises(RetryExhaustedError) as exc_info:
            RetryExecutor(RetryPolicy(max_attempts=1)).execute(operation, cancel=token)
        assert exc_info.value.attempts == 1
        assert token.waits == []

    def test_non_retryable_error_propagates_immediately(self):
        token = RecordingToken()
        error = PermanentProcessingError("rejected")
        operation = MagicMock(side_effect=error)
        with pytest.raises(PermanentProcessingError) as exc_info:
            RetryExecutor(FAST_POLICY).execute(operation, cancel=token)
        assert exc_info.value is error
        assert operation.call_count == 1
        assert token.waits == []

    def test_custom_retryability_predicate(self):
        operation = MagicMock(side_effect=KeyError("missing"))
        executor = RetryExecutor(FAST_POLICY, is_retryable=lambda e: not isinstance(e, KeyError))
        with pytest.raises(KeyError):
            executor.execute(operation, cancel=RecordingToken())
        assert operation.call_count == 1

    def test_each_scheduled_retry_is_counted(self):
        before = REGISTRY.get_sample_value("webhook_retries_total") or 0.0
        operation = _failing(RuntimeError("1"), RuntimeError("2"))
        RetryExecutor(FAST_POLICY).execute(operation, cancel=RecordingToken())
        assert REGISTRY.get_sample_value("webhook_retries_total") - before == 2

    def test_works_without_a_token(self):
        policy = RetryPolicy(max_attempts=2, base_delay=0.01, max_delay=0.01)
        operation = _failing(RuntimeError("once"))
        assert RetryExecutor(policy).execute(operation) == "ok"


# ═══════════════════════════════════════════════════════════════════════════
# CANCELLATION
# ═══════════════════════════════════════════════════════════════════════════
class TestCancellation:
    def test_cancelled_before_start_never_invokes(self):
        token = CancellationToken()
        token.cancel()
        operation = MagicMock()
        with pytest.raises(RetryCancelledError) as exc_info:
            RetryExecutor(FAST_POLICY).execute(operation, cancel=token)
        operation.assert_not_called()
        assert exc_info.value.attempts == 0

    def test_cancelled_during_backoff(self):
        token = RecordingToken(fire_on_wait=True)
        error = RuntimeError("down")
        operation = MagicMock(side_effect=error)
        with pytest.raises(RetryCancelledError) as exc_info:
            RetryExecutor(FAST_POLICY).execute(operation, cancel=token)
        assert operation.call_count == 1
        assert exc_info.value.attempts == 1
        assert exc_info.value.last_error is error

    def test_cancel_interrupts_a_long_sleep(self):
        token = CancellationToken()
        policy = RetryPolicy(max_attempts=3, base_delay=10.0, max_delay=10.0)
        operation = MagicMock(side_effect=RuntimeError("down"))
        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        started = time.monotonic()
        try:
            with pytest.raises(RetryCancelledError):
                RetryExecutor(policy).execute(operation, cancel=token)
        finally:
            timer.cancel()
        assert time.monotonic() - started < 5.0
        assert operation.call_count == 1

    def test_deadline_passing_mid_attempt_stops_retries(self):
        clock = FakeClock()
        token = CancellationToken(deadline=clock() + 1.0, clock=clock)

        def slow_failure():
            clock.advance(2.0)
            raise RuntimeError("too slow")

        with pytest.raises(RetryCancelledError) as exc_info:
            RetryExecutor(FAST_POLICY).execute(slow_failure, cancel=token)
        assert exc_info.value.attempts == 1
        assert isinstance(exc_info.value.last_error, RuntimeError)

    def test_cancelled_error_is_not_retryable(self):
        assert default_is_retryable(RetryCancelledError(1)) is False


class TestCancellationToken:
    def test_fresh_token_is_live(self):
        token = CancellationToken()
        assert token.cancelled is False
        assert token.remaining() is None

    def test_cancel(self):
        token = CancellationToken()
        token.cancel()
        assert token.cancelled is True
        assert token.wait(5.0) is True

    def test_deadline(self):
        clock = FakeClock()
        token = CancellationToken(deadline=clock() + 10, clock=clock)
        assert token.remaining() == 10
        clock.advance(10)
        assert token.cancelled is True
        assert token.remaining() == 0.0

    def test_wait_returns_false_when_nothing_fires(self):
        assert CancellationToken().wait(0.01) is False

    def test_wait_stops_at_the_deadline(self):
        clock = FakeClock()
        token = CancellationToken(deadline=clock() + 0.01, clock=clock)
        assert token.wait(30.0) is True

    def test_with_timeout(self):
        token = CancellationToken.with_timeout(30)
        assert 0 < token.remaining() <= 30
        assert token.cancelled is False
