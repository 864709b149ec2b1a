# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: circuit breaker guarding the downstream alert processor.

    closed ──(failure_threshold consecutive failures)──► open
    open ──(cooldown elapsed, checked lazily)──► half_open
    half_open ──(trial success)──► closed
    half_open ──(trial failure)──► open

All bookkeeping happens under one lock. Listeners are notified after the lock
is released so a slow or broken listener cannot stall or break a call.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from alertgate.core.logging import get_logger
from alertgate.metrics import CIRCUIT_STATE, CIRCUIT_TRANSITIONS

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_STATE_GAUGE_VALUE = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}

StateListener = Callable[[str, CircuitState, CircuitState], None]


class CircuitOpenError(Exception):
    """Call rejected by the breaker; the wrapped function was never invoked."""

    retryable = True

    def __init__(self, name: str, state: CircuitState):
        if state == CircuitState.HALF_OPEN:
            message = f"circuit breaker '{name}' is HALF_OPEN and max trial calls exceeded"
        else:
            message = f"circuit breaker '{name}' is OPEN"
        super().__init__(message)
        self.name = name
        self.state = state


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    cooldown: float = 60.0  # seconds in OPEN before trial calls are admitted
    half_open_max_calls: int = 3

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.cooldown < 0:
            raise ValueError("cooldown must be >= 0")
        if self.half_open_max_calls < 1:
            raise ValueError("half_open_max_calls must be >= 1")


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals for health checks and logs."""

    name: str
    state: CircuitState
    failure_count: int
    last_failure_at: Optional[float]
    opened_at: Optional[float]
    half_open_calls: int


class CircuitBreaker:
    """Shared per protected dependency; safe to call from many threads."""

    def __init__(self, name: str, config: Optional[CircuitBreakerConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._listeners: List[StateListener] = []

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: Optional[float] = None
        self._opened_at: Optional[float] = None
        self._half_open_calls = 0
        # Bumped on every transition; outcomes from an older generation are ignored.
        self._generation = 0

        CIRCUIT_STATE.labels(name=name).set(_STATE_GAUGE_VALUE[self._state])

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        with self._lock:
            transitions = self._refresh_state()
            state = self._state
        self._notify(transitions)
        return state

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            transitions = self._refresh_state()
            snap = BreakerSnapshot(
                name=self._name,
                state=self._state,
                failure_count=self._failure_count,
                last_failure_at=self._last_failure_at,
                opened_at=self._opened_at,
                half_open_calls=self._half_open_calls,
            )
        self._notify(transitions)
        return snap

    def add_listener(self, listener: StateListener):
        """Register ``listener(name, from_state, to_state)`` for every transition."""
        with self._lock:
            self._listeners.append(listener)

    def call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Invoke ``fn`` through the breaker.

        Raises CircuitOpenError without calling ``fn`` while open (or while
        half-open with every trial slot taken); otherwise returns or re-raises
        whatever ``fn`` does.
        """
        generation = self._before_call()
        try:
            result = fn(*args, **kwargs)
        except Exception:
            self._after_call(generation, success=False)
            raise
        self._after_call(generation, success=True)
        return result

    # ---------- internals ----------

    def _before_call(self) -> int:
        with self._lock:
            transitions = self._refresh_state()
            state = self._state
            admitted = True
            if state == CircuitState.OPEN:
                admitted = False
            elif state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self._config.half_open_max_calls:
                    admitted = False
                else:
                    self._half_open_calls += 1
            generation = self._generation
        self._notify(transitions)
        if not admitted:
            raise CircuitOpenError(self._name, state)
        return generation

    def _after_call(self, generation: int, success: bool):
        with self._lock:
            transitions = self._refresh_state()
            if generation == self._generation:
                if success:
                    transitions += self._on_success()
                else:
                    transitions += self._on_failure()
        self._notify(transitions)

    def _on_success(self) -> List[Tuple[CircuitState, CircuitState]]:
        self._failure_count = 0
        if self._state == CircuitState.HALF_OPEN:
            return [self._transition(CircuitState.CLOSED)]
        return []

    def _on_failure(self) -> List[Tuple[CircuitState, CircuitState]]:
        now = self._clock()
        self._last_failure_at = now
        if self._state == CircuitState.HALF_OPEN:
            return [self._transition(CircuitState.OPEN)]
        self._failure_count += 1
        if self._failure_count >= self._config.failure_threshold:
            return [self._transition(CircuitState.OPEN)]
        return []

    def _refresh_state(self) -> List[Tuple[CircuitState, CircuitState]]:
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self._config.cooldown
        ):
            return [self._transition(CircuitState.HALF_OPEN)]
        return []

    def _transition(self, to_state: CircuitState) -> Tuple[CircuitState, CircuitState]:
        from_state = self._state
        self._state = to_state
        self._generation += 1
        self._half_open_calls = 0
        if to_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif to_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._opened_at = None
        return from_state, to_state

    def _notify(self, transitions: List[Tuple[CircuitState, CircuitState]]):
        if not transitions:
            return
        with self._lock:
            listeners = list(self._listeners)
        for from_state, to_state in transitions:
            CIRCUIT_STATE.labels(name=self._name).set(_STATE_GAUGE_VALUE[to_state])
            CIRCUIT_TRANSITIONS.labels(
                name=self._name, from_state=from_state.value, to_state=to_state.value
            ).inc()
            for listener in listeners:
                try:
                    listener(self._name, from_state, to_state)
                except Exception:
                    logger.exception(
                        "Circuit breaker listener failed name=%s from=%s to=%s",
                        self._name, from_state.value, to_state.value,
                    )


def log_state_change(name: str, from_state: CircuitState, to_state: CircuitState):
    """Default listener: one structured log line per transition."""
    logger.warning(
        "Circuit breaker '%s' changed state from %s to %s",
        name, from_state.value, to_state.value,
        extra={"context": {"breaker": name, "from": from_state.value, "to": to_state.value}},
    )
