"""Circuit breakers guarding the external dependency behind a node call."""

import threading
import time
from collections.abc import Callable
from typing import Any

from loguru import logger

from nodeflow.application.retry import classify_error, result_error_class
from nodeflow.domain.entity import CircuitBreakerState, NodeExecutionResult
from nodeflow.domain.error import CircuitOpenError
from nodeflow.domain.value_object import CircuitState, ErrorClass

# Failures that say something about the health of the dependency behind a call.
DEPENDENCY_FAILURES = frozenset({ErrorClass.CONNECTION, ErrorClass.TIMEOUT, ErrorClass.RATE_LIMIT})


class CircuitBreaker:
    """Stops calling a dependency after repeated failures until a cooldown passes.

    closed: calls pass, consecutive failures are counted.
    open: calls are rejected with CircuitOpenError without being attempted.
    half_open: up to ``half_open_max_calls`` trial calls pass; ``success_threshold``
    consecutive successes close the circuit, any failure reopens it.
    """

    def __init__(
        self,
        key: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        success_threshold: int = 3,
        half_open_max_calls: int = 3,
        clock: Callable[[], float] = time.monotonic,
        counted: frozenset[ErrorClass] = DEPENDENCY_FAILURES,
    ):
        self.key = key
        self.counted = counted
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._last_failure_at: float | None = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def snapshot(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                key=self.key,
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                last_failure_at=self._last_failure_at,
            )

    def call(self, fn: Callable[..., NodeExecutionResult], *args: Any, **kwargs: Any) -> NodeExecutionResult:
        """
        Invokes ``fn`` through the breaker.

        An exception or an unsuccessful result counts as a failure only when its
        error class is one of ``counted``. Any other failure leaves the counts alone.

        :param fn: The guarded call
        :returns: Whatever ``fn`` returned
        :rtype: NodeExecutionResult
        :raises CircuitOpenError: If the circuit rejects the call
        """
        self.before_call()
        try:
            result = fn(*args, **kwargs)
        except BaseException as e:
            self._settle(classify_error(e))
            raise
        if getattr(result, "success", True):
            self.record_success()
        else:
            self._settle(result_error_class(result))
        return result

    def _settle(self, error_class: ErrorClass) -> None:
        if error_class in self.counted:
            self.record_failure()
        else:
            self.release()

    def before_call(self) -> None:
        """
        Admits or rejects a call, moving open to half_open once the cooldown passed.

        :raises CircuitOpenError: If the call is rejected
        """
        with self._lock:
            if self._state is CircuitState.OPEN:
                elapsed = self._clock() - (self._last_failure_at or 0.0)
                if elapsed < self.recovery_timeout:
                    raise CircuitOpenError(self.key, self.recovery_timeout - elapsed)
                self._set_state(CircuitState.HALF_OPEN)
            if self._state is CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max_calls:
                    raise CircuitOpenError(self.key, 0.0)
                self._half_open_calls += 1

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._half_open_calls = max(self._half_open_calls - 1, 0)
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._set_state(CircuitState.CLOSED)
            else:
                self._failure_count = 0

    def release(self) -> None:
        """Frees a half-open trial slot without counting the call either way."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._half_open_calls = max(self._half_open_calls - 1, 0)

    def record_failure(self) -> None:
        with self._lock:
            self._last_failure_at = self._clock()
            if self._state is CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN)
                return
            self._failure_count += 1
            if self._state is CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._set_state(CircuitState.OPEN)

    def reset(self) -> None:
        with self._lock:
            self._set_state(CircuitState.CLOSED)
            self._last_failure_at = None

    def _set_state(self, state: CircuitState) -> None:
        # Caller holds the lock.
        if state is not self._state:
            logger.info(f"Circuit '{self.key}' {self._state.value} -> {state.value}")
        self._state = state
        self._success_count = 0
        self._half_open_calls = 0
        if state is CircuitState.CLOSED:
            self._failure_count = 0


class CircuitBreakerRegistry:
    """Hands out one breaker per call-site key. Owned by a single engine."""

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        success_threshold: int = 3,
        half_open_max_calls: int = 3,
        clock: Callable[[], float] = time.monotonic,
        counted: frozenset[ErrorClass] = DEPENDENCY_FAILURES,
    ):
        self._options = {
            "failure_threshold": failure_threshold,
            "recovery_timeout": recovery_timeout,
            "success_threshold": success_threshold,
            "half_open_max_calls": half_open_max_calls,
            "clock": clock,
            "counted": counted,
        }
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(key, **self._options)
                self._breakers[key] = breaker
            return breaker

    def states(self) -> dict[str, CircuitBreakerState]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {breaker.key: breaker.snapshot() for breaker in breakers}

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            breakers = [self._breakers[key]] if key in self._breakers else []
            if key is None:
                breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()
