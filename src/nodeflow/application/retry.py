"""Failure classification and retry decisions for node calls."""

import re

from nodeflow.domain.entity import NodeExecutionResult
from nodeflow.domain.error import (
    AuthenticationError,
    CircuitOpenError,
    ConnectionFailedError,
    NodeTimeoutError,
    NodeValidationError,
    RateLimitError,
)
from nodeflow.domain.value_object import ErrorClass, RetryStrategy

NEVER_RETRY = frozenset({ErrorClass.AUTHENTICATION, ErrorClass.VALIDATION})
RETRYABLE = frozenset({ErrorClass.CONNECTION, ErrorClass.TIMEOUT, ErrorClass.RATE_LIMIT})

# Checked in order: the never-retryable classes win over transient ones.
_TYPE_CLASSES: tuple[tuple[type[BaseException], ErrorClass], ...] = (
    (AuthenticationError, ErrorClass.AUTHENTICATION),
    (PermissionError, ErrorClass.AUTHENTICATION),
    (NodeValidationError, ErrorClass.VALIDATION),
    (ValueError, ErrorClass.VALIDATION),
    (RateLimitError, ErrorClass.RATE_LIMIT),
    (NodeTimeoutError, ErrorClass.TIMEOUT),
    (TimeoutError, ErrorClass.TIMEOUT),
    (ConnectionFailedError, ErrorClass.CONNECTION),
    (ConnectionError, ErrorClass.CONNECTION),
)

_MESSAGE_CLASSES: tuple[tuple[re.Pattern, ErrorClass], ...] = (
    (re.compile(r"unauthori[sz]ed|authenticat|forbidden|invalid credentials|\b40[13]\b", re.I), ErrorClass.AUTHENTICATION),
    (re.compile(r"validation|invalid (input|parameter|propert)|\b422\b", re.I), ErrorClass.VALIDATION),
    (re.compile(r"rate.?limit|too many requests|\b429\b", re.I), ErrorClass.RATE_LIMIT),
    (re.compile(r"timed? ?out|deadline exceeded", re.I), ErrorClass.TIMEOUT),
    (re.compile(r"connection|unreachable|refused|reset by peer|\b50[234]\b", re.I), ErrorClass.CONNECTION),
)


def classify_error(error: BaseException | str | None) -> ErrorClass:
    """
    Maps an exception or an error message to an error class.

    :param error: The exception raised by a call, or the message it left
    :type error: BaseException | str | None
    :returns: The error class; ``unknown`` when nothing matches
    :rtype: ErrorClass
    """
    if error is None:
        return ErrorClass.UNKNOWN
    if isinstance(error, BaseException):
        declared = getattr(error, "error_class", None)
        if isinstance(declared, ErrorClass) and declared is not ErrorClass.UNKNOWN:
            return declared
        for exc_type, error_class in _TYPE_CLASSES:
            if isinstance(error, exc_type):
                return error_class
        error = str(error)
    for pattern, error_class in _MESSAGE_CLASSES:
        if pattern.search(error):
            return error_class
    return ErrorClass.UNKNOWN


def result_error_class(result: NodeExecutionResult) -> ErrorClass:
    """Error class of a failed result, classifying its message when the node left none."""
    if result.error_class is not None and result.error_class is not ErrorClass.UNKNOWN:
        return result.error_class
    return classify_error(result.error_message)


class RetryPolicy:
    """Decides whether a failed node call is attempted again, and when."""

    def __init__(
        self,
        max_retries: int = 3,
        strategy: RetryStrategy = RetryStrategy.EXPONENTIAL,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 60.0,
    ):
        self.max_retries = max_retries
        self.strategy = strategy
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay

    def should_retry(self, result: NodeExecutionResult, attempt: int, max_retries: int | None = None) -> bool:
        """
        Decides whether another attempt is worth making.

        Fails closed: only connection, timeout and rate-limit failures are retried.

        :param result: The failed result of the last attempt
        :type result: NodeExecutionResult
        :param attempt: Number of retries already made
        :type attempt: int
        :param max_retries: Overrides the policy's retry budget
        :type max_retries: int | None
        :returns: True if the call should be attempted again
        :rtype: bool
        """
        limit = self.max_retries if max_retries is None else max_retries
        if result.success or attempt >= limit:
            return False
        if result.error_type == CircuitOpenError.__name__:
            return False
        error_class = result_error_class(result)
        if error_class in NEVER_RETRY:
            return False
        return error_class in RETRYABLE

    def calculate_delay(self, attempt: int, strategy: RetryStrategy | None = None) -> float:
        """
        Seconds to wait before retry number ``attempt`` (1-based).

        :param attempt: Which retry is about to happen
        :type attempt: int
        :param strategy: Overrides the policy's strategy
        :type strategy: RetryStrategy | None
        :returns: The delay, capped at ``max_delay``
        :rtype: float
        """
        strategy = RetryStrategy(strategy or self.strategy)
        attempt = max(attempt, 1)
        if strategy is RetryStrategy.IMMEDIATE:
            delay = 0.0
        elif strategy is RetryStrategy.LINEAR:
            delay = attempt * self.base_delay
        elif strategy is RetryStrategy.EXPONENTIAL:
            delay = self.base_delay * self.multiplier ** (attempt - 1)
        elif strategy is RetryStrategy.FIBONACCI:
            delay = fibonacci(attempt) * self.base_delay
        else:
            raise ValueError(f"Unknown retry strategy: {strategy}")
        return min(delay, self.max_delay)


def fibonacci(n: int) -> int:
    """fib(1) == fib(2) == 1."""
    a, b = 0, 1
    for _ in range(n):
        a, b = b, a + b
    return a
