from dataclasses import dataclass
from enum import Enum

import msgspec


class ExecutionStatus(str, Enum):
    WAITING = "waiting"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.SUCCESS, ExecutionStatus.ERROR, ExecutionStatus.CANCELED)


# Allowed record transitions; anything else is rejected.
STATUS_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.WAITING: frozenset({ExecutionStatus.RUNNING, ExecutionStatus.CANCELED}),
    ExecutionStatus.RUNNING: frozenset({ExecutionStatus.SUCCESS, ExecutionStatus.ERROR, ExecutionStatus.CANCELED}),
    ExecutionStatus.SUCCESS: frozenset(),
    ExecutionStatus.ERROR: frozenset(),
    ExecutionStatus.CANCELED: frozenset(),
}


class ExecutionMode(str, Enum):
    MANUAL = "manual"
    API = "api"
    QUEUE = "queue"
    TEST = "test"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def queue_name(self) -> str:
        """Name of the queue jobs of this priority are pushed onto."""
        if self is Priority.HIGH:
            return "high-priority"
        if self is Priority.LOW:
            return "low-priority"
        return "default"

    @property
    def rank(self) -> int:
        """Sort key for the dispatcher; lower is served first."""
        return {Priority.HIGH: 0, Priority.NORMAL: 1, Priority.LOW: 2}[self]


QUEUE_NAMES = ("high-priority", "default", "low-priority")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class RetryStrategy(str, Enum):
    IMMEDIATE = "immediate"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    FIBONACCI = "fibonacci"


class ErrorClass(str, Enum):
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    UNKNOWN = "unknown"


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass
class EngineSettings:
    """Tunables for the engine, its failure primitives and the queue dispatcher.

    Every field has a production default; tests usually shrink the delays.
    """

    max_rounds: int = 100
    max_concurrency: int = 4
    node_timeout: float | None = None

    max_retries: int = 3
    retry_strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    retry_base_delay: float = 1.0
    retry_multiplier: float = 2.0
    retry_max_delay: float = 60.0

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 3
    half_open_max_calls: int = 3

    stats_ttl: float = 86400.0
    slow_execution_ms: int = 300000

    queue_workers: int = 2
    queue_poll_interval: float = 0.1
    job_retention: float = 86400.0

    @classmethod
    def from_mapping(cls, data: dict) -> "EngineSettings":
        """
        Build settings from a plain mapping, e.g. a parsed config file section.

        :param data: Mapping of field names to values
        :type data: dict
        :returns: The decoded settings
        :rtype: EngineSettings
        :raises msgspec.ValidationError: If a value has the wrong type
        """
        return msgspec.convert(data, type=cls)
