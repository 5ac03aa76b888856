"""Exception taxonomy for graph validation, node execution and dispatch."""

from nodeflow.domain.value_object import ErrorClass


class NodeflowError(Exception):
    """Base class for every error raised by nodeflow."""


class GraphValidationError(NodeflowError):
    """The submitted graph cannot be executed. Raised before any side effect."""


class UnknownNodeTypeError(GraphValidationError):
    def __init__(self, node_type: str):
        super().__init__(f"Unknown node type: {node_type}")
        self.node_type = node_type


class InvalidPropertiesError(GraphValidationError):
    def __init__(self, node_id: str, node_type: str):
        super().__init__(f"Invalid properties for node '{node_id}' of type: {node_type}")
        self.node_id = node_id
        self.node_type = node_type


class CircularDependencyError(GraphValidationError):
    def __init__(self):
        super().__init__("Workflow contains circular dependencies")


class NoTriggerNodeError(GraphValidationError):
    def __init__(self):
        super().__init__("No trigger nodes found in workflow")


class InvalidNodeError(GraphValidationError):
    """A node is declared without an id or a type."""


class DuplicateNodeError(GraphValidationError):
    def __init__(self, node_id: str):
        super().__init__(f"Duplicate node id found: {node_id}")
        self.node_id = node_id


class TriggerExecutionError(NodeflowError):
    """A trigger node failed; the whole execution ends in error."""

    def __init__(self, node_id: str, reason: str | None):
        super().__init__(f"Trigger node '{node_id}' failed: {reason}")
        self.node_id = node_id


class NodeExecutionError(NodeflowError):
    """Failure inside a node call. Subclasses carry their error class."""

    error_class = ErrorClass.UNKNOWN


class RetryableError(NodeExecutionError):
    """Transient failure that the retry policy may re-attempt."""


class ConnectionFailedError(RetryableError):
    error_class = ErrorClass.CONNECTION


class NodeTimeoutError(RetryableError):
    error_class = ErrorClass.TIMEOUT


class RateLimitError(RetryableError):
    error_class = ErrorClass.RATE_LIMIT


class AuthenticationError(NodeExecutionError):
    error_class = ErrorClass.AUTHENTICATION


class NodeValidationError(NodeExecutionError):
    error_class = ErrorClass.VALIDATION


class CircuitOpenError(NodeflowError):
    """The breaker guarding a call-site rejected the call without attempting it."""

    def __init__(self, key: str, retry_after: float):
        super().__init__(f"Circuit '{key}' is open; retry after {retry_after:.1f}s")
        self.key = key
        self.retry_after = retry_after


class RoundLimitExceeded(UserWarning):
    """Logged, never raised: the round cap stopped an execution early."""


class InvalidTransitionError(NodeflowError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot transition execution from '{current}' to '{target}'")
        self.current = current
        self.target = target


class ExecutionNotFoundError(KeyError):
    pass


class JobNotFoundError(KeyError):
    pass
