from datetime import datetime, timezone
from typing import Any

import msgspec
from msgspec import structs

from nodeflow.domain.error import InvalidNodeError, InvalidTransitionError
from nodeflow.domain.value_object import (
    STATUS_TRANSITIONS,
    CircuitState,
    ErrorClass,
    ExecutionMode,
    ExecutionStatus,
    JobStatus,
    LogLevel,
    Priority,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Position(msgspec.Struct):
    """Canvas coordinates of a node. Carried through, never interpreted."""

    x: float = 0
    y: float = 0


class NodeSpec(msgspec.Struct):
    """A node as declared in a submitted graph."""

    id: str
    type: str
    name: str = ""
    position: Position = msgspec.field(default_factory=Position)
    properties: dict[str, Any] = msgspec.field(default_factory=dict)

    def validate(self) -> None:
        if not self.id or not isinstance(self.id, str):
            raise InvalidNodeError(f"Invalid node id: {self.id!r}")
        if not self.type or not isinstance(self.type, str):
            raise InvalidNodeError(f"Node {self.id} has no type")


class Connection(msgspec.Struct, rename="camel"):
    """Directed edge from ``source`` to ``target``."""

    source: str
    target: str
    source_output: str = "main"
    target_input: str = "main"


class WorkflowGraph(msgspec.Struct):
    """Represents a workflow composed of nodes and the connections between them."""

    nodes: list[NodeSpec] = msgspec.field(default_factory=list)
    connections: list[Connection] = msgspec.field(default_factory=list)
    settings: dict[str, Any] = msgspec.field(default_factory=dict)
    id: str | None = None
    name: str = ""

    def node(self, node_id: str) -> NodeSpec | None:
        for spec in self.nodes:
            if spec.id == node_id:
                return spec
        return None

    def node_ids(self) -> list[str]:
        return [spec.id for spec in self.nodes]


class NodeExecutionResult(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    """Immutable outcome of one node call."""

    success: bool
    output_data: dict[str, Any] = msgspec.field(default_factory=dict)
    error_message: str | None = None
    error_type: str | None = None
    error_class: ErrorClass | None = None
    attempts: int = 1
    execution_time: float = 0.0
    metadata: dict[str, Any] = msgspec.field(default_factory=dict)

    @classmethod
    def ok(cls, output_data: dict[str, Any] | None = None, **metadata: Any) -> "NodeExecutionResult":
        return cls(success=True, output_data=dict(output_data or {}), metadata=metadata)

    @classmethod
    def failure(cls, message: str, error_class: ErrorClass | None = None, **metadata: Any) -> "NodeExecutionResult":
        return cls(success=False, error_message=message, error_class=error_class, metadata=metadata)

    @classmethod
    def from_exception(cls, error: BaseException, **metadata: Any) -> "NodeExecutionResult":
        """
        Wrap an exception raised by (or around) a node call.

        :param error: The exception that ended the call
        :type error: BaseException
        :returns: A failed result carrying the error's message, type and class
        :rtype: NodeExecutionResult
        """
        return cls(
            success=False,
            error_message=str(error) or type(error).__name__,
            error_type=type(error).__name__,
            error_class=getattr(error, "error_class", None),
            metadata=metadata,
        )

    def with_timing(self, attempts: int, execution_time: float) -> "NodeExecutionResult":
        return structs.replace(self, attempts=attempts, execution_time=execution_time)

    @property
    def data_size(self) -> int:
        return len(msgspec.json.encode(self.output_data))


class ExecutionLogEntry(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    execution_id: str
    message: str
    level: LogLevel = LogLevel.INFO
    node_id: str | None = None
    context: dict[str, Any] = msgspec.field(default_factory=dict)
    timestamp: datetime = msgspec.field(default_factory=utcnow)


class ExecutionRecord(msgspec.Struct, forbid_unknown_fields=True):
    """State of one run of a workflow graph.

    Only the coordinating thread of the run mutates a record. Status moves
    forward along ``STATUS_TRANSITIONS`` and ``finished_at`` is written once.
    """

    id: str
    workflow_ref: str
    status: ExecutionStatus = ExecutionStatus.WAITING
    mode: ExecutionMode = ExecutionMode.API
    priority: Priority = Priority.NORMAL
    created_at: datetime = msgspec.field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int | None = None
    input_data: dict[str, Any] = msgspec.field(default_factory=dict)
    output_data: dict[str, Any] = msgspec.field(default_factory=dict)
    error_message: str | None = None
    retry_count: int = 0
    metadata: dict[str, Any] = msgspec.field(default_factory=dict)

    def transition(self, status: ExecutionStatus) -> None:
        """
        Move the record to ``status``.

        :param status: Target status
        :type status: ExecutionStatus
        :raises InvalidTransitionError: If the move is not allowed from the current status
        """
        if status not in STATUS_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status.value, status.value)
        self.status = status
        if status is ExecutionStatus.RUNNING:
            self.started_at = utcnow()

    def finish(
        self,
        status: ExecutionStatus,
        output_data: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        """
        Move the record to a terminal status and stamp its timing.

        :param status: One of success, error or canceled
        :type status: ExecutionStatus
        :param output_data: Aggregated output of the run
        :type output_data: dict[str, Any] | None
        :param error_message: Reason for an error outcome
        :type error_message: str | None
        :raises InvalidTransitionError: If the record is already terminal
        """
        if not status.is_terminal:
            raise InvalidTransitionError(self.status.value, status.value)
        self.transition(status)
        self.finished_at = utcnow()
        if self.started_at is not None:
            self.duration_ms = int((self.finished_at - self.started_at).total_seconds() * 1000)
        else:
            self.duration_ms = 0
        if output_data is not None:
            self.output_data = output_data
        self.error_message = error_message


class ExecutionResult(msgspec.Struct, forbid_unknown_fields=True):
    """Result of running a workflow graph, as returned to the caller."""

    execution_id: str
    workflow_ref: str
    status: ExecutionStatus
    output_data: dict[str, Any] = msgspec.field(default_factory=dict)
    node_outputs: dict[str, dict[str, Any]] = msgspec.field(default_factory=dict)
    node_results: dict[str, NodeExecutionResult] = msgspec.field(default_factory=dict)
    error_message: str | None = None
    rounds: int = 0
    unexecuted_nodes: list[str] = msgspec.field(default_factory=list)
    duration_ms: int | None = None

    @property
    def is_success(self) -> bool:
        return self.status is ExecutionStatus.SUCCESS

    @property
    def failed_nodes(self) -> list[str]:
        return [node_id for node_id, result in self.node_results.items() if not result.success]

    def to_dict(self):
        """Convert the ExecutionResult to a dictionary."""
        return msgspec.to_builtins(self)

    def to_json(self) -> str:
        """Convert the ExecutionResult to a JSON string."""
        return msgspec.json.encode(self).decode()

    def to_yaml(self) -> str:
        """Convert the ExecutionResult to a YAML string."""
        return msgspec.yaml.encode(self).decode()


class ValidationReport(msgspec.Struct, forbid_unknown_fields=True):
    valid: bool
    errors: list[str] = msgspec.field(default_factory=list)
    warnings: list[str] = msgspec.field(default_factory=list)


class CircuitBreakerState(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    """Point-in-time snapshot of one breaker."""

    key: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_at: float | None = None


class Job(msgspec.Struct, forbid_unknown_fields=True):
    """A queued unit of work: one waiting execution record plus its graph.

    The graph and payload are released once the job reaches a terminal status.
    """

    id: str
    execution_id: str
    workflow_ref: str
    priority: Priority
    queue: str
    graph: WorkflowGraph | None
    payload: dict[str, Any] = msgspec.field(default_factory=dict)
    status: JobStatus = JobStatus.QUEUED
    queued_at: datetime = msgspec.field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None

    def info(self) -> dict[str, Any]:
        """Tracking view of the job, without its graph and payload."""
        return {
            "job_id": self.id,
            "execution_id": self.execution_id,
            "workflow_ref": self.workflow_ref,
            "priority": self.priority.value,
            "queue": self.queue,
            "status": self.status.value,
            "queued_at": self.queued_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": self.error,
        }


class NodeExecutionContext(msgspec.Struct, forbid_unknown_fields=True):
    """Everything a node sees while it runs."""

    execution_id: str
    workflow_ref: str
    node_id: str
    node: NodeSpec
    input_data: dict[str, Any] = msgspec.field(default_factory=dict)
    previous_outputs: dict[str, dict[str, Any]] = msgspec.field(default_factory=dict)
    variables: dict[str, Any] = msgspec.field(default_factory=dict)
    timeout: float | None = None
    is_test: bool = False

    @property
    def properties(self) -> dict[str, Any]:
        return self.node.properties

    def get_property(self, key: str, default: Any = None) -> Any:
        return self.node.properties.get(key, default)

    def has_property(self, key: str) -> bool:
        return key in self.node.properties

    def get_previous_output(self, node_id: str) -> dict[str, Any] | None:
        return self.previous_outputs.get(node_id)

    def set_variable(self, name: str, value: Any) -> None:
        self.variables[name] = value

    def get_variable(self, name: str, default: Any = None) -> Any:
        return self.variables.get(name, default)

    def child(self, node_id: str, input_data: dict[str, Any] | None = None) -> "NodeExecutionContext":
        """Copy of this context for a sub-execution of ``node_id``."""
        return structs.replace(self, node_id=node_id, input_data=dict(input_data or {}))
