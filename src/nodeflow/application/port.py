from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from nodeflow.domain.entity import (
    ExecutionLogEntry,
    ExecutionRecord,
    ExecutionResult,
    NodeExecutionContext,
    NodeExecutionResult,
    ValidationReport,
    WorkflowGraph,
)
from nodeflow.domain.port import NodeBase
from nodeflow.domain.value_object import Priority


class WorkflowEngine(ABC):
    """Abstract base class defining the workflow engine interface."""

    @abstractmethod
    def validate(self, graph: WorkflowGraph) -> ValidationReport:
        """
        Checks a graph without executing anything.

        :param graph: The graph to check
        :type graph: WorkflowGraph
        :returns: Validity plus the collected errors and warnings
        :rtype: ValidationReport
        """

    @abstractmethod
    def execute_sync(
        self, graph: WorkflowGraph, payload: dict[str, Any] | None = None, workflow_ref: str | None = None
    ) -> ExecutionResult:
        """
        Runs the given graph to completion on the calling thread.

        :param graph: The graph to execute
        :type graph: WorkflowGraph
        :param payload: Input handed to the trigger nodes
        :type payload: dict[str, Any] | None
        :param workflow_ref: Identifier used for statistics; defaults to the graph id
        :type workflow_ref: str | None
        :returns: The aggregated result of the run
        :rtype: ExecutionResult
        :raises GraphValidationError: If the graph cannot be executed
        """

    @abstractmethod
    def run(self, record: ExecutionRecord, graph: WorkflowGraph, payload: dict[str, Any] | None = None) -> ExecutionResult:
        """
        Drives an existing waiting record to a terminal status.

        :param record: The record created at dispatch time
        :type record: ExecutionRecord
        :param graph: The graph to execute
        :type graph: WorkflowGraph
        :param payload: Input handed to the trigger nodes
        :type payload: dict[str, Any] | None
        :returns: The aggregated result of the run
        :rtype: ExecutionResult
        """

    @abstractmethod
    def cancel(self, execution_id: str) -> bool:
        """
        Requests cooperative cancellation of a running execution.

        :param execution_id: The execution to cancel
        :type execution_id: str
        :returns: True if the execution was running and has been signalled
        :rtype: bool
        """


class NodeRunner(ABC):
    """Abstract interface for invoking a node."""

    @abstractmethod
    def run(self, node: NodeBase, context: NodeExecutionContext) -> NodeExecutionResult:
        """
        Run a node with its context.

        :param node: The node to run
        :type node: NodeBase
        :param context: The context handed to the node
        :type context: NodeExecutionContext
        :returns: The result of the node
        :rtype: NodeExecutionResult
        """


class NodeRegistry(ABC):
    """Abstract base class defining node lookup by type id."""

    @abstractmethod
    def register(self, node: type[NodeBase] | Callable[[], NodeBase], node_type: str | None = None) -> bool:
        """
        Registers a node factory under its type id.

        :param node: A NodeBase subclass or a zero-argument factory
        :param node_type: Type id; defaults to the class's ``node_type``
        :type node_type: str | None
        :returns: False if the type id was already taken and nothing changed
        :rtype: bool
        """

    @abstractmethod
    def has(self, node_type: str) -> bool:
        """
        Checks whether a type id is registered.

        :param node_type: The type id
        :type node_type: str
        :rtype: bool
        """

    @abstractmethod
    def resolve(self, node_type: str) -> NodeBase:
        """
        Resolves and returns a node instance by its type id.

        :param node_type: The type id of the node
        :type node_type: str
        :returns: A node instance
        :rtype: NodeBase
        :raises UnknownNodeTypeError: If the type id is not registered
        """


class ExecutionStore(ABC):
    """Abstract interface for persisting execution records and their logs."""

    @abstractmethod
    def save(self, record: ExecutionRecord) -> None:
        """
        Insert or replace a record.

        :param record: The record to store
        :type record: ExecutionRecord
        """

    @abstractmethod
    def get(self, execution_id: str) -> ExecutionRecord:
        """
        Retrieve a record by id.

        :param execution_id: The execution identifier
        :type execution_id: str
        :returns: The stored record
        :rtype: ExecutionRecord
        :raises ExecutionNotFoundError: If the id is unknown
        """

    @abstractmethod
    def append_log(self, entry: ExecutionLogEntry) -> None:
        """
        Append a log entry to an execution's log.

        :param entry: The entry to append
        :type entry: ExecutionLogEntry
        """

    @abstractmethod
    def get_logs(self, execution_id: str) -> list[ExecutionLogEntry]:
        """
        Retrieve an execution's log in append order.

        :param execution_id: The execution identifier
        :type execution_id: str
        :rtype: list[ExecutionLogEntry]
        """

    @abstractmethod
    def list_ids(self, workflow_ref: str | None = None) -> list[str]:
        """
        List stored execution ids, optionally for one workflow.

        :param workflow_ref: Restrict to this workflow
        :type workflow_ref: str | None
        :rtype: list[str]
        """

    @abstractmethod
    def delete(self, execution_id: str) -> bool:
        """
        Delete a record and its log.

        :param execution_id: The execution identifier
        :type execution_id: str
        :returns: True if a record was deleted
        :rtype: bool
        """

    def close(self) -> None:
        """Release connections or files held by the store. Nothing to do by default."""


class StatsCache(ABC):
    """Abstract expiring key-value cache with atomic read-modify-write."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """
        Retrieve a live value.

        :param key: The cache key
        :type key: str
        :param default: Returned when the key is missing or expired
        :returns: The cached value or ``default``
        """

    @abstractmethod
    def update(self, key: str, fn: Callable[[Any], Any], ttl: float, default: Any = None) -> Any:
        """
        Atomically replace a value with ``fn(current)`` and reset its expiry.

        :param key: The cache key
        :type key: str
        :param fn: Receives the current (or default) value and returns the new one
        :param ttl: Seconds until the new value expires
        :type ttl: float
        :param default: Value handed to ``fn`` when the key is missing or expired
        :returns: The new value
        """

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Drop a key.

        :param key: The cache key
        :type key: str
        :returns: True if a live value was removed
        :rtype: bool
        """


class JobQueue(ABC):
    """Abstract interface for out-of-band execution of workflow runs."""

    @abstractmethod
    def dispatch(
        self,
        graph: WorkflowGraph,
        payload: dict[str, Any] | None = None,
        priority: Priority = Priority.NORMAL,
        workflow_ref: str | None = None,
    ) -> str:
        """
        Creates a waiting execution record and enqueues it.

        :param graph: The graph to execute
        :type graph: WorkflowGraph
        :param payload: Input handed to the trigger nodes
        :type payload: dict[str, Any] | None
        :param priority: Priority class of the job
        :type priority: Priority
        :param workflow_ref: Identifier used for statistics; defaults to the graph id
        :type workflow_ref: str | None
        :returns: The job id
        :rtype: str
        :raises GraphValidationError: If the graph cannot be executed
        """

    @abstractmethod
    def get_queue_status(self) -> dict[str, dict[str, int]]:
        """
        Pending, processing and failed counts per queue plus totals.

        :rtype: dict[str, dict[str, int]]
        """

    @abstractmethod
    def get_health_status(self) -> dict[str, Any]:
        """
        Advisory health score (0-100) with recommendations.

        :rtype: dict[str, Any]
        """

    @abstractmethod
    def stop(self, wait: bool = True) -> None:
        """
        Stops taking jobs off the queue.

        :param wait: Block until in-flight jobs are done
        :type wait: bool
        """
