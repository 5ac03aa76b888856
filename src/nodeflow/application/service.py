from typing import Any

import msgspec

from nodeflow.application.engine import ExecutionEngine
from nodeflow.application.port import ExecutionStore, JobQueue, NodeRegistry
from nodeflow.application.tracker import ExecutionTracker
from nodeflow.domain.entity import ExecutionLogEntry, ExecutionRecord, ExecutionResult, ValidationReport, WorkflowGraph
from nodeflow.domain.service import validate_graph
from nodeflow.domain.value_object import ExecutionMode, Priority


def load_graph(data: dict | str | bytes | WorkflowGraph, check: bool = True) -> WorkflowGraph:
    """
    Decodes a workflow graph from a Python dictionary or a JSON document.

    Only the structure is checked here; node types and cycles are checked by
    the engine against its registry.

    :param data: The graph as a dictionary, JSON text or WorkflowGraph
    :type data: dict | str | bytes | WorkflowGraph
    :param check: Reject duplicate node ids and nodes without id or type
    :type check: bool
    :returns: A WorkflowGraph instance
    :rtype: WorkflowGraph
    :raises msgspec.ValidationError: If the data does not describe a graph
    :raises GraphValidationError: If a node id repeats or a node lacks an id or type
    """
    if isinstance(data, WorkflowGraph):
        graph = data
    elif isinstance(data, (str, bytes)):
        graph = msgspec.json.decode(data, type=WorkflowGraph)
    else:
        graph = msgspec.convert(data, type=WorkflowGraph)
    if check:
        validate_graph(graph)
    return graph


class WorkflowService:
    """
    Encapsulates the engine, its stores, tracker and queue.
    Provides a high-level interface for validating, running and inspecting workflows.

    .. note::
        Infrastructure wiring (concrete registry, stores and queue) is done by the
        backend ``create`` functions and injected into this class.
    """

    def __init__(
        self,
        registry: NodeRegistry,
        engine: ExecutionEngine,
        store: ExecutionStore,
        tracker: ExecutionTracker,
        queue: JobQueue,
    ):
        self.registry = registry
        self.engine = engine
        self.store = store
        self.tracker = tracker
        self.queue = queue

    def validate(self, graph: dict | str | bytes | WorkflowGraph) -> ValidationReport:
        return self.engine.validate(load_graph(graph, check=False))

    def execute_sync(
        self,
        graph: dict | str | bytes | WorkflowGraph,
        payload: dict[str, Any] | None = None,
        workflow_ref: str | None = None,
        mode: ExecutionMode = ExecutionMode.MANUAL,
    ) -> ExecutionResult:
        """
        Loads and executes a workflow graph on the calling thread.

        :param graph: The graph definition
        :type graph: dict | str | bytes | WorkflowGraph
        :param payload: Input handed to the trigger nodes
        :type payload: dict[str, Any] | None
        :param workflow_ref: Identifier used for statistics
        :type workflow_ref: str | None
        :param mode: How the execution was started
        :type mode: ExecutionMode
        :returns: The result of the execution
        :rtype: ExecutionResult
        :raises GraphValidationError: If the graph cannot be executed
        """
        return self.engine.execute_sync(load_graph(graph), payload, workflow_ref, mode)

    def dispatch(
        self,
        graph: dict | str | bytes | WorkflowGraph,
        payload: dict[str, Any] | None = None,
        priority: Priority | str = Priority.NORMAL,
        workflow_ref: str | None = None,
    ) -> str:
        return self.queue.dispatch(load_graph(graph), payload, Priority(priority), workflow_ref)

    def get_execution(self, execution_id: str) -> ExecutionRecord:
        return self.store.get(execution_id)

    def get_execution_logs(self, execution_id: str) -> list[ExecutionLogEntry]:
        return self.store.get_logs(execution_id)

    def list_executions(self, workflow_ref: str | None = None) -> list[str]:
        return self.store.list_ids(workflow_ref)

    def delete_execution(self, execution_id: str) -> bool:
        return self.store.delete(execution_id)

    def get_workflow_stats(self, workflow_ref: str) -> dict[str, Any]:
        """
        Rolling node and run statistics of a workflow.

        :param workflow_ref: The workflow identifier
        :type workflow_ref: str
        :returns: ``{"nodes": {...}, "runs": {...}}``
        :rtype: dict[str, Any]
        """
        return {
            "nodes": self.tracker.get_workflow_stats(workflow_ref),
            "runs": self.tracker.get_run_stats(workflow_ref),
        }

    def close(self) -> None:
        """Stops the queue workers, then releases the execution store."""
        self.queue.stop()
        self.store.close()
