from typing import Any

from nodeflow.application.service import WorkflowService
from nodeflow.domain.entity import (
    CircuitBreakerState,
    ExecutionLogEntry,
    ExecutionRecord,
    ExecutionResult,
    ValidationReport,
    WorkflowGraph,
)
from nodeflow.domain.port import NodeBase
from nodeflow.domain.value_object import ExecutionMode, Priority

Graph = dict | str | bytes | WorkflowGraph


class Client:
    """
    Unified client façade for workflow execution.

    The Client is the only thing users interact with. It exposes methods like .node(),
    .execute_sync(), .dispatch() and the execution queries. It holds a reference to the
    chosen backend's service under the hood.
    """

    def __init__(self, service: WorkflowService):
        """
        Initialize the client with a backend service.

        :param service: The wired service of a backend (e.g., InMemoryService)
        :type service: WorkflowService
        """
        self._service = service

    @property
    def service(self) -> WorkflowService:
        return self._service

    def node(self, node: type[NodeBase], node_type: str | None = None) -> "Client":
        """
        Register a node class. Re-registering a taken type id is ignored with a warning.

        :param node: The node class
        :type node: type[NodeBase]
        :param node_type: Type id override
        :type node_type: str | None
        :returns: The client, for chaining
        :rtype: Client
        """
        self._service.registry.register(node, node_type)
        return self

    def nodes(self) -> list[str]:
        """Registered node type ids."""
        return self._service.registry.types()

    def manifest(self) -> list[dict[str, Any]]:
        """Descriptions of every registered node type."""
        return self._service.registry.manifest()

    def validate(self, graph: Graph) -> ValidationReport:
        """
        Check a graph without running it.

        :param graph: The graph definition
        :type graph: dict | str | bytes | WorkflowGraph
        :returns: Validity plus collected errors and warnings
        :rtype: ValidationReport
        """
        return self._service.validate(graph)

    def execute_sync(
        self,
        graph: Graph,
        payload: dict[str, Any] | None = None,
        workflow_ref: str | None = None,
        mode: ExecutionMode = ExecutionMode.MANUAL,
    ) -> ExecutionResult:
        """
        Execute a workflow and wait for its result.

        :param graph: The graph definition
        :type graph: dict | str | bytes | WorkflowGraph
        :param payload: Input handed to the trigger nodes
        :type payload: dict[str, Any] | None
        :param workflow_ref: Identifier used for statistics; defaults to the graph id
        :type workflow_ref: str | None
        :param mode: How the execution was started
        :type mode: ExecutionMode
        :returns: The workflow execution result
        :rtype: ExecutionResult
        :raises GraphValidationError: If the graph cannot be executed
        """
        return self._service.execute_sync(graph, payload, workflow_ref, mode)

    def dispatch(
        self,
        graph: Graph,
        payload: dict[str, Any] | None = None,
        priority: Priority | str = Priority.NORMAL,
        workflow_ref: str | None = None,
    ) -> str:
        """
        Queue a workflow for out-of-band execution.

        :param graph: The graph definition
        :type graph: dict | str | bytes | WorkflowGraph
        :param payload: Input handed to the trigger nodes
        :type payload: dict[str, Any] | None
        :param priority: "low", "normal" or "high"
        :type priority: Priority | str
        :param workflow_ref: Identifier used for statistics; defaults to the graph id
        :type workflow_ref: str | None
        :returns: The job id
        :rtype: str
        :raises GraphValidationError: If the graph cannot be executed
        """
        return self._service.dispatch(graph, payload, priority, workflow_ref)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the queue has no queued or processing job. False on timeout."""
        return self._service.queue.join(timeout)

    def get_job_info(self, job_id: str) -> dict[str, Any]:
        return self._service.queue.get_job_info(job_id)

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a queued or running job.

        :param job_id: The job identifier
        :type job_id: str
        :returns: False if the job had already finished
        :rtype: bool
        :raises JobNotFoundError: If the job id is unknown
        """
        return self._service.queue.cancel(job_id)

    def cancel_execution(self, execution_id: str) -> bool:
        """Request cooperative cancellation of a running execution."""
        return self._service.engine.cancel(execution_id)

    def get_queue_status(self) -> dict[str, dict[str, int]]:
        return self._service.queue.get_queue_status()

    def get_health_status(self) -> dict[str, Any]:
        return self._service.queue.get_health_status()

    def get_execution(self, execution_id: str) -> ExecutionRecord:
        """
        Retrieve an execution record by id.

        :param execution_id: The execution identifier
        :type execution_id: str
        :returns: The stored record
        :rtype: ExecutionRecord
        :raises ExecutionNotFoundError: If the id is unknown
        """
        return self._service.get_execution(execution_id)

    def get_execution_logs(self, execution_id: str) -> list[ExecutionLogEntry]:
        return self._service.get_execution_logs(execution_id)

    def list_executions(self, workflow_ref: str | None = None) -> list[str]:
        """
        Get the ids of stored executions.

        :param workflow_ref: Restrict to this workflow
        :type workflow_ref: str | None
        :returns: List of execution identifiers
        :rtype: list[str]
        """
        return self._service.list_executions(workflow_ref)

    def delete_execution(self, execution_id: str) -> bool:
        return self._service.delete_execution(execution_id)

    def get_workflow_stats(self, workflow_ref: str) -> dict[str, Any]:
        return self._service.get_workflow_stats(workflow_ref)

    def circuit_states(self) -> dict[str, CircuitBreakerState]:
        return self._service.engine.breakers.states()

    def reset_circuit(self, key: str | None = None) -> None:
        """Close one breaker, or all of them when ``key`` is None."""
        self._service.engine.breakers.reset(key)

    def close(self) -> None:
        """Stop the queue workers and close the execution store."""
        self._service.close()
