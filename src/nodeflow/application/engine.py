import concurrent.futures
import threading
import time
import uuid
import warnings
from collections.abc import Callable, Iterator
from typing import Any

from loguru import logger

from nodeflow.application.circuit_breaker import CircuitBreakerRegistry
from nodeflow.application.error_policy import ErrorPolicy
from nodeflow.application.port import ExecutionStore, NodeRegistry, NodeRunner, WorkflowEngine
from nodeflow.application.retry import RetryPolicy
from nodeflow.application.runner import GuardedNodeRunner, failure_from
from nodeflow.application.tracker import ExecutionTracker
from nodeflow.domain.entity import (
    ExecutionRecord,
    ExecutionResult,
    NodeExecutionContext,
    NodeExecutionResult,
    NodeSpec,
    ValidationReport,
    WorkflowGraph,
)
from nodeflow.domain.error import (
    CircularDependencyError,
    GraphValidationError,
    InvalidPropertiesError,
    NodeflowError,
    RoundLimitExceeded,
    TriggerExecutionError,
    UnknownNodeTypeError,
)
from nodeflow.domain.port import NodeBase
from nodeflow.domain.service import (
    build_dependencies,
    can_run_concurrently,
    find_dangling_connections,
    find_ready_nodes,
    find_trigger_nodes,
    has_cycle,
    order_by_priority,
    validate_graph,
)
from nodeflow.domain.value_object import EngineSettings, ExecutionMode, ExecutionStatus, LogLevel


class UUIDGenerator:
    """Generates unique identifiers using UUID."""

    def generate(self) -> str:
        """
        Generate a unique identifier.

        :returns: A unique identifier string
        :rtype: str
        """
        return uuid.uuid4().hex


class _RunState:
    """Bookkeeping of one execution, owned by its coordinating thread."""

    def __init__(self, graph: WorkflowGraph, nodes: dict[str, NodeBase]):
        self.specs = {spec.id: spec for spec in graph.nodes}
        self.nodes = nodes
        self.dependencies = build_dependencies(graph.connections)
        self.succeeded: list[str] = []
        self.attempted: set[str] = set()
        self.node_outputs: dict[str, dict[str, Any]] = {}
        self.node_results: dict[str, NodeExecutionResult] = {}
        self.rounds = 0

    def record(self, node_id: str, result: NodeExecutionResult) -> None:
        self.attempted.add(node_id)
        self.node_results[node_id] = result
        if result.success:
            self.succeeded.append(node_id)
            self.node_outputs[node_id] = result.output_data

    def input_for(self, node_id: str) -> dict[str, Any]:
        """Merged output of the node's successful sources, in connection order."""
        merged: dict[str, Any] = {}
        for source in self.dependencies.get(node_id, ()):
            merged.update(self.node_outputs.get(source, {}))
        return merged

    def merged_output(self) -> dict[str, Any]:
        """Flat merge of successful outputs in execution order; later writers win."""
        merged: dict[str, Any] = {}
        for node_id in self.succeeded:
            merged.update(self.node_outputs[node_id])
        return merged

    def unexecuted(self) -> list[str]:
        return [node_id for node_id in self.specs if node_id not in self.attempted]


class ExecutionEngine(WorkflowEngine):
    """
    Runs workflow graphs round by round.

    Trigger nodes run first with the trigger payload; a trigger failure ends
    the execution in error. Every following round runs the nodes whose sources
    have all succeeded, fanning out on a bounded thread pool when no node of
    the round feeds another. A failed node only keeps its dependents from
    running. Each node call goes through the guarded runner (deadline, circuit
    breaker, retries) and the tracker records its outcome.
    """

    def __init__(
        self,
        registry: NodeRegistry,
        store: ExecutionStore,
        tracker: ExecutionTracker,
        task_runner: NodeRunner,
        settings: EngineSettings | None = None,
        error_policy: ErrorPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initializes the engine with its collaborators.

        :param registry: Resolves node type ids to node instances
        :type registry: NodeRegistry
        :param store: Persists execution records and logs
        :type store: ExecutionStore
        :param tracker: Records node outcomes and statistics
        :type tracker: ExecutionTracker
        :param task_runner: Invokes a node once, turning exceptions into failed results
        :type task_runner: NodeRunner
        :param settings: Engine tunables; defaults to production values
        :type settings: EngineSettings | None
        :param error_policy: Routes failed executions to fallback workflows
        :type error_policy: ErrorPolicy | None
        :param sleep: Used between retries
        :param clock: Monotonic clock for the circuit breakers
        """
        self.registry = registry
        self.store = store
        self.tracker = tracker
        self.settings = settings if settings is not None else EngineSettings()
        self.error_policy = error_policy
        self.ids = UUIDGenerator()
        self.breakers = CircuitBreakerRegistry(
            failure_threshold=self.settings.failure_threshold,
            recovery_timeout=self.settings.recovery_timeout,
            success_threshold=self.settings.success_threshold,
            half_open_max_calls=self.settings.half_open_max_calls,
            clock=clock,
        )
        self.retry_policy = RetryPolicy(
            max_retries=self.settings.max_retries,
            strategy=self.settings.retry_strategy,
            base_delay=self.settings.retry_base_delay,
            multiplier=self.settings.retry_multiplier,
            max_delay=self.settings.retry_max_delay,
        )
        self.runner = GuardedNodeRunner(
            task_runner,
            self.retry_policy,
            self.breakers,
            node_timeout=self.settings.node_timeout,
            sleep=sleep,
        )
        self._cancel_events: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def _problems(self, graph: WorkflowGraph) -> Iterator[Exception]:
        """Yields every reason the graph cannot run, fatal ones first in check order."""
        try:
            validate_graph(graph)
        except GraphValidationError as e:
            yield e
        for spec in graph.nodes:
            if not self.registry.has(spec.type):
                yield UnknownNodeTypeError(spec.type)
                continue
            if not self.registry.resolve(spec.type).validate_properties(spec.properties):
                yield InvalidPropertiesError(spec.id, spec.type)
        if has_cycle(graph.connections):
            yield CircularDependencyError()
        try:
            find_trigger_nodes(graph.nodes, graph.connections)
        except GraphValidationError as e:
            yield e

    def _ensure_valid(self, graph: WorkflowGraph) -> None:
        for problem in self._problems(graph):
            raise problem

    def validate(self, graph: WorkflowGraph) -> ValidationReport:
        errors = [str(problem) for problem in self._problems(graph)]
        dangling = [
            f"Connection references a missing node: {conn.source} -> {conn.target}"
            for conn in find_dangling_connections(graph.nodes, graph.connections)
        ]
        return ValidationReport(valid=not errors, errors=errors, warnings=dangling)

    def new_record(
        self,
        graph: WorkflowGraph,
        payload: dict[str, Any] | None = None,
        workflow_ref: str | None = None,
        mode: ExecutionMode = ExecutionMode.MANUAL,
        **fields: Any,
    ) -> ExecutionRecord:
        """
        Validates the graph and stores a new waiting record for it.

        :raises GraphValidationError: If the graph cannot be executed
        """
        self._ensure_valid(graph)
        record = ExecutionRecord(
            id=self.ids.generate(),
            workflow_ref=workflow_ref or graph.id or "adhoc",
            mode=mode,
            input_data=dict(payload or {}),
            **fields,
        )
        self.store.save(record)
        return record

    def execute_sync(
        self,
        graph: WorkflowGraph,
        payload: dict[str, Any] | None = None,
        workflow_ref: str | None = None,
        mode: ExecutionMode = ExecutionMode.MANUAL,
    ) -> ExecutionResult:
        record = self.new_record(graph, payload, workflow_ref, mode)
        return self.run(record, graph, payload)

    def cancel(self, execution_id: str) -> bool:
        with self._lock:
            event = self._cancel_events.get(execution_id)
        if event is None:
            return False
        event.set()
        logger.bind(execution_id=execution_id).info("Cancellation requested")
        return True

    def run(
        self,
        record: ExecutionRecord,
        graph: WorkflowGraph,
        payload: dict[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        payload = dict(payload if payload is not None else record.input_data)
        cancel_event = cancel_event or threading.Event()
        with self._lock:
            self._cancel_events[record.id] = cancel_event
        log = logger.bind(execution_id=record.id, workflow_ref=record.workflow_ref)

        try:
            state = _RunState(graph, {})
            record.transition(ExecutionStatus.RUNNING)
            record.input_data = payload
            self.store.save(record)
            log.info(f"Workflow execution started ({len(graph.nodes)} nodes)")
            self.tracker.record_event(record, "Workflow execution started", node_count=len(graph.nodes))

            error: BaseException | None = None
            try:
                # Node types can be unregistered between dispatch and pickup.
                state.nodes.update((spec.id, self.registry.resolve(spec.type)) for spec in graph.nodes)
                status = self._drive(record, graph, payload, state, cancel_event)
            except TriggerExecutionError as e:
                status, error = ExecutionStatus.ERROR, e
            except NodeflowError as e:
                log.exception("Workflow execution aborted")
                status, error = ExecutionStatus.ERROR, e

            unexecuted = state.unexecuted()
            if unexecuted and status is ExecutionStatus.SUCCESS:
                log.warning(f"Execution finished with unexecuted nodes: {', '.join(unexecuted)}")
                self.tracker.record_event(
                    record, "Execution finished with unexecuted nodes", LogLevel.WARNING, unexecuted_nodes=unexecuted
                )

            record.finish(status, state.merged_output(), str(error) if error else None)
            if error is not None and self.error_policy is not None:
                record.metadata["error_handling"] = self.error_policy.handle(record, error)
            self.store.save(record)
            self.tracker.record_execution_outcome(record)
            self.tracker.record_event(
                record,
                f"Workflow execution finished: {status.value}",
                LogLevel.ERROR if status is ExecutionStatus.ERROR else LogLevel.INFO,
                duration_ms=record.duration_ms,
            )
            log.info(f"Workflow execution finished: {status.value} in {record.duration_ms}ms")

            return ExecutionResult(
                execution_id=record.id,
                workflow_ref=record.workflow_ref,
                status=record.status,
                output_data=record.output_data,
                node_outputs=dict(state.node_outputs),
                node_results=dict(state.node_results),
                error_message=record.error_message,
                rounds=state.rounds,
                unexecuted_nodes=unexecuted,
                duration_ms=record.duration_ms,
            )
        finally:
            with self._lock:
                self._cancel_events.pop(record.id, None)

    def _drive(
        self,
        record: ExecutionRecord,
        graph: WorkflowGraph,
        payload: dict[str, Any],
        state: _RunState,
        cancel_event: threading.Event,
    ) -> ExecutionStatus:
        """
        Runs triggers, then rounds of ready nodes, until nothing is ready.

        :returns: The terminal status of the run
        :rtype: ExecutionStatus
        :raises TriggerExecutionError: If a trigger node fails
        """
        for node_id in find_trigger_nodes(graph.nodes, graph.connections):
            if cancel_event.is_set():
                return self._canceled(record)
            result = self.execute_node(record, state.specs[node_id], payload, state)
            if not result.success:
                raise TriggerExecutionError(node_id, result.error_message)

        priorities = {node_id: node.priority for node_id, node in state.nodes.items()}
        for _ in range(self.settings.max_rounds):
            if cancel_event.is_set():
                return self._canceled(record)
            ready = self._ready(graph, state)
            if not ready:
                return ExecutionStatus.SUCCESS
            state.rounds += 1
            ready = order_by_priority(ready, priorities)

            if len(ready) > 1 and can_run_concurrently(ready, graph.connections):
                self._run_batch(record, ready, state)
                continue
            for node_id in ready:
                if cancel_event.is_set():
                    return self._canceled(record)
                self.execute_node(record, state.specs[node_id], state.input_for(node_id), state)

        if self._ready(graph, state):
            message = f"Round limit of {self.settings.max_rounds} reached; stopping with partial results"
            logger.bind(execution_id=record.id).warning(message)
            warnings.warn(message, RoundLimitExceeded, stacklevel=2)
            self.tracker.record_event(record, message, LogLevel.WARNING, rounds=state.rounds)
        return ExecutionStatus.SUCCESS

    def _ready(self, graph: WorkflowGraph, state: _RunState) -> list[str]:
        # Targets of dangling connections never run.
        ready = find_ready_nodes(graph.connections, state.succeeded, state.attempted)
        return [node_id for node_id in ready if node_id in state.specs]

    def _canceled(self, record: ExecutionRecord) -> ExecutionStatus:
        self.tracker.record_event(record, "Workflow execution canceled", LogLevel.WARNING)
        return ExecutionStatus.CANCELED

    def _run_batch(self, record: ExecutionRecord, ready: list[str], state: _RunState) -> None:
        """Runs independent nodes concurrently, then records them in ``ready`` order."""
        workers = max(1, min(self.settings.max_concurrency, len(ready)))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="nodeflow") as pool:
            futures = [
                (node_id, pool.submit(self._invoke, record, state.specs[node_id], state.input_for(node_id), state))
                for node_id in ready
            ]
        for node_id, future in futures:
            try:
                result = future.result()
            except Exception as e:
                result = failure_from(e)
            self._track(record, node_id, result, state)

    def execute_node(
        self,
        record: ExecutionRecord,
        spec: NodeSpec,
        input_data: dict[str, Any],
        state: _RunState | None = None,
    ) -> NodeExecutionResult:
        """
        Runs a single node through the guarded runner and tracks its outcome.

        :param record: The execution the node belongs to
        :type record: ExecutionRecord
        :param spec: The node as declared in the graph
        :type spec: NodeSpec
        :param input_data: Input handed to the node
        :type input_data: dict[str, Any]
        :returns: The node's final result
        :rtype: NodeExecutionResult
        :raises UnknownNodeTypeError: If the node type is not registered
        """
        result = self._invoke(record, spec, input_data, state)
        self._track(record, spec.id, result, state)
        return result

    def _invoke(
        self,
        record: ExecutionRecord,
        spec: NodeSpec,
        input_data: dict[str, Any],
        state: _RunState | None,
    ) -> NodeExecutionResult:
        node = state.nodes[spec.id] if state is not None else self.registry.resolve(spec.type)
        context = NodeExecutionContext(
            execution_id=record.id,
            workflow_ref=record.workflow_ref,
            node_id=spec.id,
            node=spec,
            input_data=dict(input_data),
            previous_outputs=dict(state.node_outputs) if state is not None else {},
            is_test=record.mode is ExecutionMode.TEST,
        )
        return self.runner.run(node, context)

    def _track(self, record: ExecutionRecord, node_id: str, result: NodeExecutionResult, state: _RunState | None):
        if state is not None:
            state.record(node_id, result)
        self.tracker.record_node_outcome(record, node_id, result, result.execution_time)
