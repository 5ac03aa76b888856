import threading
import time
from collections.abc import Callable
from typing import Any

from loguru import logger
from msgspec import structs

from nodeflow.application.circuit_breaker import CircuitBreakerRegistry
from nodeflow.application.port import NodeRunner
from nodeflow.application.retry import RetryPolicy, classify_error
from nodeflow.domain.entity import NodeExecutionContext, NodeExecutionResult
from nodeflow.domain.error import NodeTimeoutError
from nodeflow.domain.port import NodeBase
from nodeflow.domain.value_object import ErrorClass


def failure_from(error: BaseException) -> NodeExecutionResult:
    """Failed result for an exception, classified for the retry policy."""
    result = NodeExecutionResult.from_exception(error)
    if result.error_class is None or result.error_class is ErrorClass.UNKNOWN:
        result = structs.replace(result, error_class=classify_error(error))
    return result


class GuardedNodeRunner(NodeRunner):
    """
    Wraps a plain node runner with a hard deadline, a circuit breaker and retries.

    Each attempt goes through the breaker for the node's call-site key and runs
    on a daemon helper thread that is abandoned once the deadline passes. Failed
    attempts are retried while the policy allows it, sleeping the policy's
    delay in between.

    Python threads cannot be interrupted: a timed-out call keeps running in the
    background, and a retry starts a fresh call alongside it. Nodes with side
    effects should keep ``max_execution_time`` above their worst-case latency
    or be idempotent.
    """

    def __init__(
        self,
        runner: NodeRunner,
        policy: RetryPolicy,
        breakers: CircuitBreakerRegistry,
        node_timeout: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner
        self.policy = policy
        self.breakers = breakers
        self.node_timeout = node_timeout
        self._sleep = sleep

    def deadline_for(self, node: NodeBase, context: NodeExecutionContext) -> float | None:
        """The tightest of the node's own limit, the engine cap and the context timeout."""
        limits = [t for t in (node.max_execution_time, self.node_timeout, context.timeout) if t]
        return min(limits) if limits else None

    @staticmethod
    def breaker_key_for(node: NodeBase, context: NodeExecutionContext) -> str:
        """The node's declared dependency key, else one scoped to this workflow and node type."""
        return node.breaker_key(context.properties) or f"{context.workflow_ref}:{node.node_type}"

    def run(self, node: NodeBase, context: NodeExecutionContext) -> NodeExecutionResult:
        """
        Run a node until it succeeds or the retry policy gives up.

        Never raises: every failure, including a rejected breaker call, comes
        back as an unsuccessful result.

        :param node: The node to run
        :type node: NodeBase
        :param context: The context handed to the node
        :type context: NodeExecutionContext
        :returns: The last attempt's result, stamped with attempts and total time
        :rtype: NodeExecutionResult
        """
        breaker = self.breakers.get(self.breaker_key_for(node, context))
        deadline = self.deadline_for(node, context)
        log = logger.bind(execution_id=context.execution_id, node_id=context.node_id)
        started = time.perf_counter()
        attempts = 0

        while True:
            attempts += 1
            try:
                result = breaker.call(self._call_with_deadline, node, context, deadline)
            except Exception as e:
                result = failure_from(e)

            if result.success or not self.policy.should_retry(result, attempts - 1):
                break

            delay = self.policy.calculate_delay(attempts)
            log.info(f"Retrying node in {delay:.2f}s (attempt {attempts + 1}): {result.error_message}")
            if delay > 0:
                self._sleep(delay)

        return result.with_timing(attempts, time.perf_counter() - started)

    def _call_with_deadline(
        self, node: NodeBase, context: NodeExecutionContext, deadline: float | None
    ) -> NodeExecutionResult:
        if deadline is None:
            return self.runner.run(node, context)

        outcome: dict[str, Any] = {}

        def target() -> None:
            try:
                outcome["result"] = self.runner.run(node, context)
            except BaseException as e:
                outcome["error"] = e

        # Daemon, so a call that never returns cannot hold up interpreter exit.
        worker = threading.Thread(target=target, name=f"node-{context.node_id}", daemon=True)
        worker.start()
        worker.join(deadline)
        if worker.is_alive():
            return failure_from(NodeTimeoutError(f"Node '{context.node_id}' exceeded its {deadline}s deadline"))
        if "error" in outcome:
            raise outcome["error"]
        return outcome["result"]
