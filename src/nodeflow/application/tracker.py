"""Per-node outcome recording and rolling per-workflow statistics."""

from typing import Any

from loguru import logger

from nodeflow.application.port import ExecutionStore, StatsCache
from nodeflow.domain.entity import ExecutionLogEntry, ExecutionRecord, NodeExecutionResult, utcnow
from nodeflow.domain.value_object import ExecutionStatus, LogLevel

NODE_STATS_PREFIX = "workflow_stats:"
RUN_STATS_PREFIX = "workflow_runs:"


def empty_stats() -> dict[str, Any]:
    return {
        "totalExecutions": 0,
        "successfulExecutions": 0,
        "failedExecutions": 0,
        "averageExecutionTime": 0.0,
        "lastExecutionAt": None,
    }


def fold_stats(stats: dict[str, Any] | None, success: bool, elapsed: float) -> dict[str, Any]:
    """
    Adds one outcome to a stats mapping and returns the new mapping.

    The average is an incremental moving mean over every recorded outcome.
    """
    stats = dict(stats or empty_stats())
    stats["totalExecutions"] += 1
    if success:
        stats["successfulExecutions"] += 1
    else:
        stats["failedExecutions"] += 1
    total = stats["totalExecutions"]
    stats["averageExecutionTime"] = (stats["averageExecutionTime"] * (total - 1) + elapsed) / total
    stats["lastExecutionAt"] = utcnow().isoformat()
    return stats


class ExecutionTracker:
    """Records node outcomes onto the execution record, its log and the stats cache."""

    def __init__(self, store: ExecutionStore, cache: StatsCache, stats_ttl: float = 86400.0, slow_execution_ms: int = 300000):
        self.store = store
        self.cache = cache
        self.stats_ttl = stats_ttl
        self.slow_execution_ms = slow_execution_ms

    def record_node_outcome(self, record: ExecutionRecord, node_id: str, result: NodeExecutionResult, elapsed: float) -> None:
        """
        Tracks one finished node call.

        Must be called from the thread that owns ``record``.

        :param record: The execution the node ran in
        :type record: ExecutionRecord
        :param node_id: Id of the node within the graph
        :type node_id: str
        :param result: The node's final result (after retries)
        :type result: NodeExecutionResult
        :param elapsed: Wall time of the call in seconds
        :type elapsed: float
        """
        entry = {
            "nodeId": node_id,
            "executionTime": elapsed,
            "success": result.success,
            "attempts": result.attempts,
            "errorMessage": result.error_message,
            "dataSize": result.data_size,
            "timestamp": utcnow().isoformat(),
        }
        metadata = record.metadata
        metadata.setdefault("nodeExecutions", []).append(entry)
        metadata["totalExecutionTime"] = metadata.get("totalExecutionTime", 0.0) + elapsed
        failed = metadata.setdefault("failedNodes", [])
        if not result.success and node_id not in failed:
            failed.append(node_id)
        if result.attempts > 1:
            record.retry_count += result.attempts - 1

        self.cache.update(
            NODE_STATS_PREFIX + record.workflow_ref,
            lambda stats: fold_stats(stats, result.success, elapsed),
            ttl=self.stats_ttl,
        )

        context = {
            "workflow_ref": record.workflow_ref,
            "execution_time": elapsed,
            "attempts": result.attempts,
            "data_size": entry["dataSize"],
        }
        if result.success:
            message = "Node execution successful"
            level = LogLevel.INFO
        else:
            message = "Node execution failed"
            level = LogLevel.WARNING
            context["error"] = result.error_message
            context["error_class"] = result.error_class.value if result.error_class else None
        self.store.append_log(
            ExecutionLogEntry(execution_id=record.id, node_id=node_id, level=level, message=message, context=context)
        )

        log = logger.bind(execution_id=record.id, node_id=node_id)
        if result.success:
            log.debug(f"{message} in {elapsed:.3f}s")
        else:
            log.warning(f"{message}: {result.error_message}")

    def record_event(
        self,
        record: ExecutionRecord,
        message: str,
        level: LogLevel = LogLevel.INFO,
        node_id: str | None = None,
        **context: Any,
    ) -> None:
        """Appends an execution-level entry (start, round cap, cancellation...) to the log."""
        self.store.append_log(
            ExecutionLogEntry(execution_id=record.id, node_id=node_id, level=level, message=message, context=context)
        )

    def record_execution_outcome(self, record: ExecutionRecord) -> None:
        """
        Folds a finished execution into the per-workflow run statistics.

        Logs a warning for slow or failed executions.

        :param record: A record in a terminal status
        :type record: ExecutionRecord
        """
        duration = (record.duration_ms or 0) / 1000
        success = record.status is ExecutionStatus.SUCCESS
        self.cache.update(
            RUN_STATS_PREFIX + record.workflow_ref,
            lambda stats: fold_stats(stats, success, duration),
            ttl=self.stats_ttl,
        )

        log = logger.bind(execution_id=record.id, workflow_ref=record.workflow_ref)
        if (record.duration_ms or 0) > self.slow_execution_ms:
            log.warning(f"Slow execution detected: {record.duration_ms}ms")
        if record.status is ExecutionStatus.ERROR:
            log.warning(f"Workflow execution failed: {record.error_message}")

    def get_workflow_stats(self, workflow_ref: str) -> dict[str, Any]:
        """Rolling statistics over node outcomes of a workflow."""
        return self.cache.get(NODE_STATS_PREFIX + workflow_ref, empty_stats())

    def get_run_stats(self, workflow_ref: str) -> dict[str, Any]:
        """Rolling statistics over whole executions of a workflow."""
        return self.cache.get(RUN_STATS_PREFIX + workflow_ref, empty_stats())
