import time
from collections.abc import Callable, Iterable
from typing import Any

from nodeflow.application.engine import ExecutionEngine
from nodeflow.application.error_policy import ErrorPolicy
from nodeflow.application.port import ExecutionStore
from nodeflow.application.tracker import ExecutionTracker
from nodeflow.domain.port import NodeBase
from nodeflow.domain.value_object import EngineSettings
from nodeflow.infrastructure.adapter.in_memory.node_registry import InMemoryNodeRegistry
from nodeflow.infrastructure.adapter.in_memory.queue import InMemoryQueueDispatcher
from nodeflow.infrastructure.adapter.in_memory.stats_cache import InMemoryStatsCache
from nodeflow.infrastructure.adapter.in_memory.task_runner import InMemoryTaskRunner
from nodeflow.nodes import BUILTIN_NODES


def load_builtin_nodes() -> list[type[NodeBase]]:
    """Returns the node classes every client starts with."""
    return list(BUILTIN_NODES)


def build_components(
    store: ExecutionStore,
    nodes: Iterable[type[NodeBase]] | None = None,
    settings: EngineSettings | dict | None = None,
    error_policy: ErrorPolicy | None = None,
    autostart: bool = True,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> dict[str, Any]:
    """
    Wires registry, tracker, engine and queue around an execution store.

    :param store: Where execution records and logs live
    :type store: ExecutionStore
    :param nodes: Extra node classes, registered after the built-in ones
    :type nodes: Iterable[type[NodeBase]] | None
    :param settings: Engine settings, or a mapping of them
    :type settings: EngineSettings | dict | None
    :param error_policy: Routes failed executions to fallback workflows
    :type error_policy: ErrorPolicy | None
    :param autostart: Start the queue workers right away
    :type autostart: bool
    :param sleep: Used between retries
    :param clock: Monotonic clock for circuit breakers and the stats cache
    :returns: Keyword arguments for a WorkflowService
    :rtype: dict[str, Any]
    """
    if isinstance(settings, dict):
        settings = EngineSettings.from_mapping(settings)
    settings = settings if settings is not None else EngineSettings()

    registry = InMemoryNodeRegistry(load_builtin_nodes())
    for node in nodes or ():
        registry.register(node)

    tracker = ExecutionTracker(
        store,
        InMemoryStatsCache(clock=clock),
        stats_ttl=settings.stats_ttl,
        slow_execution_ms=settings.slow_execution_ms,
    )
    engine = ExecutionEngine(
        registry,
        store,
        tracker,
        InMemoryTaskRunner(),
        settings=settings,
        error_policy=error_policy,
        sleep=sleep,
        clock=clock,
    )
    queue = InMemoryQueueDispatcher(engine, store, autostart=autostart)
    return {"registry": registry, "engine": engine, "store": store, "tracker": tracker, "queue": queue}
