from collections.abc import Iterable

from nodeflow.application.service import WorkflowService
from nodeflow.domain.port import NodeBase
from nodeflow.infrastructure.adapter.in_memory.execution_store import InMemoryExecutionStore
from nodeflow.infrastructure.provider import build_components


class InMemoryService(WorkflowService):
    pass


def create(nodes: Iterable[type[NodeBase]] | None = None, **options) -> InMemoryService:
    """
    Creates an InMemoryService with the specified nodes.

    :param nodes: Node classes to register next to the built-in ones
    :type nodes: Iterable[type[NodeBase]] | None
    :param options: Forwarded to ``build_components`` (settings, error_policy, autostart, sleep, clock)
    :returns: Configured InMemoryService instance
    :rtype: InMemoryService
    """
    return InMemoryService(**build_components(InMemoryExecutionStore(), nodes, **options))
