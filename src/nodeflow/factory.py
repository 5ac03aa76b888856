from nodeflow.backend import BackendType
from nodeflow.client import Client
from nodeflow.domain.port import NodeBase
from nodeflow.infrastructure.adapter.in_memory.client import create as create_in_memory_service
from nodeflow.infrastructure.adapter.sqlite.client import create as create_sqlite_service


def create(backend: BackendType, nodes: list[type[NodeBase]] | None = None, **kwargs) -> Client:
    """
    Factory function to create a Client with the specified backend.

    :param backend: The backend type used to persist executions
    :type backend: BackendType
    :param nodes: Optional list of node classes to register next to the built-in ones
    :type nodes: list[type[NodeBase]] | None
    :param kwargs: ``settings`` (EngineSettings or mapping), ``error_policy``, ``autostart``,
        ``sleep``, ``clock``, and backend-specific options such as ``db_path``
    :returns: A configured Client instance
    :rtype: Client
    :raises ValueError: If the backend type is unsupported
    """
    nodes = nodes or []

    if backend == BackendType.IN_MEMORY:
        return Client(create_in_memory_service(nodes, **kwargs))

    elif backend == BackendType.SQLITE:
        db_path = kwargs.pop("db_path", ":memory:")
        return Client(create_sqlite_service(nodes, db_path=db_path, **kwargs))

    else:
        raise ValueError(f"Unsupported backend: {backend}")
