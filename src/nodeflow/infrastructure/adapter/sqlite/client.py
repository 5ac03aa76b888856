from collections.abc import Iterable

from nodeflow.application.service import WorkflowService
from nodeflow.domain.port import NodeBase
from nodeflow.infrastructure.adapter.sqlite.execution_store import SQLiteExecutionStore
from nodeflow.infrastructure.provider import build_components


class SQLiteService(WorkflowService):
    """SQLite-backed workflow service. Execution records and logs survive restarts."""

    pass


def create(nodes: Iterable[type[NodeBase]] | None = None, db_path: str = ":memory:", **options) -> SQLiteService:
    """
    Creates a SQLiteService with the specified nodes and database path.

    :param nodes: Node classes to register next to the built-in ones
    :type nodes: Iterable[type[NodeBase]] | None
    :param db_path: Path to SQLite database file (defaults to in-memory)
    :type db_path: str
    :param options: Forwarded to ``build_components`` (settings, error_policy, autostart, sleep, clock)
    :returns: Configured SQLiteService instance
    :rtype: SQLiteService
    """
    return SQLiteService(**build_components(SQLiteExecutionStore(db_path=db_path), nodes, **options))
