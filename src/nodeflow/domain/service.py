"""Graph dependency resolution.

Pure functions over node and connection lists: nothing here keeps state
between calls.
"""

from collections.abc import Iterable, Mapping

from nodeflow.domain.entity import Connection, NodeSpec, WorkflowGraph
from nodeflow.domain.error import DuplicateNodeError, NoTriggerNodeError


def validate_graph(graph: WorkflowGraph) -> bool:
    """
    Validates the graph structure independent of any node registry.

    :param graph: The WorkflowGraph instance to validate
    :type graph: WorkflowGraph
    :returns: True if the structure is valid
    :rtype: bool
    :raises DuplicateNodeError: If two nodes share an id
    :raises InvalidNodeError: If a node has no id or type
    """
    seen_ids = set()
    for node in graph.nodes:
        node.validate()
        if node.id in seen_ids:
            raise DuplicateNodeError(node.id)
        seen_ids.add(node.id)
    return True


def find_trigger_nodes(nodes: Iterable[NodeSpec], connections: Iterable[Connection]) -> list[str]:
    """
    Finds the nodes with no incoming connection, in graph order.

    :param nodes: Nodes of the graph
    :param connections: Connections of the graph
    :returns: Ids of the trigger nodes
    :rtype: list[str]
    :raises NoTriggerNodeError: If every node has an incoming connection
    """
    targets = {conn.target for conn in connections}
    triggers = [node.id for node in nodes if node.id not in targets]
    if not triggers:
        raise NoTriggerNodeError()
    return triggers


def build_adjacency(connections: Iterable[Connection]) -> dict[str, list[str]]:
    """Maps each source id to its target ids, in connection order."""
    graph: dict[str, list[str]] = {}
    for conn in connections:
        graph.setdefault(conn.source, []).append(conn.target)
    return graph


def build_dependencies(connections: Iterable[Connection]) -> dict[str, list[str]]:
    """Maps each target id to its source ids, in connection order."""
    deps: dict[str, list[str]] = {}
    for conn in connections:
        deps.setdefault(conn.target, []).append(conn.source)
    return deps


def has_cycle(connections: Iterable[Connection]) -> bool:
    """
    Detects a directed cycle with a depth-first walk over every component.

    A node met again while it is still on the walk's stack closes a cycle.

    :param connections: Connections of the graph
    :returns: True if the connections contain a cycle
    :rtype: bool
    """
    graph = build_adjacency(connections)
    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in graph:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        stack = [(root, iter(graph.get(root, ())))]
        while stack:
            node, neighbours = stack[-1]
            for neighbour in neighbours:
                if neighbour in on_stack:
                    return True
                if neighbour not in visited:
                    visited.add(neighbour)
                    on_stack.add(neighbour)
                    stack.append((neighbour, iter(graph.get(neighbour, ()))))
                    break
            else:
                on_stack.discard(node)
                stack.pop()
    return False


def find_ready_nodes(
    connections: Iterable[Connection],
    executed: Iterable[str],
    attempted: Iterable[str] | None = None,
) -> list[str]:
    """
    Finds connection targets whose every source has executed successfully.

    :param connections: Connections of the graph
    :param executed: Ids of nodes that completed successfully
    :param attempted: Ids of nodes already run (successfully or not); never returned
    :returns: Ready node ids, in order of first appearance as a target
    :rtype: list[str]
    """
    executed = set(executed)
    skip = executed | set(attempted or ())
    ready = []
    for target, sources in build_dependencies(connections).items():
        if target in skip:
            continue
        if all(source in executed for source in sources):
            ready.append(target)
    return ready


def can_run_concurrently(ready: Iterable[str], connections: Iterable[Connection]) -> bool:
    """
    Checks that no node in the batch feeds another node of the same batch.

    :param ready: Candidate batch of node ids
    :param connections: Connections of the graph
    :returns: True if the batch has no internal dependency
    :rtype: bool
    """
    batch = set(ready)
    for conn in connections:
        if conn.source in batch and conn.target in batch:
            return False
    return True


def find_dangling_connections(nodes: Iterable[NodeSpec], connections: Iterable[Connection]) -> list[Connection]:
    """Connections whose source or target is not a node of the graph."""
    node_ids = {node.id for node in nodes}
    return [conn for conn in connections if conn.source not in node_ids or conn.target not in node_ids]


def order_by_priority(ready: Iterable[str], priorities: Mapping[str, int]) -> list[str]:
    """Stable ordering of a ready set, higher node priority first."""
    return sorted(ready, key=lambda node_id: -priorities.get(node_id, 0))
