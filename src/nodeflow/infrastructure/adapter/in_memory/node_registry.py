from collections.abc import Callable, Iterable
from typing import Any

from loguru import logger

from nodeflow.application.port import NodeRegistry
from nodeflow.domain.error import UnknownNodeTypeError
from nodeflow.domain.port import NodeBase

NodeFactory = type[NodeBase] | Callable[[], NodeBase]


class InMemoryNodeRegistry(NodeRegistry):
    """Resolves nodes from an in-memory registry of factories keyed by type id."""

    def __init__(self, nodes: Iterable[NodeFactory] | None = None):
        """
        Initializes the registry with an optional list of node classes.

        :param nodes: Node classes (or zero-argument factories) to register
        :type nodes: Iterable[NodeFactory] | None
        """
        self._registry: dict[str, NodeFactory] = {}
        for node in nodes or ():
            self.register(node)

    def register(self, node: NodeFactory, node_type: str | None = None) -> bool:
        key = node_type or getattr(node, "node_type", None) or getattr(node, "__name__", None)
        if not key:
            raise ValueError(f"Cannot determine a node type id for {node!r}")
        if key in self._registry:
            logger.warning(f"Node type '{key}' is already registered; keeping the existing one")
            return False
        self._registry[key] = node
        logger.debug(f"Registered node type '{key}'")
        return True

    def unregister(self, node_type: str) -> bool:
        """
        Removes a node type.

        :param node_type: The type id
        :type node_type: str
        :returns: True if something was removed
        :rtype: bool
        """
        return self._registry.pop(node_type, None) is not None

    def has(self, node_type: str) -> bool:
        return node_type in self._registry

    def resolve(self, node_type: str) -> NodeBase:
        try:
            factory = self._registry[node_type]
        except KeyError:
            raise UnknownNodeTypeError(node_type) from None
        return factory()

    def types(self) -> list[str]:
        return list(self._registry)

    def by_category(self, category: str) -> list[str]:
        return [key for key in self._registry if self.resolve(key).category == category]

    def search(self, query: str) -> list[str]:
        """Type ids whose name, description or tags contain ``query`` (case-insensitive)."""
        query = query.lower()
        found = []
        for key in self._registry:
            node = self.resolve(key)
            haystack = [key, node.name, node.description, *node.tags]
            if any(query in str(text).lower() for text in haystack):
                found.append(key)
        return found

    def manifest(self) -> list[dict[str, Any]]:
        manifest = []
        for key in self._registry:
            entry = self.resolve(key).manifest()
            entry["id"] = key
            manifest.append(entry)
        return manifest

    def statistics(self) -> dict[str, Any]:
        categories: dict[str, int] = {}
        for key in self._registry:
            category = self.resolve(key).category
            categories[category] = categories.get(category, 0) + 1
        return {
            "total_nodes": len(self._registry),
            "categories": categories,
            "categories_count": len(categories),
        }
