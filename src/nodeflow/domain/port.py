from typing import Any, ClassVar

from nodeflow.domain.entity import NodeExecutionContext, NodeExecutionResult


class NodeBase:
    """Base class for all executable nodes. Enforces an 'execute' method and a type id.

    Subclasses describe themselves with class attributes and are registered
    explicitly with a node registry under ``node_type``.
    """

    node_type: ClassVar[str] = ""
    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    version: ClassVar[str] = "1.0.0"
    category: ClassVar[str] = "core"
    tags: ClassVar[tuple[str, ...]] = ()
    properties_schema: ClassVar[dict[str, Any]] = {}
    max_execution_time: ClassVar[float] = 300.0
    supports_async: ClassVar[bool] = False
    priority: ClassVar[int] = 0

    def __init_subclass__(cls, **kwargs):
        """
        Ensures the subclass defines an 'execute' method and has a type id.

        :param kwargs: Additional keyword arguments passed to super().__init_subclass__
        :raises TypeError: If the subclass doesn't define an 'execute' method
        """
        super().__init_subclass__(**kwargs)

        if "execute" not in cls.__dict__:
            raise TypeError(f"{cls.__name__} must define a 'execute' method")

        if not cls.__dict__.get("node_type"):
            cls.node_type = cls.__name__

    def validate_properties(self, properties: dict[str, Any]) -> bool:
        """
        Checks declared properties before any execution starts.

        The default accepts any properties whose required schema entries are present.

        :param properties: The node's properties from the graph
        :type properties: dict[str, Any]
        :returns: True if the node can run with these properties
        :rtype: bool
        """
        for key, schema in self.properties_schema.items():
            if isinstance(schema, dict) and schema.get("required") and key not in properties:
                return False
        return True

    def breaker_key(self, properties: dict[str, Any]) -> str | None:
        """
        Names the external dependency this node calls, for circuit breaking.

        Nodes that talk to a shared service return a key for it, so every
        workflow calling that service shares one breaker. The default declares
        no dependency and the runner keys the breaker by workflow and node type.

        :param properties: The node's properties from the graph
        :type properties: dict[str, Any]
        :returns: The call-site key, or None; nodes sharing a key share a breaker
        :rtype: str | None
        """
        return None

    def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
        """
        Runs the node.

        :param context: Input data, properties and surrounding execution state
        :type context: NodeExecutionContext
        :returns: The outcome of the node
        :rtype: NodeExecutionResult
        :raises NotImplementedError: Must be implemented by subclasses
        """
        raise NotImplementedError("Nodes must implement the execute method")

    @classmethod
    def manifest(cls) -> dict[str, Any]:
        """Describes the node type for listings."""
        return {
            "id": cls.node_type,
            "name": cls.name or cls.__name__,
            "version": cls.version,
            "category": cls.category,
            "description": cls.description,
            "properties": cls.properties_schema,
            "tags": list(cls.tags),
            "supports_async": cls.supports_async,
            "max_execution_time": cls.max_execution_time,
            "priority": cls.priority,
        }
