from loguru import logger

from nodeflow.application.port import NodeRunner
from nodeflow.application.runner import failure_from
from nodeflow.domain.entity import NodeExecutionContext, NodeExecutionResult
from nodeflow.domain.port import NodeBase


class InMemoryTaskRunner(NodeRunner):
    def run(self, node: NodeBase, context: NodeExecutionContext) -> NodeExecutionResult:
        """
        Execute a node in the calling thread.

        Exceptions raised by the node become failed results. A node returning
        a plain mapping (or nothing) succeeds with that mapping as output.

        :param node: The node instance to execute
        :type node: NodeBase
        :param context: The context handed to the node
        :type context: NodeExecutionContext
        :returns: The result of node execution
        :rtype: NodeExecutionResult
        """
        try:
            result = node.execute(context)
        except Exception as e:
            logger.bind(execution_id=context.execution_id, node_id=context.node_id).debug(
                f"Node raised {type(e).__name__}: {e}"
            )
            return failure_from(e)
        if isinstance(result, NodeExecutionResult):
            return result
        if result is None or isinstance(result, dict):
            return NodeExecutionResult.ok(result)
        return failure_from(TypeError(f"Node '{context.node_id}' returned {type(result).__name__}, expected a result"))
