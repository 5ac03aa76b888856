#!/usr/bin/env python3
"""
Example using the Client façade.
Runs a small graph synchronously, then the same graph through the queue.
"""

import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))

import nodeflow
from nodeflow.logging import configure_logging


class GreetNode(nodeflow.NodeBase):
    node_type = "greet"
    name = "Greet"
    category = "demo"

    def execute(self, context):
        return nodeflow.NodeExecutionResult.ok({"greeting": f"Hello, {context.input_data.get('name', 'world')}!"})


GRAPH = {
    "id": "hello",
    "nodes": [
        {"id": "start", "type": "manual_trigger"},
        {"id": "greet", "type": "greet"},
        {"id": "stamp", "type": "set", "properties": {"values": {"meta.source": "example"}}},
    ],
    "connections": [{"source": "start", "target": "greet"}, {"source": "greet", "target": "stamp"}],
}


def main():
    configure_logging(level="INFO")

    client = nodeflow.create(nodeflow.BackendType.IN_MEMORY).node(GreetNode)

    result = client.execute_sync(GRAPH, {"name": "Ari"})
    print(result.status.value, result.output_data)

    job_id = client.dispatch(GRAPH, {"name": "queue"}, priority="high")
    client.wait(timeout=10)
    info = client.get_job_info(job_id)
    print(info["status"], client.get_execution(info["execution_id"]).output_data)
    print(client.get_workflow_stats("hello"))

    # Swapping the backend is one line:
    # client = nodeflow.create(nodeflow.BackendType.SQLITE, db_path="executions.db")
    client.close()


if __name__ == "__main__":
    main()
