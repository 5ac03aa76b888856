"""
Tests for application services.

This module tests the application layer services including:
- load_graph function
- WorkflowService
"""

from unittest.mock import Mock

import msgspec
import pytest

from nodeflow.application.engine import ExecutionEngine
from nodeflow.application.port import ExecutionStore, JobQueue, NodeRegistry
from nodeflow.application.service import WorkflowService, load_graph
from nodeflow.application.tracker import ExecutionTracker
from nodeflow.domain.entity import ExecutionResult, ValidationReport, WorkflowGraph
from nodeflow.domain.error import DuplicateNodeError, GraphValidationError, InvalidNodeError
from nodeflow.domain.value_object import ExecutionMode, ExecutionStatus, Priority

GRAPH = {
    "id": "wf-1",
    "nodes": [
        {"id": "start", "type": "manual_trigger", "position": {"x": 0, "y": 0}, "properties": {}},
        {"id": "set", "type": "set", "properties": {"values": {"a": 1}}},
    ],
    "connections": [{"source": "start", "target": "set", "sourceOutput": "main", "targetInput": "main"}],
    "settings": {"timezone": "UTC"},
}


class TestLoadGraph:
    """Test cases for load_graph."""

    def test_from_dict(self):
        graph = load_graph(GRAPH)

        assert isinstance(graph, WorkflowGraph)
        assert graph.id == "wf-1"
        assert graph.node_ids() == ["start", "set"]
        assert graph.node("set").properties == {"values": {"a": 1}}
        assert graph.connections[0].source_output == "main"
        assert graph.settings == {"timezone": "UTC"}

    def test_from_json(self):
        graph = load_graph(msgspec.json.encode(GRAPH).decode())

        assert graph.connections[0].target == "set"

    def test_from_bytes(self):
        assert load_graph(msgspec.json.encode(GRAPH)).id == "wf-1"

    def test_graph_is_passed_through(self):
        graph = WorkflowGraph()

        assert load_graph(graph, check=False) is graph

    def test_optional_fields_default(self):
        graph = load_graph({"nodes": [{"id": "a", "type": "noop"}]})

        assert graph.connections == []
        assert graph.nodes[0].position.x == 0
        assert graph.nodes[0].properties == {}

    def test_missing_node_type_is_rejected(self):
        with pytest.raises(msgspec.ValidationError):
            load_graph({"nodes": [{"id": "a"}]})

    @pytest.mark.parametrize("node", [{"id": "a", "type": ""}, {"id": "", "type": "noop"}])
    def test_blank_id_or_type_is_a_graph_error(self, node):
        with pytest.raises(GraphValidationError) as exc_info:
            load_graph({"nodes": [node]})

        assert isinstance(exc_info.value, InvalidNodeError)

    def test_duplicate_ids_rejected_when_checked(self):
        data = {"nodes": [{"id": "a", "type": "noop"}, {"id": "a", "type": "noop"}]}

        with pytest.raises(DuplicateNodeError):
            load_graph(data)
        assert len(load_graph(data, check=False).nodes) == 2


class TestWorkflowService:
    """Test cases for WorkflowService."""

    def setup_method(self):
        self.registry = Mock(spec=NodeRegistry)
        self.engine = Mock(spec=ExecutionEngine)
        self.store = Mock(spec=ExecutionStore)
        self.tracker = Mock(spec=ExecutionTracker)
        self.queue = Mock(spec=JobQueue)
        self.service = WorkflowService(self.registry, self.engine, self.store, self.tracker, self.queue)

    def test_create_workflow_service(self):
        assert self.service.registry == self.registry
        assert self.service.engine == self.engine
        assert self.service.store == self.store
        assert self.service.tracker == self.tracker
        assert self.service.queue == self.queue

    def test_execute_sync(self):
        expected = ExecutionResult(execution_id="e1", workflow_ref="wf-1", status=ExecutionStatus.SUCCESS)
        self.engine.execute_sync.return_value = expected

        result = self.service.execute_sync(GRAPH, {"x": 1}, workflow_ref="orders")

        assert result == expected
        graph, payload, workflow_ref, mode = self.engine.execute_sync.call_args.args
        assert isinstance(graph, WorkflowGraph)
        assert payload == {"x": 1}
        assert workflow_ref == "orders"
        assert mode is ExecutionMode.MANUAL

    def test_execute_sync_propagates_engine_errors(self):
        self.engine.execute_sync.side_effect = RuntimeError("Engine failed")

        with pytest.raises(RuntimeError, match="Engine failed"):
            self.service.execute_sync(GRAPH)

    def test_validate_does_not_raise_on_duplicates(self):
        self.engine.validate.return_value = ValidationReport(valid=False, errors=["Duplicate node id found: a"])
        data = {"nodes": [{"id": "a", "type": "noop"}, {"id": "a", "type": "noop"}]}

        report = self.service.validate(data)

        assert not report.valid
        self.engine.validate.assert_called_once()

    def test_dispatch_coerces_priority(self):
        self.queue.dispatch.return_value = "job-1"

        job_id = self.service.dispatch(GRAPH, {"x": 1}, priority="high")

        assert job_id == "job-1"
        graph, payload, priority, workflow_ref = self.queue.dispatch.call_args.args
        assert graph.id == "wf-1"
        assert priority is Priority.HIGH
        assert workflow_ref is None

    def test_dispatch_rejects_unknown_priority(self):
        with pytest.raises(ValueError):
            self.service.dispatch(GRAPH, priority="urgent")

    def test_store_queries(self):
        self.store.list_ids.return_value = ["e1"]
        self.store.delete.return_value = True

        self.service.get_execution("e1")
        self.service.get_execution_logs("e1")

        self.store.get.assert_called_once_with("e1")
        self.store.get_logs.assert_called_once_with("e1")
        assert self.service.list_executions("wf-1") == ["e1"]
        self.store.list_ids.assert_called_once_with("wf-1")
        assert self.service.delete_execution("e1") is True

    def test_get_workflow_stats(self):
        self.tracker.get_workflow_stats.return_value = {"totalExecutions": 4}
        self.tracker.get_run_stats.return_value = {"totalExecutions": 2}

        stats = self.service.get_workflow_stats("wf-1")

        assert stats == {"nodes": {"totalExecutions": 4}, "runs": {"totalExecutions": 2}}

    def test_close_stops_queue_then_store(self):
        calls = []
        self.queue.stop.side_effect = lambda: calls.append("queue")
        self.store.close.side_effect = lambda: calls.append("store")

        self.service.close()

        assert calls == ["queue", "store"]
