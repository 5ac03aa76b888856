"""
Tests for domain entities.

This module tests graph decoding, execution records and result structs.
"""

import msgspec
import pytest

from nodeflow.domain.entity import (
    Connection,
    ExecutionRecord,
    ExecutionResult,
    Job,
    NodeExecutionContext,
    NodeExecutionResult,
    NodeSpec,
    WorkflowGraph,
)
from nodeflow.domain.error import ConnectionFailedError, InvalidNodeError, InvalidTransitionError
from nodeflow.domain.value_object import ErrorClass, ExecutionStatus, JobStatus, Priority


class TestWorkflowGraph:
    """Test cases for graph structs."""

    def test_decode_graph_from_dict(self):
        """Test decoding a graph with camelCase connection keys."""
        data = {
            "nodes": [
                {"id": "a", "type": "manual_trigger", "position": {"x": 10, "y": 20}},
                {"id": "b", "type": "set", "properties": {"values": {"k": 1}}},
            ],
            "connections": [{"source": "a", "target": "b", "sourceOutput": "main", "targetInput": "main"}],
            "settings": {"timezone": "UTC"},
        }

        graph = msgspec.convert(data, type=WorkflowGraph)

        assert graph.node_ids() == ["a", "b"]
        assert graph.nodes[0].position.x == 10
        assert graph.node("b").properties == {"values": {"k": 1}}
        assert graph.connections[0] == Connection(source="a", target="b")
        assert graph.settings == {"timezone": "UTC"}

    def test_connection_defaults_to_main_ports(self):
        """Test connection output/input default to 'main'."""
        conn = msgspec.convert({"source": "a", "target": "b"}, type=Connection)

        assert conn.source_output == "main"
        assert conn.target_input == "main"

    def test_node_lookup_returns_none_for_unknown_id(self):
        """Test looking up a missing node."""
        graph = WorkflowGraph(nodes=[NodeSpec(id="a", type="noop")])

        assert graph.node("missing") is None

    def test_node_spec_validate_rejects_empty_type(self):
        """Test node spec validation."""
        with pytest.raises(InvalidNodeError, match="has no type"):
            NodeSpec(id="a", type="").validate()

    def test_node_spec_validate_rejects_empty_id(self):
        with pytest.raises(InvalidNodeError, match="Invalid node id"):
            NodeSpec(id="", type="noop").validate()


class TestNodeExecutionResult:
    """Test cases for NodeExecutionResult."""

    def test_ok_result(self):
        result = NodeExecutionResult.ok({"a": 1}, source="test")

        assert result.success
        assert result.output_data == {"a": 1}
        assert result.metadata == {"source": "test"}
        assert result.error_message is None

    def test_failure_result(self):
        result = NodeExecutionResult.failure("boom", ErrorClass.CONNECTION)

        assert not result.success
        assert result.error_message == "boom"
        assert result.error_class is ErrorClass.CONNECTION

    def test_from_exception_carries_type_and_class(self):
        """Test wrapping a typed exception."""
        result = NodeExecutionResult.from_exception(ConnectionFailedError("refused"))

        assert not result.success
        assert result.error_message == "refused"
        assert result.error_type == "ConnectionFailedError"
        assert result.error_class is ErrorClass.CONNECTION

    def test_from_exception_without_message_uses_type_name(self):
        result = NodeExecutionResult.from_exception(RuntimeError())

        assert result.error_message == "RuntimeError"

    def test_result_is_frozen(self):
        result = NodeExecutionResult.ok()

        with pytest.raises(AttributeError):
            result.success = False

    def test_with_timing_returns_copy(self):
        result = NodeExecutionResult.ok({"a": 1})

        timed = result.with_timing(3, 0.5)

        assert timed.attempts == 3
        assert timed.execution_time == 0.5
        assert result.attempts == 1

    def test_data_size_is_encoded_length(self):
        assert NodeExecutionResult.ok({"a": 1}).data_size == len(b'{"a":1}')


class TestExecutionRecord:
    """Test cases for the execution record state machine."""

    def setup_method(self):
        self.record = ExecutionRecord(id="e1", workflow_ref="wf")

    def test_new_record_is_waiting(self):
        assert self.record.status is ExecutionStatus.WAITING
        assert self.record.started_at is None
        assert self.record.finished_at is None

    def test_transition_to_running_sets_started_at(self):
        self.record.transition(ExecutionStatus.RUNNING)

        assert self.record.status is ExecutionStatus.RUNNING
        assert self.record.started_at is not None

    def test_finish_sets_timing_once(self):
        """Test finishing a running record stamps finished_at and duration."""
        self.record.transition(ExecutionStatus.RUNNING)

        self.record.finish(ExecutionStatus.SUCCESS, {"x": 1})

        assert self.record.status is ExecutionStatus.SUCCESS
        assert self.record.finished_at is not None
        assert self.record.duration_ms >= 0
        assert self.record.output_data == {"x": 1}

        with pytest.raises(InvalidTransitionError):
            self.record.finish(ExecutionStatus.ERROR, error_message="again")
        assert self.record.status is ExecutionStatus.SUCCESS

    def test_waiting_record_can_be_canceled(self):
        self.record.finish(ExecutionStatus.CANCELED)

        assert self.record.status is ExecutionStatus.CANCELED
        assert self.record.duration_ms == 0

    def test_waiting_record_cannot_succeed_directly(self):
        with pytest.raises(InvalidTransitionError):
            self.record.finish(ExecutionStatus.SUCCESS)

    def test_running_cannot_go_back_to_waiting(self):
        self.record.transition(ExecutionStatus.RUNNING)

        with pytest.raises(InvalidTransitionError):
            self.record.transition(ExecutionStatus.WAITING)

    def test_finish_rejects_non_terminal_status(self):
        self.record.transition(ExecutionStatus.RUNNING)

        with pytest.raises(InvalidTransitionError):
            self.record.finish(ExecutionStatus.RUNNING)

    def test_record_json_roundtrip(self):
        """Test records survive JSON encoding, as the SQLite store relies on it."""
        self.record.transition(ExecutionStatus.RUNNING)
        self.record.metadata["nodeExecutions"] = [{"nodeId": "a"}]

        decoded = msgspec.json.decode(msgspec.json.encode(self.record), type=ExecutionRecord)

        assert decoded == self.record


class TestExecutionResult:
    """Test cases for ExecutionResult serialization."""

    def setup_method(self):
        self.result = ExecutionResult(
            execution_id="e1",
            workflow_ref="wf",
            status=ExecutionStatus.SUCCESS,
            output_data={"a": 1},
            node_results={"n1": NodeExecutionResult.ok({"a": 1}), "n2": NodeExecutionResult.failure("bad")},
        )

    def test_is_success_and_failed_nodes(self):
        assert self.result.is_success
        assert self.result.failed_nodes == ["n2"]

    def test_to_dict(self):
        data = self.result.to_dict()

        assert data["status"] == "success"
        assert data["node_results"]["n2"]["error_message"] == "bad"

    def test_to_json(self):
        assert '"execution_id":"e1"' in self.result.to_json()

    def test_to_yaml(self):
        assert "execution_id: e1" in self.result.to_yaml()


class TestNodeExecutionContext:
    """Test cases for NodeExecutionContext helpers."""

    def setup_method(self):
        self.context = NodeExecutionContext(
            execution_id="e1",
            workflow_ref="wf",
            node_id="b",
            node=NodeSpec(id="b", type="noop", properties={"url": "http://x"}),
            input_data={"in": 1},
            previous_outputs={"a": {"out": 2}},
        )

    def test_property_access(self):
        assert self.context.properties == {"url": "http://x"}
        assert self.context.get_property("url") == "http://x"
        assert self.context.get_property("missing", 5) == 5
        assert self.context.has_property("url")
        assert not self.context.has_property("missing")

    def test_previous_output(self):
        assert self.context.get_previous_output("a") == {"out": 2}
        assert self.context.get_previous_output("zzz") is None

    def test_variables(self):
        self.context.set_variable("count", 3)

        assert self.context.get_variable("count") == 3
        assert self.context.get_variable("other", "d") == "d"

    def test_child_context(self):
        child = self.context.child("c", {"x": 1})

        assert child.node_id == "c"
        assert child.input_data == {"x": 1}
        assert child.execution_id == "e1"
        assert self.context.node_id == "b"


class TestJob:
    def test_info_omits_graph_and_payload(self):
        job = Job(
            id="j1",
            execution_id="e1",
            workflow_ref="wf",
            priority=Priority.HIGH,
            queue="high-priority",
            graph=WorkflowGraph(),
            payload={"secret": 1},
        )

        info = job.info()

        assert info["job_id"] == "j1"
        assert info["status"] == JobStatus.QUEUED.value
        assert info["priority"] == "high"
        assert "graph" not in info
        assert "payload" not in info
