"""
Tests for the in-memory queue dispatcher.

This module tests priority ordering, cancellation and health reporting.
"""

import threading
import time

import pytest

from nodeflow.application.service import load_graph
from nodeflow.domain.entity import NodeExecutionResult
from nodeflow.domain.error import JobNotFoundError, UnknownNodeTypeError
from nodeflow.domain.port import NodeBase
from nodeflow.domain.value_object import ExecutionMode, ExecutionStatus, JobStatus, Priority
from nodeflow.infrastructure.adapter.in_memory.execution_store import InMemoryExecutionStore
from nodeflow.infrastructure.adapter.in_memory.queue import HEALTHY, health_recommendations, health_score
from nodeflow.infrastructure.provider import build_components


class RecorderNode(NodeBase):
    """Appends the workflow ref of every run to a shared list."""

    node_type = "recorder"
    seen: list[str] = []

    def execute(self, context):
        type(self).seen.append(context.workflow_ref)
        return NodeExecutionResult.ok({"seen": context.workflow_ref})


class GateNode(NodeBase):
    """Blocks until the test opens the gate."""

    node_type = "gate"
    gate = threading.Event()

    def execute(self, context):
        type(self).gate.wait(5)
        return NodeExecutionResult.ok({"passed": True})


class BrokenNode(NodeBase):
    node_type = "broken"

    def execute(self, context):
        return NodeExecutionResult.failure("cannot start")


def single_node(node_type, ref="wf"):
    return {"id": ref, "nodes": [{"id": "n", "type": node_type}]}


def wait_for_status(queue, job_id, status, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if queue.get_job_info(job_id)["status"] == status.value:
            return True
        time.sleep(0.01)
    return False


class TestInMemoryQueueDispatcher:
    """Test cases for InMemoryQueueDispatcher."""

    def setup_method(self):
        RecorderNode.seen = []
        GateNode.gate = threading.Event()
        self.store = InMemoryExecutionStore()
        components = build_components(
            self.store,
            [RecorderNode, GateNode, BrokenNode],
            settings={"queue_workers": 1, "queue_poll_interval": 0.01, "retry_strategy": "immediate"},
            autostart=False,
            sleep=lambda s: None,
        )
        self.engine = components["engine"]
        self.queue = components["queue"]

    def teardown_method(self):
        GateNode.gate.set()
        self.queue.stop()

    def dispatch(self, node_type, ref="wf", priority=Priority.NORMAL, payload=None):
        return self.queue.dispatch(load_graph(single_node(node_type, ref)), payload, priority)

    def test_dispatch_creates_waiting_record(self):
        job_id = self.dispatch("recorder", payload={"x": 1})

        info = self.queue.get_job_info(job_id)
        record = self.store.get(info["execution_id"])
        assert info["status"] == "queued"
        assert info["queue"] == "default"
        assert record.status is ExecutionStatus.WAITING
        assert record.mode is ExecutionMode.QUEUE
        assert record.input_data == {"x": 1}

    def test_dispatch_validates_graph(self):
        with pytest.raises(UnknownNodeTypeError):
            self.dispatch("missing")

        assert self.queue.get_queue_status()["total"]["pending"] == 0
        assert self.store.list_ids() == []

    def test_jobs_run_by_priority_then_fifo(self):
        self.dispatch("recorder", "low-1", Priority.LOW)
        self.dispatch("recorder", "normal-1", Priority.NORMAL)
        self.dispatch("recorder", "high-1", Priority.HIGH)
        self.dispatch("recorder", "normal-2", Priority.NORMAL)
        self.dispatch("recorder", "high-2", Priority.HIGH)

        self.queue.start()

        assert self.queue.join(timeout=5)
        assert RecorderNode.seen == ["high-1", "high-2", "normal-1", "normal-2", "low-1"]

    def test_completed_job(self):
        job_id = self.dispatch("recorder")
        self.queue.start()

        assert self.queue.join(timeout=5)
        info = self.queue.get_job_info(job_id)
        assert info["status"] == "completed"
        assert info["started_at"] is not None
        assert info["finished_at"] is not None
        assert self.store.get(info["execution_id"]).status is ExecutionStatus.SUCCESS

    def test_failed_job(self):
        job_id = self.dispatch("broken")
        self.queue.start()
        self.queue.join(timeout=5)

        info = self.queue.get_job_info(job_id)
        assert info["status"] == "failed"
        assert info["error"] == "Trigger node 'n' failed: cannot start"
        assert self.queue.get_queue_status()["default"]["failed"] == 1
        assert self.queue.clear_failed() == 1
        with pytest.raises(JobNotFoundError):
            self.queue.get_job_info(job_id)

    def test_cancel_queued_job(self):
        job_id = self.dispatch("recorder")

        assert self.queue.cancel(job_id) is True

        self.queue.start()
        assert self.queue.join(timeout=5)
        info = self.queue.get_job_info(job_id)
        assert info["status"] == "canceled"
        assert RecorderNode.seen == []
        assert self.store.get(info["execution_id"]).status is ExecutionStatus.CANCELED

    def test_cancel_processing_job(self):
        graph = load_graph(
            {
                "nodes": [{"id": "gate", "type": "gate"}, {"id": "after", "type": "recorder"}],
                "connections": [{"source": "gate", "target": "after"}],
            }
        )
        job_id = self.queue.dispatch(graph)
        self.queue.start()
        assert wait_for_status(self.queue, job_id, JobStatus.PROCESSING)

        assert self.queue.cancel(job_id) is True
        GateNode.gate.set()

        assert self.queue.join(timeout=5)
        info = self.queue.get_job_info(job_id)
        assert info["status"] == "canceled"
        assert RecorderNode.seen == []
        assert self.store.get(info["execution_id"]).status is ExecutionStatus.CANCELED

    def test_cancel_finished_job(self):
        job_id = self.dispatch("recorder")
        self.queue.start()
        self.queue.join(timeout=5)

        assert self.queue.cancel(job_id) is False

    def test_cancel_unknown_job(self):
        with pytest.raises(JobNotFoundError):
            self.queue.cancel("nope")

    def test_queue_status_counts(self):
        self.dispatch("recorder", priority=Priority.HIGH)
        self.dispatch("recorder", priority=Priority.LOW)
        self.dispatch("recorder", priority=Priority.LOW)

        status = self.queue.get_queue_status()

        assert status["high-priority"] == {"pending": 1, "processing": 0, "failed": 0}
        assert status["low-priority"]["pending"] == 2
        assert status["default"]["pending"] == 0
        assert status["total"] == {"pending": 3, "processing": 0, "failed": 0}

    def test_health_status(self):
        health = self.queue.get_health_status()

        assert health["score"] == 100
        assert health["recommendations"] == ["Queue is idle. Consider scaling down workers to save resources."]
        assert "total" in health["queues"]
        assert health["last_checked"] is not None

    def test_join_times_out_while_jobs_are_pending(self):
        self.dispatch("recorder")

        assert self.queue.join(timeout=0.05) is False

    def test_finished_job_releases_graph_and_payload(self):
        job_id = self.dispatch("recorder", payload={"blob": "x" * 1000})
        self.queue.start()
        self.queue.join(timeout=5)

        job = self.queue._jobs[job_id]
        assert job.graph is None
        assert job.payload == {}
        assert self.queue.get_job_info(job_id)["status"] == "completed"

    def test_cleanup_forgets_only_finished_jobs(self):
        done = self.dispatch("recorder")
        self.queue.start()
        self.queue.join(timeout=5)
        self.queue.stop()
        waiting = self.dispatch("recorder")

        assert self.queue.cleanup() == 0
        assert self.queue.cleanup(max_age=0) == 1
        with pytest.raises(JobNotFoundError):
            self.queue.get_job_info(done)
        assert self.queue.get_job_info(waiting)["status"] == "queued"

    def test_dispatch_drops_jobs_past_retention(self):
        first = self.dispatch("recorder")
        self.queue.start()
        self.queue.join(timeout=5)
        self.queue.retention = 0

        self.dispatch("recorder")

        with pytest.raises(JobNotFoundError):
            self.queue.get_job_info(first)


class TestHealthScore:
    @pytest.mark.parametrize(
        "pending, failed, expected",
        [
            (0, 0, 100),
            (11, 0, 95),
            (51, 0, 85),
            (101, 0, 70),
            (0, 1, 90),
            (0, 6, 80),
            (0, 11, 60),
            (101, 11, 30),
        ],
    )
    def test_score(self, pending, failed, expected):
        assert health_score({"pending": pending, "processing": 0, "failed": failed}) == expected

    def test_recommendations(self):
        assert health_recommendations({"pending": 101, "processing": 1, "failed": 11}) == [
            "High queue backlog detected. Consider scaling up workers.",
            "High failure rate detected. Check error logs and retry failed jobs.",
        ]
        assert health_recommendations({"pending": 5, "processing": 0, "failed": 0}) == [HEALTHY]
