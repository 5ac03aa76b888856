"""
Tests for factory functions.

This module tests the create factory function and backend creation.
"""

import pytest

from nodeflow import EngineSettings
from nodeflow.backend import BackendType
from nodeflow.client import Client
from nodeflow.domain.entity import NodeExecutionResult
from nodeflow.domain.port import NodeBase
from nodeflow.factory import create
from nodeflow.infrastructure.adapter.in_memory.client import InMemoryService
from nodeflow.infrastructure.adapter.sqlite.client import SQLiteService
from nodeflow.infrastructure.adapter.sqlite.execution_store import SQLiteExecutionStore


class UpperNode(NodeBase):
    """Test node for factory tests."""

    node_type = "upper"

    def execute(self, context):
        return NodeExecutionResult.ok({"text": str(context.input_data.get("text", "")).upper()})


GRAPH = {"nodes": [{"id": "u", "type": "upper"}]}


class TestCreate:
    """Test cases for create factory function."""

    def teardown_method(self):
        client = getattr(self, "client", None)
        if client is not None:
            client.close()

    def test_create_in_memory_backend(self):
        self.client = create(BackendType.IN_MEMORY)

        assert isinstance(self.client, Client)
        assert isinstance(self.client.service, InMemoryService)

    def test_builtin_nodes_are_registered(self):
        self.client = create(BackendType.IN_MEMORY)

        assert self.client.nodes() == ["manual_trigger", "set", "wait", "noop"]

    def test_create_with_nodes(self):
        self.client = create(BackendType.IN_MEMORY, nodes=[UpperNode])

        result = self.client.execute_sync(GRAPH, {"text": "hi"})

        assert result.output_data == {"text": "HI"}

    def test_create_with_none_nodes(self):
        self.client = create(BackendType.IN_MEMORY, nodes=None)

        assert "upper" not in self.client.nodes()

    def test_settings_mapping_is_applied(self):
        self.client = create(BackendType.IN_MEMORY, settings={"max_rounds": 7, "max_retries": 0})

        settings = self.client.service.engine.settings
        assert isinstance(settings, EngineSettings)
        assert settings.max_rounds == 7
        assert self.client.service.engine.retry_policy.max_retries == 0

    def test_autostart_false_leaves_workers_idle(self):
        self.client = create(BackendType.IN_MEMORY, nodes=[UpperNode], autostart=False)

        job_id = self.client.dispatch(GRAPH)

        assert self.client.get_job_info(job_id)["status"] == "queued"
        assert self.client.wait(timeout=0.05) is False

    def test_create_sqlite_backend(self):
        self.client = create(BackendType.SQLITE, nodes=[UpperNode])

        assert isinstance(self.client.service, SQLiteService)
        assert isinstance(self.client.service.store, SQLiteExecutionStore)
        assert self.client.service.store.db_path == ":memory:"

    def test_create_sqlite_backend_with_path(self, tmp_path):
        db_path = str(tmp_path / "executions.db")

        self.client = create(BackendType.SQLITE, nodes=[UpperNode], db_path=db_path)
        result = self.client.execute_sync(GRAPH, {"text": "disk"})

        reopened = SQLiteExecutionStore(db_path)
        assert reopened.get(result.execution_id).output_data == {"text": "DISK"}
        reopened.close()

    def test_create_unsupported_backend(self):
        with pytest.raises(ValueError, match="Unsupported backend"):
            create("celery")
