"""
nodeflow - Workflow Execution Engine

Runs declarative graphs of typed nodes: dependency-ordered rounds with bounded
fan-out, partial-failure tolerance, retries of transient errors and circuit
breakers around failing call-sites, synchronously or through a priority queue.
"""

from nodeflow.application.error_policy import ErrorPolicy
from nodeflow.backend import BackendType
from nodeflow.client import Client
from nodeflow.domain.entity import ExecutionResult, NodeExecutionContext, NodeExecutionResult
from nodeflow.domain.port import NodeBase
from nodeflow.domain.value_object import EngineSettings, Priority
from nodeflow.factory import create

__all__ = [
    "Client",
    "BackendType",
    "create",
    "NodeBase",
    "NodeExecutionContext",
    "NodeExecutionResult",
    "ExecutionResult",
    "EngineSettings",
    "ErrorPolicy",
    "Priority",
]
