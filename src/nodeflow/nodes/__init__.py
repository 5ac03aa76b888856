"""
Built-in nodes available to every client.
"""

import json
import time
from datetime import datetime, timezone
from typing import Any

from nodeflow.domain.entity import NodeExecutionContext, NodeExecutionResult, utcnow
from nodeflow.domain.error import NodeValidationError
from nodeflow.domain.port import NodeBase

__all__ = [
    "ManualTriggerNode",
    "SetNode",
    "WaitNode",
    "NoOpNode",
    "BUILTIN_NODES",
]

TIME_UNITS = {"seconds": 1, "minutes": 60, "hours": 3600}


class ManualTriggerNode(NodeBase):
    """Starts a workflow with the payload it was submitted with."""

    node_type = "manual_trigger"
    name = "Manual Trigger"
    category = "trigger"
    description = "Start the workflow manually with an optional payload"
    tags = ("trigger", "manual")

    def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
        output = dict(context.input_data)
        output.update(context.get_property("defaults", {}))
        return NodeExecutionResult.ok(output, triggered_at=utcnow().isoformat())


def set_path(data: dict[str, Any], key: str, value: Any, overwrite: bool = True) -> None:
    """Sets ``value`` under a dotted ``key``, creating intermediate mappings."""
    *parents, last = key.split(".")
    current = data
    for part in parents:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    if overwrite or last not in current:
        current[last] = value


class SetNode(NodeBase):
    """Sets values on the data flowing through the workflow."""

    node_type = "set"
    name = "Set"
    category = "transform"
    description = "Set multiple values and variables in the workflow"
    tags = ("data", "transform")
    properties_schema = {
        "mode": {"type": "select", "options": ["manual", "json"], "default": "manual"},
        "values": {"type": "object", "description": "Key-value pairs to set (manual mode)"},
        "jsonData": {"type": "string", "description": "JSON object to set (json mode)"},
        "keepOnlySet": {"type": "boolean", "default": False},
        "options": {
            "type": "object",
            "properties": {
                "dotNotation": {"type": "boolean", "default": True},
                "overwrite": {"type": "boolean", "default": True},
            },
        },
    }

    def validate_properties(self, properties: dict[str, Any]) -> bool:
        mode = properties.get("mode", "manual")
        if mode == "manual":
            return bool(properties.get("values"))
        if mode == "json":
            try:
                return isinstance(json.loads(properties.get("jsonData") or ""), dict)
            except ValueError:
                return False
        return False

    def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
        mode = context.get_property("mode", "manual")
        if mode == "json":
            try:
                values = json.loads(context.get_property("jsonData", ""))
            except ValueError as e:
                raise NodeValidationError(f"Invalid JSON data: {e}") from e
        else:
            values = dict(context.get_property("values", {}))

        options = context.get_property("options", {})
        overwrite = options.get("overwrite", True)
        result = {} if context.get_property("keepOnlySet", False) else dict(context.input_data)
        if options.get("dotNotation", True):
            for key, value in values.items():
                set_path(result, key, value, overwrite)
        elif overwrite:
            result.update(values)
        else:
            result = {**values, **result}
        return NodeExecutionResult.ok(result, set_count=len(values))


class WaitNode(NodeBase):
    """Pauses the branch, then passes its input through."""

    node_type = "wait"
    name = "Wait"
    category = "flow"
    description = "Wait for a fixed time or until a point in time before continuing"
    tags = ("delay", "flow")
    max_execution_time = 3600.0
    properties_schema = {
        "waitType": {"type": "select", "options": ["fixed", "until"], "default": "fixed"},
        "waitTime": {"type": "number", "default": 5, "min": 0, "max": 3600},
        "timeUnit": {"type": "select", "options": list(TIME_UNITS), "default": "seconds"},
        "waitUntil": {"type": "datetime"},
        "maxWaitTime": {"type": "number", "default": 300, "min": 1, "max": 3600},
    }

    def validate_properties(self, properties: dict[str, Any]) -> bool:
        wait_type = properties.get("waitType", "fixed")
        if wait_type == "fixed":
            wait_time = properties.get("waitTime", 5)
            if not isinstance(wait_time, (int, float)) or not 0 < wait_time <= 3600:
                return False
            if properties.get("timeUnit", "seconds") not in TIME_UNITS:
                return False
        elif wait_type == "until":
            try:
                datetime.fromisoformat(str(properties.get("waitUntil", "")))
            except ValueError:
                return False
        else:
            return False
        max_wait = properties.get("maxWaitTime", 300)
        return isinstance(max_wait, (int, float)) and 1 <= max_wait <= 3600

    def requested_wait(self, context: NodeExecutionContext) -> float:
        if context.get_property("waitType", "fixed") == "until":
            until = datetime.fromisoformat(str(context.get_property("waitUntil")))
            if until.tzinfo is None:
                until = until.replace(tzinfo=timezone.utc)
            return max(0.0, (until - utcnow()).total_seconds())
        unit = TIME_UNITS[context.get_property("timeUnit", "seconds")]
        return float(context.get_property("waitTime", 5)) * unit

    def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
        requested = self.requested_wait(context)
        max_wait = float(context.get_property("maxWaitTime", 300))
        started_at = utcnow()
        time.sleep(min(requested, max_wait))
        completed_at = utcnow()
        waited = (completed_at - started_at).total_seconds()

        if requested > max_wait:
            return NodeExecutionResult.ok(
                {"timedOut": True, "waitedFor": waited, "maxWaitTime": max_wait, "requestedWait": requested},
                output="timeout",
            )
        output = dict(context.input_data)
        output.update(
            {
                "waitedFor": waited,
                "waitType": context.get_property("waitType", "fixed"),
                "startedAt": started_at.isoformat(),
                "completedAt": completed_at.isoformat(),
            }
        )
        return NodeExecutionResult.ok(output)


class NoOpNode(NodeBase):
    """Passes its input through unchanged."""

    node_type = "noop"
    name = "No Operation"
    description = "Do nothing and pass the input through"

    def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
        return NodeExecutionResult.ok(context.input_data)


BUILTIN_NODES: tuple[type[NodeBase], ...] = (ManualTriggerNode, SetNode, WaitNode, NoOpNode)
