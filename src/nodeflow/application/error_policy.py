"""Routing of failed executions to fallback (error) workflows."""

from collections.abc import Callable
from typing import Any

import msgspec
from loguru import logger

from nodeflow.domain.entity import ExecutionRecord

OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": lambda actual, expected: actual == expected,
    "not_equals": lambda actual, expected: actual != expected,
    "contains": lambda actual, expected: isinstance(actual, str) and str(expected) in actual,
    "starts_with": lambda actual, expected: isinstance(actual, str) and actual.startswith(str(expected)),
    "ends_with": lambda actual, expected: isinstance(actual, str) and actual.endswith(str(expected)),
    "greater_than": lambda actual, expected: _is_number(actual) and actual > expected,
    "less_than": lambda actual, expected: _is_number(actual) and actual < expected,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class Condition(msgspec.Struct, forbid_unknown_fields=True):
    field: str
    value: Any = ""
    operator: str = "equals"

    def matches(self, record: ExecutionRecord, error: BaseException) -> bool:
        """
        Evaluates the condition against a failed execution.

        Unknown fields and operators never match.

        :param record: The failed execution
        :type record: ExecutionRecord
        :param error: The error that ended it
        :type error: BaseException
        :rtype: bool
        """
        if self.field == "workflow_ref":
            actual = record.workflow_ref
        elif self.field == "error_message":
            actual = str(error)
        elif self.field == "execution_mode":
            actual = record.mode.value
        else:
            return False
        compare = OPERATORS.get(self.operator)
        if compare is None:
            return False
        try:
            return bool(compare(actual, self.value))
        except TypeError:
            return False


class ErrorRoute(msgspec.Struct, forbid_unknown_fields=True):
    error_workflow: str
    conditions: list[Condition] = msgspec.field(default_factory=list)

    def matches(self, record: ExecutionRecord, error: BaseException) -> bool:
        return all(condition.matches(record, error) for condition in self.conditions)


class ErrorPolicy:
    """
    Maps exception types to fallback workflows.

    A route registered for a type also serves its subclasses; exact type
    matches are preferred. When a route matches, the optional ``handler`` is
    called with the fallback workflow ref and an error context mapping.
    """

    def __init__(self, handler: Callable[[str, dict[str, Any]], Any] | None = None):
        self.handler = handler
        self._routes: dict[type[BaseException], list[ErrorRoute]] = {}

    def register(
        self,
        error_type: type[BaseException],
        error_workflow: str,
        conditions: list[dict[str, Any] | Condition] | None = None,
    ) -> None:
        """
        Adds a route.

        :param error_type: Exception type the route applies to (subclasses included)
        :type error_type: type[BaseException]
        :param error_workflow: Ref of the workflow to run for matching failures
        :type error_workflow: str
        :param conditions: All must hold for the route to match; none matches everything
        :type conditions: list[dict[str, Any] | Condition] | None
        """
        route = msgspec.convert(
            {"error_workflow": error_workflow, "conditions": [msgspec.to_builtins(c) for c in conditions or []]},
            type=ErrorRoute,
        )
        self._routes.setdefault(error_type, []).append(route)
        logger.info(f"Error workflow '{error_workflow}' registered for {error_type.__name__}")

    def routes(self) -> dict[str, list[ErrorRoute]]:
        return {error_type.__name__: list(routes) for error_type, routes in self._routes.items()}

    def clear(self) -> None:
        self._routes.clear()

    def find_route(self, record: ExecutionRecord, error: BaseException) -> ErrorRoute | None:
        for route in self._routes.get(type(error), []):
            if route.matches(record, error):
                return route
        for error_type, routes in self._routes.items():
            if error_type is type(error) or not isinstance(error, error_type):
                continue
            for route in routes:
                if route.matches(record, error):
                    return route
        return None

    def handle(self, record: ExecutionRecord, error: BaseException) -> dict[str, Any]:
        """
        Looks up a route for a failed execution and hands it to the handler.

        :param record: The failed execution
        :type record: ExecutionRecord
        :param error: The error that ended it
        :type error: BaseException
        :returns: The routing decision, suitable for the record's metadata
        :rtype: dict[str, Any]
        """
        log = logger.bind(execution_id=record.id, workflow_ref=record.workflow_ref)
        route = self.find_route(record, error)
        if route is None:
            return {"error_workflow_found": False, "error_type": type(error).__name__}

        decision = {
            "error_workflow_found": True,
            "error_workflow": route.error_workflow,
            "error_type": type(error).__name__,
            "handled": False,
        }
        if self.handler is None:
            return decision

        error_context = {
            "original_execution": {
                "id": record.id,
                "workflow_ref": record.workflow_ref,
                "status": record.status.value,
                "mode": record.mode.value,
                "started_at": record.started_at.isoformat() if record.started_at else None,
            },
            "error": {"message": str(error), "type": type(error).__name__},
        }
        log.info(f"Executing error workflow '{route.error_workflow}'")
        try:
            self.handler(route.error_workflow, error_context)
        except Exception as e:
            log.exception(f"Error workflow '{route.error_workflow}' failed")
            decision["handler_error"] = str(e)
        else:
            decision["handled"] = True
        return decision
