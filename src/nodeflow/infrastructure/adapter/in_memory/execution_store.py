import copy
import threading

from msgspec import structs

from nodeflow.application.port import ExecutionStore
from nodeflow.domain.entity import ExecutionLogEntry, ExecutionRecord
from nodeflow.domain.error import ExecutionNotFoundError


def _detached(record: ExecutionRecord) -> ExecutionRecord:
    return structs.replace(
        record,
        input_data=copy.deepcopy(record.input_data),
        output_data=copy.deepcopy(record.output_data),
        metadata=copy.deepcopy(record.metadata),
    )


class InMemoryExecutionStore(ExecutionStore):
    """Keeps execution records and their logs in process memory.

    Records are copied on the way in and out, so callers never share state
    with the store.
    """

    def __init__(self):
        self._records: dict[str, ExecutionRecord] = {}
        self._logs: dict[str, list[ExecutionLogEntry]] = {}
        self._lock = threading.Lock()

    def save(self, record: ExecutionRecord):
        snapshot = _detached(record)
        with self._lock:
            self._records[record.id] = snapshot

    def get(self, execution_id: str) -> ExecutionRecord:
        with self._lock:
            try:
                record = self._records[execution_id]
            except KeyError:
                raise ExecutionNotFoundError(f"Execution '{execution_id}' not found") from None
        return _detached(record)

    def append_log(self, entry: ExecutionLogEntry):
        with self._lock:
            self._logs.setdefault(entry.execution_id, []).append(entry)

    def get_logs(self, execution_id: str) -> list[ExecutionLogEntry]:
        with self._lock:
            return list(self._logs.get(execution_id, ()))

    def list_ids(self, workflow_ref: str | None = None) -> list[str]:
        with self._lock:
            return [
                record.id
                for record in self._records.values()
                if workflow_ref is None or record.workflow_ref == workflow_ref
            ]

    def delete(self, execution_id: str) -> bool:
        with self._lock:
            self._logs.pop(execution_id, None)
            return self._records.pop(execution_id, None) is not None
