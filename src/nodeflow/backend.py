from enum import Enum


class BackendType(Enum):
    """Supported persistence backends for execution records and logs."""

    IN_MEMORY = "in_memory"
    SQLITE = "sqlite"
