from enum import Enum


class BackendType(Enum):
    """Supported storage backends for persistent cache entries and stored workflows."""

    IN_MEMORY = "in_memory"
    SQLITE = "sqlite"
