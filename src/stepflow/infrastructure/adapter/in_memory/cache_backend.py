from stepflow.application.port import CacheBackend
from stepflow.domain.value_object import CacheEntry


class InMemoryCacheBackend(CacheBackend):
    """Process-local durable tier. Entries outlive any single CacheStore that uses it."""

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def set(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self, workflow_id: str | None = None) -> int:
        if workflow_id is None:
            count = len(self._entries)
            self._entries.clear()
            return count
        keys = [k for k, entry in self._entries.items() if entry.workflow_id == workflow_id]
        for k in keys:
            del self._entries[k]
        return len(keys)

    def __len__(self) -> int:
        return len(self._entries)
