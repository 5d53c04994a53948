"""
Durable Storage Boundary

The core is storage-agnostic. Anything implementing `Repository`
(save / load / query_by_index) can back consents and audit events.
"""

import copy
from collections import defaultdict
from typing import Any, Protocol


class Repository(Protocol):
    async def save(
        self,
        collection: str,
        key: str,
        entity: Any,
        indexes: dict[str, str] | None = None,
    ) -> None: ...

    async def load(self, collection: str, key: str) -> Any | None: ...

    async def query_by_index(self, collection: str, index: str, value: str) -> list[Any]: ...


class InMemoryRepository:
    """In-memory repository for development and tests."""

    def __init__(self):
        self._data: dict[str, dict[str, Any]] = defaultdict(dict)
        # collection -> index name -> value -> keys (insertion ordered)
        self._indexes: dict[str, dict[str, dict[str, dict[str, None]]]] = defaultdict(
            lambda: defaultdict(lambda: defaultdict(dict))
        )
        self.save_count = 0

    async def save(
        self,
        collection: str,
        key: str,
        entity: Any,
        indexes: dict[str, str] | None = None,
    ) -> None:
        self._data[collection][key] = copy.copy(entity)
        for index, value in (indexes or {}).items():
            self._indexes[collection][index][value][key] = None
        self.save_count += 1

    async def load(self, collection: str, key: str) -> Any | None:
        return self._data[collection].get(key)

    async def query_by_index(self, collection: str, index: str, value: str) -> list[Any]:
        keys = self._indexes[collection][index].get(value, {})
        return [self._data[collection][k] for k in keys if k in self._data[collection]]

    def count(self, collection: str) -> int:
        return len(self._data[collection])
