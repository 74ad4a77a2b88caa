"""Identity maps keeping one canonical entity per id within a scope."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


class IdentityMap(Generic[T]):
    """Canonical instances keyed by remote id.

    Scopes are plain instances of this class: the client owns the ones for
    acquaintances, rooms and songs, and every room owns one for the users
    referenced while in it. Entities are never evicted; they go away with
    the scope that owns them.
    """

    def __init__(self, factory: Callable[[str], T]) -> None:
        self._factory = factory
        self._entries: dict[str, T] = {}

    def get(self, entity_id: str) -> T | None:
        return self._entries.get(entity_id)

    def resolve(self, entity_id: str) -> T:
        """Return the canonical instance for *entity_id*, creating it on first reference."""
        entry = self._entries.get(entity_id)
        if entry is None:
            entry = self._factory(entity_id)
            self._entries[entity_id] = entry
        return entry

    def adopt(self, entity_id: str, entity: T) -> T:
        """Register an instance created elsewhere unless the id is already known."""
        return self._entries.setdefault(entity_id, entity)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._entries.values()))
