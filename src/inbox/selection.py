"""Selection set for batch actions."""

from __future__ import annotations

from collections.abc import Iterable, Iterator


class SelectionSet:
    """Entity IDs the user has checked for a batch action, in check order.

    Independent of the overlay store. Cleared after every batch action and
    on Escape.

    Example:
        >>> selection = SelectionSet()
        >>> selection.toggle("t1")
        True
        >>> selection.ids
        ['t1']
    """

    def __init__(self, ids: Iterable[str] = ()) -> None:
        self._ids: dict[str, None] = dict.fromkeys(ids)

    @property
    def ids(self) -> list[str]:
        return list(self._ids)

    def add(self, entity_id: str) -> None:
        self._ids[entity_id] = None

    def remove(self, entity_id: str) -> None:
        self._ids.pop(entity_id, None)

    def toggle(self, entity_id: str) -> bool:
        """Flip an entity's selection.

        Returns:
            True if the entity is selected afterwards.
        """
        if entity_id in self._ids:
            del self._ids[entity_id]
            return False
        self._ids[entity_id] = None
        return True

    def select_all(self, entity_ids: Iterable[str]) -> None:
        """Replace the selection with the given entities."""
        self._ids = dict.fromkeys(entity_ids)

    def retain(self, entity_ids: Iterable[str]) -> None:
        """Drop selected entities that are not in ``entity_ids``."""
        keep = set(entity_ids)
        self._ids = {entity_id: None for entity_id in self._ids if entity_id in keep}

    def clear(self) -> None:
        self._ids.clear()

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:
        return f"SelectionSet({self.ids!r})"
