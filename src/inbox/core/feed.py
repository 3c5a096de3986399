"""Last-known snapshots delivered by the remote live feed.

The live feed subscription itself is owned by the host; every delivery it
makes is handed to ``FeedCache`` as "replace my view of ground truth". The
cache never diffs deliveries and never merges local state into them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Literal

from src.common.mailbox.models import Entity, normalize_view

logger = logging.getLogger(__name__)

SnapshotScope = Literal["view", "thread"]
FeedListener = Callable[[SnapshotScope, str], None]


def _coerce(items: Iterable[Entity | Mapping[str, Any]], kind: str) -> list[Entity]:
    entities: list[Entity] = []
    for item in items:
        if isinstance(item, Entity):
            entities.append(item)
        else:
            data = dict(item)
            data.setdefault("kind", kind)
            entities.append(Entity.model_validate(data))
    return entities


class FeedCache:
    """Stores the last snapshot per view and per thread.

    Views are the inbox categories and the special mailbox views ("done",
    "sent", "scheduled"); view names are case-insensitive. Thread snapshots
    hold the messages of one thread in feed order.

    Example:
        >>> cache = FeedCache()
        >>> cache.replace_view("URGENT", [{"id": "t1", "category": "urgent"}])
        >>> [e.id for e in cache.view("urgent")]
        ['t1']
    """

    def __init__(self) -> None:
        self._views: dict[str, list[Entity]] = {}
        self._threads: dict[str, list[Entity]] = {}
        self._listeners: list[FeedListener] = []

    # -------------------------------------------------------------------------
    # Deliveries
    # -------------------------------------------------------------------------

    def replace_view(
        self,
        view: str,
        entities: Iterable[Entity | Mapping[str, Any]],
    ) -> None:
        """Replace the snapshot of a view.

        Args:
            view: Category or special view name, any case.
            entities: Entities or raw feed records (validated on the way in).

        Raises:
            ValueError: If the view name is unknown.
            pydantic.ValidationError: If a raw record is malformed.
        """
        name = normalize_view(view)
        self._views[name] = _coerce(entities, "thread")
        logger.debug("Feed delivered %d entities for view %s", len(self._views[name]), name)
        self._notify("view", name)

    def replace_thread(
        self,
        thread_id: str,
        messages: Iterable[Entity | Mapping[str, Any]],
    ) -> None:
        """Replace the message snapshot of a thread."""
        self._threads[thread_id] = _coerce(messages, "message")
        logger.debug(
            "Feed delivered %d messages for thread %s",
            len(self._threads[thread_id]),
            thread_id,
        )
        self._notify("thread", thread_id)

    def forget_thread(self, thread_id: str) -> None:
        """Drop the message snapshot of a thread (e.g. when it is closed)."""
        self._threads.pop(thread_id, None)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def view(self, view: str) -> list[Entity]:
        """Return the last snapshot of a view, or an empty list."""
        return list(self._views.get(normalize_view(view), []))

    def has_view(self, view: str) -> bool:
        """Return whether the feed has delivered this view at least once."""
        return normalize_view(view) in self._views

    def thread(self, thread_id: str) -> list[Entity]:
        """Return the last message snapshot of a thread, or an empty list."""
        return list(self._threads.get(thread_id, []))

    def has_thread(self, thread_id: str) -> bool:
        """Return whether the feed has delivered this thread at least once."""
        return thread_id in self._threads

    def thread_count(self, thread_id: str) -> int:
        """Return the number of messages in a thread's snapshot."""
        return len(self._threads.get(thread_id, []))

    def find(self, entity_id: str) -> Entity | None:
        """Return the entity with this ID from any view or thread snapshot."""
        for entities in self._views.values():
            for entity in entities:
                if entity.id == entity_id:
                    return entity
        for messages in self._threads.values():
            for message in messages:
                if message.id == entity_id:
                    return message
        return None

    @property
    def views(self) -> dict[str, list[Entity]]:
        """Return every view snapshot keyed by view name."""
        return {name: list(entities) for name, entities in self._views.items()}

    @property
    def threads(self) -> dict[str, list[Entity]]:
        """Return every thread snapshot keyed by thread ID."""
        return {thread_id: list(messages) for thread_id, messages in self._threads.items()}

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def subscribe(self, listener: FeedListener) -> Callable[[], None]:
        """Register a listener called with ``(scope, key)`` after each delivery.

        Returns:
            A callable that unregisters the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, scope: SnapshotScope, key: str) -> None:
        for listener in list(self._listeners):
            listener(scope, key)
