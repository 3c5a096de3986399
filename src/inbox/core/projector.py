"""View projector: what the rendering layer shows.

Merges the feed's last-known snapshots with the overlay store. Everything
here is recomputed on each call; lists are bounded (hundreds of entities per
category), so no caching is done.
"""

from __future__ import annotations

from src.common.mailbox.models import (
    ALL_CATEGORIES,
    EffectiveEntity,
    normalize_view,
)
from src.inbox.core.ephemeral import EphemeralMessages
from src.inbox.core.feed import FeedCache
from src.inbox.core.overlay import OverlayStore


class ViewProjector:
    """Derives visible lists, unread counts and thread contents.

    Example:
        >>> projector = ViewProjector(feed, overlay)
        >>> projector.unread_count("urgent")
        2
    """

    def __init__(
        self,
        feed: FeedCache,
        overlay: OverlayStore,
        *,
        message_overlay: OverlayStore | None = None,
        ephemeral: EphemeralMessages | None = None,
    ) -> None:
        """Initialize the projector.

        Args:
            feed: Last-known feed snapshots.
            overlay: Overrides of the entities listed in views.
            message_overlay: Overrides of individual messages in a thread.
            ephemeral: Optimistic sent messages to append to threads.
        """
        self.feed = feed
        self.overlay = overlay
        self.message_overlay = message_overlay
        self.ephemeral = ephemeral

    def visible_list(self, view: str) -> list[EffectiveEntity]:
        """Return the effective entities a view shows, in feed order.

        Entities hidden by an override are left out. For a category, entities
        with an outstanding move into it are appended even though the feed
        still lists them elsewhere.

        Args:
            view: Category or special view name, any case.
        """
        name = normalize_view(view)
        visible = [
            self.overlay.project(entity)
            for entity in self.feed.view(name)
            if not self.overlay.is_hidden(entity.id, name)
        ]
        if name in ALL_CATEGORIES:
            shown = {entity.id for entity in visible}
            for entity_id in self.overlay.moved_into(name):
                if entity_id in shown or self.overlay.is_hidden(entity_id, name):
                    continue
                entity = self.feed.find(entity_id)
                if entity is not None:
                    visible.append(self.overlay.project(entity))
                    shown.add(entity_id)
        return visible

    def visible_ids(self, view: str) -> list[str]:
        return [entity.id for entity in self.visible_list(view)]

    def unread_count(self, view: str) -> int:
        """Return how many visible entities of a view are effectively unread."""
        return sum(1 for entity in self.visible_list(view) if not entity.read)

    def unread_counts(self) -> dict[str, int]:
        """Return the unread count of every category."""
        return {category: self.unread_count(category) for category in ALL_CATEGORIES}

    def effective(self, entity_id: str) -> EffectiveEntity | None:
        """Return the effective state of any cached entity."""
        entity = self.feed.find(entity_id)
        if entity is None:
            return None
        if entity.kind == "message" and self.message_overlay is not None:
            return self.message_overlay.project(entity)
        return self.overlay.project(entity)

    def thread_messages(self, thread_id: str) -> list[EffectiveEntity]:
        """Return a thread's messages followed by its optimistic ones.

        Deleted messages are left out.
        """
        overlay = self.message_overlay or self.overlay
        messages = [
            projected
            for projected in (overlay.project(m) for m in self.feed.thread(thread_id))
            if not projected.deleted
        ]
        if self.ephemeral is not None:
            messages.extend(self.ephemeral.for_thread(thread_id))
        return messages

    def latest_message(self, thread_id: str) -> EffectiveEntity | None:
        """Return the newest delivered (non-optimistic) message of a thread."""
        delivered = [m for m in self.thread_messages(thread_id) if not m.optimistic]
        return delivered[-1] if delivered else None
