"""MailboxCoordinator: the single entry point of the inbox core.

Wires the overlay stores, feed cache, undo coordinator, batch executor,
chord detector and view projector together, and is the only writer of all
of them. The host UI talks to it through three surfaces:

- feed ingestion: ``ingest_view()`` / ``ingest_thread()`` for every live
  feed delivery
- user intent: ``handle_action()`` (click handlers, toolbar buttons and
  keyboard shortcuts all funnel through it), ``handle_key()``, ``send()``
- rendering: ``visible_list()``, ``unread_count()``, ``thread_messages()``

Architecture::

    live feed ──► FeedCache ──► reconcile ──► OverlayStore
                                                   ▲
    user ──► handle_action ──► BatchOperationExecutor ──► MailboxAPI
                    │                   │
                    │                   └──► UndoCoordinator ──► MailboxAPI
                    ▼                              (after undo window)
              ViewProjector ◄── FeedCache + OverlayStore + EphemeralMessages
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Any

from src.common.api.client import MailboxAPIClient
from src.common.api.protocol import MailboxAPI
from src.common.mailbox.config import InboxConfig
from src.common.mailbox.models import (
    CATEGORY_LABELS,
    ComposePayload,
    EffectiveEntity,
    Entity,
    Label,
    normalize_category,
    normalize_view,
)
from src.common.mailbox.notifications import NotificationCenter
from src.inbox.compose import ComposeSurface, ModalTracker, forward_draft, reply_draft
from src.inbox.core.batch import BatchOp, BatchOperationExecutor, pick_neighbor
from src.inbox.core.chords import ChordCommand, ChordDetector, KeyEvent, Pending
from src.inbox.core.ephemeral import EphemeralMessages
from src.inbox.core.feed import FeedCache, SnapshotScope
from src.inbox.core.overlay import OverlayStore
from src.inbox.core.projector import ViewProjector
from src.inbox.core.remote import guarded_call
from src.inbox.core.scheduler import AsyncioScheduler, BackgroundCalls, Scheduler
from src.inbox.core.undo import UndoCoordinator, UndoHandle
from src.inbox.selection import SelectionSet

logger = logging.getLogger(__name__)


# =============================================================================
# Actions
# =============================================================================


class ActionKind(str, Enum):
    """User-triggered mutations accepted by ``handle_action()``."""

    OPEN = "open"
    MARK_READ = "mark_read"
    MARK_UNREAD = "mark_unread"
    MARK_DONE = "mark_done"
    MARK_UNDONE = "mark_undone"
    DELETE = "delete"
    APPLY_LABEL = "apply_label"
    REMOVE_LABEL = "remove_label"
    RECATEGORIZE = "recategorize"
    CANCEL_SCHEDULED = "cancel_scheduled"
    RESCHEDULE = "reschedule"


_BATCH_ACTIONS = {
    ActionKind.MARK_READ: BatchOp.MARK_READ,
    ActionKind.MARK_UNREAD: BatchOp.MARK_UNREAD,
    ActionKind.MARK_DONE: BatchOp.MARK_DONE,
    ActionKind.MARK_UNDONE: BatchOp.MARK_UNDONE,
    ActionKind.DELETE: BatchOp.DELETE,
}

_REMOVING_ACTIONS = frozenset(
    {
        ActionKind.MARK_DONE,
        ActionKind.MARK_UNDONE,
        ActionKind.DELETE,
        ActionKind.CANCEL_SCHEDULED,
    }
)

# Keys acting on a non-empty selection.
_SELECTION_KEYS = {
    "r": ActionKind.MARK_READ,
    "u": ActionKind.MARK_UNREAD,
    "d": ActionKind.MARK_DONE,
    "delete": ActionKind.DELETE,
    "backspace": ActionKind.DELETE,
}


class UnknownActionError(ValueError):
    """Raised when ``handle_action()`` gets an action kind it does not know."""

    pass


class MissingActionParameterError(ValueError):
    """Raised when an action is missing the parameter it requires."""

    pass


@dataclass
class ActionResult:
    """What ``handle_action()`` applied locally.

    Attributes:
        kind: The action.
        entity_ids: Entities the action was applied to.
        handle: Undo handle, for deletes.
    """

    kind: ActionKind
    entity_ids: list[str] = field(default_factory=list)
    handle: UndoHandle | None = None


# =============================================================================
# MailboxCoordinator
# =============================================================================


class MailboxCoordinator:
    """Coordinates optimistic mutations, undo windows and feed deliveries.

    Attributes:
        config: Inbox configuration.
        api: Remote mutation API.
        feed: Last-known feed snapshots.
        overlay: Overrides of entities listed in views.
        message_overlay: Overrides of individual messages in threads.
        notifications: Undo, error and info notices.
        undo: Pending operation queue.
        batch: Batch operation executor.
        projector: View projector.
        selection: Entities checked for a batch action.
        modals: Open modal tracking.
        chords: Reply/forward chord detector.
        active_view: View currently shown in the list.
        open_thread_id: Entity shown in the detail view, if any.

    Example:
        >>> coordinator = MailboxCoordinator(api, scheduler=ManualScheduler())
        >>> coordinator.ingest_view("urgent", threads)
        >>> coordinator.handle_action("mark_done", ["t1"])
        >>> [e.id for e in coordinator.visible_list("urgent")]
        ['t2', 't3']
    """

    def __init__(
        self,
        api: MailboxAPI,
        *,
        config: InboxConfig | None = None,
        scheduler: Scheduler | None = None,
        notifications: NotificationCenter | None = None,
        compose: ComposeSurface | None = None,
        self_address: str | None = None,
        active_view: str = "urgent",
    ) -> None:
        """Initialize the coordinator and its components.

        Args:
            api: Remote mutation API.
            config: Inbox configuration. Defaults to environment settings.
            scheduler: Clock and timer source. Defaults to the asyncio loop.
            notifications: Notification center. Created from config if None.
            compose: Host compose editor, if any.
            self_address: The user's own address, left out of reply-all.
            active_view: View shown initially.
        """
        self.config = config or InboxConfig()
        self.api = api
        self.scheduler = scheduler or AsyncioScheduler()
        self.notifications = notifications or NotificationCenter(
            max_notifications=self.config.max_notifications,
            ttl=self.config.notification_ttl,
        )
        self.compose = compose
        self.self_address = self_address
        self._owns_api = False

        self.feed = FeedCache()
        self.overlay = OverlayStore("thread")
        self.message_overlay = OverlayStore("message")
        self.background = BackgroundCalls()
        self.ephemeral = EphemeralMessages(
            self.scheduler, ttl=self.config.optimistic_send_ttl
        )
        self.undo = UndoCoordinator(
            self.overlay,
            api,
            self.scheduler,
            self.notifications,
            background=self.background,
            feed=self.feed,
            ephemeral=self.ephemeral,
            restore_payload=self._restore_payload,
            delete_window=self.config.delete_grace_window,
            send_window=self.config.send_undo_window,
        )
        self.batch = BatchOperationExecutor(
            self.overlay,
            api,
            self.undo,
            self.notifications,
            background=self.background,
            resolve_message_ids=self.message_ids_for,
        )
        self.projector = ViewProjector(
            self.feed,
            self.overlay,
            message_overlay=self.message_overlay,
            ephemeral=self.ephemeral,
        )
        self.selection = SelectionSet()
        self.chords = ChordDetector(
            self.scheduler, self._on_chord, window=self.config.chord_window
        )
        self.modals = ModalTracker()
        self.modals.on_open(self.chords.reset)

        self.active_view = normalize_view(active_view)
        self.open_thread_id: str | None = None
        self.feed.subscribe(self._on_feed_delivery)

    @classmethod
    def from_config(
        cls,
        config: InboxConfig,
        api: MailboxAPI | None = None,
        **kwargs: Any,
    ) -> MailboxCoordinator:
        """Create a coordinator from configuration.

        If no API is given, an HTTP client is created from the config; it is
        opened and closed with the coordinator's async context.

        Args:
            config: Inbox configuration.
            api: Remote mutation API to use instead of the HTTP client.
            **kwargs: Passed through to the constructor.

        Returns:
            A new coordinator.
        """
        owns_api = api is None
        if api is None:
            api = MailboxAPIClient.from_config(config)
        coordinator = cls(api, config=config, **kwargs)
        coordinator._owns_api = owns_api
        return coordinator

    async def __aenter__(self) -> MailboxCoordinator:
        if self._owns_api and isinstance(self.api, MailboxAPIClient):
            await self.api.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()
        if self._owns_api and isinstance(self.api, MailboxAPIClient):
            await self.api.__aexit__(exc_type, exc_val, exc_tb)

    # -------------------------------------------------------------------------
    # Feed ingestion
    # -------------------------------------------------------------------------

    def ingest_view(
        self,
        view: str,
        entities: Iterable[Entity | Mapping[str, Any]],
    ) -> None:
        """Accept a live feed delivery for a category or special view."""
        self.feed.replace_view(view, entities)

    def ingest_thread(
        self,
        thread_id: str,
        messages: Iterable[Entity | Mapping[str, Any]],
    ) -> None:
        """Accept a live feed delivery of a thread's messages."""
        self.feed.replace_thread(thread_id, messages)

    def _on_feed_delivery(self, scope: SnapshotScope, key: str) -> None:
        if scope == "thread":
            retracted = self.ephemeral.on_thread_snapshot(
                key, self.feed.thread_count(key)
            )
            if retracted:
                logger.info(
                    "Thread %s caught up with %d optimistic message(s)",
                    key,
                    len(retracted),
                )
            self.message_overlay.reconcile(self.feed.threads)
        self.overlay.reconcile(self.feed.views)

    def message_ids_for(self, entity_ids: Sequence[str]) -> list[str]:
        """Expand entities to the message IDs remote calls target.

        Threads expand to their member messages; messages and entities
        unknown to the feed cache stand for themselves.
        """
        message_ids: list[str] = []
        for entity_id in entity_ids:
            entity = self.feed.find(entity_id)
            expanded = entity.expand_message_ids() if entity is not None else []
            message_ids.extend(expanded or [entity_id])
        return list(dict.fromkeys(message_ids))

    # -------------------------------------------------------------------------
    # Rendering surface
    # -------------------------------------------------------------------------

    def visible_list(self, view: str | None = None) -> list[EffectiveEntity]:
        return self.projector.visible_list(view or self.active_view)

    def unread_count(self, view: str | None = None) -> int:
        return self.projector.unread_count(view or self.active_view)

    def unread_counts(self) -> dict[str, int]:
        return self.projector.unread_counts()

    def thread_messages(self, thread_id: str | None = None) -> list[EffectiveEntity]:
        """Return the messages of a thread (the open one by default)."""
        thread_id = thread_id or self.open_thread_id
        if thread_id is None:
            return []
        return self.projector.thread_messages(thread_id)

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def handle_action(
        self,
        kind: ActionKind | str,
        target_ids: Sequence[str],
        *,
        label: Label | None = None,
        category: str | None = None,
        send_at: datetime | None = None,
    ) -> ActionResult:
        """Apply a user-triggered mutation.

        The local effect is visible as soon as this returns; remote calls
        run in the background.

        Args:
            kind: The action (an ``ActionKind`` or its value).
            target_ids: Entities to act on. Empty is a no-op.
            label: Label for ``apply_label`` / ``remove_label``.
            category: Target category for ``recategorize``.
            send_at: New send time for ``reschedule``.

        Returns:
            What was applied locally.

        Raises:
            UnknownActionError: If ``kind`` is not a known action.
            MissingActionParameterError: If the action's parameter is missing.
        """
        try:
            action = ActionKind(kind)
        except ValueError as exc:
            raise UnknownActionError(f"Unknown action: {kind!r}") from exc

        if action in (ActionKind.APPLY_LABEL, ActionKind.REMOVE_LABEL) and label is None:
            raise MissingActionParameterError(f"{action.value} requires a label")
        if action == ActionKind.RECATEGORIZE and category is None:
            raise MissingActionParameterError("recategorize requires a category")
        if action == ActionKind.RESCHEDULE and send_at is None:
            raise MissingActionParameterError("reschedule requires send_at")

        ids = list(dict.fromkeys(target_ids))
        if not ids:
            return ActionResult(action)

        visible_before = self.projector.visible_ids(self.active_view)
        result = ActionResult(action, ids)

        if action == ActionKind.OPEN:
            self.open_thread(ids[0])
            result.entity_ids = ids[:1]
        elif action in _BATCH_ACTIONS:
            batch_result = self.batch.apply(_BATCH_ACTIONS[action], ids)
            result.handle = batch_result.handle
        elif action == ActionKind.APPLY_LABEL:
            self._change_label(ids, label, add=True)
        elif action == ActionKind.REMOVE_LABEL:
            self._change_label(ids, label, add=False)
        elif action == ActionKind.RECATEGORIZE:
            result.entity_ids = self._recategorize(ids, normalize_category(category))
        elif action == ActionKind.CANCEL_SCHEDULED:
            self._cancel_scheduled(ids)
        elif action == ActionKind.RESCHEDULE:
            self._reschedule(ids, send_at)

        if action in _REMOVING_ACTIONS:
            self._advance_after_removal(visible_before, ids)
        return result

    def batch_action(self, kind: ActionKind | str) -> ActionResult:
        """Apply an action to the current selection, then clear it."""
        ids = self.selection.ids
        self.selection.clear()
        return self.handle_action(kind, ids)

    def _spawn(self, coro, name: str) -> None:
        self.background.spawn(coro, name=name)

    def _change_label(self, ids: list[str], label: Label, add: bool) -> None:
        action = "apply_label" if add else "remove_label"
        for entity_id in ids:
            effective = self.projector.effective(entity_id)
            current = effective.labels if effective is not None else frozenset()
            updated = current | {label} if add else current - {label}
            if updated == current:
                continue
            write = self.overlay.apply(entity_id, label_override=updated)
            remote = self.api.apply_label if add else self.api.remove_label
            self._spawn(
                guarded_call(
                    partial(remote, entity_id, label),
                    action=action,
                    entity_ids=[entity_id],
                    notifications=self.notifications,
                    failure_message=f"Failed to update label {label.name!r}",
                    rollback=partial(self.overlay.rollback, write),
                ),
                name=f"{action}-{entity_id}",
            )

    def _recategorize(self, ids: list[str], category: str) -> list[str]:
        moved: list[str] = []
        for entity_id in ids:
            effective = self.projector.effective(entity_id)
            if effective is None or effective.category == category:
                continue
            write = self.overlay.apply(
                entity_id,
                category_move={"from": effective.category, "to": category},
            )
            moved.append(entity_id)
            self._spawn(
                guarded_call(
                    partial(self.api.recategorize, entity_id, category),
                    action="recategorize",
                    entity_ids=[entity_id],
                    notifications=self.notifications,
                    failure_message="Failed to move conversation",
                    rollback=partial(self.overlay.rollback, write),
                ),
                name=f"recategorize-{entity_id}",
            )
        if moved:
            self.notifications.info(f"Moved to {CATEGORY_LABELS[category]}", moved)
            logger.info("Moved %s to %s", moved, category)
        return moved

    def _cancel_scheduled(self, ids: list[str]) -> None:
        writes = self.overlay.apply_many(ids, deleted=True)
        for entity_id, write in zip(ids, writes):

            async def run(eid: str = entity_id, w=write) -> None:
                ok = await guarded_call(
                    lambda: self.api.cancel_scheduled_send(eid),
                    action="cancel_scheduled",
                    entity_ids=[eid],
                    notifications=self.notifications,
                    failure_message="Failed to cancel scheduled message",
                    rollback=lambda: self.overlay.rollback(w),
                )
                if ok:
                    self.overlay.mark_confirmed(eid, ["deleted"])
                    self.notifications.info("Scheduled message cancelled", [eid])

            self._spawn(run(), name=f"cancel-scheduled-{entity_id}")

    def _reschedule(self, ids: list[str], send_at: datetime) -> None:
        for entity_id in ids:

            async def run(eid: str = entity_id) -> None:
                ok = await guarded_call(
                    lambda: self.api.reschedule_send(eid, send_at),
                    action="reschedule",
                    entity_ids=[eid],
                    notifications=self.notifications,
                    failure_message="Failed to reschedule message",
                )
                if ok:
                    self.notifications.info("Message rescheduled", [eid])

            self._spawn(run(), name=f"reschedule-{entity_id}")

    # -------------------------------------------------------------------------
    # Detail view
    # -------------------------------------------------------------------------

    def set_active_view(self, view: str) -> None:
        """Switch the list to another view. The selection does not carry over."""
        name = normalize_view(view)
        if name != self.active_view:
            self.active_view = name
            self.selection.clear()
            logger.debug("Active view is now %s", name)

    def open_thread(self, thread_id: str) -> None:
        """Show an entity in the detail view and mark it read.

        Marking read is not rolled back if the remote call fails.
        """
        if thread_id != self.open_thread_id:
            self.chords.reset()
            self.open_thread_id = thread_id

        effective = self.projector.effective(thread_id)
        if effective is None or effective.read:
            return

        self.overlay.apply(thread_id, read_override=True)
        unread_messages = [
            message.id
            for message in self.projector.thread_messages(thread_id)
            if not message.read and not message.optimistic
        ]
        if unread_messages:
            self.message_overlay.apply_many(unread_messages, read_override=True)

        message_ids = self.message_ids_for([thread_id])
        self._spawn(
            guarded_call(
                lambda: self.api.mark_read(message_ids),
                action="mark_read",
                entity_ids=[thread_id],
                notifications=self.notifications,
                failure_message="Failed to mark as read",
            ),
            name=f"open-mark-read-{thread_id}",
        )

    def close_thread(self) -> None:
        """Close the detail view."""
        self.chords.reset()
        self.open_thread_id = None

    def next_thread(self) -> str | None:
        """Open the entity after the open one in the visible list."""
        return self._step(1)

    def previous_thread(self) -> str | None:
        """Open the entity before the open one in the visible list."""
        return self._step(-1)

    def _step(self, offset: int) -> str | None:
        visible = self.projector.visible_ids(self.active_view)
        if not visible:
            return None
        if self.open_thread_id not in visible:
            target = visible[0]
        else:
            index = visible.index(self.open_thread_id) + offset
            if not 0 <= index < len(visible):
                return None
            target = visible[index]
        self.open_thread(target)
        return target

    def _advance_after_removal(
        self,
        visible_before: list[str],
        removed_ids: list[str],
    ) -> None:
        current = self.open_thread_id
        if current is None or current not in removed_ids:
            return
        neighbor = pick_neighbor(visible_before, current, removed_ids)
        if neighbor is None:
            logger.info("Closing detail view, nothing left after %s", current)
            self.close_thread()
        else:
            logger.info("Advancing detail view from %s to %s", current, neighbor)
            self.open_thread(neighbor)

    # -------------------------------------------------------------------------
    # Keyboard
    # -------------------------------------------------------------------------

    def set_modal_open(self, name: str, is_open: bool) -> None:
        """Record a modal opening or closing. Opening resets pending chords."""
        self.modals.set_open(name, is_open)

    def select_all(self) -> list[str]:
        """Select every visible entity of the active view."""
        ids = self.projector.visible_ids(self.active_view)
        self.selection.select_all(ids)
        return ids

    def handle_key(self, event: KeyEvent) -> bool:
        """Route a key press.

        Args:
            event: The key press.

        Returns:
            True if the key was consumed.
        """
        if event.from_editable or self.modals.is_open:
            return False

        key = event.normalized
        if event.command_modifier and key == "a":
            self.select_all()
            return True

        if self.selection:
            if key == "escape":
                self.selection.clear()
                return True
            action = _SELECTION_KEYS.get(key)
            if action is None or event.command_modifier or event.alt:
                return False
            self.batch_action(action)
            return True

        if self.open_thread_id is None:
            return False
        command = self.chords.handle(event)
        return command is not None or isinstance(self.chords.state, Pending)

    def _on_chord(self, command: ChordCommand) -> None:
        thread_id = self.open_thread_id
        if thread_id is None:
            return
        message = self.projector.latest_message(thread_id)
        if message is None:
            logger.debug("No message to %s in thread %s", command.value, thread_id)
            return
        if command == ChordCommand.FORWARD:
            draft = forward_draft(message, self.self_address)
        else:
            draft = reply_draft(
                message,
                reply_all=command == ChordCommand.REPLY_ALL,
                self_address=self.self_address,
            )
        self._open_compose(draft)

    # -------------------------------------------------------------------------
    # Compose
    # -------------------------------------------------------------------------

    def _open_compose(self, draft: ComposePayload) -> None:
        if self.compose is None:
            logger.debug("No compose surface to open %s draft", draft.context)
            return
        self.compose.open(draft)
        self.modals.set_open("compose", True)

    def _restore_payload(self, payload: ComposePayload) -> None:
        if self.compose is None:
            return
        self.compose.restore(payload)
        self.modals.set_open("compose", True)

    def send(self, payload: ComposePayload) -> UndoHandle:
        """Send a composed message behind the send undo window.

        Args:
            payload: The payload from the compose surface.

        Returns:
            Handle for undoing the send.
        """
        self.modals.set_open("compose", False)
        category = "others"
        if payload.thread_id is not None:
            effective = self.projector.effective(payload.thread_id)
            if effective is not None:
                category = effective.category
        return self.undo.enqueue_send(payload, category)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for every in-flight remote call to finish."""
        await self.background.drain()

    async def shutdown(self) -> None:
        """Commit every pending operation and wait for the remote calls.

        Optimistic messages still shown are dropped along with their timers.
        """
        committed = self.undo.flush_all()
        if committed:
            logger.info("Committed %d pending operation(s) on shutdown", committed)
        self.chords.reset()
        await self.drain()
        self.ephemeral.clear()
