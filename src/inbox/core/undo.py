"""Pending operation queue and undo coordinator.

Some actions are applied to the UI immediately but their real side effect
(a bulk delete, a message transmission) is delayed behind a cancellable
timer. Each such unit is a ``PendingOperation``; the user holds an
``UndoHandle`` for it through the notification center.

Lifecycle of a pending operation::

    PENDING --cancel()--> CANCELLED      (overlay reverted, no remote call)
       |
       +--timer/flush--> COMMITTING --ok--> COMMITTED
                                   +--error--> FAILED (rolled back, notice)

Committing performs exactly one remote call per operation; cancelling
performs none. Both transitions are guarded by the status, so a late timer
callback or a second ``cancel()`` is a no-op. Settled operations are dropped
from the queue; only their handles keep them alive.

Example:
    >>> coordinator = UndoCoordinator(overlay, api, scheduler, notifications)
    >>> handle = coordinator.enqueue_delete(["t1"], message_ids=["m1", "m2"])
    >>> handle.cancel()
    True
    >>> handle.cancel()
    False
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

from src.common.api.protocol import MailboxAPI
from src.common.mailbox.models import ComposePayload
from src.common.mailbox.notifications import NotificationCenter
from src.inbox.core.ephemeral import EphemeralMessages
from src.inbox.core.feed import FeedCache
from src.inbox.core.overlay import OverlayStore, OverlayWrite
from src.inbox.core.remote import guarded_call
from src.inbox.core.scheduler import BackgroundCalls, Scheduler, Timer

logger = logging.getLogger(__name__)


class PendingOperationKind(str, Enum):
    """What a pending operation commits."""

    DELETE = "delete"
    SEND = "send"


class PendingStatus(str, Enum):
    """Where a pending operation is in its lifecycle."""

    PENDING = "pending"
    CANCELLED = "cancelled"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"


SETTLED_STATUSES = frozenset(
    {PendingStatus.CANCELLED, PendingStatus.COMMITTED, PendingStatus.FAILED}
)


@dataclass
class PendingOperation:
    """One delayed, cancellable unit of real side effect.

    Attributes:
        kind: Delete or send.
        affected_entity_ids: Entities visually affected by the operation.
        payload: Message IDs to delete, or the ComposePayload to send.
        commit_at: Scheduler time at which the operation commits.
        operation_id: Unique identifier, also shown in undo notices.
        status: Lifecycle state; doubles as the cancel token.
        timer: The commit timer while pending.
        writes: Overlay receipts to roll back on cancel or failure.
    """

    kind: PendingOperationKind
    affected_entity_ids: tuple[str, ...]
    payload: Any
    commit_at: float
    operation_id: str = field(default_factory=lambda: f"op-{uuid4().hex[:12]}")
    status: PendingStatus = PendingStatus.PENDING
    timer: Timer | None = None
    writes: list[OverlayWrite] = field(default_factory=list)

    @property
    def is_pending(self) -> bool:
        return self.status == PendingStatus.PENDING


class UndoHandle:
    """Handle given to the undo affordance of a pending operation.

    Attributes:
        operation: The operation this handle controls.
    """

    def __init__(self, coordinator: UndoCoordinator, operation: PendingOperation):
        self._coordinator = coordinator
        self.operation = operation

    @property
    def operation_id(self) -> str:
        return self.operation.operation_id

    @property
    def status(self) -> PendingStatus:
        return self.operation.status

    @property
    def is_pending(self) -> bool:
        """Return whether the operation can still be cancelled."""
        return self.operation.is_pending

    def cancel(self) -> bool:
        """Cancel the operation if it has not committed yet.

        Safe to call any number of times; only the first call before the
        commit has an effect.

        Returns:
            True if this call cancelled the operation.
        """
        return self._coordinator.cancel(self.operation)

    def __repr__(self) -> str:
        return (
            f"UndoHandle({self.operation.kind.value}, "
            f"{self.operation_id}, {self.status.value})"
        )


class UndoCoordinator:
    """Runs delayed-commit operations for deletes and message sends.

    Deletes apply ``deleted=True`` to the overlay at enqueue time; the bulk
    delete call is issued when the grace window ends. Sends show an
    optimistic message in the thread; the transmission call is issued when
    the send undo window ends.

    Per compose context at most one send is pending: enqueueing a second one
    commits the earlier one first. Pending deletes are independent of each
    other.
    """

    def __init__(
        self,
        overlay: OverlayStore,
        api: MailboxAPI,
        scheduler: Scheduler,
        notifications: NotificationCenter,
        *,
        background: BackgroundCalls | None = None,
        feed: FeedCache | None = None,
        ephemeral: EphemeralMessages | None = None,
        restore_payload: Callable[[ComposePayload], None] | None = None,
        delete_window: float = 3.0,
        send_window: float = 8.0,
    ) -> None:
        """Initialize the coordinator.

        Args:
            overlay: Overlay store for delete overrides.
            api: Remote mutation API.
            scheduler: Clock and timer source.
            notifications: Where undo, send and error notices go.
            background: Tracker for the remote-call tasks.
            feed: Feed cache used for optimistic message baselines.
            ephemeral: Registry of optimistic sent messages.
            restore_payload: Called with the payload of a cancelled send so
                the compose surface can reopen it.
            delete_window: Grace window of deletes in seconds.
            send_window: Undo window of sends in seconds (0 sends at once).
        """
        self.overlay = overlay
        self.api = api
        self.scheduler = scheduler
        self.notifications = notifications
        self.background = background or BackgroundCalls()
        self.feed = feed
        self.ephemeral = ephemeral or EphemeralMessages(scheduler)
        self.restore_payload = restore_payload
        self.delete_window = delete_window
        self.send_window = send_window
        self._operations: dict[str, PendingOperation] = {}
        self._pending_sends: dict[str, PendingOperation] = {}

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def pending(self) -> list[PendingOperation]:
        """Return operations still inside their undo window."""
        return [op for op in self._operations.values() if op.is_pending]

    def pending_send(self, context_key: str) -> PendingOperation | None:
        """Return the pending send of a compose context, if any."""
        op = self._pending_sends.get(context_key)
        return op if op is not None and op.is_pending else None

    def get(self, operation_id: str) -> PendingOperation | None:
        """Return an operation that has not settled yet."""
        return self._operations.get(operation_id)

    # -------------------------------------------------------------------------
    # Enqueue
    # -------------------------------------------------------------------------

    def enqueue_delete(
        self,
        entity_ids: Sequence[str],
        message_ids: Sequence[str] | None = None,
    ) -> UndoHandle | None:
        """Hide entities now and delete them when the grace window ends.

        Args:
            entity_ids: Entities to delete.
            message_ids: Message IDs the remote delete targets. Defaults to
                ``entity_ids`` (entities that are messages).

        Returns:
            Handle for undoing the delete, or None if nothing was targeted.
        """
        ids = tuple(dict.fromkeys(entity_ids))
        if not ids:
            return None

        op = PendingOperation(
            kind=PendingOperationKind.DELETE,
            affected_entity_ids=ids,
            payload=tuple(message_ids if message_ids is not None else ids),
            commit_at=self.scheduler.now() + self.delete_window,
        )
        op.writes = self.overlay.apply_many(ids, deleted=True)
        self._operations[op.operation_id] = op
        op.timer = self.scheduler.call_later(
            self.delete_window, lambda: self._commit(op)
        )

        handle = UndoHandle(self, op)
        noun = "conversation" if len(ids) == 1 else "conversations"
        self.notifications.undo_available(f"Deleted {len(ids)} {noun}", handle, ids)
        logger.info("Delete of %s pending (%s)", list(ids), op.operation_id)
        return handle

    def enqueue_send(
        self,
        payload: ComposePayload,
        category: str = "others",
    ) -> UndoHandle:
        """Show a message as sent now and transmit it when the window ends.

        An earlier pending send of the same compose context is committed
        first.

        Args:
            payload: The composed message.
            category: Category of the thread the message belongs to.

        Returns:
            Handle for undoing the send. With a zero send window the send is
            already committing and the handle is not pending.
        """
        earlier = self.pending_send(payload.context_key)
        if earlier is not None:
            logger.info(
                "Flushing pending send %s before enqueueing a new one in %s",
                earlier.operation_id,
                payload.context_key,
            )
            self._commit(earlier)

        affected = (payload.thread_id,) if payload.thread_id else ()
        op = PendingOperation(
            kind=PendingOperationKind.SEND,
            affected_entity_ids=affected,
            payload=payload,
            commit_at=self.scheduler.now() + max(self.send_window, 0.0),
        )
        self._operations[op.operation_id] = op
        handle = UndoHandle(self, op)

        if payload.thread_id is not None:
            baseline = self.feed.thread_count(payload.thread_id) if self.feed else 0
            self.ephemeral.add(payload, baseline, category)

        if self.send_window <= 0:
            self._commit(op)
            return handle

        self._pending_sends[payload.context_key] = op
        op.timer = self.scheduler.call_later(self.send_window, lambda: self._commit(op))
        self.notifications.send_status(
            "countdown", payload.local_id, payload.to, handle=handle
        )
        logger.info("Send of %s pending (%s)", payload.local_id, op.operation_id)
        return handle

    # -------------------------------------------------------------------------
    # Cancel / commit
    # -------------------------------------------------------------------------

    def cancel(self, op: PendingOperation) -> bool:
        """Cancel a pending operation. No remote call is ever made.

        Returns:
            True if the operation was pending and is now cancelled.
        """
        if not op.is_pending:
            return False
        op.status = PendingStatus.CANCELLED
        if op.timer is not None:
            op.timer.cancel()
        self._settle(op)

        if op.kind == PendingOperationKind.DELETE:
            for write in op.writes:
                self.overlay.rollback(write)
            logger.info("Delete of %s undone", list(op.affected_entity_ids))
        else:
            payload: ComposePayload = op.payload
            self._forget_send(op)
            self.ephemeral.retract(payload.local_id)
            self.notifications.send_status("cancelled", payload.local_id, payload.to)
            if self.restore_payload is not None:
                self.restore_payload(payload)
            logger.info("Send of %s undone", payload.local_id)
        return True

    def flush_all(self) -> int:
        """Commit every pending operation now.

        Returns:
            Number of operations committed.
        """
        pending = self.pending
        for op in pending:
            self._commit(op)
        return len(pending)

    async def drain(self) -> None:
        """Wait for every in-flight commit to finish."""
        await self.background.drain()

    def _commit(self, op: PendingOperation) -> None:
        if not op.is_pending:
            return
        op.status = PendingStatus.COMMITTING
        if op.timer is not None:
            op.timer.cancel()
        if op.kind == PendingOperationKind.DELETE:
            coro = self._commit_delete(op)
        else:
            self._forget_send(op)
            coro = self._commit_send(op)
        self.background.spawn(coro, name=f"commit-{op.kind.value}-{op.operation_id}")

    def _settle(self, op: PendingOperation) -> None:
        self._operations.pop(op.operation_id, None)
        op.timer = None

    def _forget_send(self, op: PendingOperation) -> None:
        key = op.payload.context_key
        if self._pending_sends.get(key) is op:
            del self._pending_sends[key]

    async def _commit_delete(self, op: PendingOperation) -> None:
        ids = list(op.affected_entity_ids)

        def rollback() -> None:
            for write in op.writes:
                self.overlay.rollback(write)

        ok = await guarded_call(
            lambda: self.api.delete(list(op.payload)),
            action="delete",
            entity_ids=ids,
            notifications=self.notifications,
            failure_message="Failed to delete. Please try again.",
            rollback=rollback,
        )
        if ok:
            op.status = PendingStatus.COMMITTED
            for entity_id in ids:
                self.overlay.mark_confirmed(entity_id, ["deleted"])
            logger.info("Delete of %s committed", ids)
        else:
            op.status = PendingStatus.FAILED
        self._settle(op)

    async def _commit_send(self, op: PendingOperation) -> None:
        payload: ComposePayload = op.payload

        def rollback() -> None:
            self.ephemeral.retract(payload.local_id)
            if self.restore_payload is not None:
                self.restore_payload(payload)

        ok = await guarded_call(
            lambda: self.api.send_message(payload),
            action="send",
            entity_ids=list(op.affected_entity_ids),
            notifications=self.notifications,
            failure_message="Failed to send message. Please try again.",
            rollback=rollback,
        )
        if ok:
            op.status = PendingStatus.COMMITTED
            self.notifications.send_status("sent", payload.local_id, payload.to)
            logger.info("Send of %s committed", payload.local_id)
        else:
            op.status = PendingStatus.FAILED
            self.notifications.send_status("error", payload.local_id, payload.to)
        self._settle(op)

    def __len__(self) -> int:
        """Return the number of operations that have not settled yet."""
        return len(self._operations)
