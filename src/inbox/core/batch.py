"""Batch operation executor.

Applies one operation to a set of entities as a unit: the overlay is written
for every entity synchronously, then a single bulk remote call is issued for
all of their message IDs. Failure handling differs per operation:

- ``MARK_READ`` / ``MARK_UNREAD``: the optimistic state is kept on failure.
- ``MARK_DONE`` / ``MARK_UNDONE``: the whole batch is rolled back.
- ``DELETE``: goes through the undo coordinator, so it is undoable and
  rolled back if the delayed commit fails.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from src.common.api.protocol import MailboxAPI
from src.common.mailbox.notifications import NotificationCenter
from src.inbox.core.overlay import OverlayStore, OverlayWrite
from src.inbox.core.remote import guarded_call
from src.inbox.core.scheduler import BackgroundCalls
from src.inbox.core.undo import UndoCoordinator, UndoHandle

logger = logging.getLogger(__name__)

MessageIdResolver = Callable[[Sequence[str]], list[str]]


class BatchOp(str, Enum):
    """Operations the executor can apply to a set of entities."""

    MARK_READ = "mark_read"
    MARK_UNREAD = "mark_unread"
    MARK_DONE = "mark_done"
    MARK_UNDONE = "mark_undone"
    DELETE = "delete"

    @property
    def removes(self) -> bool:
        """Return whether the operation takes entities out of the current list."""
        return self in (BatchOp.MARK_DONE, BatchOp.MARK_UNDONE, BatchOp.DELETE)


class Selection(Protocol):
    """What the executor needs from a selection set."""

    @property
    def ids(self) -> list[str]: ...

    def clear(self) -> None: ...


@dataclass
class BatchResult:
    """Outcome of applying a batch operation locally.

    Attributes:
        op: The operation applied.
        entity_ids: Entities the operation was applied to.
        handle: Undo handle for deletes.
    """

    op: BatchOp
    entity_ids: list[str] = field(default_factory=list)
    handle: UndoHandle | None = None

    @property
    def removed_ids(self) -> list[str]:
        """Return the entities this operation takes out of the current list."""
        return list(self.entity_ids) if self.op.removes else []


_FAILURE_MESSAGES = {
    BatchOp.MARK_READ: "Failed to mark as read",
    BatchOp.MARK_UNREAD: "Failed to mark as unread",
    BatchOp.MARK_DONE: "Failed to mark as done. Please try again.",
    BatchOp.MARK_UNDONE: "Failed to move back to inbox. Please try again.",
}


class BatchOperationExecutor:
    """Applies batch operations through the overlay and undo coordinator.

    Example:
        >>> executor = BatchOperationExecutor(overlay, api, undo, notifications)
        >>> result = executor.apply(BatchOp.MARK_DONE, ["t1", "t2"])
        >>> result.removed_ids
        ['t1', 't2']
    """

    def __init__(
        self,
        overlay: OverlayStore,
        api: MailboxAPI,
        undo: UndoCoordinator,
        notifications: NotificationCenter,
        *,
        background: BackgroundCalls | None = None,
        resolve_message_ids: MessageIdResolver | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            overlay: Overlay store written for every entity.
            api: Remote mutation API.
            undo: Coordinator that runs undoable deletes.
            notifications: Where failures are surfaced.
            background: Tracker for the remote-call tasks. Defaults to the
                undo coordinator's.
            resolve_message_ids: Expands entity IDs to the message IDs a
                remote call targets. Defaults to the entity IDs themselves.
        """
        self.overlay = overlay
        self.api = api
        self.undo = undo
        self.notifications = notifications
        self.background = background or undo.background
        self.resolve_message_ids = resolve_message_ids or (lambda ids: list(ids))

    def apply_to_selection(self, op: BatchOp, selection: Selection) -> BatchResult:
        """Apply an operation to every selected entity, then clear the selection.

        An empty selection is a no-op.
        """
        ids = selection.ids
        if not ids:
            return BatchResult(op)
        selection.clear()
        return self.apply(op, ids)

    def apply(self, op: BatchOp, entity_ids: Sequence[str]) -> BatchResult:
        """Apply an operation to a set of entities.

        Args:
            op: The operation.
            entity_ids: Target entities. Duplicates are ignored; an empty
                sequence is a no-op.

        Returns:
            What was applied locally. Remote calls are still in flight.
        """
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return BatchResult(op)

        message_ids = self.resolve_message_ids(ids)
        if op == BatchOp.DELETE:
            handle = self.undo.enqueue_delete(ids, message_ids)
            return BatchResult(op, ids, handle)

        if op == BatchOp.MARK_READ:
            self.overlay.apply_many(ids, read_override=True)
            self._issue(op, ids, lambda: self.api.mark_read(message_ids))
        elif op == BatchOp.MARK_UNREAD:
            self.overlay.apply_many(ids, read_override=False)
            self._issue(op, ids, lambda: self.api.mark_unread(message_ids))
        elif op == BatchOp.MARK_DONE:
            writes = self.overlay.apply_many(ids, archived=True)
            self._issue(op, ids, lambda: self.api.mark_done(message_ids), writes)
        elif op == BatchOp.MARK_UNDONE:
            writes = self.overlay.apply_many(ids, archived=False)
            self._issue(op, ids, lambda: self.api.mark_undone(message_ids), writes)
        else:
            raise ValueError(f"Unsupported batch operation: {op}")

        logger.info("Applied %s to %d entities", op.value, len(ids))
        return BatchResult(op, ids)

    def _issue(
        self,
        op: BatchOp,
        ids: list[str],
        call: Callable[[], Awaitable[None]],
        writes: list[OverlayWrite] | None = None,
    ) -> None:
        rollback = None
        if writes is not None:

            def rollback() -> None:
                for write in writes:
                    self.overlay.rollback(write)

        async def run() -> None:
            ok = await guarded_call(
                call,
                action=op.value,
                entity_ids=ids,
                notifications=self.notifications,
                failure_message=_FAILURE_MESSAGES[op],
                rollback=rollback,
            )
            if ok and writes is not None:
                for entity_id in ids:
                    self.overlay.mark_confirmed(entity_id, ["archived"])

        self.background.spawn(run(), name=f"batch-{op.value}")


def pick_neighbor(
    visible_ids: Sequence[str],
    current_id: str,
    removed_ids: Sequence[str],
) -> str | None:
    """Choose what the detail view shows after ``current_id`` is removed.

    Prefers the next entity in the list that is not being removed, then the
    previous one.

    Args:
        visible_ids: The list as displayed before the removal.
        current_id: The entity open in the detail view.
        removed_ids: Entities removed by the same action.

    Returns:
        The entity to open, or None to close the detail view.

    Example:
        >>> pick_neighbor(["a", "b", "c", "d"], "b", ["b", "c"])
        'd'
        >>> pick_neighbor(["a", "b"], "b", ["b"])
        'a'
    """
    removed = set(removed_ids)
    if current_id not in visible_ids:
        remaining = [entity_id for entity_id in visible_ids if entity_id not in removed]
        return remaining[0] if remaining else None

    index = list(visible_ids).index(current_id)
    for entity_id in visible_ids[index + 1:]:
        if entity_id not in removed:
            return entity_id
    for entity_id in reversed(visible_ids[:index]):
        if entity_id not in removed:
            return entity_id
    return None
