"""Notification models and notification center.

This module provides Pydantic models for the transient notifications the
inbox core surfaces to the toast layer, plus a ``NotificationCenter`` that
keeps a bounded history and fans notifications out to listeners.

Notifications are the only channel through which the core reports remote
failures: every failure is local and recoverable, so nothing is raised to
the host; an ``ErrorNotice`` is emitted instead.

Notification Types:
    - UndoNotice: An undoable action is pending (carries the UndoHandle)
    - ErrorNotice: A remote call failed and local state was reverted
    - InfoNotice: Plain informational toast (e.g. "Moved to Others")
    - SendStatusNotice: Progress of an outgoing message

Design Note:
    All notification models include a ``message_type`` field with a fixed
    literal string value (prefixed with "notice_") for consistent parsing.

Example:
    >>> center = NotificationCenter(max_notifications=5)
    >>> seen = []
    >>> unsubscribe = center.subscribe(seen.append)
    >>> notice = center.info("Moved to Others")
    >>> seen[0].message
    'Moved to Others'
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


def _notice_id() -> str:
    return f"notice-{uuid4().hex[:12]}"


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


# =============================================================================
# Notification Models
# =============================================================================


class UndoNotice(BaseModel):
    """An undoable action is pending.

    The toast layer shows ``message`` with an undo affordance that calls
    ``handle.cancel()``.

    Attributes:
        message_type: Fixed identifier for this notice type.
        notice_id: Unique notice identifier.
        message: Text shown in the toast.
        operation_id: ID of the pending operation.
        entity_ids: Entities affected by the pending operation.
        handle: The UndoHandle to cancel (not serialized).
        created_at: When the notice was created.
    """

    model_config = ConfigDict(frozen=True)

    message_type: Literal["notice_undo"] = "notice_undo"
    notice_id: str = Field(default_factory=_notice_id)
    message: str = Field(..., description="Toast text")
    operation_id: str = Field(..., description="Pending operation ID")
    entity_ids: tuple[str, ...] = Field(default=(), description="Affected entities")
    handle: Any = Field(default=None, exclude=True, repr=False)
    created_at: datetime = Field(default_factory=_utc_now)


class ErrorNotice(BaseModel):
    """A remote call failed and local state was reverted where applicable.

    Attributes:
        message_type: Fixed identifier for this notice type.
        notice_id: Unique notice identifier.
        message: Text shown in the toast.
        action: The action whose remote call failed.
        entity_ids: Entities the failed call targeted.
        detail: Error detail from the remote API, if any.
        rolled_back: Whether the optimistic state was reverted.
        created_at: When the notice was created.
    """

    model_config = ConfigDict(frozen=True)

    message_type: Literal["notice_error"] = "notice_error"
    notice_id: str = Field(default_factory=_notice_id)
    message: str = Field(..., description="Toast text")
    action: str = Field(..., description="Failed action")
    entity_ids: tuple[str, ...] = Field(default=(), description="Targeted entities")
    detail: str | None = Field(default=None, description="Remote error detail")
    rolled_back: bool = Field(default=False, description="Whether state reverted")
    created_at: datetime = Field(default_factory=_utc_now)


class InfoNotice(BaseModel):
    """A plain informational toast.

    Attributes:
        message_type: Fixed identifier for this notice type.
        notice_id: Unique notice identifier.
        message: Text shown in the toast.
        entity_ids: Entities the message is about.
        created_at: When the notice was created.
    """

    model_config = ConfigDict(frozen=True)

    message_type: Literal["notice_info"] = "notice_info"
    notice_id: str = Field(default_factory=_notice_id)
    message: str = Field(..., description="Toast text")
    entity_ids: tuple[str, ...] = Field(default=(), description="Related entities")
    created_at: datetime = Field(default_factory=_utc_now)


SendState = Literal["countdown", "sent", "cancelled", "error"]


class SendStatusNotice(BaseModel):
    """Progress of an outgoing message.

    Attributes:
        message_type: Fixed identifier for this notice type.
        notice_id: Unique notice identifier.
        state: Current state of the send.
        payload_id: Local ID of the compose payload.
        recipients: Recipient addresses.
        handle: The UndoHandle while in countdown (not serialized).
        detail: Error detail when state is "error".
        created_at: When the notice was created.
    """

    model_config = ConfigDict(frozen=True)

    message_type: Literal["notice_send_status"] = "notice_send_status"
    notice_id: str = Field(default_factory=_notice_id)
    state: SendState = Field(..., description="Send state")
    payload_id: str = Field(..., description="Compose payload local ID")
    recipients: tuple[str, ...] = Field(default=(), description="Recipients")
    handle: Any = Field(default=None, exclude=True, repr=False)
    detail: str | None = Field(default=None, description="Error detail")
    created_at: datetime = Field(default_factory=_utc_now)

    @property
    def recipient_display(self) -> str:
        """Return the recipients as shown in the toast.

        Example:
            >>> SendStatusNotice(state="sent", payload_id="p",
            ...                  recipients=("a@x.com", "b@x.com")).recipient_display
            'a@x.com +1'
        """
        if not self.recipients:
            return ""
        if len(self.recipients) == 1:
            return self.recipients[0]
        return f"{self.recipients[0]} +{len(self.recipients) - 1}"


Notification = Union[UndoNotice, ErrorNotice, InfoNotice, SendStatusNotice]
NotificationListener = Callable[[Notification], None]


# =============================================================================
# Notification Center
# =============================================================================


class NotificationCenter:
    """Bounded notification history with listener fan-out.

    Listeners are called synchronously in registration order. A listener
    that raises is logged and skipped; it never disturbs the caller.

    Attributes:
        max_notifications: Maximum number of notifications kept.
        ttl: Suggested auto-hide delay for info and undo toasts (seconds).
    """

    def __init__(self, max_notifications: int = 5, ttl: float = 3.0) -> None:
        """Initialize the notification center.

        Args:
            max_notifications: Maximum number of notifications kept; older
                ones are dropped first.
            ttl: Suggested auto-hide delay passed through to the toast layer.
        """
        self.max_notifications = max_notifications
        self.ttl = ttl
        self._history: deque[Notification] = deque(maxlen=max_notifications)
        self._listeners: list[NotificationListener] = []

    @property
    def history(self) -> list[Notification]:
        """Return notifications newest first."""
        return list(reversed(self._history))

    @property
    def latest_undo(self) -> UndoNotice | None:
        """Return the newest undo notice whose handle is still pending."""
        for notice in reversed(self._history):
            if isinstance(notice, UndoNotice):
                handle = notice.handle
                if handle is None or handle.is_pending:
                    return notice
                return None
        return None

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """Register a listener.

        Args:
            listener: Callable invoked with each new notification.

        Returns:
            A callable that unregisters the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, notification: Notification) -> Notification:
        """Record a notification and notify listeners.

        Args:
            notification: The notification to emit.

        Returns:
            The same notification.
        """
        self._history.append(notification)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception(
                    "Notification listener failed for %s", notification.message_type
                )
        return notification

    def dismiss(self, notice_id: str) -> bool:
        """Remove a notification from the history.

        Args:
            notice_id: ID of the notification to remove.

        Returns:
            True if a notification was removed.
        """
        for notice in list(self._history):
            if notice.notice_id == notice_id:
                self._history.remove(notice)
                return True
        return False

    def clear(self) -> None:
        """Drop all notifications."""
        self._history.clear()

    # -------------------------------------------------------------------------
    # Convenience constructors
    # -------------------------------------------------------------------------

    def undo_available(
        self,
        message: str,
        handle: Any,
        entity_ids: list[str] | tuple[str, ...] = (),
    ) -> UndoNotice:
        """Emit an UndoNotice for a pending operation."""
        notice = UndoNotice(
            message=message,
            operation_id=handle.operation_id,
            entity_ids=tuple(entity_ids),
            handle=handle,
        )
        self.emit(notice)
        return notice

    def error(
        self,
        message: str,
        action: str,
        entity_ids: list[str] | tuple[str, ...] = (),
        detail: str | None = None,
        rolled_back: bool = False,
    ) -> ErrorNotice:
        """Emit an ErrorNotice for a failed remote call."""
        notice = ErrorNotice(
            message=message,
            action=action,
            entity_ids=tuple(entity_ids),
            detail=detail,
            rolled_back=rolled_back,
        )
        self.emit(notice)
        return notice

    def info(
        self,
        message: str,
        entity_ids: list[str] | tuple[str, ...] = (),
    ) -> InfoNotice:
        """Emit an InfoNotice."""
        notice = InfoNotice(message=message, entity_ids=tuple(entity_ids))
        self.emit(notice)
        return notice

    def send_status(
        self,
        state: SendState,
        payload_id: str,
        recipients: list[str] | tuple[str, ...] = (),
        handle: Any = None,
        detail: str | None = None,
    ) -> SendStatusNotice:
        """Emit a SendStatusNotice."""
        notice = SendStatusNotice(
            state=state,
            payload_id=payload_id,
            recipients=tuple(recipients),
            handle=handle,
            detail=detail,
        )
        self.emit(notice)
        return notice

    def __len__(self) -> int:
        return len(self._history)
