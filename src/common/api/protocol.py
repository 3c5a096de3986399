"""Remote mutation API interface.

The inbox core talks to the backend only through the ``MailboxAPI``
protocol defined here. Every call is a bulk call that either succeeds
(returns None) or raises ``MailboxAPIError``; the core never interprets a
response body beyond that.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from src.common.mailbox.models import ComposePayload, Label


class MailboxAPIError(Exception):
    """Base exception for remote mutation API errors."""

    pass


class RemoteCallError(MailboxAPIError):
    """Raised when a remote mutation call fails.

    Attributes:
        operation: Name of the failed operation (e.g. "mark_done").
        status_code: HTTP status code, or None for transport errors.
        detail: Error detail reported by the backend, if any.
    """

    def __init__(
        self,
        operation: str,
        detail: str | None = None,
        status_code: int | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            operation: Name of the failed operation.
            detail: Error detail reported by the backend.
            status_code: HTTP status code, or None for transport errors.
        """
        message = f"{operation} failed"
        if status_code is not None:
            message += f" ({status_code})"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.detail = detail


class MailboxAPI(Protocol):
    """Bulk mutation calls offered by the mail backend."""

    async def mark_read(self, message_ids: Sequence[str]) -> None: ...

    async def mark_unread(self, message_ids: Sequence[str]) -> None: ...

    async def mark_done(self, message_ids: Sequence[str]) -> None: ...

    async def mark_undone(self, message_ids: Sequence[str]) -> None: ...

    async def delete(self, message_ids: Sequence[str]) -> None: ...

    async def apply_label(self, thread_id: str, label: Label) -> None: ...

    async def remove_label(self, thread_id: str, label: Label) -> None: ...

    async def recategorize(self, thread_id: str, category: str) -> None: ...

    async def send_message(self, payload: ComposePayload) -> None: ...

    async def cancel_scheduled_send(self, message_id: str) -> None: ...

    async def reschedule_send(self, message_id: str, send_at: datetime) -> None: ...
