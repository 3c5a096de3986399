"""HTTP client for the mail backend's mutation API.

This module provides ``MailboxAPIClient``, an ``httpx``-based implementation
of the ``MailboxAPI`` protocol. It only translates calls into requests and
failures into ``RemoteCallError``; retry, rollback and user notification are
the inbox core's concern.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import httpx

from src.common.api.protocol import RemoteCallError
from src.common.mailbox.config import InboxConfig
from src.common.mailbox.models import ComposePayload, Label

logger = logging.getLogger(__name__)

_SEND_PATHS = {
    "compose": "/emails/send",
    "reply": "/emails/reply",
    "forward": "/emails/forward",
}


class MailboxAPIClient:
    """Client for the mail backend's bulk mutation endpoints.

    Example:
        >>> async with MailboxAPIClient("http://localhost:8000") as api:
        ...     await api.mark_read(["m1", "m2"])
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        prefix: str = "/api",
        httpx_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Base URL of the backend (e.g., "http://localhost:8000").
            token: Bearer token sent with every request.
            prefix: Route prefix of the mutation endpoints.
            httpx_client: Optional httpx AsyncClient to use. If not provided,
                one will be created on entry.
            timeout: Request timeout in seconds (default: 30.0).
        """
        self.base_url = base_url.rstrip("/")
        self.prefix = prefix.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._external_client = httpx_client is not None
        self._httpx_client = httpx_client

    @classmethod
    def from_config(
        cls,
        config: InboxConfig,
        httpx_client: httpx.AsyncClient | None = None,
    ) -> MailboxAPIClient:
        """Create a client from an InboxConfig.

        Args:
            config: Configuration providing URL, token, prefix and timeout.
            httpx_client: Optional httpx AsyncClient to use.

        Returns:
            A new, not yet entered, client.
        """
        token = config.api_token.get_secret_value() if config.api_token else None
        return cls(
            config.api_base_url,
            token=token,
            prefix=config.api_prefix,
            httpx_client=httpx_client,
            timeout=config.request_timeout,
        )

    async def __aenter__(self) -> MailboxAPIClient:
        """Async context manager entry."""
        if self._httpx_client is None:
            self._httpx_client = httpx.AsyncClient(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if not self._external_client and self._httpx_client is not None:
            await self._httpx_client.aclose()
            self._httpx_client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure httpx client is available.

        Returns:
            The httpx AsyncClient.

        Raises:
            RuntimeError: If client is not initialized.
        """
        if self._httpx_client is None:
            raise RuntimeError(
                "Client not initialized. Use 'async with' context manager or "
                "call __aenter__ first."
            )
        return self._httpx_client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _call(
        self,
        operation: str,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
    ) -> None:
        """Issue one request and raise RemoteCallError unless it succeeded.

        Args:
            operation: Operation name used in errors and logs.
            method: HTTP method.
            path: Path below the route prefix.
            body: Optional JSON body.

        Raises:
            RemoteCallError: On transport errors and non-2xx responses.
        """
        client = self._ensure_client()
        url = f"{self.base_url}{self.prefix}{path}"
        logger.debug("%s %s (%s)", method, url, operation)
        try:
            response = await client.request(
                method, url, json=body, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            raise RemoteCallError(operation, detail=str(exc)) from exc

        if response.is_success:
            return

        detail: str | None = None
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            detail = payload.get("detail")
        raise RemoteCallError(
            operation,
            detail=detail or f"API error: {response.status_code}",
            status_code=response.status_code,
        )

    async def _batch(self, operation: str, method: str, path: str,
                     message_ids: Sequence[str]) -> None:
        if not message_ids:
            return
        await self._call(operation, method, path, {"email_ids": list(message_ids)})

    # -------------------------------------------------------------------------
    # MailboxAPI
    # -------------------------------------------------------------------------

    async def mark_read(self, message_ids: Sequence[str]) -> None:
        """Mark messages as read."""
        await self._batch("mark_read", "POST", "/emails/batch/read", message_ids)

    async def mark_unread(self, message_ids: Sequence[str]) -> None:
        """Mark messages as unread."""
        await self._batch("mark_unread", "POST", "/emails/batch/unread", message_ids)

    async def mark_done(self, message_ids: Sequence[str]) -> None:
        """Archive messages."""
        await self._batch("mark_done", "POST", "/emails/batch/done", message_ids)

    async def mark_undone(self, message_ids: Sequence[str]) -> None:
        """Restore archived messages to the inbox."""
        await self._batch("mark_undone", "POST", "/emails/batch/undone", message_ids)

    async def delete(self, message_ids: Sequence[str]) -> None:
        """Move messages to trash."""
        await self._batch("delete", "DELETE", "/emails/batch", message_ids)

    async def apply_label(self, thread_id: str, label: Label) -> None:
        """Apply a label to a thread."""
        await self._call(
            "apply_label",
            "POST",
            "/labels/apply-to-thread",
            {"thread_id": thread_id, "label_id": label.id, "label_name": label.name},
        )

    async def remove_label(self, thread_id: str, label: Label) -> None:
        """Remove a label from a thread."""
        await self._call(
            "remove_label",
            "POST",
            "/labels/remove-from-thread",
            {"thread_id": thread_id, "label_id": label.id, "label_name": label.name},
        )

    async def recategorize(self, thread_id: str, category: str) -> None:
        """Override the category of a thread."""
        await self._call(
            "recategorize",
            "POST",
            f"/threads/{thread_id}/category",
            {"category": category.upper()},
        )

    async def send_message(self, payload: ComposePayload) -> None:
        """Transmit a composed message (new, reply or forward)."""
        await self._call(
            "send_message",
            "POST",
            _SEND_PATHS[payload.context],
            payload.to_request_body(),
        )

    async def cancel_scheduled_send(self, message_id: str) -> None:
        """Cancel a scheduled message before it is sent."""
        await self._call(
            "cancel_scheduled_send", "POST", f"/scheduled/{message_id}/cancel"
        )

    async def reschedule_send(self, message_id: str, send_at: datetime) -> None:
        """Move a scheduled message to a new send time."""
        await self._call(
            "reschedule_send",
            "POST",
            f"/scheduled/{message_id}/reschedule",
            {"scheduled_at": send_at.isoformat()},
        )
