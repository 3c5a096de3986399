"""Remote mutation API of the mail backend.

Modules:
    protocol: The ``MailboxAPI`` protocol and its error types
    client: httpx-based implementation of the protocol
"""

from __future__ import annotations

from src.common.api.client import MailboxAPIClient
from src.common.api.protocol import MailboxAPI, MailboxAPIError, RemoteCallError

__all__ = [
    "MailboxAPI",
    "MailboxAPIClient",
    "MailboxAPIError",
    "RemoteCallError",
]
