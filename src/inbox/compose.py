"""Compose surface interface, reply/forward drafts and modal tracking.

The compose editor itself belongs to the host UI. The inbox core hands it
drafts to open (reply, reply-all, forward) and payloads to restore when a
pending send is undone, and receives payloads from it to enqueue.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from src.common.mailbox.models import ComposePayload, Entity

logger = logging.getLogger(__name__)


class ComposeSurface(Protocol):
    """What the inbox core needs from the host's compose editor."""

    def open(self, draft: ComposePayload) -> None:
        """Open the editor with a prefilled draft."""
        ...

    def restore(self, payload: ComposePayload) -> None:
        """Reopen the editor with a payload whose send was undone."""
        ...


def _prefixed(subject: str, prefix: str) -> str:
    if subject.lower().startswith(prefix.lower()):
        return subject
    return f"{prefix} {subject}".strip()


def _without(addresses: list[str], excluded: set[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    result: list[str] = []
    for address in addresses:
        key = address.lower()
        if key in excluded or key in seen:
            continue
        seen.add(key)
        result.append(address)
    return tuple(result)


def reply_draft(
    message: Entity,
    reply_all: bool = False,
    self_address: str | None = None,
) -> ComposePayload:
    """Build the draft for replying to a message.

    A plain reply goes to the sender. Reply-all also keeps the other
    recipients and the CC list, minus the user's own address.

    Args:
        message: The message being replied to.
        reply_all: Whether to reply to all recipients.
        self_address: The user's own address, excluded from recipients.

    Returns:
        A reply-context payload.

    Example:
        >>> msg = Entity(id="m1", kind="message", thread_id="t1",
        ...              sender="a@x.com", to=("me@x.com", "b@x.com"))
        >>> reply_draft(msg, reply_all=True, self_address="me@x.com").to
        ('a@x.com', 'b@x.com')
    """
    excluded = {self_address.lower()} if self_address else set()
    to = [message.sender] if message.sender else []
    cc: tuple[str, ...] = ()
    if reply_all:
        to.extend(message.to)
        cc = _without(list(message.cc), excluded | {a.lower() for a in to})
    return ComposePayload(
        context="reply",
        to=_without(to, excluded),
        cc=cc,
        subject=_prefixed(message.subject, "Re:"),
        thread_id=message.thread_id,
        in_reply_to=message.id,
        reply_mode="reply_all" if reply_all else "reply",
        sender=self_address,
    )


def forward_draft(message: Entity, self_address: str | None = None) -> ComposePayload:
    """Build the draft for forwarding a message."""
    return ComposePayload(
        context="forward",
        subject=_prefixed(message.subject, "Fwd:"),
        thread_id=message.thread_id,
        original_message_id=message.id,
        sender=self_address,
    )


class ModalTracker:
    """Tracks which modals (compose, label picker, ...) are open.

    Keyboard shortcuts are ignored while any modal is open. Listeners are
    told when the first modal opens, so pending chords can be reset.
    """

    def __init__(self) -> None:
        self._open: set[str] = set()
        self._on_open: list[Callable[[], None]] = []

    @property
    def is_open(self) -> bool:
        return bool(self._open)

    @property
    def open_modals(self) -> list[str]:
        return sorted(self._open)

    def on_open(self, listener: Callable[[], None]) -> None:
        """Register a callback run whenever a modal opens."""
        self._on_open.append(listener)

    def set_open(self, name: str, is_open: bool) -> None:
        """Record a modal opening or closing.

        Args:
            name: Modal identifier (e.g. "compose").
            is_open: Whether it is now open.
        """
        if is_open:
            self._open.add(name)
            logger.debug("Modal %s opened", name)
            for listener in list(self._on_open):
                listener()
        else:
            self._open.discard(name)
            logger.debug("Modal %s closed", name)
