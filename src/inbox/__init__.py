"""Inbox coordination layer between the live feed and the mutation API.

Modules:
    coordinator: ``MailboxCoordinator``, the single entry point
    selection: Selection set for batch actions
    compose: Compose surface interface, drafts and modal tracking
    core: Overlay, undo, batch, chord and projection components
"""

from __future__ import annotations

from src.inbox.compose import ComposeSurface, ModalTracker, forward_draft, reply_draft
from src.inbox.coordinator import (
    ActionKind,
    ActionResult,
    MailboxCoordinator,
    MissingActionParameterError,
    UnknownActionError,
)
from src.inbox.selection import SelectionSet

__all__ = [
    "ActionKind",
    "ActionResult",
    "MailboxCoordinator",
    "MissingActionParameterError",
    "UnknownActionError",
    "ComposeSurface",
    "ModalTracker",
    "forward_draft",
    "reply_draft",
    "SelectionSet",
]
