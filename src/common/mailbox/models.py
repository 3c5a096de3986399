"""Mailbox entity models.

This module defines the Pydantic models for the records the inbox core works
with. Entities (threads and messages) are owned by the remote live feed; the
inbox core never mutates them, it only shadows individual fields through the
overlay store and renders the merged result as an ``EffectiveEntity``.

Models:
    - Label: A user label (hashable, usable in label sets)
    - Entity: A thread or message record as delivered by the live feed
    - EffectiveEntity: Entity merged with local overrides (what the UI renders)
    - ComposePayload: A composed message handed over by the compose surface

Categories:
    The inbox groups threads into five categories. Category names are
    case-insensitive at every boundary and are normalized to lower case by
    ``normalize_category()``. Lists are also shown for the special views
    "done", "sent" and "scheduled" (see ``normalize_view()``).

Example:
    >>> from src.common.mailbox.models import Entity
    >>> thread = Entity(
    ...     id="t1",
    ...     category="URGENT",
    ...     read=False,
    ...     message_ids=["m1", "m2"],
    ... )
    >>> thread.category
    'urgent'
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Categories
# =============================================================================

Category = Literal["urgent", "important", "promises", "awaiting", "others"]

ALL_CATEGORIES: list[Category] = [
    "urgent",
    "important",
    "promises",
    "awaiting",
    "others",
]

CATEGORY_LABELS: dict[str, str] = {
    "urgent": "Urgent",
    "important": "Important",
    "promises": "Promises",
    "awaiting": "Awaiting",
    "others": "Others",
}

SPECIAL_VIEWS: list[str] = ["done", "sent", "scheduled"]

ALL_VIEWS: list[str] = [*ALL_CATEGORIES, *SPECIAL_VIEWS]

EntityKind = Literal["thread", "message"]
ComposeContext = Literal["compose", "reply", "forward"]
ReplyMode = Literal["reply", "reply_all"]


def normalize_category(value: str) -> str:
    """Normalize a category name to its lower-case form.

    Args:
        value: Category name in any case (e.g. "URGENT", "Urgent").

    Returns:
        The lower-case category name.

    Raises:
        ValueError: If the name is not one of the known categories.

    Example:
        >>> normalize_category("OTHERS")
        'others'
    """
    normalized = value.strip().lower()
    if normalized not in ALL_CATEGORIES:
        raise ValueError(
            f"Unknown category {value!r}; expected one of {ALL_CATEGORIES}"
        )
    return normalized


def normalize_view(value: str) -> str:
    """Normalize a view name (a category or a special mailbox view).

    Args:
        value: View name in any case (e.g. "Urgent", "DONE").

    Returns:
        The lower-case view name.

    Raises:
        ValueError: If the name is neither a category nor a special view.
    """
    normalized = value.strip().lower()
    if normalized not in ALL_VIEWS:
        raise ValueError(f"Unknown view {value!r}; expected one of {ALL_VIEWS}")
    return normalized


# =============================================================================
# Labels
# =============================================================================


class Label(BaseModel):
    """A user-defined label that can be applied to threads.

    Labels are frozen so they can be members of label sets.

    Attributes:
        id: Stable label identifier.
        name: Display name.
        color: Display color as a hex string.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Stable label identifier")
    name: str = Field(..., min_length=1, description="Display name")
    color: str = Field(default="#8FA8A3", description="Display color")


# =============================================================================
# Entities
# =============================================================================


class Entity(BaseModel):
    """A thread or message as delivered by the remote live feed.

    The feed is authoritative for every field. For a thread, ``message_ids``
    lists its member messages; for a message it is the message's own ID, so
    both kinds expand to message IDs the same way before a remote call.

    Attributes:
        id: Stable entity identifier (thread ID or message ID).
        kind: Whether the entity is a thread or a single message.
        category: Inbox category the feed currently reports.
        read: Remote read state.
        message_ids: Member message IDs.
        labels: Applied labels.
        subject: Subject line (display only).
        snippet: Short preview text (display only).
        participants: Participant addresses (display only).
        thread_id: Parent thread for messages.
        sender: Sender address for messages.
        to: Recipient addresses for messages.
        cc: CC addresses for messages.
        updated_at: Last activity timestamp.

    Example:
        >>> message = Entity(id="m1", kind="message", category="others",
        ...                  thread_id="t1")
        >>> message.expand_message_ids()
        ['m1']
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., min_length=1, description="Stable entity identifier")
    kind: EntityKind = Field(default="thread", description="Entity kind")
    category: Category = Field(default="others", description="Remote category")
    read: bool = Field(default=False, description="Remote read state")
    message_ids: tuple[str, ...] = Field(
        default=(), description="Member message IDs"
    )
    labels: frozenset[Label] = Field(
        default_factory=frozenset, description="Applied labels"
    )
    subject: str = Field(default="", description="Subject line")
    snippet: str = Field(default="", description="Preview text")
    participants: tuple[str, ...] = Field(default=(), description="Participants")
    thread_id: str | None = Field(default=None, description="Parent thread ID")
    sender: str | None = Field(default=None, description="Sender address")
    to: tuple[str, ...] = Field(default=(), description="Recipients")
    cc: tuple[str, ...] = Field(default=(), description="CC recipients")
    updated_at: datetime | None = Field(default=None, description="Last activity")

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category_field(cls, v: Any) -> Any:
        """Accept category names in any case."""
        if isinstance(v, str):
            return normalize_category(v)
        return v

    def expand_message_ids(self) -> list[str]:
        """Return the message IDs a remote call for this entity targets.

        Returns:
            The thread's member message IDs, or ``[id]`` for a message.
        """
        if self.kind == "message":
            return [self.id]
        return list(self.message_ids)


class EffectiveEntity(Entity):
    """An entity merged with its local overrides.

    This is what the rendering layer consumes. Every field of ``Entity``
    holds the effective (possibly overridden) value.

    Attributes:
        archived: Whether a "done" action is locally pending/confirmed.
        deleted: Whether a delete is locally pending/confirmed.
        pending_category: Target category of an outstanding move, if any.
        has_overlay: Whether any local override is present.
        optimistic: True only for locally-synthesized sent messages.
    """

    archived: bool = False
    deleted: bool = False
    pending_category: Category | None = None
    has_overlay: bool = False
    optimistic: bool = False

    @classmethod
    def from_entity(cls, entity: Entity, **overrides: Any) -> EffectiveEntity:
        """Build an effective entity from a remote entity.

        Args:
            entity: The remote entity snapshot.
            **overrides: Field values replacing the remote ones.

        Returns:
            A new EffectiveEntity.
        """
        data = dict(entity)
        data.update(overrides)
        return cls(**data)


# =============================================================================
# Compose Payload
# =============================================================================


class ComposePayload(BaseModel):
    """A composed message handed over by the compose surface.

    The payload is opaque to the undo coordinator except for the fields
    needed to route the send (``context``, ``thread_id``) and to synthesize
    the optimistic message shown in the thread while the undo window runs.

    Attributes:
        local_id: Locally generated identifier for this payload.
        context: Compose surface that produced the payload.
        to: Recipient addresses.
        cc: CC addresses.
        bcc: BCC addresses.
        subject: Subject line.
        body_html: HTML body.
        body_text: Plain-text body.
        thread_id: Thread being replied to or forwarded from.
        in_reply_to: Message ID being replied to.
        original_message_id: Message ID being forwarded.
        reply_mode: Reply or reply-all (reply context only).
        scheduled_at: Send-later timestamp, if scheduled.
        attachment_ids: Uploaded attachment IDs.
        sender: Sender address used for the optimistic message.
    """

    model_config = ConfigDict(frozen=True)

    local_id: str = Field(default_factory=lambda: f"local-{uuid4().hex}")
    context: ComposeContext = "compose"
    to: tuple[str, ...] = ()
    cc: tuple[str, ...] = ()
    bcc: tuple[str, ...] = ()
    subject: str = ""
    body_html: str = ""
    body_text: str = ""
    thread_id: str | None = None
    in_reply_to: str | None = None
    original_message_id: str | None = None
    reply_mode: ReplyMode | None = None
    scheduled_at: datetime | None = None
    attachment_ids: tuple[str, ...] = ()
    sender: str | None = None

    @property
    def context_key(self) -> str:
        """Return the key identifying this payload's compose context.

        Replies and forwards are keyed by their thread; new messages share
        a single compose context.
        """
        if self.context == "compose" or self.thread_id is None:
            return self.context
        return f"{self.context}:{self.thread_id}"

    def to_optimistic_message(self, category: str = "others") -> EffectiveEntity:
        """Synthesize the message shown in its thread while sending.

        Args:
            category: Category to attach to the synthesized message.

        Returns:
            An EffectiveEntity flagged as optimistic.
        """
        return EffectiveEntity(
            id=self.local_id,
            kind="message",
            category=category,
            read=True,
            message_ids=(self.local_id,),
            subject=self.subject,
            snippet=(self.body_text or self.body_html)[:100],
            thread_id=self.thread_id,
            sender=self.sender,
            to=self.to,
            cc=self.cc,
            optimistic=True,
        )

    def to_request_body(self) -> dict[str, Any]:
        """Return the JSON body for the send endpoint."""
        body: dict[str, Any] = {
            "to": list(self.to),
            "cc": list(self.cc),
            "bcc": list(self.bcc),
            "subject": self.subject,
            "body_html": self.body_html,
            "body_text": self.body_text,
            "scheduled_at": (
                self.scheduled_at.isoformat() if self.scheduled_at else None
            ),
            "attachment_ids": list(self.attachment_ids),
        }
        if self.context == "reply":
            body["thread_id"] = self.thread_id
            body["in_reply_to"] = self.in_reply_to
        elif self.context == "forward":
            body["thread_id"] = self.thread_id
            body["original_message_id"] = self.original_message_id
        return body
