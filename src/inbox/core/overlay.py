"""Overlay store for optimistic, field-level overrides of remote entities.

The remote live feed owns every entity. When the user acts on an entity,
the action's expected outcome is written here first so the UI can render it
immediately; the override is removed once the feed confirms the change (or
rolled back if the remote call fails and the action's policy says so).

Each override field is independent and last-write-wins:

- ``read_override``: local read/unread state
- ``archived``: local "done" (True) or "restored from done" (False)
- ``deleted``: local delete
- ``category_move``: local recategorization ``{from, to}``
- ``label_override``: local label set

Every write returns an ``OverlayWrite`` receipt recording the previous value
and the revision of each field it touched. Rolling back a receipt restores
only fields nobody has written since, so a later user action always wins
over the failure of an earlier one's remote call.

Classes:
    CategoryMove: A pending recategorization.
    OverlayPatch: A partial set of override fields to apply.
    OverlayEntry: The overrides currently held for one entity.
    OverlayWrite: Receipt of one apply/clear, used for rollback.
    OverlayStore: The per-entity-kind mapping from entity ID to overrides.

Example:
    >>> store = OverlayStore()
    >>> thread = Entity(id="t1", category="urgent", read=False)
    >>> write = store.apply("t1", read_override=True)
    >>> store.project(thread).read
    True
    >>> store.rollback(write)
    ['read_override']
    >>> store.project(thread).read
    False
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, fields, replace
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.common.mailbox.models import (
    ALL_CATEGORIES,
    EffectiveEntity,
    Entity,
    Label,
    normalize_category,
)

logger = logging.getLogger(__name__)

OverlayField = Literal[
    "read_override",
    "archived",
    "deleted",
    "category_move",
    "label_override",
]

OVERLAY_FIELDS: tuple[OverlayField, ...] = (
    "read_override",
    "archived",
    "deleted",
    "category_move",
    "label_override",
)

DONE_VIEW = "done"


# =============================================================================
# Override Values
# =============================================================================


class CategoryMove(BaseModel):
    """A recategorization the feed has not reflected yet.

    Accepts ``from``/``to`` as well as ``source``/``target``; both sides are
    normalized to lower-case category names.

    Attributes:
        source: Category the entity is moved out of.
        target: Category the entity is moved into.

    Example:
        >>> move = CategoryMove.model_validate({"from": "URGENT", "to": "OTHERS"})
        >>> (move.source, move.target)
        ('urgent', 'others')
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: str = Field(..., alias="from", description="Category moved out of")
    target: str = Field(..., alias="to", description="Category moved into")

    @field_validator("source", "target", mode="before")
    @classmethod
    def normalize(cls, v: Any) -> Any:
        """Accept category names in any case."""
        if isinstance(v, str):
            return normalize_category(v)
        return v


class OverlayPatch(BaseModel):
    """A partial set of override fields.

    Only fields explicitly given are applied. Giving a field as None clears
    that override.

    Example:
        >>> OverlayPatch(read_override=True).fields_set()
        ['read_override']
    """

    model_config = ConfigDict(frozen=True)

    read_override: bool | None = None
    archived: bool | None = None
    deleted: bool | None = None
    category_move: CategoryMove | None = None
    label_override: frozenset[Label] | None = None

    def fields_set(self) -> list[OverlayField]:
        """Return the explicitly given fields in canonical order."""
        return [name for name in OVERLAY_FIELDS if name in self.model_fields_set]


@dataclass
class OverlayEntry:
    """The overrides currently held for one entity.

    A field is None when no override is present for it.
    """

    read_override: bool | None = None
    archived: bool | None = None
    deleted: bool | None = None
    category_move: CategoryMove | None = None
    label_override: frozenset[Label] | None = None

    def is_empty(self) -> bool:
        """Return True if no override is present."""
        return all(getattr(self, f.name) is None for f in fields(self))

    def present_fields(self) -> list[OverlayField]:
        """Return the names of the fields that hold an override."""
        return [name for name in OVERLAY_FIELDS if getattr(self, name) is not None]


@dataclass(frozen=True)
class OverlayWrite:
    """Receipt of one overlay write.

    Attributes:
        entity_id: The entity written to.
        previous: Value of each touched field before the write.
        revisions: Revision each touched field got from this write.
    """

    entity_id: str
    previous: Mapping[str, Any] = field(default_factory=dict)
    revisions: Mapping[str, int] = field(default_factory=dict)

    @property
    def touched(self) -> list[str]:
        """Return the fields this write touched."""
        return list(self.revisions)


# =============================================================================
# Overlay Store
# =============================================================================


class OverlayStore:
    """Per-entity-kind mapping from entity ID to local overrides.

    The store is pure data: it performs no I/O and never schedules anything.
    It is written by the inbox coordinator and its components only; the
    rendering layer reads through ``project()`` and ``is_hidden()``.

    Attributes:
        kind: The entity kind this store shadows ("thread" or "message").
    """

    def __init__(self, kind: str = "thread") -> None:
        """Initialize an empty store.

        Args:
            kind: The entity kind this store shadows.
        """
        self.kind = kind
        self._entries: dict[str, OverlayEntry] = {}
        self._revisions: dict[tuple[str, str], int] = {}
        self._confirmed: set[tuple[str, str]] = set()
        self._counter = itertools.count(1)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def apply(
        self,
        entity_id: str,
        patch: OverlayPatch | None = None,
        **values: Any,
    ) -> OverlayWrite:
        """Merge a partial entry into the stored entry (last-write-wins).

        Args:
            entity_id: The entity to write to.
            patch: Fields to apply. Alternatively pass them as keywords.
            **values: Fields to apply when no patch is given.

        Returns:
            Receipt for rolling the write back.

        Example:
            >>> store = OverlayStore()
            >>> store.apply("t1", category_move={"from": "urgent", "to": "others"})
            ... # doctest: +ELLIPSIS
            OverlayWrite(entity_id='t1', ...)
        """
        if patch is None:
            patch = OverlayPatch(**values)
        names = patch.fields_set()

        entry = self._entries.get(entity_id) or OverlayEntry()
        previous: dict[str, Any] = {}
        revisions: dict[str, int] = {}
        for name in names:
            previous[name] = getattr(entry, name)
            setattr(entry, name, getattr(patch, name))
            revision = next(self._counter)
            self._revisions[(entity_id, name)] = revision
            self._confirmed.discard((entity_id, name))
            revisions[name] = revision

        self._store(entity_id, entry)
        if names:
            logger.debug("Overlay %s/%s <- %s", self.kind, entity_id, names)
        return OverlayWrite(entity_id, previous, revisions)

    def apply_many(
        self,
        entity_ids: Iterable[str],
        patch: OverlayPatch | None = None,
        **values: Any,
    ) -> list[OverlayWrite]:
        """Apply the same patch to several entities.

        Returns:
            One receipt per entity, in input order.
        """
        if patch is None:
            patch = OverlayPatch(**values)
        return [self.apply(entity_id, patch) for entity_id in entity_ids]

    def clear(
        self,
        entity_id: str,
        fields: Sequence[str] | None = None,
    ) -> OverlayWrite:
        """Remove named override fields of an entity.

        Clearing counts as a write: a pending rollback of an older write to
        the same field will not resurrect it.

        Args:
            entity_id: The entity to clear.
            fields: Fields to remove. None removes every field.

        Returns:
            Receipt for the clear.
        """
        entry = self._entries.get(entity_id)
        if entry is None:
            return OverlayWrite(entity_id)
        names = list(OVERLAY_FIELDS if fields is None else fields)
        present = [name for name in names if getattr(entry, name) is not None]
        return self.apply(entity_id, OverlayPatch(**{name: None for name in present}))

    def rollback(self, write: OverlayWrite) -> list[str]:
        """Restore the values a write replaced, where nobody wrote since.

        Args:
            write: Receipt returned by ``apply()`` or ``clear()``.

        Returns:
            Names of the fields that were restored.
        """
        entry = self._entries.get(write.entity_id) or OverlayEntry()
        restored: list[str] = []
        for name, revision in write.revisions.items():
            if self._revisions.get((write.entity_id, name)) != revision:
                continue
            setattr(entry, name, write.previous.get(name))
            self._revisions[(write.entity_id, name)] = next(self._counter)
            self._confirmed.discard((write.entity_id, name))
            restored.append(name)
        self._store(write.entity_id, entry)
        if restored:
            logger.debug(
                "Overlay %s/%s rolled back %s", self.kind, write.entity_id, restored
            )
        return restored

    def mark_confirmed(self, entity_id: str, fields: Iterable[str]) -> None:
        """Record that the remote call behind these fields succeeded.

        Confirmed ``deleted``/``archived`` overrides are dropped by
        ``reconcile()`` once the feed no longer shows the entity.
        """
        for name in fields:
            entry = self._entries.get(entity_id)
            if entry is not None and getattr(entry, name) is not None:
                self._confirmed.add((entity_id, name))

    def _store(self, entity_id: str, entry: OverlayEntry) -> None:
        if entry.is_empty():
            self._entries.pop(entity_id, None)
        else:
            self._entries[entity_id] = entry

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, entity_id: str) -> OverlayEntry | None:
        """Return a copy of the overrides held for an entity."""
        entry = self._entries.get(entity_id)
        return replace(entry) if entry is not None else None

    def is_confirmed(self, entity_id: str, field_name: str) -> bool:
        """Return whether an override's remote call has succeeded."""
        return (entity_id, field_name) in self._confirmed

    @property
    def entity_ids(self) -> list[str]:
        """Return the IDs of all entities with overrides."""
        return list(self._entries)

    def project(self, entity: Entity) -> EffectiveEntity:
        """Apply all present overrides onto a remote snapshot.

        Fields without an override pass the remote value through unchanged.

        Args:
            entity: The remote entity.

        Returns:
            The effective entity the UI renders.
        """
        entry = self._entries.get(entity.id)
        if entry is None:
            return EffectiveEntity.from_entity(entity)

        overrides: dict[str, Any] = {"has_overlay": True}
        if entry.read_override is not None:
            overrides["read"] = entry.read_override
        if entry.label_override is not None:
            overrides["labels"] = entry.label_override
        if entry.category_move is not None:
            overrides["category"] = entry.category_move.target
            overrides["pending_category"] = entry.category_move.target
        overrides["archived"] = bool(entry.archived)
        overrides["deleted"] = bool(entry.deleted)
        return EffectiveEntity.from_entity(entity, **overrides)

    def is_hidden(self, entity_id: str, view: str) -> bool:
        """Return whether an entity must be left out of a view's list.

        An entity is hidden everywhere once deleted; hidden from every view
        but "done" once archived; and hidden from "done" once restored. While
        a category move is outstanding it is shown only in the target
        category, never in the one it is being moved out of.

        Args:
            entity_id: The entity to check.
            view: Lower-case category or special view name.
        """
        entry = self._entries.get(entity_id)
        if entry is None:
            return False
        if entry.deleted:
            return True
        if entry.archived is True and view != DONE_VIEW:
            return True
        if entry.archived is False and view == DONE_VIEW:
            return True
        move = entry.category_move
        if move is not None and view in ALL_CATEGORIES:
            return move.source == view or move.target != view
        return False

    def moved_into(self, category: str) -> list[str]:
        """Return IDs of entities with an outstanding move into a category."""
        return [
            entity_id
            for entity_id, entry in self._entries.items()
            if entry.category_move is not None
            and entry.category_move.target == category
        ]

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile(self, snapshots: Mapping[str, Sequence[Entity]]) -> int:
        """Drop overrides the feed has caught up with.

        - ``read_override`` once the remote read state equals it
        - ``label_override`` once the remote label set equals it
        - ``category_move`` once the feed reports the target category
        - confirmed ``deleted``/``archived`` once the entity is gone from
          every cached view the override hides it from

        Args:
            snapshots: Last known entities per view.

        Returns:
            Number of override fields removed.
        """
        present_in: dict[str, set[str]] = {}
        latest: dict[str, Entity] = {}
        for view, entities in snapshots.items():
            for entity in entities:
                present_in.setdefault(entity.id, set()).add(view)
                latest[entity.id] = entity

        removed = 0
        for entity_id in list(self._entries):
            entry = self._entries[entity_id]
            agreed: list[str] = []
            entity = latest.get(entity_id)
            if entity is not None:
                if entry.read_override is not None and entry.read_override == entity.read:
                    agreed.append("read_override")
                if entry.label_override is not None and entry.label_override == entity.labels:
                    agreed.append("label_override")
                if (
                    entry.category_move is not None
                    and entry.category_move.target == entity.category
                ):
                    agreed.append("category_move")

            views = present_in.get(entity_id, set())
            if entry.deleted and self.is_confirmed(entity_id, "deleted") and not views:
                agreed.append("deleted")
            if entry.archived is not None and self.is_confirmed(entity_id, "archived"):
                if entry.archived and not (views - {DONE_VIEW}):
                    agreed.append("archived")
                elif not entry.archived and DONE_VIEW not in views:
                    agreed.append("archived")

            if agreed:
                self.clear(entity_id, agreed)
                removed += len(agreed)

        if removed:
            logger.debug("Reconciled %d %s override field(s)", removed, self.kind)
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entries

    def __repr__(self) -> str:
        return f"OverlayStore(kind={self.kind!r}, entries={len(self._entries)})"
