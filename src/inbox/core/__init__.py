"""Optimistic mutation overlay and delayed-commit core.

Modules:
    scheduler: Injected clock, timers and background remote calls
    overlay: Overlay store of field-level overrides
    feed: Last-known live feed snapshots
    ephemeral: Optimistic sent messages
    undo: Pending operation queue and undo coordinator
    batch: Batch operation executor
    chords: Chord detector for reply shortcuts
    projector: View projector
    remote: Failure policy of remote calls
"""

from __future__ import annotations

from src.inbox.core.batch import (
    BatchOp,
    BatchOperationExecutor,
    BatchResult,
    pick_neighbor,
)
from src.inbox.core.chords import (
    ChordCommand,
    ChordDetector,
    ChordState,
    Idle,
    KeyEvent,
    Pending,
)
from src.inbox.core.ephemeral import EphemeralMessages, OptimisticMessage
from src.inbox.core.feed import FeedCache
from src.inbox.core.overlay import (
    CategoryMove,
    OverlayEntry,
    OverlayPatch,
    OverlayStore,
    OverlayWrite,
)
from src.inbox.core.projector import ViewProjector
from src.inbox.core.remote import guarded_call
from src.inbox.core.scheduler import (
    AsyncioScheduler,
    BackgroundCalls,
    ManualScheduler,
    Scheduler,
    Timer,
)
from src.inbox.core.undo import (
    PendingOperation,
    PendingOperationKind,
    PendingStatus,
    UndoCoordinator,
    UndoHandle,
)

__all__ = [
    # Overlay
    "CategoryMove",
    "OverlayEntry",
    "OverlayPatch",
    "OverlayStore",
    "OverlayWrite",
    # Feed
    "FeedCache",
    "EphemeralMessages",
    "OptimisticMessage",
    # Undo
    "PendingOperation",
    "PendingOperationKind",
    "PendingStatus",
    "UndoCoordinator",
    "UndoHandle",
    # Batch
    "BatchOp",
    "BatchOperationExecutor",
    "BatchResult",
    "pick_neighbor",
    # Chords
    "ChordCommand",
    "ChordDetector",
    "ChordState",
    "Idle",
    "KeyEvent",
    "Pending",
    # Projection
    "ViewProjector",
    # Scheduling and remote calls
    "AsyncioScheduler",
    "BackgroundCalls",
    "ManualScheduler",
    "Scheduler",
    "Timer",
    "guarded_call",
]
