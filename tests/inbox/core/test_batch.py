"""Tests for the batch operation executor.

Tests cover:
- Synchronous overlay writes and a single bulk call per batch
- Entity-to-message expansion
- Failure policy per operation (kept, rolled back, undoable)
- Selection clearing and empty selections
- Neighbor selection for the detail view
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.common.api.protocol import RemoteCallError
from src.common.mailbox.notifications import ErrorNotice, NotificationCenter
from src.inbox.core.batch import BatchOp, BatchOperationExecutor, pick_neighbor
from src.inbox.core.overlay import OverlayStore
from src.inbox.core.scheduler import ManualScheduler
from src.inbox.core.undo import UndoCoordinator
from src.inbox.selection import SelectionSet


# =============================================================================
# Fixtures
# =============================================================================


MEMBERS = {"A": ["a1", "a2"], "B": ["b1"]}


class Harness:
    """A batch executor wired to fakes."""

    def __init__(self) -> None:
        self.scheduler = ManualScheduler()
        self.api = AsyncMock()
        self.overlay = OverlayStore()
        self.notifications = NotificationCenter(max_notifications=10)
        self.undo = UndoCoordinator(
            self.overlay, self.api, self.scheduler, self.notifications
        )
        self.executor = BatchOperationExecutor(
            self.overlay,
            self.api,
            self.undo,
            self.notifications,
            resolve_message_ids=lambda ids: [m for i in ids for m in MEMBERS.get(i, [i])],
        )

    async def drain(self) -> None:
        await self.executor.background.drain()

    def errors(self) -> list[ErrorNotice]:
        return [n for n in self.notifications.history if isinstance(n, ErrorNotice)]


@pytest.fixture
def harness() -> Harness:
    return Harness()


# =============================================================================
# Apply Tests
# =============================================================================


class TestApply:
    """Tests for BatchOperationExecutor.apply()."""

    @pytest.mark.asyncio
    async def test_mark_read_single_bulk_call(self, harness: Harness) -> None:
        """Test one bulk call for all expanded message IDs."""
        harness.executor.apply(BatchOp.MARK_READ, ["A", "B"])

        entry = harness.overlay.get("A")
        assert entry is not None and entry.read_override is True

        await harness.drain()
        harness.api.mark_read.assert_awaited_once_with(["a1", "a2", "b1"])

    @pytest.mark.asyncio
    async def test_mark_unread_failure_not_rolled_back(self, harness: Harness) -> None:
        """Test that mark-unread keeps its optimistic state on failure."""
        harness.api.mark_unread.side_effect = RemoteCallError("mark_unread", "x", 500)

        harness.executor.apply(BatchOp.MARK_UNREAD, ["A"])
        await harness.drain()

        entry = harness.overlay.get("A")
        assert entry is not None and entry.read_override is False
        [error] = harness.errors()
        assert error.rolled_back is False

    @pytest.mark.asyncio
    async def test_mark_done_hides_immediately(self, harness: Harness) -> None:
        """Test that done entities leave the inbox before the call resolves."""
        result = harness.executor.apply(BatchOp.MARK_DONE, ["A", "B"])

        assert harness.overlay.is_hidden("A", "urgent") is True
        assert harness.overlay.is_hidden("B", "urgent") is True
        assert result.removed_ids == ["A", "B"]

        await harness.drain()
        harness.api.mark_done.assert_awaited_once_with(["a1", "a2", "b1"])
        assert harness.overlay.is_confirmed("A", "archived") is True

    @pytest.mark.asyncio
    async def test_mark_done_failure_rolls_back_whole_batch(
        self, harness: Harness
    ) -> None:
        """Test all-or-nothing revert of a failed mark-done."""
        harness.api.mark_done.side_effect = RemoteCallError("mark_done", "x", 500)

        harness.executor.apply(BatchOp.MARK_DONE, ["A", "B"])
        await harness.drain()

        assert harness.overlay.get("A") is None
        assert harness.overlay.get("B") is None
        [error] = harness.errors()
        assert error.rolled_back is True
        assert error.entity_ids == ("A", "B")

    @pytest.mark.asyncio
    async def test_rollback_keeps_prior_overlay_state(self, harness: Harness) -> None:
        """Test that rollback restores the pre-action state, not a blank one."""
        harness.overlay.apply("A", read_override=True)
        harness.api.mark_done.side_effect = RemoteCallError("mark_done")

        harness.executor.apply(BatchOp.MARK_DONE, ["A"])
        await harness.drain()

        entry = harness.overlay.get("A")
        assert entry is not None
        assert entry.archived is None
        assert entry.read_override is True

    @pytest.mark.asyncio
    async def test_mark_undone(self, harness: Harness) -> None:
        """Test restoring entities from the done view."""
        harness.executor.apply(BatchOp.MARK_UNDONE, ["A"])

        assert harness.overlay.is_hidden("A", "done") is True
        await harness.drain()
        harness.api.mark_undone.assert_awaited_once_with(["a1", "a2"])

    @pytest.mark.asyncio
    async def test_delete_goes_through_undo(self, harness: Harness) -> None:
        """Test that batch delete is undoable."""
        result = harness.executor.apply(BatchOp.DELETE, ["A", "B"])

        assert result.handle is not None
        assert harness.overlay.is_hidden("A", "urgent") is True
        result.handle.cancel()

        harness.scheduler.advance(5)
        await harness.drain()
        harness.api.delete.assert_not_called()
        assert len(harness.overlay) == 0

    @pytest.mark.asyncio
    async def test_delete_commit_uses_message_ids(self, harness: Harness) -> None:
        harness.executor.apply(BatchOp.DELETE, ["A"])

        harness.scheduler.advance(3.0)
        await harness.drain()
        harness.api.delete.assert_awaited_once_with(["a1", "a2"])

    def test_empty_is_noop(self, harness: Harness) -> None:
        """Test that an empty target set does nothing."""
        result = harness.executor.apply(BatchOp.MARK_DONE, [])

        assert result.entity_ids == []
        assert len(harness.overlay) == 0


class TestApplyToSelection:
    """Tests for BatchOperationExecutor.apply_to_selection()."""

    @pytest.mark.asyncio
    async def test_selection_cleared(self, harness: Harness) -> None:
        """Test that the selection is cleared after the batch."""
        selection = SelectionSet(["A", "B"])

        result = harness.executor.apply_to_selection(BatchOp.MARK_READ, selection)

        assert result.entity_ids == ["A", "B"]
        assert len(selection) == 0
        await harness.drain()

    def test_empty_selection_noop(self, harness: Harness) -> None:
        """Test that acting on an empty selection is a no-op."""
        result = harness.executor.apply_to_selection(BatchOp.DELETE, SelectionSet())

        assert result.handle is None
        assert harness.undo.pending == []


# =============================================================================
# Neighbor Tests
# =============================================================================


class TestPickNeighbor:
    """Tests for detail view advance."""

    def test_prefers_next(self) -> None:
        assert pick_neighbor(["a", "b", "c"], "b", ["b"]) == "c"

    def test_skips_removed(self) -> None:
        """Test that entities removed by the same action are skipped."""
        assert pick_neighbor(["a", "b", "c", "d"], "b", ["b", "c"]) == "d"

    def test_falls_back_to_previous(self) -> None:
        assert pick_neighbor(["a", "b", "c"], "c", ["c"]) == "b"

    def test_previous_skips_removed(self) -> None:
        assert pick_neighbor(["a", "b", "c"], "c", ["b", "c"]) == "a"

    def test_nothing_left(self) -> None:
        assert pick_neighbor(["a", "b"], "a", ["a", "b"]) is None

    def test_current_not_listed(self) -> None:
        """Test that an unlisted entity advances to the first remaining one."""
        assert pick_neighbor(["a", "b"], "x", ["a"]) == "b"
