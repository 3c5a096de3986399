"""Tests for the MailboxCoordinator.

Tests cover:
- Opening a thread marks it read before the remote call resolves
- Every action kind of handle_action() and its failure policy
- Detail view advance after removing the open thread
- Keyboard routing (selection keys, select-all, reply chords)
- Sending with undo, including payload restore on cancel
- Feed reconciliation and shutdown
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from src.common.api.protocol import RemoteCallError
from src.common.mailbox.config import InboxConfig
from src.common.mailbox.models import ComposePayload, Entity, Label
from src.common.mailbox.notifications import ErrorNotice, InfoNotice
from src.inbox.coordinator import (
    ActionKind,
    MailboxCoordinator,
    MissingActionParameterError,
    UnknownActionError,
)
from src.inbox.core.chords import KeyEvent
from src.inbox.core.scheduler import ManualScheduler


# =============================================================================
# Fixtures
# =============================================================================


WORK = Label(id="l1", name="Work")
ME = "me@example.com"


class FakeCompose:
    """Records what the coordinator hands to the compose editor."""

    def __init__(self) -> None:
        self.opened: list[ComposePayload] = []
        self.restored: list[ComposePayload] = []

    def open(self, draft: ComposePayload) -> None:
        self.opened.append(draft)

    def restore(self, payload: ComposePayload) -> None:
        self.restored.append(payload)


@pytest.fixture
def config() -> InboxConfig:
    return InboxConfig(
        delete_grace_window=3.0,
        send_undo_window=8.0,
        chord_window=0.3,
        max_notifications=20,
    )


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def api() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def compose() -> FakeCompose:
    return FakeCompose()


@pytest.fixture
def coordinator(
    api: AsyncMock,
    config: InboxConfig,
    scheduler: ManualScheduler,
    compose: FakeCompose,
) -> MailboxCoordinator:
    """Coordinator with three urgent threads T1 (unread), T2 (read), T3 (unread)."""
    coordinator = MailboxCoordinator(
        api,
        config=config,
        scheduler=scheduler,
        compose=compose,
        self_address=ME,
    )
    coordinator.ingest_view(
        "urgent",
        [
            Entity(id="T1", category="urgent", read=False, message_ids=("m1a", "m1b")),
            Entity(id="T2", category="urgent", read=True, message_ids=("m2",)),
            Entity(id="T3", category="urgent", read=False, message_ids=("m3",)),
        ],
    )
    coordinator.ingest_thread(
        "T1",
        [
            Entity(id="m1a", kind="message", thread_id="T1", read=True,
                   sender="bob@example.com", to=(ME,)),
            Entity(id="m1b", kind="message", thread_id="T1", read=False,
                   subject="Plan", sender="alice@example.com",
                   to=(ME, "bob@example.com")),
        ],
    )
    return coordinator


def errors(coordinator: MailboxCoordinator) -> list[ErrorNotice]:
    return [n for n in coordinator.notifications.history if isinstance(n, ErrorNotice)]


def infos(coordinator: MailboxCoordinator) -> list[InfoNotice]:
    return [n for n in coordinator.notifications.history if isinstance(n, InfoNotice)]


# =============================================================================
# Open Tests
# =============================================================================


class TestOpen:
    """Tests for opening a thread."""

    @pytest.mark.asyncio
    async def test_open_marks_read_immediately(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        """Test that the unread count drops before the remote call resolves."""
        assert coordinator.unread_count("urgent") == 2

        coordinator.handle_action(ActionKind.OPEN, ["T1"])

        assert coordinator.unread_count("urgent") == 1
        assert coordinator.open_thread_id == "T1"
        assert all(m.read for m in coordinator.thread_messages())
        api.mark_read.assert_not_awaited()

        await coordinator.drain()
        api.mark_read.assert_awaited_once_with(["m1a", "m1b"])

    @pytest.mark.asyncio
    async def test_open_failure_keeps_read_state(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        """Test that a failed mark-read is not rolled back."""
        api.mark_read.side_effect = RemoteCallError("mark_read", "down", 503)

        coordinator.handle_action("open", ["T1"])
        await coordinator.drain()

        assert coordinator.unread_count("urgent") == 1
        [error] = errors(coordinator)
        assert error.rolled_back is False

    def test_open_read_thread_makes_no_call(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        coordinator.open_thread("T2")

        assert coordinator.open_thread_id == "T2"
        api.mark_read.assert_not_called()

    @pytest.mark.asyncio
    async def test_next_and_previous(self, coordinator: MailboxCoordinator) -> None:
        """Test stepping through the visible list in the detail view."""
        coordinator.open_thread("T2")

        assert coordinator.next_thread() == "T3"
        assert coordinator.previous_thread() == "T2"
        assert coordinator.previous_thread() == "T1"
        assert coordinator.previous_thread() is None
        assert coordinator.open_thread_id == "T1"
        await coordinator.drain()


# =============================================================================
# Batch Action Tests
# =============================================================================


class TestBatchActions:
    """Tests for read, done and delete actions."""

    @pytest.mark.asyncio
    async def test_mark_done_advances_detail_view(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        """Test that removing the open thread opens the next one."""
        coordinator.open_thread("T2")

        coordinator.handle_action("mark_done", ["T2"])

        assert coordinator.visible_list("urgent")[1].id == "T3"
        assert coordinator.open_thread_id == "T3"
        assert coordinator.unread_count("urgent") == 1

        await coordinator.drain()
        api.mark_done.assert_awaited_once_with(["m2"])
        api.mark_read.assert_awaited_once_with(["m3"])

    @pytest.mark.asyncio
    async def test_removing_last_opens_previous(
        self, coordinator: MailboxCoordinator
    ) -> None:
        coordinator.open_thread("T2")
        coordinator.handle_action("mark_done", ["T3"])
        assert coordinator.open_thread_id == "T2"

        coordinator.handle_action("mark_done", ["T2"])
        assert coordinator.open_thread_id == "T1"
        await coordinator.drain()

    @pytest.mark.asyncio
    async def test_removing_everything_closes_detail_view(
        self, coordinator: MailboxCoordinator
    ) -> None:
        coordinator.open_thread("T2")

        coordinator.handle_action("delete", ["T1", "T2", "T3"])

        assert coordinator.open_thread_id is None
        assert coordinator.visible_list() == []

    @pytest.mark.asyncio
    async def test_delete_is_undoable(
        self,
        coordinator: MailboxCoordinator,
        api: AsyncMock,
        scheduler: ManualScheduler,
    ) -> None:
        """Test undoing a delete within the grace window."""
        result = coordinator.handle_action("delete", ["T1"])

        assert coordinator.unread_count("urgent") == 1
        assert result.handle.cancel() is True

        scheduler.advance(5)
        await coordinator.drain()
        api.delete.assert_not_called()
        assert [e.id for e in coordinator.visible_list("urgent")] == ["T1", "T2", "T3"]

    @pytest.mark.asyncio
    async def test_mark_done_failure_reverts(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        api.mark_done.side_effect = RemoteCallError("mark_done", "x", 500)

        coordinator.handle_action("mark_done", ["T1", "T3"])
        assert coordinator.visible_list("urgent")[0].id == "T2"
        await coordinator.drain()

        assert [e.id for e in coordinator.visible_list("urgent")] == ["T1", "T2", "T3"]

    @pytest.mark.asyncio
    async def test_batch_action_clears_selection(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        """Test one bulk call for the selection, then an empty selection."""
        coordinator.selection.add("T1")
        coordinator.selection.add("T3")

        result = coordinator.batch_action("mark_read")

        assert result.entity_ids == ["T1", "T3"]
        assert len(coordinator.selection) == 0
        assert coordinator.unread_count() == 0
        await coordinator.drain()
        api.mark_read.assert_awaited_once_with(["m1a", "m1b", "m3"])

    def test_empty_targets_noop(self, coordinator: MailboxCoordinator) -> None:
        result = coordinator.batch_action("delete")

        assert result.entity_ids == []
        assert coordinator.undo.pending == []


# =============================================================================
# Label / Category / Scheduled Tests
# =============================================================================


class TestOtherActions:
    """Tests for labels, recategorization and scheduled messages."""

    @pytest.mark.asyncio
    async def test_apply_label(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        coordinator.handle_action("apply_label", ["T1"], label=WORK)

        assert WORK in coordinator.visible_list()[0].labels
        await coordinator.drain()
        api.apply_label.assert_awaited_once_with("T1", WORK)

    @pytest.mark.asyncio
    async def test_apply_label_failure_rolls_back(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        api.apply_label.side_effect = RemoteCallError("apply_label", "x", 500)

        coordinator.handle_action("apply_label", ["T1"], label=WORK)
        await coordinator.drain()

        assert coordinator.visible_list()[0].labels == frozenset()
        assert errors(coordinator)[0].rolled_back is True

    def test_remove_absent_label_noop(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        """Test that removing a label the thread lacks makes no call."""
        coordinator.handle_action("remove_label", ["T1"], label=WORK)

        api.remove_label.assert_not_called()
        assert "T1" not in coordinator.overlay

    @pytest.mark.asyncio
    async def test_recategorize(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        """Test that a moved thread leaves its category and shows in the target."""
        result = coordinator.handle_action("recategorize", ["T1", "T2"], category="OTHERS")

        assert result.entity_ids == ["T1", "T2"]
        assert [e.id for e in coordinator.visible_list("urgent")] == ["T3"]
        assert [e.id for e in coordinator.visible_list("others")] == ["T1", "T2"]
        assert coordinator.unread_counts()["others"] == 1
        assert infos(coordinator)[0].message == "Moved to Others"

        await coordinator.drain()
        assert api.recategorize.await_count == 2
        api.recategorize.assert_any_await("T1", "others")

    def test_recategorize_same_category_skipped(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        result = coordinator.handle_action("recategorize", ["T1"], category="urgent")

        assert result.entity_ids == []
        assert infos(coordinator) == []

    @pytest.mark.asyncio
    async def test_cancel_scheduled(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        coordinator.ingest_view("scheduled", [Entity(id="S1"), Entity(id="S2")])
        coordinator.set_active_view("scheduled")

        coordinator.handle_action("cancel_scheduled", ["S1"])

        assert [e.id for e in coordinator.visible_list()] == ["S2"]
        await coordinator.drain()
        api.cancel_scheduled_send.assert_awaited_once_with("S1")
        assert coordinator.overlay.is_confirmed("S1", "deleted") is True
        assert infos(coordinator)[0].message == "Scheduled message cancelled"

    @pytest.mark.asyncio
    async def test_cancel_scheduled_failure_restores(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        coordinator.ingest_view("scheduled", [Entity(id="S1")])
        api.cancel_scheduled_send.side_effect = RemoteCallError("cancel", "x", 409)

        coordinator.handle_action("cancel_scheduled", ["S1"])
        await coordinator.drain()

        assert [e.id for e in coordinator.visible_list("scheduled")] == ["S1"]

    @pytest.mark.asyncio
    async def test_reschedule(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        when = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

        coordinator.handle_action("reschedule", ["S1"], send_at=when)
        await coordinator.drain()

        api.reschedule_send.assert_awaited_once_with("S1", when)


class TestActionErrors:
    """Tests for rejected actions."""

    def test_unknown_action(self, coordinator: MailboxCoordinator) -> None:
        with pytest.raises(UnknownActionError):
            coordinator.handle_action("snooze", ["T1"])

    def test_label_required(self, coordinator: MailboxCoordinator) -> None:
        with pytest.raises(MissingActionParameterError):
            coordinator.handle_action("apply_label", ["T1"])

    def test_category_required(self, coordinator: MailboxCoordinator) -> None:
        with pytest.raises(MissingActionParameterError):
            coordinator.handle_action("recategorize", ["T1"])

    def test_send_at_required(self, coordinator: MailboxCoordinator) -> None:
        with pytest.raises(MissingActionParameterError):
            coordinator.handle_action("reschedule", ["S1"])

    def test_unknown_category(self, coordinator: MailboxCoordinator) -> None:
        with pytest.raises(ValueError):
            coordinator.handle_action("recategorize", ["T1"], category="spam")


# =============================================================================
# Keyboard Tests
# =============================================================================


class TestKeyboard:
    """Tests for handle_key() routing."""

    def test_select_all(self, coordinator: MailboxCoordinator) -> None:
        assert coordinator.handle_key(KeyEvent("a", meta=True)) is True
        assert coordinator.selection.ids == ["T1", "T2", "T3"]

        assert coordinator.handle_key(KeyEvent("Escape")) is True
        assert len(coordinator.selection) == 0

    @pytest.mark.asyncio
    async def test_selection_key_runs_batch(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        coordinator.selection.add("T3")

        assert coordinator.handle_key(KeyEvent("d")) is True

        assert [e.id for e in coordinator.visible_list()] == ["T1", "T2"]
        assert len(coordinator.selection) == 0
        await coordinator.drain()
        api.mark_done.assert_awaited_once_with(["m3"])

    def test_editable_and_modal_ignored(self, coordinator: MailboxCoordinator) -> None:
        coordinator.selection.add("T3")

        assert coordinator.handle_key(KeyEvent("d", from_editable=True)) is False
        coordinator.set_modal_open("labels", True)
        assert coordinator.handle_key(KeyEvent("d")) is False
        assert "T3" in coordinator.selection

    def test_chords_need_open_thread(self, coordinator: MailboxCoordinator) -> None:
        assert coordinator.handle_key(KeyEvent("f")) is False

    @pytest.mark.asyncio
    async def test_reply_all_chord(
        self,
        coordinator: MailboxCoordinator,
        compose: FakeCompose,
        scheduler: ManualScheduler,
    ) -> None:
        """Test that R then A opens one reply-all draft."""
        coordinator.open_thread("T1")

        assert coordinator.handle_key(KeyEvent("r")) is True
        scheduler.advance(0.1)
        assert coordinator.handle_key(KeyEvent("a")) is True
        scheduler.advance(1)

        [draft] = compose.opened
        assert draft.reply_mode == "reply_all"
        assert draft.in_reply_to == "m1b"
        assert draft.to == ("alice@example.com", "bob@example.com")
        assert coordinator.modals.is_open is True
        await coordinator.drain()

    @pytest.mark.asyncio
    async def test_reply_chord(
        self,
        coordinator: MailboxCoordinator,
        compose: FakeCompose,
        scheduler: ManualScheduler,
    ) -> None:
        coordinator.open_thread("T1")

        coordinator.handle_key(KeyEvent("r"))
        scheduler.advance(0.3)

        [draft] = compose.opened
        assert draft.reply_mode == "reply"
        assert draft.to == ("alice@example.com",)
        assert draft.subject == "Re: Plan"
        await coordinator.drain()

    @pytest.mark.asyncio
    async def test_forward_then_keys_ignored(
        self, coordinator: MailboxCoordinator, compose: FakeCompose
    ) -> None:
        """Test that shortcuts stop once the compose modal is open."""
        coordinator.open_thread("T1")

        assert coordinator.handle_key(KeyEvent("f")) is True
        assert coordinator.handle_key(KeyEvent("f")) is False

        [draft] = compose.opened
        assert draft.context == "forward"
        await coordinator.drain()

    @pytest.mark.asyncio
    async def test_thread_change_resets_chord(
        self,
        coordinator: MailboxCoordinator,
        compose: FakeCompose,
        scheduler: ManualScheduler,
    ) -> None:
        coordinator.open_thread("T1")
        coordinator.handle_key(KeyEvent("r"))

        coordinator.open_thread("T2")
        scheduler.advance(1)

        assert compose.opened == []
        await coordinator.drain()


# =============================================================================
# Send Tests
# =============================================================================


class TestSend:
    """Tests for sending through the undo window."""

    @pytest.mark.asyncio
    async def test_send_shows_optimistic_message(
        self,
        coordinator: MailboxCoordinator,
        api: AsyncMock,
        scheduler: ManualScheduler,
    ) -> None:
        payload = ComposePayload(context="reply", thread_id="T1", to=("a@x.com",))
        coordinator.set_modal_open("compose", True)

        coordinator.send(payload)

        assert coordinator.modals.is_open is False
        messages = coordinator.thread_messages("T1")
        assert messages[-1].id == payload.local_id
        assert messages[-1].category == "urgent"

        scheduler.advance(8.0)
        await coordinator.drain()
        api.send_message.assert_awaited_once_with(payload)

    @pytest.mark.asyncio
    async def test_cancel_restores_compose(
        self, coordinator: MailboxCoordinator, compose: FakeCompose, api: AsyncMock
    ) -> None:
        """Test that undoing a send reopens the editor with the payload."""
        payload = ComposePayload(context="reply", thread_id="T1", body_text="Hi")

        handle = coordinator.send(payload)
        handle.cancel()

        assert compose.restored == [payload]
        assert coordinator.modals.is_open is True
        assert len(coordinator.thread_messages("T1")) == 2
        await coordinator.drain()
        api.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_delivery_retracts_optimistic_message(
        self, coordinator: MailboxCoordinator, scheduler: ManualScheduler
    ) -> None:
        payload = ComposePayload(context="reply", thread_id="T1", body_text="Hi")
        coordinator.send(payload)
        scheduler.advance(8.0)
        await coordinator.drain()

        coordinator.ingest_thread(
            "T1",
            [
                Entity(id="m1a", kind="message", thread_id="T1"),
                Entity(id="m1b", kind="message", thread_id="T1"),
                Entity(id="m1c", kind="message", thread_id="T1"),
            ],
        )

        assert [m.id for m in coordinator.thread_messages("T1")] == ["m1a", "m1b", "m1c"]


# =============================================================================
# Reconciliation & Lifecycle Tests
# =============================================================================


class TestReconcileAndShutdown:
    """Tests for feed reconciliation and shutdown."""

    @pytest.mark.asyncio
    async def test_feed_catches_up_with_read(
        self, coordinator: MailboxCoordinator
    ) -> None:
        coordinator.handle_action("mark_read", ["T1"])
        await coordinator.drain()

        coordinator.ingest_view(
            "urgent",
            [Entity(id="T1", category="urgent", read=True, message_ids=("m1a", "m1b"))],
        )

        assert "T1" not in coordinator.overlay

    @pytest.mark.asyncio
    async def test_confirmed_delete_dropped_when_gone(
        self, coordinator: MailboxCoordinator, scheduler: ManualScheduler
    ) -> None:
        coordinator.handle_action("delete", ["T1"])
        scheduler.advance(3.0)
        await coordinator.drain()
        assert "T1" in coordinator.overlay

        coordinator.ingest_view("urgent", [Entity(id="T2", category="urgent")])

        assert "T1" not in coordinator.overlay

    @pytest.mark.asyncio
    async def test_shutdown_commits_pending(
        self, coordinator: MailboxCoordinator, api: AsyncMock
    ) -> None:
        """Test that pending deletes are committed on shutdown."""
        coordinator.handle_action("delete", ["T2"])

        await coordinator.shutdown()

        api.delete.assert_awaited_once_with(["m2"])
        assert coordinator.undo.pending == []

    @pytest.mark.asyncio
    async def test_shutdown_leaves_no_timers(
        self,
        coordinator: MailboxCoordinator,
        api: AsyncMock,
        scheduler: ManualScheduler,
    ) -> None:
        """Test that shutdown sends pending messages and cancels every timer."""
        payload = ComposePayload(context="reply", thread_id="T1", body_text="Hi")
        coordinator.send(payload)
        coordinator.handle_action("delete", ["T3"])
        coordinator.open_thread("T2")
        coordinator.handle_key(KeyEvent("r"))

        await coordinator.shutdown()

        api.send_message.assert_awaited_once_with(payload)
        assert len(coordinator.ephemeral) == 0
        assert len(coordinator.undo) == 0
        assert scheduler.pending_count == 0

    @pytest.mark.asyncio
    async def test_async_context_shuts_down(
        self, api: AsyncMock, config: InboxConfig, scheduler: ManualScheduler
    ) -> None:
        coordinator = MailboxCoordinator.from_config(config, api=api, scheduler=scheduler)
        coordinator.ingest_view("urgent", [Entity(id="T9", message_ids=("m9",))])

        async with coordinator:
            coordinator.handle_action("delete", ["T9"])

        api.delete.assert_awaited_once_with(["m9"])

    def test_switching_view_clears_selection(
        self, coordinator: MailboxCoordinator
    ) -> None:
        coordinator.selection.add("T1")

        coordinator.set_active_view("Others")

        assert coordinator.active_view == "others"
        assert len(coordinator.selection) == 0
