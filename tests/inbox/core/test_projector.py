"""Tests for the view projector.

Tests cover:
- Unread counts folding read overrides over remote state
- Hidden entities (deleted, done, restored, moved)
- Moved entities showing up in their target category
- Thread contents with deleted and optimistic messages
"""

from __future__ import annotations

import pytest

from src.common.mailbox.models import ComposePayload, Entity
from src.inbox.core.ephemeral import EphemeralMessages
from src.inbox.core.feed import FeedCache
from src.inbox.core.overlay import OverlayStore
from src.inbox.core.projector import ViewProjector
from src.inbox.core.scheduler import ManualScheduler


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def feed() -> FeedCache:
    cache = FeedCache()
    cache.replace_view(
        "urgent",
        [
            Entity(id="T1", category="urgent", read=False),
            Entity(id="T2", category="urgent", read=True),
            Entity(id="T3", category="urgent", read=False),
        ],
    )
    cache.replace_view("others", [Entity(id="O1", category="others", read=False)])
    return cache


@pytest.fixture
def overlay() -> OverlayStore:
    return OverlayStore()


@pytest.fixture
def projector(feed: FeedCache, overlay: OverlayStore) -> ViewProjector:
    return ViewProjector(feed, overlay)


# =============================================================================
# Unread Count Tests
# =============================================================================


class TestUnreadCount:
    """Tests for ViewProjector.unread_count()."""

    def test_remote_state(self, projector: ViewProjector) -> None:
        assert projector.unread_count("urgent") == 2

    def test_read_override_applies_immediately(
        self, projector: ViewProjector, overlay: OverlayStore
    ) -> None:
        """Test that opening T1 lowers the count before any remote call."""
        overlay.apply("T1", read_override=True)

        assert projector.unread_count("urgent") == 1

    def test_unread_override(
        self, projector: ViewProjector, overlay: OverlayStore
    ) -> None:
        overlay.apply("T2", read_override=False)
        assert projector.unread_count("URGENT") == 3

    def test_hidden_entities_not_counted(
        self, projector: ViewProjector, overlay: OverlayStore
    ) -> None:
        """Test that deleted and done threads drop out of the count."""
        overlay.apply("T1", deleted=True)
        overlay.apply("T3", archived=True)

        assert projector.unread_count("urgent") == 0

    def test_unread_counts_per_category(self, projector: ViewProjector) -> None:
        counts = projector.unread_counts()

        assert counts["urgent"] == 2
        assert counts["others"] == 1
        assert counts["promises"] == 0
        assert set(counts) == {"urgent", "important", "promises", "awaiting", "others"}


# =============================================================================
# Visible List Tests
# =============================================================================


class TestVisibleList:
    """Tests for ViewProjector.visible_list()."""

    def test_feed_order(self, projector: ViewProjector) -> None:
        assert projector.visible_ids("urgent") == ["T1", "T2", "T3"]

    def test_deleted_hidden(
        self, projector: ViewProjector, overlay: OverlayStore
    ) -> None:
        overlay.apply("T2", deleted=True)
        assert projector.visible_ids("urgent") == ["T1", "T3"]

    def test_category_move(
        self, projector: ViewProjector, overlay: OverlayStore
    ) -> None:
        """Test that a moved thread leaves urgent and appears in others."""
        overlay.apply("T1", category_move={"from": "URGENT", "to": "OTHERS"})

        assert projector.visible_ids("urgent") == ["T2", "T3"]
        others = projector.visible_list("others")
        assert [e.id for e in others] == ["O1", "T1"]
        moved = others[1]
        assert moved.category == "others"
        assert moved.pending_category == "others"
        assert moved.has_overlay is True

    def test_moved_thread_not_duplicated(
        self, feed: FeedCache, projector: ViewProjector, overlay: OverlayStore
    ) -> None:
        """Test that a move the feed already reflects is listed once."""
        overlay.apply("T1", category_move={"from": "urgent", "to": "others"})
        feed.replace_view(
            "others",
            [Entity(id="O1", category="others"), Entity(id="T1", category="others")],
        )

        assert projector.visible_ids("others") == ["O1", "T1"]

    def test_done_view(
        self, feed: FeedCache, projector: ViewProjector, overlay: OverlayStore
    ) -> None:
        """Test that restoring a thread hides it from the done view."""
        feed.replace_view("done", [Entity(id="D1"), Entity(id="D2")])
        overlay.apply("D1", archived=False)

        assert projector.visible_ids("done") == ["D2"]

    def test_effective(self, projector: ViewProjector, overlay: OverlayStore) -> None:
        overlay.apply("T1", read_override=True)

        assert projector.effective("T1").read is True
        assert projector.effective("missing") is None


# =============================================================================
# Thread Tests
# =============================================================================


class TestThreadMessages:
    """Tests for ViewProjector.thread_messages()."""

    def test_deleted_and_optimistic_messages(self) -> None:
        """Test a thread with a deleted message and an optimistic reply."""
        feed = FeedCache()
        feed.replace_thread(
            "T1",
            [
                Entity(id="m1", kind="message", thread_id="T1"),
                Entity(id="m2", kind="message", thread_id="T1"),
            ],
        )
        message_overlay = OverlayStore("message")
        message_overlay.apply("m2", deleted=True)
        ephemeral = EphemeralMessages(ManualScheduler())
        payload = ComposePayload(context="reply", thread_id="T1", body_text="Thanks")
        ephemeral.add(payload, baseline_count=2)
        projector = ViewProjector(
            feed, OverlayStore(), message_overlay=message_overlay, ephemeral=ephemeral
        )

        messages = projector.thread_messages("T1")

        assert [m.id for m in messages] == ["m1", payload.local_id]
        assert messages[-1].optimistic is True
        assert projector.latest_message("T1").id == "m1"

    def test_message_read_override(self) -> None:
        feed = FeedCache()
        feed.replace_thread("T1", [Entity(id="m1", kind="message", read=False)])
        message_overlay = OverlayStore("message")
        message_overlay.apply("m1", read_override=True)
        projector = ViewProjector(feed, OverlayStore(), message_overlay=message_overlay)

        assert projector.effective("m1").read is True
        assert projector.thread_messages("T1")[0].read is True

    def test_unknown_thread(self, projector: ViewProjector) -> None:
        assert projector.thread_messages("nope") == []
        assert projector.latest_message("nope") is None
