"""Optimistic sent messages shown in their thread while a send is pending.

These messages are synthesized locally from the compose payload and are not
part of the overlay store: they have no remote counterpart yet. Each one is
retracted as soon as any of the following happens:

- the thread's feed snapshot grows beyond the message count recorded when
  the optimistic message was added (the real message arrived)
- the safety timer expires
- the send is cancelled or fails
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.common.mailbox.models import ComposePayload, EffectiveEntity
from src.inbox.core.scheduler import Scheduler, Timer

logger = logging.getLogger(__name__)


@dataclass
class OptimisticMessage:
    """An optimistic message and the bookkeeping needed to retract it.

    Attributes:
        message: The synthesized message.
        thread_id: Thread the message is shown in.
        baseline_count: Feed message count of the thread at insertion.
        timer: Safety retraction timer.
    """

    message: EffectiveEntity
    thread_id: str
    baseline_count: int
    timer: Timer | None = None


class EphemeralMessages:
    """Registry of optimistic messages keyed by compose payload ID."""

    def __init__(self, scheduler: Scheduler, ttl: float = 60.0) -> None:
        """Initialize the registry.

        Args:
            scheduler: Scheduler for the safety timers.
            ttl: Seconds after which an optimistic message is retracted even
                if the feed never delivered the real one.
        """
        self._scheduler = scheduler
        self._ttl = ttl
        self._by_payload: dict[str, OptimisticMessage] = {}

    def add(
        self,
        payload: ComposePayload,
        baseline_count: int,
        category: str = "others",
    ) -> EffectiveEntity | None:
        """Show a payload as an optimistic message in its thread.

        Payloads without a thread (new messages) have nowhere to be shown
        and are ignored.

        Args:
            payload: The payload being sent.
            baseline_count: Current feed message count of the thread.
            category: Category of the thread.

        Returns:
            The synthesized message, or None if the payload has no thread.
        """
        if payload.thread_id is None:
            return None
        self.retract(payload.local_id)

        message = payload.to_optimistic_message(category)
        entry = OptimisticMessage(message, payload.thread_id, baseline_count)
        entry.timer = self._scheduler.call_later(
            self._ttl, lambda: self._expire(payload.local_id)
        )
        self._by_payload[payload.local_id] = entry
        logger.debug(
            "Optimistic message %s added to thread %s (baseline %d)",
            payload.local_id,
            payload.thread_id,
            baseline_count,
        )
        return message

    def retract(self, payload_id: str) -> bool:
        """Remove the optimistic message of a payload.

        Returns:
            True if a message was removed.
        """
        entry = self._by_payload.pop(payload_id, None)
        if entry is None:
            return False
        if entry.timer is not None:
            entry.timer.cancel()
        logger.debug("Optimistic message %s retracted", payload_id)
        return True

    def _expire(self, payload_id: str) -> None:
        if payload_id in self._by_payload:
            logger.info("Optimistic message %s expired without feed confirmation", payload_id)
            self.retract(payload_id)

    def on_thread_snapshot(self, thread_id: str, count: int) -> list[str]:
        """Retract optimistic messages the thread snapshot has caught up with.

        Args:
            thread_id: Thread whose snapshot was delivered.
            count: Number of messages in the new snapshot.

        Returns:
            Payload IDs whose messages were retracted.
        """
        retracted = [
            payload_id
            for payload_id, entry in self._by_payload.items()
            if entry.thread_id == thread_id and count > entry.baseline_count
        ]
        for payload_id in retracted:
            self.retract(payload_id)
        return retracted

    def clear(self) -> int:
        """Retract every optimistic message and cancel its safety timer.

        Returns:
            Number of messages retracted.
        """
        payload_ids = list(self._by_payload)
        for payload_id in payload_ids:
            self.retract(payload_id)
        return len(payload_ids)

    def for_thread(self, thread_id: str) -> list[EffectiveEntity]:
        """Return the optimistic messages of a thread in insertion order."""
        return [
            entry.message
            for entry in self._by_payload.values()
            if entry.thread_id == thread_id
        ]

    def __contains__(self, payload_id: object) -> bool:
        return payload_id in self._by_payload

    def __len__(self) -> int:
        return len(self._by_payload)
