"""Chord detector for the thread view's reply shortcuts.

A small timed state machine turning key presses into composite commands:

- ``R`` then ``A`` within the chord window: reply-all, immediately
- ``R`` alone, once the window has passed: reply
- ``F`` without Ctrl/Cmd: forward, immediately

States::

    Idle --R--> Pending("r", deadline) --A--> Idle  (reply_all)
                        |            +--deadline--> Idle  (reply)
                        +--other key--> Idle

Key presses from editable fields, or while a modal is open, are ignored
entirely.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from src.inbox.core.scheduler import Scheduler, Timer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyEvent:
    """A key press as reported by the host UI.

    Attributes:
        key: Key name ("r", "Escape", "Delete", ...).
        ctrl: Ctrl held.
        meta: Cmd/Meta held.
        shift: Shift held.
        alt: Alt/Option held.
        from_editable: The event originates from an editable text field.
    """

    key: str
    ctrl: bool = False
    meta: bool = False
    shift: bool = False
    alt: bool = False
    from_editable: bool = False

    @property
    def normalized(self) -> str:
        """Return the key name lower-cased."""
        return self.key.lower()

    @property
    def command_modifier(self) -> bool:
        """Return whether Ctrl or Cmd is held."""
        return self.ctrl or self.meta


class ChordCommand(str, Enum):
    """Commands produced by the chord detector."""

    REPLY = "reply"
    REPLY_ALL = "reply_all"
    FORWARD = "forward"


@dataclass(frozen=True)
class Idle:
    """No key pending."""


@dataclass(frozen=True)
class Pending:
    """A chord prefix key is pending until ``deadline``."""

    key: str
    deadline: float
    timer: Timer | None = field(default=None, compare=False, repr=False)


ChordState = Idle | Pending

IDLE = Idle()


class ChordDetector:
    """Turns key presses into reply, reply-all and forward commands.

    Attributes:
        window: Chord window in seconds.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        on_command: Callable[[ChordCommand], None],
        window: float = 0.3,
    ) -> None:
        """Initialize the detector.

        Args:
            scheduler: Clock and timer source for the chord deadline.
            on_command: Called with every recognized command, including
                the deferred plain reply.
            window: Chord window in seconds.
        """
        self._scheduler = scheduler
        self._on_command = on_command
        self.window = window
        self._state: ChordState = IDLE

    @property
    def state(self) -> ChordState:
        return self._state

    def reset(self) -> None:
        """Drop any pending chord without triggering it."""
        if isinstance(self._state, Pending) and self._state.timer is not None:
            self._state.timer.cancel()
        self._state = IDLE

    def handle(self, event: KeyEvent, *, modal_open: bool = False) -> ChordCommand | None:
        """Process one key press.

        Args:
            event: The key press.
            modal_open: Whether a modal or compose surface is open.

        Returns:
            The command triggered immediately by this key, if any. The
            deferred plain reply is only delivered through ``on_command``,
            either by its timer or by the first key pressed after the
            deadline when the timer is running late.
        """
        if event.from_editable or modal_open:
            return None

        key = event.normalized
        if isinstance(self._state, Pending):
            pending = self._state
            self.reset()
            if self._scheduler.now() >= pending.deadline:
                # The deadline passed but its timer has not run yet.
                if pending.key == "r":
                    self._trigger(ChordCommand.REPLY)
            elif pending.key == "r" and key == "a" and not event.command_modifier:
                return self._trigger(ChordCommand.REPLY_ALL)

        if event.command_modifier or event.alt:
            return None
        if key == "r":
            deadline = self._scheduler.now() + self.window
            timer = self._scheduler.call_later(self.window, self._on_deadline)
            self._state = Pending("r", deadline, timer)
            return None
        if key == "f":
            return self._trigger(ChordCommand.FORWARD)
        return None

    def _on_deadline(self) -> None:
        if isinstance(self._state, Pending) and self._state.key == "r":
            self._state = IDLE
            self._trigger(ChordCommand.REPLY)

    def _trigger(self, command: ChordCommand) -> ChordCommand:
        logger.debug("Chord command %s", command.value)
        self._on_command(command)
        return command
