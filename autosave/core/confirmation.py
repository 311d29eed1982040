"""Cancellable countdown that precedes a confirmed save.

The window counts down ``duration_seconds`` on its own periodic callback
(:meth:`ConfirmationWindow.poll`). It ends in exactly one of three ways:

    EXPIRED    the countdown ran out with no input; ``on_expire`` fires
    CONFIRMED  the user chose "save now"; ``on_expire`` fires immediately
    CANCELLED  the user chose "skip"; ``on_cancel`` fires

Once ended, further input is ignored.
"""

import logging
from typing import Callable

from autosave.core.clock import ClockSource, SystemClock

logger = logging.getLogger(__name__)

PENDING = "PENDING"
EXPIRED = "EXPIRED"
CONFIRMED = "CONFIRMED"
CANCELLED = "CANCELLED"


class ConfirmationWindow:
    """A single countdown toward an automatic save."""

    def __init__(
        self,
        duration_seconds: float,
        on_expire: Callable[[], None],
        on_cancel: Callable[[], None] | None = None,
        clock: ClockSource | None = None,
    ):
        self.duration_seconds = max(0.0, float(duration_seconds))
        self._on_expire = on_expire
        self._on_cancel = on_cancel
        self._clock = clock or SystemClock()
        self._started_at = self._clock.monotonic()
        self.state = PENDING

    @property
    def pending(self) -> bool:
        return self.state == PENDING

    def remaining(self) -> float:
        """Seconds left before the automatic save."""
        if not self.pending:
            return 0.0
        elapsed = self._clock.monotonic() - self._started_at
        return max(0.0, self.duration_seconds - elapsed)

    def poll(self) -> str:
        """Advance the countdown; fires ``on_expire`` when it runs out."""
        if self.pending and self.remaining() <= 0:
            self.state = EXPIRED
            logger.debug("Confirmation window expired")
            self._on_expire()
        return self.state

    def save_now(self) -> bool:
        """Skip the rest of the countdown and save immediately."""
        if not self.pending:
            return False
        self.state = CONFIRMED
        self._on_expire()
        return True

    def cancel(self) -> bool:
        """Skip this save. Returns False when the window already ended."""
        if not self.pending:
            return False
        self.state = CANCELLED
        if self._on_cancel is not None:
            self._on_cancel()
        return True


def start_confirmation(
    duration_seconds: float,
    on_expire: Callable[[], None],
    on_cancel: Callable[[], None] | None = None,
    clock: ClockSource | None = None,
) -> ConfirmationWindow:
    """Open a confirmation window counting down from ``duration_seconds``."""
    return ConfirmationWindow(duration_seconds, on_expire, on_cancel, clock)
