"""Save/backup/prune scheduling.

The scheduler owns the three schedule timestamps and decides, from
elapsed time and the dirty-document signal, which actions are due. It
never performs I/O and never advances a timestamp on its own: the caller
executes the actions and reports each success through
:meth:`SaveScheduler.record_success`. A failed action therefore stays due
and is attempted again on the next tick.

Within one tick the actions come out in a fixed order:

    Save  ->  Backup  ->  Prune

so the backup captures freshly saved documents and pruning never races
a backup that is still being written.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from autosave.backup.retention import RetentionPolicy
from autosave.core.actions import (
    ACTION_BACKUP,
    ACTION_PRUNE,
    ACTION_SAVE,
    Action,
    BackupAction,
    PruneAction,
    SaveAction,
)
from autosave.core.config import AutoSaveConfig

logger = logging.getLogger(__name__)


@dataclass
class ScheduleState:
    """Timestamps of the last successful save, backup and prune."""
    last_save_at: datetime
    last_backup_at: datetime
    last_prune_at: datetime

    @classmethod
    def fresh(cls, now: datetime) -> "ScheduleState":
        return cls(last_save_at=now, last_backup_at=now, last_prune_at=now)


class TickSubscription:
    """Handle returned by :meth:`SaveScheduler.enable`.

    Cancelling disables the scheduler; cancelling twice is a no-op.
    """

    def __init__(self, scheduler: "SaveScheduler"):
        self._scheduler = scheduler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active and self._scheduler.enabled

    def cancel(self):
        if not self._active:
            return
        self._active = False
        self._scheduler.disable()


class SaveScheduler:
    """Decides when save, backup and prune are due.

    Parameters
    ----------
    config:
        Current :class:`AutoSaveConfig`. Replace it with :attr:`config`
        when preferences change.
    state:
        Persistent :class:`ScheduleState`; mutated only by
        :meth:`record_success`.
    background_policy:
        Called with ``config.run_in_background`` whenever the scheduler is
        enabled, so the host can re-apply its background-run setting.
    """

    def __init__(
        self,
        config: AutoSaveConfig,
        state: ScheduleState,
        background_policy: Callable[[bool], None] | None = None,
    ):
        self.config = config
        self.state = state
        self._background_policy = background_policy
        self._enabled = False
        self._subscription: TickSubscription | None = None

    # ------------------------------------------------------------------
    # Enable / disable
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def retention(self) -> RetentionPolicy:
        return RetentionPolicy(self.config.retention_minutes)

    def enable(self) -> TickSubscription:
        """Arm ticking and re-apply the background-run policy."""
        if not self._enabled:
            self._enabled = True
            self._subscription = TickSubscription(self)
            logger.debug("Scheduler enabled")
        if self._background_policy is not None:
            self._background_policy(self.config.run_in_background)
        return self._subscription

    def disable(self):
        """Disarm ticking. Timestamps are kept as they are."""
        if not self._enabled:
            return
        self._enabled = False
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription._active = False
        logger.debug("Scheduler disabled")

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def save_due(self, now: datetime) -> bool:
        elapsed = now - self.state.last_save_at
        return elapsed >= timedelta(minutes=self.config.save_interval_minutes)

    def backup_due(self, now: datetime) -> bool:
        if not self.config.backup_enabled:
            return False
        elapsed = now - self.state.last_backup_at
        return elapsed >= timedelta(minutes=self.config.backup_interval_minutes)

    def tick(self, now: datetime, has_unsaved_changes: bool) -> list[Action]:
        """Return the actions due at ``now``.

        Pure with respect to scheduler state: calling it again with the
        same arguments returns the same actions until a success is
        recorded.
        """
        if not self._enabled:
            return []

        actions: list[Action] = []
        if has_unsaved_changes and self.save_due(now):
            actions.append(SaveAction(
                confirm=self.config.confirm_before_save,
                timeout_seconds=self.config.confirm_timeout_seconds,
            ))
        if self.backup_due(now):
            actions.append(BackupAction())
        return actions

    def plan_prune(self, now: datetime, backups) -> PruneAction | None:
        """Return the prune that follows a completed backup, if any."""
        if not self.config.retention_enabled:
            return None
        candidates = self.retention.select(backups, now)
        return PruneAction(candidates=frozenset(candidates))

    def on_mode_transition(self) -> list[Action]:
        """Forced, unconfirmed save when the host changes mode."""
        if not self._enabled or not self.config.save_on_transition:
            return []
        return [SaveAction(confirm=False, forced=True)]

    # ------------------------------------------------------------------
    # Completion reports
    # ------------------------------------------------------------------

    def record_success(self, action: Action, at: datetime):
        """Advance the timestamp matching ``action`` to ``at``."""
        if action.kind == ACTION_SAVE:
            self.state.last_save_at = at
        elif action.kind == ACTION_BACKUP:
            self.state.last_backup_at = at
        elif action.kind == ACTION_PRUNE:
            self.state.last_prune_at = at
        else:
            raise ValueError(f"Unknown action kind: {action.kind!r}")
