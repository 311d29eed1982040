"""Autosave orchestration.

:class:`AutoSaveService` is what a host talks to. It loads preferences,
owns the :class:`SaveScheduler`, runs the actions the scheduler hands out
through an :class:`ActionExecutor` and writes the schedule timestamps
back after every success.

Confirmation: when ``confirm_before_save`` is on, a due save opens a
:class:`ConfirmationWindow` instead of saving. The window counts down on
every tick (or :meth:`poll_confirmation`); the operator can fast-forward
it with :meth:`confirm_save_now` or skip the save with :meth:`skip_save`.
A skipped save leaves ``last_save_at`` untouched, so the next tick offers
the confirmation again.

Failures: no exception escapes :meth:`tick`. A failed action is logged,
surfaced as a one-line status message, and retried on the next tick
because its timestamp was not advanced.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime

from autosave.backup.executor import ActionExecutor
from autosave.backup.naming import backup_name
from autosave.backup.retention import BackupFile
from autosave.core.actions import (
    ACTION_BACKUP,
    ACTION_PRUNE,
    ACTION_SAVE,
    BackupAction,
    SaveAction,
)
from autosave.core.clock import ClockSource, SystemClock
from autosave.core.config import AutoSaveConfig
from autosave.core.confirmation import ConfirmationWindow, start_confirmation
from autosave.core.errors import ActionIOError, ConfigError
from autosave.core.scheduler import SaveScheduler
from autosave.core.settings import DEFAULT_BACKUP_FOLDER, SLOW_ACTION_SECONDS
from autosave.monitor.host_probe import HostActivityProbe
from autosave.service.notifier import StatusNotifier
from autosave.storage.preferences import (
    PreferenceStore,
    load_config,
    load_schedule_state,
    resolve_backup_directory,
    save_config,
    save_schedule_state,
    validate_backup_directory,
)

logger = logging.getLogger(__name__)

SKIP_BUSY = "busy"
SKIP_DISABLED = "disabled"
SKIP_BACKGROUND = "background"


@dataclass
class TickReport:
    """Record of what one tick decided and did."""
    timestamp: str
    planned: list[str] = field(default_factory=list)
    executed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    confirmation_pending: bool = False
    skipped: str | None = None


class AutoSaveService:
    """Periodic save, backup and prune for a host's open documents.

    Parameters
    ----------
    store:
        Preference store holding settings and schedule timestamps.
    executor:
        Performs the actual save/copy/delete work.
    project_root:
        Folder the backup directory must stay inside.
    clock:
        Time source; defaults to the system clock.
    notifier:
        Receives one-line status messages.
    host_probe:
        Tells whether the host is active for the background-run policy.
    events:
        Optional ``callable(event_type, data)`` receiving activity events.
    """

    def __init__(
        self,
        store: PreferenceStore,
        executor: ActionExecutor,
        project_root: str,
        clock: ClockSource | None = None,
        notifier: StatusNotifier | None = None,
        host_probe: HostActivityProbe | None = None,
        events=None,
        slow_action_seconds: float = SLOW_ACTION_SECONDS,
    ):
        self.store = store
        self.executor = executor
        self.project_root = project_root
        self.clock = clock or SystemClock()
        self.notifier = notifier or StatusNotifier()
        self.host_probe = host_probe or HostActivityProbe()
        self.events = events
        self.slow_action_seconds = slow_action_seconds

        self.config = self._load_config()
        state = load_schedule_state(store, self.clock.now())
        self.scheduler = SaveScheduler(
            self.config, state, background_policy=self._apply_background_policy,
        )

        self._tick_lock = threading.Lock()
        self._confirmation: ConfirmationWindow | None = None
        # Outcome of the save fired by the last closed countdown
        self._confirmed_save: bool | None = None
        self._subscription = None

        if self.config.autosave_enabled:
            self._enable()
        logger.info("[AutoSave] %s", self.info().replace("\n", " "))

    def _load_config(self) -> AutoSaveConfig:
        config = load_config(self.store)
        try:
            validate_backup_directory(config.backup_directory, self.project_root)
        except ConfigError as exc:
            logger.warning("Stored backup folder %r rejected (%s), using %s",
                           config.backup_directory, exc, DEFAULT_BACKUP_FOLDER)
            config = config.updated(backup_directory=DEFAULT_BACKUP_FOLDER)
        return config

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self.scheduler.enabled

    @property
    def state(self):
        return self.scheduler.state

    @property
    def backup_directory(self) -> str:
        return resolve_backup_directory(self.config.backup_directory, self.project_root)

    @property
    def confirmation(self) -> ConfirmationWindow | None:
        if self._confirmation is not None and self._confirmation.pending:
            return self._confirmation
        return None

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def tick(self, has_unsaved_changes: bool, now: datetime | None = None) -> TickReport:
        """Run every action due at ``now``. Never raises."""
        now = now or self.clock.now()
        report = TickReport(timestamp=now.isoformat())

        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Tick at %s skipped: previous tick still running", report.timestamp)
            report.skipped = SKIP_BUSY
            return report

        try:
            self._record_save(self._poll_confirmation(), report)

            if not self.scheduler.enabled:
                report.skipped = SKIP_DISABLED
                return report

            if not self.config.run_in_background and not self.host_probe.is_active():
                report.skipped = SKIP_BACKGROUND
                return report

            actions = self.scheduler.tick(now, has_unsaved_changes)
            report.planned = [a.kind for a in actions]

            for action in actions:
                if action.kind == ACTION_SAVE:
                    self._handle_save(action, now, report)
                elif action.kind == ACTION_BACKUP:
                    if self._run_backup(action, now, report):
                        self._run_prune(now, report)
        except Exception:
            logger.exception("Unexpected error during autosave tick")
            report.failed["tick"] = "unexpected error"
        finally:
            self._tick_lock.release()

        return report

    def on_mode_transition(self) -> bool:
        """Save immediately, bypassing interval and confirmation.

        Returns True when a save ran and succeeded.
        """
        with self._tick_lock:
            actions = self.scheduler.on_mode_transition()
            saved = False
            for action in actions:
                saved = self._execute_save(action) or saved
            if saved and self.confirmation is not None:
                self._confirmation.cancel()
                self._confirmation = None
            return saved

    # ------------------------------------------------------------------
    # Save and confirmation
    # ------------------------------------------------------------------

    def _handle_save(self, action: SaveAction, now: datetime, report: TickReport):
        if not action.confirm:
            self._record_save(self._execute_save(action, now), report)
            return

        if self.confirmation is None:
            self._open_confirmation(action)
            self._record_save(self._poll_confirmation(), report)
        report.confirmation_pending = self.confirmation is not None

    def _open_confirmation(self, action: SaveAction):
        def on_expire():
            saved = self._execute_save(action)
            self._confirmed_save = saved
            self._emit("confirmation_closed", {"outcome": "saved" if saved else "failed"})

        def on_cancel():
            self.notifier.info("AutoSave skipped.")
            self._emit("confirmation_closed", {"outcome": "skipped"})

        self._confirmation = start_confirmation(
            action.timeout_seconds, on_expire, on_cancel, clock=self.clock,
        )
        self._emit("confirmation_started", {"timeout_seconds": action.timeout_seconds})
        self._log_activity("AutoSave in %d seconds unless skipped.", action.timeout_seconds)

    def _poll_confirmation(self) -> bool | None:
        """Advance the countdown.

        Returns the outcome of the save when the countdown ran out during
        this poll, None otherwise.
        """
        if self._confirmation is None:
            return None
        self._confirmed_save = None
        self._confirmation.poll()
        if self._confirmation.pending:
            return None
        self._confirmation = None
        return self._confirmed_save

    def _record_save(self, saved: bool | None, report: TickReport):
        if saved is None:
            return
        if saved:
            report.executed.append(ACTION_SAVE)
        else:
            report.failed[ACTION_SAVE] = self._last_failure()

    def poll_confirmation(self) -> float | None:
        """Advance a pending countdown. Returns the seconds left, or None."""
        with self._tick_lock:
            self._poll_confirmation()
            pending = self.confirmation
            return pending.remaining() if pending is not None else None

    def confirm_save_now(self) -> bool | None:
        """Fast-forward the pending confirmation.

        Returns whether the save succeeded, or None when no countdown is
        pending.
        """
        with self._tick_lock:
            pending = self.confirmation
            if pending is None:
                return None
            self._confirmed_save = None
            pending.save_now()
            self._confirmation = None
            return bool(self._confirmed_save)

    def skip_save(self) -> bool:
        """Cancel the pending confirmation. Cancelling twice is a no-op."""
        with self._tick_lock:
            pending = self.confirmation
            if pending is None:
                return False
            pending.cancel()
            self._confirmation = None
            return True

    def _execute_save(self, action: SaveAction, now: datetime | None = None) -> bool:
        ok, _ = self._attempt("Save", self.executor.save_all)
        if not ok:
            return False
        at = now or self.clock.now()
        self.scheduler.record_success(action, at)
        self._persist_state()
        self._log_activity("AutoSaved scenes. %s", at.isoformat(sep=" ", timespec="seconds"))
        self._emit("saved", {"at": at.isoformat(), "forced": action.forced})
        return True

    # ------------------------------------------------------------------
    # Backup and prune
    # ------------------------------------------------------------------

    def _run_backup(self, action: BackupAction, now: datetime, report: TickReport) -> bool:
        directory = self.backup_directory

        def namer(name: str) -> str:
            return backup_name(name, now)

        ok, written = self._attempt(
            "Backup", self.executor.copy_current_documents_to, directory, namer,
        )
        if not ok:
            report.failed[ACTION_BACKUP] = written
            return False

        self.scheduler.record_success(action, now)
        self._persist_state()
        report.executed.append(ACTION_BACKUP)
        self._log_activity("Scene backups saved in %s (%d file(s)).", directory, len(written))
        self._emit("backup", {"directory": directory, "files": written})
        return True

    def _run_prune(self, now: datetime, report: TickReport):
        if not self.config.retention_enabled:
            return

        ok, backups = self._attempt("Backup listing", self.executor.list_backups,
                                    self.backup_directory)
        if not ok:
            report.failed[ACTION_PRUNE] = backups
            return

        action = self.scheduler.plan_prune(now, backups)
        if action is None:
            return
        report.planned.append(ACTION_PRUNE)

        paths = {b.path for b in action.candidates}
        ok, result = self._attempt("Prune", self.executor.delete_files, paths)
        if not ok:
            report.failed[ACTION_PRUNE] = result
            return

        if result.failed:
            self.notifier.warning(
                f"{len(result.failed)} old backup(s) could not be deleted."
            )
        self.scheduler.record_success(action, now)
        self._persist_state()
        report.executed.append(ACTION_PRUNE)
        self._log_activity("Deleted %d old scene backup(s).", len(result.deleted))
        self._emit("pruned", {"deleted": result.deleted, "failed": result.failed})

    # ------------------------------------------------------------------
    # Enable / disable / configuration
    # ------------------------------------------------------------------

    def _enable(self):
        self._attempt("Backup folder creation", self.executor.ensure_directory_exists,
                      self.backup_directory)
        self._subscription = self.scheduler.enable()

    def _disable(self):
        if self.confirmation is not None:
            self._confirmation.cancel()
        self._confirmation = None
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self.scheduler.disable()

    def _apply_background_policy(self, enabled: bool):
        self.host_probe.apply_background_policy(enabled)

    def enable(self) -> str:
        """Turn autosaving on. Elapsed-time accounting resumes where it stopped."""
        with self._tick_lock:
            if not self.scheduler.enabled:
                self._enable()
            self._store_config(self.config.updated(autosave_enabled=True))
        return self.info()

    def disable(self) -> str:
        """Turn autosaving off without touching the schedule timestamps."""
        with self._tick_lock:
            self._disable()
            self._store_config(self.config.updated(autosave_enabled=False))
        return self.info()

    def update_config(self, **changes) -> AutoSaveConfig:
        """Validate and apply setting changes.

        Raises ConfigError and keeps the current settings when any value
        is rejected.
        """
        with self._tick_lock:
            try:
                if "backup_directory" in changes:
                    changes["backup_directory"] = validate_backup_directory(
                        changes["backup_directory"], self.project_root,
                    )
                new = self.config.updated(**changes)
            except ConfigError as exc:
                self.notifier.error(str(exc))
                raise

            old = self.config
            self._store_config(new)

            if new.autosave_enabled and not old.autosave_enabled:
                self._enable()
            elif old.autosave_enabled and not new.autosave_enabled:
                self._disable()
            elif new.run_in_background != old.run_in_background:
                self._apply_background_policy(new.run_in_background)

            if new.backup_directory != old.backup_directory and new.autosave_enabled:
                self._attempt("Backup folder creation",
                              self.executor.ensure_directory_exists, self.backup_directory)

        self.notifier.info(self.info().splitlines()[0], log=False)
        self._emit("config_updated", new.to_dict())
        return new

    def _store_config(self, config: AutoSaveConfig):
        save_config(self.store, config)
        self.config = config
        self.scheduler.config = config

    # ------------------------------------------------------------------
    # Backup folder maintenance
    # ------------------------------------------------------------------

    def list_backups(self) -> list[BackupFile]:
        ok, backups = self._attempt("Backup listing", self.executor.list_backups,
                                    self.backup_directory)
        return backups if ok else []

    def clean_backup_folder(self) -> str:
        """Delete every backup. Returns the outcome message."""
        with self._tick_lock:
            ok, _ = self._attempt("Backup folder cleanup", self.executor.clean_directory,
                                  self.backup_directory)
        if ok:
            message = "Backup folder cleaned up successfully."
            self.notifier.info(message)
            self._emit("cleaned", {"directory": self.backup_directory})
        else:
            message = "Impossible to clean up backup folder."
        return message

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def info(self) -> str:
        """Multi-line summary of the current settings."""
        cfg = self.config
        if not cfg.autosave_enabled:
            return "AutoSave disabled.\n"

        lines = []
        if cfg.save_on_transition:
            lines.append("AutoSave enabled. Saves scenes on mode change.")
        else:
            lines.append("AutoSave enabled. Doesn't save scenes on mode change.")
        lines.append(f"AutoSave interval: {cfg.save_interval_minutes} minutes.")
        if cfg.backup_enabled:
            lines.append(f"AutoBackup interval: {cfg.backup_interval_minutes} minutes.")
        else:
            lines.append("AutoBackup disabled.")
        if cfg.retention_enabled:
            lines.append(f"Backups will be deleted after {cfg.retention_minutes} minutes.")
        else:
            lines.append("Auto-delete backups disabled.")
        if cfg.run_in_background:
            lines.append("AutoSave enabled when host is in background.")
        else:
            lines.append("AutoSave disabled when host is in background.")
        if cfg.confirm_before_save:
            lines.append(f"Popup enabled with {cfg.confirm_timeout_seconds} seconds timeout.")
        else:
            lines.append("Popup disabled.")
        lines.append("Log enabled." if cfg.log_enabled else "Log disabled.")
        return "\n".join(lines)

    def status(self) -> dict:
        pending = self.confirmation
        last = self.notifier.last
        return {
            "enabled": self.enabled,
            "info": self.info(),
            "config": self.config.to_dict(),
            "backup_directory": self.backup_directory,
            "state": {
                "last_save_at": self.state.last_save_at.isoformat(),
                "last_backup_at": self.state.last_backup_at.isoformat(),
                "last_prune_at": self.state.last_prune_at.isoformat(),
            },
            "confirmation": (
                {"remaining_seconds": round(pending.remaining(), 1)}
                if pending is not None else None
            ),
            "last_status": (
                {"level": last.level, "message": last.message, "timestamp": last.timestamp}
                if last is not None else None
            ),
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _attempt(self, label: str, fn, *args):
        """Run an executor call with timing and error capture.

        Returns ``(True, result)`` or ``(False, message)``.
        """
        start = time.perf_counter()
        try:
            result = fn(*args)
        except (ActionIOError, OSError) as exc:
            message = f"{label} failed: {exc}. Retrying next cycle."
            self.notifier.warning(message)
            return False, message
        except Exception as exc:
            logger.exception("%s raised unexpectedly", label)
            message = f"{label} failed: {exc}."
            self.notifier.error(message)
            return False, message
        finally:
            duration = time.perf_counter() - start
            if duration > self.slow_action_seconds:
                logger.warning("%s took %.2fs (limit %.2fs); storage may be slow",
                               label, duration, self.slow_action_seconds)
        return True, result

    def _last_failure(self) -> str:
        last = self.notifier.last
        return last.message if last is not None else "failed"

    def _persist_state(self):
        try:
            save_schedule_state(self.store, self.scheduler.state)
        except OSError as exc:
            logger.error("Could not persist schedule state: %s", exc)

    def _log_activity(self, message: str, *args):
        if self.config.log_enabled:
            logger.info("[AutoSave] " + message, *args)

    def _emit(self, event_type: str, data: dict):
        if self.events is None:
            return
        try:
            self.events(event_type, data)
        except Exception:
            logger.exception("Event listener failed for %s", event_type)
