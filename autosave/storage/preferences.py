"""Persistent key-value preferences.

Settings and schedule timestamps live in a flat JSON object on disk::

    {
        "autosave.enabled": true,
        "save.interval_minutes": 10,
        "backup.directory": "./AutoSaves",
        "state.last_save_at": "2024/01/02 03:04:05.000000",
        ...
    }

:class:`PreferenceStore` is thread-safe and writes atomically. Pass
``path=None`` for a purely in-memory store.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path

from autosave.core.config import AutoSaveConfig
from autosave.core.errors import ConfigError
from autosave.core.scheduler import ScheduleState
from autosave.core.settings import DATE_FORMAT

logger = logging.getLogger(__name__)

# Flags
KEY_AUTOSAVE_ENABLED = "autosave.enabled"
KEY_BACKUP_ENABLED = "backup.enabled"
KEY_RETENTION_ENABLED = "retention.enabled"
KEY_SAVE_ON_TRANSITION = "save.on_transition"
KEY_RUN_IN_BACKGROUND = "run_in_background"
KEY_CONFIRM_ENABLED = "confirm.enabled"
KEY_LOG_ENABLED = "log.enabled"

# Integers
KEY_SAVE_MINUTES = "save.interval_minutes"
KEY_BACKUP_MINUTES = "backup.interval_minutes"
KEY_RETENTION_MINUTES = "retention.minutes"
KEY_CONFIRM_TIMEOUT = "confirm.timeout_seconds"

# Strings
KEY_BACKUP_DIRECTORY = "backup.directory"

# Timestamps
KEY_LAST_SAVE = "state.last_save_at"
KEY_LAST_BACKUP = "state.last_backup_at"
KEY_LAST_PRUNE = "state.last_prune_at"

# AutoSaveConfig field -> preference key
CONFIG_KEYS = {
    "autosave_enabled": KEY_AUTOSAVE_ENABLED,
    "save_interval_minutes": KEY_SAVE_MINUTES,
    "backup_enabled": KEY_BACKUP_ENABLED,
    "backup_interval_minutes": KEY_BACKUP_MINUTES,
    "retention_enabled": KEY_RETENTION_ENABLED,
    "retention_minutes": KEY_RETENTION_MINUTES,
    "save_on_transition": KEY_SAVE_ON_TRANSITION,
    "run_in_background": KEY_RUN_IN_BACKGROUND,
    "confirm_before_save": KEY_CONFIRM_ENABLED,
    "confirm_timeout_seconds": KEY_CONFIRM_TIMEOUT,
    "log_enabled": KEY_LOG_ENABLED,
    "backup_directory": KEY_BACKUP_DIRECTORY,
}

STATE_KEYS = {
    "last_save_at": KEY_LAST_SAVE,
    "last_backup_at": KEY_LAST_BACKUP,
    "last_prune_at": KEY_LAST_PRUNE,
}


class PreferenceStore:
    """Thread-safe JSON key-value store."""

    def __init__(self, path: str | None = None):
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._data: dict = {}
        if self.path is not None and self.path.exists():
            self._data = self._read()

    def _read(self) -> dict:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            logger.error("Could not read preferences %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.error("Preferences %s are not a JSON object, ignoring", self.path)
            return {}
        return data

    def _flush(self):
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self._data, f, indent=4, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError:
            try:
                os.remove(tmp)
            except OSError:
                pass
            raise

    def has_key(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def get(self, key: str, default=None):
        with self._lock:
            return self._data.get(key, default)

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.get(key, default)
        return value if isinstance(value, bool) else default

    def get_int(self, key: str, default: int) -> int:
        value = self.get(key, default)
        if isinstance(value, bool) or not isinstance(value, int):
            return default
        return value

    def get_str(self, key: str, default: str) -> str:
        value = self.get(key, default)
        return value if isinstance(value, str) else default

    def set(self, key: str, value):
        self.update({key: value})

    def update(self, values: dict):
        """Set several keys and persist once."""
        with self._lock:
            self._data.update(values)
            self._flush()

    def as_dict(self) -> dict:
        with self._lock:
            return dict(self._data)


# ----------------------------------------------------------------------
# Config
# ----------------------------------------------------------------------

def load_config(store: PreferenceStore) -> AutoSaveConfig:
    """Read settings, falling back to the default for each bad or missing value.

    Fields are applied one at a time in ``CONFIG_KEYS`` order, so a rejected
    value only resets its own field.
    """
    config = AutoSaveConfig()
    for name, key in CONFIG_KEYS.items():
        default = getattr(config, name)
        if isinstance(default, bool):
            value = store.get_bool(key, default)
        elif isinstance(default, int):
            value = store.get_int(key, default)
        else:
            value = store.get_str(key, default)
        if value == default:
            continue
        try:
            config = config.updated(**{name: value})
        except ConfigError as exc:
            logger.warning("Stored preference %s=%r rejected (%s), using %r",
                           key, value, exc, default)
    return config


def save_config(store: PreferenceStore, config: AutoSaveConfig):
    store.update({key: getattr(config, name) for name, key in CONFIG_KEYS.items()})


# ----------------------------------------------------------------------
# Schedule timestamps
# ----------------------------------------------------------------------

def format_timestamp(value: datetime) -> str:
    return value.strftime(DATE_FORMAT)


def parse_timestamp(value) -> datetime | None:
    """Parse a stored timestamp. Unset, malformed and sentinel values give None."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        logger.warning("Ignoring malformed timestamp %r", value)
        return None
    if parsed == datetime.min or parsed.year <= 1970:
        return None
    return parsed


def load_schedule_state(store: PreferenceStore, now: datetime) -> ScheduleState:
    """Read the schedule timestamps, normalising unset ones to ``now``.

    Normalised values are written back so the next process start sees
    the same baseline.
    """
    values = {}
    repaired = {}
    for name, key in STATE_KEYS.items():
        parsed = parse_timestamp(store.get(key))
        if parsed is None:
            parsed = now
            repaired[key] = format_timestamp(now)
        values[name] = parsed
    if repaired:
        store.update(repaired)
    return ScheduleState(**values)


def save_schedule_state(store: PreferenceStore, state: ScheduleState):
    store.update({
        key: format_timestamp(getattr(state, name))
        for name, key in STATE_KEYS.items()
    })


# ----------------------------------------------------------------------
# Backup directory
# ----------------------------------------------------------------------

def resolve_backup_directory(path: str, project_root: str) -> str:
    """Absolute location of a (possibly project-relative) backup folder."""
    root = Path(project_root).resolve()
    candidate = Path(os.path.expanduser(path))
    if not candidate.is_absolute():
        candidate = root / candidate
    return str(candidate.resolve())


def validate_backup_directory(path: str, project_root: str) -> str:
    """Check that ``path`` lies inside ``project_root``.

    Returns the project-relative form (``./AutoSaves``) to store, or
    raises ConfigError with a user-facing diagnostic.
    """
    if not isinstance(path, str) or not path.strip():
        raise ConfigError("Backup folder must not be empty.")
    root = Path(project_root).resolve()
    resolved = Path(resolve_backup_directory(path, project_root))
    if resolved == root:
        raise ConfigError("Backup folder must be a subfolder of the project, not its root.")
    try:
        relative = resolved.relative_to(root)
    except ValueError:
        raise ConfigError(
            f"Backup folder must be placed inside the project directory ({root})."
        ) from None
    return "./" + relative.as_posix()
