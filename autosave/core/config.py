"""Autosave configuration and its validation rules.

Intervals are validated at the configuration boundary: values above the
documented maxima are clamped, while negative values, non-integers and a
zero interval for an enabled feature raise :class:`ConfigError`. Updates
are applied to a copy, so a rejected update never disturbs the
configuration currently in force.
"""

import dataclasses
import logging
from dataclasses import dataclass

from autosave.core.errors import ConfigError
from autosave.core.settings import (
    DEFAULT_BACKUP_FOLDER,
    DEFAULT_BACKUP_MINUTES,
    DEFAULT_CONFIRM_TIMEOUT_SECONDS,
    DEFAULT_RETENTION_MINUTES,
    DEFAULT_SAVE_MINUTES,
    MAX_BACKUP_MINUTES,
    MAX_CONFIRM_TIMEOUT_SECONDS,
    MAX_RETENTION_MINUTES,
    MAX_SAVE_MINUTES,
)

logger = logging.getLogger(__name__)

BOOL_FIELDS = (
    "autosave_enabled",
    "backup_enabled",
    "retention_enabled",
    "save_on_transition",
    "run_in_background",
    "confirm_before_save",
    "log_enabled",
)

INT_LIMITS = {
    "save_interval_minutes": MAX_SAVE_MINUTES,
    "backup_interval_minutes": MAX_BACKUP_MINUTES,
    "retention_minutes": MAX_RETENTION_MINUTES,
    "confirm_timeout_seconds": MAX_CONFIRM_TIMEOUT_SECONDS,
}


@dataclass(frozen=True)
class AutoSaveConfig:
    """Validated autosave settings."""
    autosave_enabled: bool = True
    save_interval_minutes: int = DEFAULT_SAVE_MINUTES
    backup_enabled: bool = True
    backup_interval_minutes: int = DEFAULT_BACKUP_MINUTES
    retention_enabled: bool = True
    retention_minutes: int = DEFAULT_RETENTION_MINUTES
    save_on_transition: bool = True
    run_in_background: bool = True
    confirm_before_save: bool = False
    confirm_timeout_seconds: int = DEFAULT_CONFIRM_TIMEOUT_SECONDS
    log_enabled: bool = True
    backup_directory: str = DEFAULT_BACKUP_FOLDER

    def validated(self) -> "AutoSaveConfig":
        """Return a copy with intervals clamped, or raise ConfigError."""
        changes = {}
        for name in BOOL_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise ConfigError(f"{name} must be true or false, got {value!r}")

        for name, maximum in INT_LIMITS.items():
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigError(f"{name} must not be negative, got {value}")
            if value > maximum:
                logger.info("Clamping %s from %d to %d", name, value, maximum)
                changes[name] = maximum

        if self.save_interval_minutes == 0:
            raise ConfigError("save_interval_minutes must be at least 1 minute")
        if self.backup_enabled and self.backup_interval_minutes == 0:
            raise ConfigError(
                "backup_interval_minutes must be at least 1 minute "
                "while backups are enabled"
            )
        if not isinstance(self.backup_directory, str) or not self.backup_directory.strip():
            raise ConfigError("backup_directory must be a non-empty path")

        return dataclasses.replace(self, **changes) if changes else self

    def updated(self, **changes) -> "AutoSaveConfig":
        """Apply ``changes`` and validate the result.

        Raises ConfigError for unknown keys or invalid values; ``self`` is
        left untouched either way.
        """
        known = {f.name for f in dataclasses.fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ConfigError(f"Unknown setting(s): {', '.join(unknown)}")
        return dataclasses.replace(self, **changes).validated()

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)
