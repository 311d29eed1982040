"""Actions emitted by the save scheduler.

An action is produced and consumed within a single tick. The ``kind``
tag identifies the variant:

    SAVE    save every open document
    BACKUP  copy the open documents into the backup folder
    PRUNE   delete the backups selected by the retention policy
"""

from dataclasses import dataclass, field

from autosave.backup.retention import BackupFile

ACTION_SAVE = "save"
ACTION_BACKUP = "backup"
ACTION_PRUNE = "prune"


@dataclass(frozen=True)
class SaveAction:
    """Save all open documents.

    When ``confirm`` is set the caller runs a confirmation window of
    ``timeout_seconds`` before saving. ``forced`` marks a save requested
    by a mode transition.
    """
    confirm: bool = False
    timeout_seconds: int = 0
    forced: bool = False
    kind: str = field(default=ACTION_SAVE, init=False)


@dataclass(frozen=True)
class BackupAction:
    kind: str = field(default=ACTION_BACKUP, init=False)


@dataclass(frozen=True)
class PruneAction:
    candidates: frozenset[BackupFile] = frozenset()
    kind: str = field(default=ACTION_PRUNE, init=False)


Action = SaveAction | BackupAction | PruneAction
