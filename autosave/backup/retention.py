"""Backup retention.

Backups older than the retention window are selected for deletion. Age
is measured from the moment the backup was created, never from its last
modification. The backup folder is the only record of existing backups:
every prune pass lists it again through :func:`scan_backups`.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from autosave.backup.naming import parse_backup_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupFile:
    """A backup copy sitting in the backup folder."""
    original_name: str
    created_at: datetime
    path: str


def select_for_deletion(
    backups,
    now: datetime,
    max_age_minutes: int,
) -> set[BackupFile]:
    """Return the backups whose age reached ``max_age_minutes``.

    The boundary is inclusive, so ``max_age_minutes == 0`` selects every
    backup.
    """
    max_age = timedelta(minutes=max_age_minutes)
    return {b for b in backups if now - b.created_at >= max_age}


class RetentionPolicy:
    """Age-based retention bound to a fixed window."""

    def __init__(self, max_age_minutes: int):
        self.max_age_minutes = max_age_minutes

    def select(self, backups, now: datetime) -> set[BackupFile]:
        return select_for_deletion(backups, now, self.max_age_minutes)


def backup_created_at(path: str) -> datetime:
    """Best available creation time of a backup file.

    The timestamp embedded in the file name wins; otherwise the
    filesystem birth time, then the inode change time.
    """
    parsed = parse_backup_name(path)
    if parsed is not None:
        return parsed[1]
    st = os.stat(path)
    created = getattr(st, "st_birthtime", None) or st.st_ctime
    return datetime.fromtimestamp(created)


def scan_backups(directory: str, extensions: list[str] | None = None) -> list[BackupFile]:
    """List the backup files currently present in ``directory``.

    Only files whose suffix is in ``extensions`` are returned (all files
    when ``extensions`` is empty). A missing directory yields no backups.
    """
    folder = Path(directory)
    if not folder.is_dir():
        return []

    wanted = {e.lower() if e.startswith(".") else f".{e.lower()}" for e in (extensions or [])}
    backups = []
    for entry in folder.iterdir():
        if not entry.is_file():
            continue
        if wanted and entry.suffix.lower() not in wanted:
            continue
        try:
            created = backup_created_at(str(entry))
        except OSError as exc:
            logger.warning("Could not stat backup %s: %s", entry, exc)
            continue
        parsed = parse_backup_name(entry.name)
        original = parsed[0] if parsed else entry.name
        backups.append(BackupFile(original_name=original, created_at=created, path=str(entry)))

    backups.sort(key=lambda b: b.created_at, reverse=True)
    return backups
