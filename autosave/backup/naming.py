"""Backup file naming.

A backup keeps the original document's stem and extension and embeds
the time it was taken:

    Level1.scene at 2024-01-02 03:04:05  ->  Level1_2024-01-02_03-04-05.scene

Two backups of the same document within one second share a name; the
later copy overwrites the earlier one.
"""

import os
import re
from datetime import datetime

from autosave.core.settings import BACKUP_TIMESTAMP_FORMAT

_BACKUP_NAME_RE = re.compile(
    r"^(?P<stem>.+)_(?P<stamp>\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})(?P<ext>\.[^.]*)?$"
)


def backup_name(original_file_name: str, now: datetime) -> str:
    """Return the backup file name for ``original_file_name`` taken at ``now``."""
    base = os.path.basename(original_file_name)
    stem, ext = os.path.splitext(base)
    return f"{stem}_{now.strftime(BACKUP_TIMESTAMP_FORMAT)}{ext}"


def parse_backup_name(file_name: str) -> tuple[str, datetime] | None:
    """Recover ``(original_name, taken_at)`` from a backup file name.

    Returns None for names that were not produced by :func:`backup_name`.
    """
    match = _BACKUP_NAME_RE.match(os.path.basename(file_name))
    if not match:
        return None
    try:
        taken_at = datetime.strptime(match.group("stamp"), BACKUP_TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return match.group("stem") + (match.group("ext") or ""), taken_at
