"""Autosave defaults, limits and on-disk formats."""

# Default intervals (minutes)
DEFAULT_SAVE_MINUTES = 10
DEFAULT_BACKUP_MINUTES = 20
DEFAULT_RETENTION_MINUTES = 60
DEFAULT_CONFIRM_TIMEOUT_SECONDS = 10

# Upper bounds; larger values are clamped when configured
MAX_SAVE_MINUTES = 30
MAX_BACKUP_MINUTES = 30
MAX_RETENTION_MINUTES = 90
MAX_CONFIRM_TIMEOUT_SECONDS = 30

# Backup folder, relative to the project root
DEFAULT_BACKUP_FOLDER = "./AutoSaves"

# Document types picked up by the workspace host and the backup listing
DEFAULT_DOCUMENT_EXTENSIONS = [".scene"]

# Timestamp format used for persisted schedule timestamps
DATE_FORMAT = "%Y/%m/%d %H:%M:%S.%f"

# Timestamp format embedded in backup file names
BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

# Executor calls slower than this are reported
SLOW_ACTION_SECONDS = 2.0

# Seconds between service ticks in the launcher loop
DEFAULT_TICK_SECONDS = 1.0
