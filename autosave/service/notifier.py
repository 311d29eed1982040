"""One-line status messages for the operator.

Every message is logged. Desktop notifications are attempted on
supported platforms when enabled; delivery failures fall back to the log
so a missing notifier never interrupts autosaving.
"""

import logging
import platform
import subprocess
from collections import deque
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)

STATUS_INFO = "INFO"
STATUS_WARNING = "WARNING"
STATUS_ERROR = "ERROR"

HISTORY_SIZE = 100


@dataclass
class StatusMessage:
    """A status line shown to the operator."""
    timestamp: str
    level: str
    message: str
    delivered: bool


class StatusNotifier:
    """Keeps the latest status line and a bounded history."""

    def __init__(self, enable_desktop: bool = False, listener=None):
        self.enable_desktop = enable_desktop
        self.listener = listener
        self._history: deque[StatusMessage] = deque(maxlen=HISTORY_SIZE)
        self._system = platform.system()

    def send(self, level: str, message: str, log: bool = True) -> StatusMessage:
        """Publish ``message``. ``log=False`` skips the log record only."""
        status = StatusMessage(
            timestamp=datetime.now().isoformat(),
            level=level,
            message=message.splitlines()[0] if message else "",
            delivered=False,
        )

        if log:
            log_fn = {
                STATUS_INFO: logger.info,
                STATUS_WARNING: logger.warning,
                STATUS_ERROR: logger.error,
            }.get(level, logger.info)
            log_fn("[AutoSave] %s", status.message)

        if self.enable_desktop and level != STATUS_INFO:
            status.delivered = self._desktop_notify(level, status.message)
        else:
            status.delivered = True

        self._history.append(status)
        if self.listener is not None:
            self.listener(status)
        return status

    def info(self, message: str, log: bool = True) -> StatusMessage:
        return self.send(STATUS_INFO, message, log=log)

    def warning(self, message: str) -> StatusMessage:
        return self.send(STATUS_WARNING, message)

    def error(self, message: str) -> StatusMessage:
        return self.send(STATUS_ERROR, message)

    def _notify_command(self, level: str, message: str) -> list[str] | None:
        if self._system == "Linux":
            urgency = "critical" if level == STATUS_ERROR else "normal"
            return ["notify-send", "-u", urgency, "AutoSave", message]
        if self._system == "Darwin":
            quoted = message.replace("\\", "\\\\").replace('"', '\\"')
            return ["osascript", "-e", f'display notification "{quoted}" with title "AutoSave"']
        return None

    def _desktop_notify(self, level: str, message: str) -> bool:
        """Fire-and-forget desktop notification. False when it could not start."""
        command = self._notify_command(level, message)
        if command is None:
            return True
        try:
            subprocess.Popen(command, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as exc:
            logger.debug("Desktop notification unavailable: %s", exc)
            return False
        return True

    @property
    def last(self) -> StatusMessage | None:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> list[StatusMessage]:
        return list(self._history)
