"""Host activity lookup using psutil.

The run-in-background policy needs to know whether the host editor is
active. Lookup failures are never fatal: the probe reports the host as
active, so autosaving carries on.
"""

import logging
import os

import psutil

from autosave.core.errors import HostEnvironmentError

logger = logging.getLogger(__name__)


def find_host_process(process_name: str) -> int | None:
    """Return the PID of the first process named ``process_name``.

    Raises HostEnvironmentError when the process table cannot be read.
    """
    wanted = process_name.lower()
    current_pid = os.getpid()
    try:
        for proc in psutil.process_iter(["pid", "name"]):
            try:
                if proc.info["pid"] == current_pid:
                    continue
                name = (proc.info.get("name") or "").lower()
                if name == wanted:
                    return proc.info["pid"]
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
    except psutil.Error as exc:
        raise HostEnvironmentError(f"Process lookup failed: {exc}") from exc
    return None


class HostActivityProbe:
    """Answers "is the host running?" for the background-run policy.

    With no ``process_name`` configured the host is the current process
    and always active.
    """

    def __init__(self, process_name: str | None = None):
        self.process_name = process_name
        self.run_in_background = True

    def apply_background_policy(self, enabled: bool):
        self.run_in_background = enabled
        logger.debug("Run in background set to %s", enabled)

    def is_active(self) -> bool:
        if not self.process_name:
            return True
        try:
            return find_host_process(self.process_name) is not None
        except HostEnvironmentError as exc:
            logger.error("Can't look up host process %s, assuming active: %s",
                         self.process_name, exc)
            return True
