"""Wiring of the stock workspace host, executor and service."""

import logging
import os
from pathlib import Path

from autosave.backup.executor import FileSystemExecutor
from autosave.core.settings import DEFAULT_DOCUMENT_EXTENSIONS
from autosave.monitor.host_probe import HostActivityProbe
from autosave.monitor.workspace_monitor import WorkspaceHost
from autosave.service.autosave_service import AutoSaveService
from autosave.service.notifier import StatusNotifier
from autosave.storage.preferences import PreferenceStore

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG = PROJECT_ROOT / "config" / "autosave.json"


def build_service(
    config_path: str | None = None,
    project_root: str | None = None,
    extensions: list[str] | None = None,
    save_command: str | None = None,
    host_process: str | None = None,
    ws_handler=None,
    enable_desktop_alerts: bool = False,
) -> tuple[AutoSaveService, WorkspaceHost]:
    """Build a service watching ``project_root`` with a file-backed store.

    The returned host is not started; call ``host.start()`` to begin
    watching for document changes.
    """
    root = os.path.abspath(project_root or os.getcwd())
    store = PreferenceStore(config_path or str(DEFAULT_CONFIG))
    extensions = extensions or list(DEFAULT_DOCUMENT_EXTENSIONS)

    host = WorkspaceHost(root, extensions=extensions, save_command=save_command)
    executor = FileSystemExecutor(host, extensions=extensions)
    notifier = StatusNotifier(
        enable_desktop=enable_desktop_alerts,
        listener=ws_handler.status_listener if ws_handler else None,
    )
    service = AutoSaveService(
        store=store,
        executor=executor,
        project_root=root,
        notifier=notifier,
        host_probe=HostActivityProbe(host_process),
        events=ws_handler.broadcast if ws_handler else None,
    )
    host.exclude(service.backup_directory)
    return service, host
