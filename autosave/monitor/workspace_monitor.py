"""Workspace document host built on watchdog.

The project folder is watched for documents with the configured
extensions. Creating, modifying or moving one onto a watched name marks
it dirty until the next save. The backup folder is always excluded so
backup copies never count as unsaved work.
"""

import logging
import os
import shlex
import subprocess
import threading
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from autosave.core.errors import ActionIOError

logger = logging.getLogger(__name__)

SAVE_COMMAND_TIMEOUT = 30


def normalize_extensions(extensions: list[str] | None) -> list[str]:
    return [
        (ext if ext.startswith(".") else f".{ext}").lower()
        for ext in (extensions or [])
    ]


class DocumentEventHandler(FileSystemEventHandler):
    """Watchdog handler that feeds document changes into a WorkspaceHost."""

    def __init__(self, host: "WorkspaceHost"):
        super().__init__()
        self.host = host

    def on_created(self, event):
        if not event.is_directory:
            self.host.mark_dirty(event.src_path)

    def on_modified(self, event):
        if not event.is_directory:
            self.host.mark_dirty(event.src_path)

    def on_moved(self, event):
        if event.is_directory:
            return
        self.host.forget(event.src_path)
        self.host.mark_dirty(event.dest_path)

    def on_deleted(self, event):
        if not event.is_directory:
            self.host.forget(event.src_path)


class WorkspaceHost:
    """Tracks open documents under ``root`` and which of them are dirty.

    ``save_command`` is an optional shell-style command asking the real
    editor to save; it runs in ``root``. Without one, the documents on
    disk are taken as already saved and saving just clears the dirty set.
    """

    def __init__(
        self,
        root: str,
        extensions: list[str] | None = None,
        exclude_dirs: list[str] | None = None,
        save_command: str | None = None,
    ):
        self.root = Path(root).resolve()
        self.extensions = normalize_extensions(extensions)
        self.exclude_dirs = [os.path.normpath(os.path.abspath(d)) for d in (exclude_dirs or [])]
        self.save_command = save_command
        self._dirty: set[str] = set()
        self._lock = threading.Lock()
        self._observer = None

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def _is_excluded(self, path: str) -> bool:
        norm = os.path.normpath(os.path.abspath(path))
        for exc in self.exclude_dirs:
            if norm == exc or norm.startswith(exc + os.sep):
                return True
        return False

    def is_document(self, path: str) -> bool:
        if self._is_excluded(path):
            return False
        if not self.extensions:
            return True
        _, ext = os.path.splitext(path)
        return ext.lower() in self.extensions

    def exclude(self, directory: str):
        """Stop tracking documents under ``directory`` (e.g. a new backup folder)."""
        norm = os.path.normpath(os.path.abspath(directory))
        if norm not in self.exclude_dirs:
            self.exclude_dirs.append(norm)
        with self._lock:
            self._dirty = {p for p in self._dirty if not self._is_excluded(p)}

    # ------------------------------------------------------------------
    # Dirty tracking
    # ------------------------------------------------------------------

    def mark_dirty(self, path: str):
        if not self.is_document(path):
            return
        with self._lock:
            self._dirty.add(os.path.abspath(path))
        logger.debug("Document changed: %s", path)

    def forget(self, path: str):
        with self._lock:
            self._dirty.discard(os.path.abspath(path))

    def has_unsaved_changes(self) -> bool:
        with self._lock:
            return bool(self._dirty)

    @property
    def dirty_documents(self) -> list[str]:
        with self._lock:
            return sorted(self._dirty)

    def open_documents(self) -> list[str]:
        """All documents currently in the workspace."""
        docs = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [
                d for d in dirnames
                if not self._is_excluded(os.path.join(dirpath, d))
            ]
            for name in filenames:
                path = os.path.join(dirpath, name)
                if self.is_document(path):
                    docs.append(path)
        return sorted(docs)

    def save_all(self):
        """Ask the editor to save, then treat every document as clean."""
        if self.save_command:
            try:
                subprocess.run(
                    shlex.split(self.save_command),
                    cwd=str(self.root),
                    check=True,
                    timeout=SAVE_COMMAND_TIMEOUT,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                )
            except subprocess.CalledProcessError as exc:
                stderr = (exc.stderr or b"").decode(errors="replace").strip()
                raise ActionIOError(
                    f"Save command exited with {exc.returncode}: {stderr}"
                ) from exc
            except (subprocess.TimeoutExpired, OSError) as exc:
                raise ActionIOError(f"Save command failed: {exc}") from exc
        with self._lock:
            self._dirty.clear()

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    def start(self):
        if self._observer is not None:
            return
        self._observer = Observer()
        self._observer.schedule(DocumentEventHandler(self), str(self.root), recursive=True)
        self._observer.start()
        logger.info("Watching %s for %s", self.root,
                    ", ".join(self.extensions) or "all files")

    def stop(self):
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
        logger.info("Workspace monitor stopped.")
