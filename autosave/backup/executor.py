"""Filesystem side of the autosave engine.

The scheduler only decides; everything that touches the disk goes
through an :class:`ActionExecutor`. :class:`FileSystemExecutor` is the
stock implementation: it saves through a document host and keeps backups
as flat, timestamped copies in a single folder.

Backup folder layout::

    AutoSaves/
    +-- Level1_2024-01-02_03-04-05.scene
    +-- Level1_2024-01-02_03-24-05.scene
    +-- Menu_2024-01-02_03-24-05.scene
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol

from autosave.backup.retention import BackupFile, scan_backups
from autosave.core.errors import ActionIOError

logger = logging.getLogger(__name__)


class DocumentHost(Protocol):
    """The editor-side collaborator owning the open documents."""

    def has_unsaved_changes(self) -> bool: ...

    def open_documents(self) -> list[str]: ...

    def save_all(self) -> None: ...


@dataclass
class DeleteReport:
    """Outcome of a batch delete. Failures never abort the batch."""
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class ActionExecutor(Protocol):
    """Capabilities the engine needs to carry out its actions.

    Every method raises :class:`ActionIOError` on failure, except
    ``delete_files`` which reports per-file failures in its result.
    """

    def save_all(self) -> None: ...

    def copy_current_documents_to(
        self, directory: str, namer: Callable[[str], str]
    ) -> list[str]: ...

    def delete_files(self, paths) -> DeleteReport: ...

    def ensure_directory_exists(self, path: str) -> None: ...

    def list_backups(self, directory: str) -> list[BackupFile]: ...

    def clean_directory(self, directory: str) -> None: ...


class FileSystemExecutor:
    """Local-disk executor backed by a :class:`DocumentHost`."""

    def __init__(self, host: DocumentHost, extensions: list[str] | None = None):
        self.host = host
        self.extensions = list(extensions or [])

    def save_all(self) -> None:
        try:
            self.host.save_all()
        except ActionIOError:
            raise
        except OSError as exc:
            raise ActionIOError(f"Save failed: {exc}") from exc

    def ensure_directory_exists(self, path: str) -> None:
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ActionIOError(f"Cannot create directory {path}: {exc}") from exc

    def copy_current_documents_to(
        self, directory: str, namer: Callable[[str], str]
    ) -> list[str]:
        """Copy every open document into ``directory`` under ``namer(name)``.

        All documents are attempted; if any copy fails the backup as a
        whole is reported as failed. Documents sharing a file name are
        told apart by prefixing the parent folder name, so one pass never
        writes the same destination twice.
        """
        self.ensure_directory_exists(directory)
        written = []
        errors = []
        taken = set()
        for doc in self.host.open_documents():
            dest = os.path.join(directory, namer(_unique_name(doc, taken)))
            try:
                shutil.copy2(doc, dest)
            except OSError as exc:
                logger.error("Failed to back up %s: %s", doc, exc)
                errors.append(f"{doc}: {exc}")
                continue
            written.append(dest)
            logger.debug("Backed up %s -> %s", doc, dest)

        if errors:
            raise ActionIOError(
                f"{len(errors)} backup copy(ies) failed: {'; '.join(errors)}"
            )
        return written

    def delete_files(self, paths) -> DeleteReport:
        report = DeleteReport()
        for path in sorted(str(p) for p in paths):
            try:
                os.remove(path)
            except FileNotFoundError:
                # Already gone counts as deleted
                report.deleted.append(path)
            except OSError as exc:
                logger.warning("Could not delete backup %s: %s", path, exc)
                report.failed[path] = str(exc)
            else:
                report.deleted.append(path)
        return report

    def list_backups(self, directory: str) -> list[BackupFile]:
        return scan_backups(directory, self.extensions)

    def clean_directory(self, directory: str) -> None:
        """Delete ``directory`` with everything in it, then recreate it."""
        try:
            if os.path.isdir(directory):
                shutil.rmtree(directory)
        except OSError as exc:
            raise ActionIOError(f"Cannot clean {directory}: {exc}") from exc
        self.ensure_directory_exists(directory)


def _unique_name(doc: str, taken: set) -> str:
    """Backup source name for ``doc`` not yet in ``taken`` (which is updated)."""
    name = os.path.basename(doc)
    if name in taken:
        parent = os.path.basename(os.path.dirname(doc)) or "doc"
        candidate = f"{parent}_{name}"
        stem, ext = os.path.splitext(candidate)
        n = 2
        while candidate in taken:
            candidate = f"{stem}-{n}{ext}"
            n += 1
        logger.warning("Backup name %s already used in this pass, saving %s as %s",
                       name, doc, candidate)
        name = candidate
    taken.add(name)
    return name
