"""Tests for the workspace document host and host activity probe.

Covers:
- Dirty tracking from watchdog events (create, modify, move, delete)
- Extension filter and excluded backup folder
- Open-document listing
- Save command success and failure
- Process lookup for the run-in-background policy
"""

import shlex
import sys
import time

import psutil
import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from autosave.core.errors import ActionIOError, HostEnvironmentError
from autosave.monitor.host_probe import HostActivityProbe, find_host_process
from autosave.monitor.workspace_monitor import (
    DocumentEventHandler,
    WorkspaceHost,
    normalize_extensions,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def workspace(tmp_path):
    """Project folder with two scenes, a script and a backup folder."""
    (tmp_path / "Scenes").mkdir()
    (tmp_path / "Scenes" / "Level1.scene").write_text("one")
    (tmp_path / "Scenes" / "Menu.SCENE").write_text("menu")
    (tmp_path / "Scripts").mkdir()
    (tmp_path / "Scripts" / "player.cs").write_text("code")
    (tmp_path / "AutoSaves").mkdir()
    (tmp_path / "AutoSaves" / "Level1_2024-01-02_03-04-05.scene").write_text("old")
    return tmp_path


@pytest.fixture
def host(workspace):
    return WorkspaceHost(
        str(workspace),
        extensions=["scene"],
        exclude_dirs=[str(workspace / "AutoSaves")],
    )


@pytest.fixture
def handler(host):
    return DocumentEventHandler(host)


# ---------------------------------------------------------------------------
# Dirty tracking
# ---------------------------------------------------------------------------

class TestDirtyTracking:
    def test_starts_clean(self, host):
        assert not host.has_unsaved_changes()

    def test_modified_document_is_dirty(self, host, handler, workspace):
        path = str(workspace / "Scenes" / "Level1.scene")
        handler.on_modified(FileModifiedEvent(path))
        assert host.has_unsaved_changes()
        assert host.dirty_documents == [path]

    def test_created_document_is_dirty(self, host, handler, workspace):
        handler.on_created(FileCreatedEvent(str(workspace / "Scenes" / "New.scene")))
        assert host.has_unsaved_changes()

    def test_directories_ignored(self, host, handler, workspace):
        handler.on_created(DirCreatedEvent(str(workspace / "Scenes" / "Sub.scene")))
        assert not host.has_unsaved_changes()

    def test_other_extensions_ignored(self, host, handler, workspace):
        handler.on_modified(FileModifiedEvent(str(workspace / "Scripts" / "player.cs")))
        assert not host.has_unsaved_changes()

    def test_extension_match_is_case_insensitive(self, host, handler, workspace):
        handler.on_modified(FileModifiedEvent(str(workspace / "Scenes" / "Menu.SCENE")))
        assert host.has_unsaved_changes()

    def test_backup_folder_excluded(self, host, handler, workspace):
        backup = workspace / "AutoSaves" / "Level1_2024-01-02_03-04-05.scene"
        handler.on_modified(FileModifiedEvent(str(backup)))
        assert not host.has_unsaved_changes()

    def test_move_tracks_destination(self, host, handler, workspace):
        src = str(workspace / "Scenes" / "Level1.scene")
        dest = str(workspace / "Scenes" / "Level2.scene")
        handler.on_modified(FileModifiedEvent(src))
        handler.on_moved(FileMovedEvent(src, dest))
        assert host.dirty_documents == [dest]

    def test_delete_forgets(self, host, handler, workspace):
        path = str(workspace / "Scenes" / "Level1.scene")
        handler.on_modified(FileModifiedEvent(path))
        handler.on_deleted(FileDeletedEvent(path))
        assert not host.has_unsaved_changes()

    def test_late_exclusion_drops_dirty_entries(self, host, handler, workspace):
        handler.on_modified(FileModifiedEvent(str(workspace / "Scenes" / "Level1.scene")))
        host.exclude(str(workspace / "Scenes"))
        assert not host.has_unsaved_changes()


# ---------------------------------------------------------------------------
# Documents and saving
# ---------------------------------------------------------------------------

class TestDocuments:
    def test_open_documents_skip_backups(self, host, workspace):
        assert host.open_documents() == sorted([
            str(workspace / "Scenes" / "Level1.scene"),
            str(workspace / "Scenes" / "Menu.SCENE"),
        ])

    def test_no_filter_lists_everything_outside_backups(self, workspace):
        host = WorkspaceHost(str(workspace), exclude_dirs=[str(workspace / "AutoSaves")])
        assert len(host.open_documents()) == 3

    def test_normalize_extensions(self):
        assert normalize_extensions(["scene", ".Unity"]) == [".scene", ".unity"]
        assert normalize_extensions(None) == []

    def test_save_without_command_clears_dirty(self, host, workspace):
        host.mark_dirty(str(workspace / "Scenes" / "Level1.scene"))
        host.save_all()
        assert not host.has_unsaved_changes()

    def test_save_command_runs(self, workspace):
        command = f"{shlex.quote(sys.executable)} -c \"open('saved.txt', 'w').close()\""
        host = WorkspaceHost(str(workspace), extensions=[".scene"], save_command=command)
        host.mark_dirty(str(workspace / "Scenes" / "Level1.scene"))
        host.save_all()
        assert (workspace / "saved.txt").exists()
        assert not host.has_unsaved_changes()

    def test_failing_save_command_keeps_dirty(self, workspace):
        command = f"{shlex.quote(sys.executable)} -c \"import sys; sys.exit(3)\""
        host = WorkspaceHost(str(workspace), extensions=[".scene"], save_command=command)
        host.mark_dirty(str(workspace / "Scenes" / "Level1.scene"))
        with pytest.raises(ActionIOError, match="exited with 3"):
            host.save_all()
        assert host.has_unsaved_changes()

    def test_missing_save_command(self, workspace):
        host = WorkspaceHost(str(workspace), save_command="definitely-not-an-editor-cli")
        with pytest.raises(ActionIOError):
            host.save_all()


class TestWatching:
    def test_observer_marks_changes(self, host, workspace):
        host.start()
        try:
            time.sleep(0.3)
            (workspace / "Scenes" / "Level1.scene").write_text("changed")
            deadline = time.time() + 5
            while not host.has_unsaved_changes() and time.time() < deadline:
                time.sleep(0.1)
        finally:
            host.stop()
        assert host.has_unsaved_changes()

    def test_stop_without_start(self, host):
        host.stop()


# ---------------------------------------------------------------------------
# Host activity probe
# ---------------------------------------------------------------------------

class FakeProc:
    def __init__(self, pid, name):
        self.info = {"pid": pid, "name": name}


class TestHostActivityProbe:
    def test_no_process_name_always_active(self):
        assert HostActivityProbe().is_active()

    def test_finds_process_by_name(self, monkeypatch):
        monkeypatch.setattr(psutil, "process_iter",
                            lambda attrs: [FakeProc(11, "bash"), FakeProc(42, "Editor")])
        assert find_host_process("editor") == 42
        assert HostActivityProbe("Editor").is_active()

    def test_missing_process_inactive(self, monkeypatch):
        monkeypatch.setattr(psutil, "process_iter", lambda attrs: [FakeProc(11, "bash")])
        assert find_host_process("Editor") is None
        assert not HostActivityProbe("Editor").is_active()

    def test_lookup_failure_assumes_active(self, monkeypatch):
        def broken(attrs):
            raise psutil.AccessDenied()

        monkeypatch.setattr(psutil, "process_iter", broken)
        with pytest.raises(HostEnvironmentError):
            find_host_process("Editor")
        assert HostActivityProbe("Editor").is_active()

    def test_background_policy_recorded(self):
        probe = HostActivityProbe()
        probe.apply_background_policy(False)
        assert probe.run_in_background is False
