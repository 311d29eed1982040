"""Tests for operator status messages."""

import logging
import subprocess

from autosave.service import notifier as notifier_module
from autosave.service.notifier import (
    HISTORY_SIZE,
    STATUS_ERROR,
    STATUS_INFO,
    STATUS_WARNING,
    StatusNotifier,
)


class TestStatusMessages:
    def test_keeps_first_line_only(self):
        status = StatusNotifier().info("AutoSave enabled.\nAutoSave interval: 10 minutes.")
        assert status.message == "AutoSave enabled."
        assert status.level == STATUS_INFO

    def test_logged_at_level(self, caplog):
        with caplog.at_level(logging.INFO, logger="autosave"):
            StatusNotifier().warning("Save failed: disk full. Retrying next cycle.")
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert "Retrying next cycle" in record.getMessage()

    def test_log_can_be_skipped(self, caplog):
        with caplog.at_level(logging.INFO, logger="autosave"):
            StatusNotifier().info("quiet", log=False)
        assert caplog.records == []

    def test_history_bounded(self):
        n = StatusNotifier()
        for i in range(HISTORY_SIZE + 5):
            n.info(f"message {i}")
        assert len(n.history) == HISTORY_SIZE
        assert n.last.message == f"message {HISTORY_SIZE + 4}"

    def test_listener_receives_messages(self):
        received = []
        StatusNotifier(listener=received.append).error("bad folder")
        assert received[0].level == STATUS_ERROR
        assert received[0].message == "bad folder"

    def test_empty_message(self):
        assert StatusNotifier().info("").message == ""


class TestDesktopNotifications:
    def test_info_never_sent_to_desktop(self, monkeypatch):
        calls = []
        monkeypatch.setattr(subprocess, "Popen", lambda *a, **kw: calls.append(a))
        StatusNotifier(enable_desktop=True).info("saved")
        assert calls == []

    def test_linux_command(self):
        n = StatusNotifier()
        n._system = "Linux"
        assert n._notify_command(STATUS_ERROR, "boom") == [
            "notify-send", "-u", "critical", "AutoSave", "boom",
        ]

    def test_macos_command_escapes_quotes(self):
        n = StatusNotifier()
        n._system = "Darwin"
        command = n._notify_command(STATUS_WARNING, 'folder "A" missing')
        assert command[:2] == ["osascript", "-e"]
        assert '\\"A\\"' in command[2]

    def test_unsupported_platform(self):
        n = StatusNotifier()
        n._system = "Windows"
        assert n._notify_command(STATUS_WARNING, "x") is None

    def test_missing_notifier_falls_back_to_log(self, monkeypatch):
        def missing(*args, **kwargs):
            raise FileNotFoundError("notify-send")

        monkeypatch.setattr(notifier_module.subprocess, "Popen", missing)
        n = StatusNotifier(enable_desktop=True)
        n._system = "Linux"
        status = n.warning("disk full")
        assert status.delivered is False
        assert n.last is status
