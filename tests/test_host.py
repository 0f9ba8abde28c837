"""Tests for the pid lock and wake-lock."""
from __future__ import annotations

import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from tv_agent import host
from tv_agent.host import HostResources, LockHeldError, ProcessLock, WakeLock


class TestProcessLock:
    def test_acquire_writes_pid_and_release_removes(self, tmp_path):
        lock = ProcessLock(tmp_path / "tvagent.lock")
        lock.acquire()
        assert (tmp_path / "tvagent.lock").read_text(encoding="utf-8") == str(os.getpid())
        lock.release()
        assert not (tmp_path / "tvagent.lock").exists()

    def test_live_pid_blocks(self, tmp_path):
        path = tmp_path / "tvagent.lock"
        path.write_text("4242", encoding="utf-8")
        with patch.object(host, "_pid_alive", return_value=True):
            with pytest.raises(LockHeldError) as exc_info:
                ProcessLock(path).acquire()
        assert exc_info.value.pid == 4242
        assert path.read_text(encoding="utf-8") == "4242"

    def test_stale_pid_is_replaced(self, tmp_path):
        path = tmp_path / "tvagent.lock"
        path.write_text("4242", encoding="utf-8")
        with patch.object(host, "_pid_alive", return_value=False):
            ProcessLock(path).acquire()
        assert path.read_text(encoding="utf-8") == str(os.getpid())

    def test_garbage_lock_is_replaced(self, tmp_path):
        path = tmp_path / "tvagent.lock"
        path.write_text("not-a-pid", encoding="utf-8")
        ProcessLock(path).acquire()
        assert path.read_text(encoding="utf-8") == str(os.getpid())

    def test_release_without_acquire_keeps_foreign_lock(self, tmp_path):
        path = tmp_path / "tvagent.lock"
        path.write_text("4242", encoding="utf-8")
        ProcessLock(path).release()
        assert path.exists()


class TestWakeLock:
    def test_acquire_and_release(self):
        with patch.object(host.subprocess, "run") as run:
            wl = WakeLock()
            wl.acquire()
            wl.release()
            wl.release()
        cmds = [c.args[0] for c in run.call_args_list]
        assert cmds == [["termux-wake-lock"], ["termux-wake-unlock"]]

    def test_disabled_does_nothing(self):
        with patch.object(host.subprocess, "run") as run:
            wl = WakeLock(enabled=False)
            wl.acquire()
            wl.release()
        run.assert_not_called()

    def test_missing_binary_is_not_fatal(self):
        with patch.object(host.subprocess, "run", side_effect=FileNotFoundError("termux-wake-lock")):
            wl = WakeLock()
            wl.acquire()
        assert wl.held is False

    def test_failed_command_is_not_fatal(self):
        err = subprocess.CalledProcessError(1, ["termux-wake-lock"])
        with patch.object(host.subprocess, "run", side_effect=err):
            wl = WakeLock()
            wl.acquire()
        assert wl.held is False


class TestHostResources:
    def test_release_exactly_once(self):
        lock = MagicMock()
        wake = MagicMock()
        res = HostResources(lock, wake)
        res.acquire()
        res.release()
        res.release()
        lock.release.assert_called_once()
        wake.release.assert_called_once()
        assert res.released
