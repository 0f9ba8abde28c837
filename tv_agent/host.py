"""Process-level resources: the singleton pid lock and the Termux wake-lock."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class LockHeldError(RuntimeError):
    def __init__(self, pid: int) -> None:
        super().__init__(f"agent already running (pid {pid})")
        self.pid = pid


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to someone else.
        return True
    return True


class ProcessLock:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.held = False

    def acquire(self) -> None:
        if self.path.exists():
            try:
                old_pid = int(self.path.read_text(encoding="utf-8").strip())
            except ValueError:
                old_pid = None
            if old_pid is not None and old_pid != os.getpid() and _pid_alive(old_pid):
                raise LockHeldError(old_pid)
            logger.info("Removing stale lock file %s", self.path)
            self.path.unlink(missing_ok=True)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(os.getpid()), encoding="utf-8")
        self.held = True

    def release(self) -> None:
        if not self.held:
            return
        self.held = False
        self.path.unlink(missing_ok=True)


class WakeLock:
    """Keeps the device awake through ``termux-wake-lock``."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.held = False

    def _run(self, cmd: str) -> bool:
        try:
            subprocess.run([cmd], check=True, capture_output=True, timeout=10)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("%s failed: %s", cmd, e)
            return False
        return True

    def acquire(self) -> None:
        if self.enabled and self._run("termux-wake-lock"):
            self.held = True
            logger.info("Wake-lock acquired")

    def release(self) -> None:
        if not self.held:
            return
        self.held = False
        if self._run("termux-wake-unlock"):
            logger.info("Wake-lock released")


class HostResources:
    """Everything that must be released exactly once when the agent exits."""

    def __init__(self, lock: ProcessLock | None = None, wake_lock: WakeLock | None = None) -> None:
        self.lock = lock
        self.wake_lock = wake_lock
        self.released = False

    def acquire(self) -> None:
        if self.lock is not None:
            self.lock.acquire()
        if self.wake_lock is not None:
            self.wake_lock.acquire()

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        if self.wake_lock is not None:
            self.wake_lock.release()
        if self.lock is not None:
            self.lock.release()
