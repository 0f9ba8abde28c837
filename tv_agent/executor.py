"""Key-event execution on the TV via ADB."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, Union

logger = logging.getLogger(__name__)

KeyCode = Union[int, str]

# Android KEYCODE_* values for the named remote commands.
COMMAND_MAP: dict[str, int] = {
    "sleep": 223,
    "wake": 224,
    "power": 26,
    "volup": 24,
    "voldown": 25,
    "mute": 164,
}


def resolve_key_code(command: object) -> object:
    """Map a command name to its key code; anything else passes through unchanged."""
    if isinstance(command, str) and command in COMMAND_MAP:
        return COMMAND_MAP[command]
    return command


class CommandExecutor(Protocol):
    def execute(self, code: KeyCode) -> None:
        """Start executing ``code``. Must not block and returns nothing."""


class AdbKeyEventExecutor:
    """Runs ``adb shell input keyevent CODE`` in the background.

    Arguments are passed without a shell, so a hostile command value cannot
    break out of the ``keyevent`` argument.
    """

    def __init__(self, adb_path: str = "adb", timeout: float = 15.0) -> None:
        self.adb_path = adb_path
        self.timeout = timeout
        self._tasks: set[asyncio.Task[None]] = set()

    def execute(self, code: KeyCode) -> None:
        task = asyncio.get_running_loop().create_task(self._run(code))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("ADB keyevent task failed", exc_info=task.exception())

    async def _run(self, code: KeyCode) -> None:
        argv = [self.adb_path, "shell", "input", "keyevent", str(code)]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            # ValueError: argv with an embedded NUL byte.
            logger.warning("ADB failed to start for keyevent %s: %s", code, e)
            return

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning("ADB keyevent %s timed out after %.0fs", code, self.timeout)
            return

        if proc.returncode != 0:
            logger.warning(
                "ADB keyevent %s failed (exit %s): %s",
                code,
                proc.returncode,
                stderr.decode(errors="replace").strip(),
            )
        else:
            logger.info("ADB keyevent sent: %s", code)

    async def drain(self) -> None:
        """Wait for in-flight key events (used at shutdown)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
