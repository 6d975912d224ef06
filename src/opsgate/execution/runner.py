"""Command runners used by the step executor."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    success: bool
    output: str = ""
    error: str | None = None
    exit_code: int | None = None
    timed_out: bool = False


class CommandRunner(Protocol):
    async def run(self, command: str, timeout_seconds: float) -> CommandResult: ...


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


class SubprocessRunner:
    """Runs commands through the shell with a hard timeout.

    Each command gets its own process group so a timeout kills the shell and
    everything it spawned.
    """

    async def run(self, command: str, timeout_seconds: float) -> CommandResult:
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            return CommandResult(success=False, error=str(exc))

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            self._kill(proc)
            await proc.wait()
            return CommandResult(
                success=False,
                error=f"Command timed out after {timeout_seconds:g}s",
                exit_code=proc.returncode,
                timed_out=True,
            )
        except asyncio.CancelledError:
            self._kill(proc)
            raise

        output = _decode(stdout)
        if proc.returncode == 0:
            return CommandResult(success=True, output=output, exit_code=0)
        return CommandResult(
            success=False,
            output=output,
            error=_decode(stderr).strip() or f"Command exited with code {proc.returncode}",
            exit_code=proc.returncode,
        )

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            if hasattr(os, "killpg"):
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass
        except OSError as exc:
            logger.warning("Failed to kill process group %s: %s", proc.pid, exc)


class DryRunRunner:
    """Reports every command as successful without spawning anything."""

    async def run(self, command: str, timeout_seconds: float) -> CommandResult:
        return CommandResult(success=True, output=f"[DRY RUN] Would execute: {command}")
