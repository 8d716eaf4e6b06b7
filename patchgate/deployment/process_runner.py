# FILE: patchgate/deployment/process_runner.py
"""Async subprocess execution with per-call timeouts.

Build and test tools are launched in their own process group/session so
that a timeout can take down the whole tree (MSBuild and test runners
spawn worker processes of their own).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

IS_WINDOWS = os.name == "nt"


@dataclass
class ProcessResult:
    command: List[str] = field(default_factory=list)
    exit_code: int = -1
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def output(self) -> str:
        """Combined stdout + stderr."""
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr


async def kill_process_tree(proc: asyncio.subprocess.Process) -> None:
    """Kill `proc` and every process it started."""
    if proc.returncode is not None:
        return

    if IS_WINDOWS:
        with contextlib.suppress(OSError):
            killer = await asyncio.create_subprocess_exec(
                "taskkill", "/T", "/F", "/PID", str(proc.pid),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await killer.wait()
    else:
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(os.getpgid(proc.pid), signal.SIGKILL)

    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    with contextlib.suppress(Exception):
        await asyncio.wait_for(proc.wait(), timeout=5)


class ProcessRunner:
    """Runs one external command to completion or timeout.

    Injected into the build orchestrator and verification runner so
    tests can substitute a fake.
    """

    async def run(
        self,
        command: Sequence[str],
        *,
        cwd: Optional[str] = None,
        timeout: float = 300,
    ) -> ProcessResult:
        cmd = [str(c) for c in command]
        start = time.monotonic()
        result = ProcessResult(command=cmd)

        kwargs = {}
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **kwargs,
            )
        except OSError as e:
            result.stderr = str(e)
            result.duration_seconds = time.monotonic() - start
            logger.error(f"[process] Failed to start {cmd[0]}: {e}")
            return result

        try:
            stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await kill_process_tree(proc)
            result.timed_out = True
            result.stderr = f"Command timed out after {timeout}s"
            result.duration_seconds = time.monotonic() - start
            logger.warning(f"[process] Timed out after {timeout}s: {cmd[0]}")
            return result
        except asyncio.CancelledError:
            await kill_process_tree(proc)
            raise

        result.exit_code = proc.returncode if proc.returncode is not None else -1
        result.stdout = (stdout_b or b"").decode("utf-8", errors="replace")
        result.stderr = (stderr_b or b"").decode("utf-8", errors="replace")
        result.duration_seconds = time.monotonic() - start
        return result
