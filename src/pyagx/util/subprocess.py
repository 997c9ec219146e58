from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Seconds to wait after SIGTERM before escalating to SIGKILL.
TERM_GRACE_SECONDS = 1.0


@dataclass
class CmdResult:
    returncode: Optional[int]
    stdout: str
    stderr: str


def shell_argv(command: str) -> list[str]:
    """argv that runs ``command`` through the system shell."""
    if os.name == "nt":
        return ["cmd.exe", "/c", command]
    shell = "bash" if shutil.which("bash") else "sh"
    return [shell, "-c", command]


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> bool:
    if proc.returncode is not None:
        return False
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, sig)
        else:
            proc.send_signal(sig)
        return True
    except ProcessLookupError:
        return False


async def terminate(proc: asyncio.subprocess.Process) -> None:
    """Stop the whole process group: SIGTERM, then SIGKILL after a grace period."""
    if not _signal_group(proc, signal.SIGTERM):
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=TERM_GRACE_SECONDS)
        return
    except asyncio.TimeoutError:
        pass
    sent = _signal_group(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
    logger.warning("process %s ignored SIGTERM; sent SIGKILL=%s", proc.pid, sent)
    await proc.wait()


async def run_shell(command: str, cwd: str, timeout: Optional[float] = 120) -> CmdResult:
    """Run ``command`` through the shell and capture its output.

    If the awaiting task is cancelled the child process group is terminated
    before CancelledError propagates. Raises asyncio.TimeoutError (after
    terminating the process) when ``timeout`` elapses.
    """
    proc = await asyncio.create_subprocess_exec(
        *shell_argv(command),
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=(os.name != "nt"),
    )
    logger.debug("started pid=%s command=%r", proc.pid, command)
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except (asyncio.CancelledError, asyncio.TimeoutError):
        logger.info("terminating pid=%s command=%r", proc.pid, command)
        await asyncio.shield(terminate(proc))
        raise
    return CmdResult(
        returncode=proc.returncode,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
    )
