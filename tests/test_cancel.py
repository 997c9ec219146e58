import asyncio
import os
import sys

import pytest

from pyagx.util.cancel import CancelToken, Interrupted
from pyagx.util.subprocess import run_shell


@pytest.mark.asyncio
async def test_race_returns_result_when_not_cancelled():
    token = CancelToken()

    async def work():
        await asyncio.sleep(0.01)
        return 42

    assert await token.race(work()) == 42


@pytest.mark.asyncio
async def test_race_interrupts_and_cancels_inner_task():
    token = CancelToken()
    cleaned_up = asyncio.Event()

    async def work():
        try:
            await asyncio.sleep(30)
        finally:
            cleaned_up.set()

    async def cancel_soon():
        await asyncio.sleep(0.05)
        token.cancel()

    asyncio.ensure_future(cancel_soon())
    with pytest.raises(Interrupted):
        await token.race(work())
    assert cleaned_up.is_set()


@pytest.mark.asyncio
async def test_second_cancel_is_a_no_op_and_reset_clears():
    token = CancelToken()
    assert token.cancel() is True
    assert token.cancel() is False
    assert token.is_cancelled()
    token.reset()
    assert not token.is_cancelled()


@pytest.mark.asyncio
async def test_race_when_already_cancelled():
    token = CancelToken()
    token.cancel()
    with pytest.raises(Interrupted):
        await token.race(asyncio.sleep(1))


@pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX process groups")
@pytest.mark.asyncio
async def test_cancelled_command_process_is_terminated(tmp_path):
    token = CancelToken()
    pid_file = tmp_path / "pid"

    async def cancel_when_started():
        while not pid_file.exists() or not pid_file.read_text().strip():
            await asyncio.sleep(0.02)
        token.cancel()

    asyncio.ensure_future(cancel_when_started())
    with pytest.raises(Interrupted):
        await token.race(run_shell(f"echo $$ > {pid_file}; sleep 30", cwd=str(tmp_path), timeout=60))

    pid = int(pid_file.read_text().strip())
    # The shell was started as a session leader, so it is gone once terminated.
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
