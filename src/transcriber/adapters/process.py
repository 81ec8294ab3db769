from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class ProcessTimeout(Exception):
    def __init__(self, cmd: Sequence[str], timeout: float) -> None:
        super().__init__(f"{cmd[0]} timed out after {timeout:.0f}s")
        self.timeout = timeout


@dataclass(slots=True)
class ProcessResult:
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


async def run_process(
    cmd: Sequence[str],
    *,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
) -> ProcessResult:
    """Run ``cmd`` to completion, killing the child if we are cancelled or time out.

    Raises ``FileNotFoundError`` when the executable does not exist and
    :class:`ProcessTimeout` when ``timeout`` elapses.
    """
    logger.debug("Running %s", " ".join(cmd))
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=dict(env) if env is not None else None,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        await _kill(proc)
        raise ProcessTimeout(cmd, timeout or 0.0) from exc
    except asyncio.CancelledError:
        await _kill(proc)
        raise
    return ProcessResult(returncode=proc.returncode or 0, stdout=stdout, stderr=stderr)


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    # Reap the child so no zombie outlives the run.
    await asyncio.shield(proc.wait())
    logger.info("Killed subprocess %s", proc.pid)
