"""CommandRunner protocol and the default asyncio subprocess implementation.

Every runtime interaction (version probes, ``create``/``exec``/``stats``/``rm``)
goes through a :class:`CommandRunner` so tests can substitute a fake and the
host can plug in its own process primitive.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class CommandOutput:
    """Captured result of one external command."""

    __slots__ = ("returncode", "stdout", "stderr", "timed_out")

    def __init__(
        self,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        *,
        timed_out: bool = False,
    ) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def __repr__(self) -> str:
        return (
            f"CommandOutput(returncode={self.returncode!r}, stdout={self.stdout!r}, "
            f"stderr={self.stderr!r}, timed_out={self.timed_out!r})"
        )


@runtime_checkable
class CommandRunner(Protocol):
    """Runs an external command to completion.

    Implementations raise :class:`OSError` when the binary cannot be spawned
    and return ``timed_out=True`` (after killing the child) when *timeout*
    elapses.
    """

    async def run(self, argv: list[str], *, timeout: float | None = None) -> CommandOutput: ...


class SubprocessRunner:
    """:class:`CommandRunner` backed by :func:`asyncio.create_subprocess_exec`."""

    def __init__(self, env: dict[str, str] | None = None) -> None:
        self._env = env

    async def run(self, argv: list[str], *, timeout: float | None = None) -> CommandOutput:
        logger.debug("Running: %s", shlex.join(argv))
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._env,
        )
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning("Command timed out after %ss: %s", timeout, shlex.join(argv))
            return CommandOutput(
                returncode=proc.returncode if proc.returncode is not None else -9,
                timed_out=True,
            )
        except asyncio.CancelledError:
            # Do not leak the child when the caller is cancelled mid-flight.
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        return CommandOutput(
            returncode=proc.returncode or 0,
            stdout=stdout_bytes.decode(errors="replace").strip() if stdout_bytes else "",
            stderr=stderr_bytes.decode(errors="replace").strip() if stderr_bytes else "",
        )
