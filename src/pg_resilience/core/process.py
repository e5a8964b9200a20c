"""Async invocation of external database tools (pg_dump, psql, createdb, dropdb)."""

import asyncio
import time
from collections.abc import Mapping, Sequence

from attrs import field, frozen
from beartype import beartype

from .errors import ToolInvocationError
from .logging_utils import get_logger

logger = get_logger(__name__)


@frozen
class ToolOutput:
    """Captured result of a finished child process."""

    args: tuple[str, ...] = field()
    returncode: int = field()
    stdout: str = field()
    stderr: str = field()
    duration_ms: float = field()


class ToolRunner:
    """Run a command as a child process and capture its exit status and output.

    Output is collected with ``communicate()``, so it is never truncated no
    matter how much the tool prints.
    """

    def __init__(self, timeout_seconds: float | None = None) -> None:
        """Initialize runner with an optional per-command timeout."""
        self._timeout = timeout_seconds

    @beartype
    async def run(
        self,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
    ) -> ToolOutput:
        """Run ``args`` and raise ToolInvocationError unless it exits with 0."""
        tool = args[0]
        start = time.perf_counter()
        logger.debug("Running %s", tool, extra={"tool_args": list(args[1:])})

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                env=dict(env) if env is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ToolInvocationError(tool, None, str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            await self._terminate(process)
            raise ToolInvocationError(
                tool, None, f"timed out after {self._timeout}s"
            ) from e
        except asyncio.CancelledError:
            logger.warning("Cancelled while running %s, killing it", tool)
            await asyncio.shield(self._terminate(process))
            raise

        output = ToolOutput(
            args=tuple(args),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_ms=(time.perf_counter() - start) * 1000,
        )

        if output.returncode != 0:
            raise ToolInvocationError(tool, output.returncode, output.stderr)

        return output

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()
