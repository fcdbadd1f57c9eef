"""Local command execution with proper resource handling."""

import asyncio
import os
from typing import Any

import structlog

from ...constants import STREAM_CHUNK_SIZE
from ..exceptions import TransportError
from .base import CommandResult, ExecutionContext, ProcessHandle

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 120
KILL_TIMEOUT = 5  # Time to wait after SIGTERM before SIGKILL
SHELL = "/bin/sh"


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Terminate gracefully, then kill."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
        await asyncio.wait_for(process.wait(), timeout=KILL_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning("Process did not terminate gracefully, sending SIGKILL", pid=process.pid)
        process.kill()
        await process.wait()
    except ProcessLookupError:
        # Process already terminated
        pass


class LocalProcess(ProcessHandle):
    """Streaming handle over an asyncio subprocess."""

    def __init__(self, process: asyncio.subprocess.Process):
        self._process = process

    @property
    def pid(self) -> int:
        return self._process.pid

    async def read_stdout(self) -> bytes:
        return await self._process.stdout.read(STREAM_CHUNK_SIZE)

    async def read_stderr(self) -> bytes:
        return await self._process.stderr.read(STREAM_CHUNK_SIZE)

    async def wait(self) -> int:
        return await self._process.wait()

    async def terminate(self) -> None:
        await _terminate(self._process)


class LocalContext(ExecutionContext):
    """Runs commands on this machine through ``/bin/sh -c``."""

    name = "local"

    def __init__(self, default_timeout: float = DEFAULT_TIMEOUT):
        self.default_timeout = default_timeout

    async def _create(self, command: str, with_stdin: bool) -> asyncio.subprocess.Process:
        kwargs: dict[str, Any] = {
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "env": os.environ.copy(),
        }
        if with_stdin:
            kwargs["stdin"] = asyncio.subprocess.PIPE
        try:
            return await asyncio.create_subprocess_exec(SHELL, "-c", command, **kwargs)
        except OSError as e:
            raise TransportError(f"Failed to start local shell: {e}") from e

    async def run(
        self,
        command: str,
        *,
        stdin: str | None = None,
        timeout: float | None = None,
        check: bool = False,
    ) -> CommandResult:
        """Run a command locally and buffer its output.

        Args:
            command: Shell command line
            stdin: Input to provide to the command
            timeout: Timeout in seconds (default: the context default)
            check: Raise CommandError if the command fails

        Returns:
            CommandResult with returncode, stdout, and stderr

        Raises:
            CommandError: If check=True and command fails
            TransportError: If command times out
        """
        if timeout is None:
            timeout = self.default_timeout

        logger.debug("Executing local command", command=command, timeout=timeout)

        process = await self._create(command, with_stdin=stdin is not None)
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(input=stdin.encode() if stdin is not None else None),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Command timed out, terminating process", command=command, pid=process.pid)
            await _terminate(process)
            raise TransportError(f"Command timed out after {timeout} seconds: {command}") from e
        finally:
            await _terminate(process)

        result = CommandResult(
            returncode=process.returncode or 0,
            stdout=stdout_bytes.decode(errors="replace") if stdout_bytes else "",
            stderr=stderr_bytes.decode(errors="replace") if stderr_bytes else "",
            command=command,
        )
        if check:
            result.check_returncode()
        return result

    async def spawn(self, command: str) -> ProcessHandle:
        logger.debug("Spawning local command", command=command)
        return LocalProcess(await self._create(command, with_stdin=False))

    async def close(self) -> None:
        """Nothing to release for the local shell."""
