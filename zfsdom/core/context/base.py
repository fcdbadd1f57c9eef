"""Execution context contract shared by the local and SSH transports."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from ..exceptions import CommandError

LineCallback = Callable[[str], None]


@dataclass
class CommandResult:
    """Standardized result from buffered command execution"""

    returncode: int
    stdout: str
    stderr: str
    command: str = ""

    @property
    def success(self) -> bool:
        """Check if command succeeded"""
        return self.returncode == 0

    def check_returncode(self) -> "CommandResult":
        """Raise CommandError if the command failed."""
        if not self.success:
            error_msg = self.stderr.strip() or self.stdout.strip() or "Command failed"
            raise CommandError(
                f"Command failed with exit code {self.returncode}: {error_msg}",
                returncode=self.returncode,
                stderr=self.stderr,
            )
        return self


class _LineSplitter:
    """Accumulates byte chunks and emits complete decoded lines."""

    def __init__(self, callback: LineCallback | None):
        self._callback = callback
        self._buffer = b""

    def feed(self, chunk: bytes) -> None:
        self._buffer += chunk.replace(b"\r", b"\n")
        *lines, self._buffer = self._buffer.split(b"\n")
        for line in lines:
            self._emit(line)

    def flush(self) -> None:
        if self._buffer:
            self._emit(self._buffer)
            self._buffer = b""

    def _emit(self, line: bytes) -> None:
        if self._callback is None:
            return
        text = line.decode("utf-8", errors="replace").rstrip()
        if text:
            self._callback(text)


class ProcessHandle(ABC):
    """A streaming command: live stdout/stderr and a final exit code."""

    @abstractmethod
    async def read_stdout(self) -> bytes:
        """Return the next stdout chunk, or b"" once the stream is closed."""

    @abstractmethod
    async def read_stderr(self) -> bytes:
        """Return the next stderr chunk, or b"" once the stream is closed."""

    @abstractmethod
    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""

    @abstractmethod
    async def terminate(self) -> None:
        """Stop the process if it is still running."""

    async def stream(
        self,
        on_stdout: LineCallback | None = None,
        on_stderr: LineCallback | None = None,
    ) -> int:
        """Consume both streams line by line until exit, return the exit code.

        stdout is always drained, even without a callback: an unread pipe
        stalls the writer once its buffer fills.
        """

        async def pump(read, callback: LineCallback | None) -> None:
            splitter = _LineSplitter(callback)
            while chunk := await read():
                splitter.feed(chunk)
            splitter.flush()

        try:
            await asyncio.gather(
                pump(self.read_stdout, on_stdout),
                pump(self.read_stderr, on_stderr),
            )
        except BaseException:
            await self.terminate()
            raise
        return await self.wait()


class ExecutionContext(ABC):
    """Run commands on one place: the local machine or one remote host."""

    name: str = "local"

    @property
    def is_remote(self) -> bool:
        return False

    async def open(self) -> None:
        """Acquire the transport session, if any."""

    @abstractmethod
    async def run(
        self,
        command: str,
        *,
        stdin: str | None = None,
        timeout: float | None = None,
        check: bool = False,
    ) -> CommandResult:
        """Run a shell command and buffer its output."""

    @abstractmethod
    async def spawn(self, command: str) -> ProcessHandle:
        """Start a shell command and return a streaming handle."""

    @abstractmethod
    async def close(self) -> None:
        """Release the transport session."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"
