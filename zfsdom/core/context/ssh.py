"""SSH command execution over a single paramiko session."""

import asyncio
from typing import Any

import structlog
from paramiko import AutoAddPolicy, Channel, SSHClient
from paramiko.ssh_exception import SSHException

from ...constants import DEFAULT_SSH_PORT, STREAM_CHUNK_SIZE
from ..config_loader import HostConfig
from ..exceptions import TransportError
from .base import CommandResult, ExecutionContext, ProcessHandle

logger = structlog.get_logger()


class SSHProcess(ProcessHandle):
    """Streaming handle over a paramiko channel."""

    def __init__(self, channel: Channel):
        self._channel = channel

    async def read_stdout(self) -> bytes:
        return await asyncio.to_thread(self._channel.recv, STREAM_CHUNK_SIZE)

    async def read_stderr(self) -> bytes:
        return await asyncio.to_thread(self._channel.recv_stderr, STREAM_CHUNK_SIZE)

    async def wait(self) -> int:
        return await asyncio.to_thread(self._channel.recv_exit_status)

    async def terminate(self) -> None:
        if not self._channel.closed:
            self._channel.close()


class SSHContext(ExecutionContext):
    """Runs commands on one remote host.

    The session is opened by ``open()`` and released by ``close()``; it is
    never shared with another context.
    """

    def __init__(self, host: HostConfig, connect_timeout: int = 30, default_timeout: float = 120):
        self.host = host
        self.name = host.hostname
        if host.port != DEFAULT_SSH_PORT:
            self.name = f"{host.hostname}:{host.port}"
        self.connect_timeout = connect_timeout
        self.default_timeout = default_timeout
        self._client: SSHClient | None = None

    @property
    def is_remote(self) -> bool:
        return True

    @property
    def client(self) -> SSHClient:
        if self._client is None:
            raise TransportError(f"SSH session to {self.name} is not open")
        return self._client

    async def open(self) -> None:
        """Create the SSH connection."""
        if self._client is not None:
            return

        client = SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(AutoAddPolicy())

        connect_kwargs: dict[str, Any] = {
            "hostname": self.host.hostname,
            "port": self.host.port,
            "username": self.host.user,
            "timeout": self.connect_timeout,
            "banner_timeout": self.connect_timeout,
            "auth_timeout": self.connect_timeout,
        }
        if self.host.identity_file:
            connect_kwargs["key_filename"] = self.host.identity_file

        try:
            await asyncio.to_thread(client.connect, **connect_kwargs)
        except (SSHException, OSError) as e:
            client.close()
            raise TransportError(f"Failed to connect to {self.host.host_key}: {e}") from e

        transport = client.get_transport()
        if transport:
            transport.set_keepalive(30)

        self._client = client
        logger.debug("Opened SSH session", host=self.host.host_key)

    async def run(
        self,
        command: str,
        *,
        stdin: str | None = None,
        timeout: float | None = None,
        check: bool = False,
    ) -> CommandResult:
        """Execute a command on the remote host and buffer its output."""
        if timeout is None:
            timeout = self.default_timeout
        client = self.client

        def _execute() -> tuple[int, str, str]:
            stdin_file, stdout_file, stderr_file = client.exec_command(command, timeout=timeout)
            if stdin is not None:
                stdin_file.write(stdin)
                stdin_file.flush()
            stdin_file.channel.shutdown_write()
            stdout_data = stdout_file.read().decode("utf-8", errors="replace")
            stderr_data = stderr_file.read().decode("utf-8", errors="replace")
            exit_code = stdout_file.channel.recv_exit_status()
            return exit_code, stdout_data, stderr_data

        try:
            exit_code, stdout, stderr = await asyncio.to_thread(_execute)
        except (SSHException, OSError) as e:
            logger.error(
                "Failed to execute SSH command",
                host=self.host.host_key,
                command=command[:100],
                error=str(e),
            )
            raise TransportError(f"Command execution on {self.name} failed: {e}") from e

        logger.debug(
            "Executed SSH command",
            host=self.host.host_key,
            command=command[:100],
            exit_code=exit_code,
        )
        result = CommandResult(returncode=exit_code, stdout=stdout, stderr=stderr, command=command)
        if check:
            result.check_returncode()
        return result

    async def spawn(self, command: str) -> ProcessHandle:
        client = self.client

        def _start() -> Channel:
            _, stdout_file, _ = client.exec_command(command)
            return stdout_file.channel

        try:
            channel = await asyncio.to_thread(_start)
        except (SSHException, OSError) as e:
            raise TransportError(f"Failed to start command on {self.name}: {e}") from e

        logger.debug("Spawned SSH command", host=self.host.host_key, command=command[:100])
        return SSHProcess(channel)

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            self._client.close()
            logger.debug("Closed SSH session", host=self.host.host_key)
        except Exception as e:
            logger.warning("Error closing SSH session", host=self.host.host_key, error=str(e))
        finally:
            self._client = None
