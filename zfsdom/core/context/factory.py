"""Scoped creation of execution contexts from addresses."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from ...constants import DEFAULT_SSH_PORT
from ...utils import build_ssh_command
from ..address import Address
from ..config_loader import HostConfig, ZfsdomConfig
from .base import ExecutionContext
from .local import LocalContext
from .ssh import SSHContext

logger = structlog.get_logger()


class ContextFactory:
    """Turns an address into an execution context and releases it on exit.

    Contexts are created per logical step and never pooled.
    """

    def __init__(self, config: ZfsdomConfig | None = None):
        self.config = config or ZfsdomConfig()

    def host_config(self, address: Address) -> HostConfig:
        """Connection details for the control host of ``address``."""
        return self.config.resolve_host(address.host, address.port)

    def create(self, address: Address | None) -> ExecutionContext:
        settings = self.config.settings
        if address is None or not address.is_remote:
            return LocalContext(default_timeout=settings.command_timeout)
        return SSHContext(
            self.host_config(address),
            connect_timeout=settings.ssh_connect_timeout,
            default_timeout=settings.command_timeout,
        )

    @asynccontextmanager
    async def open(self, address: Address | None) -> AsyncIterator[ExecutionContext]:
        """Open a context for ``address``; it is closed on every exit path."""
        context = self.create(address)
        await context.open()
        try:
            yield context
        finally:
            await context.close()

    def _data_host(self, address: Address) -> tuple[HostConfig, str | None]:
        host = self.host_config(address)
        return host, address.alternate_host or host.alternate_host

    def data_plane_command(self, address: Address, from_remote: bool = False) -> list[str]:
        """SSH prefix used on the source host to reach the receiving side.

        An alternate host replaces the whole ``HOST[:PORT]`` endpoint: the
        connection goes to that host on the default port. When the command
        runs on a remote source, that host's own keys are used.
        """
        host, alternate = self._data_host(address)
        if from_remote:
            host = host.model_copy(update={"identity_file": None})
        if alternate:
            host = host.model_copy(update={"port": DEFAULT_SSH_PORT})
            return build_ssh_command(host, hostname=alternate)
        return build_ssh_command(host)

    def hypervisor_endpoint(self, address: Address) -> str:
        """``user@HOST[:PORT]`` the source hypervisor migrates to."""
        host, alternate = self._data_host(address)
        endpoint = alternate or host.hostname
        if not alternate and host.port != DEFAULT_SSH_PORT:
            endpoint = f"{endpoint}:{host.port}"
        return f"{host.user}@{endpoint}"
