"""Shared pytest fixtures for zfsdom tests.

Hosts are simulated by ``FakeHost``: an in-memory execution context that
records every command, answers ``zfs list``/``zfs snapshot``/``zfs get``
from a small dataset model and everything else from a regex table.
"""

import re
import shlex
from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from zfsdom.core.address import Address
from zfsdom.core.config_loader import ZfsdomConfig
from zfsdom.core.context import CommandResult, ContextFactory, ExecutionContext, ProcessHandle
from zfsdom.core.settings import ZfsdomSettings
from zfsdom.core.zfs import ZFSTransfer
from zfsdom.services import MigrationCoordinator, TransferService

Response = CommandResult | Callable[[str], CommandResult]


class FakeProcess(ProcessHandle):
    """Streaming handle that replays canned output."""

    def __init__(self, stdout: list[str] | None = None, stderr: list[str] | None = None, exit_code: int = 0):
        self._stdout = [f"{line}\n".encode() for line in stdout or []]
        self._stderr = [f"{line}\n".encode() for line in stderr or []]
        self.exit_code = exit_code
        self.terminated = False

    async def read_stdout(self) -> bytes:
        return self._stdout.pop(0) if self._stdout else b""

    async def read_stderr(self) -> bytes:
        return self._stderr.pop(0) if self._stderr else b""

    async def wait(self) -> int:
        return self.exit_code

    async def terminate(self) -> None:
        self.terminated = True


class FakeHost(ExecutionContext):
    """Scripted host with a minimal ZFS dataset model."""

    def __init__(
        self,
        name: str = "local",
        datasets: dict[str, str] | None = None,
        snapshots: dict[str, list[str]] | None = None,
    ):
        self.name = name
        self.datasets = dict(datasets or {})
        self.snapshots = {dataset: list(labels) for dataset, labels in (snapshots or {}).items()}
        self.responses: list[tuple[re.Pattern, Response]] = []
        self.spawn_responses: list[tuple[re.Pattern, Callable[[], FakeProcess]]] = []
        self.commands: list[str] = []
        self.stdin: dict[str, str] = {}
        self.spawned: list[str] = []
        self.opened = 0
        self.closed = 0

    @property
    def is_remote(self) -> bool:
        return self.name != "local"

    def on(self, pattern: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> "FakeHost":
        self.responses.append(
            (re.compile(pattern), CommandResult(returncode=returncode, stdout=stdout, stderr=stderr))
        )
        return self

    def on_spawn(
        self, pattern: str, stdout: list[str] | None = None, stderr: list[str] | None = None, exit_code: int = 0
    ) -> "FakeHost":
        self.spawn_responses.append(
            (re.compile(pattern), lambda: FakeProcess(stdout, stderr, exit_code))
        )
        return self

    def ran(self, pattern: str) -> list[str]:
        """Recorded commands (buffered and spawned) matching ``pattern``."""
        regex = re.compile(pattern)
        return [command for command in self.commands + self.spawned if regex.search(command)]

    async def open(self) -> None:
        self.opened += 1

    async def close(self) -> None:
        self.closed += 1

    async def run(self, command, *, stdin=None, timeout=None, check=False) -> CommandResult:
        self.commands.append(command)
        if stdin is not None:
            self.stdin[command] = stdin
        result = self._answer(command)
        result.command = command
        if check:
            result.check_returncode()
        return result

    async def spawn(self, command: str) -> ProcessHandle:
        self.spawned.append(command)
        for pattern, make in self.spawn_responses:
            if pattern.search(command):
                return make()
        return FakeProcess()

    def _answer(self, command: str) -> CommandResult:
        for pattern, response in self.responses:
            if pattern.search(command):
                if callable(response):
                    return response(command)
                return CommandResult(response.returncode, response.stdout, response.stderr)

        if command == "zfs list -H -o name,mountpoint":
            lines = [f"{name}\t{mountpoint}" for name, mountpoint in self.datasets.items()]
            return CommandResult(0, "\n".join(lines) + "\n" if lines else "", "")

        argv = shlex.split(command)
        if argv[:3] == ["zfs", "list", "-H"] and "snapshot" in argv:
            dataset = argv[-1]
            if dataset not in self.datasets:
                return CommandResult(1, "", f"cannot open '{dataset}': dataset does not exist\n")
            labels = self.snapshots.get(dataset, [])
            return CommandResult(0, "".join(f"{dataset}@{label}\n" for label in labels), "")

        if argv[:2] == ["zfs", "snapshot"]:
            dataset, _, label = argv[2].partition("@")
            if dataset not in self.datasets:
                return CommandResult(1, "", f"cannot open '{dataset}': dataset does not exist\n")
            self.snapshots.setdefault(dataset, []).append(label)
            return CommandResult(0, "", "")

        if argv[:2] == ["zfs", "get"]:
            dataset = argv[-1]
            if dataset not in self.datasets:
                return CommandResult(1, "", f"cannot open '{dataset}': dataset does not exist\n")
            return CommandResult(0, f"{self.datasets[dataset]}\n", "")

        return CommandResult(0, "", "")


class FakeContextFactory(ContextFactory):
    """Hands out pre-built hosts keyed by address host (None is local)."""

    def __init__(self, hosts: dict[str | None, FakeHost], config: ZfsdomConfig | None = None):
        super().__init__(config)
        self.hosts = hosts

    def create(self, address: Address | None) -> ExecutionContext:
        return self.hosts[address.host if address else None]


def domain_xml(name: str, disk: str) -> str:
    return f"""<domain type='kvm'>
  <name>{name}</name>
  <devices>
    <disk type='file' device='cdrom'>
      <source file='/iso/installer.iso'/>
      <target dev='hdc' bus='ide'/>
    </disk>
    <disk type='file' device='disk'>
      <driver name='qemu' type='qcow2'/>
      <source file='{disk}'/>
      <target dev='vda' bus='virtio'/>
    </disk>
  </devices>
</domain>
"""


@pytest.fixture
def fake_host() -> type[FakeHost]:
    """The FakeHost class, for tests that build their own hosts."""
    return FakeHost


@pytest.fixture
def fake_process() -> type[FakeProcess]:
    return FakeProcess


@pytest.fixture
def make_domain_xml() -> Callable[[str, str], str]:
    return domain_xml


@pytest.fixture
def config() -> ZfsdomConfig:
    """Configuration without an identity file or host inventory."""
    return ZfsdomConfig(settings=ZfsdomSettings(ssh_identity_file="", ssh_user="root"))


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock that advances one second per call, starting 2026-01-02 03:04:05."""
    start = datetime(2026, 1, 2, 3, 4, 5)
    ticks = iter(range(10_000))
    return lambda: start + timedelta(seconds=next(ticks))


@pytest.fixture
def source_host() -> FakeHost:
    """Local source with tank/vm and snapshots a, b, c."""
    return FakeHost(
        "local",
        datasets={"tank": "/tank", "tank/vm": "/tank/vm"},
        snapshots={"tank/vm": ["a", "b", "c"]},
    )


@pytest.fixture
def destination_host() -> FakeHost:
    """host1 holding tank/vm with snapshots a, b."""
    return FakeHost(
        "host1",
        datasets={"tank": "/tank", "tank/vm": "/tank/vm"},
        snapshots={"tank/vm": ["a", "b"]},
    )


@pytest.fixture
def contexts(config, source_host, destination_host) -> FakeContextFactory:
    return FakeContextFactory({None: source_host, "host1": destination_host}, config)


@pytest.fixture
def engine(contexts, clock) -> ZFSTransfer:
    return ZFSTransfer(contexts, clock=clock)


@pytest.fixture
def transfer_service(contexts, engine) -> TransferService:
    return TransferService(contexts=contexts, engine=engine)


@pytest.fixture
def relocation_output() -> list[str]:
    return []


@pytest.fixture
def coordinator(transfer_service, relocation_output) -> MigrationCoordinator:
    return MigrationCoordinator(transfers=transfer_service, on_output=relocation_output.append)
