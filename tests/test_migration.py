"""Tests for live domain migration sequencing."""

import re

import pytest

from zfsdom.core.exceptions import TransportError
from zfsdom.models.enums import MigrationPhase, MigrationState

DISK = "/tank/vm/vm1.qcow2"


@pytest.fixture
def running_domain(source_host, destination_host, make_domain_xml):
    """vm1 running on the local source, disk on tank/vm; host1 accepts everything."""
    definition = make_domain_xml("vm1", DISK)
    source_host.on(r"^virsh list --name$", stdout="vm1\nother\n")
    source_host.on(r"^virsh dumpxml vm1$", stdout=definition)
    source_host.on(r"^stat -c", stdout="libvirt-qemu:kvm\n")
    source_host.on_spawn(r"^virsh migrate", stdout=["Migration: [ 50 %]", "Migration: [100 %]"])
    destination_host.on(r"^virsh dumpxml vm1$", stdout=definition)
    return definition


def phases(result):
    return [(record.phase, record.success) for record in result.phases]


@pytest.mark.asyncio
class TestMigrationDryRun:
    """Validation and pre-copy check only."""

    async def test_dry_run(self, coordinator, running_domain, source_host, destination_host):
        result = await coordinator.migrate("vm1", "host1")

        assert result.success is True
        assert result.dry_run is True
        assert result.state == MigrationState.COMPLETED
        assert phases(result) == [
            (MigrationPhase.VALIDATE_RUNNING, True),
            (MigrationPhase.PRE_COPY, True),
            (MigrationPhase.CAPTURE_OWNERSHIP, True),
        ]
        assert result.pre_copy.basis_snapshot == "b"
        assert source_host.spawned == []
        assert source_host.ran(r"autostart|zfs snapshot") == []
        assert destination_host.ran(r"resume|chown") == []


@pytest.mark.asyncio
class TestMigrationExecute:
    """Full relocation sequence."""

    async def test_symmetric_migration(
        self, coordinator, running_domain, source_host, destination_host, relocation_output
    ):
        result = await coordinator.migrate("vm1", "host1", execute=True)

        assert result.success is True
        assert result.state == MigrationState.COMPLETED
        assert phases(result) == [
            (MigrationPhase.VALIDATE_RUNNING, True),
            (MigrationPhase.PRE_COPY, True),
            (MigrationPhase.CAPTURE_OWNERSHIP, True),
            (MigrationPhase.DISABLE_AUTOSTART, True),
            (MigrationPhase.REWRITE_DEFINITION, True),
            (MigrationPhase.SUSPEND_AND_RELOCATE, True),
            (MigrationPhase.FINAL_DELTA, True),
            (MigrationPhase.FIX_DESTINATION_OWNERSHIP, True),
            (MigrationPhase.RESUME, True),
            (MigrationPhase.ENABLE_AUTOSTART, True),
        ]

        zfs_sends = source_host.ran(r"^zfs send")
        migrations = source_host.ran(r"^virsh migrate")
        assert len(zfs_sends) == 2
        assert migrations == [
            "virsh migrate --live --suspend --persistent --verbose --unsafe "
            "vm1 qemu+ssh://root@host1/system"
        ]
        # Pre-copy, relocation and final delta run in that order
        order = source_host.spawned
        assert order.index(zfs_sends[0]) < order.index(migrations[0]) < order.index(zfs_sends[1])
        assert "-F" not in zfs_sends[0]
        assert "zfs recv -F" in zfs_sends[1]

        assert source_host.ran(r"^virsh autostart vm1 --disable$")
        assert destination_host.ran(r"^chown libvirt-qemu:kvm /tank/vm/vm1.qcow2$")
        assert destination_host.ran(r"^virsh resume vm1$")
        assert destination_host.ran(r"^virsh autostart vm1$")
        assert relocation_output == ["Migration: [ 50 %]", "Migration: [100 %]"]

    async def test_asymmetric_migration_rewrites_definition(
        self, coordinator, running_domain, source_host, destination_host
    ):
        destination_host.datasets["backup"] = "/backup"

        result = await coordinator.migrate("vm1", "host1:backup/vm1", execute=True)

        assert result.success is True
        rewrite = result.phase(MigrationPhase.REWRITE_DEFINITION)
        assert rewrite.detail == "/tank/vm -> /backup/vm1"

        staged = source_host.stdin["cat > /tmp/zfsdom-vm1.xml"]
        assert "<source file='/backup/vm1/vm1.qcow2'/>" in staged
        assert source_host.ran(
            r"^virsh migrate .* --persistent-xml /tmp/zfsdom-vm1.xml --xml /tmp/zfsdom-vm1.xml vm1 "
        )
        assert source_host.ran(r"zfs recv backup/vm1$")

    async def test_destination_mountpoint_used_for_rewrite(
        self, coordinator, running_domain, source_host, destination_host
    ):
        destination_host.datasets["backup/vm1"] = "/srv/vms/vm1"
        destination_host.snapshots["backup/vm1"] = ["b"]

        await coordinator.migrate("vm1", "host1:backup/vm1", execute=True)

        staged = source_host.stdin["cat > /tmp/zfsdom-vm1.xml"]
        assert "<source file='/srv/vms/vm1/vm1.qcow2'/>" in staged

    async def test_short_destination_name_uses_resolved_mountpoint(
        self, coordinator, running_domain, source_host, destination_host
    ):
        destination_host.datasets["tank/vm"] = "/srv/vm"

        result = await coordinator.migrate("vm1", "host1:vm", execute=True)

        assert result.pre_copy.destination_dataset == "tank/vm"
        assert result.phase(MigrationPhase.REWRITE_DEFINITION).detail == "/tank/vm -> /srv/vm"
        assert destination_host.ran(r"^zfs get -H -o value mountpoint tank/vm$")
        assert source_host.ran(r"zfs recv tank/vm$")

    async def test_alternate_host_used_for_hypervisor(self, coordinator, running_domain, source_host):
        await coordinator.migrate("vm1", "host1(10.0.0.5)", execute=True)

        assert source_host.ran(r"vm1 qemu\+ssh://root@10\.0\.0\.5/system$")
        assert source_host.ran(r"root@10\.0\.0\.5 zfs recv tank/vm$")


@pytest.mark.asyncio
class TestMigrationAborts:
    """Failures before and at relocation leave the source in charge."""

    async def test_domain_not_running(self, coordinator, source_host):
        source_host.on(r"^virsh list --name$", stdout="other\n")

        result = await coordinator.migrate("vm1", "host1", execute=True)

        assert result.success is False
        assert result.state == MigrationState.ABORTED
        assert phases(result) == [(MigrationPhase.VALIDATE_RUNNING, False)]
        assert "not running" in result.error
        assert source_host.spawned == []

    async def test_no_disk_path(self, coordinator, source_host):
        source_host.on(r"^virsh list --name$", stdout="vm1\n")
        source_host.on(r"^virsh dumpxml vm1$", stdout="<domain><devices/></domain>")

        result = await coordinator.migrate("vm1", "host1", execute=True)

        assert result.state == MigrationState.ABORTED
        assert "no disk path" in result.error

    async def test_pre_copy_failure_touches_nothing(
        self, coordinator, running_domain, source_host, destination_host
    ):
        # Destination exists but shares no snapshot: refused without force
        destination_host.snapshots["tank/vm"] = ["x"]

        result = await coordinator.migrate("vm1", "host1", execute=True)

        assert result.success is False
        assert result.state == MigrationState.ABORTED
        assert result.phase(MigrationPhase.PRE_COPY).success is False
        assert result.error == "snapshot transfer failed, aborting"
        assert source_host.ran(r"autostart") == []
        assert source_host.ran(r"^virsh migrate") == []
        assert destination_host.ran(r"resume") == []

    async def test_pre_copy_send_failure(self, coordinator, running_domain, source_host):
        source_host.on_spawn(r"^zfs send", stderr=["cannot receive: out of space"], exit_code=1)

        result = await coordinator.migrate("vm1", "host1", execute=True)

        assert result.state == MigrationState.ABORTED
        assert result.pre_copy.error == "cannot receive: out of space"
        assert source_host.ran(r"autostart") == []

    async def test_autostart_failure_aborts(self, coordinator, running_domain, source_host):
        source_host.on(r"^virsh autostart", returncode=1, stderr="operation not permitted")

        result = await coordinator.migrate("vm1", "host1", execute=True)

        assert result.state == MigrationState.ABORTED
        assert result.phase(MigrationPhase.DISABLE_AUTOSTART).success is False
        assert source_host.ran(r"^virsh migrate") == []

    async def test_relocation_failure(self, coordinator, running_domain, source_host, destination_host):
        source_host.spawn_responses.clear()
        source_host.on_spawn(r"^virsh migrate", stderr=["error: operation failed"], exit_code=1)

        result = await coordinator.migrate("vm1", "host1", execute=True)

        assert result.success is False
        assert result.state == MigrationState.ABORTED
        assert result.phase(MigrationPhase.SUSPEND_AND_RELOCATE).success is False
        assert result.final_delta is None
        assert len(source_host.ran(r"^zfs send")) == 1
        assert destination_host.ran(r"resume|chown") == []

    async def test_transport_error_becomes_result(self, coordinator, source_host):
        async def refuse():
            raise TransportError("Failed to connect to root@host1:22")

        source_host.open = refuse

        result = await coordinator.migrate("vm1", "host1", execute=True)

        assert result.state == MigrationState.ABORTED
        assert "Failed to connect" in result.error


@pytest.mark.asyncio
class TestPostRelocation:
    """After relocation the outcome depends on resume alone."""

    async def test_final_delta_failure_is_recorded(
        self, coordinator, running_domain, source_host, fake_process
    ):
        exit_codes = iter([0, 1])
        source_host.spawn_responses.insert(
            0,
            (
                re.compile(r"^zfs send"),
                lambda: fake_process(stderr=["cannot receive: stream truncated"], exit_code=next(exit_codes)),
            ),
        )

        result = await coordinator.migrate("vm1", "host1", execute=True)

        assert result.success is True
        assert result.final_delta.error == "cannot receive: stream truncated"
        assert result.phase(MigrationPhase.FINAL_DELTA).success is False
        assert result.phase(MigrationPhase.RESUME).success is True

    async def test_resume_failure(self, coordinator, running_domain, destination_host):
        destination_host.on(r"^virsh resume", returncode=1, stderr="domain is not paused")

        result = await coordinator.migrate("vm1", "host1", execute=True)

        assert result.success is False
        assert result.state == MigrationState.ABORTED
        assert result.phase(MigrationPhase.RESUME).detail == "domain is not paused"
        # Autostart is still attempted
        assert result.phase(MigrationPhase.ENABLE_AUTOSTART).success is True

    async def test_ownership_failure_does_not_block_resume(
        self, coordinator, running_domain, destination_host
    ):
        destination_host.on(r"^chown", returncode=1, stderr="invalid user")

        result = await coordinator.migrate("vm1", "host1", execute=True)

        assert result.success is True
        assert result.phase(MigrationPhase.FIX_DESTINATION_OWNERSHIP).success is False
