"""Libvirt domain control through ``virsh`` on an execution context."""

import shlex
import xml.etree.ElementTree as ET

import structlog

from ..constants import MIGRATE_FLAGS, VIRSH
from ..models.results import DomainInfo
from .context import CommandResult, ExecutionContext, ProcessHandle
from .exceptions import DomainError

logger = structlog.get_logger()


def _virsh(*args: str, uri: str | None = None) -> str:
    parts = [VIRSH]
    if uri:
        parts.extend(["-c", uri])
    parts.extend(args)
    return shlex.join(parts)


class DomainControl:
    """Opaque workload-control commands; only exit codes and text are interpreted."""

    def __init__(self):
        self.logger = logger.bind(component="domain_control")

    async def list_domains(self, context: ExecutionContext, show_all: bool = False) -> list[DomainInfo]:
        """Parse ``virsh list`` into id/name/state records."""
        command = _virsh("list", "--all") if show_all else _virsh("list")
        result = await context.run(command)
        if not result.success:
            raise DomainError(f"virsh list failed on {context.name}: {result.stderr.strip()}")

        domains = []
        # Skip the two header lines (" Id  Name  State" and the dashes)
        for line in result.stdout.splitlines()[2:]:
            fields = line.split(None, 2)
            if len(fields) < 2:
                continue
            domain_id, name = fields[0], fields[1]
            state = fields[2].strip() if len(fields) > 2 else ""
            domains.append(DomainInfo(id=domain_id, name=name, state=state))
        return domains

    async def is_running(self, context: ExecutionContext, domain: str) -> bool:
        result = await context.run(_virsh("list", "--name"))
        if not result.success:
            raise DomainError(f"virsh list failed on {context.name}: {result.stderr.strip()}")
        return domain in {line.strip() for line in result.stdout.splitlines()}

    async def dump_definition(self, context: ExecutionContext, domain: str) -> str:
        result = await context.run(_virsh("dumpxml", domain))
        if not result.success:
            raise DomainError(f"virsh dumpxml {domain} failed: {result.stderr.strip()}")
        return result.stdout

    async def get_disk_path(self, context: ExecutionContext, domain: str) -> str | None:
        """File path of the domain's first file-backed disk, None if unknown."""
        try:
            definition = await self.dump_definition(context, domain)
        except DomainError as e:
            self.logger.debug("No definition for domain", domain=domain, error=str(e))
            return None
        return disk_path_from_definition(definition)

    async def file_owner(self, context: ExecutionContext, path: str) -> str | None:
        """``user:group`` owning ``path``."""
        result = await context.run(f"stat -c '%U:%G' {shlex.quote(path)}")
        owner = result.stdout.strip()
        if not result.success or ":" not in owner:
            return None
        return owner

    async def set_owner(self, context: ExecutionContext, path: str, owner: str) -> CommandResult:
        return await context.run(f"chown {shlex.quote(owner)} {shlex.quote(path)}")

    async def set_autostart(
        self, context: ExecutionContext, domain: str, enabled: bool = True
    ) -> CommandResult:
        args = ["autostart", domain] if enabled else ["autostart", domain, "--disable"]
        return await context.run(_virsh(*args))

    async def write_definition(
        self, context: ExecutionContext, path: str, definition: str
    ) -> CommandResult:
        return await context.run(f"cat > {shlex.quote(path)}", stdin=definition)

    async def start_migration(
        self,
        context: ExecutionContext,
        domain: str,
        destination_uri: str,
        definition_path: str | None = None,
    ) -> ProcessHandle:
        """Start ``virsh migrate --live --suspend`` and return its stream."""
        args = ["migrate", *MIGRATE_FLAGS]
        if definition_path:
            args.extend(["--persistent-xml", definition_path, "--xml", definition_path])
        args.extend([domain, destination_uri])
        command = _virsh(*args)
        self.logger.info("Starting suspended live migration", domain=domain, command=command)
        return await context.spawn(command)

    async def resume(self, context: ExecutionContext, domain: str) -> CommandResult:
        return await context.run(_virsh("resume", domain))


def disk_path_from_definition(definition: str) -> str | None:
    """Extract the first disk ``<source file=...>`` from domain XML."""
    try:
        root = ET.fromstring(definition)
    except ET.ParseError:
        return None

    disks = root.findall("./devices/disk")
    # Prefer real disks over cdrom/floppy images
    disks.sort(key=lambda disk: disk.get("device", "disk") != "disk")
    for disk in disks:
        source = disk.find("source")
        if source is not None and source.get("file"):
            return source.get("file")
    return None


def rewrite_definition(definition: str, source_dir: str, destination_dir: str) -> str:
    """Point every storage path under ``source_dir`` at ``destination_dir``."""
    source_dir = source_dir.rstrip("/")
    destination_dir = destination_dir.rstrip("/")
    return definition.replace(f"{source_dir}/", f"{destination_dir}/")
