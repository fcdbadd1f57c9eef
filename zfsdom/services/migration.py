"""Live relocation of a libvirt domain whose disk lives on a ZFS dataset."""

import posixpath
from collections.abc import Awaitable, Callable

import structlog
from structlog.stdlib import BoundLogger

from ..constants import DEFINITION_FILE_TEMPLATE
from ..core.address import Address, parse_destination, parse_source
from ..core.config_loader import ZfsdomConfig
from ..core.context.base import LineCallback
from ..core.exceptions import ZfsdomError
from ..core.libvirt import rewrite_definition
from ..core.zfs.progress import ProgressCallback
from ..models.enums import MigrationPhase, MigrationState
from ..models.results import MigrationResult, PhaseResult
from .transfer import TransferService


class MigrationCoordinator:
    """Sequences pre-copy, suspend-and-relocate, final delta and resume.

    Nothing on the source domain is touched until the pre-copy succeeded.
    Once ``virsh migrate`` has returned successfully the relocation is
    committed: later phases are best-effort and only resume decides the
    reported outcome.
    """

    def __init__(
        self,
        transfers: TransferService | None = None,
        config: ZfsdomConfig | None = None,
        on_output: LineCallback | None = None,
    ):
        self.transfers = transfers or TransferService(config)
        self.contexts = self.transfers.contexts
        self.domains = self.transfers.domains
        self.resolver = self.transfers.resolver
        self.settings = self.contexts.config.settings
        self.logger: BoundLogger = structlog.get_logger().bind(component="migration_coordinator")
        self.on_output = on_output or self._log_output

    def _log_output(self, line: str) -> None:
        self.logger.info("virsh", output=line)

    async def migrate(
        self,
        source: str | Address,
        destination: str | Address,
        execute: bool = False,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> MigrationResult:
        """Relocate domain ``[HOST[:PORT]:]DOMAIN`` to ``HOST[:PORT][(ALTHOST)][:DATASET]``.

        Args:
            source: Domain on the source host
            destination: Destination host and optional dataset (asymmetric)
            execute: Perform the relocation; otherwise validate and dry-run the pre-copy
            force: Conflict policy for the pre-copy transfer
            on_progress: Progress callback for both storage transfers

        Returns:
            MigrationResult with one PhaseResult per executed phase
        """
        try:
            source_address = source if isinstance(source, Address) else parse_source(source)
            destination_address = (
                destination if isinstance(destination, Address) else parse_destination(destination)
            )
        except ZfsdomError as e:
            return MigrationResult(
                domain=str(source),
                source=str(source),
                destination=str(destination),
                dry_run=not execute,
                state=MigrationState.ABORTED,
                error=str(e),
            )

        result = MigrationResult(
            domain=source_address.attribute,
            source=str(source_address),
            destination=str(destination_address),
            dry_run=not execute,
        )
        try:
            await self._run(result, source_address, destination_address, execute, force, on_progress)
        except ZfsdomError as e:
            # Only reachable before relocation: later phases catch their own errors
            self._abort(result, str(e))
        return result

    async def _run(
        self,
        result: MigrationResult,
        source: Address,
        destination: Address,
        execute: bool,
        force: bool,
        on_progress: ProgressCallback | None,
    ) -> None:
        domain = result.domain

        # Phase 1: the domain must be running on the source
        async with self.contexts.open(source) as context:
            running = await self.domains.is_running(context, domain)
            disk_path = await self.domains.get_disk_path(context, domain) if running else None
        if not running:
            self._record(result, MigrationPhase.VALIDATE_RUNNING, False, f"domain {domain} is not running")
            return self._abort(result, f"domain {domain} is not running, aborting")
        if not disk_path:
            self._record(result, MigrationPhase.VALIDATE_RUNNING, False, "no disk path found")
            return self._abort(result, f"no disk path found for domain {domain}")
        self._record(result, MigrationPhase.VALIDATE_RUNNING, True, disk_path)
        disk_source = source.with_attribute(disk_path)

        # Phase 2: pre-copy while the domain keeps running
        result.pre_copy = await self.transfers.transfer_by_path(
            disk_source, destination, execute=execute, force=force, on_progress=on_progress
        )
        self._record(result, MigrationPhase.PRE_COPY, result.pre_copy.success, result.pre_copy.error or "")
        if not result.pre_copy.success:
            return self._abort(result, "snapshot transfer failed, aborting")

        # Phase 3: ownership of the disk file, reapplied on the destination
        async with self.contexts.open(source) as context:
            owner = await self.domains.file_owner(context, disk_path)
        self._record(result, MigrationPhase.CAPTURE_OWNERSHIP, owner is not None, owner or "unknown owner")

        if not execute:
            result.state = MigrationState.COMPLETED
            result.success = True
            return

        async with self.contexts.open(source) as context:
            # Phase 4: no restart on the source while it is being moved away
            disabled = await self.domains.set_autostart(context, domain, enabled=False)
            self._record(result, MigrationPhase.DISABLE_AUTOSTART, disabled.success, disabled.stderr.strip())
            if not disabled.success:
                return self._abort(result, f"could not disable autostart of {domain}")

            # Phase 5: asymmetric destinations need the storage path rewritten
            definition_path = await self._rewrite_definition(
                result, context, domain, disk_path, destination
            )
            if result.state is MigrationState.ABORTED:
                return

            # Phase 6: point of no return
            uri = self.settings.libvirt_uri_template.format(
                host=self.contexts.hypervisor_endpoint(destination)
            )
            handle = await self.domains.start_migration(context, domain, uri, definition_path)
            exit_code = await handle.stream(on_stdout=self.on_output, on_stderr=self.on_output)

        relocated = exit_code == 0
        self._record(result, MigrationPhase.SUSPEND_AND_RELOCATE, relocated, f"virsh exited with {exit_code}")
        if not relocated:
            self.logger.error("Relocation failed, domain stays suspended on source", domain=domain)
            return self._abort(result, f"virsh migrate exited with code {exit_code}")

        # Phase 7: writes made between pre-copy and suspension
        async def final_delta() -> tuple[bool, str]:
            result.final_delta = await self.transfers.transfer_by_path(
                disk_source, destination, execute=True, force=True, on_progress=on_progress
            )
            return result.final_delta.success, result.final_delta.error or ""

        await self._best_effort(result, MigrationPhase.FINAL_DELTA, final_delta)

        async def fix_ownership() -> tuple[bool, str]:
            if owner is None:
                return False, "source owner unknown"
            async with self.contexts.open(destination) as context:
                path = await self.domains.get_disk_path(context, domain) or disk_path
                outcome = await self.domains.set_owner(context, path, owner)
            return outcome.success, outcome.stderr.strip() or f"{path} -> {owner}"

        await self._best_effort(result, MigrationPhase.FIX_DESTINATION_OWNERSHIP, fix_ownership)

        async def resume() -> tuple[bool, str]:
            async with self.contexts.open(destination) as context:
                outcome = await self.domains.resume(context, domain)
            return outcome.success, outcome.stderr.strip()

        resumed = await self._best_effort(result, MigrationPhase.RESUME, resume)

        async def enable_autostart() -> tuple[bool, str]:
            async with self.contexts.open(destination) as context:
                outcome = await self.domains.set_autostart(context, domain, enabled=True)
            return outcome.success, outcome.stderr.strip()

        await self._best_effort(result, MigrationPhase.ENABLE_AUTOSTART, enable_autostart)

        result.success = resumed
        result.state = MigrationState.COMPLETED if resumed else MigrationState.ABORTED
        if not resumed:
            result.error = f"domain {domain} was relocated but could not be resumed"
        self.logger.info("Domain migration finished", domain=domain, success=resumed)

    async def _rewrite_definition(
        self, result: MigrationResult, context, domain: str, disk_path: str, destination: Address
    ) -> str | None:
        """Stage a rewritten definition on the source; None when paths are symmetric."""
        source_dir = posixpath.dirname(disk_path)
        destination_dir = None
        if destination.attribute:
            destination_dir = await self._destination_directory(
                destination, result.pre_copy.destination_dataset or destination.attribute
            )

        if not destination_dir or destination_dir == source_dir:
            self._record(result, MigrationPhase.REWRITE_DEFINITION, True, "symmetric, not needed")
            return None

        definition = await self.domains.dump_definition(context, domain)
        definition_path = posixpath.join(
            self.settings.definition_dir, DEFINITION_FILE_TEMPLATE.format(domain=domain)
        )
        written = await self.domains.write_definition(
            context, definition_path, rewrite_definition(definition, source_dir, destination_dir)
        )
        self._record(
            result,
            MigrationPhase.REWRITE_DEFINITION,
            written.success,
            f"{source_dir} -> {destination_dir}" if written.success else written.stderr.strip(),
        )
        if not written.success:
            self._abort(result, f"could not stage definition at {definition_path}")
            return None
        return definition_path

    async def _destination_directory(self, destination: Address, dataset: str) -> str:
        """Mount directory of the destination dataset."""
        async with self.contexts.open(destination) as context:
            mountpoint = await self.resolver.mountpoint(context, dataset)
        return mountpoint or f"/{dataset.strip('/')}"

    async def _best_effort(
        self,
        result: MigrationResult,
        phase: MigrationPhase,
        step: Callable[[], Awaitable[tuple[bool, str]]],
    ) -> bool:
        """Run a post-relocation phase; failures are recorded, never raised."""
        try:
            success, detail = await step()
        except ZfsdomError as e:
            success, detail = False, str(e)
        self._record(result, phase, success, detail)
        return success

    def _record(self, result: MigrationResult, phase: MigrationPhase, success: bool, detail: str) -> None:
        result.phases.append(PhaseResult(phase=phase, success=success, detail=detail))
        log = self.logger.info if success else self.logger.error
        log("Migration phase", domain=result.domain, phase=phase.value, success=success, detail=detail)

    def _abort(self, result: MigrationResult, error: str) -> None:
        result.state = MigrationState.ABORTED
        result.success = False
        result.error = error
        self.logger.error("Domain migration aborted", domain=result.domain, error=error)
