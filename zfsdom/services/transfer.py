"""Transfer entry points: by dataset name, by file path and by domain."""

import structlog

from ..core.address import Address, parse_destination, parse_host, parse_source
from ..core.config_loader import ZfsdomConfig
from ..core.context import ContextFactory
from ..core.exceptions import ZfsdomError
from ..core.libvirt import DomainControl
from ..core.zfs import ZFSTransfer
from ..core.zfs.progress import ProgressCallback
from ..models.results import DomainInfo, TransferResult

logger = structlog.get_logger()


class TransferService:
    """Resolves a source dataset identity, then hands off to the transfer engine."""

    def __init__(
        self,
        config: ZfsdomConfig | None = None,
        contexts: ContextFactory | None = None,
        engine: ZFSTransfer | None = None,
    ):
        self.contexts = contexts or ContextFactory(config)
        self.engine = engine or ZFSTransfer(self.contexts)
        self.resolver = self.engine.resolver
        self.domains: DomainControl = self.resolver.domains
        self.logger = logger.bind(component="transfer_service")

    async def transfer_by_dataset(
        self,
        source: str | Address,
        destination: str | Address,
        execute: bool = False,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> TransferResult:
        """Transfer a dataset named ``[HOST[:PORT]:]DATASET``."""
        return await self._transfer(
            "dataset", source, destination, execute, force, on_progress
        )

    async def transfer_by_path(
        self,
        source: str | Address,
        destination: str | Address,
        execute: bool = False,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> TransferResult:
        """Transfer the dataset mounted at the directory of ``[HOST[:PORT]:]PATH``."""
        return await self._transfer("path", source, destination, execute, force, on_progress)

    async def transfer_by_domain(
        self,
        source: str | Address,
        destination: str | Address,
        execute: bool = False,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> TransferResult:
        """Transfer the dataset holding the disk of domain ``[HOST[:PORT]:]DOMAIN``."""
        return await self._transfer("domain", source, destination, execute, force, on_progress)

    async def list_domains(self, host: str | None = None, show_all: bool = False) -> list[DomainInfo]:
        """Domains on ``HOST[:PORT]`` (local when omitted)."""
        async with self.contexts.open(parse_host(host)) as context:
            return await self.domains.list_domains(context, show_all=show_all)

    async def _transfer(
        self,
        kind: str,
        source: str | Address,
        destination: str | Address,
        execute: bool,
        force: bool,
        on_progress: ProgressCallback | None,
    ) -> TransferResult:
        try:
            source_address = source if isinstance(source, Address) else parse_source(source)
            destination_address = (
                destination if isinstance(destination, Address) else parse_destination(destination)
            )
        except ZfsdomError as e:
            return TransferResult.failed(str(source), str(destination), str(e), dry_run=not execute)

        try:
            dataset, miss = await self._resolve_source(kind, source_address)
            if not dataset:
                self.logger.error("Source dataset not found", source=str(source_address), kind=kind)
                return TransferResult.failed(
                    str(source_address), str(destination_address), miss, dry_run=not execute
                )

            self.logger.info(
                "Source dataset found",
                host=source_address.host_port or "local",
                dataset=dataset,
            )
            return await self.engine.transfer(
                source_address.with_attribute(dataset),
                destination_address,
                execute=execute,
                force=force,
                on_progress=on_progress,
            )
        except ZfsdomError as e:
            self.logger.error("Transfer failed", source=str(source_address), error=str(e))
            return TransferResult.failed(
                str(source_address), str(destination_address), str(e), dry_run=not execute
            )

    async def _resolve_source(self, kind: str, source: Address) -> tuple[str | None, str]:
        """Dataset for the source, plus the diagnostic to show when there is none."""
        location = source.host_port or "local host"
        async with self.contexts.open(source) as context:
            if kind == "dataset":
                dataset = await self.resolver.by_name(context, source.attribute)
                return dataset, f"no zfs dataset found for '{source.attribute}' on {location}"

            if kind == "path":
                dataset = await self.resolver.by_mount_point(context, source.attribute)
                return dataset, f"no zfs dataset found for '{source.attribute}' on {location}"

            disk_path = await self.domains.get_disk_path(context, source.attribute)
            if not disk_path:
                return None, (
                    f"no disk path found for '{source.attribute}' "
                    f"(does the domain exist on {location}?)"
                )
            dataset = await self.resolver.by_mount_point(context, disk_path)
            return dataset, f"no zfs dataset found for '{disk_path}' on {location}"
