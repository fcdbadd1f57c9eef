"""ZFS send/receive transfer implementation for incremental dataset replication."""

import posixpath
import shlex
from collections.abc import Callable
from datetime import datetime

import structlog

from ...constants import SNAPSHOT_SEPARATOR, ZFS
from ...models.enums import TransferMode
from ...models.results import TransferResult
from ...utils import format_size
from ..address import Address
from ..context import ContextFactory
from ..exceptions import ZFSError
from .progress import ProgressCallback, SendProgressParser
from .resolver import DatasetResolver
from .snapshots import SnapshotHistory

logger = structlog.get_logger()


class ZFSTransfer:
    """Transfer one dataset between hosts using ZFS send/receive.

    The send runs on the source host and is piped into ``ssh ... zfs recv``
    towards the destination (or its alternate data-plane host).
    """

    def __init__(
        self,
        contexts: ContextFactory | None = None,
        resolver: DatasetResolver | None = None,
        history: SnapshotHistory | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.logger = logger.bind(component="zfs_transfer")
        self.contexts = contexts or ContextFactory()
        self.resolver = resolver or DatasetResolver()
        self.history = history or SnapshotHistory(self.contexts)
        self.clock = clock

    def get_transfer_type(self) -> str:
        """Get the name/type of this transfer method."""
        return "zfs"

    def build_command(
        self,
        source: Address,
        destination: Address,
        snapshot: str,
        destination_dataset: str,
        basis: str | None = None,
        force: bool = False,
    ) -> str:
        """Build the ``zfs send | ssh zfs recv`` pipeline run on the source host.

        Args:
            source: Source address (attribute is the dataset)
            destination: Destination address
            snapshot: Full name of the snapshot to send
            destination_dataset: Receiving dataset
            basis: Label of the incremental basis, None for a full send
            force: Roll back / overwrite the receiving dataset

        Returns:
            Shell pipeline string
        """
        send_cmd = [ZFS, "send", "-v"]
        if basis:
            send_cmd.extend(["-i", f"{source.attribute}{SNAPSHOT_SEPARATOR}{basis}"])
        send_cmd.append(snapshot)

        recv_cmd = self.contexts.data_plane_command(destination, from_remote=source.is_remote)
        recv_cmd.extend([ZFS, "recv"])
        if force:
            recv_cmd.append("-F")
        recv_cmd.append(destination_dataset)

        return f"{shlex.join(send_cmd)} | {shlex.join(recv_cmd)}"

    async def transfer(
        self,
        source: Address,
        destination: Address,
        execute: bool = False,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> TransferResult:
        """Transfer the source dataset to the destination.

        Args:
            source: ``[HOST[:PORT]:]DATASET`` of an existing source dataset
            destination: ``HOST[:PORT][(ALTHOST)][:DATASET]``; without a
                dataset the source name is reused
            execute: Actually snapshot and send; otherwise only report
            force: Let the receiver discard conflicting destination state
            on_progress: Called with (transferred_bytes, total_bytes)

        Returns:
            TransferResult with findings and, when executed, the outcome
        """
        source_dataset = source.attribute
        destination_dataset = destination.attribute or source_dataset
        result = TransferResult(
            success=False,
            dry_run=not execute,
            source=str(source),
            destination=str(destination),
            source_dataset=source_dataset,
            destination_dataset=destination_dataset,
        )

        async with self.contexts.open(destination) as destination_context:
            found = await self.resolver.by_name(destination_context, destination_dataset)
            if found:
                # A suffix like "vm" names the full dataset it matched
                destination_dataset = result.destination_dataset = found
            result.basis_snapshot = await self.history.latest_common(
                destination_context, source, source_dataset, destination_dataset
            )
            result.destination_found = found is not None
            if not found:
                parent = posixpath.dirname(destination_dataset)
                result.destination_parent = parent or None
                if parent:
                    parent_found = await self.resolver.by_name(destination_context, parent)
                    result.destination_parent_found = parent_found is not None

        result.mode = TransferMode.INCREMENTAL if result.basis_snapshot else TransferMode.FULL
        self.logger.info(
            "Transfer plan",
            source=result.source,
            destination=result.destination,
            destination_found=result.destination_found,
            destination_parent_found=result.destination_parent_found,
            basis_snapshot=result.basis_snapshot,
            mode=result.mode.value,
            execute=execute,
        )

        if not execute:
            result.success = True
            return result

        if result.destination_found and not result.basis_snapshot and not force:
            result.error = (
                f"destination dataset {destination_dataset} exists but shares no snapshot "
                f"with {source_dataset}; use force to discard its contents"
            )
            self.logger.error("Refusing full send onto existing dataset", dataset=destination_dataset)
            return result

        return await self._send_receive(source, destination, result, force, on_progress)

    async def _send_receive(
        self,
        source: Address,
        destination: Address,
        result: TransferResult,
        force: bool,
        on_progress: ProgressCallback | None,
    ) -> TransferResult:
        """Snapshot the source and stream it into the destination."""
        label = self.clock().strftime(self.contexts.config.settings.snapshot_label_format)

        async with self.contexts.open(source) as source_context:
            try:
                created = await self.history.create(source_context, result.source_dataset, label)
                latest = await self.history.latest(source_context, result.source_dataset)
            except ZFSError as e:
                result.error = str(e)
                return result

            result.snapshot = latest.name if latest else created
            result.command = self.build_command(
                source,
                destination,
                result.snapshot,
                result.destination_dataset,
                basis=result.basis_snapshot,
                force=force,
            )
            self.logger.info("Starting ZFS send/receive", command=result.command)

            parser = SendProgressParser(on_progress=on_progress)
            handle = await source_context.spawn(result.command)
            result.exit_code = await handle.stream(on_stderr=parser.feed)

        result.total_bytes = parser.total_bytes
        result.transferred_bytes = parser.transferred_bytes
        result.success = result.exit_code == 0

        if result.success:
            self.logger.info(
                "ZFS send/receive completed",
                snapshot=result.snapshot,
                destination_dataset=result.destination_dataset,
                total=format_size(result.total_bytes or 0),
            )
        else:
            result.error = parser.failure_detail() or f"send/receive exited with {result.exit_code}"
            self.logger.error(
                "ZFS send/receive failed",
                snapshot=result.snapshot,
                exit_code=result.exit_code,
                error=result.error,
            )
        return result
