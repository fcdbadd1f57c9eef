"""Snapshot history of datasets on one or two hosts."""

import shlex
from collections.abc import Sequence

import structlog

from ...constants import SNAPSHOT_SEPARATOR, ZFS
from ...models.results import Snapshot
from ..address import Address
from ..context import ContextFactory, ExecutionContext
from ..exceptions import ZFSError

logger = structlog.get_logger()

MISSING_DATASET_MARKER = "dataset does not exist"


def find_latest_common(source_labels: Sequence[str], destination_labels: Sequence[str]) -> str | None:
    """Newest destination label that also exists anywhere in the source history."""
    available = set(source_labels)
    for label in reversed(destination_labels):
        if label in available:
            return label
    return None


class SnapshotHistory:
    """Lists snapshots and finds transfer bases."""

    def __init__(self, contexts: ContextFactory | None = None):
        self.logger = logger.bind(component="snapshot_history")
        self.contexts = contexts or ContextFactory()

    async def list(self, context: ExecutionContext, dataset: str) -> list[Snapshot]:
        """Snapshots of ``dataset`` only (no children), oldest first.

        A dataset that does not exist has an empty history.
        """
        command = (
            f"{ZFS} list -H -d 1 -t snapshot -o name -s createtxg {shlex.quote(dataset)}"
        )
        result = await context.run(command)
        if not result.success:
            if MISSING_DATASET_MARKER in result.stderr:
                return []
            raise ZFSError(
                f"Listing snapshots of {dataset} on {context.name} failed: {result.stderr.strip()}"
            )

        snapshots = []
        for line in result.stdout.splitlines():
            name, separator, label = line.strip().partition(SNAPSHOT_SEPARATOR)
            if not separator or name != dataset:
                continue
            snapshots.append(Snapshot(dataset=dataset, label=label, ordinal=len(snapshots)))
        return snapshots

    async def latest(self, context: ExecutionContext, dataset: str) -> Snapshot | None:
        snapshots = await self.list(context, dataset)
        return snapshots[-1] if snapshots else None

    async def create(self, context: ExecutionContext, dataset: str, label: str) -> str:
        """Take ``dataset@label`` and return its full name."""
        full_snapshot = f"{dataset}{SNAPSHOT_SEPARATOR}{label}"
        self.logger.info("Creating ZFS snapshot", snapshot=full_snapshot, context=context.name)
        result = await context.run(f"{ZFS} snapshot {shlex.quote(full_snapshot)}")
        if not result.success:
            raise ZFSError(f"Failed to create snapshot {full_snapshot}: {result.stderr.strip()}")
        return full_snapshot

    async def latest_common(
        self,
        destination_context: ExecutionContext,
        source: Address | ExecutionContext,
        source_dataset: str,
        destination_dataset: str | None = None,
    ) -> str | None:
        """Label of the newest destination snapshot also present on the source.

        When ``source`` is an address, a context for it is opened only for the
        listing and closed before the destination is queried.
        """
        destination_dataset = destination_dataset or source_dataset

        if isinstance(source, ExecutionContext):
            source_snapshots = await self.list(source, source_dataset)
        else:
            async with self.contexts.open(source) as source_context:
                source_snapshots = await self.list(source_context, source_dataset)

        destination_snapshots = await self.list(destination_context, destination_dataset)

        common = find_latest_common(
            [snapshot.label for snapshot in source_snapshots],
            [snapshot.label for snapshot in destination_snapshots],
        )
        self.logger.info(
            "Latest common snapshot",
            source_dataset=source_dataset,
            destination_dataset=destination_dataset,
            source_count=len(source_snapshots),
            destination_count=len(destination_snapshots),
            common=common,
        )
        return common
