"""Dataset identity resolution by name, mount point or domain disk."""

import posixpath
import re
import shlex

import structlog

from ...constants import ZFS
from ..context import ExecutionContext
from ..exceptions import ZFSError
from ..libvirt import DomainControl

logger = structlog.get_logger()

LIST_COMMAND = f"{ZFS} list -H -o name,mountpoint"
FIELDS = ("name", "mountpoint")


class DatasetResolver:
    """Maps names, file paths and domains to canonical dataset names.

    Every lookup returns None when nothing matches; a failing ``zfs list``
    raises ZFSError so that "not found" and "could not look" stay distinct.
    """

    def __init__(self, domains: DomainControl | None = None):
        self.logger = logger.bind(component="dataset_resolver")
        self.domains = domains or DomainControl()

    async def list_datasets(self, context: ExecutionContext) -> list[dict[str, str]]:
        """All datasets visible on the context, in engine listing order."""
        result = await context.run(LIST_COMMAND)
        if not result.success:
            raise ZFSError(f"zfs list failed on {context.name}: {result.stderr.strip()}")

        datasets = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            values = line.split("\t")
            datasets.append(dict(zip(FIELDS, values + [""] * (len(FIELDS) - len(values)))))
        return datasets

    async def find_by_pattern(
        self, context: ExecutionContext, pattern: str | re.Pattern, field: str = "name"
    ) -> str | None:
        """Return the last listed dataset whose ``field`` matches ``pattern``."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        match = None
        for dataset in await self.list_datasets(context):
            if regex.search(dataset.get(field, "")):
                match = dataset["name"]
        self.logger.debug(
            "Dataset lookup", context=context.name, pattern=regex.pattern, field=field, found=match
        )
        return match

    async def by_name(self, context: ExecutionContext, name: str) -> str | None:
        """Dataset whose name ends with ``name`` at a path-segment boundary."""
        name = name.strip("/")
        if not name:
            return None
        return await self.find_by_pattern(context, rf"(?:^|/){re.escape(name)}$")

    async def by_mount_point(self, context: ExecutionContext, path: str) -> str | None:
        """Dataset mounted at the directory that contains ``path``."""
        directory = posixpath.dirname(path.rstrip("/")) or "/"
        return await self.find_by_pattern(context, rf"^{re.escape(directory)}$", field="mountpoint")

    async def by_domain_disk(self, context: ExecutionContext, domain: str) -> str | None:
        """Dataset holding the primary disk file of a libvirt domain."""
        disk_path = await self.domains.get_disk_path(context, domain)
        if not disk_path:
            return None
        return await self.by_mount_point(context, disk_path)

    async def mountpoint(self, context: ExecutionContext, dataset: str) -> str | None:
        """The ``mountpoint`` property of a dataset, None if unset or unknown."""
        result = await context.run(f"{ZFS} get -H -o value mountpoint {shlex.quote(dataset)}")
        value = result.stdout.strip()
        if not result.success or not value.startswith("/"):
            return None
        return value
