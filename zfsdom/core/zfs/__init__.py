"""Dataset engine operations: identity, snapshot history and send/receive."""

from .progress import SendProgressParser  # noqa: F401
from .resolver import DatasetResolver  # noqa: F401
from .snapshots import SnapshotHistory, find_latest_common  # noqa: F401
from .transfer import ZFSTransfer  # noqa: F401

__all__ = [
    "DatasetResolver",
    "SendProgressParser",
    "SnapshotHistory",
    "ZFSTransfer",
    "find_latest_common",
]
