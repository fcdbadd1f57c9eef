"""Data models for zfsdom."""

from .enums import MigrationPhase, MigrationState, TransferMode  # noqa: F401
from .results import (  # noqa: F401
    DomainInfo,
    MigrationResult,
    PhaseResult,
    Snapshot,
    TransferResult,
)

__all__ = [
    # Enums
    "MigrationPhase",
    "MigrationState",
    "TransferMode",
    # Results
    "DomainInfo",
    "MigrationResult",
    "PhaseResult",
    "Snapshot",
    "TransferResult",
]
