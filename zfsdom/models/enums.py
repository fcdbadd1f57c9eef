"""Enum definitions for zfsdom operations."""

from enum import Enum


class TransferMode(Enum):
    """How a dataset is sent."""

    FULL = "full"
    INCREMENTAL = "incremental"


class MigrationPhase(Enum):
    """Phases of a live domain relocation, in execution order."""

    VALIDATE_RUNNING = "validate_running"
    PRE_COPY = "pre_copy"
    CAPTURE_OWNERSHIP = "capture_ownership"
    DISABLE_AUTOSTART = "disable_autostart"
    REWRITE_DEFINITION = "rewrite_definition"
    SUSPEND_AND_RELOCATE = "suspend_and_relocate"
    FINAL_DELTA = "final_delta"
    FIX_DESTINATION_OWNERSHIP = "fix_destination_ownership"
    RESUME = "resume"
    ENABLE_AUTOSTART = "enable_autostart"


class MigrationState(Enum):
    """Terminal states of a relocation."""

    COMPLETED = "completed"
    ABORTED = "aborted"
