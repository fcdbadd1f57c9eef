"""Structured results returned by transfer and migration operations."""

from pydantic import BaseModel, ConfigDict, Field

from .enums import MigrationPhase, MigrationState, TransferMode


class Snapshot(BaseModel):
    """An immutable point-in-time marker on a dataset."""

    model_config = ConfigDict(frozen=True)

    dataset: str
    label: str
    ordinal: int  # position in engine listing order, oldest first

    @property
    def name(self) -> str:
        return f"{self.dataset}@{self.label}"


class DomainInfo(BaseModel):
    """A libvirt domain as reported by ``virsh list``."""

    id: str
    name: str
    state: str = ""


class TransferResult(BaseModel):
    """Outcome and findings of one dataset transfer."""

    success: bool
    dry_run: bool
    source: str
    destination: str
    source_dataset: str
    destination_dataset: str
    destination_found: bool = False
    destination_parent: str | None = None
    destination_parent_found: bool | None = None
    basis_snapshot: str | None = None
    snapshot: str | None = None
    mode: TransferMode | None = None
    command: str | None = None
    total_bytes: int | None = None
    transferred_bytes: int = 0
    exit_code: int | None = None
    error: str | None = None

    @classmethod
    def failed(cls, source: str, destination: str, error: str, dry_run: bool = True) -> "TransferResult":
        """Result for a transfer that could not get as far as the engine."""
        return cls(
            success=False,
            dry_run=dry_run,
            source=source,
            destination=destination,
            source_dataset="",
            destination_dataset="",
            error=error,
        )


class PhaseResult(BaseModel):
    """One step of a relocation."""

    phase: MigrationPhase
    success: bool
    detail: str = ""


class MigrationResult(BaseModel):
    """Outcome of a live relocation."""

    success: bool = False
    dry_run: bool = True
    domain: str
    source: str
    destination: str
    state: MigrationState | None = None
    phases: list[PhaseResult] = Field(default_factory=list)
    pre_copy: TransferResult | None = None
    final_delta: TransferResult | None = None
    error: str | None = None

    def phase(self, phase: MigrationPhase) -> PhaseResult | None:
        for record in self.phases:
            if record.phase == phase:
                return record
        return None
