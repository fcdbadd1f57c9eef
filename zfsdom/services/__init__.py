"""Service layer: transfer entry points and the migration coordinator."""

from .migration import MigrationCoordinator
from .transfer import TransferService

__all__ = ["MigrationCoordinator", "TransferService"]
