"""Core exceptions for zfsdom operations."""


class ZfsdomError(Exception):
    """Base exception for zfsdom operations."""


class ConfigurationError(ZfsdomError):
    """Configuration validation or loading failed."""


class AddressError(ZfsdomError, ValueError):
    """A location string could not be decomposed."""


class TransportError(ZfsdomError):
    """An execution context could not be opened or lost its session."""


class CommandError(ZfsdomError):
    """A buffered command exited non-zero."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ZFSError(ZfsdomError):
    """The dataset engine refused a listing, lookup or snapshot."""


class DomainError(ZfsdomError):
    """A libvirt domain control command failed."""
