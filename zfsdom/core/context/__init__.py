"""Execution contexts: uniform local or remote command execution."""

from .base import CommandResult, ExecutionContext, ProcessHandle  # noqa: F401
from .factory import ContextFactory  # noqa: F401
from .local import LocalContext  # noqa: F401
from .ssh import SSHContext  # noqa: F401

__all__ = [
    "CommandResult",
    "ContextFactory",
    "ExecutionContext",
    "LocalContext",
    "ProcessHandle",
    "SSHContext",
]
