"""Utility functions for zfsdom.

Shared helpers for building SSH command lines and for converting between
byte counts and the human-readable sizes printed by ``zfs send -v``.
"""

import re

from .constants import (
    DEFAULT_SSH_PORT,
    SSH_BATCH_MODE,
    SSH_ERROR_LOG_LEVEL,
    SSH_NO_HOST_CHECK,
    SSH_NO_KNOWN_HOSTS,
)
from .core.config_loader import HostConfig

_SIZE_UNITS = "BKMGTPE"
_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGTPE]?)(?:i?B)?\s*$", re.IGNORECASE)


def build_ssh_command(host: HostConfig, hostname: str | None = None) -> list[str]:
    """Build SSH command for a host.

    Args:
        host: Host configuration object
        hostname: Endpoint to connect to instead of ``host.hostname``

    Returns:
        List of SSH command components ready to prefix a remote command

    Example:
        >>> build_ssh_command(HostConfig(hostname="server.com", user="root"))
        ['ssh', '-o', 'StrictHostKeyChecking=no', '-o', 'UserKnownHostsFile=/dev/null', '-o', 'LogLevel=ERROR', '-o', 'BatchMode=yes', 'root@server.com']
    """
    ssh_cmd = [
        "ssh",
        "-o", SSH_NO_HOST_CHECK,
        "-o", SSH_NO_KNOWN_HOSTS,
        "-o", SSH_ERROR_LOG_LEVEL,
        "-o", SSH_BATCH_MODE,
    ]

    if host.identity_file:
        ssh_cmd.extend(["-i", host.identity_file])

    if host.port != DEFAULT_SSH_PORT:
        ssh_cmd.extend(["-p", str(host.port)])

    # Quoted later by shlex.join; ssh takes bare IPv6 literals after user@
    ssh_cmd.append(f"{host.user}@{hostname or host.hostname}")
    return ssh_cmd


def format_size(size_bytes: int | float) -> str:
    """Format bytes into human-readable string.

    Examples:
        >>> format_size(0)
        '0 B'
        >>> format_size(1536)
        '1.5 KB'
    """
    if size_bytes == 0:
        return "0 B"

    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_bytes < 1024.0:
            if unit == "B":
                return f"{int(size_bytes)} {unit}"
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


def parse_size(size_str: str) -> int | None:
    """Parse a zfs-style size such as ``4.50M``, ``12K``, ``1.2GiB`` or ``512``.

    Units are binary multiples. Returns None if the string is not a size.

    Examples:
        >>> parse_size("12K")
        12288
        >>> parse_size("4.50M")
        4718592
        >>> parse_size("from") is None
        True
    """
    match = _SIZE_PATTERN.match(size_str or "")
    if not match:
        return None
    number, unit = match.groups()
    exponent = _SIZE_UNITS.index(unit.upper()) if unit else 0
    return int(float(number) * (1024**exponent))
