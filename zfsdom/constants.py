"""Centralized constants for zfsdom to eliminate duplicate strings."""

# SSH Configuration Options
SSH_NO_HOST_CHECK = "StrictHostKeyChecking=no"
SSH_NO_KNOWN_HOSTS = "UserKnownHostsFile=/dev/null"
SSH_ERROR_LOG_LEVEL = "LogLevel=ERROR"
SSH_BATCH_MODE = "BatchMode=yes"
DEFAULT_SSH_PORT = 22
DEFAULT_SSH_USER = "root"

# Command names
ZFS = "zfs"
VIRSH = "virsh"

# Snapshot labels
SNAPSHOT_LABEL_FORMAT = "%Y%m%d-%H%M%S"
SNAPSHOT_SEPARATOR = "@"

# Libvirt
LIBVIRT_URI_TEMPLATE = "qemu+ssh://{host}/system"
DEFINITION_FILE_TEMPLATE = "zfsdom-{domain}.xml"
MIGRATE_FLAGS = ("--live", "--suspend", "--persistent", "--verbose", "--unsafe")

# Streaming
STREAM_CHUNK_SIZE = 65536
