"""zfsdom: incremental ZFS replication and live libvirt domain relocation."""

__version__ = "0.3.0"
