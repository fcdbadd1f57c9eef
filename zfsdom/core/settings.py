"""Tunable settings for zfsdom operations.

Provides centralized timeout and naming configuration using Pydantic
BaseSettings with environment variable support for operational tuning.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..constants import (
    DEFAULT_SSH_USER,
    LIBVIRT_URI_TEMPLATE,
    SNAPSHOT_LABEL_FORMAT,
)


class ZfsdomSettings(BaseSettings):
    """Connection, timeout and naming configuration."""

    ssh_user: str = Field(
        DEFAULT_SSH_USER, alias="ZFSDOM_SSH_USER", description="Default SSH login user"
    )

    ssh_identity_file: str = Field(
        "~/.ssh/id_rsa", alias="ZFSDOM_SSH_IDENTITY_FILE", description="Default private key"
    )

    ssh_connect_timeout: int = Field(
        30, alias="ZFSDOM_SSH_CONNECT_TIMEOUT", description="SSH connect timeout in seconds"
    )

    command_timeout: int = Field(
        120,
        alias="ZFSDOM_COMMAND_TIMEOUT",
        description="Timeout in seconds for buffered control commands",
    )

    snapshot_label_format: str = Field(
        SNAPSHOT_LABEL_FORMAT,
        alias="ZFSDOM_SNAPSHOT_LABEL_FORMAT",
        description="strftime format of transfer snapshot labels",
    )

    definition_dir: str = Field(
        "/tmp", alias="ZFSDOM_DEFINITION_DIR", description="Where rewritten domain XML is staged"
    )

    libvirt_uri_template: str = Field(
        LIBVIRT_URI_TEMPLATE,
        alias="ZFSDOM_LIBVIRT_URI",
        description="Destination hypervisor URI, {host} is substituted",
    )

    log_level: str = Field("INFO", alias="ZFSDOM_LOG_LEVEL", description="Log level")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)
