"""Configuration management for zfsdom host inventory."""

import os
import re
from pathlib import Path
from typing import Any

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings

from ..constants import DEFAULT_SSH_PORT, DEFAULT_SSH_USER
from .exceptions import ConfigurationError
from .settings import ZfsdomSettings

logger = structlog.get_logger()


class HostConfig(BaseModel):
    """Connection details for one host."""

    hostname: str
    user: str = DEFAULT_SSH_USER
    port: int = DEFAULT_SSH_PORT
    identity_file: str | None = None
    alternate_host: str | None = None  # data-plane endpoint for zfs recv
    description: str = ""

    @property
    def host_key(self) -> str:
        return f"{self.user}@{self.hostname}:{self.port}"


class ZfsdomConfig(BaseSettings):
    """Main configuration for zfsdom."""

    hosts: dict[str, HostConfig] = Field(default_factory=dict)
    settings: ZfsdomSettings = Field(default_factory=ZfsdomSettings)
    config_file: str | None = Field(default=None, alias="ZFSDOM_CONFIG")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "ZFSDOM_",
        "extra": "ignore",
    }

    def resolve_host(self, host: str, port: int | None = None) -> HostConfig:
        """Expand a HOST segment into connection details.

        The segment is either an alias from the inventory or a plain
        ``[user@]hostname``. An explicit port always wins.
        """
        if host in self.hosts:
            base = self.hosts[host]
            if port is not None:
                return base.model_copy(update={"port": port})
            return base

        user = self.settings.ssh_user
        hostname = host
        if "@" in host:
            user, hostname = host.rsplit("@", 1)

        return HostConfig(
            hostname=hostname,
            user=user,
            port=port or DEFAULT_SSH_PORT,
            identity_file=_existing_identity(self.settings.ssh_identity_file),
        )


def _existing_identity(identity_file: str | None) -> str | None:
    """Return the expanded key path if the key file exists."""
    if not identity_file:
        return None
    path = Path(identity_file).expanduser()
    return str(path) if path.exists() else None


def default_config_paths() -> list[Path]:
    """Inventory locations in ascending priority."""
    xdg_config = os.getenv("XDG_CONFIG_HOME")
    base = Path(xdg_config) if xdg_config else Path.home() / ".config"
    return [base / "zfsdom" / "hosts.yml"]


def load_config(config_path: str | None = None) -> ZfsdomConfig:
    """Load configuration from the user inventory, then the explicit file.

    Args:
        config_path: Optional path to YAML config file (falls back to
            ``ZFSDOM_CONFIG``)

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: If an explicitly named file is missing or invalid
    """
    load_dotenv()

    config = ZfsdomConfig()

    for path in default_config_paths():
        _load_config_file(config, path)

    explicit = config_path or os.getenv("ZFSDOM_CONFIG")
    if explicit:
        explicit_path = Path(explicit).expanduser()
        if not explicit_path.exists():
            raise ConfigurationError(f"Config file {explicit_path} does not exist")
        _load_config_file(config, explicit_path)
        config.config_file = str(explicit_path)

    logger.debug("Configuration loaded", hosts=len(config.hosts), config_file=config.config_file)
    return config


def _load_config_file(config: ZfsdomConfig, config_path: Path) -> None:
    """Load and apply configuration from a YAML file."""
    if not config_path.exists():
        return

    yaml_config = _load_yaml_config(config_path)
    _apply_host_config(config, yaml_config, config_path)


def _apply_host_config(config: ZfsdomConfig, yaml_config: dict[str, Any], path: Path) -> None:
    """Apply host aliases from YAML data."""
    hosts = yaml_config.get("hosts") or {}
    if not isinstance(hosts, dict):
        raise ConfigurationError(f"'hosts' in {path} must be a mapping")
    for alias, host_data in hosts.items():
        try:
            config.hosts[alias] = HostConfig(**(host_data or {}))
        except (TypeError, ValidationError) as e:
            raise ConfigurationError(f"Invalid host '{alias}' in {path}: {e}") from e


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load YAML configuration file."""
    try:
        content = _expand_yaml_config(config_path.read_text(encoding="utf-8"))
        loaded = yaml.safe_load(content)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e
    if not isinstance(loaded, dict):
        return {}
    return loaded


def _expand_yaml_config(content: str) -> str:
    """Expand ${VAR} references, limited to an allowlist."""

    allowed_env_vars = {
        "HOME",
        "USER",
        "XDG_CONFIG_HOME",
        "ZFSDOM_SSH_USER",
        "ZFSDOM_SSH_IDENTITY_FILE",
    }

    def replace_var(match):
        var_name = match.group(1)
        if var_name in allowed_env_vars:
            return os.getenv(var_name, match.group(0))
        logger.warning(
            "Environment variable not in allowlist, skipping expansion", variable=var_name
        )
        return match.group(0)

    return re.sub(r"\$\{([^}]+)\}", replace_var, content)
