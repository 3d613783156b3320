"""
Configuration management for Passkey Provisioner.

Handles loading, validation, and access to tool configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/passkey-provisioner/provisioner.yaml")
DEFAULT_OUTPUT_FILE = "output.csv"

GRAPH_URL = "https://graph.microsoft.com"
LOGIN_URL = "https://login.microsoftonline.com"


@dataclass
class DirectoryConfig:
    """Entra ID / Microsoft Graph connection settings."""

    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    auth_mode: str = "device_code"
    graph_url: str = GRAPH_URL
    login_url: str = LOGIN_URL
    timeout: int = 30

    def __post_init__(self) -> None:
        # Load secrets and identifiers from environment if not set
        if self.tenant_id is None:
            self.tenant_id = os.environ.get("PROVISIONER_TENANT_ID")
        if self.client_id is None:
            self.client_id = os.environ.get("PROVISIONER_CLIENT_ID")
        if self.client_secret is None:
            self.client_secret = os.environ.get("PROVISIONER_CLIENT_SECRET")


@dataclass
class EnrollmentConfig:
    """Security key enrollment settings."""

    pin_length: int = 4
    min_pin_length: int = 4
    challenge_timeout: int = 5  # minutes, enforced by the directory
    output_file: str = DEFAULT_OUTPUT_FILE
    origin: str = "https://login.microsoft.com"
    display_name: str = "{model} {serial}"  # nickname shown in the directory
    force_pin_change: bool = True
    restrict_nfc: bool = False


@dataclass
class CatalogConfig:
    """Device catalog settings."""

    file: str | None = None  # None uses the bundled catalog


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    file: str | None = None


@dataclass
class ProvisionerConfig:
    """Main configuration container."""

    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    enrollment: EnrollmentConfig = field(default_factory=EnrollmentConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvisionerConfig:
        """Create configuration from dictionary."""
        return cls(
            directory=DirectoryConfig(**data.get("directory", {})),
            enrollment=EnrollmentConfig(**data.get("enrollment", {})),
            catalog=CatalogConfig(**data.get("catalog", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )


def load_config(path: str | Path | None = None) -> ProvisionerConfig:
    """
    Load configuration from YAML file.

    Args:
        path: Path to configuration file. If None, uses default paths.

    Returns:
        ProvisionerConfig instance with loaded settings.

    Raises:
        FileNotFoundError: If an explicit config file is not found.
        yaml.YAMLError: If config file is invalid YAML.
    """
    if path is None:
        # Try default locations
        candidates = [
            DEFAULT_CONFIG_PATH,
            Path("config/provisioner.yaml"),
            Path("provisioner.yaml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path is None:
        return ProvisionerConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return ProvisionerConfig.from_dict(data)


def validate_config(config: ProvisionerConfig) -> list[str]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate.

    Returns:
        List of error messages. Empty list if valid.
    """
    errors: list[str] = []

    valid_log_levels = {"debug", "info", "warning", "error"}
    if config.logging.level not in valid_log_levels:
        errors.append(f"Invalid log level: {config.logging.level}")

    valid_auth_modes = {"client_credentials", "device_code"}
    if config.directory.auth_mode not in valid_auth_modes:
        errors.append(f"Invalid auth_mode: {config.directory.auth_mode}")

    if not config.directory.tenant_id:
        errors.append("tenant_id is required (set PROVISIONER_TENANT_ID)")
    if not config.directory.client_id:
        errors.append("client_id is required (set PROVISIONER_CLIENT_ID)")

    if config.directory.auth_mode == "client_credentials" and not config.directory.client_secret:
        errors.append("client_secret required for client_credentials auth (set PROVISIONER_CLIENT_SECRET)")

    # CTAP2.1 allows PINs of 4 to 63 code points
    if not (4 <= config.enrollment.pin_length <= 63):
        errors.append(f"Invalid pin_length: {config.enrollment.pin_length}")
    if not (4 <= config.enrollment.min_pin_length <= config.enrollment.pin_length):
        errors.append(f"Invalid min_pin_length: {config.enrollment.min_pin_length}")

    if not (5 <= config.enrollment.challenge_timeout <= 43200):
        errors.append(f"Invalid challenge_timeout: {config.enrollment.challenge_timeout}")

    if config.directory.timeout <= 0:
        errors.append(f"Invalid timeout: {config.directory.timeout}")

    return errors
