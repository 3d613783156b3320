"""
Device catalog parser.

Parses the YAML device table into a DeviceCatalog.
"""

from __future__ import annotations

from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml

from provisioner.catalog.models import CertificationLevel, DeviceRecord, normalize_device_id
from provisioner.catalog.registry import DeviceCatalog
from provisioner.errors import ProvisionerError


class CatalogParseError(ProvisionerError):
    """Error parsing device catalog."""

    pass


def load_catalog(path: str | Path) -> DeviceCatalog:
    """
    Load device catalog from YAML file.

    Args:
        path: Path to catalog YAML file

    Returns:
        DeviceCatalog with parsed records

    Raises:
        FileNotFoundError: If file doesn't exist
        CatalogParseError: If file contains invalid entries
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")

    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise CatalogParseError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return DeviceCatalog()

    return parse_catalog(data)


@lru_cache(maxsize=1)
def default_catalog() -> DeviceCatalog:
    """Load the bundled YubiKey catalog (once per process)."""
    text = resources.files("provisioner.catalog").joinpath("devices.yaml").read_text()
    return parse_catalog(yaml.safe_load(text))


def parse_catalog(data: dict[str, Any]) -> DeviceCatalog:
    """
    Parse device catalog from dictionary.

    Args:
        data: Dictionary with a 'devices' list

    Returns:
        DeviceCatalog
    """
    if not isinstance(data, dict):
        raise CatalogParseError("Catalog must be a dictionary")

    entries = data.get("devices", [])
    if not isinstance(entries, list):
        raise CatalogParseError("'devices' must be a list")

    records = []
    for i, entry in enumerate(entries):
        try:
            records.append(parse_record(entry))
        except Exception as e:
            raise CatalogParseError(f"Error parsing device {i}: {e}") from e

    return DeviceCatalog(records)


def parse_record(data: dict[str, Any]) -> DeviceRecord:
    """Parse a single catalog entry."""
    if not isinstance(data, dict):
        raise CatalogParseError("Device entry must be a dictionary")

    model = data.get("model")
    if not model:
        raise CatalogParseError("Device entry must have 'model' field")

    raw_id = data.get("aaguid")
    device_id = normalize_device_id(raw_id) if raw_id else None
    if device_id is None:
        raise CatalogParseError(f"Invalid aaguid: {raw_id}")

    try:
        level = CertificationLevel.from_label(data.get("certification"))
    except ValueError as e:
        raise CatalogParseError(str(e))

    return DeviceRecord(
        model=str(model),
        firmware_label=str(data.get("firmware", "")),
        device_id=device_id,
        certification_level=level,
    )
