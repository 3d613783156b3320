"""
Device Catalog.

Static AAGUID to model / firmware / certification metadata for
supported security keys.
"""

from provisioner.catalog.models import CertificationLevel, DeviceRecord, normalize_device_id
from provisioner.catalog.parser import (
    CatalogParseError,
    default_catalog,
    load_catalog,
    parse_catalog,
)
from provisioner.catalog.registry import DeviceCatalog

__all__ = [
    # Models
    "CertificationLevel",
    "DeviceRecord",
    "normalize_device_id",
    # Catalog
    "DeviceCatalog",
    # Parser
    "CatalogParseError",
    "default_catalog",
    "load_catalog",
    "parse_catalog",
]
