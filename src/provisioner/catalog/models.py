"""
Device catalog data models.

Defines the metadata row describing a security key model.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any


# Canonical AAGUID shape: 8-4-4-4-12 hex digits
AAGUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
)


class CertificationLevel(Enum):
    """FIDO Alliance authenticator certification level."""

    LEVEL_1 = "L1"
    LEVEL_2 = "L2"
    NOT_APPLICABLE = "N/A"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_label(cls, label: str | None) -> CertificationLevel:
        """Convert a label such as 'L2', 'level2' or 'n/a' to a level."""
        if label is None:
            return cls.NOT_APPLICABLE
        name_map = {
            "l1": cls.LEVEL_1,
            "level1": cls.LEVEL_1,
            "l2": cls.LEVEL_2,
            "level2": cls.LEVEL_2,
            "n/a": cls.NOT_APPLICABLE,
            "na": cls.NOT_APPLICABLE,
            "none": cls.NOT_APPLICABLE,
        }
        key = str(label).strip().lower().replace(" ", "").replace("_", "")
        if key not in name_map:
            raise ValueError(f"Unknown certification level: {label}")
        return name_map[key]


def normalize_device_id(device_id: str) -> str | None:
    """
    Normalize a device identifier to canonical lowercase form.

    Returns None if the value is not shaped like a dashed UUID.
    """
    if not isinstance(device_id, str):
        return None
    candidate = device_id.strip().lower()
    if AAGUID_PATTERN.match(candidate):
        return candidate
    return None


@dataclass(frozen=True)
class DeviceRecord:
    """
    Metadata for one security key model / firmware combination.

    Several records may share a device_id: the AAGUID identifies a
    model family, not a physical unit or a single firmware release.
    """

    model: str
    firmware_label: str  # e.g. "5.2 / 5.4"
    device_id: str  # canonical lowercase AAGUID
    certification_level: CertificationLevel = CertificationLevel.NOT_APPLICABLE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "model": self.model,
            "firmware": self.firmware_label,
            "aaguid": self.device_id,
            "certification": str(self.certification_level),
        }
