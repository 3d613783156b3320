"""
Device catalog.

Immutable, ordered collection of DeviceRecords indexed by AAGUID.
"""

from __future__ import annotations

import json
from types import MappingProxyType
from typing import Iterable, Iterator

from provisioner.catalog.models import CertificationLevel, DeviceRecord, normalize_device_id


class DeviceCatalog:
    """
    Read-only lookup table from device identifier to model metadata.

    Records keep their catalog order. When several records share an
    identifier, single-record lookups return the first one; the
    identifier alone cannot tell those models apart.
    """

    def __init__(self, records: Iterable[DeviceRecord] = ()) -> None:
        self._records: tuple[DeviceRecord, ...] = tuple(records)

        index: dict[str, list[DeviceRecord]] = {}
        for record in self._records:
            index.setdefault(record.device_id, []).append(record)
        self._index = MappingProxyType(
            {device_id: tuple(rows) for device_id, rows in index.items()}
        )

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[DeviceRecord]:
        return iter(self._records)

    def __contains__(self, device_id: object) -> bool:
        return isinstance(device_id, str) and self.is_known(device_id)

    @property
    def records(self) -> tuple[DeviceRecord, ...]:
        """All records in catalog order."""
        return self._records

    def lookup_by_id(self, device_id: str) -> DeviceRecord | None:
        """
        Look up the metadata for a device identifier.

        Args:
            device_id: AAGUID to look up

        Returns:
            First matching DeviceRecord in catalog order, or None
        """
        rows = self.lookup_all(device_id)
        return rows[0] if rows else None

    def lookup_all(self, device_id: str) -> tuple[DeviceRecord, ...]:
        """Get every record sharing a device identifier, in catalog order."""
        key = normalize_device_id(device_id)
        if key is None:
            return ()
        return self._index.get(key, ())

    def is_known(self, device_id: str) -> bool:
        """Check if a device identifier exists in the catalog."""
        return bool(self.lookup_all(device_id))

    def all_ids(self) -> frozenset[str]:
        """Get the set of all device identifiers in the catalog."""
        return frozenset(self._index)

    def models(self) -> list[str]:
        """Get distinct model names, sorted."""
        return sorted({record.model for record in self._records})

    def select(
        self,
        certification: CertificationLevel | None = None,
        model: str | None = None,
    ) -> frozenset[str]:
        """
        Select device identifiers by certification level and/or model.

        Args:
            certification: Only include records with this level
            model: Case-insensitive substring of the model name

        Returns:
            Set of matching device identifiers
        """
        selected = set()
        for record in self._records:
            if certification is not None and record.certification_level != certification:
                continue
            if model is not None and model.lower() not in record.model.lower():
                continue
            selected.add(record.device_id)
        return frozenset(selected)

    def to_dict(self) -> dict:
        """Export catalog to dictionary."""
        return {"devices": [record.to_dict() for record in self._records]}

    def to_json(self) -> str:
        """Export catalog to JSON string."""
        return json.dumps(self.to_dict(), indent=2)
