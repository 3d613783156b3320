"""
Report Builder.

Joins users' registered FIDO2 credentials against the device catalog.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator

from provisioner.catalog import DeviceCatalog, default_catalog
from provisioner.directory.client import DirectoryClient, validate_identity
from provisioner.directory.schemas import AuthenticationMethod


logger = logging.getLogger(__name__)

REPORT_HEADER = ["UPN", "Nickname", "Firmware", "Certification"]


@dataclass(frozen=True)
class ReportRow:
    """
    One registered credential of one user.

    A user without FIDO2 credentials gets a single row with empty
    descriptive fields.
    """

    identity: str
    nickname: str = ""
    firmware_label: str = ""
    certification_level: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.nickname or self.firmware_label or self.certification_level)

    def to_row(self) -> list[str]:
        return [self.identity, self.nickname, self.firmware_label, self.certification_level]

    def to_dict(self) -> dict[str, Any]:
        return dict(zip(REPORT_HEADER, self.to_row()))


class ReportBuilder:
    """
    Builds the passkey report.

    Users are processed in input order (or directory enumeration order for
    the whole tenant); credentials in the order the directory returns them.
    """

    def __init__(self, directory: DirectoryClient, catalog: DeviceCatalog | None = None) -> None:
        self.directory = directory
        self.catalog = catalog if catalog is not None else default_catalog()

    def rows_for_methods(self, identity: str, methods: Iterable[AuthenticationMethod]) -> list[ReportRow]:
        """
        Build the rows for one user from their authentication methods.

        Non-FIDO2 methods are ignored. Catalog fields come from the first
        catalog record for the credential's AAGUID.
        """
        rows = []
        for method in methods:
            if not method.is_fido2:
                continue
            record = self.catalog.lookup_by_id(method.aa_guid) if method.aa_guid else None
            if record is None:
                logger.debug("%s: AAGUID %s not in catalog", identity, method.aa_guid)
            rows.append(ReportRow(
                identity=identity,
                nickname=method.display_name or "",
                firmware_label=record.firmware_label if record else "",
                certification_level=str(record.certification_level) if record else "",
            ))

        if not rows:
            rows.append(ReportRow(identity=identity))
        return rows

    def rows_for_identity(self, identity: str) -> list[ReportRow]:
        """Fetch one user's methods and build their rows."""
        methods = self.directory.list_authentication_methods(identity)
        return self.rows_for_methods(identity, methods)

    def build(self, identities: Iterable[str] | None = None) -> Iterator[ReportRow]:
        """
        Build report rows.

        Args:
            identities: Users to report on; None reports on every user

        Yields:
            ReportRow per credential (or one empty row per user without any)
        """
        if identities is None:
            targets: Iterable[str] = (u.user_principal_name for u in self.directory.list_users())
        else:
            # Validate everything before the first directory call
            targets = [validate_identity(i) for i in identities]

        for identity in targets:
            yield from self.rows_for_identity(identity)


def write_report_csv(rows: Iterable[ReportRow], path: str | Path) -> int:
    """
    Write report rows to a CSV file.

    Returns:
        Number of rows written
    """
    # Collect everything first so a failed lookup leaves no partial file
    rows = list(rows)
    count = 0
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(REPORT_HEADER)
        for row in rows:
            writer.writerow(row.to_row())
            count += 1
    return count


def format_report_table(rows: Iterable[ReportRow]) -> str:
    """Render rows as a fixed-width console table."""
    out = io.StringIO()
    out.write(f"{'UPN':<40} {'Nickname':<28} {'Firmware':<12} {'Cert':<5}\n")
    out.write("-" * 88 + "\n")
    for row in rows:
        out.write(
            f"{row.identity[:40]:<40} "
            f"{(row.nickname or '-')[:28]:<28} "
            f"{(row.firmware_label or '-')[:12]:<12} "
            f"{row.certification_level or '-':<5}\n"
        )
    return out.getvalue()
