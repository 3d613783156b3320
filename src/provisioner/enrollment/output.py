"""
Enrollment output file.

Append-only CSV with one row per completed enrollment.
"""

from __future__ import annotations

import csv
import logging
import threading
from pathlib import Path

from provisioner.enrollment.models import EnrollmentRecord


logger = logging.getLogger(__name__)

OUTPUT_HEADER = ["UPN", "Model", "Serial Number", "PIN"]


class EnrollmentLog:
    """
    Append-only enrollment table.

    The header is written when the file is new or empty. Appends are
    serialized within the process.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: EnrollmentRecord) -> None:
        """Append one completed enrollment."""
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            write_header = not self.path.exists() or self.path.stat().st_size == 0
            with open(self.path, "a", newline="") as f:
                writer = csv.writer(f)
                if write_header:
                    writer.writerow(OUTPUT_HEADER)
                writer.writerow(record.to_row())
        logger.debug("Recorded enrollment for %s in %s", record.identity, self.path)

    def read(self) -> list[EnrollmentRecord]:
        """Read back all recorded enrollments."""
        if not self.path.exists():
            return []
        with open(self.path, newline="") as f:
            return [
                EnrollmentRecord(
                    identity=row["UPN"],
                    model_label=row["Model"],
                    hardware_serial=row["Serial Number"],
                    assigned_pin=row["PIN"],
                )
                for row in csv.DictReader(f)
            ]
