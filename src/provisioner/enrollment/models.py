"""
Enrollment data models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Step(Enum):
    """Enrollment steps, in execution order."""

    AWAIT_HARDWARE = "await hardware"
    CONFIGURE = "configure"
    SET_PIN = "set credential PIN"
    FETCH_CHALLENGE = "fetch challenge"
    GENERATE_CREDENTIAL = "generate credential"
    SUBMIT_ATTESTATION = "submit attestation"
    POST_CONFIGURE = "post-configure"
    RECORD = "record"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class EnrollmentRecord:
    """A completed enrollment."""

    identity: str
    model_label: str
    hardware_serial: str
    assigned_pin: str

    def to_row(self) -> list[str]:
        """Row for the enrollment CSV."""
        return [self.identity, self.model_label, self.hardware_serial, self.assigned_pin]


@dataclass
class GroupEnrollmentResult:
    """Tally of a group enrollment run."""

    group: str
    succeeded: list[EnrollmentRecord] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # identity -> error

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (PINs omitted)."""
        return {
            "group": self.group,
            "total": self.total,
            "succeeded": [r.identity for r in self.succeeded],
            "failed": dict(self.failed),
        }
