"""
Error kinds raised by the provisioner.

Every error carries enough context (identity, step) for an operator to
retry the failed operation by hand.
"""

from __future__ import annotations


class ProvisionerError(Exception):
    """Base class for all provisioner errors."""

    pass


class ValidationError(ProvisionerError):
    """Input rejected before any external call was made."""

    pass


class AuthError(ProvisionerError):
    """Token acquisition or authorization with the directory failed."""

    pass


class DirectoryError(ProvisionerError):
    """Non-success response from the directory API."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class HardwareError(ProvisionerError):
    """Security key not detected or could not be configured."""

    pass


class EnrollmentError(ProvisionerError):
    """A single enrollment failed at a named step."""

    def __init__(self, message: str, identity: str = "", step: str = "", body: str = "") -> None:
        super().__init__(message)
        self.identity = identity
        self.step = step
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.identity and self.step:
            return f"{self.identity} [{self.step}]: {base}"
        return base
