"""
Hardware key interfaces.

The orchestrator talks to security keys only through these protocols so it
can be exercised without a physical key.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol

from provisioner.directory.schemas import CredentialCreationOptions


@dataclass
class KeyInfo:
    """Identity and capabilities of a connected key."""

    serial: str
    model: str
    firmware: str
    aaguid: str | None = None
    pin_set: bool = False
    supports_min_pin_length: bool = False  # CTAP 2.1 setMinPINLength
    supports_nfc_restriction: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "serial": self.serial,
            "model": self.model,
            "firmware": self.firmware,
            "aaguid": self.aaguid,
            "pin_set": self.pin_set,
        }


@dataclass
class CreatedCredential:
    """A new discoverable credential, base64url encoded for Graph."""

    credential_id: str
    client_data_json: str
    attestation_object: str


class HardwareKey(Protocol):
    """A connected security key."""

    info: KeyInfo

    def reset(self, on_reinsert: Callable[[], None], on_touch: Callable[[], None]) -> None:
        """Erase all FIDO credentials and the PIN (destructive)."""
        ...

    def set_pin(self, pin: str) -> None:
        """Set the FIDO2 PIN on a key that has none."""
        ...

    def make_credential(
        self,
        options: CredentialCreationOptions,
        pin: str,
        on_touch: Callable[[], None],
    ) -> CreatedCredential:
        """Create a discoverable credential for the given options."""
        ...

    def force_pin_change(self, pin: str, min_length: int) -> None:
        """Require a PIN change on next use. Raises HardwareError if unsupported."""
        ...

    def restrict_nfc(self) -> None:
        """Enable restricted NFC mode. Raises HardwareError if unsupported."""
        ...

    def close(self) -> None:
        ...


class KeyProvider(Protocol):
    """Source of connected keys."""

    def connect(self) -> HardwareKey:
        """
        Connect to the single inserted key.

        Raises:
            HardwareError: If no key, or more than one, is connected
        """
        ...
