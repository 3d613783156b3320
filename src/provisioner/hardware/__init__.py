"""
Hardware Keys.

Protocols for connected security keys. The YubiKey implementation lives
in provisioner.hardware.yubikey and is imported on demand, so the rest
of the package works without the hardware libraries loaded.
"""

from provisioner.hardware.base import CreatedCredential, HardwareKey, KeyInfo, KeyProvider

__all__ = [
    "CreatedCredential",
    "HardwareKey",
    "KeyInfo",
    "KeyProvider",
]
