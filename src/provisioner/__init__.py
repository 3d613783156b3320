"""
Passkey Provisioner - YubiKey passkey enrollment for Entra ID.

Provisions hardware security keys as device-bound FIDO2 credentials in a
Microsoft Entra ID tenant, configures the FIDO2 authentication method and
authentication strength policies, and audits which users hold which keys.
"""

__version__ = "0.1.0"
__author__ = "Passkey Provisioner Contributors"

from provisioner.config import ProvisionerConfig, load_config

__all__ = ["ProvisionerConfig", "load_config", "__version__"]
