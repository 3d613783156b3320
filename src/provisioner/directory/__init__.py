"""
Directory API.

Token acquisition, authenticated session and Microsoft Graph endpoints.
"""

from provisioner.directory.auth import (
    SCOPES_ENROLL,
    SCOPES_POLICY,
    SCOPES_REPORT,
    AccessToken,
    ClientCredentialsProvider,
    DeviceCodeProvider,
    TokenProvider,
    create_token_provider,
)
from provisioner.directory.client import (
    DirectoryClient,
    DirectorySession,
    raise_for_status,
    validate_identity,
)
from provisioner.directory.schemas import (
    AuthenticationMethod,
    CredentialCreationOptions,
    DirectoryGroup,
    DirectoryUser,
    Fido2Registration,
)

__all__ = [
    # Auth
    "SCOPES_ENROLL",
    "SCOPES_POLICY",
    "SCOPES_REPORT",
    "AccessToken",
    "ClientCredentialsProvider",
    "DeviceCodeProvider",
    "TokenProvider",
    "create_token_provider",
    # Client
    "DirectoryClient",
    "DirectorySession",
    "raise_for_status",
    "validate_identity",
    # Schemas
    "AuthenticationMethod",
    "CredentialCreationOptions",
    "DirectoryGroup",
    "DirectoryUser",
    "Fido2Registration",
]
