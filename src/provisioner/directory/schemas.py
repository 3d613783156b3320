"""
Pydantic schemas for Microsoft Graph payloads.

Only the fields the provisioner reads are modelled; everything else in a
response is ignored.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


FIDO2_METHOD_TYPE = "#microsoft.graph.fido2AuthenticationMethod"


class GraphModel(BaseModel):
    """Base for Graph payloads: camelCase aliases, unknown fields ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DirectoryUser(GraphModel):
    """A user object."""

    id: str
    user_principal_name: str = Field(..., alias="userPrincipalName")
    display_name: str | None = Field(None, alias="displayName")


class DirectoryGroup(GraphModel):
    """A group object."""

    id: str
    display_name: str = Field(..., alias="displayName")


class AuthenticationMethod(GraphModel):
    """
    An authentication method registered to a user.

    FIDO2 methods carry the AAGUID and the nickname the user chose.
    """

    odata_type: str = Field(..., alias="@odata.type")
    id: str
    display_name: str | None = Field(None, alias="displayName")
    aa_guid: str | None = Field(None, alias="aaGuid")
    model: str | None = None
    created_date_time: str | None = Field(None, alias="createdDateTime")

    @property
    def is_fido2(self) -> bool:
        """Check if this is a device-bound FIDO2 credential."""
        return self.odata_type == FIDO2_METHOD_TYPE


class CredentialCreationOptions(GraphModel):
    """
    Response of fido2Methods/creationOptions.

    `public_key` holds WebAuthn PublicKeyCredentialCreationOptions in JSON
    form (base64url strings for binary fields).
    """

    challenge_timeout_date_time: str | None = Field(None, alias="challengeTimeoutDateTime")
    public_key: dict[str, Any] = Field(..., alias="publicKey")

    @property
    def rp_id(self) -> str | None:
        return self.public_key.get("rp", {}).get("id")

    @property
    def user_handle(self) -> str | None:
        return self.public_key.get("user", {}).get("id")

    @property
    def algorithms(self) -> list[int]:
        return [p["alg"] for p in self.public_key.get("pubKeyCredParams", []) if "alg" in p]


class Fido2Registration(GraphModel):
    """Request body for registering a FIDO2 method."""

    display_name: str = Field(..., alias="displayName")
    credential_id: str
    client_data_json: str
    attestation_object: str

    def to_request(self) -> dict[str, Any]:
        """Build the Graph request JSON."""
        return {
            "displayName": self.display_name,
            "publicKeyCredential": {
                "id": self.credential_id,
                "response": {
                    "clientDataJSON": self.client_data_json,
                    "attestationObject": self.attestation_object,
                },
            },
        }
