"""
Policy data models.

Defines the selection of allowed keys and the policy documents sent to
Microsoft Graph.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


FIDO2_METHOD_ENDPOINT = (
    "/v1.0/policies/authenticationMethodsPolicy/authenticationMethodConfigurations/fido2"
)
AUTH_STRENGTH_ENDPOINT = "/v1.0/policies/authenticationStrengthPolicies"

DEFAULT_STRENGTH_NAME = "YubiKey"

# Authentication strength combination names
COMBINATION_FIDO2 = "fido2"
COMBINATION_TAP_ONE_TIME = "temporaryAccessPassOneTime"


class PolicyKind(Enum):
    """Kind of policy document."""

    AUTH_METHOD = "auth_method"
    AUTH_STRENGTH = "auth_strength"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PolicySelection:
    """
    Selected device identifiers and the policy name they apply to.

    Built only through validate_selection, so every identifier is known.
    """

    device_ids: frozenset[str]
    policy_name: str = DEFAULT_STRENGTH_NAME

    def sorted_ids(self) -> list[str]:
        """Identifiers in stable order for request bodies."""
        return sorted(self.device_ids)


@dataclass
class PolicyDocument:
    """
    A policy request ready to send to the directory.

    `method` and `endpoint` describe the Graph call, `body` its JSON.
    """

    kind: PolicyKind
    method: str
    endpoint: str
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def allowed_ids(self) -> frozenset[str]:
        """Device identifiers the document allows."""
        if self.kind == PolicyKind.AUTH_METHOD:
            return frozenset(self.body["keyRestrictions"]["aaGuids"])
        ids: set[str] = set()
        for combination in self.body.get("combinationConfigurations", []):
            ids.update(combination.get("allowedAAGUIDs", []))
        return frozenset(ids)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display."""
        return {
            "kind": str(self.kind),
            "method": self.method,
            "endpoint": self.endpoint,
            "body": self.body,
        }
