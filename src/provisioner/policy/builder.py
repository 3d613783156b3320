"""
Policy builder.

Builds the FIDO2 authentication method policy and the authentication
strength policy for a selection of allowed security keys.
"""

from __future__ import annotations

import logging
from typing import Iterable

from provisioner.catalog import DeviceCatalog, default_catalog, normalize_device_id
from provisioner.errors import ValidationError
from provisioner.policy.models import (
    AUTH_STRENGTH_ENDPOINT,
    COMBINATION_FIDO2,
    COMBINATION_TAP_ONE_TIME,
    DEFAULT_STRENGTH_NAME,
    FIDO2_METHOD_ENDPOINT,
    PolicyDocument,
    PolicyKind,
    PolicySelection,
)


logger = logging.getLogger(__name__)


def validate_selection(
    device_ids: Iterable[str],
    catalog: DeviceCatalog,
    policy_name: str | None = None,
) -> PolicySelection:
    """
    Validate a set of device identifiers against the catalog.

    Args:
        device_ids: Identifiers to allow
        catalog: Catalog the identifiers must exist in
        policy_name: Name for the resulting policy (default "YubiKey")

    Returns:
        PolicySelection with canonical identifiers

    Raises:
        ValidationError: If the selection is empty or has unknown identifiers
    """
    requested = list(device_ids or [])
    if not requested:
        raise ValidationError("No device identifiers selected")

    malformed = [d for d in requested if not isinstance(d, str)]
    if malformed:
        raise ValidationError(f"Device identifiers must be strings: {malformed!r}")

    unknown = sorted({d for d in requested if not catalog.is_known(d)})
    if unknown:
        raise ValidationError(f"Unknown device identifiers: {', '.join(unknown)}")

    canonical = frozenset(normalize_device_id(d) for d in requested)
    name = (policy_name or "").strip() or DEFAULT_STRENGTH_NAME
    return PolicySelection(device_ids=canonical, policy_name=name)


class PolicyBuilder:
    """
    Builds policy documents from validated selections.

    Both documents share one validation step; nothing is built unless the
    selection is non-empty and fully known.
    """

    def __init__(self, catalog: DeviceCatalog | None = None) -> None:
        self.catalog = catalog if catalog is not None else default_catalog()

    def auth_method_policy(self, device_ids: Iterable[str]) -> PolicyDocument:
        """
        Build the FIDO2 authentication method configuration.

        Enables the method, enforces attestation, and restricts the key
        allow-list to exactly the given identifiers.
        """
        selection = validate_selection(device_ids, self.catalog)
        body = {
            "@odata.type": "#microsoft.graph.fido2AuthenticationMethodConfiguration",
            "state": "enabled",
            "isSelfServiceRegistrationAllowed": True,
            "isAttestationEnforced": True,
            "keyRestrictions": {
                "isEnforced": True,
                "enforcementType": "allow",
                "aaGuids": selection.sorted_ids(),
            },
        }
        logger.debug("Built FIDO2 method policy for %d AAGUIDs", len(selection.device_ids))
        return PolicyDocument(
            kind=PolicyKind.AUTH_METHOD,
            method="PATCH",
            endpoint=FIDO2_METHOD_ENDPOINT,
            body=body,
        )

    def auth_strength_policy(
        self,
        device_ids: Iterable[str],
        name: str | None = DEFAULT_STRENGTH_NAME,
    ) -> PolicyDocument:
        """
        Build a named authentication strength policy.

        Allows FIDO2 restricted to the given identifiers, or a one-time
        Temporary Access Pass. The one-time pass is always present so a
        bad key allow-list cannot lock users out.
        """
        selection = validate_selection(device_ids, self.catalog, policy_name=name)
        body = {
            "displayName": selection.policy_name,
            "description": f"Phishing-resistant sign-in with {selection.policy_name} security keys",
            "allowedCombinations": [COMBINATION_FIDO2, COMBINATION_TAP_ONE_TIME],
            "combinationConfigurations": [
                {
                    "@odata.type": "#microsoft.graph.fido2CombinationConfiguration",
                    "appliesToCombinations": [COMBINATION_FIDO2],
                    "allowedAAGUIDs": selection.sorted_ids(),
                }
            ],
        }
        logger.debug(
            "Built authentication strength '%s' for %d AAGUIDs",
            selection.policy_name, len(selection.device_ids),
        )
        return PolicyDocument(
            kind=PolicyKind.AUTH_STRENGTH,
            method="POST",
            endpoint=AUTH_STRENGTH_ENDPOINT,
            body=body,
        )


def build_auth_method_policy(
    device_ids: Iterable[str],
    catalog: DeviceCatalog | None = None,
) -> PolicyDocument:
    """Convenience wrapper for PolicyBuilder.auth_method_policy."""
    return PolicyBuilder(catalog).auth_method_policy(device_ids)


def build_auth_strength_policy(
    device_ids: Iterable[str],
    name: str | None = DEFAULT_STRENGTH_NAME,
    catalog: DeviceCatalog | None = None,
) -> PolicyDocument:
    """Convenience wrapper for PolicyBuilder.auth_strength_policy."""
    return PolicyBuilder(catalog).auth_strength_policy(device_ids, name)
