"""
Policy Builder.

Builds FIDO2 authentication method and authentication strength policy
documents for a selection of allowed security keys.
"""

from provisioner.policy.builder import (
    PolicyBuilder,
    build_auth_method_policy,
    build_auth_strength_policy,
    validate_selection,
)
from provisioner.policy.models import (
    DEFAULT_STRENGTH_NAME,
    PolicyDocument,
    PolicyKind,
    PolicySelection,
)

__all__ = [
    # Builder
    "PolicyBuilder",
    "build_auth_method_policy",
    "build_auth_strength_policy",
    "validate_selection",
    # Models
    "DEFAULT_STRENGTH_NAME",
    "PolicyDocument",
    "PolicyKind",
    "PolicySelection",
]
