"""
YubiKey access through yubikey-manager and python-fido2.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from fido2.client import ClientError, DefaultClientDataCollector, Fido2Client, UserInteraction
from fido2.ctap import CtapError
from fido2.ctap2 import ClientPin, Config, Ctap2
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialParameters,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)
from ykman.device import get_name, list_all_devices
from yubikit.core import CommandError, NotSupportedError
from yubikit.core.fido import FidoConnection
from yubikit.management import DeviceConfig, ManagementSession

from provisioner.directory.schemas import CredentialCreationOptions
from provisioner.errors import HardwareError
from provisioner.hardware.base import CreatedCredential, KeyInfo


logger = logging.getLogger(__name__)

# Restricted NFC mode was introduced with firmware 5.7
NFC_RESTRICTED_MIN_VERSION = (5, 7, 0)

# A reset is only accepted shortly after the key is powered up
REINSERT_POLL_SECONDS = 0.5
REINSERT_TIMEOUT_SECONDS = 30.0

# Errors the FIDO and management stacks raise for a key that misbehaves
KEY_ERRORS = (CtapError, CommandError, NotSupportedError, OSError, ValueError)


class _ProvisioningInteraction(UserInteraction):
    """Supplies the assigned PIN and forwards touch prompts."""

    def __init__(self, pin: str, on_touch: Callable[[], None]) -> None:
        self._pin = pin
        self._on_touch = on_touch

    def prompt_up(self) -> None:
        self._on_touch()

    def request_pin(self, permissions, rp_id):
        return self._pin

    def request_uv(self, permissions, rp_id):
        return True


def build_creation_options(options: CredentialCreationOptions) -> PublicKeyCredentialCreationOptions:
    """
    Convert Graph creation options into python-fido2 options.

    A discoverable credential with user verification and direct
    attestation is always requested.
    """
    public_key = options.public_key
    rp = public_key.get("rp", {})
    user = public_key.get("user", {})

    if not options.algorithms:
        raise HardwareError("Creation options advertise no algorithms")

    return PublicKeyCredentialCreationOptions(
        rp=PublicKeyCredentialRpEntity(name=rp.get("name") or rp["id"], id=rp["id"]),
        user=PublicKeyCredentialUserEntity(
            name=user["name"],
            id=websafe_decode(user["id"]),
            display_name=user.get("displayName") or user["name"],
        ),
        challenge=websafe_decode(public_key["challenge"]),
        pub_key_cred_params=[
            PublicKeyCredentialParameters(type=PublicKeyCredentialType.PUBLIC_KEY, alg=alg)
            for alg in options.algorithms
        ],
        timeout=public_key.get("timeout"),
        exclude_credentials=[
            PublicKeyCredentialDescriptor(
                type=PublicKeyCredentialType.PUBLIC_KEY,
                id=websafe_decode(cred["id"]),
            )
            for cred in public_key.get("excludeCredentials", [])
        ],
        authenticator_selection=AuthenticatorSelectionCriteria(
            resident_key=ResidentKeyRequirement.REQUIRED,
            user_verification=UserVerificationRequirement.REQUIRED,
        ),
        attestation=AttestationConveyancePreference.DIRECT,
    )


def list_keys() -> list:
    """List connected YubiKeys as (device, device_info) pairs."""
    try:
        return list_all_devices()
    except KEY_ERRORS as e:
        raise HardwareError(f"Could not enumerate YubiKeys: {e}") from e


class YubiKey:
    """A connected YubiKey, FIDO interface open."""

    def __init__(self, device, device_info, origin: str) -> None:
        self._device = device
        self._device_info = device_info
        self._origin = origin
        self._connection = None
        self._ctap2: Ctap2 | None = None
        self._open()
        self.info = self._load_info()

    def _open(self) -> None:
        try:
            self._connection = self._device.open_connection(FidoConnection)
            self._ctap2 = Ctap2(self._connection)
        except KEY_ERRORS as e:
            self.close()
            raise HardwareError(f"Could not open FIDO interface: {e}") from e

    def _require_ctap2(self) -> Ctap2:
        if self._ctap2 is None:
            raise HardwareError("Key is not connected")
        return self._ctap2

    def _load_info(self) -> KeyInfo:
        """Query the key, closing the connection if it cannot be read."""
        try:
            return self._read_info()
        except (*KEY_ERRORS, AttributeError) as e:
            self.close()
            raise HardwareError(f"Could not query key: {e}") from e

    def _read_info(self) -> KeyInfo:
        ctap_info = self._require_ctap2().get_info()
        version = self._device_info.version
        return KeyInfo(
            serial=str(self._device_info.serial or ""),
            model=get_name(self._device_info, self._device.pid.yubikey_type),
            firmware=f"{version.major}.{version.minor}.{version.patch}",
            aaguid=str(uuid.UUID(bytes=bytes(ctap_info.aaguid))),
            pin_set=bool(ctap_info.options.get("clientPin")),
            supports_min_pin_length=bool(ctap_info.options.get("setMinPINLength")),
            supports_nfc_restriction=tuple(version) >= NFC_RESTRICTED_MIN_VERSION,
        )

    def reset(self, on_reinsert: Callable[[], None], on_touch: Callable[[], None]) -> None:
        serial = self._device_info.serial
        self.close()
        on_reinsert()

        deadline = time.monotonic() + REINSERT_TIMEOUT_SECONDS
        while time.monotonic() < deadline:
            for device, info in list_keys():
                if info.serial == serial:
                    self._device, self._device_info = device, info
                    break
            else:
                time.sleep(REINSERT_POLL_SECONDS)
                continue
            break
        else:
            raise HardwareError(f"Key {serial} was not re-inserted")

        self._open()
        on_touch()
        try:
            self._require_ctap2().reset()
        except KEY_ERRORS as e:
            raise HardwareError(f"FIDO reset failed: {e}") from e
        self.info = self._load_info()

    def set_pin(self, pin: str) -> None:
        try:
            ClientPin(self._require_ctap2()).set_pin(pin)
        except KEY_ERRORS as e:
            raise HardwareError(f"Could not set PIN: {e}") from e
        self.info.pin_set = True

    def make_credential(
        self,
        options: CredentialCreationOptions,
        pin: str,
        on_touch: Callable[[], None],
    ) -> CreatedCredential:
        self._require_ctap2()
        client = Fido2Client(
            self._connection,
            client_data_collector=DefaultClientDataCollector(self._origin),
            user_interaction=_ProvisioningInteraction(pin, on_touch),
        )
        try:
            result = client.make_credential(build_creation_options(options))
        except (ClientError, KeyError, *KEY_ERRORS) as e:
            raise HardwareError(f"Credential creation failed: {e}") from e

        return CreatedCredential(
            credential_id=websafe_encode(result.raw_id),
            client_data_json=websafe_encode(bytes(result.response.client_data)),
            attestation_object=websafe_encode(bytes(result.response.attestation_object)),
        )

    def force_pin_change(self, pin: str, min_length: int) -> None:
        if not self.info.supports_min_pin_length:
            raise HardwareError("Forced PIN change not supported by firmware")
        ctap2 = self._require_ctap2()
        try:
            client_pin = ClientPin(ctap2)
            token = client_pin.get_pin_token(pin, ClientPin.PERMISSION.AUTHENTICATOR_CFG)
            Config(ctap2, client_pin.protocol, token).set_min_pin_length(
                min_pin_length=min_length,
                force_change_pin=True,
            )
        except KEY_ERRORS as e:
            raise HardwareError(f"Could not force PIN change: {e}") from e

    def restrict_nfc(self) -> None:
        if not self.info.supports_nfc_restriction:
            raise HardwareError("Restricted NFC not supported by firmware")
        try:
            ManagementSession(self._connection).write_device_config(
                DeviceConfig({}, None, None, None, nfc_restricted=True)
            )
        except (TypeError, *KEY_ERRORS) as e:
            raise HardwareError(f"Could not restrict NFC: {e}") from e

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            self._ctap2 = None


class YubiKeyProvider:
    """Connects to the single YubiKey inserted in the host."""

    def __init__(self, origin: str = "https://login.microsoft.com") -> None:
        self.origin = origin

    def connect(self) -> YubiKey:
        devices = list_keys()

        if not devices:
            raise HardwareError("No YubiKey detected")
        if len(devices) > 1:
            raise HardwareError(f"{len(devices)} YubiKeys connected, insert only one")

        device, device_info = devices[0]
        key = YubiKey(device, device_info, self.origin)
        logger.info("Connected %s (serial %s, firmware %s)",
                    key.info.model, key.info.serial, key.info.firmware)
        return key
