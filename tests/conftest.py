"""
Pytest configuration and shared fixtures for Passkey Provisioner tests.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import MagicMock

import pytest
import yaml

from provisioner.catalog import CertificationLevel, DeviceCatalog, DeviceRecord
from provisioner.directory.client import DirectoryClient
from provisioner.directory.schemas import (
    CredentialCreationOptions,
    DirectoryGroup,
    DirectoryUser,
)
from provisioner.errors import HardwareError
from provisioner.hardware.base import CreatedCredential, KeyInfo


YUBIKEY_5_NFC = "fa2b99dc-9e39-4257-8f92-4a30d23c4118"
YUBIKEY_5_SERIES = "cb69481e-8ff7-4039-93ec-0a2729a154a8"
YUBIKEY_5_FIPS = "73bb0cd4-e502-49b8-9c6f-b59445bf720b"
YUBIKEY_5CI = "20ac7a17-c814-4833-93fe-539f0d5e3389"
UNKNOWN_AAGUID = "00000000-1111-2222-3333-444444444444"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(temp_dir: Path) -> Path:
    """Create a sample configuration file."""
    config_path = temp_dir / "provisioner.yaml"
    config_data = {
        "directory": {
            "tenant_id": "contoso.onmicrosoft.com",
            "client_id": "11111111-2222-3333-4444-555555555555",
            "auth_mode": "device_code",
        },
        "enrollment": {
            "pin_length": 6,
            "output_file": str(temp_dir / "enrolled.csv"),
        },
        "logging": {
            "level": "debug",
        },
    }
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
def sample_catalog_file(temp_dir: Path) -> Path:
    """Create a small catalog file."""
    catalog_path = temp_dir / "devices.yaml"
    catalog_data = {
        "devices": [
            {"model": "Test Key A", "firmware": "1.0", "aaguid": YUBIKEY_5_NFC, "certification": "L1"},
            {"model": "Test Key B", "firmware": "2.0", "aaguid": YUBIKEY_5_FIPS, "certification": "L2"},
        ]
    }
    with open(catalog_path, "w") as f:
        yaml.dump(catalog_data, f)
    return catalog_path


@pytest.fixture
def catalog() -> DeviceCatalog:
    """Small catalog with a shared AAGUID and every certification level."""
    return DeviceCatalog([
        DeviceRecord("YubiKey 5 NFC", "5.1", YUBIKEY_5_NFC, CertificationLevel.LEVEL_1),
        DeviceRecord("YubiKey 5C", "5.1", YUBIKEY_5_SERIES, CertificationLevel.LEVEL_1),
        DeviceRecord("YubiKey 5 Nano", "5.1", YUBIKEY_5_SERIES, CertificationLevel.LEVEL_1),
        DeviceRecord("YubiKey 5 NFC FIPS", "5.4", YUBIKEY_5_FIPS, CertificationLevel.LEVEL_2),
        DeviceRecord("YubiKey 5Ci", "5.7", YUBIKEY_5CI, CertificationLevel.NOT_APPLICABLE),
    ])


class FakeKey:
    """In-memory security key."""

    def __init__(
        self,
        serial: str = "12345678",
        aaguid: str | None = YUBIKEY_5_NFC,
        pin_set: bool = False,
        fail_on: str | None = None,
    ) -> None:
        self.info = KeyInfo(
            serial=serial,
            model="YubiKey 5 NFC",
            firmware="5.4.3",
            aaguid=aaguid,
            pin_set=pin_set,
            supports_min_pin_length=True,
        )
        self.fail_on = fail_on
        self.calls: list[str] = []
        self.pin: str | None = None
        self.closed = False

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name:
            raise HardwareError(f"{name} failed")

    def reset(self, on_reinsert: Callable[[], None], on_touch: Callable[[], None]) -> None:
        self._call("reset")
        on_reinsert()
        on_touch()
        self.info.pin_set = False
        self.pin = None

    def set_pin(self, pin: str) -> None:
        self._call("set_pin")
        self.pin = pin
        self.info.pin_set = True

    def make_credential(self, options, pin: str, on_touch: Callable[[], None]) -> CreatedCredential:
        self._call("make_credential")
        assert pin == self.pin
        on_touch()
        return CreatedCredential(
            credential_id="Y3JlZGVudGlhbA",
            client_data_json="Y2xpZW50RGF0YQ",
            attestation_object="YXR0ZXN0YXRpb24",
        )

    def force_pin_change(self, pin: str, min_length: int) -> None:
        self._call("force_pin_change")

    def restrict_nfc(self) -> None:
        self._call("restrict_nfc")

    def close(self) -> None:
        self.closed = True


class FakeKeyProvider:
    """Hands out queued FakeKeys; raises HardwareError when empty."""

    def __init__(self, *keys: FakeKey) -> None:
        self.keys = list(keys)
        self.connected: list[FakeKey] = []

    def connect(self) -> FakeKey:
        if not self.keys:
            raise HardwareError("No security key detected")
        key = self.keys.pop(0)
        self.connected.append(key)
        return key


class ScriptedOperator:
    """Operator with canned confirmation answers."""

    def __init__(self, confirm: bool = True) -> None:
        self.answer = confirm
        self.messages: list[str] = []
        self.confirmations: list[str] = []

    def wait_for_key(self, message: str) -> None:
        self.messages.append(message)

    def confirm(self, message: str) -> bool:
        self.confirmations.append(message)
        return self.answer

    def notify(self, message: str) -> None:
        self.messages.append(message)


@pytest.fixture
def creation_options() -> CredentialCreationOptions:
    """Credential creation options as returned by the directory."""
    return CredentialCreationOptions.model_validate({
        "challengeTimeoutDateTime": "2026-10-17T12:05:00Z",
        "publicKey": {
            "challenge": "Y2hhbGxlbmdl",
            "rp": {"id": "login.microsoft.com", "name": "Microsoft"},
            "user": {"id": "dXNlcg", "name": "alice@contoso.com", "displayName": "Alice"},
            "pubKeyCredParams": [{"type": "public-key", "alg": -7}, {"type": "public-key", "alg": -257}],
            "timeout": 300000,
            "attestation": "direct",
        },
    })


@pytest.fixture
def directory(creation_options: CredentialCreationOptions) -> MagicMock:
    """DirectoryClient mock that accepts every registration."""
    client = MagicMock(spec=DirectoryClient)
    client.get_creation_options.return_value = creation_options
    client.register_fido2_method.return_value = {"id": "method-1"}
    client.find_group.return_value = DirectoryGroup(id="group-1", display_name="Engineering")
    client.list_group_members.return_value = iter([
        DirectoryUser(id="u1", user_principal_name="alice@contoso.com"),
        DirectoryUser(id="u2", user_principal_name="bob@contoso.com"),
    ])
    return client


def make_response(status_code: int = 200, payload: dict | None = None, text: str = "") -> MagicMock:
    """Build a requests.Response stand-in."""
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    response.text = text
    response.content = b"{}" if payload is not None else b""
    return response
