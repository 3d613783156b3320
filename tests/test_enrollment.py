"""
Tests for the enrollment orchestrator.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from provisioner.catalog import DeviceCatalog
from provisioner.config import EnrollmentConfig
from provisioner.directory import DirectoryClient, DirectorySession
from provisioner.enrollment import (
    OUTPUT_HEADER,
    ConsoleOperator,
    EnrollmentLog,
    EnrollmentOrchestrator,
    EnrollmentRecord,
    GroupEnrollmentResult,
    generate_pin,
)
from provisioner.enrollment.orchestrator import CHALLENGE_DIAGNOSTIC
from provisioner.errors import AuthError, DirectoryError, EnrollmentError, HardwareError, ValidationError

from conftest import UNKNOWN_AAGUID, FakeKey, FakeKeyProvider, ScriptedOperator


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def output_path(temp_dir: Path) -> Path:
    return temp_dir / "enrolled.csv"


@pytest.fixture
def operator() -> ScriptedOperator:
    return ScriptedOperator()


@pytest.fixture
def make_orchestrator(directory, catalog: DeviceCatalog, operator: ScriptedOperator, output_path: Path):
    """Factory building an orchestrator around the given keys."""

    def factory(*keys: FakeKey, **config) -> EnrollmentOrchestrator:
        return EnrollmentOrchestrator(
            directory=directory,
            keys=FakeKeyProvider(*keys),
            operator=operator,
            log=EnrollmentLog(output_path),
            config=EnrollmentConfig(**config),
            catalog=catalog,
        )

    return factory


# =============================================================================
# PIN Generation
# =============================================================================


class TestGeneratePin:
    """Tests for generate_pin."""

    @pytest.mark.parametrize("length", [4, 8, 63])
    def test_length_and_digits(self, length: int) -> None:
        pin = generate_pin(length)

        assert len(pin) == length
        assert pin.isdigit()

    def test_too_short(self) -> None:
        with pytest.raises(ValueError):
            generate_pin(3)

    def test_not_constant(self) -> None:
        pins = {generate_pin(8) for _ in range(20)}
        assert len(pins) > 1


# =============================================================================
# Single User
# =============================================================================


class TestEnrollUser:
    """Tests for single-user enrollment."""

    def test_fresh_key(self, make_orchestrator, directory, output_path: Path) -> None:
        """Test a key without a PIN is enrolled and recorded."""
        key = FakeKey(serial="12345678")
        orchestrator = make_orchestrator(key, pin_length=6)

        record = orchestrator.enroll_user("alice@contoso.com")

        assert record.identity == "alice@contoso.com"
        assert record.model_label == "YubiKey 5 NFC"
        assert record.hardware_serial == "12345678"
        assert len(record.assigned_pin) == 6
        assert record.assigned_pin == key.pin
        assert key.calls == ["set_pin", "make_credential", "force_pin_change"]
        assert key.closed

        directory.get_creation_options.assert_called_once_with("alice@contoso.com", timeout_minutes=5)
        registration = directory.register_fido2_method.call_args.args[1]
        assert registration.display_name == "YubiKey 5 NFC 12345678"
        assert registration.credential_id == "Y3JlZGVudGlhbA"

        assert EnrollmentLog(output_path).read() == [record]

    def test_challenge_fetched_after_pin(self, make_orchestrator, directory, creation_options) -> None:
        key = FakeKey()
        pins_at_challenge = []

        def fetch(identity, timeout_minutes):
            pins_at_challenge.append(key.pin)
            return creation_options

        directory.get_creation_options.side_effect = fetch

        make_orchestrator(key).enroll_user("alice@contoso.com")

        assert pins_at_challenge == [key.pin]
        assert key.pin is not None

    def test_existing_pin_reset_after_confirm(self, make_orchestrator, operator) -> None:
        key = FakeKey(pin_set=True)

        make_orchestrator(key).enroll_user("alice@contoso.com")

        assert key.calls[:2] == ["reset", "set_pin"]
        assert len(operator.confirmations) == 1
        assert any("re-insert" in m for m in operator.messages)

    def test_existing_pin_reset_declined(self, make_orchestrator, operator, directory, output_path) -> None:
        """Test declining the reset leaves the key and directory untouched."""
        operator.answer = False
        key = FakeKey(pin_set=True)

        with pytest.raises(HardwareError, match=r"\[configure\]"):
            make_orchestrator(key).enroll_user("alice@contoso.com")

        assert key.calls == []
        assert key.closed
        directory.get_creation_options.assert_not_called()
        assert not output_path.exists()

    def test_no_key(self, make_orchestrator, directory) -> None:
        with pytest.raises(HardwareError, match=r"alice@contoso.com \[await hardware\]"):
            make_orchestrator().enroll_user("alice@contoso.com")
        directory.get_creation_options.assert_not_called()

    def test_malformed_identity(self, make_orchestrator, operator) -> None:
        with pytest.raises(ValidationError):
            make_orchestrator(FakeKey()).enroll_user("alice")
        assert operator.messages == []

    def test_set_pin_failure(self, make_orchestrator, output_path) -> None:
        key = FakeKey(fail_on="set_pin")

        with pytest.raises(HardwareError, match=r"\[set credential PIN\]"):
            make_orchestrator(key).enroll_user("alice@contoso.com")
        assert key.closed
        assert not output_path.exists()

    def test_challenge_rejected(self, make_orchestrator, directory, output_path) -> None:
        """Test a 400 on the challenge explains the likely causes."""
        directory.get_creation_options.side_effect = DirectoryError(
            "GET creationOptions: HTTP 400", status_code=400, body='{"error": "badRequest"}'
        )
        key = FakeKey()

        with pytest.raises(EnrollmentError) as exc_info:
            make_orchestrator(key).enroll_user("alice@contoso.com")

        error = exc_info.value
        assert error.identity == "alice@contoso.com"
        assert error.step == "fetch challenge"
        assert CHALLENGE_DIAGNOSTIC in str(error)
        assert error.body == '{"error": "badRequest"}'
        assert "make_credential" not in key.calls
        assert not output_path.exists()

    def test_challenge_server_error(self, make_orchestrator, directory) -> None:
        directory.get_creation_options.side_effect = DirectoryError("HTTP 503", status_code=503)

        with pytest.raises(EnrollmentError) as exc_info:
            make_orchestrator(FakeKey()).enroll_user("alice@contoso.com")
        assert CHALLENGE_DIAGNOSTIC not in str(exc_info.value)
        assert exc_info.value.step == "fetch challenge"

    def test_registration_rejected(self, make_orchestrator, directory, output_path) -> None:
        """Test nothing is recorded when the directory rejects the attestation."""
        directory.register_fido2_method.side_effect = DirectoryError(
            "HTTP 400", status_code=400, body="invalid attestation"
        )

        with pytest.raises(EnrollmentError) as exc_info:
            make_orchestrator(FakeKey()).enroll_user("alice@contoso.com")

        assert exc_info.value.step == "submit attestation"
        assert exc_info.value.body == "invalid attestation"
        assert not output_path.exists()

    def test_auth_error_propagates(self, make_orchestrator, directory) -> None:
        directory.get_creation_options.side_effect = AuthError("token rejected")

        with pytest.raises(AuthError):
            make_orchestrator(FakeKey()).enroll_user("alice@contoso.com")

    def test_post_configure_failure_ignored(self, make_orchestrator, output_path) -> None:
        key = FakeKey(fail_on="force_pin_change")

        record = make_orchestrator(key, restrict_nfc=True).enroll_user("alice@contoso.com")

        assert key.calls[-2:] == ["force_pin_change", "restrict_nfc"]
        assert EnrollmentLog(output_path).read() == [record]

    def test_unexpected_post_configure_error_keeps_record(self, make_orchestrator, output_path) -> None:
        """Test a registered key is recorded even when a setting fails oddly."""
        key = FakeKey()
        key.restrict_nfc = MagicMock(side_effect=RuntimeError("usb stall"))

        record = make_orchestrator(key, restrict_nfc=True).enroll_user("alice@contoso.com")

        key.restrict_nfc.assert_called_once()
        assert EnrollmentLog(output_path).read() == [record]

    def test_post_configure_disabled(self, make_orchestrator) -> None:
        key = FakeKey()

        make_orchestrator(key, force_pin_change=False).enroll_user("alice@contoso.com")

        assert "force_pin_change" not in key.calls
        assert "restrict_nfc" not in key.calls

    def test_record_failure(self, directory, catalog, operator) -> None:
        log = MagicMock(spec=EnrollmentLog)
        log.path = Path("/unwritable/out.csv")
        log.append.side_effect = PermissionError("denied")
        orchestrator = EnrollmentOrchestrator(
            directory, FakeKeyProvider(FakeKey()), operator, log, catalog=catalog
        )

        with pytest.raises(EnrollmentError) as exc_info:
            orchestrator.enroll_user("alice@contoso.com")
        assert exc_info.value.step == "record"
        directory.register_fido2_method.assert_called_once()

    def test_unknown_model_uses_key_name(self, make_orchestrator) -> None:
        key = FakeKey(aaguid=UNKNOWN_AAGUID)
        key.info.model = "YubiKey 5 Custom"

        record = make_orchestrator(key).enroll_user("alice@contoso.com")
        assert record.model_label == "YubiKey 5 Custom"


# =============================================================================
# Group
# =============================================================================


class TestEnrollGroup:
    """Tests for group enrollment."""

    def test_all_members(self, make_orchestrator, output_path) -> None:
        orchestrator = make_orchestrator(FakeKey(serial="1"), FakeKey(serial="2"))

        result = orchestrator.enroll_group("Engineering")

        assert result.group == "Engineering"
        assert [r.identity for r in result.succeeded] == ["alice@contoso.com", "bob@contoso.com"]
        assert result.failed == {}
        assert [r.hardware_serial for r in EnrollmentLog(output_path).read()] == ["1", "2"]

    def test_failure_continues(self, make_orchestrator, output_path) -> None:
        """Test one member's failure does not stop the others."""
        orchestrator = make_orchestrator(FakeKey(fail_on="make_credential"), FakeKey(serial="2"))

        result = orchestrator.enroll_group("Engineering")

        assert list(result.failed) == ["alice@contoso.com"]
        assert "generate credential" in result.failed["alice@contoso.com"]
        assert [r.identity for r in result.succeeded] == ["bob@contoso.com"]
        assert result.total == 2
        assert [r.identity for r in EnrollmentLog(output_path).read()] == ["bob@contoso.com"]

    def test_malformed_challenge_continues(self, make_orchestrator, directory, creation_options) -> None:
        """Test a malformed Graph response for one member does not stop the group."""
        session = MagicMock(spec=DirectorySession)
        session.get_json.side_effect = [
            {"challengeTimeoutDateTime": "x"},
            creation_options.model_dump(by_alias=True),
        ]
        directory.get_creation_options.side_effect = DirectoryClient(session).get_creation_options

        result = make_orchestrator(FakeKey(serial="1"), FakeKey(serial="2")).enroll_group("Engineering")

        assert list(result.failed) == ["alice@contoso.com"]
        assert "fetch challenge" in result.failed["alice@contoso.com"]
        assert [r.identity for r in result.succeeded] == ["bob@contoso.com"]

    def test_unexpected_error_continues(self, make_orchestrator) -> None:
        broken = FakeKey(serial="1")
        broken.make_credential = MagicMock(side_effect=RuntimeError("device vanished"))

        result = make_orchestrator(broken, FakeKey(serial="2")).enroll_group("Engineering")

        assert "RuntimeError" in result.failed["alice@contoso.com"]
        assert [r.identity for r in result.succeeded] == ["bob@contoso.com"]
        assert broken.closed

    def test_auth_error_aborts(self, make_orchestrator, directory) -> None:
        directory.get_creation_options.side_effect = AuthError("token rejected")

        with pytest.raises(AuthError):
            make_orchestrator(FakeKey(), FakeKey()).enroll_group("Engineering")

    def test_unknown_group(self, make_orchestrator, directory) -> None:
        directory.find_group.side_effect = ValidationError("Group not found: Nobody")

        with pytest.raises(ValidationError):
            make_orchestrator().enroll_group("Nobody")

    def test_result_to_dict_omits_pins(self) -> None:
        result = GroupEnrollmentResult(
            group="Engineering",
            succeeded=[EnrollmentRecord("alice@contoso.com", "YubiKey 5 NFC", "1", "123456")],
            failed={"bob@contoso.com": "no key"},
        )

        data = result.to_dict()
        assert data["succeeded"] == ["alice@contoso.com"]
        assert "123456" not in str(data)


# =============================================================================
# Output File and Operator
# =============================================================================


class TestEnrollmentLog:
    """Tests for the enrollment output file."""

    def test_header_written_once(self, output_path: Path) -> None:
        log = EnrollmentLog(output_path)
        log.append(EnrollmentRecord("alice@contoso.com", "YubiKey 5 NFC", "1", "1234"))
        log.append(EnrollmentRecord("bob@contoso.com", "YubiKey 5C", "2", "5678"))

        lines = output_path.read_text().splitlines()
        assert lines[0] == ",".join(OUTPUT_HEADER)
        assert lines[1:] == ["alice@contoso.com,YubiKey 5 NFC,1,1234", "bob@contoso.com,YubiKey 5C,2,5678"]

    def test_appends_to_existing(self, output_path: Path) -> None:
        EnrollmentLog(output_path).append(EnrollmentRecord("a@contoso.com", "K", "1", "1111"))
        EnrollmentLog(output_path).append(EnrollmentRecord("b@contoso.com", "K", "2", "2222"))

        assert len(EnrollmentLog(output_path).read()) == 2

    def test_empty_file_gets_header(self, output_path: Path) -> None:
        output_path.touch()
        EnrollmentLog(output_path).append(EnrollmentRecord("a@contoso.com", "K", "1", "0042"))

        records = EnrollmentLog(output_path).read()
        assert records[0].assigned_pin == "0042"

    def test_read_missing(self, output_path: Path) -> None:
        assert EnrollmentLog(output_path).read() == []


class TestConsoleOperator:
    """Tests for ConsoleOperator."""

    @pytest.mark.parametrize("answer,expected", [("y", True), ("YES", True), ("", False), ("n", False)])
    def test_confirm(self, answer: str, expected: bool) -> None:
        operator = ConsoleOperator(input_func=lambda prompt: answer)
        assert operator.confirm("Reset?") is expected

    def test_notify(self) -> None:
        output = MagicMock()
        ConsoleOperator(output_func=output).notify("hello")
        output.assert_called_once_with("hello")
