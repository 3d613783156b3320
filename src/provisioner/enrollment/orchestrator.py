"""
Enrollment Orchestrator.

Drives a security key through passkey registration for one user, or for
every member of a group, one key at a time:

    await hardware -> configure -> set PIN -> fetch challenge ->
    generate credential -> submit attestation -> post-configure -> record
"""

from __future__ import annotations

import logging
import secrets
import string
from contextlib import contextmanager
from typing import Callable, Iterator

from provisioner.catalog import DeviceCatalog, default_catalog
from provisioner.config import EnrollmentConfig
from provisioner.directory.client import DirectoryClient, validate_identity
from provisioner.directory.schemas import CredentialCreationOptions, Fido2Registration
from provisioner.enrollment.models import EnrollmentRecord, GroupEnrollmentResult, Step
from provisioner.enrollment.output import EnrollmentLog
from provisioner.enrollment.prompts import Operator
from provisioner.errors import (
    AuthError,
    DirectoryError,
    EnrollmentError,
    HardwareError,
    ValidationError,
)
from provisioner.hardware.base import HardwareKey, KeyProvider


logger = logging.getLogger(__name__)

CHALLENGE_DIAGNOSTIC = (
    "The directory rejected the credential creation request. Likely causes:\n"
    "  1. The user does not exist in the tenant\n"
    "  2. The signed-in account or app lacks UserAuthenticationMethod.ReadWrite.All\n"
    "  3. The FIDO2 authentication method is not enabled for the user"
)


def generate_pin(length: int = 4) -> str:
    """Generate a uniformly random numeric PIN."""
    if length < 4:
        raise ValueError(f"PIN length must be at least 4, got {length}")
    return "".join(secrets.choice(string.digits) for _ in range(length))


class EnrollmentOrchestrator:
    """
    Registers security keys as FIDO2 passkeys for directory users.

    Each enrollment is strictly sequential. A record is written only after
    the directory has accepted the attestation.
    """

    def __init__(
        self,
        directory: DirectoryClient,
        keys: KeyProvider,
        operator: Operator,
        log: EnrollmentLog,
        config: EnrollmentConfig | None = None,
        catalog: DeviceCatalog | None = None,
        pin_generator: Callable[[int], str] = generate_pin,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            directory: Graph client (session owned by the caller)
            keys: Source of connected security keys
            operator: Operator interaction
            log: Output file for completed enrollments
            config: Enrollment settings
            catalog: Device catalog used for model names
            pin_generator: PIN source, takes the PIN length
        """
        self.directory = directory
        self.keys = keys
        self.operator = operator
        self.log = log
        self.config = config or EnrollmentConfig()
        self.catalog = catalog if catalog is not None else default_catalog()
        self.pin_generator = pin_generator

    @contextmanager
    def _step(self, identity: str, step: Step) -> Iterator[None]:
        """Attach identity and step to failures raised inside a step."""
        logger.debug("%s: %s", identity, step)
        try:
            yield
        except HardwareError as e:
            raise HardwareError(f"{identity} [{step}]: {e}") from e
        except DirectoryError as e:
            raise EnrollmentError(str(e), identity=identity, step=str(step), body=e.body) from e

    def enroll_user(self, identity: str) -> EnrollmentRecord:
        """
        Enroll one key for one user.

        Args:
            identity: User principal name or object id

        Returns:
            The recorded EnrollmentRecord

        Raises:
            ValidationError: If the identity is malformed
            HardwareError: If the key is missing or cannot be configured
            EnrollmentError: If the directory rejects the registration
            AuthError: If the directory session cannot be authenticated
        """
        identity = validate_identity(identity)

        with self._step(identity, Step.AWAIT_HARDWARE):
            self.operator.wait_for_key(f"Insert the security key for {identity} and press Enter")
            key = self.keys.connect()

        try:
            with self._step(identity, Step.CONFIGURE):
                self._configure(identity, key)

            pin = self.pin_generator(self.config.pin_length)
            with self._step(identity, Step.SET_PIN):
                key.set_pin(pin)

            with self._step(identity, Step.FETCH_CHALLENGE):
                options = self._fetch_challenge(identity)

            with self._step(identity, Step.GENERATE_CREDENTIAL):
                self.operator.notify("Touch the security key to create the passkey")
                credential = key.make_credential(
                    options,
                    pin,
                    on_touch=lambda: self.operator.notify("Waiting for touch..."),
                )

            model_label = self.model_label(key)
            display_name = self.config.display_name.format(
                model=model_label, serial=key.info.serial
            )
            with self._step(identity, Step.SUBMIT_ATTESTATION):
                self.directory.register_fido2_method(
                    identity,
                    Fido2Registration(
                        display_name=display_name,
                        credential_id=credential.credential_id,
                        client_data_json=credential.client_data_json,
                        attestation_object=credential.attestation_object,
                    ),
                )
            logger.info("Registered %s (serial %s) for %s", model_label, key.info.serial, identity)

            self._post_configure(identity, key, pin)

            record = EnrollmentRecord(
                identity=identity,
                model_label=model_label,
                hardware_serial=key.info.serial,
                assigned_pin=pin,
            )
            try:
                self.log.append(record)
            except OSError as e:
                raise EnrollmentError(
                    f"Key registered but {self.log.path} could not be written: {e}",
                    identity=identity,
                    step=str(Step.RECORD),
                ) from e

            self.operator.notify(f"Enrolled {identity}: serial {key.info.serial}")
            return record
        finally:
            key.close()

    def enroll_group(self, group_name: str) -> GroupEnrollmentResult:
        """
        Enroll one key per member of a group.

        Members are processed one after another; a failure for one member
        is recorded and processing continues with the next.
        """
        group = self.directory.find_group(group_name)
        members = list(self.directory.list_group_members(group.id))
        result = GroupEnrollmentResult(group=group.display_name)
        logger.info("Group '%s' has %d members", group.display_name, len(members))

        for number, member in enumerate(members, 1):
            identity = member.user_principal_name
            self.operator.notify(f"[{number}/{len(members)}] {identity}")
            try:
                result.succeeded.append(self.enroll_user(identity))
            except AuthError:
                raise
            except (HardwareError, EnrollmentError, DirectoryError, ValidationError) as e:
                logger.error("Enrollment failed for %s: %s", identity, e)
                result.failed[identity] = str(e)
                self.operator.notify(f"Skipping {identity}: {e}")
            except Exception as e:
                logger.exception("Unexpected error enrolling %s", identity)
                result.failed[identity] = f"{identity}: unexpected {type(e).__name__}: {e}"
                self.operator.notify(f"Skipping {identity}: {e}")

        logger.info(
            "Group enrollment done: %d succeeded, %d failed",
            len(result.succeeded), len(result.failed),
        )
        return result

    def model_label(self, key: HardwareKey) -> str:
        """Model name from the catalog, falling back to what the key reports."""
        record = self.catalog.lookup_by_id(key.info.aaguid) if key.info.aaguid else None
        return record.model if record is not None else key.info.model

    def _configure(self, identity: str, key: HardwareKey) -> None:
        if not key.info.pin_set:
            return

        if not self.operator.confirm(
            f"The key for {identity} already has a FIDO2 PIN. "
            "Reset it? All passkeys on the key will be deleted."
        ):
            raise HardwareError("Key has a PIN and reset was declined")

        key.reset(
            on_reinsert=lambda: self.operator.wait_for_key(
                "Remove and re-insert the key, then press Enter"
            ),
            on_touch=lambda: self.operator.notify("Touch the key to confirm the reset"),
        )
        logger.info("Reset FIDO application on key %s", key.info.serial)

    def _fetch_challenge(self, identity: str) -> CredentialCreationOptions:
        try:
            return self.directory.get_creation_options(
                identity, timeout_minutes=self.config.challenge_timeout
            )
        except DirectoryError as e:
            if e.status_code == 400:
                raise EnrollmentError(
                    CHALLENGE_DIAGNOSTIC,
                    identity=identity,
                    step=str(Step.FETCH_CHALLENGE),
                    body=e.body,
                ) from e
            raise

    def _post_configure(self, identity: str, key: HardwareKey, pin: str) -> None:
        """Best-effort settings; failures never undo the registration."""
        if self.config.force_pin_change:
            try:
                key.force_pin_change(pin, self.config.min_pin_length)
            except Exception as e:
                logger.debug("%s [%s]: force PIN change skipped: %s", identity, Step.POST_CONFIGURE, e)

        if self.config.restrict_nfc:
            try:
                key.restrict_nfc()
            except Exception as e:
                logger.debug("%s [%s]: restricted NFC skipped: %s", identity, Step.POST_CONFIGURE, e)
