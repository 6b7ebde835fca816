"""Per-device keyslot conversion state machine.

One ConversionStateMachine drives one ConversionRequest through::

    Opened -> BackedUp -> Converting -> Verifying -> Converted
                                            |
                                            +-> Reverting -> Reverted | Failed

Ordering guarantees:
    - Nothing is mutated before a header backup has been written and flushed.
    - The conversion command runs at most once per request, against the raw
      device; the first mapping is closed right after it.
    - The revert command runs only after a failed verification, at most once.
    - Dry runs never call the conversion or revert commands.

Every temporary mapping is opened through storage.mapping.open_mapping(), so
it is closed on every exit path of the run, including interruption.
"""

from __future__ import annotations

from contextlib import ExitStack
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from luks_fips.domain.models import (
    ConversionRequest,
    ConversionState,
    HeaderBackup,
    Outcome,
    SessionResult,
)
from luks_fips.logging import LoggerFactory, device_context
from luks_fips.storage.backup import BackupManager
from luks_fips.storage.cryptsetup import Cryptsetup
from luks_fips.storage.exceptions import (
    BackupError,
    CommandError,
    ConversionError,
    InspectionError,
    RevertError,
    VerificationError,
)
from luks_fips.storage.keyslots import KeyslotInspector
from luks_fips.storage.mapping import MappingNameGenerator, open_mapping

if TYPE_CHECKING:
    from loguru import Logger


def _reason(error: CommandError) -> str:
    return error.stderr or str(error)


class ConversionStateMachine:
    """Runs one conversion request to a terminal state."""

    def __init__(
        self,
        request: ConversionRequest,
        cryptsetup: Cryptsetup,
        backups: BackupManager,
        inspector: KeyslotInspector,
        backup_dir: Path | str,
        names: Optional[MappingNameGenerator] = None,
    ):
        self.request = request
        self.cryptsetup = cryptsetup
        self.backups = backups
        self.inspector = inspector
        self.backup_dir = Path(backup_dir)
        self.names = names or MappingNameGenerator()
        self.state: Optional[ConversionState] = None
        self.history: list[ConversionState] = []
        self.backup: Optional[HeaderBackup] = None
        self.log: Logger = LoggerFactory.for_device(request.device)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, state: ConversionState, message: str, level: str = "info") -> None:
        if self.state is not None and self.state.is_terminal:
            raise RuntimeError(
                f"{self.request.device} is already {self.state.value}; "
                f"cannot move to {state.value}"
            )
        self.state = state
        self.history.append(state)
        getattr(self.log, level)(f"[{state.value}] {message}")

    def _result(
        self,
        outcome: Outcome,
        reason: str,
        manual_intervention: bool = False,
    ) -> SessionResult:
        return SessionResult(
            device=self.request.device,
            outcome=outcome,
            reason=reason,
            slot=self.request.slot,
            dry_run=self.request.dry_run,
            backup=self.backup,
            manual_intervention=manual_intervention,
        )

    def _fail(self, reason: str, manual_intervention: bool = False) -> SessionResult:
        self._transition(ConversionState.FAILED, reason, level="error")
        return self._result(Outcome.FAILED, reason, manual_intervention)

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def run(self) -> SessionResult:
        """Run the request to Converted, Reverted or Failed."""
        request = self.request
        with device_context(request.device, slot=request.slot, dry_run=request.dry_run) as log:
            self.log = log
            backup_error: Optional[BackupError] = None
            conversion_error: Optional[ConversionError] = None
            with ExitStack() as stack:
                mapping_name = self.names.generate()
                try:
                    stack.enter_context(
                        open_mapping(
                            self.cryptsetup, request.device, mapping_name, request.passphrase
                        )
                    )
                except CommandError as error:
                    return self._fail(
                        f"Failed to open {request.device}. Aborting operation. "
                        f"({_reason(error)})"
                    )
                self._transition(
                    ConversionState.OPENED,
                    f"{request.device} mapped as {self.cryptsetup.mapper_path(mapping_name)}",
                )

                try:
                    self.backup = self.backups.backup(
                        mapping_name, self.backup_dir, request.device
                    )
                except BackupError as error:
                    backup_error = error
                else:
                    self._transition(
                        ConversionState.BACKED_UP,
                        f"Header of {request.device} saved to {self.backup.path}",
                    )
                    conversion_error = self._convert()
            # First mapping is closed here, whatever happened above.

            if backup_error is not None:
                return self._fail(f"{backup_error}. Aborting operation.")
            return self._verify(conversion_error)

    def _convert(self) -> Optional[ConversionError]:
        request = self.request
        self._transition(
            ConversionState.CONVERTING,
            f"Converting keyslot {request.slot} on {request.device} to "
            f"PBKDF {request.pbkdf}, hash {request.hash}, "
            f"{request.iterations} iterations",
        )
        if request.dry_run:
            self.log.info(f"Dry run: Would convert keyslot for {request.device}")
            return None
        try:
            self.cryptsetup.convert_keyslot(
                request.device,
                request.slot,
                request.pbkdf,
                request.hash,
                request.iterations,
                request.passphrase,
            )
        except CommandError as error:
            conversion_error = ConversionError(request.device, request.slot, _reason(error))
            self.log.error(f"ERROR: {conversion_error}")
            return conversion_error
        return None

    def _verify(self, conversion_error: Optional[ConversionError]) -> SessionResult:
        request = self.request
        self._transition(
            ConversionState.VERIFYING,
            f"Reopening {request.device} with the new passphrase",
        )
        try:
            with open_mapping(
                self.cryptsetup, request.device, self.names.generate(), request.passphrase
            ):
                pass
        except CommandError as error:
            self.log.error(
                f"ERROR: Failed to open {request.device} after key conversion. "
                "Attempting revert..."
            )
            return self._revert(VerificationError(request.device, _reason(error)))

        if conversion_error is not None:
            return self._fail(
                f"{conversion_error}. Keyslot {request.slot} was left unchanged "
                f"and {request.device} still opens."
            )
        if request.dry_run:
            reason = f"Dry run: {request.device} opens; no changes were made."
            self._transition(ConversionState.CONVERTED, reason)
            return self._result(Outcome.CONVERTED, reason)

        self._report_parameters()
        reason = f"Key for {request.device} (slot {request.slot}) converted successfully."
        self._transition(ConversionState.CONVERTED, reason)
        return self._result(Outcome.CONVERTED, reason)

    def _report_parameters(self) -> None:
        request = self.request
        try:
            descriptor = self.inspector.inspect_slot(request.device, request.slot)
        except InspectionError as error:
            self.log.warning(f"Could not re-read keyslot parameters: {error}")
            return
        self.log.info(
            f"Keyslot {descriptor.slot} on {request.device} now uses PBKDF "
            f"{descriptor.pbkdf}, hash {descriptor.hash}, "
            f"{descriptor.iterations} iterations"
        )
        if not descriptor.matches(request.pbkdf, request.hash, request.iterations):
            self.log.warning(
                f"Keyslot {descriptor.slot} on {request.device} does not report the "
                f"requested parameters ({request.pbkdf}, {request.hash}, "
                f"{request.iterations})"
            )

    def _revert(self, verification_error: VerificationError) -> SessionResult:
        request = self.request
        self._transition(
            ConversionState.REVERTING,
            f"Reverting key conversion for {request.device} (slot {request.slot})",
            level="warning",
        )
        if request.dry_run:
            self.log.info(f"Dry run: Would revert key conversion for {request.device}")
            reason = f"Dry run: {verification_error}"
            self._transition(ConversionState.REVERTED, reason, level="warning")
            return self._result(Outcome.REVERTED, reason)

        try:
            self.cryptsetup.revert_keyslot_conversion(request.device, request.slot)
        except CommandError as error:
            revert_error = RevertError(request.device, request.slot, _reason(error))
            backup_hint = (
                f" Restore the header from {self.backup.path}." if self.backup else ""
            )
            return self._fail(
                f"{revert_error}. Manual intervention required.{backup_hint}",
                manual_intervention=True,
            )

        reason = (
            f"Key conversion reverted for {request.device}. "
            "The keyslot was not converted."
        )
        self._transition(ConversionState.REVERTED, reason, level="warning")
        return self._result(Outcome.REVERTED, f"{verification_error}. {reason}")
