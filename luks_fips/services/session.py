"""Session orchestration across devices.

Devices are processed one at a time, in the order the resolver produced.
For each device the session resolves the keyslot, shows its partitions,
asks for confirmation (unless auto-confirm), collects a passphrase pair and
runs a ConversionStateMachine. A Failed or Reverted device ends the session;
a device the user declines is skipped.
"""

from __future__ import annotations

import getpass
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from luks_fips.config.settings import (
    DEFAULT_BACKUP_DIR,
    DEFAULT_HASH,
    DEFAULT_ITERATIONS,
    DEFAULT_PBKDF,
)
from luks_fips.domain.models import (
    ConversionRequest,
    KeyslotDescriptor,
    Outcome,
    SessionReport,
    SessionResult,
)
from luks_fips.logging import LoggerFactory
from luks_fips.storage.backup import BackupManager
from luks_fips.storage.cryptsetup import Cryptsetup
from luks_fips.storage.exceptions import InspectionError, RequestError
from luks_fips.storage.keyslots import KeyslotInspector
from luks_fips.storage.mapping import MappingNameGenerator

from .conversion import ConversionStateMachine

log = LoggerFactory.for_session()

PASSPHRASE_PROMPT = "Enter the new password for encryption: "
CONFIRMATION_PROMPT = "Re-enter the new password for verification: "


@dataclass(frozen=True)
class SessionOptions:
    """Target parameters and policy shared by every device of a session."""

    pbkdf: str = DEFAULT_PBKDF
    hash: str = DEFAULT_HASH
    iterations: int = DEFAULT_ITERATIONS
    keyslot: Optional[int] = None  # None: auto-detect per device
    backup_dir: Path = Path(DEFAULT_BACKUP_DIR)
    auto_confirm: bool = False
    dry_run: bool = False
    overwrite_backup: bool = False


def prompt_confirmation(device: str) -> bool:
    try:
        answer = input(f"Proceed with key conversion on {device}? [y/N] ")
    except EOFError:
        return False
    return answer.strip() in ("y", "Y")


def prompt_passphrase(prompt: str) -> str:
    try:
        return getpass.getpass(prompt)
    except EOFError:
        return ""


class SessionOrchestrator:
    """Applies the conversion state machine to each resolved device."""

    def __init__(
        self,
        devices: Sequence[str],
        cryptsetup: Cryptsetup,
        options: SessionOptions,
        *,
        confirm: Callable[[str], bool] = prompt_confirmation,
        read_passphrase: Callable[[str], str] = prompt_passphrase,
        show: Callable[[str], None] = print,
        rng: Optional[random.Random] = None,
    ):
        self.devices = tuple(devices)
        self.cryptsetup = cryptsetup
        self.options = options
        self.confirm = confirm
        self.read_passphrase = read_passphrase
        self.show = show
        self.names = MappingNameGenerator(rng)
        self.inspector = KeyslotInspector(cryptsetup)
        self.backups = BackupManager(cryptsetup, overwrite=options.overwrite_backup)

    # ------------------------------------------------------------------
    # --list
    # ------------------------------------------------------------------

    def list_keyslots(self) -> list[Optional[KeyslotDescriptor]]:
        """Report the active keyslot of every device; never mutates anything."""
        found: list[Optional[KeyslotDescriptor]] = []
        for device in self.devices:
            try:
                descriptor = self.inspector.inspect(device)
            except InspectionError as error:
                log.debug(str(error))
                log.info(f"Device: {device}, Error: Failed to get current keyslot")
                found.append(None)
                continue
            log.info(descriptor.format_summary())
            found.append(descriptor)
        return found

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def _resolve_slot(self, device: str) -> int:
        if self.options.keyslot is not None:
            return self.options.keyslot
        descriptor = self.inspector.inspect(device)
        log.info(f"Auto-detected keyslot: {descriptor.slot}")
        return descriptor.slot

    def _build_request(self, device: str, slot: int) -> ConversionRequest:
        passphrase = self.read_passphrase(PASSPHRASE_PROMPT)
        confirmation = self.read_passphrase(CONFIRMATION_PROMPT)
        return ConversionRequest.build(
            device=device,
            slot=slot,
            pbkdf=self.options.pbkdf,
            hash_name=self.options.hash,
            iterations=self.options.iterations,
            passphrase=passphrase,
            confirmation=confirmation,
            dry_run=self.options.dry_run,
        )

    def process_device(self, device: str) -> SessionResult:
        """Take one device from keyslot resolution to a final outcome."""
        try:
            slot = self._resolve_slot(device)
        except InspectionError as error:
            log.error(str(error))
            reason = (
                "Failed to auto-detect keyslot. "
                "Please specify it manually using -k option."
            )
            log.error(reason)
            return SessionResult(device=device, outcome=Outcome.FAILED, reason=reason)

        self.show(f"Partitions on {device}:")
        self.show(self.cryptsetup.list_partitions(device))

        if not self.options.auto_confirm and not self.confirm(device):
            reason = f"Operation aborted by user for {device}."
            log.info(reason)
            return SessionResult(
                device=device, outcome=Outcome.ABORTED, reason=reason, slot=slot
            )

        try:
            request = self._build_request(device, slot)
        except RequestError as error:
            log.error(str(error))
            return SessionResult(
                device=device, outcome=Outcome.FAILED, reason=str(error), slot=slot
            )

        machine = ConversionStateMachine(
            request,
            self.cryptsetup,
            self.backups,
            self.inspector,
            self.options.backup_dir,
            names=self.names,
        )
        return machine.run()

    def run(self) -> SessionReport:
        """Process devices in order until all are done or one stops the session."""
        report = SessionReport()
        for device in self.devices:
            result = self.process_device(device)
            report.add(result)
            if result.stops_session:
                if result.manual_intervention:
                    log.critical(
                        f"{device} needs manual intervention; "
                        "remaining devices were not processed."
                    )
                else:
                    log.error(
                        f"Stopping after {device} ({result.outcome.value}); "
                        "remaining devices were not processed."
                    )
                self._log_summary(report)
                return report
        self._log_summary(report)
        log.info("Key conversion process completed.")
        return report

    @staticmethod
    def _log_summary(report: SessionReport) -> None:
        counts = [
            f"{len(report.by_outcome(outcome))} {outcome.value}"
            for outcome in Outcome
            if report.by_outcome(outcome)
        ]
        log.info(f"Summary: {', '.join(counts) or 'no devices processed'}")
