"""Domain model for keyslot conversion.

Type-safe value objects passed between the inspector, the backup manager,
the conversion state machine and the session orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from luks_fips.config.settings import MAX_KEYSLOT, MIN_KEYSLOT
from luks_fips.storage.exceptions import InvalidRequestError, PassphraseMismatchError


# ==============================================================================
# Keyslot Domain
# ==============================================================================


@dataclass(frozen=True)
class KeyslotDescriptor:
    """Snapshot of the keyslot selected from a header dump.

    Never cached across a mutation: re-inspect the device instead.
    """

    device: str  # e.g., "/dev/sdb2"
    slot: int  # e.g., 0
    pbkdf: str  # e.g., "argon2id", "pbkdf2"
    hash: str  # e.g., "sha512"
    iterations: int  # Iterations for pbkdf2, time cost for argon2
    active_slots: tuple[int, ...] = ()

    @property
    def has_multiple_active_slots(self) -> bool:
        return len(self.active_slots) > 1

    def format_summary(self) -> str:
        """Format the line reported by --list.

        Returns: e.g., "Device: /dev/sdb2, Keyslot: 0, PBKDF: argon2, Hash: sha512"
        """
        return (
            f"Device: {self.device}, Keyslot: {self.slot}, "
            f"PBKDF: {self.pbkdf}, Hash: {self.hash}"
        )

    def matches(self, pbkdf: str, hash_name: str, iterations: int) -> bool:
        """Check whether the keyslot already uses the given parameters."""
        return (
            self.pbkdf == pbkdf
            and self.hash == hash_name
            and self.iterations == iterations
        )


# ==============================================================================
# Conversion Domain
# ==============================================================================


def validate_keyslot(slot: int) -> int:
    """Validate a keyslot index.

    Raises:
        InvalidRequestError: If the slot is not an integer in 0-7
    """
    if isinstance(slot, bool) or not isinstance(slot, int):
        raise InvalidRequestError("keyslot", f"{slot!r} is not an integer")
    if not MIN_KEYSLOT <= slot <= MAX_KEYSLOT:
        raise InvalidRequestError(
            "keyslot", f"{slot} is outside {MIN_KEYSLOT}-{MAX_KEYSLOT}"
        )
    return slot


@dataclass(frozen=True)
class ConversionRequest:
    """Everything one state machine run needs for one device."""

    device: str
    slot: int
    pbkdf: str
    hash: str
    iterations: int
    passphrase: str = field(repr=False)
    dry_run: bool = False

    @classmethod
    def build(
        cls,
        device: str,
        slot: int,
        pbkdf: str,
        hash_name: str,
        iterations: int,
        passphrase: str,
        confirmation: str,
        dry_run: bool = False,
    ) -> ConversionRequest:
        """Validate inputs and construct a request.

        Raises:
            InvalidRequestError: If a target parameter is empty or out of range
            PassphraseMismatchError: If the passphrase is empty or differs
                from its confirmation
        """
        if not device:
            raise InvalidRequestError("device", "empty device path")
        validate_keyslot(slot)
        if not pbkdf or not pbkdf.strip():
            raise InvalidRequestError("pbkdf", "empty PBKDF algorithm")
        if not hash_name or not hash_name.strip():
            raise InvalidRequestError("hash", "empty hash algorithm")
        if isinstance(iterations, bool) or not isinstance(iterations, int):
            raise InvalidRequestError("iterations", f"{iterations!r} is not an integer")
        if iterations <= 0:
            raise InvalidRequestError("iterations", "must be greater than 0")
        if passphrase != confirmation:
            raise PassphraseMismatchError(device)
        if not passphrase:
            raise PassphraseMismatchError(device, empty=True)
        return cls(
            device=device,
            slot=slot,
            pbkdf=pbkdf.strip(),
            hash=hash_name.strip(),
            iterations=iterations,
            passphrase=passphrase,
            dry_run=dry_run,
        )


class ConversionState(Enum):
    """States of the per-device conversion state machine."""

    OPENED = "Opened"
    BACKED_UP = "BackedUp"
    CONVERTING = "Converting"
    VERIFYING = "Verifying"
    REVERTING = "Reverting"
    CONVERTED = "Converted"
    REVERTED = "Reverted"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ConversionState.CONVERTED,
            ConversionState.REVERTED,
            ConversionState.FAILED,
        )


@dataclass(frozen=True)
class HeaderBackup:
    """A header backup file written before any mutation."""

    device: str
    path: Path
    size_bytes: int
    created_at: datetime
    previous: Path | None = None  # Earlier backup moved aside, if any

    @staticmethod
    def path_for(device: str, destination_dir: Path | str) -> Path:
        """Backup location for a device: <dir>/<basename>_header_backup.bin."""
        return Path(destination_dir) / f"{Path(device).name}_header_backup.bin"


# ==============================================================================
# Session Domain
# ==============================================================================


class Outcome(Enum):
    """Final per-device outcome of a session."""

    CONVERTED = "Converted"
    REVERTED = "Reverted"
    ABORTED = "Aborted-by-user"
    FAILED = "Failed"


@dataclass(frozen=True)
class SessionResult:
    """Outcome of one device, as aggregated by the session."""

    device: str
    outcome: Outcome
    reason: str = ""
    slot: int | None = None
    dry_run: bool = False
    backup: HeaderBackup | None = None
    manual_intervention: bool = False

    @property
    def stops_session(self) -> bool:
        """Reverted and Failed devices end the whole session."""
        return self.outcome in (Outcome.REVERTED, Outcome.FAILED)


@dataclass
class SessionReport:
    """Ordered results of a session run."""

    results: list[SessionResult] = field(default_factory=list)

    def add(self, result: SessionResult) -> None:
        self.results.append(result)

    def by_outcome(self, outcome: Outcome) -> list[SessionResult]:
        return [result for result in self.results if result.outcome == outcome]

    @property
    def succeeded(self) -> bool:
        return not any(result.stops_session for result in self.results)

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1
