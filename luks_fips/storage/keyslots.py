"""Keyslot discovery from ``cryptsetup luksDump`` output.

The selection policy is first-match: the first keyslot entry of the form
``<N>: luks1`` or ``<N>: luks2`` is the one reported and converted. Devices
with more than one active keyslot are not rejected, but a warning names all
of them so the user can pass --keyslot explicitly.

Example dump fragment::

    Keyslots:
      0: luks2
            Key:        512 bits
            PBKDF:      argon2id
            Time cost:  4
            AF hash:    sha256
      1: luks2
            PBKDF:      pbkdf2
            Hash:       sha512
            Iterations: 1000
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from luks_fips.domain.models import KeyslotDescriptor
from luks_fips.logging import get_logger

from .cryptsetup import Cryptsetup
from .exceptions import CommandError, InspectionError

log = get_logger(source=__name__, tags=["inspect"])

SUPPORTED_HEADER_VERSIONS = ("luks1", "luks2")
UNKNOWN = "unknown"

_SLOT_FIELD_RE = re.compile(r"^(\d+):$")


@dataclass
class KeyslotEntry:
    """One active keyslot entry and its indented attributes."""

    slot: int
    version: str
    attributes: dict[str, str] = field(default_factory=dict)

    def attribute(self, *names: str) -> Optional[str]:
        for name in names:
            value = self.attributes.get(name)
            if value:
                return value
        return None


def _slot_header(line: str) -> Optional[tuple[int, str]]:
    fields = line.split()
    if len(fields) < 2:
        return None
    match = _SLOT_FIELD_RE.match(fields[0])
    if not match or fields[1] not in SUPPORTED_HEADER_VERSIONS:
        return None
    return int(match.group(1)), fields[1]


def parse_keyslots(dump: str) -> list[KeyslotEntry]:
    """Return active keyslot entries in dump order."""
    entries: list[KeyslotEntry] = []
    current: Optional[KeyslotEntry] = None
    for line in dump.splitlines():
        header = _slot_header(line)
        if header is not None:
            current = KeyslotEntry(slot=header[0], version=header[1])
            entries.append(current)
            continue
        if current is None:
            continue
        fields = line.split()
        # A new numbered entry or a section title ends the current keyslot.
        if not line[:1].isspace() or (fields and _SLOT_FIELD_RE.match(fields[0])):
            current = None
            continue
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        current.attributes.setdefault(key.strip(), value.strip())
    return entries


def _parse_int(value: Optional[str]) -> int:
    if not value:
        return 0
    match = re.match(r"\d+", value)
    return int(match.group(0)) if match else 0


class KeyslotInspector:
    """Finds the active keyslot of a device and its KDF parameters."""

    def __init__(self, cryptsetup: Cryptsetup):
        self.cryptsetup = cryptsetup

    def _entries(self, device: str) -> list[KeyslotEntry]:
        try:
            dump = self.cryptsetup.dump_header(device)
        except CommandError as error:
            raise InspectionError(device, error.stderr or str(error)) from error
        entries = parse_keyslots(dump)
        if not entries:
            raise InspectionError(device, "no active keyslot found")
        return entries

    @staticmethod
    def _describe(
        device: str, entry: KeyslotEntry, entries: list[KeyslotEntry]
    ) -> KeyslotDescriptor:
        return KeyslotDescriptor(
            device=device,
            slot=entry.slot,
            pbkdf=entry.attribute("PBKDF") or UNKNOWN,
            hash=entry.attribute("Hash", "AF hash") or UNKNOWN,
            iterations=_parse_int(entry.attribute("Iterations", "Time cost")),
            active_slots=tuple(item.slot for item in entries),
        )

    def inspect(self, device: str) -> KeyslotDescriptor:
        """Inspect the header of a device and select its first active keyslot.

        Raises:
            InspectionError: If the header cannot be dumped or holds no
                active keyslot
        """
        entries = self._entries(device)
        descriptor = self._describe(device, entries[0], entries)
        if descriptor.has_multiple_active_slots:
            log.warning(
                f"{device} has {len(entries)} active keyslots "
                f"({', '.join(str(slot) for slot in descriptor.active_slots)}); "
                f"using the first one ({descriptor.slot}). "
                "Use --keyslot to select another."
            )
        return descriptor

    def inspect_slot(self, device: str, slot: int) -> KeyslotDescriptor:
        """Describe a specific keyslot, e.g. to re-read it after a conversion.

        Raises:
            InspectionError: If the slot is not an active keyslot of the device
        """
        entries = self._entries(device)
        for entry in entries:
            if entry.slot == slot:
                return self._describe(device, entry, entries)
        raise InspectionError(device, f"keyslot {slot} is not active")
