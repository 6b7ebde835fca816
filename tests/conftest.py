"""
Pytest configuration and shared fixtures for luks-fips-convert tests.

This module provides an in-memory stand-in for the cryptsetup client, a
luksDump text builder and a loguru capture sink.
"""

from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, List

import pytest
from loguru import logger

from luks_fips.storage import mapping
from luks_fips.storage.exceptions import CommandError


# ==============================================================================
# luksDump Fixtures
# ==============================================================================


DUMP_PREAMBLE = """LUKS header information
Version:       \t2
Epoch:         \t5
Metadata area: \t16384 [bytes]
Keyslots area: \t16744448 [bytes]
UUID:          \t3f1c2a5e-9d7b-4c1e-8a2f-0b6d5e4c3a21
Label:         \t(no label)
Subsystem:     \t(no subsystem)
Flags:       \t(no flags)

Data segments:
  0: crypt
\toffset: 16777216 [bytes]
\tlength: (whole device)
\tcipher: aes-xts-plain64
\tsector: 512 [bytes]

Keyslots:
"""

DUMP_TRAILER = """Tokens:
Digests:
  0: pbkdf2
\tHash:       sha256
\tIterations: 129774
\tSalt:       5a 1b 9c 2d 3e 4f 50 61 72 83 94 a5 b6 c7 d8 e9
\t            fa 0b 1c 2d 3e 4f 50 61 72 83 94 a5 b6 c7 d8 e9
\tDigest:     0f 1e 2d 3c 4b 5a 69 78 87 96 a5 b4 c3 d2 e1 f0
"""


def build_luks_dump(slots: Iterable[Dict[str, Any]]) -> str:
    """Build luksDump output for the given keyslots.

    Each slot is a dict with "slot", "pbkdf", "hash" and "iterations".
    argon2 keyslots report their hash as "AF hash" and iterations as
    "Time cost", like cryptsetup does.
    """
    lines = [DUMP_PREAMBLE.rstrip("\n")]
    for spec in slots:
        lines.append(f"  {spec['slot']}: {spec.get('version', 'luks2')}")
        lines.append("\tKey:        512 bits")
        lines.append("\tPriority:   normal")
        lines.append("\tCipher:     aes-xts-plain64")
        lines.append("\tCipher key: 512 bits")
        lines.append(f"\tPBKDF:      {spec['pbkdf']}")
        if spec["pbkdf"].startswith("argon2"):
            lines.append(f"\tTime cost:  {spec['iterations']}")
            lines.append("\tMemory:     1048576")
            lines.append("\tThreads:    4")
            lines.append("\tSalt:       de ad be ef de ad be ef de ad be ef de ad be ef")
            lines.append("\tAF stripes: 4000")
            lines.append(f"\tAF hash:    {spec['hash']}")
        else:
            lines.append(f"\tHash:       {spec['hash']}")
            lines.append(f"\tIterations: {spec['iterations']}")
            lines.append("\tSalt:       de ad be ef de ad be ef de ad be ef de ad be ef")
            lines.append("\tAF stripes: 4000")
            lines.append(f"\tAF hash:    {spec['hash']}")
        lines.append("\tArea offset:32768 [bytes]")
        lines.append("\tArea length:258048 [bytes]")
        lines.append("\tDigest ID:  0")
    lines.append(DUMP_TRAILER.rstrip("\n"))
    return "\n".join(lines) + "\n"


ARGON2_SLOT_0 = {"slot": 0, "pbkdf": "argon2", "hash": "sha512", "iterations": 4}


@pytest.fixture
def make_dump():
    """Fixture providing the luksDump builder."""
    return build_luks_dump


@pytest.fixture
def argon2_dump() -> str:
    """A LUKS2 header with a single argon2 keyslot in slot 0."""
    return build_luks_dump([ARGON2_SLOT_0])


# ==============================================================================
# cryptsetup Fixtures
# ==============================================================================


class FakeCryptsetup:
    """In-memory cryptsetup client recording every call.

    Failure switches:
        fail_open: devices that never open
        fail_reopen: devices that open once, then refuse every later open
        fail_backup / fail_convert / fail_revert: devices whose command fails
    """

    def __init__(self, dumps: Dict[str, str] = None, devices: Iterable[str] = ()):
        self.dumps = dict(dumps or {})
        self.devices = list(devices)
        self.calls: List[tuple] = []
        self.fail_open: set = set()
        self.fail_reopen: set = set()
        self.fail_backup: set = set()
        self.fail_convert: set = set()
        self.fail_revert: set = set()
        self.open_counts: Counter = Counter()
        self.open_mappings: set = set()
        self.mapping_devices: Dict[str, str] = {}
        self.converted: set = set()

    @staticmethod
    def mapper_path(mapping_name: str) -> Path:
        return Path("/dev/mapper") / mapping_name

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def calls_named(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]

    def enumerate_luks_devices(self) -> List[str]:
        self.calls.append(("enumerate",))
        return list(self.devices)

    def list_partitions(self, device: str) -> str:
        self.calls.append(("list_partitions", device))
        return f'NAME="{Path(device).name}" FSTYPE="crypto_LUKS" SIZE="10G" MOUNTPOINT=""'

    def dump_header(self, device: str) -> str:
        self.calls.append(("dump", device))
        if device not in self.dumps:
            raise CommandError(
                ["cryptsetup", "luksDump", device],
                1,
                f"Device {device} is not a valid LUKS device.",
            )
        return self.dumps[device]

    def open_mapping(self, device: str, mapping_name: str, passphrase: str) -> None:
        self.calls.append(("open", device, mapping_name))
        self.open_counts[device] += 1
        if device in self.fail_open or (
            device in self.fail_reopen and self.open_counts[device] > 1
        ):
            raise CommandError(
                ["cryptsetup", "luksOpen", device, mapping_name],
                2,
                "No key available with this passphrase.",
            )
        self.open_mappings.add(mapping_name)
        self.mapping_devices[mapping_name] = device

    def close_mapping(self, mapping_name: str) -> bool:
        self.calls.append(("close", mapping_name))
        if mapping_name not in self.open_mappings:
            return False
        self.open_mappings.discard(mapping_name)
        return True

    def backup_header(self, mapping_name: str, destination) -> None:
        self.calls.append(("backup", mapping_name, str(destination)))
        if self.mapping_devices.get(mapping_name) in self.fail_backup:
            raise CommandError(
                ["cryptsetup", "luksHeaderBackup", str(self.mapper_path(mapping_name))],
                1,
                "Cannot write header backup file.",
            )
        Path(destination).write_bytes(b"LUKS\xba\xbe" + bytes(4090))

    def convert_keyslot(self, device, slot, pbkdf, hash_name, iterations, passphrase):
        self.calls.append(("convert", device, slot, pbkdf, hash_name, iterations))
        if device in self.fail_convert:
            raise CommandError(
                ["cryptsetup", "luksConvertKey", device], 1, "Keyslot conversion failed."
            )
        self.converted.add(device)
        self.dumps[device] = build_luks_dump(
            [{"slot": slot, "pbkdf": pbkdf, "hash": hash_name, "iterations": iterations}]
        )

    def revert_keyslot_conversion(self, device, slot) -> None:
        self.calls.append(("revert", device, slot))
        if device in self.fail_revert:
            raise CommandError(
                ["cryptsetup", "luksConvertKey", "--revert", device], 1, "Revert failed."
            )
        self.converted.discard(device)


@pytest.fixture
def fake_cryptsetup(argon2_dump) -> FakeCryptsetup:
    """Fake client knowing two LUKS devices with an argon2 keyslot 0."""
    return FakeCryptsetup(
        dumps={"/dev/mapper/a": argon2_dump, "/dev/mapper/b": argon2_dump},
        devices=["/dev/mapper/a", "/dev/mapper/b"],
    )


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def log_messages() -> List[str]:
    """Capture every loguru message emitted during the test."""
    messages: List[str] = []
    logger.remove()
    handler_id = logger.add(
        lambda message: messages.append(message.record["message"]),
        level="DEBUG",
        format="{message}",
    )
    yield messages
    logger.remove(handler_id)


@pytest.fixture(autouse=True)
def reset_mapping_registry():
    """Keep the dangling-mapping registry isolated between tests."""
    mapping._open_mappings.clear()
    yield
    mapping._open_mappings.clear()
