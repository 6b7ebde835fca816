"""Temporary device-mapper names and scoped mapping lifetimes.

A device is only ever opened through open_mapping(), which closes the
mapping on every exit path of the block. While a mapping is open its name is
also held in a process-wide registry; close_dangling_mappings() is run at
interpreter exit and closes anything still registered, covering termination
by signal (see storage.signals). A name is registered before the open
command runs, so a mapping created just before termination is still closed.

Usage:
    names = MappingNameGenerator(random.Random(42))

    with open_mapping(cryptsetup, "/dev/sdb2", names.generate(), passphrase) as name:
        cryptsetup.backup_header(name, path)
"""

from __future__ import annotations

import atexit
import random
import string
import threading
from contextlib import contextmanager
from typing import Generator, Optional

from luks_fips.logging import LoggerFactory

from .cryptsetup import Cryptsetup
from .exceptions import CommandError

log = LoggerFactory.for_system()

MAPPING_PREFIX = "luks_"
MAPPING_SUFFIX_LENGTH = 12
MAPPING_ALPHABET = string.ascii_letters + string.digits

_lock = threading.Lock()
_open_mappings: dict[str, Cryptsetup] = {}
_exit_guard_installed = False


class MappingNameGenerator:
    """Generates ``luks_`` + 12 random alphanumerics from an injected RNG."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.SystemRandom()

    def generate(self) -> str:
        suffix = "".join(
            self.rng.choice(MAPPING_ALPHABET) for _ in range(MAPPING_SUFFIX_LENGTH)
        )
        return f"{MAPPING_PREFIX}{suffix}"


def _register(mapping_name: str, cryptsetup: Cryptsetup) -> None:
    global _exit_guard_installed
    with _lock:
        if not _exit_guard_installed:
            atexit.register(close_dangling_mappings)
            _exit_guard_installed = True
        _open_mappings[mapping_name] = cryptsetup


def _unregister(mapping_name: str) -> None:
    with _lock:
        _open_mappings.pop(mapping_name, None)


def registered_mappings() -> list[str]:
    """Names of mappings currently open through open_mapping()."""
    with _lock:
        return list(_open_mappings)


def close_dangling_mappings() -> list[str]:
    """Best-effort close of every mapping still registered.

    Returns:
        Names of the mappings that were attempted
    """
    with _lock:
        pending = list(_open_mappings.items())
        _open_mappings.clear()
    for mapping_name, cryptsetup in pending:
        log.warning(f"Closing dangling mapping {mapping_name}")
        cryptsetup.close_mapping(mapping_name)
    return [mapping_name for mapping_name, _ in pending]


@contextmanager
def open_mapping(
    cryptsetup: Cryptsetup,
    device: str,
    mapping_name: str,
    passphrase: str,
) -> Generator[str, None, None]:
    """Open a device under mapping_name and close it when the block exits.

    Raises:
        CommandError: If the device cannot be opened (nothing to close then)
    """
    _register(mapping_name, cryptsetup)
    try:
        cryptsetup.open_mapping(device, mapping_name, passphrase)
    except CommandError:
        _unregister(mapping_name)
        raise
    log.debug(f"Opened {device} as {cryptsetup.mapper_path(mapping_name)}")
    try:
        yield mapping_name
    finally:
        cryptsetup.close_mapping(mapping_name)
        _unregister(mapping_name)

