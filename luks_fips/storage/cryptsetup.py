"""Narrow client for the cryptsetup operations the conversion needs.

Every method maps to one external command. Passphrases are written to the
command's stdin together with ``--key-file -`` so they never appear in the
process list or in the logs.

Failures raise CommandError, except close_mapping() which is idempotent and
only logs: a mapping that is already gone is not an error for cleanup.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Optional

from luks_fips.logging import LoggerFactory

from . import devices
from .exceptions import CommandError

log = LoggerFactory.for_command()

MAPPER_DIR = Path("/dev/mapper")

Runner = Callable[..., subprocess.CompletedProcess]


class Cryptsetup:
    """Runs cryptsetup, blkid and lsblk on behalf of the conversion core."""

    def __init__(self, binary: str = "cryptsetup", runner: Optional[Runner] = None):
        self.binary = binary
        self._run = runner or devices.run_command

    def _checked(
        self,
        args: list[str],
        input_text: Optional[str] = None,
        log_output: bool = True,
    ) -> str:
        command = [self.binary, *args]
        result = self._run(
            command, check=False, log_output=log_output, input_text=input_text
        )
        if result.returncode != 0:
            raise CommandError(command, result.returncode, (result.stderr or "").strip())
        return result.stdout or ""

    @staticmethod
    def mapper_path(mapping_name: str) -> Path:
        return MAPPER_DIR / mapping_name

    def enumerate_luks_devices(self) -> list[str]:
        return devices.enumerate_luks_devices()

    def list_partitions(self, device: str) -> str:
        return devices.list_partitions(device)

    def dump_header(self, device: str) -> str:
        return self._checked(["luksDump", device], log_output=False)

    def open_mapping(self, device: str, mapping_name: str, passphrase: str) -> None:
        self._checked(
            ["luksOpen", device, mapping_name, "--key-file", "-"],
            input_text=passphrase,
        )

    def close_mapping(self, mapping_name: str) -> bool:
        try:
            self._checked(["luksClose", mapping_name])
        except CommandError as error:
            log.debug(f"Closing {mapping_name} failed (ignored): {error}")
            return False
        log.debug(f"Closed mapping {mapping_name}")
        return True

    def backup_header(self, mapping_name: str, destination: Path | str) -> None:
        self._checked(
            [
                "luksHeaderBackup",
                str(self.mapper_path(mapping_name)),
                "--header-backup-file",
                str(destination),
            ]
        )

    def convert_keyslot(
        self,
        device: str,
        slot: int,
        pbkdf: str,
        hash_name: str,
        iterations: int,
        passphrase: str,
    ) -> None:
        self._checked(
            [
                "luksConvertKey",
                device,
                "--key-slot",
                str(slot),
                "--pbkdf",
                pbkdf,
                "--hash",
                hash_name,
                "--pbkdf-force-iterations",
                str(iterations),
                "--key-file",
                "-",
            ],
            input_text=passphrase,
        )

    def revert_keyslot_conversion(self, device: str, slot: int) -> None:
        self._checked(["luksConvertKey", "--revert", "--key-slot", str(slot), device])
