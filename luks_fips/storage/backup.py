"""Header backups taken before a keyslot is touched.

The backup is written by ``cryptsetup luksHeaderBackup`` against the open
mapping, then fsynced together with its directory. A backup that already
exists for the device is renamed aside with a timestamp suffix, so repeated
runs never clobber an earlier rollback point unless overwrite is requested.
"""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from luks_fips.domain.models import HeaderBackup
from luks_fips.logging import get_logger

from .cryptsetup import Cryptsetup
from .exceptions import BackupError, CommandError

log = get_logger(source=__name__, tags=["backup"])

VERSION_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def _fsync_path(path: Path) -> None:
    flags = os.O_RDONLY
    if path.is_dir():
        flags |= getattr(os, "O_DIRECTORY", 0)
    fd = os.open(path, flags)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class BackupManager:
    """Writes one header backup per device into a backup directory."""

    def __init__(
        self,
        cryptsetup: Cryptsetup,
        overwrite: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.cryptsetup = cryptsetup
        self.overwrite = overwrite
        self.clock = clock

    def _version_existing(self, path: Path, device: str) -> Optional[Path]:
        if not path.exists():
            return None
        if self.overwrite:
            log.warning(f"Overwriting existing header backup {path} for {device}")
            path.unlink()
            return None
        stamp = self.clock().strftime(VERSION_TIMESTAMP_FORMAT)
        versioned = path.with_name(f"{path.name}.{stamp}")
        counter = 1
        while versioned.exists():
            versioned = path.with_name(f"{path.name}.{stamp}.{counter}")
            counter += 1
        path.rename(versioned)
        log.info(f"Existing header backup for {device} moved to {versioned}")
        return versioned

    def backup(
        self,
        mapping_name: str,
        destination_dir: Path | str,
        device: str,
    ) -> HeaderBackup:
        """Back up the header of an opened device.

        Args:
            mapping_name: Name of the open mapping (under /dev/mapper)
            destination_dir: Existing directory for the backup file
            device: Raw device path, used to name the backup

        Raises:
            BackupError: If the backup cannot be written and flushed
        """
        directory = Path(destination_dir)
        if not directory.is_dir():
            raise BackupError(device, f"backup directory {directory} does not exist")
        path = HeaderBackup.path_for(device, directory)

        try:
            previous = self._version_existing(path, device)
        except OSError as error:
            raise BackupError(device, f"cannot move existing backup {path}: {error}") from error

        try:
            self.cryptsetup.backup_header(mapping_name, path)
        except CommandError as error:
            if previous is not None and not path.exists():
                previous.rename(path)
                previous = None
            raise BackupError(device, error.stderr or str(error)) from error

        try:
            size = path.stat().st_size
            if size == 0:
                raise BackupError(device, f"backup file {path} is empty")
            _fsync_path(path)
            _fsync_path(directory)
        except FileNotFoundError as error:
            raise BackupError(device, f"backup file {path} was not created") from error
        except OSError as error:
            raise BackupError(device, f"cannot flush {path}: {error}") from error

        log.debug(f"Header backup for {device} written to {path} ({size} bytes)")
        return HeaderBackup(
            device=device,
            path=path,
            size_bytes=size,
            created_at=self.clock(),
            previous=previous,
        )
