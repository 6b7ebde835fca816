"""LUKS block device discovery and external command execution.

This module wraps the host tools used to find LUKS devices and describe
them. It uses blkid to enumerate block devices whose on-disk signature is
crypto_LUKS, and lsblk to show the partitions of a device before the user
confirms a conversion.

Device Detection:
    blkid -t TYPE=crypto_LUKS -o device prints one device node per line.
    blkid exits with status 2 when no device matches, which is reported as
    an empty list rather than an error.

Command Execution:
    run_command() is the single place where subprocesses are started. Data
    passed through input_text (passphrases) is written to the child's stdin
    and never logged. SIGTERM and SIGHUP arriving while a command runs are
    held until it exits, so a command is never killed half way.

Example:
    >>> from luks_fips.storage.devices import enumerate_luks_devices
    >>> enumerate_luks_devices()
    ['/dev/sda2', '/dev/nvme0n1p3']
"""

from __future__ import annotations

import shutil
import subprocess
from typing import Iterable, Optional

from luks_fips.config.settings import REQUIRED_COMMANDS
from luks_fips.logging import LoggerFactory

from .exceptions import MissingCommandError
from .signals import deferred_signals

log = LoggerFactory.for_command()

BLKID_NO_MATCH_RETURNCODE = 2
PARTITION_COLUMNS = "NAME,FSTYPE,SIZE,MOUNTPOINT"


def run_command(
    command: list[str],
    check: bool = True,
    log_output: bool = True,
    input_text: Optional[str] = None,
) -> subprocess.CompletedProcess:
    log.debug(f"Running command: {' '.join(command)}")
    try:
        with deferred_signals():
            result = subprocess.run(
                command,
                check=check,
                text=True,
                capture_output=True,
                input=input_text,
            )
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {' '.join(command)}")
        if error.stdout and log_output:
            log.debug(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            log.debug(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout and (log_output or result.returncode != 0):
        log.debug(f"stdout: {result.stdout.strip()}")
    if result.stderr:
        log.debug(f"stderr: {result.stderr.strip()}")
    log.debug(f"Command completed with return code {result.returncode}")
    return result


def check_required_commands(commands: Iterable[str] = REQUIRED_COMMANDS) -> None:
    """Ensure every external command is on PATH.

    Raises:
        MissingCommandError: For the first command that is not installed
    """
    for command in commands:
        if shutil.which(command) is None:
            raise MissingCommandError(command)


def parse_device_list(output: str) -> list[str]:
    """Parse one-device-per-line output, dropping blanks and duplicates."""
    devices: list[str] = []
    for line in output.splitlines():
        device = line.strip()
        # Full blkid output is "<device>: KEY=value ..."
        if ":" in device:
            device = device.split(":", 1)[0].strip()
        if device and device not in devices:
            devices.append(device)
    return devices


def enumerate_luks_devices() -> list[str]:
    """Return every block device carrying a LUKS signature, in blkid order."""
    result = run_command(
        ["blkid", "-t", "TYPE=crypto_LUKS", "-o", "device"],
        check=False,
    )
    if result.returncode == BLKID_NO_MATCH_RETURNCODE:
        return []
    if result.returncode != 0:
        log.warning(
            f"blkid exited with code {result.returncode}: {result.stderr.strip()}"
        )
        return []
    return parse_device_list(result.stdout)


def list_partitions(device: str) -> str:
    """Return lsblk's key="value" listing of a device, for display only."""
    result = run_command(
        ["lsblk", "-P", "-o", PARTITION_COLUMNS, device],
        check=False,
    )
    if result.returncode != 0:
        message = result.stderr.strip() or "lsblk failed"
        return f"(unable to list partitions: {message})"
    return result.stdout.rstrip("\n")
