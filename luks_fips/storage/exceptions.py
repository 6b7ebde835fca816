"""Custom exceptions for keyslot conversion.

This module defines a hierarchy of exceptions so that callers can tell a
failure that happened before any device was touched apart from one that
happened in the middle of a conversion.

Exception Hierarchy:
    LuksFipsError (base)
        ├── PreconditionError
        │   ├── MissingCommandError
        │   ├── BackupDirectoryError
        │   └── NoDevicesFoundError
        ├── CommandError
        ├── InspectionError
        ├── BackupError
        ├── ConversionError
        ├── VerificationError
        ├── RevertError
        └── RequestError
            ├── InvalidRequestError
            └── PassphraseMismatchError

Usage:
    from luks_fips.storage.exceptions import NoDevicesFoundError

    if not devices:
        raise NoDevicesFoundError()
"""

from __future__ import annotations


class LuksFipsError(Exception):
    """Base exception for all conversion errors."""


class PreconditionError(LuksFipsError):
    """The host is not ready; nothing has been touched yet."""


class MissingCommandError(PreconditionError):
    """A required external command is not installed."""

    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Error: Required command '{command}' not found.")


class BackupDirectoryError(PreconditionError):
    """The header backup directory does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Backup directory {path} does not exist.")


class NoDevicesFoundError(PreconditionError):
    """Neither explicit input nor enumeration produced a device."""

    def __init__(self, message: str = "No LUKS devices found using blkid."):
        super().__init__(message)


class CommandError(LuksFipsError):
    """An external command exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        msg = f"Command failed ({' '.join(self.command)}) with code {returncode}"
        if stderr:
            msg += f": {stderr}"
        super().__init__(msg)


class InspectionError(LuksFipsError):
    """The header could not be dumped or holds no active keyslot."""

    def __init__(self, device: str, reason: str):
        self.device = device
        self.reason = reason
        super().__init__(f"Failed to inspect {device}: {reason}")


class BackupError(LuksFipsError):
    """The header backup could not be written."""

    def __init__(self, device: str, reason: str):
        self.device = device
        self.reason = reason
        super().__init__(f"Failed to backup header for {device}: {reason}")


class ConversionError(LuksFipsError):
    """The keyslot conversion command failed."""

    def __init__(self, device: str, slot: int, reason: str):
        self.device = device
        self.slot = slot
        self.reason = reason
        super().__init__(f"Failed to convert keyslot {slot} on {device}: {reason}")


class VerificationError(LuksFipsError):
    """The device could not be reopened with the new passphrase."""

    def __init__(self, device: str, reason: str):
        self.device = device
        self.reason = reason
        super().__init__(f"Failed to open {device} after key conversion: {reason}")


class RevertError(LuksFipsError):
    """Reverting the conversion failed; manual intervention is required."""

    def __init__(self, device: str, slot: int, reason: str):
        self.device = device
        self.slot = slot
        self.reason = reason
        super().__init__(
            f"Reverting key conversion failed for {device} (slot {slot}): {reason}"
        )


class RequestError(LuksFipsError):
    """A conversion request could not be built."""


class InvalidRequestError(RequestError):
    """Target parameters are empty or out of range."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class PassphraseMismatchError(RequestError):
    """Passphrase and its confirmation differ, or are empty."""

    def __init__(self, device: str, empty: bool = False):
        self.device = device
        self.empty = empty
        if empty:
            msg = f"Empty password for {device}. Aborting operation."
        else:
            msg = f"Passwords do not match for {device}. Aborting operation."
        super().__init__(msg)
