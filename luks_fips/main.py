import argparse
import sys
from pathlib import Path

from luks_fips.__version__ import __version__
from luks_fips.config import settings
from luks_fips.logging import LoggerFactory, setup_logging
from luks_fips.services.resolver import resolve_devices
from luks_fips.services.session import SessionOptions, SessionOrchestrator
from luks_fips.storage.cryptsetup import Cryptsetup
from luks_fips.storage.devices import check_required_commands
from luks_fips.storage.exceptions import BackupDirectoryError, PreconditionError
from luks_fips.storage.signals import install_signal_handlers


class ArgumentParser(argparse.ArgumentParser):
    """argparse parser that exits with status 1 on usage errors."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _keyslot(value: str) -> int:
    try:
        slot = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid keyslot: {value!r}")
    if not settings.MIN_KEYSLOT <= slot <= settings.MAX_KEYSLOT:
        raise argparse.ArgumentTypeError(
            f"keyslot must be between {settings.MIN_KEYSLOT} and {settings.MAX_KEYSLOT}"
        )
    return slot


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid iteration count: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError("iteration count must be greater than 0")
    return number


def _non_empty(value: str) -> str:
    if not value.strip():
        raise argparse.ArgumentTypeError("value must not be empty")
    return value.strip()


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="luks-fips-convert",
        description=(
            "Convert the key-derivation parameters of a LUKS keyslot to "
            "FIPS-compliant values, with header backup and automatic revert."
        ),
    )
    parser.add_argument(
        "-p",
        "--pbkdf",
        type=_non_empty,
        default=settings.get_setting("pbkdf", settings.DEFAULT_PBKDF),
        help="PBKDF algorithm (e.g. pbkdf2, argon2id) [default: %(default)s]",
    )
    parser.add_argument(
        "-hs",
        "--hash",
        type=_non_empty,
        default=settings.get_setting("hash", settings.DEFAULT_HASH),
        help="Hash algorithm (e.g. sha512) [default: %(default)s]",
    )
    parser.add_argument(
        "-i",
        "--iterations",
        type=_positive_int,
        default=settings.get_int("iterations", settings.DEFAULT_ITERATIONS),
        help="PBKDF iteration count [default: %(default)s]",
    )
    parser.add_argument(
        "-k",
        "--keyslot",
        type=_keyslot,
        default=None,
        help="LUKS keyslot to convert (0-7) [default: auto-detect]",
    )
    parser.add_argument(
        "-d",
        "--device",
        action="append",
        default=[],
        help="Path to a LUKS device (can be specified multiple times)",
    )
    parser.add_argument(
        "--backup-dir",
        type=Path,
        default=Path(settings.get_setting("backup_dir", settings.DEFAULT_BACKUP_DIR)),
        help="Directory to store header backups [default: current directory]",
    )
    parser.add_argument(
        "--overwrite-backup",
        action="store_true",
        default=settings.get_bool("overwrite_backup"),
        help="Overwrite an existing header backup instead of keeping it with a timestamp suffix",
    )
    parser.add_argument(
        "--auto-confirm",
        action="store_true",
        default=settings.get_bool("auto_confirm"),
        help="Skip confirmation prompts when converting multiple devices",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Discover and analyze current LUKS key setup and devices",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Perform a dry run without making any changes",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=Path(settings.get_setting("log_file", settings.DEFAULT_LOG_FILE)),
        help="Log file to record actions and errors [default: %(default)s]",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Log external commands and their output"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def run(args: argparse.Namespace, cryptsetup=None) -> int:
    """Execute a parsed command line; returns the process exit status.

    Raises:
        PreconditionError: Before any device is touched
    """
    if not args.backup_dir.is_dir():
        raise BackupDirectoryError(str(args.backup_dir))
    check_required_commands()

    cryptsetup = cryptsetup or Cryptsetup()
    devices = resolve_devices(args.device, cryptsetup.enumerate_luks_devices)
    options = SessionOptions(
        pbkdf=args.pbkdf,
        hash=args.hash,
        iterations=args.iterations,
        keyslot=args.keyslot,
        backup_dir=args.backup_dir,
        auto_confirm=args.auto_confirm,
        dry_run=args.dry_run,
        overwrite_backup=args.overwrite_backup,
    )
    orchestrator = SessionOrchestrator(devices, cryptsetup, options)

    if args.list:
        orchestrator.list_keyslots()
        return 0

    report = orchestrator.run()
    return report.exit_code


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_file, debug=args.debug)
    install_signal_handlers()
    log = LoggerFactory.for_system()

    try:
        return run(args)
    except PreconditionError as error:
        log.error(str(error))
        return 1
    except KeyboardInterrupt:
        log.error("Interrupted by user. Aborting operation.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
