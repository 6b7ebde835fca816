from __future__ import annotations

import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, TextIO

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_FILE = Path("conversion.log")

# Every line in the log file, and on the console, carries this timestamp.
LOG_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} - {message}"
CONSOLE_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> - <level>{message}</level>"


def setup_logging(
    log_file: Path | str | None = DEFAULT_LOG_FILE,
    *,
    debug: bool = False,
    console: TextIO | None = None,
) -> Logger:
    """
    Setup console and log file sinks.

    Both sinks receive the same timestamped messages, so the console output is
    a tee of the log file and a failed run can be audited afterwards.

    Sinks:
    - Console (stdout): INFO+, or DEBUG+ including external commands with --debug
    - Log file: append-only, INFO+, or DEBUG+ with --debug

    Args:
        log_file: Path of the append-only log file, None to disable it
        debug: Enable DEBUG level logging (external commands and their output)
        console: Stream for the console sink (defaults to sys.stdout)
    """
    logger.remove()
    logger.configure(extra={"device": "-", "tags": [], "source": "APP"})

    level = "DEBUG" if debug else "INFO"

    # SINK 1: Console - user-facing
    logger.add(
        console if console is not None else sys.stdout,
        level=level,
        backtrace=False,
        diagnose=False,
        format=CONSOLE_FORMAT,
    )

    # SINK 2: Log file - persistent audit trail
    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            level=level,
            mode="a",
            encoding="utf-8",
            backtrace=False,
            diagnose=False,
            format=LOG_FILE_FORMAT,
        )

    return logger


def get_logger(
    *,
    device: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        device: Device path the messages refer to
        tags: Tags for filtering (e.g., ["command"])
        source: Source component (e.g., "conversion", "backup")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if device is not None:
        extras["device"] = device
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def device_context(device: str, **details):
    """
    Context manager for a single device's conversion run with timing.

    Logs the start of the run and, at DEBUG level, its duration. Exceptions
    escaping the block are logged and re-raised.

    Example:
        with device_context("/dev/sdb2") as log:
            log.info("[Opened] ...")
    """
    run_id = f"convert-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(run_id=run_id, **details):
        start_time = time.time()
        log = LoggerFactory.for_device(device)
        log.info(f"Starting conversion for {device}")
        try:
            yield log
            log.debug(
                f"Conversion run for {device} finished in "
                f"{round(time.time() - start_time, 2)}s"
            )
        except Exception as e:
            log.error(f"Conversion run for {device} failed ({type(e).__name__}): {e}")
            raise


class LoggerFactory:
    """
    Factory for creating component-specific loggers with automatic context.
    """

    @staticmethod
    def for_device(device: str) -> Logger:
        """Logger for one device's state machine run."""
        return logger.bind(device=device, source="conversion", tags=["conversion"])

    @staticmethod
    def for_session() -> Logger:
        """Logger for the session orchestrator."""
        return logger.bind(source="session", tags=["session"])

    @staticmethod
    def for_command() -> Logger:
        """Logger for external command execution."""
        return logger.bind(source="command", tags=["command"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, preconditions, shutdown)."""
        return logger.bind(source="system", tags=["system"])
