"""Termination signals that never interrupt an external command.

install_signal_handlers() turns SIGTERM and SIGHUP into SystemExit, so
context managers and the exit guard close any open mapping. While a
command runs inside deferred_signals() the signal is only recorded; the
handler returns, the child keeps running to completion, and SystemExit is
raised once the block is left.

Usage:
    install_signal_handlers()

    with deferred_signals():
        subprocess.run(["cryptsetup", "luksConvertKey", ...])
"""

from __future__ import annotations

import signal
from contextlib import contextmanager
from typing import Generator, Optional

from luks_fips.logging import LoggerFactory

log = LoggerFactory.for_system()

HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGHUP)

_depth = 0
_pending: Optional[int] = None


def _exit_on_signal(signum, frame) -> None:
    global _pending
    if _depth:
        _pending = signum
        return
    raise SystemExit(1)


def install_signal_handlers() -> None:
    """Turn SIGTERM and SIGHUP into SystemExit between external commands."""
    for signum in HANDLED_SIGNALS:
        signal.signal(signum, _exit_on_signal)


@contextmanager
def deferred_signals() -> Generator[None, None, None]:
    """Hold termination signals until the block has finished.

    Raises:
        SystemExit: After the block, if a signal arrived while it ran
    """
    global _depth, _pending
    _depth += 1
    try:
        yield
    finally:
        _depth -= 1
        if not _depth and _pending is not None:
            signum = _pending
            _pending = None
            log.warning(
                f"Received {signal.Signals(signum).name} during an external "
                "command; exiting after it finished."
            )
            raise SystemExit(1)
