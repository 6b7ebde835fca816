from __future__ import annotations

from typing import Callable, Iterable, Optional, Sequence

from luks_fips.logging import LoggerFactory
from luks_fips.storage.devices import enumerate_luks_devices
from luks_fips.storage.exceptions import NoDevicesFoundError

log = LoggerFactory.for_session()


def resolve_devices(
    explicit: Optional[Iterable[str]] = None,
    enumerate_devices: Callable[[], Sequence[str]] = enumerate_luks_devices,
) -> tuple[str, ...]:
    """Return the devices to process, in order.

    Explicit paths are trusted as given (only repeated entries are dropped);
    enumeration runs only when none were supplied.

    Raises:
        NoDevicesFoundError: If neither source yields a device
    """
    requested = [device for device in (explicit or ()) if device]
    if requested:
        return tuple(dict.fromkeys(requested))

    discovered = tuple(dict.fromkeys(enumerate_devices()))
    if not discovered:
        raise NoDevicesFoundError()
    for device in discovered:
        log.info(f"Discovered LUKS device: {device}")
    return discovered
