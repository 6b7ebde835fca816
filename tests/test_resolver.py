from unittest.mock import Mock

import pytest

from luks_fips.services.resolver import resolve_devices
from luks_fips.storage.exceptions import NoDevicesFoundError


def test_explicit_devices_skip_enumeration():
    enumerate_devices = Mock(return_value=["/dev/sdz1"])

    devices = resolve_devices(["/dev/sdb2", "/dev/sda2"], enumerate_devices)

    assert devices == ("/dev/sdb2", "/dev/sda2")
    enumerate_devices.assert_not_called()


def test_explicit_duplicates_dropped_in_order():
    assert resolve_devices(["/dev/sda2", "/dev/sdb2", "/dev/sda2"], Mock()) == (
        "/dev/sda2",
        "/dev/sdb2",
    )


def test_enumerates_when_none_given(log_messages):
    devices = resolve_devices([], Mock(return_value=["/dev/sda2", "/dev/nvme0n1p3"]))

    assert devices == ("/dev/sda2", "/dev/nvme0n1p3")
    assert log_messages == [
        "Discovered LUKS device: /dev/sda2",
        "Discovered LUKS device: /dev/nvme0n1p3",
    ]


def test_no_devices_found():
    with pytest.raises(NoDevicesFoundError, match="No LUKS devices found using blkid."):
        resolve_devices(None, Mock(return_value=[]))
