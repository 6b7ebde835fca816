"""Tests for luksDump parsing and keyslot selection."""

import pytest

from luks_fips.storage.exceptions import InspectionError
from luks_fips.storage.keyslots import KeyslotInspector, parse_keyslots

LUKS1_DUMP = """LUKS header information for /dev/sdc1

Version:       \t1
Cipher name:   \taes
Hash spec:     \tsha256

Key Slot 0: ENABLED
\tIterations:         \t1000
Key Slot 1: DISABLED
"""


@pytest.fixture
def inspector_for(fake_cryptsetup):
    def _make(dump):
        fake_cryptsetup.dumps = {"/dev/sda2": dump}
        return fake_cryptsetup, KeyslotInspector(fake_cryptsetup)

    return _make


class TestParseKeyslots:
    """Test the dump parser."""

    def test_argon2_keyslot(self, argon2_dump):
        entries = parse_keyslots(argon2_dump)

        assert [entry.slot for entry in entries] == [0]
        assert entries[0].version == "luks2"
        assert entries[0].attributes["PBKDF"] == "argon2"
        assert entries[0].attributes["Time cost"] == "4"
        assert entries[0].attributes["AF hash"] == "sha512"

    def test_segments_and_digests_are_not_keyslots(self, argon2_dump):
        entries = parse_keyslots(argon2_dump)

        # "0: crypt" and "0: pbkdf2" sections must not add entries or attributes
        assert len(entries) == 1
        assert "cipher" not in entries[0].attributes
        assert entries[0].attributes.get("Digest ID") == "0"

    def test_multiple_keyslots_in_dump_order(self, make_dump):
        dump = make_dump(
            [
                {"slot": 3, "pbkdf": "pbkdf2", "hash": "sha256", "iterations": 1000},
                {"slot": 1, "pbkdf": "argon2id", "hash": "sha512", "iterations": 4},
            ]
        )

        entries = parse_keyslots(dump)

        assert [entry.slot for entry in entries] == [3, 1]
        assert entries[0].attributes["Hash"] == "sha256"
        assert entries[1].attributes["PBKDF"] == "argon2id"

    def test_unsupported_format_has_no_entries(self):
        assert parse_keyslots(LUKS1_DUMP) == []


class TestInspect:
    """Test first-match keyslot selection."""

    def test_argon2_falls_back_to_af_hash_and_time_cost(self, inspector_for, argon2_dump):
        _fake, inspector = inspector_for(argon2_dump)

        descriptor = inspector.inspect("/dev/sda2")

        assert descriptor.slot == 0
        assert descriptor.pbkdf == "argon2"
        assert descriptor.hash == "sha512"
        assert descriptor.iterations == 4
        assert descriptor.format_summary() == (
            "Device: /dev/sda2, Keyslot: 0, PBKDF: argon2, Hash: sha512"
        )

    def test_pbkdf2_uses_hash_and_iterations(self, inspector_for, make_dump):
        dump = make_dump([{"slot": 2, "pbkdf": "pbkdf2", "hash": "sha256", "iterations": 1000}])
        _fake, inspector = inspector_for(dump)

        descriptor = inspector.inspect("/dev/sda2")

        assert (descriptor.slot, descriptor.pbkdf, descriptor.hash, descriptor.iterations) == (
            2,
            "pbkdf2",
            "sha256",
            1000,
        )

    def test_first_active_keyslot_wins_with_warning(self, inspector_for, make_dump, log_messages):
        dump = make_dump(
            [
                {"slot": 1, "pbkdf": "argon2id", "hash": "sha256", "iterations": 4},
                {"slot": 4, "pbkdf": "pbkdf2", "hash": "sha512", "iterations": 1000},
            ]
        )
        _fake, inspector = inspector_for(dump)

        descriptor = inspector.inspect("/dev/sda2")

        assert descriptor.slot == 1
        assert descriptor.active_slots == (1, 4)
        assert any("has 2 active keyslots (1, 4)" in m for m in log_messages)

    def test_single_keyslot_does_not_warn(self, inspector_for, argon2_dump, log_messages):
        _fake, inspector = inspector_for(argon2_dump)

        inspector.inspect("/dev/sda2")

        assert not any("active keyslots" in m for m in log_messages)

    def test_no_active_keyslot(self, inspector_for, make_dump):
        _fake, inspector = inspector_for(make_dump([]))

        with pytest.raises(InspectionError, match="no active keyslot found"):
            inspector.inspect("/dev/sda2")

    def test_dump_failure(self, inspector_for):
        _fake, inspector = inspector_for("")

        with pytest.raises(InspectionError) as excinfo:
            inspector.inspect("/dev/sdz")
        assert excinfo.value.device == "/dev/sdz"
        assert "not a valid LUKS device" in excinfo.value.reason

    def test_inspect_never_mutates(self, inspector_for, argon2_dump):
        fake, inspector = inspector_for(argon2_dump)

        inspector.inspect("/dev/sda2")

        assert fake.call_names() == ["dump"]


class TestInspectSlot:
    def test_selects_requested_slot(self, inspector_for, make_dump):
        dump = make_dump(
            [
                {"slot": 0, "pbkdf": "argon2id", "hash": "sha256", "iterations": 4},
                {"slot": 5, "pbkdf": "pbkdf2", "hash": "sha512", "iterations": 100000},
            ]
        )
        _fake, inspector = inspector_for(dump)

        descriptor = inspector.inspect_slot("/dev/sda2", 5)

        assert descriptor.matches("pbkdf2", "sha512", 100000)

    def test_inactive_slot(self, inspector_for, argon2_dump):
        _fake, inspector = inspector_for(argon2_dump)

        with pytest.raises(InspectionError, match="keyslot 6 is not active"):
            inspector.inspect_slot("/dev/sda2", 6)
