"""Tests for BlacklistManager permanent blocks and re-entry timeouts."""

import json

from conftest import FakeClock
from sniper_bot.core.blacklist import BlacklistManager


def test_configured_addresses_blocked():
    blacklist = BlacklistManager(blocked=["Drainer111"])
    assert blacklist.check("Drainer111") == (True, "blacklisted: configured")
    assert blacklist.check("Clean2222") == (False, "")


def test_timeout_expires():
    clock = FakeClock()
    blacklist = BlacklistManager(clock=clock)
    blacklist.add_timeout("MintAAAA1111", duration_minutes=60)

    assert blacklist.check("MintAAAA1111") == (True, "re-entry timeout")
    clock.advance(3600)
    assert not blacklist.is_blocked("MintAAAA1111")
    assert "MintAAAA1111" not in blacklist.timeouts


def test_zero_timeout_ignored():
    blacklist = BlacklistManager(clock=FakeClock())
    blacklist.add_timeout("MintAAAA1111", duration_minutes=0)
    assert not blacklist.is_blocked("MintAAAA1111")


def test_load_file_entries(tmp_path):
    path = tmp_path / "blacklist.json"
    path.write_text(
        json.dumps({"entries": ["Rug111", {"address": "Drainer222", "reason": "drainer"}]}),
        encoding="utf-8",
    )

    blacklist = BlacklistManager(path=str(path))

    assert blacklist.check("Rug111") == (True, "blacklisted: listed")
    assert blacklist.check("Drainer222") == (True, "blacklisted: drainer")


def test_unreadable_file_loads_nothing(tmp_path):
    path = tmp_path / "blacklist.json"
    path.write_text("{broken", encoding="utf-8")
    assert BlacklistManager(path=str(path)).permanent_blocks == {}


def test_remove_and_cleanup():
    clock = FakeClock()
    blacklist = BlacklistManager(clock=clock)
    blacklist.add_permanent_block("Rug111", "rug")
    blacklist.add_timeout("MintA", duration_minutes=1)
    blacklist.add_timeout("MintB", duration_minutes=10)

    assert blacklist.remove("Rug111")
    assert not blacklist.remove("Rug111")

    clock.advance(120)
    blacklist.cleanup()
    assert list(blacklist.timeouts) == ["MintB"]
