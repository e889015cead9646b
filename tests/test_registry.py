"""Custody registry tests."""

import pytest

from custody.codec import CustodyRecord, encode_record
from custody.hardening import OwnershipError
from custody.host import key_for
from custody.registry import CustodyRegistry


def _custody(host, program_id, name, owner, locked):
    account = host.create_account(key_for(name), owner=program_id, space=40)
    account.data[:] = encode_record(CustodyRecord(owner=owner, locked_funds=locked))
    return account


class TestCustodyRegistry:

    def test_refresh_indexes_only_custody_accounts(self, host, program_id):
        _custody(host, program_id, "v1", b'\x01' * 32, 10)
        _custody(host, program_id, "v2", b'\x02' * 32, 20)
        host.create_account(key_for("slot"), owner=program_id, space=50)
        host.create_account(key_for("alice"), balance=5, space=40)

        registry = CustodyRegistry(program_id)
        assert registry.refresh(host.accounts()) == 2
        assert len(registry) == 2
        assert key_for("v1") in registry
        assert key_for("slot") not in registry
        assert registry.total_locked() == 30

    def test_track_validates_ownership(self, host, program_id):
        foreign = host.create_account(key_for("foreign"), space=40)
        registry = CustodyRegistry(program_id)
        with pytest.raises(OwnershipError):
            registry.track(foreign)

    def test_by_owner_and_snapshot(self, host, program_id):
        _custody(host, program_id, "v1", b'\x01' * 32, 10)
        _custody(host, program_id, "v2", b'\x01' * 32, 5)
        _custody(host, program_id, "v3", b'\x03' * 32, 1)
        registry = CustodyRegistry(program_id)
        registry.refresh(host.accounts())

        assert registry.by_owner(b'\x01' * 32) == sorted([key_for("v1"), key_for("v2")])
        snapshot = registry.snapshot()
        assert [entry["custody"] for entry in snapshot] == sorted(k.hex() for k in (key_for("v1"), key_for("v2"), key_for("v3")))
        assert snapshot[0]["locked_funds"] in (10, 5, 1)

    def test_forget(self, host, program_id):
        account = _custody(host, program_id, "v1", b'\x01' * 32, 10)
        registry = CustodyRegistry(program_id)
        assert registry.track(account).locked_funds == 10
        assert registry.forget(account.key)
        assert registry.get(account.key) is None
        assert not registry.forget(account.key)
