#!/usr/bin/env python3
"""SessionStore atomic writes, permissions and malformed-record handling."""

import json
import os
import stat
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from session_store import SessionStore, StoredSession  # noqa: E402

WALLET = "0x" + "ab" * 20
KEY = "0x" + "cd" * 32


def test_save_load_round_trip(tmp_path) -> None:
    store = SessionStore(str(tmp_path / "runtime"), "wallet_data")
    store.save(StoredSession(WALLET, KEY, 1700000000000))

    record = store.load()

    assert record == StoredSession(WALLET, KEY, 1700000000000)
    assert json.loads(store.path.read_text()) == {
        "walletAddress": WALLET,
        "agentPrivateKey": KEY,
        "timestamp": 1700000000000,
    }
    assert not store.path.with_suffix(".tmp").exists()


def test_fee_approval_is_stored_when_known(tmp_path) -> None:
    store = SessionStore(str(tmp_path), "wallet_data")
    store.save(StoredSession(WALLET, KEY, 5, fee_approved=False))

    assert json.loads(store.path.read_text())["feeApproved"] is False
    assert store.load().fee_approved is False

    store.path.write_text(json.dumps({"walletAddress": WALLET, "agentPrivateKey": KEY, "feeApproved": "no"}))
    assert store.load().fee_approved is None


def test_record_is_owner_only(tmp_path) -> None:
    store = SessionStore(str(tmp_path), "wallet_data")
    store.save(StoredSession(WALLET, KEY))
    mode = stat.S_IMODE(os.stat(store.path).st_mode)
    assert mode & 0o077 == 0


def test_key_not_in_repr() -> None:
    assert "cd" * 32 not in repr(StoredSession(WALLET, KEY))


def test_malformed_records_read_as_absent(tmp_path) -> None:
    store = SessionStore(str(tmp_path), "wallet_data")

    store.path.write_text("not json at all")
    assert store.load() is None

    store.path.write_text(json.dumps({"walletAddress": WALLET}))
    assert store.load() is None

    store.path.write_text(json.dumps({"walletAddress": "nope", "agentPrivateKey": KEY, "timestamp": 1}))
    assert store.load() is None

    store.path.write_text(json.dumps([WALLET, KEY]))
    assert store.load() is None


def test_missing_timestamp_defaults_to_zero(tmp_path) -> None:
    store = SessionStore(str(tmp_path), "wallet_data")
    store.path.write_text(json.dumps({"walletAddress": WALLET, "agentPrivateKey": KEY}))
    assert store.load().timestamp == 0


def test_clear_is_idempotent(tmp_path) -> None:
    store = SessionStore(str(tmp_path), "wallet_data")
    store.save(StoredSession(WALLET, KEY))

    store.clear()
    store.clear()

    assert store.load() is None
    assert not store.path.exists()


def test_save_overwrites_previous_record(tmp_path) -> None:
    store = SessionStore(str(tmp_path), "wallet_data")
    store.save(StoredSession(WALLET, KEY, 1))
    store.save(StoredSession(WALLET, "0x" + "ef" * 32, 2))
    assert store.load().agent_private_key == "0x" + "ef" * 32
