#!/usr/bin/env python3
"""Canonical action encoding + action hash."""

import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from exchange.action_codec import action_hash, encode  # noqa: E402
from exchange.actions import BuilderFee, OpenOrder  # noqa: E402
from trade_errors import EncodingInvariantViolation  # noqa: E402

BUILDER = "0x7B4497C1B70DE6546B551BDF8F951DA53B71B97D"
VAULT = "0x1111111111111111111111111111111111111111"


def _order(**overrides) -> OpenOrder:
    fields = dict(asset=0, is_buy=True, limit_price="50500", size="0.004", builder=BuilderFee(BUILDER, 20))
    fields.update(overrides)
    return OpenOrder(**fields)


def test_scalar_encodings_use_smallest_form() -> None:
    assert encode(None) == b"\xc0"
    assert encode(False) == b"\xc2"
    assert encode(True) == b"\xc3"
    assert encode(0) == b"\x00"
    assert encode(127) == b"\x7f"
    assert encode(128) == b"\xcc\x80"
    assert encode(256) == b"\xcd\x01\x00"
    assert encode(65536) == b"\xce\x00\x01\x00\x00"
    assert encode("a") == b"\xa1a"
    assert encode("x" * 32) == b"\xd9\x20" + b"x" * 32


def test_numbers_outside_u32_and_floats_become_decimal_strings() -> None:
    assert encode(2 ** 32) == encode("4294967296")
    assert encode(-1) == encode("-1")
    assert encode(1.5) == encode("1.5")
    assert encode(Decimal("0.00400")) == encode("0.004")
    assert encode(0.1) == encode("0.1")


def test_sequences_and_mappings_keep_order() -> None:
    assert encode([1, "a"]) == b"\x92\x01\xa1a"
    assert encode((1, "a")) == encode([1, "a"])
    assert encode({"b": 1, "a": 2}) == b"\x82\xa1b\x01\xa1a\x02"
    assert encode({"b": 1, "a": 2}) != encode({"a": 2, "b": 1})


def test_unsupported_values_fail_fast() -> None:
    with pytest.raises(EncodingInvariantViolation):
        encode(object())
    with pytest.raises(EncodingInvariantViolation):
        encode({1: "x"})
    with pytest.raises(EncodingInvariantViolation):
        encode(b"raw")
    with pytest.raises(EncodingInvariantViolation):
        encode(float("nan"))
    with pytest.raises(TypeError):
        encode({"nested": [set()]})


def test_encode_is_deterministic_and_accepts_variants() -> None:
    order = _order()
    assert encode(order) == encode(order)
    assert encode(order) == encode(order.to_wire())


def test_order_wire_field_order() -> None:
    wire = _order().to_wire()
    assert list(wire) == ["type", "orders", "grouping", "builder"]
    assert list(wire["orders"][0]) == ["a", "b", "p", "s", "r", "t"]
    assert list(_order(cloid="0x" + "ab" * 16).to_wire()["orders"][0]) == ["a", "b", "p", "s", "r", "t", "c"]


def test_action_hash_is_32_bytes_and_stable() -> None:
    digest = action_hash(_order(), 1700000000000)
    assert len(digest) == 32
    assert digest == action_hash(_order(), 1700000000000)


def test_action_hash_changes_with_any_input() -> None:
    base = action_hash(_order(), 1700000000000)
    assert action_hash(_order(), 1700000000001) != base
    assert action_hash(_order(), 1700000000000, VAULT) != base
    assert action_hash(_order(size="0.005"), 1700000000000) != base
    assert action_hash(_order(is_buy=False), 1700000000000) != base
    assert action_hash(_order(), 1700000000000, VAULT) != action_hash(
        _order(), 1700000000000, "0x2222222222222222222222222222222222222222"
    )


def test_action_hash_layout() -> None:
    from eth_utils import keccak

    nonce = 1700000000000
    plain = keccak(encode(_order()) + nonce.to_bytes(8, "big") + b"\x00")
    assert action_hash(_order(), nonce) == plain
    vaulted = keccak(encode(_order()) + nonce.to_bytes(8, "big") + b"\x01" + bytes.fromhex(VAULT[2:]))
    assert action_hash(_order(), nonce, VAULT) == vaulted


def test_action_hash_rejects_bad_nonce() -> None:
    with pytest.raises(ValueError):
        action_hash(_order(), -1)
    with pytest.raises(ValueError):
        action_hash(_order(), 2 ** 64)
