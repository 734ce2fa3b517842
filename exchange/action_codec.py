#!/usr/bin/env python3
"""Canonical binary encoding of L1 actions and the action hash.

The exchange hashes the msgpack form of an action, so the bytes produced here
must match its encoder exactly.  Values are normalized first (numbers that
the schema carries as strings become canonical decimal strings), then packed
with ``msgpack`` which already picks the smallest width for every length and
unsigned integer.

    digest = keccak256(encode(action) + nonce.to_bytes(8, "big") + vault_flag)

``vault_flag`` is ``b"\\x00"`` without a vault, else ``b"\\x01"`` + 20 address bytes.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Optional

import msgpack
from eth_utils import keccak, to_canonical_address

from trade_errors import EncodingInvariantViolation

from .base import decimal_to_wire

MAX_WIRE_UINT = 2 ** 32 - 1
MAX_NONCE = 2 ** 64 - 1


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        if 0 <= value <= MAX_WIRE_UINT:
            return value
        return str(value)
    if isinstance(value, (float, Decimal)):
        try:
            return decimal_to_wire(value)
        except ValueError as exc:
            raise EncodingInvariantViolation(str(exc)) from exc
    if isinstance(value, Mapping):
        out = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise EncodingInvariantViolation(f"Action keys must be str, got {type(key).__name__}")
            out[key] = _normalize(item)
        return out
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    raise EncodingInvariantViolation(f"Cannot encode value of type {type(value).__name__}")


def _as_wire(action: Any) -> Any:
    to_wire = getattr(action, "to_wire", None)
    if callable(to_wire):
        return to_wire()
    return action


def encode(value: Any) -> bytes:
    """Encode an action (variant or plain mapping) to canonical bytes."""
    return msgpack.packb(_normalize(_as_wire(value)), use_bin_type=True)


def _vault_suffix(vault_address: Optional[str]) -> bytes:
    if vault_address is None:
        return b"\x00"
    return b"\x01" + to_canonical_address(vault_address)


def action_hash(action: Any, nonce: int, vault_address: Optional[str] = None) -> bytes:
    """32-byte keccak digest binding action, nonce and vault."""
    if isinstance(nonce, bool) or not isinstance(nonce, int) or not 0 <= nonce <= MAX_NONCE:
        raise ValueError(f"nonce must be a u64, got {nonce!r}")
    data = encode(action)
    data += nonce.to_bytes(8, "big")
    data += _vault_suffix(vault_address)
    return keccak(data)
