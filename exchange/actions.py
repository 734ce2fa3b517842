#!/usr/bin/env python3
"""Closed set of exchange actions.

Each variant is a frozen dataclass whose ``to_wire()`` builds the exact dict
the exchange expects.  Key order in those dicts is part of the signed bytes
(the L1 hash is computed over the msgpack encoding), so it is fixed here and
nowhere else.

L1 actions (signed by the agent through a phantom-agent hash):
    OpenOrder, CloseOrder, UpdateLeverage
User-signed actions (EIP-712 signed by the owner wallet):
    ApproveAgent, ApproveBuilderFee
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Tuple

VALID_TIFS = frozenset({"Ioc", "Gtc", "Alo"})

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_DECIMAL_STR_RE = re.compile(r"^\d+(\.\d+)?$")


def _check_address(value: str, label: str) -> str:
    if not isinstance(value, str) or not _ADDRESS_RE.match(value):
        raise ValueError(f"{label} must be a 0x-prefixed 20-byte hex address, got {value!r}")
    return value


def _check_decimal_str(value: str, label: str) -> str:
    if not isinstance(value, str) or not _DECIMAL_STR_RE.match(value):
        raise ValueError(f"{label} must be a canonical decimal string, got {value!r}")
    return value


@dataclass(frozen=True)
class BuilderFee:
    """Builder routing. ``tenths_bps`` is the wire unit (20 == 2 bps)."""
    address: str
    tenths_bps: int

    def __post_init__(self) -> None:
        _check_address(self.address, "builder address")
        if not isinstance(self.tenths_bps, int) or self.tenths_bps < 0:
            raise ValueError(f"builder fee must be a non-negative int, got {self.tenths_bps!r}")

    def to_wire(self) -> Dict[str, Any]:
        return {"b": self.address.lower(), "f": self.tenths_bps}


@dataclass(frozen=True)
class _OrderAction:
    """Single-order ``order`` action. Subclasses pin ``reduce_only``."""
    asset: int
    is_buy: bool
    limit_price: str
    size: str
    tif: str = "Ioc"
    builder: Optional[BuilderFee] = None
    cloid: Optional[str] = None

    REDUCE_ONLY: ClassVar[bool] = False
    USER_SIGNED: ClassVar[bool] = False

    def __post_init__(self) -> None:
        if not isinstance(self.asset, int) or isinstance(self.asset, bool) or self.asset < 0:
            raise ValueError(f"asset index must be a non-negative int, got {self.asset!r}")
        if not isinstance(self.is_buy, bool):
            raise ValueError("is_buy must be a bool")
        _check_decimal_str(self.limit_price, "limit price")
        _check_decimal_str(self.size, "size")
        if self.tif not in VALID_TIFS:
            raise ValueError(f"Unsupported time-in-force {self.tif!r}")

    @property
    def reduce_only(self) -> bool:
        return self.REDUCE_ONLY

    def order_wire(self) -> Dict[str, Any]:
        # a, b, p, s, r, t[, c]: the exchange omits "c" when no client id is set.
        wire: Dict[str, Any] = {
            "a": self.asset,
            "b": self.is_buy,
            "p": self.limit_price,
            "s": self.size,
            "r": self.REDUCE_ONLY,
            "t": {"limit": {"tif": self.tif}},
        }
        if self.cloid is not None:
            wire["c"] = self.cloid
        return wire

    def to_wire(self) -> Dict[str, Any]:
        action: Dict[str, Any] = {
            "type": "order",
            "orders": [self.order_wire()],
            "grouping": "na",
        }
        if self.builder is not None:
            action["builder"] = self.builder.to_wire()
        return action


@dataclass(frozen=True)
class OpenOrder(_OrderAction):
    REDUCE_ONLY: ClassVar[bool] = False


@dataclass(frozen=True)
class CloseOrder(_OrderAction):
    REDUCE_ONLY: ClassVar[bool] = True


@dataclass(frozen=True)
class UpdateLeverage:
    asset: int
    leverage: int
    is_cross: bool = True

    USER_SIGNED: ClassVar[bool] = False

    def __post_init__(self) -> None:
        if not isinstance(self.asset, int) or isinstance(self.asset, bool) or self.asset < 0:
            raise ValueError(f"asset index must be a non-negative int, got {self.asset!r}")
        if not isinstance(self.leverage, int) or isinstance(self.leverage, bool) or self.leverage < 1:
            raise ValueError(f"leverage must be an int >= 1, got {self.leverage!r}")

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": "updateLeverage",
            "asset": self.asset,
            "isCross": self.is_cross,
            "leverage": self.leverage,
        }


@dataclass(frozen=True)
class UserSignedAction:
    """Shared shape of owner-signed actions (chain label + signature chain id + nonce)."""

    USER_SIGNED: ClassVar[bool] = True
    PRIMARY_TYPE: ClassVar[str] = ""
    WIRE_TYPE: ClassVar[str] = ""
    # (field name, EIP-712 type) in signing order
    SIGN_FIELDS: ClassVar[Tuple[Tuple[str, str], ...]] = ()

    def message(self) -> Dict[str, Any]:
        raise NotImplementedError

    def eip712_types(self) -> List[Dict[str, str]]:
        return [{"name": name, "type": kind} for name, kind in self.SIGN_FIELDS]

    def to_wire(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class ApproveAgent(UserSignedAction):
    hyperliquid_chain: str
    signature_chain_id: str
    agent_address: str
    agent_name: str
    nonce: int

    PRIMARY_TYPE: ClassVar[str] = "HyperliquidTransaction:ApproveAgent"
    WIRE_TYPE: ClassVar[str] = "approveAgent"
    SIGN_FIELDS: ClassVar[Tuple[Tuple[str, str], ...]] = (
        ("hyperliquidChain", "string"),
        ("agentAddress", "address"),
        ("agentName", "string"),
        ("nonce", "uint64"),
    )

    def __post_init__(self) -> None:
        _check_address(self.agent_address, "agent address")

    def message(self) -> Dict[str, Any]:
        return {
            "hyperliquidChain": self.hyperliquid_chain,
            "agentAddress": self.agent_address,
            "agentName": self.agent_name,
            "nonce": self.nonce,
        }

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": self.WIRE_TYPE,
            "hyperliquidChain": self.hyperliquid_chain,
            "signatureChainId": self.signature_chain_id,
            "agentAddress": self.agent_address,
            "agentName": self.agent_name,
            "nonce": self.nonce,
        }


@dataclass(frozen=True)
class ApproveBuilderFee(UserSignedAction):
    hyperliquid_chain: str
    signature_chain_id: str
    max_fee_rate: str
    builder: str
    nonce: int

    PRIMARY_TYPE: ClassVar[str] = "HyperliquidTransaction:ApproveBuilderFee"
    WIRE_TYPE: ClassVar[str] = "approveBuilderFee"
    SIGN_FIELDS: ClassVar[Tuple[Tuple[str, str], ...]] = (
        ("hyperliquidChain", "string"),
        ("maxFeeRate", "string"),
        ("builder", "address"),
        ("nonce", "uint64"),
    )

    def __post_init__(self) -> None:
        _check_address(self.builder, "builder address")
        if not str(self.max_fee_rate).endswith("%"):
            raise ValueError(f"maxFeeRate must be a percentage string, got {self.max_fee_rate!r}")

    def message(self) -> Dict[str, Any]:
        return {
            "hyperliquidChain": self.hyperliquid_chain,
            "maxFeeRate": self.max_fee_rate,
            "builder": self.builder,
            "nonce": self.nonce,
        }

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": self.WIRE_TYPE,
            "hyperliquidChain": self.hyperliquid_chain,
            "signatureChainId": self.signature_chain_id,
            "maxFeeRate": self.max_fee_rate,
            "builder": self.builder,
            "nonce": self.nonce,
        }
