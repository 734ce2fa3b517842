#!/usr/bin/env python3
"""
Shared wire-layer dataclasses.

- AssetDescriptor / MarketContext: one entry per perp, paired by index
- Position: a position opened by this session (owned by PositionLedger)
- OrderResult: parsed /exchange order acknowledgement
- AccountBalance: collateral figures from clearinghouseState
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional


def to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Parse exchange numeric strings; floats go through repr to avoid binary noise."""
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return default
    if isinstance(value, float):
        value = repr(value)
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default
    if not parsed.is_finite():
        return default
    return parsed


def decimal_to_wire(value: Any) -> str:
    """Canonical decimal string: no exponent, no trailing zeros, no "-0"."""
    d = value if isinstance(value, Decimal) else to_decimal(value, default=Decimal("NaN"))
    if not d.is_finite():
        raise ValueError(f"Cannot send non-finite number {value!r}")
    text = format(d.normalize(), "f")
    return "0" if text == "-0" else text


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def opens_with_buy(self) -> bool:
        return self is Side.LONG

    @property
    def closes_with_buy(self) -> bool:
        return self is Side.SHORT

    @property
    def sign(self) -> int:
        return 1 if self is Side.LONG else -1

    @classmethod
    def parse(cls, value: Any) -> "Side":
        raw = str(getattr(value, "value", value) or "").strip().upper()
        if raw in ("LONG", "BUY"):
            return cls.LONG
        if raw in ("SHORT", "SELL"):
            return cls.SHORT
        raise ValueError(f"Unknown side: {value!r}")


@dataclass(frozen=True)
class AssetDescriptor:
    """Static perp metadata. ``index`` is the exchange's wire id for the asset."""
    index: int
    name: str
    sz_decimals: int
    max_leverage: int

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError(f"asset index must be >= 0, got {self.index}")
        if self.sz_decimals < 0:
            raise ValueError(f"szDecimals must be >= 0, got {self.sz_decimals}")
        if self.max_leverage < 1:
            raise ValueError(f"maxLeverage must be >= 1, got {self.max_leverage}")


@dataclass(frozen=True)
class MarketContext:
    asset_index: int
    mark_price: Decimal
    open_interest_base: Decimal

    @property
    def open_interest_usd(self) -> Decimal:
        return self.open_interest_base * self.mark_price


@dataclass
class Position:
    """A position opened through this session."""
    id: str
    asset_index: int
    symbol: str
    side: Side
    size: Decimal
    leverage: int
    collateral_usd: Decimal
    entry_price: Decimal
    sz_decimals: int = 0
    opened_at: str = field(default_factory=utc_now_iso)

    @property
    def entry_notional(self) -> Decimal:
        return self.entry_price * self.size

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for display/export."""
        return {
            'id': self.id,
            'asset_index': self.asset_index,
            'symbol': self.symbol,
            'side': self.side.value,
            'size': decimal_to_wire(self.size),
            'leverage': self.leverage,
            'collateral_usd': decimal_to_wire(self.collateral_usd),
            'entry_price': decimal_to_wire(self.entry_price),
            'sz_decimals': self.sz_decimals,
            'opened_at': self.opened_at,
        }


@dataclass
class OrderResult:
    """Result of an order placement."""
    success: bool
    order_id: Optional[str] = None
    filled_size: Decimal = Decimal("0")
    filled_price: Decimal = Decimal("0")
    error: str = ""
    raw: Optional[Dict[str, Any]] = field(default=None, repr=False)


@dataclass(frozen=True)
class AccountBalance:
    available: Decimal
    account_value: Decimal
