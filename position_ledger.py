#!/usr/bin/env python3
"""In-memory record of positions opened by this session.

PnL policy: estimated taker + builder fees on both legs are deducted on every
path (close, close-all, live view).  Passing zero fee rates gives the raw
price PnL the exchange itself displays.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from exchange.base import Position, decimal_to_wire, to_decimal, utc_now_iso
from trade_errors import TradeInFlight, TradingError

_BPS = Decimal("10000")
_HUNDRED = Decimal("100")


def compute_pnl(
    position: Position,
    current_price: Any,
    taker_fee_bps: Any = 0,
    builder_fee_bps: Any = 0,
) -> Tuple[Decimal, Decimal]:
    """Return (usd, percent-of-collateral) net of estimated round-trip fees."""
    price = to_decimal(current_price)
    raw = (price - position.entry_price) * position.size * position.side.sign
    fee_rate = (to_decimal(taker_fee_bps) + to_decimal(builder_fee_bps)) / _BPS
    fees = fee_rate * (position.entry_notional + price * position.size)
    usd = raw - fees
    if position.collateral_usd > 0:
        percent = usd / position.collateral_usd * _HUNDRED
    else:
        percent = Decimal("0")
    return usd, percent


@dataclass
class ClosedPosition:
    position: Position
    exit_price: Decimal
    pnl_usd: Decimal
    pnl_percent: Decimal
    closed_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        data = self.position.to_dict()
        data.update(
            {
                "exit_price": decimal_to_wire(self.exit_price),
                "pnl_usd": decimal_to_wire(self.pnl_usd.quantize(Decimal("0.0001"))),
                "pnl_percent": decimal_to_wire(self.pnl_percent.quantize(Decimal("0.01"))),
                "closed_at": self.closed_at,
            }
        )
        return data


@dataclass
class CloseResult:
    success: bool
    position: Optional[Position] = None
    closed: Optional[ClosedPosition] = None
    error: Optional[TradingError] = None


@dataclass
class CloseProgress:
    index: int
    total: int
    position: Position
    result: CloseResult


@dataclass
class CloseAllResult:
    total_pnl: Decimal
    closed: List[ClosedPosition]
    results: List[CloseResult]

    @property
    def failed(self) -> List[CloseResult]:
        return [r for r in self.results if not r.success]


Closer = Callable[[Position], Awaitable[CloseResult]]
ProgressCallback = Callable[[CloseProgress], Any]


class PositionLedger:
    def __init__(
        self,
        taker_fee_bps: Any = 0,
        builder_fee_bps: Any = 0,
        log: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.taker_fee_bps = to_decimal(taker_fee_bps)
        self.builder_fee_bps = to_decimal(builder_fee_bps)
        self.log = log or logging.getLogger(__name__)
        self._sleep = sleep
        self._positions: Dict[str, Position] = {}
        self._closing: set = set()

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, position_id: str) -> bool:
        return position_id in self._positions

    def add(self, position: Position) -> None:
        self._positions[position.id] = position

    def get(self, position_id: str) -> Optional[Position]:
        return self._positions.get(position_id)

    def remove(self, position_id: str) -> Optional[Position]:
        return self._positions.pop(position_id, None)

    def positions(self) -> List[Position]:
        return list(self._positions.values())

    def clear(self) -> None:
        """Forget every tracked position (exchange state is untouched)."""
        self._positions.clear()
        self._closing.clear()

    def pnl(
        self, position: Position, current_price: Any, include_builder_fee: bool = True
    ) -> Tuple[Decimal, Decimal]:
        builder_bps = self.builder_fee_bps if include_builder_fee else 0
        return compute_pnl(position, current_price, self.taker_fee_bps, builder_bps)

    # ============================================================ close
    def begin_close(self, position_id: str) -> None:
        if position_id in self._closing:
            raise TradeInFlight(f"Close already in progress for {position_id}")
        self._closing.add(position_id)

    def end_close(self, position_id: str) -> None:
        self._closing.discard(position_id)

    def is_closing(self, position_id: str) -> bool:
        return position_id in self._closing

    async def close_position(self, closer: Closer, position: Position) -> CloseResult:
        """Run ``closer`` for one position; drop it only once the exchange acked."""
        try:
            self.begin_close(position.id)
        except TradeInFlight as e:
            return CloseResult(False, position=position, error=e)
        try:
            result = await closer(position)
        finally:
            self.end_close(position.id)
        if result.success:
            self.remove(position.id)
        return result

    async def close_all(
        self,
        closer: Closer,
        progress: Optional[ProgressCallback] = None,
        delay_seconds: float = 0.0,
    ) -> CloseAllResult:
        """Close a snapshot of tracked positions one at a time.

        Failed closes stay in the ledger and are reported in ``results``.
        """
        snapshot = self.positions()
        results: List[CloseResult] = []
        closed: List[ClosedPosition] = []
        total = Decimal("0")

        for i, position in enumerate(snapshot):
            if i > 0 and delay_seconds > 0:
                await self._sleep(delay_seconds)
            result = await self.close_position(closer, position)
            results.append(result)
            if result.success and result.closed is not None:
                closed.append(result.closed)
                total += result.closed.pnl_usd
            elif not result.success:
                reason = result.error.message if result.error else "unknown"
                self.log.warning(f"Failed to close {position.symbol} ({position.id}): {reason}")
            if progress is not None:
                ret = progress(CloseProgress(i + 1, len(snapshot), position, result))
                if inspect.isawaitable(ret):
                    await ret

        return CloseAllResult(total_pnl=total, closed=closed, results=results)

    # ============================================================ reconcile
    def reconcile(self, exchange_positions: Iterable[Dict[str, Any]]) -> List[Position]:
        """Drop tracked positions the exchange no longer holds (by coin, non-zero size)."""
        live = set()
        for entry in exchange_positions or []:
            if not isinstance(entry, dict):
                continue
            pos = entry.get("position", entry)
            if not isinstance(pos, dict):
                continue
            coin = str(pos.get("coin") or "").upper()
            if coin and to_decimal(pos.get("szi")) != 0:
                live.add(coin)

        removed = []
        for position in self.positions():
            if self.is_closing(position.id):
                continue
            if position.symbol.upper() not in live:
                self.remove(position.id)
                removed.append(position)
        if removed:
            self.log.info(
                f"Reconciled ledger: dropped {len(removed)} position(s) closed elsewhere "
                f"({', '.join(p.symbol for p in removed)})"
            )
        return removed
