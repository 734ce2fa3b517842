#!/usr/bin/env python3
"""PositionLedger PnL, sequential close-all and exchange reconciliation."""

import asyncio
import sys
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from exchange.base import Position, Side  # noqa: E402
from position_ledger import (  # noqa: E402
    ClosedPosition,
    CloseResult,
    PositionLedger,
    compute_pnl,
)
from trade_errors import OrderRejected, TradeInFlight  # noqa: E402


def _pos(pid: str, symbol: str = "BTC", side: Side = Side.LONG, size="1", entry="100", collateral="10") -> Position:
    return Position(
        id=pid,
        asset_index=0,
        symbol=symbol,
        side=side,
        size=Decimal(size),
        leverage=10,
        collateral_usd=Decimal(collateral),
        entry_price=Decimal(entry),
    )


def test_long_and_short_pnl_without_fees() -> None:
    usd, pct = compute_pnl(_pos("a"), "110")
    assert usd == Decimal("10")
    assert pct == Decimal("100")

    usd, pct = compute_pnl(_pos("b", side=Side.SHORT), "110")
    assert usd == Decimal("-10")
    assert pct == Decimal("-100")


def test_pnl_deducts_round_trip_fees() -> None:
    usd, _ = compute_pnl(_pos("a"), "110", taker_fee_bps="3.5", builder_fee_bps="2")
    assert usd == Decimal("9.8845")


def test_ledger_pnl_uses_configured_fees() -> None:
    ledger = PositionLedger(taker_fee_bps="3.5", builder_fee_bps="2")
    usd, _ = ledger.pnl(_pos("a"), 110)
    assert usd == Decimal("9.8845")


def test_ledger_pnl_can_leave_out_builder_fee() -> None:
    ledger = PositionLedger(taker_fee_bps="3.5", builder_fee_bps="2")
    usd, _ = ledger.pnl(_pos("a"), 110, include_builder_fee=False)
    assert usd == Decimal("9.9265")


def test_add_get_remove_clear() -> None:
    ledger = PositionLedger()
    ledger.add(_pos("a"))
    ledger.add(_pos("b", symbol="ETH"))

    assert len(ledger) == 2
    assert "a" in ledger
    assert ledger.get("b").symbol == "ETH"
    assert ledger.remove("a").id == "a"
    assert ledger.remove("a") is None

    ledger.clear()
    assert len(ledger) == 0


def test_close_all_runs_sequentially_and_keeps_failures() -> None:
    ledger = PositionLedger()
    for pid, symbol in (("a", "BTC"), ("b", "ETH"), ("c", "SOL")):
        ledger.add(_pos(pid, symbol=symbol))

    active = []
    order = []
    sleeps = []
    progress = []

    async def closer(position):  # noqa: ANN001
        active.append(position.id)
        assert len(active) == 1
        await asyncio.sleep(0)
        active.remove(position.id)
        order.append(position.id)
        if position.id == "b":
            return CloseResult(False, position=position, error=OrderRejected("Reduce only order would increase position."))
        pnl = Decimal("2") if position.id == "a" else Decimal("-0.5")
        return CloseResult(True, position=position, closed=ClosedPosition(position, Decimal("1"), pnl, Decimal("0")))

    async def fake_sleep(seconds):  # noqa: ANN001
        sleeps.append(seconds)

    async def on_progress(item):  # noqa: ANN001
        progress.append((item.index, item.total, item.result.success))

    ledger._sleep = fake_sleep
    result = asyncio.run(ledger.close_all(closer, progress=on_progress, delay_seconds=0.5))

    assert order == ["a", "b", "c"]
    assert sleeps == [0.5, 0.5]
    assert progress == [(1, 3, True), (2, 3, False), (3, 3, True)]
    assert result.total_pnl == Decimal("1.5")
    assert [c.position.id for c in result.closed] == ["a", "c"]
    assert [r.position.id for r in result.failed] == ["b"]
    assert [p.id for p in ledger.positions()] == ["b"]


def test_close_all_with_sync_progress_callback() -> None:
    ledger = PositionLedger()
    ledger.add(_pos("a"))
    seen = []

    async def closer(position):  # noqa: ANN001
        return CloseResult(True, position=position, closed=ClosedPosition(position, Decimal("1"), Decimal("1"), Decimal("0")))

    result = asyncio.run(ledger.close_all(closer, progress=lambda item: seen.append(item.index)))
    assert seen == [1]
    assert result.total_pnl == Decimal("1")


def test_close_position_guard_rejects_duplicate_close() -> None:
    ledger = PositionLedger()
    pos = _pos("a")
    ledger.add(pos)
    ledger.begin_close("a")

    async def closer(position):  # noqa: ANN001
        raise AssertionError("closer must not run")

    result = asyncio.run(ledger.close_position(closer, pos))
    assert result.success is False
    assert isinstance(result.error, TradeInFlight)
    assert "a" in ledger

    ledger.end_close("a")
    assert ledger.is_closing("a") is False


def test_reconcile_drops_positions_closed_elsewhere() -> None:
    ledger = PositionLedger()
    ledger.add(_pos("a", symbol="BTC"))
    ledger.add(_pos("b", symbol="ETH"))
    ledger.add(_pos("c", symbol="SOL"))
    ledger.begin_close("c")

    removed = ledger.reconcile(
        [
            {"position": {"coin": "BTC", "szi": "0.5"}},
            {"position": {"coin": "ETH", "szi": "0.0"}},
        ]
    )

    assert [p.id for p in removed] == ["b"]
    assert sorted(p.id for p in ledger.positions()) == ["a", "c"]
