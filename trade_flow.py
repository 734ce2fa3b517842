#!/usr/bin/env python3
"""Game-facing orchestration: open, countdown, close, with lifecycle events.

``play_round`` is an async generator; a UI consumes its TradeEvents
(opening -> open -> countdown* -> closing -> closed | error) instead of
passing callbacks down into the engine.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from config_env import TradingConfig
from credential_manager import CredentialManager
from exchange.base import Position, Side, decimal_to_wire
from exchange.hyperliquid_client import HyperliquidClient
from market_snapshot import Candidate, MarketSnapshot, pick_random
from order_engine import OpenResult, OrderEngine
from position_ledger import CloseAllResult, CloseResult, PositionLedger, ProgressCallback
from trade_errors import NoCandidates, NotConnected, TradingError

PHASE_OPENING = "opening"
PHASE_OPEN = "open"
PHASE_COUNTDOWN = "countdown"
PHASE_CLOSING = "closing"
PHASE_CLOSED = "closed"
PHASE_ERROR = "error"


@dataclass
class TradeEvent:
    phase: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"phase": self.phase, **self.data}


class TradeFlow:
    def __init__(
        self,
        credentials: CredentialManager,
        market: MarketSnapshot,
        engine: OrderEngine,
        ledger: PositionLedger,
        client: HyperliquidClient,
        config: TradingConfig,
        log: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.credentials = credentials
        self.market = market
        self.engine = engine
        self.ledger = ledger
        self.client = client
        self.config = config
        self.log = log or logging.getLogger(__name__)
        self._sleep = sleep
        self._rng = rng or random.Random()

    def _collateral(self, collateral_usd: Any) -> Any:
        return self.config.default_collateral_usd if collateral_usd is None else collateral_usd

    async def _closer(self, position: Position) -> CloseResult:
        return await self.engine.close(self.credentials.session, position)

    # ============================================================ open
    async def open_position(self, candidate: Candidate, side: Any, collateral_usd: Any = None) -> OpenResult:
        result = await self.engine.open(
            self.credentials.session, candidate, self._collateral(collateral_usd), side
        )
        if result.success:
            self.ledger.add(result.position)
        return result

    async def pick_candidate(self) -> Candidate:
        await self.market.refresh()
        ranked = self.market.ranked_candidates(
            self.config.min_open_interest_usd, self.config.top_tokens_count
        )
        candidate = pick_random(ranked, self._rng)
        if candidate is None:
            raise NoCandidates(
                f"No assets with open interest >= ${self.config.min_open_interest_usd:,.0f}"
            )
        return candidate

    def pick_side(self) -> Side:
        return Side.LONG if self._rng.random() < self.config.long_probability else Side.SHORT

    async def open_random_position(self, collateral_usd: Any = None) -> OpenResult:
        if not self.credentials.connected:
            return OpenResult(False, error=NotConnected("Wallet not connected"))
        try:
            candidate = await self.pick_candidate()
        except TradingError as e:
            self.log.warning(f"No trade opened: {e.message}")
            return OpenResult(False, error=e)
        return await self.open_position(candidate, self.pick_side(), collateral_usd)

    # ============================================================ close
    async def close_position(self, position_id: str) -> CloseResult:
        position = self.ledger.get(position_id)
        if position is None:
            return CloseResult(False, error=TradingError(f"Unknown position {position_id}"))
        return await self.ledger.close_position(self._closer, position)

    async def close_all(self, progress: Optional[ProgressCallback] = None) -> CloseAllResult:
        return await self.ledger.close_all(
            self._closer, progress=progress, delay_seconds=self.config.close_all_delay_seconds
        )

    # ============================================================ round
    async def play_round(
        self,
        collateral_usd: Any = None,
        side: Any = None,
        candidate: Optional[Candidate] = None,
    ) -> AsyncIterator[TradeEvent]:
        """Open a position, hold it for ``close_delay_seconds``, close it."""
        collateral = self._collateral(collateral_usd)
        if not self.credentials.connected:
            error = NotConnected("Wallet not connected")
            yield TradeEvent(PHASE_ERROR, {"stage": PHASE_OPENING, **error.to_dict()})
            return
        try:
            if candidate is None:
                candidate = await self.pick_candidate()
            chosen_side = Side.parse(side) if side is not None else self.pick_side()
        except TradingError as e:
            yield TradeEvent(PHASE_ERROR, {"stage": PHASE_OPENING, **e.to_dict()})
            return

        yield TradeEvent(
            PHASE_OPENING,
            {"symbol": candidate.name, "side": chosen_side.value, "collateral_usd": collateral},
        )
        opened = await self.open_position(candidate, chosen_side, collateral)
        if not opened.success:
            yield TradeEvent(PHASE_ERROR, {"stage": PHASE_OPENING, **opened.error.to_dict()})
            return
        position = opened.position
        yield TradeEvent(PHASE_OPEN, {"position": position.to_dict()})

        remaining = int(math.ceil(self.config.close_delay_seconds))
        while remaining > 0:
            yield TradeEvent(PHASE_COUNTDOWN, {"position_id": position.id, "remaining": remaining})
            await self._sleep(1)
            remaining -= 1

        yield TradeEvent(PHASE_CLOSING, {"position_id": position.id, "symbol": position.symbol})
        closed = await self.ledger.close_position(self._closer, position)
        if closed.success:
            yield TradeEvent(PHASE_CLOSED, {"result": closed.closed.to_dict()})
        else:
            yield TradeEvent(
                PHASE_ERROR,
                {"stage": PHASE_CLOSING, "position_id": position.id, **closed.error.to_dict()},
            )

    # ============================================================ live view
    async def live_positions(self) -> List[Dict[str, Any]]:
        """Tracked positions with current price and net PnL (same formula as close)."""
        session = self.credentials.require_session()
        await self.market.refresh()
        self.ledger.reconcile(await self.client.user_positions(session.user_address))

        rows = []
        for position in self.ledger.positions():
            candidate = self.market.candidate(position.asset_index)
            if candidate is None or candidate.name != position.symbol:
                candidate = self.market.candidate_by_name(position.symbol)
            price = candidate.mark_price if candidate is not None else position.entry_price
            pnl_usd, pnl_percent = self.ledger.pnl(
                position, price, include_builder_fee=session.fee_approved is not False
            )
            row = position.to_dict()
            row.update(
                {
                    "current_price": decimal_to_wire(price),
                    "pnl_usd": decimal_to_wire(pnl_usd.quantize(Decimal("0.0001"))),
                    "pnl_percent": decimal_to_wire(pnl_percent.quantize(Decimal("0.01"))),
                }
            )
            rows.append(row)
        return rows
