#!/usr/bin/env python3
"""Sizing, signing and submission of open/close orders.

Orders are IOC limits priced through the mark by ``slippage_bps`` so they
fill against the book immediately or not at all.  One trade may be in flight
at a time; a second request is rejected before anything is sent.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from config_env import TradingConfig
from credential_manager import Session
from exchange.actions import BuilderFee, CloseOrder, OpenOrder, UpdateLeverage
from exchange.base import OrderResult, Position, Side, decimal_to_wire, to_decimal
from exchange.hyperliquid_client import HyperliquidClient, parse_order_response
from exchange.nonce import NonceGenerator
from market_snapshot import Candidate, MarketSnapshot
from position_ledger import ClosedPosition, CloseResult, compute_pnl
from trade_errors import (
    AgentUnauthorized,
    InsufficientCollateral,
    NetworkUnavailable,
    NotConnected,
    OrderRejected,
    TradeInFlight,
    TradingError,
    is_agent_auth_error,
)

PRICE_SIG_FIGS = 5
MAX_PRICE_DECIMALS = 6
_BPS = Decimal("10000")


def compute_leverage(max_leverage: int, leverage_cap: int) -> int:
    return max(1, min(int(max_leverage), int(leverage_cap)))


def compute_size(collateral_usd: Any, leverage: int, mark_price: Any, sz_decimals: int) -> Decimal:
    """Base size for ``collateral * leverage`` notional, half-up at szDecimals."""
    price = to_decimal(mark_price)
    if price <= 0:
        return Decimal("0")
    raw = to_decimal(collateral_usd) * Decimal(leverage) / price
    return raw.quantize(Decimal(1).scaleb(-int(sz_decimals)), rounding=ROUND_HALF_UP)


def format_size(size: Any) -> str:
    return decimal_to_wire(to_decimal(size))


def round_price(price: Any, sz_decimals: int) -> Decimal:
    """At most 5 significant figures and (6 - szDecimals) decimals."""
    px = to_decimal(price)
    if px <= 0:
        return Decimal("0")
    sig_quantum = Decimal(1).scaleb(px.adjusted() - (PRICE_SIG_FIGS - 1))
    px = px.quantize(sig_quantum, rounding=ROUND_HALF_UP)
    max_decimals = max(0, MAX_PRICE_DECIMALS - int(sz_decimals))
    if px.as_tuple().exponent < -max_decimals:
        px = px.quantize(Decimal(1).scaleb(-max_decimals), rounding=ROUND_HALF_UP)
    return px


def marketable_limit_price(mark_price: Any, is_buy: bool, slippage_bps: Any, sz_decimals: int) -> Decimal:
    slip = to_decimal(slippage_bps) / _BPS
    factor = Decimal(1) + slip if is_buy else Decimal(1) - slip
    return round_price(to_decimal(mark_price) * factor, sz_decimals)


@dataclass
class OpenResult:
    success: bool
    position: Optional[Position] = None
    order: Optional[OrderResult] = None
    error: Optional[TradingError] = None


class OrderEngine:
    def __init__(
        self,
        client: HyperliquidClient,
        market: MarketSnapshot,
        config: TradingConfig,
        nonces: Optional[NonceGenerator] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.market = market
        self.config = config
        self.network = config.network_config
        self.nonces = nonces or NonceGenerator()
        self.log = log or logging.getLogger(__name__)
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _charges_builder_fee(self, session: Session) -> bool:
        """Builder fee applies unless this session's fee approval failed."""
        return self.config.has_builder and session.fee_approved is not False

    def _builder(self, session: Session) -> Optional[BuilderFee]:
        if not self._charges_builder_fee(session):
            return None
        return BuilderFee(self.config.builder_address, self.config.builder_fee_tenths_bps)

    def _rejection(self, text: str) -> TradingError:
        if is_agent_auth_error(text):
            return AgentUnauthorized(detail=text)
        return OrderRejected(text or "Order rejected")

    async def _submit(self, session: Session, action: Any) -> OrderResult:
        nonce = self.nonces.next()
        signature = session.signer.sign_l1_action(action, nonce, self.network)
        raw = await self.client.submit_action(action.to_wire(), nonce, signature)
        return parse_order_response(raw)

    def _require(self, session: Optional[Session]) -> Session:
        if session is None or not session.authorized:
            raise NotConnected("Wallet not connected")
        return session

    # ============================================================ open
    async def open(
        self,
        session: Optional[Session],
        candidate: Candidate,
        collateral_usd: Any,
        side: Any,
    ) -> OpenResult:
        if self._in_flight:
            return OpenResult(False, error=TradeInFlight("Another trade is already in progress"))
        self._in_flight = True
        try:
            position, order = await self._open(self._require(session), candidate, collateral_usd, Side.parse(side))
            return OpenResult(True, position=position, order=order)
        except TradingError as e:
            if not e.silent:
                self.log.error(f"Open {candidate.name} failed ({e.kind.value}): {e.message}")
            return OpenResult(False, error=e)
        finally:
            self._in_flight = False

    async def _open(self, session: Session, candidate: Candidate, collateral_usd: Any, side: Side):
        collateral = to_decimal(collateral_usd)
        if collateral <= 0:
            raise InsufficientCollateral(f"Collateral must be positive, got {collateral_usd!r}")

        if self.config.check_balance:
            balance = await self.client.user_balance(session.user_address)
            if balance.available < collateral:
                raise InsufficientCollateral(
                    f"Insufficient balance: need ${collateral} but only ${balance.available} available"
                )

        mark = candidate.mark_price
        if mark <= 0:
            raise OrderRejected(f"No valid price for {candidate.name}")

        leverage = compute_leverage(candidate.max_leverage, self.config.leverage_cap)
        size = compute_size(collateral, leverage, mark, candidate.sz_decimals)
        if size <= 0:
            raise OrderRejected(f"Order size for {candidate.name} rounds to zero")

        await self._update_leverage(session, candidate.index, leverage)

        is_buy = side.opens_with_buy
        price = marketable_limit_price(mark, is_buy, self.config.slippage_bps, candidate.sz_decimals)
        action = OpenOrder(
            asset=candidate.index,
            is_buy=is_buy,
            limit_price=decimal_to_wire(price),
            size=format_size(size),
            builder=self._builder(session),
        )
        self.log.info(
            f"Opening {side.value} {candidate.name}: size={action.size} px={action.limit_price} lev={leverage}x"
        )
        order = await self._submit(session, action)
        if not order.success:
            raise self._rejection(order.error)

        position = Position(
            id=uuid.uuid4().hex,
            asset_index=candidate.index,
            symbol=candidate.name,
            side=side,
            size=size,
            leverage=leverage,
            collateral_usd=collateral,
            entry_price=mark,
            sz_decimals=candidate.sz_decimals,
        )
        return position, order

    async def _update_leverage(self, session: Session, asset_index: int, leverage: int) -> bool:
        """Best-effort: leverage may already be set on the account."""
        action = UpdateLeverage(asset=asset_index, leverage=leverage, is_cross=True)
        try:
            nonce = self.nonces.next()
            signature = session.signer.sign_l1_action(action, nonce, self.network)
            result = await self.client.submit_action(action.to_wire(), nonce, signature)
        except TradingError as e:
            self.log.warning(f"updateLeverage failed for asset {asset_index} (continuing): {e.message}")
            return False
        if not isinstance(result, dict) or result.get("status") != "ok":
            self.log.warning(f"updateLeverage rejected for asset {asset_index} (continuing): {result}")
            return False
        return True

    # ============================================================ close
    async def close(self, session: Optional[Session], position: Position) -> CloseResult:
        if self._in_flight:
            return CloseResult(False, position=position, error=TradeInFlight("Another trade is already in progress"))
        self._in_flight = True
        try:
            closed = await self._close(self._require(session), position)
            return CloseResult(True, position=position, closed=closed)
        except TradingError as e:
            if not e.silent:
                self.log.error(f"Close {position.symbol} failed ({e.kind.value}): {e.message}")
            return CloseResult(False, position=position, error=e)
        finally:
            self._in_flight = False

    async def _close(self, session: Session, position: Position) -> ClosedPosition:
        try:
            await self.market.refresh()
        except TradingError as e:
            raise NetworkUnavailable(f"Could not refresh prices before close: {e.message}") from e

        candidate = self.market.candidate(position.asset_index)
        if candidate is None or candidate.name != position.symbol:
            candidate = self.market.candidate_by_name(position.symbol)

        if candidate is not None and candidate.mark_price > 0:
            exit_mark = candidate.mark_price
            asset_index = candidate.index
        else:
            self.log.warning(f"No current price for {position.symbol}; using entry price")
            exit_mark = position.entry_price
            asset_index = position.asset_index

        is_buy = position.side.closes_with_buy
        price = marketable_limit_price(exit_mark, is_buy, self.config.slippage_bps, position.sz_decimals)
        action = CloseOrder(
            asset=asset_index,
            is_buy=is_buy,
            limit_price=decimal_to_wire(price),
            size=format_size(position.size),
            builder=self._builder(session),
        )
        self.log.info(f"Closing {position.side.value} {position.symbol}: size={action.size} px={action.limit_price}")
        order = await self._submit(session, action)
        if not order.success:
            raise self._rejection(order.error)

        builder_bps = self.config.builder_fee_bps if self._charges_builder_fee(session) else 0
        pnl_usd, pnl_percent = compute_pnl(position, exit_mark, self.config.taker_fee_bps, builder_bps)
        return ClosedPosition(position, exit_price=exit_mark, pnl_usd=pnl_usd, pnl_percent=pnl_percent)
