#!/usr/bin/env python3
"""
CLI for PerpPlay agent trading.

Commands:
- connect: Approve a fresh agent key with the local wallet
- reconnect: Restore the stored session (wallet + agent re-verified)
- status: Show connection state
- disconnect: Forget the session
- markets: Ranked tradeable assets
- balance: Available collateral
- open: Open a position on one asset
- play: Run timed rounds (open, countdown, close)
- positions: Live PnL of open positions
- close-all: Close every open position
"""

import argparse
import asyncio
import json
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

sys.path.insert(0, str(Path(__file__).parent))

from config_env import TradingConfig, load_trading_config
from credential_manager import CredentialManager, RestoreResult
from env_utils import env_str
from exchange.base import Position, Side, to_decimal
from exchange.hyperliquid_client import HyperliquidClient
from exchange.nonce import NonceGenerator
from logging_utils import setup_logging
from market_snapshot import MarketSnapshot
from order_engine import OrderEngine
from position_ledger import CloseProgress, PositionLedger
from session_store import SessionStore
from trade_errors import TradingError, WalletUnavailable
from trade_flow import TradeFlow
from wallet import LocalWalletConnector

USER_KEY_ENV = "PERPPLAY_USER_PRIVATE_KEY"


@dataclass
class App:
    config: TradingConfig
    client: HyperliquidClient
    credentials: CredentialManager
    market: MarketSnapshot
    engine: OrderEngine
    ledger: PositionLedger
    flow: TradeFlow


@asynccontextmanager
async def open_app(config: TradingConfig, verbose: bool = False):
    """Wire every component around one HTTP client and one nonce source."""
    log = setup_logging("perpplay", verbose=verbose)
    nonces = NonceGenerator()
    client = HyperliquidClient(
        config.network_config,
        log=log.getChild("http"),
        timeout_seconds=config.request_timeout_seconds,
    )
    store = SessionStore(config.runtime_dir, config.storage_namespace, log=log.getChild("store"))
    credentials = CredentialManager(client, store, config, nonces=nonces, log=log.getChild("credentials"))
    market = MarketSnapshot(client, log=log.getChild("market"))
    engine = OrderEngine(client, market, config, nonces=nonces, log=log.getChild("orders"))
    ledger = PositionLedger(config.taker_fee_bps, config.builder_fee_bps, log=log.getChild("ledger"))
    flow = TradeFlow(credentials, market, engine, ledger, client, config, log=log.getChild("flow"))
    async with client:
        yield App(config, client, credentials, market, engine, ledger, flow)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _wallet() -> LocalWalletConnector:
    key = env_str(USER_KEY_ENV)
    if not key:
        raise WalletUnavailable(f"Set {USER_KEY_ENV} to use the CLI wallet")
    return LocalWalletConnector(key)


def _print_error(error: Optional[TradingError]) -> int:
    if error is None:
        print("Error: unknown failure")
        return 1
    if error.silent:
        return 1
    print(f"Error ({error.kind.value}): {error.message}")
    return 1


async def _restore(app: App) -> Optional[RestoreResult]:
    try:
        wallet = _wallet()
    except WalletUnavailable as e:
        print(f"Error: {e.message}")
        return None
    result = await app.credentials.restore(wallet)
    if not result.success:
        print(f"Not connected ({result.reason}). Run `connect` first.")
        return None
    return result


def position_from_exchange(entry: Dict[str, Any], app: App) -> Optional[Position]:
    """Adopt an exchange-held position so it can be tracked and closed."""
    pos = entry.get("position", entry) if isinstance(entry, dict) else None
    if not isinstance(pos, dict):
        return None
    size = to_decimal(pos.get("szi"))
    coin = str(pos.get("coin") or "")
    if size == 0 or not coin:
        return None
    candidate = app.market.candidate_by_name(coin)
    leverage = pos.get("leverage") or {}
    return Position(
        id=f"hl:{coin}",
        asset_index=candidate.index if candidate else -1,
        symbol=coin,
        side=Side.LONG if size > 0 else Side.SHORT,
        size=abs(size),
        leverage=int(leverage.get("value") or 1) if isinstance(leverage, dict) else 1,
        collateral_usd=to_decimal(pos.get("marginUsed")),
        entry_price=to_decimal(pos.get("entryPx")),
        sz_decimals=candidate.sz_decimals if candidate else 0,
    )


async def _adopt_exchange_positions(app: App) -> int:
    session = app.credentials.require_session()
    await app.market.refresh()
    adopted = 0
    for entry in await app.client.user_positions(session.user_address):
        position = position_from_exchange(entry, app)
        if position is None or position.asset_index < 0:
            continue
        if position.id not in app.ledger:
            app.ledger.add(position)
            adopted += 1
    return adopted


# ============================================================================
# Commands
# ============================================================================

async def cmd_connect(args, config: TradingConfig) -> int:
    """Approve a new agent for the local wallet."""
    try:
        wallet = _wallet()
    except WalletUnavailable as e:
        return _print_error(e)
    async with open_app(config, args.verbose) as app:
        result = await app.credentials.establish_session(wallet)
        if not result.success:
            return _print_error(result.error)
        _print_json({**result.session.to_dict(), "network": config.network})
        if not result.fee_approved:
            print("Note: builder fee not approved; orders go out without a builder fee")
        return 0


async def cmd_reconnect(args, config: TradingConfig) -> int:
    async with open_app(config, args.verbose) as app:
        restored = await _restore(app)
        if restored is None:
            return 1
        _print_json(restored.session.to_dict())
        return 0


async def cmd_status(args, config: TradingConfig) -> int:
    async with open_app(config, args.verbose) as app:
        reason = None
        try:
            result = await app.credentials.restore(_wallet())
            reason = result.reason
        except WalletUnavailable as e:
            reason = "no_wallet"
            print(f"Note: {e.message}")
        _print_json({**app.credentials.status(), "reason": reason, "network": config.network})
        return 0


async def cmd_disconnect(args, config: TradingConfig) -> int:
    async with open_app(config, args.verbose) as app:
        app.credentials.teardown()
        print("Disconnected; stored session cleared")
        return 0


async def cmd_markets(args, config: TradingConfig) -> int:
    async with open_app(config, args.verbose) as app:
        try:
            await app.market.refresh()
        except TradingError as e:
            return _print_error(e)
        min_oi = args.min_oi if args.min_oi is not None else config.min_open_interest_usd
        top = args.top if args.top is not None else config.top_tokens_count
        ranked = app.market.ranked_candidates(min_oi, top)
        if args.json:
            _print_json([c.to_dict() for c in ranked])
            return 0
        print(f"{'#':>3}  {'SYMBOL':<10} {'MARK':>14} {'OI (USD)':>16} {'MAXLEV':>6}")
        for i, c in enumerate(ranked, 1):
            print(f"{i:>3}  {c.name:<10} {str(c.mark_price):>14} {c.open_interest_usd:>16,.0f} {c.max_leverage:>6}")
        return 0


async def cmd_balance(args, config: TradingConfig) -> int:
    try:
        wallet = _wallet()
    except WalletUnavailable as e:
        return _print_error(e)
    async with open_app(config, args.verbose) as app:
        try:
            balance = await app.client.user_balance(wallet.address)
        except TradingError as e:
            return _print_error(e)
        _print_json({
            "wallet_address": wallet.address,
            "available": str(balance.available),
            "account_value": str(balance.account_value),
        })
        return 0


async def cmd_open(args, config: TradingConfig) -> int:
    async with open_app(config, args.verbose) as app:
        if await _restore(app) is None:
            return 1
        try:
            await app.market.refresh()
        except TradingError as e:
            return _print_error(e)
        candidate = app.market.candidate_by_name(args.symbol)
        if candidate is None:
            print(f"Error: unknown asset {args.symbol}")
            return 1
        result = await app.flow.open_position(candidate, args.side, args.collateral)
        if not result.success:
            return _print_error(result.error)
        _print_json(result.position.to_dict())
        return 0


async def cmd_play(args, config: TradingConfig) -> int:
    async with open_app(config, args.verbose) as app:
        if await _restore(app) is None:
            return 1
        failures = 0
        for _ in range(max(1, args.rounds)):
            async for event in app.flow.play_round(args.collateral, args.side):
                print(json.dumps(event.to_dict(), default=str))
                if event.phase == "error":
                    failures += 1
        return 1 if failures else 0


async def cmd_positions(args, config: TradingConfig) -> int:
    async with open_app(config, args.verbose) as app:
        if await _restore(app) is None:
            return 1
        try:
            await _adopt_exchange_positions(app)
            rows = await app.flow.live_positions()
        except TradingError as e:
            return _print_error(e)
        if not rows:
            print("No open positions")
            return 0
        _print_json(rows)
        return 0


async def cmd_close_all(args, config: TradingConfig) -> int:
    async with open_app(config, args.verbose) as app:
        if await _restore(app) is None:
            return 1
        try:
            await _adopt_exchange_positions(app)
        except TradingError as e:
            return _print_error(e)
        if not len(app.ledger):
            print("No open positions")
            return 0

        def progress(p: CloseProgress) -> None:
            status = "closed" if p.result.success else f"FAILED ({p.result.error.message})"
            print(f"[{p.index}/{p.total}] {p.position.symbol}: {status}")

        result = await app.flow.close_all(progress)
        print(f"Total PnL: ${result.total_pnl:.2f} ({len(result.closed)} closed, {len(result.failed)} failed)")
        return 1 if result.failed else 0


# ============================================================================
# Main
# ============================================================================

COMMANDS = {
    'connect': cmd_connect,
    'reconnect': cmd_reconnect,
    'status': cmd_status,
    'disconnect': cmd_disconnect,
    'markets': cmd_markets,
    'balance': cmd_balance,
    'open': cmd_open,
    'play': cmd_play,
    'positions': cmd_positions,
    'close-all': cmd_close_all,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='PerpPlay agent trading CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--config', default=None, help='Path to perpplay.yaml')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('connect', help='Approve a fresh agent key')
    subparsers.add_parser('reconnect', help='Restore the stored session')
    subparsers.add_parser('status', help='Show connection state')
    subparsers.add_parser('disconnect', help='Clear the stored session')

    markets_parser = subparsers.add_parser('markets', help='Ranked tradeable assets')
    markets_parser.add_argument('--min-oi', type=float, default=None, help='Minimum open interest in USD')
    markets_parser.add_argument('--top', type=int, default=None, help='Number of assets to show')
    markets_parser.add_argument('--json', action='store_true', help='JSON output')

    subparsers.add_parser('balance', help='Show available collateral')

    open_parser = subparsers.add_parser('open', help='Open a position')
    open_parser.add_argument('symbol', help='Asset symbol (e.g., BTC)')
    open_parser.add_argument('side', type=str.upper, choices=['LONG', 'SHORT'], help='Direction')
    open_parser.add_argument('--collateral', type=float, default=None, help='Collateral in USD')

    play_parser = subparsers.add_parser('play', help='Open, hold, close on a random asset')
    play_parser.add_argument('--rounds', type=int, default=1, help='Number of rounds')
    play_parser.add_argument('--collateral', type=float, default=None, help='Collateral in USD')
    play_parser.add_argument('--side', type=str.upper, choices=['LONG', 'SHORT'], default=None,
                             help='Force direction (default: weighted random)')

    subparsers.add_parser('positions', help='Open positions with live PnL')
    subparsers.add_parser('close-all', help='Close every open position')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_trading_config(args.config)
    except ValueError as e:
        print(f"Config error: {e}")
        return 2

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    return asyncio.run(handler(args, config))


if __name__ == '__main__':
    sys.exit(main())
