#!/usr/bin/env python3
"""HTTP client: response parsing, retry policy, balance derivation."""

import asyncio
import json
import logging
import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import exchange.hyperliquid_client as client_mod  # noqa: E402
from exchange.hyperliquid_client import HyperliquidClient, parse_order_response  # noqa: E402
from exchange.signing import MAINNET  # noqa: E402
from trade_errors import NetworkUnavailable  # noqa: E402


class _Resp:
    def __init__(self, status: int, payload=None, text: str = "") -> None:
        self.status = status
        self._payload = payload
        self._text = text if text else json.dumps(payload)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type=None):  # noqa: ANN001
        if self._payload is None:
            raise json.JSONDecodeError("not json", self._text, 0)
        return self._payload

    async def text(self):
        return self._text


class _QueueSession:
    def __init__(self, responses) -> None:  # noqa: ANN001
        self.closed = False
        self._responses = list(responses)
        self.calls = []

    def post(self, url, *args, **kwargs):  # noqa: ANN001, ANN002, ANN003
        self.calls.append((url, kwargs.get("json")))
        return self._responses.pop(0)


class _StateClient(HyperliquidClient):
    def __init__(self, state) -> None:  # noqa: ANN001
        super().__init__(MAINNET, log=logging.getLogger("test"))
        self.state = state

    async def post_info(self, payload):  # noqa: ANN001
        assert payload["type"] == "clearinghouseState"
        return self.state


async def _no_sleep(_seconds):  # noqa: ANN001
    return None


def test_parse_filled_order() -> None:
    result = parse_order_response(
        {
            "status": "ok",
            "response": {"type": "order", "data": {"statuses": [{"filled": {"totalSz": "0.004", "avgPx": "50010.5", "oid": 77}}]}},
        }
    )
    assert result.success is True
    assert result.order_id == "77"
    assert result.filled_size == Decimal("0.004")
    assert result.filled_price == Decimal("50010.5")


def test_parse_resting_order() -> None:
    result = parse_order_response(
        {"status": "ok", "response": {"type": "order", "data": {"statuses": [{"resting": {"oid": 12}}]}}}
    )
    assert result.success is True
    assert result.order_id == "12"


def test_parse_per_order_error_is_failure_verbatim() -> None:
    text = "Order could not immediately match against any resting orders. asset=0"
    result = parse_order_response(
        {"status": "ok", "response": {"type": "order", "data": {"statuses": [{"error": text}]}}}
    )
    assert result.success is False
    assert result.error == text


def test_parse_top_level_error() -> None:
    result = parse_order_response({"status": "err", "response": "User or API Wallet 0xabc does not exist."})
    assert result.success is False
    assert result.error == "User or API Wallet 0xabc does not exist."
    assert parse_order_response(None).success is False


def test_post_info_retries_on_429(monkeypatch) -> None:
    monkeypatch.setattr(client_mod.asyncio, "sleep", _no_sleep)
    session = _QueueSession([_Resp(429, {"error": "rate"}), _Resp(200, [{"universe": []}, []])])
    client = HyperliquidClient(MAINNET, log=logging.getLogger("test"), session=session)

    out = asyncio.run(client.meta_and_asset_ctxs())

    assert out == [{"universe": []}, []]
    assert len(session.calls) == 2
    assert session.calls[0][0].endswith("/info")


def test_post_info_gives_up_after_retries(monkeypatch) -> None:
    monkeypatch.setattr(client_mod.asyncio, "sleep", _no_sleep)
    session = _QueueSession([_Resp(429, {"error": "rate"}) for _ in range(client_mod.MAX_PUBLIC_RETRIES)])
    client = HyperliquidClient(MAINNET, log=logging.getLogger("test"), session=session)

    with pytest.raises(NetworkUnavailable):
        asyncio.run(client.post_info({"type": "metaAndAssetCtxs"}))


def test_post_exchange_does_not_retry_server_errors() -> None:
    session = _QueueSession([_Resp(502, None, text="bad gateway"), _Resp(200, {"status": "ok"})])
    client = HyperliquidClient(MAINNET, log=logging.getLogger("test"), session=session)

    with pytest.raises(NetworkUnavailable):
        asyncio.run(client.submit_action({"type": "order"}, 1, {"r": "0x1", "s": "0x2", "v": 27}))
    assert len(session.calls) == 1


def test_post_exchange_rate_limit_sends_signed_payload_once() -> None:
    session = _QueueSession([_Resp(429, {"error": "rate"}), _Resp(200, {"status": "ok"})])
    client = HyperliquidClient(MAINNET, log=logging.getLogger("test"), session=session)

    with pytest.raises(NetworkUnavailable) as exc_info:
        asyncio.run(client.submit_action({"type": "order"}, 123, {"r": "0x1", "s": "0x2", "v": 27}))

    assert exc_info.value.retryable is True
    assert len(session.calls) == 1
    assert session.calls[0][1]["nonce"] == 123


def test_post_exchange_text_body_becomes_err_status() -> None:
    session = _QueueSession([_Resp(422, None, text="Failed to deserialize the JSON body")])
    client = HyperliquidClient(MAINNET, log=logging.getLogger("test"), session=session)

    out = asyncio.run(client.submit_action({"type": "order"}, 1, {"r": "0x1", "s": "0x2", "v": 27}))

    assert out == {"status": "err", "response": "Failed to deserialize the JSON body"}
    url, payload = session.calls[0]
    assert url.endswith("/exchange")
    assert list(payload) == ["action", "nonce", "signature", "vaultAddress"]
    assert payload["vaultAddress"] is None


def test_user_balance_prefers_withdrawable() -> None:
    client = _StateClient(
        {"withdrawable": "42.5", "marginSummary": {"accountValue": "100"}, "crossMarginSummary": {"accountValue": "90"}}
    )
    balance = asyncio.run(client.user_balance("0xuser"))
    assert balance.available == Decimal("42.5")
    assert balance.account_value == Decimal("100")


def test_user_balance_falls_back_to_account_value() -> None:
    client = _StateClient(
        {"withdrawable": "0.0", "marginSummary": {"accountValue": "12"}, "crossMarginSummary": {"accountValue": "15"}}
    )
    balance = asyncio.run(client.user_balance("0xuser"))
    assert balance.available == Decimal("15")


def test_user_positions_returns_asset_positions() -> None:
    client = _StateClient({"assetPositions": [{"position": {"coin": "BTC", "szi": "0.01"}}]})
    assert asyncio.run(client.user_positions("0xuser")) == [{"position": {"coin": "BTC", "szi": "0.01"}}]
