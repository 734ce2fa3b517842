#!/usr/bin/env python3
"""Async HTTP client for the exchange's /info and /exchange endpoints.

Raw aiohttp POSTs; signing happens before ``submit_action`` is called.
429 on /info is retried with linear backoff.  /exchange is never retried:
a signed payload is sent once and every failure is surfaced, 429 included.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from logging_utils import short_address
from trade_errors import NetworkUnavailable, RequestTimedOut

from .base import AccountBalance, OrderResult, to_decimal
from .signing import NetworkConfig

MAX_PUBLIC_RETRIES = 3


def parse_order_response(result: Any) -> OrderResult:
    """Parse a single-order /exchange response.

    ``status: ok`` alone is not success: each order carries its own status
    and a per-order ``error`` entry means the order was rejected.
    """
    if not isinstance(result, dict):
        return OrderResult(False, error="No response from exchange")

    status = result.get("status", "")
    response = result.get("response", {})

    if status != "ok":
        if isinstance(response, str) and response:
            error = response
        else:
            error = str(result.get("error") or response or result)
        return OrderResult(False, error=error, raw=result)

    data = response.get("data", {}) if isinstance(response, dict) else {}
    statuses = data.get("statuses", []) if isinstance(data, dict) else []
    first = statuses[0] if statuses and isinstance(statuses[0], dict) else {}

    if "error" in first:
        return OrderResult(False, error=str(first["error"]), raw=result)

    if "filled" in first:
        filled = first["filled"] or {}
        return OrderResult(
            True,
            order_id=str(filled.get("oid", "")),
            filled_size=to_decimal(filled.get("totalSz")),
            filled_price=to_decimal(filled.get("avgPx")),
            raw=result,
        )

    if "resting" in first:
        resting = first["resting"] or {}
        return OrderResult(True, order_id=str(resting.get("oid", "")), raw=result)

    return OrderResult(True, raw=result)


class HyperliquidClient:
    """Thin async wrapper over the exchange REST API."""

    def __init__(
        self,
        network: NetworkConfig,
        log: Optional[logging.Logger] = None,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.network = network
        self.log = log or logging.getLogger(__name__)
        self.timeout_seconds = float(timeout_seconds)
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return self.network.api_url.rstrip("/")

    async def initialize(self) -> None:
        if self._session is not None and not self._session.closed:
            return
        connector = aiohttp.TCPConnector(limit=20, keepalive_timeout=30)
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        self._session = aiohttp.ClientSession(
            headers={"Content-Type": "application/json"},
            connector=connector,
            timeout=timeout,
        )
        self._owns_session = True
        self.log.debug(f"HTTP session opened for {self.base_url}")

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "HyperliquidClient":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ============================================================ HTTP helpers
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            await self.initialize()
        return self._session

    async def post_info(self, payload: dict) -> Any:
        """POST to /info with 429 retry."""
        session = await self._ensure_session()
        url = f"{self.base_url}/info"
        req_type = payload.get("type")
        last_error: Optional[Exception] = None

        for attempt in range(MAX_PUBLIC_RETRIES):
            try:
                async with session.post(url, json=payload) as resp:
                    if resp.status == 429:
                        self.log.warning(
                            f"429 rate limit on /info {req_type} (attempt {attempt + 1}/{MAX_PUBLIC_RETRIES})"
                        )
                        last_error = NetworkUnavailable("Rate limited (429)")
                        await asyncio.sleep(0.5 * (attempt + 1))
                        continue
                    if resp.status != 200:
                        text = await resp.text()
                        raise NetworkUnavailable(
                            f"HTTP {resp.status} on /info {req_type}", detail=(text or "")[:200]
                        )
                    return await resp.json(content_type=None)
            except asyncio.TimeoutError as exc:
                raise RequestTimedOut(f"/info {req_type} timed out") from exc
            except aiohttp.ClientError as exc:
                raise NetworkUnavailable(f"/info {req_type} failed: {exc}") from exc

        raise last_error or NetworkUnavailable("Public API request failed after retries")

    async def post_exchange(self, payload: dict) -> dict:
        """POST a signed payload to /exchange exactly once.

        A 429 surfaces as a retryable NetworkUnavailable; the caller re-signs
        with a fresh nonce instead of replaying this payload.
        """
        session = await self._ensure_session()
        url = f"{self.base_url}/exchange"

        try:
            async with session.post(url, json=payload) as resp:
                if resp.status == 429:
                    self.log.warning("429 rate limit on /exchange; not resubmitting signed payload")
                    raise NetworkUnavailable("Exchange rate limited (429)")
                if resp.status >= 500:
                    text = await resp.text()
                    raise NetworkUnavailable(
                        f"HTTP {resp.status} on /exchange", detail=(text or "")[:200]
                    )
                try:
                    return await resp.json(content_type=None)
                except ValueError:
                    # 4xx bodies are plain text rejections
                    text = await resp.text()
                    return {"status": "err", "response": text}
        except asyncio.TimeoutError as exc:
            raise RequestTimedOut("/exchange request timed out") from exc
        except aiohttp.ClientError as exc:
            raise NetworkUnavailable(f"/exchange request failed: {exc}") from exc

    # ============================================================ info queries
    async def meta_and_asset_ctxs(self) -> Any:
        return await self.post_info({"type": "metaAndAssetCtxs"})

    async def clearinghouse_state(self, user: str) -> Dict[str, Any]:
        state = await self.post_info({"type": "clearinghouseState", "user": user})
        return state if isinstance(state, dict) else {}

    async def extra_agents(self, user: str) -> List[Dict[str, Any]]:
        agents = await self.post_info({"type": "extraAgents", "user": user})
        return agents if isinstance(agents, list) else []

    async def user_positions(self, user: str) -> List[Dict[str, Any]]:
        state = await self.clearinghouse_state(user)
        positions = state.get("assetPositions") or []
        return positions if isinstance(positions, list) else []

    async def user_balance(self, user: str) -> AccountBalance:
        state = await self.clearinghouse_state(user)
        withdrawable = to_decimal(state.get("withdrawable"))
        margin = to_decimal((state.get("marginSummary") or {}).get("accountValue"))
        cross = to_decimal((state.get("crossMarginSummary") or {}).get("accountValue"))
        account_value = max(margin, cross)
        available = withdrawable if withdrawable > 0 else account_value
        self.log.debug(
            f"Balance for {short_address(user)}: available={available} account_value={account_value}"
        )
        return AccountBalance(available=available, account_value=account_value)

    # ============================================================ exchange
    async def submit_action(
        self,
        action: Dict[str, Any],
        nonce: int,
        signature: Dict[str, Any],
        vault_address: Optional[str] = None,
    ) -> dict:
        payload = {
            "action": action,
            "nonce": nonce,
            "signature": signature,
            "vaultAddress": vault_address,
        }
        return await self.post_exchange(payload)


__all__ = ["HyperliquidClient", "parse_order_response"]
