#!/usr/bin/env python3
"""Per-asset metadata + live context, refreshed wholesale from metaAndAssetCtxs.

``universe[i]`` and ``assetCtxs[i]`` describe the same asset and ``i`` is the
wire asset id, so the two arrays are only ever consumed together from one
response.  A length mismatch rejects the whole pull.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Tuple

from exchange.base import AssetDescriptor, MarketContext, to_decimal
from exchange.hyperliquid_client import HyperliquidClient
from trade_errors import NetworkUnavailable, SnapshotMisaligned

DEFAULT_MAX_LEVERAGE = 50


@dataclass(frozen=True)
class Candidate:
    asset: AssetDescriptor
    mark_price: Decimal
    open_interest_base: Decimal
    open_interest_usd: Decimal

    @property
    def index(self) -> int:
        return self.asset.index

    @property
    def name(self) -> str:
        return self.asset.name

    @property
    def sz_decimals(self) -> int:
        return self.asset.sz_decimals

    @property
    def max_leverage(self) -> int:
        return self.asset.max_leverage

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "name": self.name,
            "mark_price": str(self.mark_price),
            "open_interest_usd": str(self.open_interest_usd.quantize(Decimal("1"))),
            "max_leverage": self.max_leverage,
            "sz_decimals": self.sz_decimals,
        }


@dataclass(frozen=True)
class Snapshot:
    assets: Tuple[AssetDescriptor, ...]
    contexts: Tuple[MarketContext, ...]
    fetched_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if len(self.assets) != len(self.contexts):
            raise SnapshotMisaligned(
                f"universe has {len(self.assets)} assets but {len(self.contexts)} contexts"
            )

    def candidate(self, index: int) -> Optional[Candidate]:
        if not 0 <= index < len(self.assets):
            return None
        asset = self.assets[index]
        ctx = self.contexts[index]
        return Candidate(asset, ctx.mark_price, ctx.open_interest_base, ctx.open_interest_usd)

    def candidates(self) -> List[Candidate]:
        return [self.candidate(i) for i in range(len(self.assets))]


def _parse_snapshot(payload: Any) -> Snapshot:
    if not isinstance(payload, (list, tuple)) or len(payload) < 2:
        raise NetworkUnavailable("Unexpected metaAndAssetCtxs response shape")
    meta, ctxs = payload[0], payload[1]
    universe = meta.get("universe") if isinstance(meta, dict) else None
    if not isinstance(universe, list) or not isinstance(ctxs, list):
        raise NetworkUnavailable("metaAndAssetCtxs response missing universe or contexts")
    if len(universe) != len(ctxs):
        raise SnapshotMisaligned(f"universe has {len(universe)} assets but {len(ctxs)} contexts")

    assets = []
    contexts = []
    for index, (info, ctx) in enumerate(zip(universe, ctxs)):
        info = info if isinstance(info, dict) else {}
        ctx = ctx if isinstance(ctx, dict) else {}
        assets.append(
            AssetDescriptor(
                index=index,
                name=str(info.get("name") or ""),
                sz_decimals=int(info.get("szDecimals") or 0),
                max_leverage=int(info.get("maxLeverage") or DEFAULT_MAX_LEVERAGE),
            )
        )
        contexts.append(
            MarketContext(
                asset_index=index,
                mark_price=to_decimal(ctx.get("markPx")),
                open_interest_base=to_decimal(ctx.get("openInterest")),
            )
        )
    return Snapshot(tuple(assets), tuple(contexts))


class MarketSnapshot:
    """Holds the current immutable Snapshot; ``refresh`` swaps it atomically."""

    def __init__(self, client: HyperliquidClient, log: Optional[logging.Logger] = None):
        self.client = client
        self.log = log or logging.getLogger(__name__)
        self._current: Optional[Snapshot] = None

    @property
    def current(self) -> Optional[Snapshot]:
        return self._current

    async def refresh(self) -> Tuple[List[AssetDescriptor], List[MarketContext]]:
        payload = await self.client.meta_and_asset_ctxs()
        snapshot = _parse_snapshot(payload)
        self._current = snapshot
        self.log.debug(f"Market snapshot refreshed: {len(snapshot.assets)} assets")
        return list(snapshot.assets), list(snapshot.contexts)

    async def ensure(self) -> Snapshot:
        if self._current is None:
            await self.refresh()
        return self._current

    def ranked_candidates(self, min_open_interest_usd: float, max_count: int) -> List[Candidate]:
        """Liquid assets by open interest (USD), largest first, ties by index."""
        snapshot = self._current
        if snapshot is None or max_count <= 0:
            return []
        threshold = to_decimal(min_open_interest_usd)
        ranked = [
            c for c in snapshot.candidates()
            if c.mark_price > 0 and c.open_interest_usd >= threshold
        ]
        ranked.sort(key=lambda c: (-c.open_interest_usd, c.index))
        return ranked[:max_count]

    def candidate(self, index: int) -> Optional[Candidate]:
        if self._current is None:
            return None
        return self._current.candidate(index)

    def candidate_by_name(self, name: str) -> Optional[Candidate]:
        if self._current is None:
            return None
        target = str(name or "").strip().upper()
        for asset in self._current.assets:
            if asset.name.upper() == target:
                return self._current.candidate(asset.index)
        return None


def pick_random(candidates: Sequence[Candidate], rng: Optional[random.Random] = None) -> Optional[Candidate]:
    if not candidates:
        return None
    return (rng or random).choice(list(candidates))
