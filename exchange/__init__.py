"""Exchange wire layer: actions, encoding, signing and HTTP transport."""

from .action_codec import action_hash, encode
from .actions import (
    ApproveAgent,
    ApproveBuilderFee,
    BuilderFee,
    CloseOrder,
    OpenOrder,
    UpdateLeverage,
)
from .base import (
    AccountBalance,
    AssetDescriptor,
    MarketContext,
    OrderResult,
    Position,
    Side,
)
from .hyperliquid_client import HyperliquidClient, parse_order_response
from .nonce import NonceGenerator
from .signing import AgentSigner, NetworkConfig, network_config

__all__ = [
    "AccountBalance",
    "AgentSigner",
    "ApproveAgent",
    "ApproveBuilderFee",
    "AssetDescriptor",
    "BuilderFee",
    "CloseOrder",
    "HyperliquidClient",
    "MarketContext",
    "NetworkConfig",
    "NonceGenerator",
    "OpenOrder",
    "OrderResult",
    "Position",
    "Side",
    "UpdateLeverage",
    "action_hash",
    "encode",
    "network_config",
    "parse_order_response",
]
