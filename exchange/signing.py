#!/usr/bin/env python3
"""EIP-712 signing for the two contexts the exchange accepts.

User-signed actions (agent approval, builder fee approval):
    domain = HyperliquidSignTransaction / "1" / user-signed chain id / zero address
    signed by the owner wallet through a WalletConnector.

L1 actions (orders, leverage):
    domain = Exchange / "1" / 1337 / zero address
    message = Agent{source, connectionId=action_hash}
    signed locally with the agent key ("phantom agent").

The two chain ids differ and are looked up from NetworkConfig, never inlined.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from hyperliquid.utils.constants import MAINNET_API_URL, TESTNET_API_URL

from trade_errors import SigningUnavailable, TradingError

from .action_codec import action_hash
from .actions import UserSignedAction

L1_CHAIN_ID = 1337
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

USER_SIGNED_DOMAIN_NAME = "HyperliquidSignTransaction"
L1_DOMAIN_NAME = "Exchange"
DOMAIN_VERSION = "1"

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

AGENT_TYPE = [
    {"name": "source", "type": "string"},
    {"name": "connectionId", "type": "bytes32"},
]


@dataclass(frozen=True)
class NetworkConfig:
    name: str
    api_url: str
    chain_label: str
    user_signed_chain_id: int
    source: str

    @property
    def is_mainnet(self) -> bool:
        return self.name == "mainnet"

    @property
    def signature_chain_id_hex(self) -> str:
        return hex(self.user_signed_chain_id)


MAINNET = NetworkConfig(
    name="mainnet",
    api_url=MAINNET_API_URL,
    chain_label="Mainnet",
    user_signed_chain_id=42161,
    source="a",
)

TESTNET = NetworkConfig(
    name="testnet",
    api_url=TESTNET_API_URL,
    chain_label="Testnet",
    user_signed_chain_id=421614,
    source="b",
)

_NETWORKS = {"mainnet": MAINNET, "testnet": TESTNET}


def network_config(name: str) -> NetworkConfig:
    key = str(name or "").strip().lower()
    if key not in _NETWORKS:
        raise ValueError(f"Unknown network {name!r} (expected one of {sorted(_NETWORKS)})")
    return _NETWORKS[key]


def split_signature(signature: Any) -> Dict[str, Any]:
    """Split a 65-byte signature into the {r, s, v} transport form."""
    raw = signature.hex() if isinstance(signature, (bytes, bytearray)) else str(signature or "")
    raw = raw[2:] if raw.startswith(("0x", "0X")) else raw
    if len(raw) != 130:
        raise SigningUnavailable("Wallet returned a malformed signature", detail=f"len={len(raw)}")
    try:
        v = int(raw[128:130], 16)
        int(raw[:128], 16)
    except ValueError as exc:
        raise SigningUnavailable("Wallet returned a malformed signature") from exc
    if v < 27:
        v += 27
    return {"r": "0x" + raw[:64], "s": "0x" + raw[64:128], "v": v}


def _hex32(value: int) -> str:
    return "0x" + format(value, "064x")


# ============================================================ user-signed


def user_signed_typed_data(action: UserSignedAction, network: NetworkConfig) -> Dict[str, Any]:
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPE,
            action.PRIMARY_TYPE: action.eip712_types(),
        },
        "primaryType": action.PRIMARY_TYPE,
        "domain": {
            "name": USER_SIGNED_DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": network.user_signed_chain_id,
            "verifyingContract": ZERO_ADDRESS,
        },
        "message": action.message(),
    }


async def sign_user_action(
    wallet: Any,
    address: str,
    action: UserSignedAction,
    network: NetworkConfig,
    log: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """Ask the owner wallet to sign ``action``.

    A user rejection surfaces as SigningDeclined; any other connector failure
    becomes SigningUnavailable so callers can tell the two apart.  A signature
    that does not recover to ``address`` is never returned.
    """
    log = log or logging.getLogger(__name__)
    typed = user_signed_typed_data(action, network)
    try:
        signature = await wallet.sign_typed_data(address, json.dumps(typed))
    except TradingError:
        raise
    except Exception as exc:
        log.warning(f"Typed-data signing failed for {action.PRIMARY_TYPE}: {exc}")
        raise SigningUnavailable("Signing backend unavailable", detail=str(exc)) from exc

    sig = split_signature(signature)
    try:
        signer = recover_typed_data_signer(typed, sig)
    except Exception as exc:
        raise SigningUnavailable("Wallet returned an unusable signature", detail=str(exc)) from exc
    if signer.lower() != str(address).lower():
        log.warning(f"{action.PRIMARY_TYPE} signed by {signer}, expected {address}")
        raise SigningUnavailable("Wallet signed with a different account", detail=signer)
    return sig


# ============================================================ phantom agent


def phantom_agent(connection_id: bytes, network: NetworkConfig) -> Dict[str, Any]:
    return {"source": network.source, "connectionId": connection_id}


def phantom_agent_typed_data(connection_id: bytes, network: NetworkConfig) -> Dict[str, Any]:
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPE,
            "Agent": AGENT_TYPE,
        },
        "primaryType": "Agent",
        "domain": {
            "name": L1_DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": L1_CHAIN_ID,
            "verifyingContract": ZERO_ADDRESS,
        },
        "message": phantom_agent(connection_id, network),
    }


class AgentSigner:
    """Holds the agent key and signs L1 actions with it.

    The key never leaves this object; repr and logs only show the address.
    """

    def __init__(self, account: LocalAccount):
        self._account = account

    @classmethod
    def from_key(cls, private_key: str) -> "AgentSigner":
        return cls(Account.from_key(private_key))

    @property
    def address(self) -> str:
        return self._account.address

    def __repr__(self) -> str:
        return f"AgentSigner(address={self.address})"

    def sign_l1_action(
        self,
        action: Any,
        nonce: int,
        network: NetworkConfig,
        vault_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        digest = action_hash(action, nonce, vault_address)
        typed = phantom_agent_typed_data(digest, network)
        try:
            signed = self._account.sign_message(encode_typed_data(full_message=typed))
        except Exception as exc:
            raise SigningUnavailable("Agent signing failed", detail=str(exc)) from exc
        return {"r": _hex32(signed.r), "s": _hex32(signed.s), "v": signed.v}


def recover_typed_data_signer(typed: Dict[str, Any], signature: Dict[str, Any]) -> str:
    """Recover the address that produced ``signature`` over ``typed``."""
    r = int(str(signature["r"]), 16)
    s = int(str(signature["s"]), 16)
    v = int(signature["v"])
    return Account.recover_message(encode_typed_data(full_message=typed), vrs=(v, r, s))


__all__ = [
    "AgentSigner",
    "L1_CHAIN_ID",
    "MAINNET",
    "NetworkConfig",
    "TESTNET",
    "ZERO_ADDRESS",
    "network_config",
    "phantom_agent_typed_data",
    "recover_typed_data_signer",
    "sign_user_action",
    "split_signature",
    "user_signed_typed_data",
]
