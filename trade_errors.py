#!/usr/bin/env python3
"""Error taxonomy for wallet, signing, market and order failures.

Exceptions are raised inside a component and converted to result objects at
the public boundary (SessionResult, OpenResult, CloseResult...).  UI-facing
callers look at ``silent`` to decide whether to alert and at ``retryable`` to
decide whether a fresh attempt (new nonce, new signature) makes sense.

``EncodingInvariantViolation`` is the one exception that is never converted:
it means an unsupported value reached the action encoder, which is a bug.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    WALLET_UNAVAILABLE = "wallet_unavailable"
    USER_REJECTED_SIGNATURE = "user_rejected_signature"
    SIGNING_UNAVAILABLE = "signing_unavailable"
    AGENT_APPROVAL_FAILED = "agent_approval_failed"
    FEE_APPROVAL_FAILED = "fee_approval_failed"
    AGENT_UNAUTHORIZED = "agent_unauthorized"
    INSUFFICIENT_COLLATERAL = "insufficient_collateral"
    ORDER_REJECTED = "order_rejected"
    NETWORK_UNAVAILABLE = "network_unavailable"
    REQUEST_TIMED_OUT = "request_timed_out"
    TRADE_IN_FLIGHT = "trade_in_flight"
    NO_CANDIDATES = "no_candidates"
    NOT_CONNECTED = "not_connected"
    SNAPSHOT_MISALIGNED = "snapshot_misaligned"


class TradingError(Exception):
    """Base class for every recoverable trading failure."""

    kind: ErrorKind = ErrorKind.ORDER_REJECTED
    retryable: bool = False
    silent: bool = False

    def __init__(self, message: str = "", *, detail: Optional[str] = None):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value
        self.detail = detail

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "silent": self.silent,
        }


class WalletUnavailable(TradingError):
    kind = ErrorKind.WALLET_UNAVAILABLE


class SigningDeclined(TradingError):
    """The wallet owner rejected the signature request. Never alert on it."""

    kind = ErrorKind.USER_REJECTED_SIGNATURE
    silent = True


UserRejectedSignature = SigningDeclined


class SigningUnavailable(TradingError):
    kind = ErrorKind.SIGNING_UNAVAILABLE
    retryable = True


class AgentApprovalFailed(TradingError):
    kind = ErrorKind.AGENT_APPROVAL_FAILED


class FeeApprovalFailed(TradingError):
    kind = ErrorKind.FEE_APPROVAL_FAILED


class AgentUnauthorized(TradingError):
    kind = ErrorKind.AGENT_UNAUTHORIZED

    RECONNECT_HINT = "Agent not authorized. Please disconnect and reconnect your wallet."

    def __init__(self, message: str = "", *, detail: Optional[str] = None):
        super().__init__(message or self.RECONNECT_HINT, detail=detail)


class InsufficientCollateral(TradingError):
    kind = ErrorKind.INSUFFICIENT_COLLATERAL


class OrderRejected(TradingError):
    """Business rejection from the exchange; ``message`` is its text verbatim."""

    kind = ErrorKind.ORDER_REJECTED


class NetworkUnavailable(TradingError):
    kind = ErrorKind.NETWORK_UNAVAILABLE
    retryable = True


class RequestTimedOut(TradingError):
    kind = ErrorKind.REQUEST_TIMED_OUT
    retryable = True


class TradeInFlight(TradingError):
    kind = ErrorKind.TRADE_IN_FLIGHT


class NoCandidates(TradingError):
    kind = ErrorKind.NO_CANDIDATES


class NotConnected(TradingError):
    kind = ErrorKind.NOT_CONNECTED


class SnapshotMisaligned(TradingError):
    """Universe and asset-context arrays differ in length."""

    kind = ErrorKind.SNAPSHOT_MISALIGNED
    retryable = True


class EncodingInvariantViolation(TypeError):
    """An unsupported value type reached the action encoder."""


_AUTH_MARKERS = ("agent", "unauthorized")


def is_agent_auth_error(text: Optional[str]) -> bool:
    """Return True when exchange error text points at the agent signer."""
    low = str(text or "").lower()
    if not low:
        return False
    if ("api wallet" in low and "does not exist" in low) or ("user or api wallet" in low):
        return True
    return any(marker in low for marker in _AUTH_MARKERS)
