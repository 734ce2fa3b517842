#!/usr/bin/env python3
"""Agent-key session lifecycle.

    DISCONNECTED -> WALLET_AUTHORIZED -> AGENT_PENDING_APPROVAL -> AGENT_APPROVED
        -> FEE_APPROVED | FEE_APPROVAL_FAILED -> SESSION_ACTIVE

A fresh agent key is generated locally for every connect.  Only its address
goes to the exchange, inside an ApproveAgent message signed by the owner
wallet.  Builder-fee approval is best-effort: on failure trading continues at
default fee terms.

Any failure before AGENT_APPROVED returns the manager to DISCONNECTED.
The agent private key lives in ``Session`` and in the SessionStore record;
nothing else in the process copies it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from eth_account import Account

from config_env import TradingConfig
from exchange.actions import ApproveAgent, ApproveBuilderFee
from exchange.hyperliquid_client import HyperliquidClient
from exchange.nonce import NonceGenerator
from exchange.signing import AgentSigner, sign_user_action
from logging_utils import short_address
from session_store import SessionStore, StoredSession
from trade_errors import (
    AgentApprovalFailed,
    FeeApprovalFailed,
    NotConnected,
    SigningDeclined,
    TradingError,
    WalletUnavailable,
)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    WALLET_AUTHORIZED = "wallet_authorized"
    AGENT_PENDING_APPROVAL = "agent_pending_approval"
    AGENT_APPROVED = "agent_approved"
    FEE_APPROVED = "fee_approved"
    FEE_APPROVAL_FAILED = "fee_approval_failed"
    SESSION_ACTIVE = "session_active"


@dataclass
class Session:
    user_address: str
    agent_address: str
    agent_private_key: str = field(repr=False)
    authorized: bool = False
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))
    fee_approved: Optional[bool] = None
    restored: bool = False
    _signer: Optional[AgentSigner] = field(default=None, init=False, repr=False, compare=False)

    @property
    def signer(self) -> AgentSigner:
        if self._signer is None:
            self._signer = AgentSigner.from_key(self.agent_private_key)
        return self._signer

    def to_dict(self) -> Dict[str, Any]:
        """Public view of the session (no key material)."""
        return {
            "user_address": self.user_address,
            "agent_address": self.agent_address,
            "authorized": self.authorized,
            "created_at": self.created_at,
            "fee_approved": self.fee_approved,
            "restored": self.restored,
        }


@dataclass
class SessionResult:
    success: bool
    session: Optional[Session] = None
    error: Optional[TradingError] = None
    fee_approved: bool = False


@dataclass
class RestoreResult:
    NO_STORED_DATA = "no_stored_data"
    NO_WALLET = "no_wallet"
    WALLET_LOCKED = "wallet_locked"
    WALLET_MISMATCH = "wallet_mismatch"
    AGENT_EXPIRED = "agent_expired"
    ERROR = "error"
    RESTORED = "restored"

    success: bool
    reason: str
    session: Optional[Session] = None
    error: Optional[str] = None


class CredentialManager:
    def __init__(
        self,
        client: HyperliquidClient,
        store: SessionStore,
        config: TradingConfig,
        nonces: Optional[NonceGenerator] = None,
        log: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.store = store
        self.config = config
        self.network = config.network_config
        self.nonces = nonces or NonceGenerator()
        self.log = log or logging.getLogger(__name__)
        self._sleep = sleep
        self._session: Optional[Session] = None
        self.state = SessionState.DISCONNECTED

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def connected(self) -> bool:
        return self._session is not None and self.state is SessionState.SESSION_ACTIVE

    def require_session(self) -> Session:
        if not self.connected:
            raise NotConnected("Wallet not connected")
        return self._session

    def status(self) -> Dict[str, Any]:
        session = self._session
        return {
            "state": self.state.value,
            "connected": self.connected,
            "wallet_address": session.user_address if session else None,
            "agent_address": session.agent_address if session else None,
        }

    # ============================================================ connect
    async def establish_session(self, wallet: Any) -> SessionResult:
        """Connect ``wallet`` and authorize a brand-new agent key for it."""
        self.teardown()
        try:
            user = await self._request_user(wallet)
            self.state = SessionState.WALLET_AUTHORIZED
            self.log.info(f"Wallet authorized: {short_address(user)}")

            agent = Account.create()
            agent_key = "0x" + bytes(agent.key).hex()
            self.state = SessionState.AGENT_PENDING_APPROVAL
            await self._approve_agent(wallet, user, agent.address)
            self.state = SessionState.AGENT_APPROVED
            self.log.info(f"Agent approved: {short_address(agent.address)}")

            await self._confirm_agent_registered(user, agent.address)

            fee_approved = await self._approve_builder_fee(wallet, user)
            self.state = SessionState.FEE_APPROVED if fee_approved else SessionState.FEE_APPROVAL_FAILED

            session = Session(
                user_address=user,
                agent_address=agent.address,
                agent_private_key=agent_key,
                authorized=True,
                fee_approved=fee_approved,
            )
            self.persist(session)
            self._session = session
            self.state = SessionState.SESSION_ACTIVE
            return SessionResult(True, session=session, fee_approved=fee_approved)
        except TradingError as e:
            self._session = None
            self.state = SessionState.DISCONNECTED
            if not e.silent:
                self.log.error(f"Session setup failed ({e.kind.value}): {e.message}")
            else:
                self.log.info("Signature request declined by user")
            return SessionResult(False, error=e)

    async def _request_user(self, wallet: Any) -> str:
        try:
            accounts = await wallet.request_accounts()
        except TradingError:
            raise
        except Exception as e:
            raise WalletUnavailable("Wallet not reachable", detail=str(e)) from e
        if not accounts:
            raise WalletUnavailable("Wallet returned no accounts")
        return accounts[0]

    async def _approve_agent(self, wallet: Any, user: str, agent_address: str) -> None:
        action = ApproveAgent(
            hyperliquid_chain=self.network.chain_label,
            signature_chain_id=self.network.signature_chain_id_hex,
            agent_address=agent_address,
            agent_name=self.config.agent_name,
            nonce=self.nonces.next(),
        )
        signature = await sign_user_action(wallet, user, action, self.network, self.log)
        result = await self.client.submit_action(action.to_wire(), action.nonce, signature)
        if not isinstance(result, dict) or result.get("status") != "ok":
            detail = result.get("response") if isinstance(result, dict) else result
            raise AgentApprovalFailed(f"Agent approval rejected: {detail}", detail=str(detail))

    async def _confirm_agent_registered(self, user: str, agent_address: str) -> None:
        """Wait for propagation and check extraAgents; a miss is only logged."""
        if self.config.agent_propagation_delay_seconds > 0:
            await self._sleep(self.config.agent_propagation_delay_seconds)
        try:
            verified = await self.verify_agent(user, agent_address)
        except TradingError as e:
            self.log.warning(f"Could not verify agent registration: {e.message}")
            return
        if not verified:
            self.log.warning(
                f"Agent {short_address(agent_address)} not yet listed for {short_address(user)}; continuing"
            )

    async def _approve_builder_fee(self, wallet: Any, user: str) -> bool:
        if not self.config.builder_address:
            return False
        action = ApproveBuilderFee(
            hyperliquid_chain=self.network.chain_label,
            signature_chain_id=self.network.signature_chain_id_hex,
            max_fee_rate=self.config.builder_max_fee_rate,
            builder=self.config.builder_address,
            nonce=self.nonces.next(),
        )
        try:
            signature = await sign_user_action(wallet, user, action, self.network, self.log)
            result = await self.client.submit_action(action.to_wire(), action.nonce, signature)
            if not isinstance(result, dict) or result.get("status") != "ok":
                detail = result.get("response") if isinstance(result, dict) else result
                raise FeeApprovalFailed(f"Builder fee approval rejected: {detail}")
        except SigningDeclined:
            self.log.info("Builder fee approval declined; trading at default fee terms")
            return False
        except TradingError as e:
            self.log.warning(f"Builder fee approval failed (non-fatal): {e.message}")
            return False
        self.log.info(f"Builder fee approved (max {self.config.builder_max_fee_rate})")
        return True

    # ============================================================ verification
    async def verify_agent(self, user: str, agent_address: str) -> bool:
        """True when the exchange lists ``agent_address`` under our agent name."""
        agents = await self.client.extra_agents(user)
        target = agent_address.lower()
        for entry in agents:
            if not isinstance(entry, dict):
                continue
            address = str(entry.get("address") or entry.get("agentAddress") or "").lower()
            name = entry.get("name", entry.get("agentName"))
            if address == target and name == self.config.agent_name:
                return True
        return False

    # ============================================================ persistence
    def persist(self, session: Session) -> None:
        self.store.save(
            StoredSession(
                wallet_address=session.user_address,
                agent_private_key=session.agent_private_key,
                timestamp=session.created_at,
                fee_approved=session.fee_approved,
            )
        )

    async def restore(self, wallet: Any) -> RestoreResult:
        """Reconnect from the stored record if wallet and agent still line up."""
        record = self.store.load()
        if record is None:
            return RestoreResult(False, RestoreResult.NO_STORED_DATA)

        try:
            accounts: List[str] = await wallet.accounts()
        except WalletUnavailable:
            return RestoreResult(False, RestoreResult.NO_WALLET)
        except Exception as e:
            self.log.warning(f"Reconnect failed reading wallet accounts: {e}")
            return RestoreResult(False, RestoreResult.ERROR, error=str(e))

        if not accounts:
            return RestoreResult(False, RestoreResult.WALLET_LOCKED)

        current = accounts[0]
        if current.lower() != record.wallet_address.lower():
            self.log.info(
                f"Stored session belongs to {short_address(record.wallet_address)}, "
                f"wallet is {short_address(current)}; clearing"
            )
            self.teardown()
            return RestoreResult(False, RestoreResult.WALLET_MISMATCH)

        try:
            signer = AgentSigner.from_key(record.agent_private_key)
        except Exception:
            self.log.warning("Stored agent key unusable; clearing")
            self.teardown()
            return RestoreResult(False, RestoreResult.NO_STORED_DATA)

        try:
            verified = await self.verify_agent(record.wallet_address, signer.address)
        except TradingError as e:
            self.log.warning(f"Reconnect could not verify agent: {e.message}")
            return RestoreResult(False, RestoreResult.ERROR, error=e.message)

        if not verified:
            self.log.info(f"Agent {short_address(signer.address)} no longer approved; clearing")
            self.teardown()
            return RestoreResult(False, RestoreResult.AGENT_EXPIRED)

        session = Session(
            user_address=record.wallet_address,
            agent_address=signer.address,
            agent_private_key=record.agent_private_key,
            authorized=True,
            created_at=record.timestamp,
            restored=True,
            fee_approved=record.fee_approved,
        )
        self._session = session
        self.state = SessionState.SESSION_ACTIVE
        self.log.info(f"Session restored for {short_address(session.user_address)}")
        return RestoreResult(True, RestoreResult.RESTORED, session=session)

    # ============================================================ teardown
    def teardown(self) -> None:
        """Drop the in-memory session and the stored record. Idempotent."""
        had_session = self._session is not None
        self._session = None
        self.state = SessionState.DISCONNECTED
        try:
            self.store.clear()
        except OSError as e:
            self.log.error(f"Failed to clear stored session: {e}")
        if had_session:
            self.log.info("Session torn down")

    def on_accounts_changed(self, accounts: List[str]) -> bool:
        """Tear down when the wallet switches away from the session owner."""
        if self._session is None:
            return False
        current = accounts[0].lower() if accounts else ""
        if current == self._session.user_address.lower():
            return False
        self.log.info("Wallet account changed; disconnecting")
        self.teardown()
        return True
