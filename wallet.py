#!/usr/bin/env python3
"""Wallet connectors: the user's primary key lives behind this interface.

A connector exposes accounts and EIP-712 signing.  Browser or hardware
wallets implement the same three coroutines; the CLI uses a local key.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import List, Optional, Union

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount

from trade_errors import SigningDeclined, WalletUnavailable


class WalletConnector(ABC):
    """Owner wallet as seen by CredentialManager."""

    @abstractmethod
    async def request_accounts(self) -> List[str]:
        """Prompt for access; raise SigningDeclined if the user refuses."""

    @abstractmethod
    async def accounts(self) -> List[str]:
        """Currently unlocked accounts, without prompting (empty when locked)."""

    @abstractmethod
    async def sign_typed_data(self, address: str, payload_json: str) -> str:
        """Sign a JSON-serialized {types, primaryType, domain, message}; return 0x hex."""


class LocalWalletConnector(WalletConnector):
    """Signs with a private key held in-process."""

    def __init__(self, key: Union[str, LocalAccount, None], *, locked: bool = False):
        if key is None:
            self._account: Optional[LocalAccount] = None
        elif isinstance(key, str):
            self._account = Account.from_key(key)
        else:
            self._account = key
        self.locked = locked

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account else None

    def __repr__(self) -> str:
        return f"LocalWalletConnector(address={self.address}, locked={self.locked})"

    async def request_accounts(self) -> List[str]:
        if self._account is None:
            raise WalletUnavailable("No wallet key configured")
        self.locked = False
        return [self._account.address]

    async def accounts(self) -> List[str]:
        if self._account is None or self.locked:
            return []
        return [self._account.address]

    async def sign_typed_data(self, address: str, payload_json: str) -> str:
        if self._account is None:
            raise WalletUnavailable("No wallet key configured")
        if self.locked:
            raise SigningDeclined("Wallet is locked")
        if str(address).lower() != self._account.address.lower():
            raise SigningDeclined(f"Wallet cannot sign for {address}")
        typed = json.loads(payload_json)
        signed = self._account.sign_message(encode_typed_data(full_message=typed))
        return "0x" + bytes(signed.signature).hex()
