#!/usr/bin/env python3
"""Durable storage for the one session record.

The record is ``{walletAddress, agentPrivateKey, timestamp}`` stored as JSON
under ``<runtime_dir>/<namespace>.json`` and written/read/cleared as a unit.
Writes take an exclusive fcntl lock, go to a temp file, fsync, then rename.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from logging_utils import short_address

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


@dataclass
class StoredSession:
    wallet_address: str
    agent_private_key: str = field(repr=False)
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))
    fee_approved: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "walletAddress": self.wallet_address,
            "agentPrivateKey": self.agent_private_key,
            "timestamp": self.timestamp,
        }
        if self.fee_approved is not None:
            out["feeApproved"] = self.fee_approved
        return out

    @classmethod
    def from_dict(cls, data: Any) -> Optional["StoredSession"]:
        """Parse a stored record; anything malformed reads as absent."""
        if not isinstance(data, dict):
            return None
        wallet = data.get("walletAddress")
        key = data.get("agentPrivateKey")
        if not isinstance(wallet, str) or not _ADDRESS_RE.match(wallet):
            return None
        if not isinstance(key, str) or not _KEY_RE.match(key):
            return None
        try:
            ts = int(data.get("timestamp") or 0)
        except (TypeError, ValueError):
            ts = 0
        fee_approved = data.get("feeApproved")
        if not isinstance(fee_approved, bool):
            fee_approved = None
        return cls(wallet_address=wallet, agent_private_key=key, timestamp=ts, fee_approved=fee_approved)


class SessionStore:
    def __init__(
        self,
        runtime_dir: str,
        namespace: str = "perpplay_wallet_data",
        log: Optional[logging.Logger] = None,
    ):
        self.log = log or logging.getLogger(__name__)
        self.runtime_dir = Path(runtime_dir)
        self.namespace = namespace
        self.path = self.runtime_dir / f"{namespace}.json"
        self.lock_path = self.runtime_dir / f"{namespace}.lock"

    @contextmanager
    def _with_lock(self, *, shared: bool = False):
        """Acquire a process-shared file lock for the record."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a+") as lock_f:
            mode = fcntl.LOCK_SH if shared else fcntl.LOCK_EX
            fcntl.flock(lock_f.fileno(), mode)
            try:
                yield
            finally:
                fcntl.flock(lock_f.fileno(), fcntl.LOCK_UN)

    def save(self, record: StoredSession) -> None:
        with self._with_lock(shared=False):
            temp_path = self.path.with_suffix(".tmp")
            fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(record.to_dict(), f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        self.log.debug(f"Session stored for {short_address(record.wallet_address)}")

    def load(self) -> Optional[StoredSession]:
        if not self.path.exists():
            return None
        with self._with_lock(shared=True):
            try:
                with open(self.path, "r") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                self.log.warning(f"Stored session unreadable, treating as absent: {e}")
                return None
        record = StoredSession.from_dict(data)
        if record is None:
            self.log.warning("Stored session malformed, treating as absent")
        return record

    def clear(self) -> None:
        with self._with_lock(shared=False):
            for path in (self.path, self.path.with_suffix(".tmp")):
                try:
                    path.unlink()
                except FileNotFoundError:
                    pass
