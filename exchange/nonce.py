#!/usr/bin/env python3
"""Millisecond nonces that never repeat within a process."""

from __future__ import annotations

from typing import Callable, Optional

from hyperliquid.utils.signing import get_timestamp_ms


class NonceGenerator:
    """Wall-clock ms, bumped by one whenever the clock stalls or steps back."""

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or get_timestamp_ms
        self._last = 0

    @property
    def last(self) -> int:
        return self._last

    def next(self) -> int:
        now = int(self._clock())
        nonce = now if now > self._last else self._last + 1
        self._last = nonce
        return nonce

    __call__ = next
