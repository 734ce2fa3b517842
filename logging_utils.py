#!/usr/bin/env python3
"""Shared logging helpers for PerpPlay.

Every handler installed here carries a redaction filter: agent key material
is 32 bytes of hex and must never reach a log line, even by accident in an
exception message.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from env_utils import env_str

_DEFAULT_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
_DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# 64 hex chars not embedded in a longer hex run (signatures are 130 chars).
_KEY_PATTERN = re.compile(r"(?<![0-9a-fA-F])(0x)?[0-9a-fA-F]{64}(?![0-9a-fA-F])")


def _env_level(default: int) -> int:
    raw = env_str("PERPPLAY_LOG_LEVEL")
    if not raw:
        return default
    val = str(raw).strip().upper()
    if val.isdigit():
        return int(val)
    return getattr(logging, val, default)


def short_address(address: Optional[str]) -> str:
    """Truncate an address for log lines."""
    addr = str(address or "")
    if len(addr) <= 12:
        return addr
    return f"{addr[:10]}..."


class SecretRedactingFilter(logging.Filter):
    """Mask anything shaped like a raw private key."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:
            return True
        redacted = _KEY_PATTERN.sub("<redacted>", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _handler(handler: logging.Handler, level: Optional[int] = None) -> logging.Handler:
    if level is not None:
        handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_DEFAULT_FORMAT, datefmt=_DEFAULT_DATEFMT))
    handler.addFilter(SecretRedactingFilter())
    return handler


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """Get or create a logger with standard formatting."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(_handler(logging.StreamHandler()))
    logger.setLevel(_env_level(logging.INFO) if level is None else level)
    return logger


def setup_logging(
    name: str,
    log_file: Optional[str] = None,
    verbose: bool = False,
    level: Optional[int] = None,
) -> logging.Logger:
    """Setup logging for a component (console + optional file)."""
    logger = logging.getLogger(name)
    logger.handlers = []
    logger.setLevel(_env_level(logging.DEBUG if verbose else logging.INFO) if level is None else level)

    if log_file:
        logger.addHandler(_handler(logging.FileHandler(log_file), logging.DEBUG))

    console_level = logging.DEBUG if verbose else logging.INFO
    logger.addHandler(_handler(logging.StreamHandler(), console_level))
    return logger
