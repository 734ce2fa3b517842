"""Read PerpPlay settings from the process environment.

A ``.env`` beside the package is loaded on import, so the wallet key and
deployment paths can live outside the shell profile.  Blank values count
as unset everywhere.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Optional, TypeVar

from dotenv import load_dotenv

T = TypeVar("T")

_PACKAGE_DIR = Path(__file__).resolve().parent

load_dotenv(_PACKAGE_DIR / ".env")

_TRUTHY = frozenset({"1", "true", "yes", "y", "on"})
_FALSY = frozenset({"0", "false", "no", "n", "off"})


def _raw(name: str) -> Optional[str]:
    value = os.environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parsed(name: str, default: T, parse: Callable[[str], T]) -> T:
    value = _raw(name)
    if value is None:
        return default
    try:
        return parse(value)
    except ValueError:
        return default


def _to_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(value)


def env_present(name: str) -> bool:
    return _raw(name) is not None


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = _raw(name)
    return default if value is None else value


def env_int(name: str, default: int) -> int:
    return _parsed(name, default, int)


def env_float(name: str, default: float) -> float:
    return _parsed(name, default, float)


def env_bool(name: str, default: bool) -> bool:
    """Unrecognised spellings fall back to ``default``."""
    return _parsed(name, default, _to_bool)


# SessionStore creates the runtime dir on first write.
PERPPLAY_RUNTIME_DIR = env_str("PERPPLAY_RUNTIME_DIR", str(_PACKAGE_DIR / "state"))
PERPPLAY_CONFIG_FILE = env_str("PERPPLAY_CONFIG_FILE", str(_PACKAGE_DIR / "perpplay.yaml"))
