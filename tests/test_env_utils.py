#!/usr/bin/env python3
"""Typed environment accessors."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from env_utils import env_bool, env_float, env_int, env_present, env_str  # noqa: E402


def test_blank_values_count_as_unset(monkeypatch) -> None:
    monkeypatch.setenv("PERPPLAY_TEST_VALUE", "   ")
    assert env_present("PERPPLAY_TEST_VALUE") is False
    assert env_str("PERPPLAY_TEST_VALUE", "fallback") == "fallback"
    assert env_int("PERPPLAY_TEST_VALUE", 7) == 7


def test_values_are_stripped_and_parsed(monkeypatch) -> None:
    monkeypatch.setenv("PERPPLAY_TEST_VALUE", " 12 ")
    assert env_str("PERPPLAY_TEST_VALUE") == "12"
    assert env_int("PERPPLAY_TEST_VALUE", 0) == 12
    assert env_float("PERPPLAY_TEST_VALUE", 0.0) == 12.0


def test_unparseable_values_fall_back(monkeypatch) -> None:
    monkeypatch.setenv("PERPPLAY_TEST_VALUE", "lots")
    assert env_int("PERPPLAY_TEST_VALUE", 3) == 3
    assert env_float("PERPPLAY_TEST_VALUE", 1.5) == 1.5
    assert env_bool("PERPPLAY_TEST_VALUE", True) is True


def test_bool_spellings(monkeypatch) -> None:
    monkeypatch.setenv("PERPPLAY_TEST_VALUE", "Off")
    assert env_bool("PERPPLAY_TEST_VALUE", True) is False
    monkeypatch.setenv("PERPPLAY_TEST_VALUE", "YES")
    assert env_bool("PERPPLAY_TEST_VALUE", False) is True
