#!/usr/bin/env python3

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from exchange.actions import (  # noqa: E402
    ApproveAgent,
    ApproveBuilderFee,
    BuilderFee,
    CloseOrder,
    OpenOrder,
    UpdateLeverage,
)

AGENT = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"
BUILDER = "0x7B4497C1B70DE6546B551BDF8F951DA53B71B97D"


def test_builder_fee_wire_lowercases_address() -> None:
    assert BuilderFee(BUILDER, 20).to_wire() == {"b": BUILDER.lower(), "f": 20}


def test_open_and_close_orders_pin_reduce_only() -> None:
    open_wire = OpenOrder(asset=3, is_buy=True, limit_price="101", size="1.5").to_wire()
    close_wire = CloseOrder(asset=3, is_buy=False, limit_price="99", size="1.5").to_wire()

    assert open_wire == {
        "type": "order",
        "orders": [{"a": 3, "b": True, "p": "101", "s": "1.5", "r": False, "t": {"limit": {"tif": "Ioc"}}}],
        "grouping": "na",
    }
    assert close_wire["orders"][0]["r"] is True
    assert close_wire["orders"][0]["b"] is False


@pytest.mark.parametrize(
    "overrides",
    [
        {"asset": -1},
        {"limit_price": "1e5"},
        {"limit_price": "0.10 "},
        {"size": 0.1},
        {"tif": "Fok"},
        {"is_buy": 1},
    ],
)
def test_order_validation(overrides) -> None:
    fields = dict(asset=0, is_buy=True, limit_price="1", size="1")
    fields.update(overrides)
    with pytest.raises(ValueError):
        OpenOrder(**fields)


def test_update_leverage_wire() -> None:
    assert UpdateLeverage(asset=5, leverage=20).to_wire() == {
        "type": "updateLeverage",
        "asset": 5,
        "isCross": True,
        "leverage": 20,
    }
    with pytest.raises(ValueError):
        UpdateLeverage(asset=5, leverage=0)
    with pytest.raises(ValueError):
        UpdateLeverage(asset=True, leverage=20)
    with pytest.raises(ValueError):
        UpdateLeverage(asset=5, leverage=True)


def test_approve_agent_message_and_wire() -> None:
    action = ApproveAgent(
        hyperliquid_chain="Mainnet",
        signature_chain_id="0xa4b1",
        agent_address=AGENT,
        agent_name="PerpPlay",
        nonce=1700000000000,
    )
    assert action.USER_SIGNED is True
    assert action.PRIMARY_TYPE == "HyperliquidTransaction:ApproveAgent"
    assert [t["name"] for t in action.eip712_types()] == ["hyperliquidChain", "agentAddress", "agentName", "nonce"]
    assert action.message() == {
        "hyperliquidChain": "Mainnet",
        "agentAddress": AGENT,
        "agentName": "PerpPlay",
        "nonce": 1700000000000,
    }
    wire = action.to_wire()
    assert wire["type"] == "approveAgent"
    assert wire["signatureChainId"] == "0xa4b1"
    assert "agentPrivateKey" not in wire


def test_approve_builder_fee_requires_percentage() -> None:
    action = ApproveBuilderFee(
        hyperliquid_chain="Testnet",
        signature_chain_id="0x66eee",
        max_fee_rate="0.1%",
        builder=BUILDER,
        nonce=1,
    )
    assert action.to_wire()["type"] == "approveBuilderFee"
    assert [t["type"] for t in action.eip712_types()] == ["string", "string", "address", "uint64"]
    with pytest.raises(ValueError):
        ApproveBuilderFee("Testnet", "0x66eee", "0.001", BUILDER, 1)
