"""Unit tests for the ProtocolEvent tagged union and fee accumulation."""

from __future__ import annotations

import pytest

from sai_tracker.models.chain import FeeBreakdown
from sai_tracker.models.events import EventType, ProtocolEvent, trade_identity


class TestEventType:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("register_trade", EventType.REGISTER_TRADE),
            ("OPEN_TRADE", EventType.OPEN_TRADE),
            ("wasm-user_close_order", EventType.USER_CLOSE_ORDER),
            ("process_closing_fees", EventType.PROCESS_CLOSING_FEES),
            ("something_new", EventType.UNKNOWN),
            (None, EventType.UNKNOWN),
        ],
    )
    def test_from_raw(self, raw, expected):
        assert EventType.from_raw(raw) == expected

    def test_action_fallback_for_unknown_type(self):
        assert EventType.from_raw("something_new", action="close") == EventType.CLOSE_TRADE
        assert EventType.from_raw(None, action="open") == EventType.OPEN_TRADE

    def test_known_type_wins_over_action(self):
        assert EventType.from_raw("unregister_trade", action="open") == EventType.UNREGISTER_TRADE


class TestClassification:
    @pytest.mark.parametrize("name", ["register_trade", "open_trade", "register_trigger_order"])
    def test_open_contributors(self, name):
        event = ProtocolEvent(event_type=EventType(name))
        assert event.is_open
        assert not event.is_close

    @pytest.mark.parametrize(
        "name",
        ["close_trade", "user_close_order", "market_close", "process_closing_fees", "unregister_trade"],
    )
    def test_close_contributors(self, name):
        event = ProtocolEvent(event_type=EventType(name))
        assert event.is_close
        assert not event.is_open

    def test_unknown_is_neither(self):
        event = ProtocolEvent()
        assert not (event.is_open or event.is_close or event.is_fee)


class TestFromRecord:
    def test_scalar_coercion(self):
        event = ProtocolEvent.from_record(
            {
                "type": "open_trade",
                "trade_index": 12,
                "leverage": "5",
                "collateral": "100000000",
                "long": "true",
                "open_price": "101.5",
            },
            tx_hash="0xabc",
        )
        assert event.event_type == EventType.OPEN_TRADE
        assert event.leverage == 5.0
        assert event.collateral == 100_000_000
        assert event.long is True
        assert event.open_price == 101.5
        assert event.identity == "trade-12"

    def test_nested_trade_and_fees(self):
        event = ProtocolEvent.from_record(
            {
                "type": "process_opening_fees",
                "trade": {"trade_index": "3", "long": False},
                "fees": {"opening_fee": {"amount": "2500"}, "trigger_fee": 100},
            }
        )
        assert event.trade_index == "3"
        assert event.long is False
        assert event.opening_fee == 2500
        assert event.trigger_fee == 100

    def test_bad_values_become_none(self):
        event = ProtocolEvent.from_record({"type": "close_trade", "profit_pct": "n/a", "collateral": "abc"})
        assert event.profit_pct is None
        assert event.collateral is None

    def test_identity_falls_back_to_tx_hash(self):
        assert ProtocolEvent.from_record({"type": "close_trade"}, tx_hash="0xdef").identity == "0xdef"

    def test_trade_identity(self):
        assert trade_identity(5) == trade_identity("5") == "trade-5"


class TestFeeBreakdown:
    def test_accumulates(self):
        fees = FeeBreakdown()
        fees.add("opening_fee", 100)
        fees.add("opening_fee", 50)
        assert fees.opening_fee == 150

    def test_none_is_not_zero(self):
        fees = FeeBreakdown()
        fees.add("closing_fee", None)
        assert fees.closing_fee is None
        assert fees.is_empty
