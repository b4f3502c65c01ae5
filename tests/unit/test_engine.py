"""Unit tests for the reconciliation engine."""

from __future__ import annotations

from datetime import timedelta

import pytest

from sai_tracker.chain.decoder import decode_log
from sai_tracker.models.chain import FeeBreakdown, TxCandidate
from sai_tracker.models.keeper import KeeperTrade, KeeperTrades
from sai_tracker.models.trade import Direction, LifecycleState, PnlSource
from sai_tracker.reconcile.engine import group_events, reconcile
from tests.conftest import T0, candidate, history_item, keeper_trade, make_log


def _by_id(trades):
    return {t.identity: t for t in trades}


class TestLogScanScenario:
    def test_open_then_user_close(self, prices):
        cands = [
            candidate(
                "0xopen",
                [{"type": "open_trade", "trade_index": 1, "leverage": "5", "collateral": "100000000", "long": "true"}],
                ts=T0,
            ),
            candidate(
                "0xclose",
                [{"type": "user_close_order", "trade_index": 1, "profit_pct": "0.12"}],
                ts=T0 + timedelta(hours=2),
            ),
        ]
        trades = reconcile(None, cands, {}, prices)

        assert len(trades) == 1
        trade = trades[0]
        assert trade.direction == Direction.LONG
        assert trade.leverage == 5
        assert trade.collateral_usd == pytest.approx(100.0)
        assert trade.profit_pct == pytest.approx(0.12)
        assert trade.pnl_source == PnlSource.USER_CLOSE_ORDER
        assert trade.lifecycle_state == LifecycleState.CLOSED
        assert trade.opened_at == T0
        assert trade.closed_at == T0 + timedelta(hours=2)

    def test_events_without_index_share_tx_identity(self, prices):
        cand = candidate(
            "0xtx",
            [
                {"type": "register_trade", "trade_index": 9, "long": "false"},
                {"type": "process_opening_fees", "opening_fee": "300000"},
            ],
        )
        assert list(group_events(cand)) == ["trade-9"]
        trade = reconcile(None, [cand], {}, prices)[0]
        assert trade.direction == Direction.SHORT
        assert trade.opening_fee_usd == pytest.approx(0.3)
        assert trade.lifecycle_state == LifecycleState.OPEN

    def test_no_index_falls_back_to_tx_hash(self, prices):
        trade = reconcile(None, [candidate("0xlone", [{"type": "open_trade", "long": "true"}])], {}, prices)[0]
        assert trade.identity == "0xlone"

    def test_unknown_and_fee_only_events_create_nothing(self, prices):
        cands = [
            candidate("0xa", [{"type": "mystery"}]),
            candidate("0xb", [{"type": "process_opening_fees", "trade_index": 3, "opening_fee": "1"}]),
        ]
        assert reconcile(None, cands, {}, prices) == []

    def test_estimate_only_without_reported_pnl(self, prices):
        cands = [
            candidate("0xo", [{"type": "open_trade", "trade_index": 2, "collateral": "100000000", "long": "true"}]),
            candidate(
                "0xc",
                [{"type": "close_trade", "trade_index": 2, "amount_received": "90000000"}],
                ts=T0 + timedelta(hours=1),
            ),
        ]
        trade = reconcile(None, cands, {}, prices)[0]
        assert trade.profit_pct == pytest.approx(-0.1)
        assert trade.pnl_source == PnlSource.ESTIMATE
        assert trade.pnl_amount_usd == pytest.approx(-10.0)
        assert trade.amount_received_usd == pytest.approx(90.0)

    def test_user_close_beats_estimate(self, prices):
        cands = [
            candidate("0xo", [{"type": "open_trade", "trade_index": 2, "collateral": "100000000"}]),
            candidate(
                "0xc",
                [
                    {"type": "user_close_order", "trade_index": 2, "profit_pct": "0.05"},
                    {"type": "close_trade", "trade_index": 2, "amount_received": "90000000"},
                ],
                ts=T0 + timedelta(hours=1),
            ),
        ]
        trade = reconcile(None, cands, {}, prices)[0]
        assert trade.profit_pct == pytest.approx(0.05)
        assert trade.pnl_source == PnlSource.USER_CLOSE_ORDER

    def test_direction_is_immutable(self, prices):
        cands = [
            candidate("0xo", [{"type": "open_trade", "trade_index": 4, "long": "true"}]),
            candidate("0xc", [{"type": "close_trade", "trade_index": 4, "long": "false"}], ts=T0 + timedelta(hours=1)),
        ]
        assert reconcile(None, cands, {}, prices)[0].direction == Direction.LONG


class TestKeeperMerge:
    def test_open_point_in_time_stays_open(self, prices):
        trades = reconcile(KeeperTrades(trades=[keeper_trade(1, is_open=True)]), [], {}, prices)
        trade = trades[0]
        assert trade.lifecycle_state == LifecycleState.OPEN
        assert trade.profit_pct is None
        assert trade.unrealized_pnl_pct == pytest.approx(0.12)
        assert trade.unrealized_pnl_usd == pytest.approx(11.0)
        assert trade.pair == "BTC"
        assert trade.stop_loss == 90_000.0

    def test_change_log_overrides_point_in_time_pnl(self, prices):
        keeper = KeeperTrades(
            trades=[keeper_trade(1, is_open=False)],
            history=[history_item(10, 1, realized_pct=-0.3, realized_collateral=-30_000_000)],
        )
        trade = reconcile(keeper, [], {}, prices)[0]
        assert trade.profit_pct == pytest.approx(-0.3)
        assert trade.pnl_amount_usd == pytest.approx(-30.0)
        assert trade.pnl_source == PnlSource.TRADE_HISTORY
        # static fields still come from the point-in-time view
        assert trade.direction == Direction.LONG
        assert trade.pair == "BTC"

    def test_closed_without_history_uses_point_in_time(self, prices):
        trade = reconcile(KeeperTrades(trades=[keeper_trade(1, is_open=False)]), [], {}, prices)[0]
        assert trade.pnl_source == PnlSource.POINT_IN_TIME
        assert trade.profit_pct == pytest.approx(0.12)

    def test_history_only_trade_is_synthesized_closed(self, prices):
        trades = reconcile(KeeperTrades(history=[history_item(10, 5)]), [], {}, prices)
        trade = trades[0]
        assert trade.identity == "trade-5"
        assert trade.lifecycle_state == LifecycleState.CLOSED
        assert trade.direction == Direction.SHORT
        assert trade.pair == "ETH"
        assert trade.collateral_usd == pytest.approx(50.0)
        assert trade.profit_pct == pytest.approx(0.08)
        assert trade.tx_hash == "0xhist10"

    def test_open_history_entries_do_not_create_trades(self, prices):
        keeper = KeeperTrades(history=[history_item(1, 8, change_type="position_opened")])
        assert reconcile(keeper, [], {}, prices) == []

    def test_history_closes_seeded_open_trade(self, prices):
        keeper = KeeperTrades(trades=[keeper_trade(1, is_open=True)], history=[history_item(3, 1)])
        trade = reconcile(keeper, [], {}, prices)[0]
        assert trade.lifecycle_state == LifecycleState.CLOSED
        assert trade.unrealized_pnl_pct is None

    def test_no_duplicates_across_sources(self, prices):
        keeper = KeeperTrades(
            trades=[keeper_trade(1, is_open=False), keeper_trade(1, is_open=False)],
            history=[history_item(10, 1), history_item(11, 1), history_item(12, 2), history_item(13, 2)],
        )
        cands = [candidate("0xc", [{"type": "user_close_order", "trade_index": 1, "profit_pct": "0.2"}])]
        trades = reconcile(keeper, cands, {}, prices)
        identities = [t.identity for t in trades]
        assert sorted(identities) == ["trade-1", "trade-2"]
        assert _by_id(trades)["trade-1"].profit_pct == pytest.approx(0.2)

    def test_pair_inferred_when_relation_missing(self, prices):
        kt = keeper_trade(1, perpBorrowing=None, openPrice=2_950.0)
        trade = reconcile(KeeperTrades(trades=[kt]), [], {}, prices)[0]
        assert trade.pair == "ETH"

    def test_pair_from_market_id(self, prices):
        cands = [candidate("0xo", [{"type": "open_trade", "trade_index": 1, "market_index": "2", "open_price": "50"}])]
        assert reconcile(None, cands, {}, prices)[0].pair == "NIBI"

    def test_pair_unknown_when_nothing_matches(self, prices):
        kt = keeper_trade(1, perpBorrowing=None, openPrice=7.0)
        assert reconcile(KeeperTrades(trades=[kt]), [], {}, prices)[0].pair == "Unknown"


class TestFees:
    def test_resolver_beats_other_sources(self, prices):
        keeper = KeeperTrades(trades=[keeper_trade(1, is_open=False)])
        fee_map = {"trade-1": FeeBreakdown(opening_fee=1_000_000, closing_fee=2_000_000)}
        trade = reconcile(keeper, [], fee_map, prices)[0]
        assert trade.opening_fee_usd == pytest.approx(1.0)
        assert trade.closing_fee_usd == pytest.approx(2.0)
        # borrowing fee only known from state
        assert trade.borrowing_fee_usd == pytest.approx(0.5)
        assert trade.trigger_fee_usd is None
        assert trade.total_fees_usd == pytest.approx(3.5)

    def test_missing_fees_stay_unknown(self, prices):
        keeper = KeeperTrades(trades=[keeper_trade(1, is_open=False, state=None)])
        trade = reconcile(keeper, [], {}, prices)[0]
        assert trade.opening_fee_usd is None
        assert trade.total_fees_usd is None

    def test_log_fees_used_without_resolver(self, prices):
        cands = [
            candidate(
                "0xo",
                [
                    {"type": "open_trade", "trade_index": 1},
                    {"type": "process_opening_fees", "trade_index": 1, "opening_fee": "400000"},
                ],
            )
        ]
        trade = reconcile(None, cands, {}, prices)[0]
        assert trade.opening_fee_usd == pytest.approx(0.4)
        assert trade.total_fees_usd == pytest.approx(0.4)


class TestProperties:
    @pytest.fixture
    def inputs(self):
        keeper = KeeperTrades(
            trades=[keeper_trade(1, is_open=True), keeper_trade(2, is_open=False)],
            history=[history_item(10, 2), history_item(11, 3, ts=T0 - timedelta(days=3))],
        )
        cands = [
            candidate("0xa", [{"type": "open_trade", "trade_index": 4, "collateral": "5000000", "long": "false"}]),
            candidate(
                "0xb",
                [{"type": "user_close_order", "trade_index": 4, "profit_pct": "-0.5", "amount_received": "2500000"}],
                ts=T0 + timedelta(days=1),
            ),
            candidate("0xc", [{"type": "close_trade", "trade_index": 1}], ts=T0 + timedelta(days=2)),
        ]
        fee_map = {"trade-2": FeeBreakdown(opening_fee=100)}
        return keeper, cands, fee_map

    def test_idempotent(self, inputs, prices):
        first = reconcile(*inputs, prices)
        second = reconcile(*inputs, prices)
        assert [t.model_dump() for t in first] == [t.model_dump() for t in second]

    def test_unique_identities(self, inputs, prices):
        identities = [t.identity for t in reconcile(*inputs, prices)]
        assert len(identities) == len(set(identities))

    def test_amount_received_invariant(self, inputs, prices):
        for trade in reconcile(*inputs, prices):
            if trade.is_closed and trade.collateral_usd is not None and trade.pnl_amount_usd is not None:
                assert trade.amount_received_usd == pytest.approx(trade.collateral_usd + trade.pnl_amount_usd, abs=1e-6)

    def test_close_is_terminal(self, inputs, prices):
        keeper, cands, fee_map = inputs
        # a later open signal for an already-closed trade must not reopen it
        cands = cands + [candidate("0xd", [{"type": "open_trade", "trade_index": 1}], ts=T0 + timedelta(days=3))]
        trades = _by_id(reconcile(keeper, cands, fee_map, prices))
        assert trades["trade-1"].lifecycle_state == LifecycleState.CLOSED
        assert trades["trade-4"].lifecycle_state == LifecycleState.CLOSED

    def test_sorted_newest_first(self, inputs, prices):
        trades = reconcile(*inputs, prices)
        stamps = [t.activity_at for t in trades]
        assert stamps == sorted(stamps, reverse=True)
        assert trades[0].identity == "trade-1"

    def test_empty_inputs(self, prices):
        assert reconcile(None, [], {}, prices) == []
        assert reconcile(KeeperTrades(), None, None, None) == []


class TestDecodedEdgePayloads:
    def _decoded(self, tx_hash, payloads, ts=T0):
        logs = [make_log(p, tx_hash=tx_hash, log_index=i) for i, p in enumerate(payloads)]
        return TxCandidate(tx_hash=tx_hash, timestamp=ts, events=[e for e in map(decode_log, logs) if e is not None])

    def test_oversized_amounts_do_not_break_reconcile(self, prices):
        cands = [
            self._decoded(
                "0xopen",
                [
                    '{"type":"open_trade","trade_index":"1","collateral":"1e400","leverage":"5"}',
                    '{"type":"process_opening_fees","trade_index":"1","opening_fee":1e400}',
                ],
            ),
            self._decoded(
                "0xclose",
                ['{"type":"close_trade","trade_index":"1","amount_received":"Infinity","close_price":NaN}'],
                ts=T0 + timedelta(hours=1),
            ),
        ]
        trades = reconcile(None, cands, {}, prices)

        assert len(trades) == 1
        trade = trades[0]
        assert trade.lifecycle_state == LifecycleState.CLOSED
        assert trade.leverage == 5
        assert trade.collateral_usd is None
        assert trade.opening_fee_usd is None
        assert trade.amount_received_usd is None
        assert trade.close_price is None

    def test_bad_event_does_not_drop_siblings(self, prices):
        cand = self._decoded(
            "0xtx",
            [
                '{"type":"open_trade","trade_index":"2","collateral":1e400}',
                '{"type":"open_trade","trade_index":"3","collateral":"20000000"}',
            ],
        )
        trades = _by_id(reconcile(None, [cand], {}, prices))
        assert set(trades) == {"trade-2", "trade-3"}
        assert trades["trade-3"].collateral_usd == pytest.approx(20.0)


class TestMissingDirection:
    def test_keeper_without_direction_stays_unknown(self, prices):
        kt = keeper_trade(1)
        kt.isLong = None
        trades = reconcile(KeeperTrades(trades=[kt]), [], {}, prices)
        assert trades[0].direction is None

    def test_model_default_is_unknown(self):
        kt = KeeperTrade.model_validate({"id": 1})
        assert kt.isLong is None

    def test_later_source_fills_unknown_direction(self, prices):
        kt = keeper_trade(1)
        kt.isLong = None
        cands = [candidate("0xtx", [{"type": "open_trade", "trade_index": 1, "long": "false"}])]
        trades = reconcile(KeeperTrades(trades=[kt]), cands, {}, prices)
        assert trades[0].direction == Direction.SHORT
