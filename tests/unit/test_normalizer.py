"""Unit tests for USD normalization and pair inference."""

from __future__ import annotations

import pytest

from sai_tracker.models.market import MarketInfo
from sai_tracker.pricing.normalizer import UNKNOWN_PAIR, PriceContext, from_raw, infer_pair, to_usd


class TestFromRaw:
    def test_six_decimals(self):
        assert from_raw(100_000_000) == 100.0

    def test_none(self):
        assert from_raw(None) is None


class TestToUsd:
    def test_stable_collateral(self, prices):
        assert to_usd(2_500_000, "USDC", prices) == pytest.approx(2.5)

    def test_default_collateral_is_stable(self, prices):
        assert to_usd(1_000_000, None, prices) == pytest.approx(1.0)

    def test_symbol_case_insensitive(self, prices):
        assert to_usd(1_000_000, "stNIBI", prices) == pytest.approx(0.025)

    def test_live_price_beats_historical(self, prices):
        assert to_usd(1_000_000, "STNIBI", prices, historical_price=0.5) == pytest.approx(0.025)

    def test_historical_fallback(self):
        ctx = PriceContext()
        assert to_usd(4_000_000, "NIBI", ctx, historical_price=0.02) == pytest.approx(0.08)

    def test_unpriceable_is_none_not_zero(self):
        assert to_usd(4_000_000, "NIBI", PriceContext()) is None

    def test_none_amount(self, prices):
        assert to_usd(None, "USDC", prices) is None

    def test_method_matches_function(self, prices):
        assert prices.to_usd(3_000_000, "USDT") == to_usd(3_000_000, "USDT", prices)


class TestInferPair:
    def test_closest_market(self, markets):
        assert infer_pair(95_000.0, markets) == "BTC"
        assert infer_pair(2_500.0, markets) == "ETH"

    def test_large_drift_within_tolerance(self, markets):
        assert infer_pair(0.09, markets) == "NIBI"

    def test_beyond_tolerance_is_unknown(self, markets):
        assert infer_pair(0.5, markets) == UNKNOWN_PAIR

    def test_missing_price(self, markets):
        assert infer_pair(None, markets) == UNKNOWN_PAIR
        assert infer_pair(0, markets) == UNKNOWN_PAIR

    def test_tolerance_is_tunable(self, markets):
        assert infer_pair(0.5, markets, max_ratio=30.0) == "NIBI"

    def test_markets_without_price_ignored(self):
        assert infer_pair(10.0, [MarketInfo(symbol="X", oracle_price=None)]) == UNKNOWN_PAIR

    def test_context_market_lookup(self, prices):
        assert prices.market_by_id(1).symbol == "ETH"
        assert prices.market_by_id("7") is None
        assert prices.market_by_id(None) is None
