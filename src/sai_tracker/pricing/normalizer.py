"""Fixed-point -> USD conversion and pair inference from oracle prices."""

from __future__ import annotations

import structlog
from pydantic import BaseModel

from sai_tracker.models.market import MarketInfo

logger = structlog.get_logger()

RAW_DECIMALS = 6
RAW_SCALE = 10**RAW_DECIMALS
UNKNOWN_PAIR = "Unknown"
DEFAULT_MAX_RATIO = 5.0


def from_raw(amount: float | int | None) -> float | None:
    """6-decimal integer units -> token units."""
    if amount is None:
        return None
    return amount / RAW_SCALE


class PriceContext(BaseModel):
    """Per-request price snapshot. Never outlives the request."""

    token_prices: dict[str, float] = {}
    markets: list[MarketInfo] = []
    stable_symbols: frozenset[str] = frozenset({"USDC", "USDT", "USD"})
    default_collateral: str = "USDC"
    max_ratio: float = DEFAULT_MAX_RATIO

    def collateral_price(self, symbol: str | None, historical_price: float | None = None) -> float | None:
        """USD per collateral token: 1 for stables, live oracle, then historical."""
        symbol = (symbol or self.default_collateral).upper()
        if symbol in self.stable_symbols:
            return 1.0
        price = self.token_prices.get(symbol)
        if price is not None:
            return price
        return historical_price

    def to_usd(
        self,
        raw_amount: float | int | None,
        collateral_symbol: str | None = None,
        historical_price: float | None = None,
    ) -> float | None:
        return to_usd(raw_amount, collateral_symbol, self, historical_price)

    def market_by_id(self, market_id: str | int | None) -> MarketInfo | None:
        if market_id is None:
            return None
        key = str(market_id)
        for market in self.markets:
            if market.market_id == key:
                return market
        return None

    def infer_pair(self, entry_price: float | None) -> str:
        return infer_pair(entry_price, self.markets, self.max_ratio)


def to_usd(
    raw_amount: float | int | None,
    collateral_symbol: str | None,
    prices: PriceContext,
    historical_price: float | None = None,
) -> float | None:
    """Raw 6-decimal collateral amount -> USD, or None when unpriceable."""
    amount = from_raw(raw_amount)
    if amount is None:
        return None
    price = prices.collateral_price(collateral_symbol, historical_price)
    if price is None:
        logger.debug("collateral_price_unknown", symbol=collateral_symbol)
        return None
    return amount * price


def infer_pair(
    entry_price: float | None,
    markets: list[MarketInfo],
    max_ratio: float = DEFAULT_MAX_RATIO,
) -> str:
    """Closest market by price ratio; "Unknown" beyond ``max_ratio``.

    Ambiguous when two markets trade at similar prices; the first closest
    wins.
    """
    if not entry_price or entry_price <= 0:
        return UNKNOWN_PAIR
    best_symbol = UNKNOWN_PAIR
    best_ratio = None
    for market in markets:
        if not market.oracle_price or market.oracle_price <= 0:
            continue
        ratio = max(entry_price, market.oracle_price) / min(entry_price, market.oracle_price)
        if ratio > max_ratio:
            continue
        if best_ratio is None or ratio < best_ratio:
            best_ratio = ratio
            best_symbol = market.symbol
    return best_symbol
