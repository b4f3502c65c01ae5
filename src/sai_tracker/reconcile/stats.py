"""Aggregate statistics over reconciled trades and protocol-wide state."""

from __future__ import annotations

from datetime import datetime

import structlog

from sai_tracker.models.keeper import KeeperTradeHistoryItem, KeeperVault, MarketSnapshot
from sai_tracker.models.market import GlobalStats, VaultStats
from sai_tracker.models.trade import Trade, TradeStats
from sai_tracker.pricing.normalizer import PriceContext

logger = structlog.get_logger()


def compute_stats(trades: list[Trade]) -> TradeStats:
    """Win rate and P&L over closed trades with a known profit_pct.

    Trades whose P&L is unknown are left out of the denominator rather than
    counted as losses. No decided trades gives a win rate of 0.
    """
    decided = [t for t in trades if t.is_closed and t.profit_pct is not None]
    wins = sum(1 for t in decided if t.profit_pct > 0)
    win_rate = wins / len(decided) if decided else 0.0

    volume = 0.0
    for t in trades:
        if t.collateral_usd is not None and t.leverage is not None:
            volume += t.collateral_usd * t.leverage

    return TradeStats(
        total_pnl_pct=sum(t.profit_pct for t in decided),
        total_pnl_usd=sum(t.pnl_amount_usd for t in trades if t.is_closed and t.pnl_amount_usd is not None),
        win_rate=win_rate,
        total_trades=len(trades),
        total_volume_usd=volume,
        fees_paid_usd=sum(t.total_fees_usd for t in trades if t.total_fees_usd is not None),
    )


def opening_volume_usd(items: list[KeeperTradeHistoryItem], prices: PriceContext) -> float:
    """Notional opened across a page of the global change-log."""
    total = 0.0
    for item in items:
        if not item.is_open:
            continue
        trade = item.trade
        if trade.openCollateralAmount is None or trade.leverage is None:
            continue
        symbol = None
        if trade.perpBorrowing and trade.perpBorrowing.collateralToken:
            symbol = trade.perpBorrowing.collateralToken.symbol or None
        collateral = prices.to_usd(trade.openCollateralAmount, symbol, item.collateralPrice)
        if collateral is not None:
            total += collateral * trade.leverage
    return total


def vault_stats(vaults: list[KeeperVault], prices: PriceContext) -> list[VaultStats]:
    """Per-vault TVL in USD; a later vault with an already-seen symbol is deprecated."""
    seen_symbols: set[str] = set()
    stats = []
    for vault in sorted(vaults, key=lambda v: v.tvl or 0, reverse=True):
        symbol = vault.symbol
        stats.append(
            VaultStats(
                id=vault.id or vault.address or symbol,
                symbol=symbol,
                tvl=prices.to_usd(vault.tvl, symbol),
                apy=vault.apy or 0.0,
                share_price=vault.sharePrice,
                deprecated=symbol in seen_symbols,
            )
        )
        seen_symbols.add(symbol)
    return stats


def compute_global_stats(
    snapshot: MarketSnapshot,
    vaults: list[KeeperVault],
    prices: PriceContext,
    open_trades: list[dict] | None = None,
    volume: float | None = None,
    volume_updated_at: datetime | None = None,
) -> GlobalStats:
    """Protocol-wide totals.

    Markets whose collateral cannot be priced are left out of open interest
    and counted in ``unpriced_markets`` instead of adding a zero.
    """
    long_oi = 0.0
    short_oi = 0.0
    unpriced: list[str] = []
    for market in snapshot.markets:
        if not market.oi_long and not market.oi_short:
            continue
        long_usd = prices.to_usd(market.oi_long or 0, market.collateral_symbol)
        short_usd = prices.to_usd(market.oi_short or 0, market.collateral_symbol)
        if long_usd is None or short_usd is None:
            unpriced.append(market.symbol)
            continue
        long_oi += long_usd
        short_oi += short_usd
    if unpriced:
        logger.warning("open_interest_unpriced", markets=unpriced)

    vault_rows = vault_stats(vaults, prices)
    return GlobalStats(
        total_tvl=sum(v.tvl for v in vault_rows if v.tvl is not None),
        total_open_interest=long_oi + short_oi,
        long_open_interest=long_oi,
        short_open_interest=short_oi,
        total_open_positions=len(open_trades or []),
        unpriced_markets=len(unpriced),
        total_volume=volume,
        volume_updated_at=volume_updated_at,
        vaults=vault_rows,
    )
