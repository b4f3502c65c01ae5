"""Project reconciled trades into open positions and vault positions."""

from __future__ import annotations

from datetime import datetime, timezone

from sai_tracker.models.keeper import VaultDepositItem
from sai_tracker.models.position import OpenPosition
from sai_tracker.models.trade import Direction, Trade
from sai_tracker.models.vault import VaultPosition
from sai_tracker.pricing.normalizer import PriceContext, from_raw

DAYS_PER_YEAR = 365


def mark_price(
    entry_price: float | None,
    pnl_pct: float | None,
    leverage: float | None,
    direction: Direction | None,
) -> float | None:
    """Mark price implied by entry price and unrealized P&L (fraction of collateral)."""
    if entry_price is None or pnl_pct is None or not leverage or direction is None:
        return None
    move = pnl_pct / leverage
    if direction == Direction.LONG:
        return entry_price * (1 + move)
    return entry_price * (1 - move)


def project_positions(trades: list[Trade]) -> list[OpenPosition]:
    positions = []
    for trade in trades:
        if trade.is_closed:
            continue
        positions.append(
            OpenPosition(
                trade_id=trade.trade_index or trade.identity,
                pair=trade.pair,
                direction=trade.direction,
                leverage=trade.leverage,
                collateral_usd=trade.collateral_usd,
                entry_price=trade.open_price,
                mark_price=mark_price(trade.open_price, trade.unrealized_pnl_pct, trade.leverage, trade.direction),
                liquidation_price=trade.liquidation_price,
                stop_loss=trade.stop_loss,
                take_profit=trade.take_profit,
                unrealized_pnl=trade.unrealized_pnl_usd,
                unrealized_pnl_pct=trade.unrealized_pnl_pct,
                borrowing_fee=trade.borrowing_fee_usd,
                opened_at=trade.opened_at,
            )
        )
    return positions


def estimate_earnings(deposit_usd: float, apy_pct: float, deposited_at: datetime | None, now: datetime) -> float:
    """Simple APY accrual; not observed on-chain."""
    if deposited_at is None or deposit_usd <= 0 or apy_pct <= 0:
        return 0.0
    days = max((now - deposited_at).total_seconds(), 0.0) / 86400
    return deposit_usd * apy_pct / 100 * days / DAYS_PER_YEAR


def project_vault_positions(
    items: list[VaultDepositItem],
    prices: PriceContext,
    now: datetime | None = None,
) -> list[VaultPosition]:
    now = now or datetime.now(timezone.utc)
    positions = []
    for item in items:
        vault = item.vault
        symbol = vault.symbol if vault else "Unknown"
        apy = (vault.apy if vault else None) or 0.0
        amount_usd = prices.to_usd(item.amount, symbol) or 0.0
        timestamp = item.block.block_ts if item.block else None

        if item.isWithdraw:
            earnings = 0.0
            current = 0.0
        else:
            earnings = estimate_earnings(amount_usd, apy, timestamp, now)
            current = amount_usd + earnings

        positions.append(
            VaultPosition(
                vault_symbol=symbol,
                action="withdraw" if item.isWithdraw else "deposit",
                shares=from_raw(item.shares) or 0.0,
                deposit_amount=amount_usd,
                current_value=current,
                earnings=earnings,
                earnings_percent=(earnings / amount_usd * 100) if amount_usd else 0.0,
                apy=apy,
                timestamp=timestamp,
                tx_hash=item.txHash,
            )
        )
    return positions
