"""Trade, TradeStats, TradesResponse models."""

from __future__ import annotations

import enum
from datetime import datetime

from sai_tracker.models.base import ApiModel


class LifecycleState(enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class Direction(enum.Enum):
    LONG = "long"
    SHORT = "short"


class PnlSource(enum.Enum):
    """Where a trade's realized P&L came from, strongest first."""

    USER_CLOSE_ORDER = "user_close_order"
    TRADE_HISTORY = "trade_history"
    POINT_IN_TIME = "point_in_time"
    ESTIMATE = "estimate"

    @property
    def rank(self) -> int:
        return _PNL_SOURCE_RANK[self]


_PNL_SOURCE_RANK = {
    PnlSource.USER_CLOSE_ORDER: 3,
    PnlSource.TRADE_HISTORY: 2,
    PnlSource.POINT_IN_TIME: 1,
    PnlSource.ESTIMATE: 0,
}


class Trade(ApiModel):
    identity: str
    lifecycle_state: LifecycleState = LifecycleState.OPEN
    direction: Direction | None = None
    pair: str = "Unknown"
    trade_index: str | None = None
    tx_hash: str | None = None
    collateral_symbol: str | None = None

    leverage: float | None = None
    collateral_usd: float | None = None
    open_price: float | None = None
    close_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    liquidation_price: float | None = None

    profit_pct: float | None = None
    pnl_amount_usd: float | None = None
    pnl_source: PnlSource | None = None
    unrealized_pnl_pct: float | None = None
    unrealized_pnl_usd: float | None = None

    opening_fee_usd: float | None = None
    closing_fee_usd: float | None = None
    borrowing_fee_usd: float | None = None
    trigger_fee_usd: float | None = None
    total_fees_usd: float | None = None
    amount_received_usd: float | None = None

    opened_at: datetime | None = None
    closed_at: datetime | None = None

    @property
    def is_closed(self) -> bool:
        return self.lifecycle_state == LifecycleState.CLOSED

    @property
    def activity_at(self) -> datetime | None:
        """Most recent lifecycle timestamp; used for ordering."""
        if self.is_closed and self.closed_at is not None:
            return self.closed_at
        return self.opened_at

    def mark_closed(self, closed_at: datetime | None = None) -> None:
        """OPEN -> CLOSED. Terminal; there is no way back."""
        self.lifecycle_state = LifecycleState.CLOSED
        if closed_at is not None and self.closed_at is None:
            self.closed_at = closed_at


class TradeStats(ApiModel):
    total_pnl_pct: float = 0.0
    total_pnl_usd: float = 0.0
    win_rate: float = 0.0
    total_trades: int = 0
    total_volume_usd: float = 0.0
    fees_paid_usd: float = 0.0


class TradesResponse(ApiModel):
    address: str
    trades: list[Trade] = []
    total_pnl: float = 0.0
    total_pnl_usd: float = 0.0
    win_rate: float = 0.0
    total_trades: int = 0
    total_volume_usd: float = 0.0
    fees_paid_usd: float = 0.0
    explorer: str | None = None
