"""OpenPosition, PositionsResponse models."""

from datetime import datetime

from sai_tracker.models.base import ApiModel
from sai_tracker.models.trade import Direction


class OpenPosition(ApiModel):
    trade_id: str
    pair: str = "Unknown"
    direction: Direction | None = None
    leverage: float | None = None
    collateral_usd: float | None = None
    entry_price: float | None = None
    mark_price: float | None = None
    liquidation_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    unrealized_pnl: float | None = None
    unrealized_pnl_pct: float | None = None
    borrowing_fee: float | None = None
    opened_at: datetime | None = None


class PositionsResponse(ApiModel):
    address: str
    positions: list[OpenPosition] = []
    total_positions: int = 0
    total_unrealized_pnl: float = 0.0
