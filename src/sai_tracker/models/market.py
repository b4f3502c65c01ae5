"""MarketInfo, VaultStats, GlobalStats models."""

from datetime import datetime

from sai_tracker.models.base import ApiModel


class MarketInfo(ApiModel):
    market_id: str | None = None
    symbol: str
    oracle_price: float | None = None
    collateral_symbol: str | None = None
    oi_long: int = 0  # raw collateral units
    oi_short: int = 0
    open_positions: int = 0


class VaultStats(ApiModel):
    id: str
    symbol: str
    tvl: float | None = None  # USD; None when the collateral price is unknown
    apy: float = 0.0
    share_price: float | None = None
    deprecated: bool = False


class GlobalStats(ApiModel):
    total_tvl: float = 0.0
    total_open_interest: float = 0.0
    long_open_interest: float = 0.0
    short_open_interest: float = 0.0
    total_open_positions: int = 0
    unpriced_markets: int = 0  # markets left out of open interest
    total_volume: float | None = None
    volume_updated_at: datetime | None = None
    vaults: list[VaultStats] = []


class GlobalStatsResponse(ApiModel):
    network: str
    stats: GlobalStats
