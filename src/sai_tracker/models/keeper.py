"""Sai keeper GraphQL records (field names follow the keeper schema)."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, field_validator

from sai_tracker.models.market import MarketInfo

OPEN_CHANGE_TYPES = frozenset({"position_opened", "limit_order_triggered"})
CLOSE_CHANGE_TYPES = frozenset(
    {
        "position_closed_user",
        "position_closed_sl",
        "position_closed_tp",
        "position_liquidated",
    }
)


class KeeperToken(BaseModel):
    symbol: str = ""
    name: str | None = None


class KeeperBorrowing(BaseModel):
    marketId: int | None = None
    baseToken: KeeperToken | None = None
    collateralToken: KeeperToken | None = None


class KeeperBlock(BaseModel):
    block: int | None = None
    block_ts: datetime | None = None

    @field_validator("block_ts")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class KeeperTradeState(BaseModel):
    pnlCollateral: float | None = None
    pnlPct: float | None = None
    pnlCollateralAfterFees: float | None = None
    positionValue: float | None = None
    liquidationPrice: float | None = None
    borrowingFeeCollateral: float | None = None
    borrowingFeePct: float | None = None
    closingFeeCollateral: float | None = None
    closingFeePct: float | None = None
    remainingCollateralAfterFees: float | None = None


class KeeperTrade(BaseModel):
    """Point-in-time view of one trade."""

    id: int
    trader: str = ""
    isOpen: bool = False
    isLong: bool | None = None
    tradeType: str = ""
    leverage: float | None = None
    collateralAmount: float | None = None
    openCollateralAmount: float | None = None
    openPrice: float | None = None
    closePrice: float | None = None
    sl: float | None = None
    tp: float | None = None
    perpBorrowing: KeeperBorrowing | None = None
    openBlock: KeeperBlock | None = None
    closeBlock: KeeperBlock | None = None
    state: KeeperTradeState | None = None


class KeeperHistoryTrade(BaseModel):
    id: int
    isLong: bool | None = None
    leverage: float | None = None
    openPrice: float | None = None
    closePrice: float | None = None
    openCollateralAmount: float | None = None
    perpBorrowing: KeeperBorrowing | None = None


class KeeperTradeHistoryItem(BaseModel):
    """One entry of the append-only trade change-log."""

    id: int
    tradeChangeType: str = ""
    block: KeeperBlock | None = None
    trade: KeeperHistoryTrade
    realizedPnlCollateral: float | None = None
    realizedPnlPct: float | None = None
    collateralPrice: float | None = None  # collateral oracle price at this block
    txHash: str | None = None

    @property
    def is_close(self) -> bool:
        return self.tradeChangeType in CLOSE_CHANGE_TYPES

    @property
    def is_open(self) -> bool:
        return self.tradeChangeType in OPEN_CHANGE_TYPES


class FeeTransaction(BaseModel):
    """A fee-bearing transaction reference; amounts live in the receipt."""

    id: int | None = None
    tradeId: int
    txHash: str
    tradeChangeType: str = ""

    @property
    def is_opening(self) -> bool:
        return self.tradeChangeType in OPEN_CHANGE_TYPES


class KeeperVault(BaseModel):
    id: str = ""
    address: str | None = None
    collateralToken: KeeperToken | None = None
    tvl: float | None = None  # raw collateral units
    apy: float | None = None  # percent
    sharePrice: float | None = None

    @property
    def symbol(self) -> str:
        if self.collateralToken and self.collateralToken.symbol:
            return self.collateralToken.symbol
        return "Unknown"


class VaultDepositItem(BaseModel):
    id: int | str
    isWithdraw: bool = False
    amount: float = 0.0  # raw collateral units
    shares: float = 0.0  # raw share units
    txHash: str | None = None
    block: KeeperBlock | None = None
    vault: KeeperVault | None = None


class KeeperTrades(BaseModel):
    """Structured-query adapter output for one trader."""

    trades: list[KeeperTrade] = []
    history: list[KeeperTradeHistoryItem] = []


class MarketSnapshot(BaseModel):
    """Markets and collateral token prices at request time."""

    markets: list[MarketInfo] = []
    token_prices: dict[str, float] = {}
