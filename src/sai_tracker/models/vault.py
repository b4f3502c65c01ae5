"""VaultPosition, VaultPositionsResponse models."""

from datetime import datetime

from sai_tracker.models.base import ApiModel


class VaultPosition(ApiModel):
    vault_symbol: str
    action: str = "deposit"  # deposit, withdraw
    shares: float = 0.0
    deposit_amount: float = 0.0
    current_value: float = 0.0
    earnings: float = 0.0
    earnings_percent: float = 0.0
    apy: float = 0.0
    timestamp: datetime | None = None
    tx_hash: str | None = None


class VaultPositionsResponse(ApiModel):
    address: str
    positions: list[VaultPosition] = []
    total_deposited: float = 0.0
    total_current_value: float = 0.0
    total_earnings: float = 0.0
