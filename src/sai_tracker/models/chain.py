"""ReceiptLookup, TxCandidate, FeeBreakdown models."""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel

from sai_tracker.models.events import ProtocolEvent


class LookupStatus(enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"  # pruned or unknown receipt
    TIMEOUT = "timeout"
    ERROR = "error"


class ReceiptLookup(BaseModel):
    """Result of one receipt fetch in a best-effort batch."""

    tx_hash: str
    status: LookupStatus
    receipt: dict | None = None

    @property
    def found(self) -> bool:
        return self.status == LookupStatus.FOUND and self.receipt is not None


class TxCandidate(BaseModel):
    """A transaction whose logs mention the trader, fully decoded."""

    tx_hash: str
    block_number: int | None = None
    timestamp: datetime | None = None
    events: list[ProtocolEvent] = []


class FeeBreakdown(BaseModel):
    """Raw 6-decimal fee amounts; None means not resolved."""

    opening_fee: int | None = None
    closing_fee: int | None = None
    trigger_fee: int | None = None
    borrowing_fee: int | None = None

    def add(self, component: str, amount: int | None) -> None:
        """Accumulate one component; opening and closing arrive separately."""
        if amount is None:
            return
        current = getattr(self, component)
        setattr(self, component, amount if current is None else current + amount)

    @property
    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (self.opening_fee, self.closing_fee, self.trigger_fee, self.borrowing_fee)
        )
