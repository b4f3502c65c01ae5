"""EventType, ProtocolEvent: decoded perp contract events as a tagged union."""

from __future__ import annotations

import enum
import math
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel


class EventType(enum.Enum):
    REGISTER_TRADE = "register_trade"
    OPEN_TRADE = "open_trade"
    REGISTER_TRIGGER_ORDER = "register_trigger_order"
    CLOSE_TRADE = "close_trade"
    USER_CLOSE_ORDER = "user_close_order"
    MARKET_CLOSE = "market_close"
    LIQUIDATE_TRADE = "liquidate_trade"
    PROCESS_OPENING_FEES = "process_opening_fees"
    PROCESS_CLOSING_FEES = "process_closing_fees"
    UNREGISTER_TRADE = "unregister_trade"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, raw_type: str | None, action: str | None = None) -> EventType:
        """Known `type` wins; otherwise fall back to the `action` field."""
        if raw_type:
            name = raw_type.strip().lower()
            # wasm events are emitted as "wasm-<type>"
            if name.startswith("wasm-"):
                name = name[len("wasm-"):]
            try:
                return cls(name)
            except ValueError:
                pass
        if action:
            return _ACTION_ALIASES.get(action.strip().lower(), cls.UNKNOWN)
        return cls.UNKNOWN


OPEN_EVENT_TYPES = frozenset(
    {EventType.REGISTER_TRADE, EventType.OPEN_TRADE, EventType.REGISTER_TRIGGER_ORDER}
)
CLOSE_EVENT_TYPES = frozenset(
    {
        EventType.CLOSE_TRADE,
        EventType.USER_CLOSE_ORDER,
        EventType.MARKET_CLOSE,
        EventType.LIQUIDATE_TRADE,
        EventType.PROCESS_CLOSING_FEES,
        EventType.UNREGISTER_TRADE,
    }
)
FEE_EVENT_TYPES = frozenset({EventType.PROCESS_OPENING_FEES, EventType.PROCESS_CLOSING_FEES})

_ACTION_ALIASES = {
    "open": EventType.OPEN_TRADE,
    "open_trade": EventType.OPEN_TRADE,
    "close": EventType.CLOSE_TRADE,
    "close_trade": EventType.CLOSE_TRADE,
    "market_close": EventType.MARKET_CLOSE,
}


# uint256, the widest amount the contract can emit
MAX_RAW_AMOUNT = 2**256 - 1


def _to_float(value: Any) -> float | None:
    """Finite float or None; "inf", "NaN" and overflowing values are dropped."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _to_raw_amount(value: Any) -> int | None:
    """Fixed-point integer amount; tolerates "123", 123, "1.23e8"."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        value = value.get("amount")
        if value is None:
            return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or abs(amount) > MAX_RAW_AMOUNT:
        return None
    return int(amount)


def _to_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "long"):
            return True
        if lowered in ("false", "0", "short"):
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return None


def _to_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


class ProtocolEvent(BaseModel):
    event_type: EventType = EventType.UNKNOWN
    tx_hash: str = ""
    log_index: int = 0
    block_number: int | None = None

    trade_index: str | None = None
    trader: str | None = None
    market_index: str | None = None
    collateral_token: str | None = None
    action: str | None = None

    long: bool | None = None
    leverage: float | None = None
    open_price: float | None = None
    close_price: float | None = None
    profit_pct: float | None = None

    # raw 6-decimal collateral units
    collateral: int | None = None
    amount_received: int | None = None
    opening_fee: int | None = None
    closing_fee: int | None = None
    trigger_fee: int | None = None
    borrowing_fee: int | None = None

    @property
    def is_open(self) -> bool:
        return self.event_type in OPEN_EVENT_TYPES

    @property
    def is_close(self) -> bool:
        return self.event_type in CLOSE_EVENT_TYPES

    @property
    def is_fee(self) -> bool:
        return self.event_type in FEE_EVENT_TYPES

    @property
    def identity(self) -> str:
        if self.trade_index is not None:
            return trade_identity(self.trade_index)
        return self.tx_hash

    @classmethod
    def from_record(
        cls,
        record: dict,
        tx_hash: str = "",
        log_index: int = 0,
        block_number: int | None = None,
    ) -> ProtocolEvent:
        """Build an event from a decoded payload; unknown keys are ignored."""
        fees = record.get("fees") if isinstance(record.get("fees"), dict) else {}
        trade = record.get("trade") if isinstance(record.get("trade"), dict) else {}

        def pick(*keys: str) -> Any:
            for source in (record, trade, fees):
                for key in keys:
                    if key in source and source[key] not in (None, ""):
                        return source[key]
            return None

        action = _to_str(pick("action"))
        return cls(
            event_type=EventType.from_raw(_to_str(pick("type", "event_type")), action),
            tx_hash=tx_hash,
            log_index=log_index,
            block_number=block_number,
            trade_index=_to_str(pick("trade_index", "trade_id", "index")),
            trader=_to_str(pick("trader", "user")),
            market_index=_to_str(pick("market_index", "market_id")),
            collateral_token=_to_str(pick("collateral_token", "collateral_denom")),
            action=action,
            long=_to_bool(pick("long", "is_long")),
            leverage=_to_float(pick("leverage")),
            open_price=_to_float(pick("open_price")),
            close_price=_to_float(pick("close_price")),
            profit_pct=_to_float(pick("profit_pct", "pnl_pct")),
            collateral=_to_raw_amount(pick("collateral", "collateral_amount")),
            amount_received=_to_raw_amount(pick("amount_received", "collateral_sent_to_trader")),
            opening_fee=_to_raw_amount(pick("opening_fee")),
            closing_fee=_to_raw_amount(pick("closing_fee")),
            trigger_fee=_to_raw_amount(pick("trigger_fee")),
            borrowing_fee=_to_raw_amount(pick("borrowing_fee")),
        )


def trade_identity(trade_id: int | str) -> str:
    """Stable key shared by the log-scan and structured-query paths."""
    return f"trade-{trade_id}"
