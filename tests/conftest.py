"""Shared fixtures and payload builders."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import encode as abi_encode

from sai_tracker.config import Settings
from sai_tracker.models.chain import TxCandidate
from sai_tracker.models.events import ProtocolEvent
from sai_tracker.models.keeper import KeeperTrade, KeeperTradeHistoryItem, KeeperTrades
from sai_tracker.models.market import MarketInfo
from sai_tracker.pricing.normalizer import PriceContext

TRADER_EVM = "0x1234567890abcdef1234567890abcdef12345678"
T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


# --- ABI payload helpers ---


def encode_abi_string(text: str) -> str:
    """0x-prefixed ABI encoding of a single dynamic string."""
    return "0x" + abi_encode(["string"], [text]).hex()


def encode_event(record: dict) -> str:
    return encode_abi_string(json.dumps(record))


def make_log(record: dict | str, tx_hash: str = "0xaaa", log_index: int = 0, address: str = "0xperp") -> dict:
    data = encode_abi_string(record) if isinstance(record, str) else encode_event(record)
    return {
        "address": address,
        "data": data,
        "transactionHash": tx_hash,
        "logIndex": hex(log_index),
        "blockNumber": "0x64",
    }


def make_receipt(logs: list[dict], block_number: int = 100) -> dict:
    return {"status": "0x1", "blockNumber": hex(block_number), "logs": logs}


# --- keeper helpers ---


def keeper_trade(trade_id: int = 1, is_open: bool = True, **overrides) -> KeeperTrade:
    data = {
        "id": trade_id,
        "trader": "nibi1trader",
        "isOpen": is_open,
        "isLong": True,
        "tradeType": "trade",
        "leverage": 5,
        "collateralAmount": 100_000_000,
        "openCollateralAmount": 100_000_000,
        "openPrice": 100_000.0,
        "closePrice": None if is_open else 110_000.0,
        "sl": 90_000.0,
        "tp": 120_000.0,
        "perpBorrowing": {
            "marketId": 0,
            "baseToken": {"symbol": "BTC", "name": "Bitcoin"},
            "collateralToken": {"symbol": "USDC"},
        },
        "openBlock": {"block": 100, "block_ts": (T0 - timedelta(days=1)).isoformat()},
        "closeBlock": None if is_open else {"block": 200, "block_ts": T0.isoformat()},
        "state": {
            "pnlCollateral": 12_000_000,
            "pnlPct": 0.12,
            "pnlCollateralAfterFees": 11_000_000,
            "positionValue": 112_000_000,
            "liquidationPrice": 81_000.0,
            "borrowingFeeCollateral": 500_000,
            "borrowingFeePct": 0.005,
            "closingFeeCollateral": 250_000,
            "closingFeePct": 0.0025,
            "remainingCollateralAfterFees": 111_000_000,
        },
    }
    data.update(overrides)
    return KeeperTrade.model_validate(data)


def history_item(
    item_id: int,
    trade_id: int,
    change_type: str = "position_closed_user",
    ts: datetime = T0,
    realized_pct: float | None = 0.08,
    realized_collateral: float | None = 8_000_000,
    **trade_overrides,
) -> KeeperTradeHistoryItem:
    trade = {
        "id": trade_id,
        "isLong": False,
        "leverage": 10,
        "openPrice": 3_000.0,
        "closePrice": 2_900.0,
        "openCollateralAmount": 50_000_000,
        "perpBorrowing": {"marketId": 1, "baseToken": {"symbol": "ETH"}, "collateralToken": {"symbol": "USDC"}},
    }
    trade.update(trade_overrides)
    return KeeperTradeHistoryItem.model_validate(
        {
            "id": item_id,
            "tradeChangeType": change_type,
            "block": {"block": 150, "block_ts": ts.isoformat()},
            "trade": trade,
            "realizedPnlCollateral": realized_collateral,
            "realizedPnlPct": realized_pct,
            "txHash": f"0xhist{item_id}",
        }
    )


def candidate(tx_hash: str, events: list[dict], ts: datetime = T0, block: int = 100) -> TxCandidate:
    return TxCandidate(
        tx_hash=tx_hash,
        block_number=block,
        timestamp=ts,
        events=[ProtocolEvent.from_record(r, tx_hash=tx_hash, log_index=i) for i, r in enumerate(events)],
    )


# --- fixtures ---


@pytest.fixture
def settings() -> Settings:
    return Settings(
        MAINNET_PERP_CONTRACT="0xperp",
        TESTNET_PERP_CONTRACT="0xperptest",
        LOG_SCAN_LOOKBACK_BLOCKS=20_000,
    )


@pytest.fixture
def markets() -> list[MarketInfo]:
    return [
        MarketInfo(market_id="0", symbol="BTC", oracle_price=100_000.0, collateral_symbol="USDC"),
        MarketInfo(market_id="1", symbol="ETH", oracle_price=3_000.0, collateral_symbol="USDC"),
        MarketInfo(market_id="2", symbol="NIBI", oracle_price=0.02, collateral_symbol="USDC"),
    ]


@pytest.fixture
def prices(markets) -> PriceContext:
    return PriceContext(token_prices={"STNIBI": 0.025}, markets=markets)


@pytest.fixture
def empty_keeper() -> KeeperTrades:
    return KeeperTrades()


@pytest.fixture
def mock_rpc() -> MagicMock:
    rpc = MagicMock()
    rpc.block_number = AsyncMock(return_value=20_000)
    rpc.get_logs = AsyncMock(return_value=[])
    rpc.get_block_timestamp = AsyncMock(return_value=T0)
    rpc.lookup_receipts = AsyncMock(return_value=[])
    return rpc
