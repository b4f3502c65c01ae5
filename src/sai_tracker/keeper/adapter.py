"""Structured-query adapter over the Sai keeper GraphQL API."""

from __future__ import annotations

import asyncio

import structlog

from sai_tracker.keeper import queries
from sai_tracker.keeper.client import GraphQLClient
from sai_tracker.models.keeper import (
    FeeTransaction,
    KeeperTrade,
    KeeperTradeHistoryItem,
    KeeperTrades,
    KeeperVault,
    MarketSnapshot,
    VaultDepositItem,
)
from sai_tracker.models.market import MarketInfo

logger = structlog.get_logger()


def _perp(data: dict, field: str) -> list[dict]:
    return list((data.get("perp") or {}).get(field) or [])


def _parse_items(model, rows: list[dict], kind: str) -> list:
    """Validate rows one by one; a malformed row is skipped, not fatal."""
    items = []
    for row in rows:
        try:
            items.append(model.model_validate(row))
        except ValueError as e:
            logger.warning("keeper_row_skipped", kind=kind, row_id=row.get("id"), error=str(e))
    return items


class KeeperAdapter:
    def __init__(self, client: GraphQLClient) -> None:
        self.client = client

    async def fetch_trades(
        self,
        trader: str,
        limit: int = 100,
        offset: int = 0,
        history_multiplier: int = 2,
    ) -> KeeperTrades:
        """Point-in-time trades and the trade change-log, fetched in parallel.

        Raises if either query fails even after dropping the nested market
        relation.
        """
        trades, history = await asyncio.gather(
            self._query_with_fallback(
                queries.TRADES_QUERY,
                queries.TRADES_QUERY_REDUCED,
                {"trader": trader, "limit": limit, "offset": offset},
            ),
            self._query_with_fallback(
                queries.TRADE_HISTORY_QUERY,
                queries.TRADE_HISTORY_QUERY_REDUCED,
                {"trader": trader, "limit": limit * history_multiplier, "offset": offset},
            ),
        )
        return KeeperTrades(
            trades=_parse_items(KeeperTrade, _perp(trades, "trades"), "trade"),
            history=_parse_items(KeeperTradeHistoryItem, _perp(history, "tradeHistory"), "history"),
        )

    async def _query_with_fallback(self, primary: str, reduced: str, variables: dict) -> dict:
        try:
            return await self.client.query(primary, variables)
        except Exception as e:
            logger.warning("keeper_query_degraded", error=str(e))
            return await self.client.query(reduced, variables)

    async def fetch_fee_transactions(self, trader: str, limit: int = 200) -> list[FeeTransaction]:
        data = await self.client.query(queries.FEE_TRANSACTIONS_QUERY, {"trader": trader, "limit": limit})
        return _parse_items(FeeTransaction, _perp(data, "feeTransactions"), "fee_transaction")

    async def fetch_markets(self) -> MarketSnapshot:
        """Market symbols, oracle prices and open interest."""
        data = await self.client.query(queries.MARKETS_QUERY)
        markets = []
        for row in _perp(data, "borrowings"):
            base = row.get("baseToken") or {}
            collateral = row.get("collateralToken") or {}
            if not base.get("symbol"):
                continue
            markets.append(
                MarketInfo(
                    market_id=str(row["marketId"]) if row.get("marketId") is not None else None,
                    symbol=base["symbol"],
                    oracle_price=_float(row.get("price")),
                    collateral_symbol=collateral.get("symbol"),
                    oi_long=int(_float(row.get("oiLong")) or 0),
                    oi_short=int(_float(row.get("oiShort")) or 0),
                )
            )

        token_prices: dict[str, float] = {}
        for row in (data.get("oracle") or {}).get("tokenPricesUsd") or []:
            symbol = (row.get("token") or {}).get("symbol")
            price = _float(row.get("priceUsd"))
            if symbol and price is not None:
                token_prices[symbol.upper()] = price
        return MarketSnapshot(markets=markets, token_prices=token_prices)

    async def fetch_open_trades(self, limit: int = 1000) -> list[dict]:
        data = await self.client.query(queries.OPEN_TRADES_QUERY, {"limit": limit})
        return _perp(data, "trades")

    async def fetch_vaults(self) -> list[KeeperVault]:
        data = await self.client.query(queries.VAULTS_QUERY)
        rows = (data.get("lp") or {}).get("vaults") or []
        return _parse_items(KeeperVault, rows, "vault")

    async def fetch_vault_deposits(self, depositor: str, limit: int = 200) -> list[VaultDepositItem]:
        data = await self.client.query(queries.VAULT_DEPOSITS_QUERY, {"depositor": depositor, "limit": limit})
        rows = (data.get("lp") or {}).get("depositHistory") or []
        return _parse_items(VaultDepositItem, rows, "vault_deposit")

    async def fetch_global_history_page(self, limit: int, offset: int) -> list[KeeperTradeHistoryItem]:
        """One page of the all-trader change-log."""
        data = await self.client.query(queries.GLOBAL_TRADE_HISTORY_QUERY, {"limit": limit, "offset": offset})
        return _parse_items(KeeperTradeHistoryItem, _perp(data, "tradeHistory"), "global_history")


def _float(value) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
