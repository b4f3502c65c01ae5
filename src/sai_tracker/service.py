"""Per-request orchestration: fetch from every source, reconcile, aggregate."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from sai_tracker.chain.address import to_native_form
from sai_tracker.chain.fees import FeeRequest, FeeResolver
from sai_tracker.chain.log_scan import LogScanAdapter
from sai_tracker.chain.rpc import RpcClient
from sai_tracker.keeper.adapter import KeeperAdapter
from sai_tracker.keeper.client import GraphQLClient
from sai_tracker.models.chain import TxCandidate
from sai_tracker.models.events import trade_identity
from sai_tracker.models.keeper import FeeTransaction, KeeperTrades, MarketSnapshot
from sai_tracker.models.market import GlobalStatsResponse
from sai_tracker.models.position import PositionsResponse
from sai_tracker.models.trade import TradesResponse
from sai_tracker.models.vault import VaultPositionsResponse
from sai_tracker.pricing.normalizer import PriceContext
from sai_tracker.reconcile.engine import reconcile
from sai_tracker.reconcile.positions import project_positions, project_vault_positions
from sai_tracker.reconcile.stats import compute_global_stats, compute_stats, opening_volume_usd

if TYPE_CHECKING:
    from sai_tracker.config import NetworkConfig, Settings
    from sai_tracker.reconcile.volume_cache import VolumeCache

logger = structlog.get_logger()


class SourcesUnavailableError(Exception):
    """Every upstream source for a request failed."""


class TrackerService:
    def __init__(
        self,
        settings: Settings,
        volume_cache: VolumeCache | None = None,
    ) -> None:
        self.settings = settings
        self.volume_cache = volume_cache

    # --- collaborators (one set per request) ---

    def keeper_for(self, cfg: NetworkConfig) -> KeeperAdapter:
        return KeeperAdapter(GraphQLClient(cfg.graphql_url, timeout=self.settings.HTTP_TIMEOUT_SECONDS))

    def rpc_for(self, cfg: NetworkConfig) -> RpcClient:
        return RpcClient(cfg.rpc_url, timeout=self.settings.HTTP_TIMEOUT_SECONDS)

    def price_context(self, snapshot: MarketSnapshot | None) -> PriceContext:
        snapshot = snapshot or MarketSnapshot()
        return PriceContext(
            token_prices=snapshot.token_prices,
            markets=snapshot.markets,
            stable_symbols=frozenset(s.upper() for s in self.settings.STABLE_COLLATERAL_SYMBOLS),
            default_collateral=self.settings.DEFAULT_COLLATERAL_SYMBOL,
            max_ratio=self.settings.PAIR_INFERENCE_MAX_RATIO,
        )

    async def _market_snapshot(self, keeper: KeeperAdapter, network: str) -> MarketSnapshot:
        try:
            return await keeper.fetch_markets()
        except Exception as e:
            logger.warning("market_snapshot_failed", network=network, error=str(e))
            return MarketSnapshot()

    # --- trades ---

    async def _scan_logs(self, cfg: NetworkConfig, address: str) -> list[TxCandidate] | None:
        """Log-scan candidates, or None when log scanning is not configured."""
        if not self.settings.LOG_SCAN_ENABLED or not cfg.perp_contract:
            return None
        adapter = LogScanAdapter(
            self.rpc_for(cfg),
            contract_address=cfg.perp_contract,
            topics=cfg.log_topics,
            chunk_size=self.settings.LOG_SCAN_CHUNK_SIZE,
            receipt_batch_size=self.settings.RECEIPT_BATCH_SIZE,
            receipt_timeout=self.settings.FEE_REQUEST_TIMEOUT_SECONDS,
        )
        return await adapter.scan_for_trader(address, lookback_blocks=self.settings.LOG_SCAN_LOOKBACK_BLOCKS)

    async def _resolve_fees(self, cfg: NetworkConfig, fee_txs: list[FeeTransaction]):
        resolver = FeeResolver(
            self.rpc_for(cfg),
            batch_size=self.settings.FEE_BATCH_SIZE,
            timeout=self.settings.FEE_REQUEST_TIMEOUT_SECONDS,
            header_bytes=self.settings.FEE_LOG_HEADER_BYTES,
        )
        requests = [FeeRequest(trade_identity(tx.tradeId), tx.txHash, tx.is_opening) for tx in fee_txs]
        return await resolver.resolve_fees(requests)

    async def get_trades(
        self,
        address: str,
        network: str = "mainnet",
        limit: int | None = None,
        offset: int = 0,
    ) -> TradesResponse:
        cfg = self.settings.network(network)
        limit = limit or self.settings.DEFAULT_TRADES_LIMIT
        trader = to_native_form(address, self.settings.BECH32_PREFIX)
        keeper = self.keeper_for(cfg)
        logger.info("trades_requested", address=address, trader=trader, network=network)

        keeper_result, scan_result, fee_result, snapshot = await asyncio.gather(
            keeper.fetch_trades(trader, limit, offset, self.settings.HISTORY_LIMIT_MULTIPLIER),
            self._scan_logs(cfg, address),
            keeper.fetch_fee_transactions(trader),
            self._market_snapshot(keeper, network),
            return_exceptions=True,
        )

        keeper_trades: KeeperTrades | None = None
        if isinstance(keeper_result, BaseException):
            logger.warning("keeper_trades_failed", network=network, error=str(keeper_result))
        else:
            keeper_trades = keeper_result

        candidates: list[TxCandidate] = []
        scan_ok = False
        if isinstance(scan_result, BaseException):
            logger.warning("log_scan_failed", network=network, error=str(scan_result))
        elif scan_result is not None:
            candidates = scan_result
            scan_ok = True

        if keeper_trades is None and not scan_ok:
            raise SourcesUnavailableError("Failed to fetch trades")

        fee_txs: list[FeeTransaction] = []
        if isinstance(fee_result, BaseException):
            logger.warning("fee_transactions_failed", network=network, error=str(fee_result))
        else:
            fee_txs = fee_result

        try:
            fee_map = await self._resolve_fees(cfg, fee_txs)
        except Exception as e:
            logger.warning("fee_resolution_failed", network=network, error=str(e))
            fee_map = {}
        trades = reconcile(keeper_trades, candidates, fee_map, self.price_context(snapshot))
        stats = compute_stats(trades)

        return TradesResponse(
            address=address,
            trades=trades,
            total_pnl=stats.total_pnl_pct,
            total_pnl_usd=stats.total_pnl_usd,
            win_rate=stats.win_rate,
            total_trades=stats.total_trades,
            total_volume_usd=stats.total_volume_usd,
            fees_paid_usd=stats.fees_paid_usd,
            explorer=cfg.explorer_url,
        )

    # --- positions ---

    async def get_positions(self, address: str, network: str = "mainnet") -> PositionsResponse:
        cfg = self.settings.network(network)
        trader = to_native_form(address, self.settings.BECH32_PREFIX)
        keeper = self.keeper_for(cfg)

        keeper_result, snapshot = await asyncio.gather(
            keeper.fetch_trades(trader, self.settings.POSITIONS_LIMIT, 0, self.settings.HISTORY_LIMIT_MULTIPLIER),
            self._market_snapshot(keeper, network),
            return_exceptions=True,
        )
        if isinstance(keeper_result, BaseException):
            logger.warning("keeper_trades_failed", network=network, error=str(keeper_result))
            raise SourcesUnavailableError("Failed to fetch positions")

        trades = reconcile(keeper_result, prices=self.price_context(snapshot))
        positions = project_positions(trades)
        return PositionsResponse(
            address=address,
            positions=positions,
            total_positions=len(positions),
            total_unrealized_pnl=sum(p.unrealized_pnl for p in positions if p.unrealized_pnl is not None),
        )

    # --- vaults ---

    async def get_vault_positions(self, address: str, network: str = "mainnet") -> VaultPositionsResponse:
        cfg = self.settings.network(network)
        depositor = to_native_form(address, self.settings.BECH32_PREFIX)
        keeper = self.keeper_for(cfg)

        deposits, snapshot = await asyncio.gather(
            keeper.fetch_vault_deposits(depositor),
            self._market_snapshot(keeper, network),
            return_exceptions=True,
        )
        if isinstance(deposits, BaseException):
            logger.warning("vault_deposits_failed", network=network, error=str(deposits))
            raise SourcesUnavailableError("Failed to fetch vault positions")

        positions = project_vault_positions(deposits, self.price_context(snapshot))
        deposited = sum(p.deposit_amount for p in positions if p.action == "deposit")
        withdrawn = sum(p.deposit_amount for p in positions if p.action == "withdraw")
        return VaultPositionsResponse(
            address=address,
            positions=positions,
            total_deposited=max(deposited - withdrawn, 0.0),
            total_current_value=max(sum(p.current_value for p in positions) - withdrawn, 0.0),
            total_earnings=sum(p.earnings for p in positions),
        )

    # --- protocol-wide ---

    async def get_global_stats(self, network: str = "mainnet") -> GlobalStatsResponse:
        cfg = self.settings.network(network)
        keeper = self.keeper_for(cfg)

        snapshot, vaults, open_trades = await asyncio.gather(
            keeper.fetch_markets(),
            keeper.fetch_vaults(),
            keeper.fetch_open_trades(self.settings.GLOBAL_HISTORY_PAGE_SIZE),
            return_exceptions=True,
        )
        failures = [r for r in (snapshot, vaults, open_trades) if isinstance(r, BaseException)]
        for failure in failures:
            logger.warning("global_stats_source_failed", network=network, error=str(failure))
        if len(failures) == 3:
            raise SourcesUnavailableError("Failed to fetch protocol stats")

        snapshot = MarketSnapshot() if isinstance(snapshot, BaseException) else snapshot
        vaults = [] if isinstance(vaults, BaseException) else vaults
        open_trades = [] if isinstance(open_trades, BaseException) else open_trades

        cached = self.volume_cache.get(network) if self.volume_cache else None
        stats = compute_global_stats(
            snapshot,
            vaults,
            self.price_context(snapshot),
            open_trades=open_trades,
            volume=cached.value if cached else None,
            volume_updated_at=cached.last_refreshed if cached else None,
        )
        return GlobalStatsResponse(network=network, stats=stats)

    async def compute_volume(self, network: str) -> float:
        """Opening notional over the whole change-log; expensive, meant for the cache."""
        cfg = self.settings.network(network)
        keeper = self.keeper_for(cfg)
        prices = self.price_context(await self._market_snapshot(keeper, network))
        page_size = self.settings.GLOBAL_HISTORY_PAGE_SIZE

        total = 0.0
        started = datetime.now(timezone.utc)
        for page in range(self.settings.GLOBAL_HISTORY_MAX_PAGES):
            items = await keeper.fetch_global_history_page(page_size, page * page_size)
            total += opening_volume_usd(items, prices)
            if len(items) < page_size:
                break
        logger.info(
            "global_volume_computed",
            network=network,
            volume=total,
            seconds=(datetime.now(timezone.utc) - started).total_seconds(),
        )
        return total
