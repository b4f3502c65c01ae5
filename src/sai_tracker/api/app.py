"""FastAPI app exposing trades, positions, vault positions and protocol stats."""

from __future__ import annotations

import re
from contextlib import asynccontextmanager

import structlog
from fastapi import APIRouter, FastAPI, HTTPException, Request

from sai_tracker.config import NETWORKS, Settings
from sai_tracker.models.market import GlobalStatsResponse
from sai_tracker.models.position import PositionsResponse
from sai_tracker.models.trade import TradesResponse
from sai_tracker.models.vault import VaultPositionsResponse
from sai_tracker.reconcile.volume_cache import VolumeCache
from sai_tracker.service import SourcesUnavailableError, TrackerService

logger = structlog.get_logger()

EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
MAX_TRADES_LIMIT = 1000

router = APIRouter(prefix="/api")


def validate_address(address: str | None) -> str:
    if not address:
        raise HTTPException(status_code=400, detail="Address is required")
    if not EVM_ADDRESS_RE.match(address):
        raise HTTPException(status_code=400, detail="Invalid EVM address format")
    return address


def validate_network(network: str) -> str:
    if network not in NETWORKS:
        raise HTTPException(status_code=400, detail="Invalid network. Use 'mainnet' or 'testnet'")
    return network


def parse_int_param(raw: str | None, default: int, maximum: int | None = None) -> int:
    """Lenient integer query parameter: junk, zero or negative gives the default."""
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        return default
    if value <= 0:
        return default
    return min(value, maximum) if maximum is not None else value


def _service(request: Request) -> TrackerService:
    return request.app.state.service


@router.get("/trades", response_model=TradesResponse)
async def get_trades(
    request: Request,
    address: str | None = None,
    network: str = "mainnet",
    limit: str | None = None,
    offset: str | None = None,
):
    address = validate_address(address)
    network = validate_network(network)
    settings = request.app.state.settings
    limit = parse_int_param(limit, settings.DEFAULT_TRADES_LIMIT, MAX_TRADES_LIMIT)
    offset = parse_int_param(offset, 0)
    try:
        return await _service(request).get_trades(address, network, limit=limit, offset=offset)
    except SourcesUnavailableError:
        logger.exception("trades_request_failed", address=address, network=network)
        raise HTTPException(status_code=500, detail="Failed to fetch trades")


@router.get("/positions", response_model=PositionsResponse)
async def get_positions(request: Request, address: str | None = None, network: str = "mainnet"):
    address = validate_address(address)
    network = validate_network(network)
    try:
        return await _service(request).get_positions(address, network)
    except SourcesUnavailableError:
        logger.exception("positions_request_failed", address=address, network=network)
        raise HTTPException(status_code=500, detail="Failed to fetch positions")


@router.get("/vault-positions", response_model=VaultPositionsResponse)
async def get_vault_positions(request: Request, address: str | None = None, network: str = "mainnet"):
    address = validate_address(address)
    network = validate_network(network)
    try:
        return await _service(request).get_vault_positions(address, network)
    except SourcesUnavailableError:
        logger.exception("vault_positions_request_failed", address=address, network=network)
        raise HTTPException(status_code=500, detail="Failed to fetch vault positions")


@router.get("/stats", response_model=GlobalStatsResponse)
async def get_stats(request: Request, network: str = "mainnet"):
    network = validate_network(network)
    try:
        return await _service(request).get_global_stats(network)
    except SourcesUnavailableError:
        logger.exception("stats_request_failed", network=network)
        raise HTTPException(status_code=500, detail="Failed to fetch protocol stats")


def create_app(
    settings: Settings | None = None,
    service: TrackerService | None = None,
    volume_cache: VolumeCache | None = None,
) -> FastAPI:
    """Build the app. Collaborators are injected for tests; defaults are wired from settings."""
    settings = settings or Settings()
    if service is None:
        service = TrackerService(settings)
        if volume_cache is None:
            volume_cache = VolumeCache(
                service.compute_volume,
                NETWORKS,
                refresh_interval_seconds=settings.VOLUME_REFRESH_HOURS * 3600,
            )
        service.volume_cache = volume_cache

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if volume_cache is not None:
            volume_cache.start()
        try:
            yield
        finally:
            if volume_cache is not None:
                await volume_cache.stop()

    app = FastAPI(title="Sai Perps Tracker", lifespan=lifespan)
    app.state.settings = settings
    app.state.service = service
    app.state.volume_cache = volume_cache
    app.include_router(router)
    return app
