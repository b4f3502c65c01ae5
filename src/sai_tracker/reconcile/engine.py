"""Reconciliation engine: merge keeper records, log-scan events and fees per trade.

Source priority, strongest first:

* static fields (direction, leverage, entry price, collateral): point-in-time
  trade > change-log > log-scan events; first writer wins, later sources only
  fill gaps. Direction is never changed once set.
* realized P&L: ``user_close_order`` > change-log > point-in-time > estimate
  (see ``PnlSource``). The estimate, ``(received - collateral) / collateral``,
  is only used when nothing else reported a figure and is tagged as such.
* fee components: fee resolver > log-scan fee events > point-in-time state.

Lifecycle is OPEN -> CLOSED only. Any close signal from any source closes
the trade and nothing reopens it.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from sai_tracker.chain.fees import apply_fee_event
from sai_tracker.models.chain import FeeBreakdown, TxCandidate
from sai_tracker.models.events import EventType, ProtocolEvent, trade_identity
from sai_tracker.models.keeper import KeeperBorrowing, KeeperTrade, KeeperTradeHistoryItem, KeeperTrades
from sai_tracker.models.trade import Direction, LifecycleState, PnlSource, Trade
from sai_tracker.pricing.normalizer import UNKNOWN_PAIR, PriceContext

logger = structlog.get_logger()

FEE_COMPONENTS = ("opening_fee", "closing_fee", "borrowing_fee", "trigger_fee")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class _Draft:
    """Per-identity accumulator; lives for one reconcile() call."""

    def __init__(self, trade: Trade) -> None:
        self.trade = trade
        self.market_id: str | None = None
        self.historical_price: float | None = None
        self.collateral_raw: int | None = None
        self.amount_received_raw: int | None = None
        self.log_fees = FeeBreakdown()
        self.state_fees = FeeBreakdown()


def _direction(is_long: bool | None) -> Direction | None:
    if is_long is None:
        return None
    return Direction.LONG if is_long else Direction.SHORT


def _fill(trade: Trade, field: str, value) -> None:
    if value is not None and getattr(trade, field) is None:
        setattr(trade, field, value)


def _apply_pnl(trade: Trade, pct: float | None, usd: float | None, source: PnlSource) -> None:
    """Take a realized P&L figure if it outranks the current one."""
    if pct is None and usd is None:
        return
    if trade.pnl_source is not None and trade.pnl_source.rank >= source.rank:
        return
    if pct is not None:
        trade.profit_pct = pct
    if usd is not None:
        trade.pnl_amount_usd = usd
    trade.pnl_source = source


def _apply_borrowing(draft: _Draft, borrowing: KeeperBorrowing | None) -> None:
    if borrowing is None:
        return
    trade = draft.trade
    if borrowing.marketId is not None and draft.market_id is None:
        draft.market_id = str(borrowing.marketId)
    if trade.pair == UNKNOWN_PAIR and borrowing.baseToken and borrowing.baseToken.symbol:
        trade.pair = borrowing.baseToken.symbol
    if borrowing.collateralToken and borrowing.collateralToken.symbol:
        _fill(trade, "collateral_symbol", borrowing.collateralToken.symbol)


# --- point-in-time seed ---


def _seed_from_point_in_time(kt: KeeperTrade, prices: PriceContext) -> _Draft:
    trade = Trade(
        identity=trade_identity(kt.id),
        trade_index=str(kt.id),
        direction=_direction(kt.isLong),
        leverage=kt.leverage,
        open_price=kt.openPrice,
        stop_loss=kt.sl or None,
        take_profit=kt.tp or None,
        opened_at=kt.openBlock.block_ts if kt.openBlock else None,
    )
    draft = _Draft(trade)
    _apply_borrowing(draft, kt.perpBorrowing)

    raw_collateral = kt.openCollateralAmount if kt.openCollateralAmount is not None else kt.collateralAmount
    if raw_collateral is not None:
        draft.collateral_raw = int(raw_collateral)

    state = kt.state
    if state is not None:
        trade.liquidation_price = state.liquidationPrice
        if state.borrowingFeeCollateral is not None:
            draft.state_fees.borrowing_fee = int(state.borrowingFeeCollateral)
        if state.closingFeeCollateral is not None and not kt.isOpen:
            draft.state_fees.closing_fee = int(state.closingFeeCollateral)

    if kt.isOpen:
        if state is not None:
            trade.unrealized_pnl_pct = state.pnlPct
            pnl_raw = state.pnlCollateralAfterFees if state.pnlCollateralAfterFees is not None else state.pnlCollateral
            trade.unrealized_pnl_usd = prices.to_usd(pnl_raw, trade.collateral_symbol)
    else:
        trade.mark_closed(kt.closeBlock.block_ts if kt.closeBlock else None)
        trade.close_price = kt.closePrice or None
        if state is not None:
            # Ranked lowest; the change-log overrides it.
            _apply_pnl(
                trade,
                state.pnlPct,
                prices.to_usd(state.pnlCollateralAfterFees, trade.collateral_symbol),
                PnlSource.POINT_IN_TIME,
            )
    return draft


# --- change-log ---


def _synthesize_from_history(item: KeeperTradeHistoryItem, prices: PriceContext) -> _Draft:
    """CLOSED trade built purely from a change-log close entry."""
    ht = item.trade
    trade = Trade(
        identity=trade_identity(ht.id),
        trade_index=str(ht.id),
        tx_hash=item.txHash,
        direction=_direction(ht.isLong),
        leverage=ht.leverage,
        open_price=ht.openPrice,
    )
    draft = _Draft(trade)
    _apply_borrowing(draft, ht.perpBorrowing)
    if ht.openCollateralAmount is not None:
        draft.collateral_raw = int(ht.openCollateralAmount)
    _apply_history(draft, item, prices)
    return draft


def _apply_history(draft: _Draft, item: KeeperTradeHistoryItem, prices: PriceContext) -> None:
    trade = draft.trade
    ht = item.trade
    block_ts = item.block.block_ts if item.block else None

    _fill(trade, "direction", _direction(ht.isLong))
    _fill(trade, "leverage", ht.leverage)
    _fill(trade, "open_price", ht.openPrice)
    if draft.collateral_raw is None and ht.openCollateralAmount is not None:
        draft.collateral_raw = int(ht.openCollateralAmount)
    _apply_borrowing(draft, ht.perpBorrowing)
    if item.collateralPrice is not None and draft.historical_price is None:
        draft.historical_price = item.collateralPrice

    if item.is_open:
        _fill(trade, "opened_at", block_ts)
        return
    if not item.is_close:
        return

    trade.mark_closed(block_ts)
    _fill(trade, "close_price", ht.closePrice or None)
    _fill(trade, "tx_hash", item.txHash)
    _apply_pnl(
        trade,
        item.realizedPnlPct,
        prices.to_usd(item.realizedPnlCollateral, trade.collateral_symbol, item.collateralPrice),
        PnlSource.TRADE_HISTORY,
    )


# --- log-scan events ---


def group_events(candidate: TxCandidate) -> dict[str, list[ProtocolEvent]]:
    """Split a transaction's events by trade identity.

    Events without a trade index inherit the one seen elsewhere in the same
    transaction, else fall back to the transaction hash.
    """
    tx_index = next((e.trade_index for e in candidate.events if e.trade_index is not None), None)
    groups: dict[str, list[ProtocolEvent]] = {}
    for event in sorted(candidate.events, key=lambda e: e.log_index):
        if event.event_type == EventType.UNKNOWN:
            continue
        index = event.trade_index or tx_index
        identity = trade_identity(index) if index is not None else (event.tx_hash or candidate.tx_hash)
        groups.setdefault(identity, []).append(event)
    return groups


def _apply_events(draft: _Draft, events: list[ProtocolEvent], candidate: TxCandidate) -> None:
    trade = draft.trade
    for event in events:
        _fill(trade, "direction", _direction(event.long))
        _fill(trade, "leverage", event.leverage)
        _fill(trade, "collateral_symbol", event.collateral_token)
        if draft.collateral_raw is None and event.collateral is not None:
            draft.collateral_raw = event.collateral
        if draft.market_id is None and event.market_index is not None:
            draft.market_id = event.market_index

        if event.is_open:
            _fill(trade, "open_price", event.open_price)
            _fill(trade, "opened_at", candidate.timestamp)

        if event.is_fee:
            apply_fee_event(draft.log_fees, event)

        if event.is_close:
            trade.mark_closed(candidate.timestamp)
            _fill(trade, "close_price", event.close_price)
            if event.amount_received is not None:
                draft.amount_received_raw = event.amount_received
            if event.event_type == EventType.USER_CLOSE_ORDER:
                _apply_pnl(trade, event.profit_pct, None, PnlSource.USER_CLOSE_ORDER)


def _new_log_draft(identity: str, events: list[ProtocolEvent], candidate: TxCandidate) -> _Draft | None:
    if not any(e.is_open or e.is_close for e in events):
        return None
    index = next((e.trade_index for e in events if e.trade_index is not None), None)
    return _Draft(Trade(identity=identity, trade_index=index, tx_hash=candidate.tx_hash))


# --- finalize ---


def _resolve_fees(draft: _Draft, resolved: FeeBreakdown | None, prices: PriceContext) -> None:
    trade = draft.trade
    total = None
    for component in FEE_COMPONENTS:
        raw = None
        for source in (resolved, draft.log_fees, draft.state_fees):
            if source is not None and getattr(source, component) is not None:
                raw = getattr(source, component)
                break
        usd = prices.to_usd(raw, trade.collateral_symbol, draft.historical_price)
        setattr(trade, f"{component}_usd", usd)
        if usd is not None:
            total = usd if total is None else total + usd
    trade.total_fees_usd = total


def _finalize(draft: _Draft, resolved: FeeBreakdown | None, prices: PriceContext) -> Trade:
    trade = draft.trade

    if trade.collateral_usd is None and draft.collateral_raw is not None:
        trade.collateral_usd = prices.to_usd(draft.collateral_raw, trade.collateral_symbol, draft.historical_price)

    if trade.pair == UNKNOWN_PAIR:
        market = prices.market_by_id(draft.market_id)
        trade.pair = market.symbol if market is not None else prices.infer_pair(trade.open_price)

    _resolve_fees(draft, resolved, prices)

    if trade.lifecycle_state == LifecycleState.CLOSED:
        trade.unrealized_pnl_pct = None
        trade.unrealized_pnl_usd = None
        received = prices.to_usd(draft.amount_received_raw, trade.collateral_symbol, draft.historical_price)
        collateral = trade.collateral_usd
        if received is not None and collateral:
            if trade.pnl_amount_usd is None:
                trade.pnl_amount_usd = received - collateral
            # Rough estimate, not the trade's reported P&L.
            _apply_pnl(trade, (received - collateral) / collateral, None, PnlSource.ESTIMATE)
        if collateral is not None and trade.pnl_amount_usd is not None:
            trade.amount_received_usd = collateral + trade.pnl_amount_usd
        else:
            trade.amount_received_usd = received
    return trade


def _sort_key(trade: Trade) -> datetime:
    return trade.activity_at or _EPOCH


def reconcile(
    keeper: KeeperTrades | None,
    candidates: list[TxCandidate] | None = None,
    fee_map: dict[str, FeeBreakdown] | None = None,
    prices: PriceContext | None = None,
) -> list[Trade]:
    """Merge every source into one trade per identity, newest activity first.

    Pure over its inputs: the same inputs always give the same list.
    """
    prices = prices or PriceContext()
    fee_map = fee_map or {}
    drafts: dict[str, _Draft] = {}

    if keeper is not None:
        for kt in keeper.trades:
            identity = trade_identity(kt.id)
            if identity in drafts:
                continue
            drafts[identity] = _seed_from_point_in_time(kt, prices)

        for item in keeper.history:
            identity = trade_identity(item.trade.id)
            draft = drafts.get(identity)
            if draft is not None:
                _apply_history(draft, item, prices)
            elif item.is_close:
                drafts[identity] = _synthesize_from_history(item, prices)

    # Replay in chain order so lifecycle timestamps land on the right side.
    ordered = sorted(
        candidates or [],
        key=lambda c: (c.timestamp or _EPOCH, c.block_number or 0),
    )
    for candidate in ordered:
        for identity, events in group_events(candidate).items():
            draft = drafts.get(identity)
            if draft is None:
                draft = _new_log_draft(identity, events, candidate)
                if draft is None:
                    continue
                drafts[identity] = draft
            _apply_events(draft, events, candidate)

    trades = [_finalize(draft, fee_map.get(identity), prices) for identity, draft in drafts.items()]
    trades.sort(key=_sort_key, reverse=True)

    logger.debug(
        "trades_reconciled",
        total=len(trades),
        open=sum(1 for t in trades if not t.is_closed),
        with_resolved_fees=sum(1 for identity in drafts if identity in fee_map),
    )
    return trades
