"""Fee resolver: pull opening/closing/trigger fees out of transaction receipts."""

from __future__ import annotations

from typing import NamedTuple

import structlog

from sai_tracker.chain.decoder import decode_log
from sai_tracker.chain.rpc import RpcClient
from sai_tracker.models.chain import FeeBreakdown, LookupStatus
from sai_tracker.models.events import EventType, ProtocolEvent, trade_identity

logger = structlog.get_logger()


class FeeRequest(NamedTuple):
    trade_id: str  # trade identity
    tx_hash: str
    is_opening: bool


class FeeResolver:
    def __init__(
        self,
        rpc: RpcClient,
        batch_size: int = 10,
        timeout: float = 10.0,
        header_bytes: int | None = 64,
    ) -> None:
        self.rpc = rpc
        self.batch_size = batch_size
        self.timeout = timeout
        self.header_bytes = header_bytes

    async def resolve_fees(self, requests: list[FeeRequest]) -> dict[str, FeeBreakdown]:
        """Map trade identity -> fees found in its receipts.

        Trades whose receipts are pruned, time out or fail simply have no
        entry (or no value for that component): unknown, never zero.
        """
        if not requests:
            return {}

        unique_hashes = list(dict.fromkeys(r.tx_hash for r in requests))
        lookups = await self.rpc.lookup_receipts(unique_hashes, batch_size=self.batch_size, timeout=self.timeout)
        by_hash = {lookup.tx_hash: lookup for lookup in lookups}

        fees: dict[str, FeeBreakdown] = {}
        stats = {status: 0 for status in LookupStatus}
        for request in dict.fromkeys(requests):
            lookup = by_hash.get(request.tx_hash)
            if lookup is None:
                continue
            stats[lookup.status] += 1
            if not lookup.found:
                continue
            events = self._decode_receipt(lookup.receipt, request.tx_hash)
            breakdown = fees.setdefault(request.trade_id, FeeBreakdown())
            for event in events:
                # A keeper tx can settle several trades; only this trade's fees count.
                if event.trade_index is not None and trade_identity(event.trade_index) != request.trade_id:
                    continue
                apply_fee_event(breakdown, event, request.is_opening)

        fees = {trade_id: b for trade_id, b in fees.items() if not b.is_empty}
        logger.info(
            "fees_resolved",
            requested=len(requests),
            resolved=len(fees),
            not_found=stats[LookupStatus.NOT_FOUND],
            timeouts=stats[LookupStatus.TIMEOUT],
            errors=stats[LookupStatus.ERROR],
        )
        return fees

    def _decode_receipt(self, receipt: dict, tx_hash: str) -> list[ProtocolEvent]:
        events = []
        for log in receipt.get("logs") or []:
            log = {**log, "transactionHash": log.get("transactionHash") or tx_hash}
            event = decode_log(log, header_bytes=self.header_bytes)
            if event is None and self.header_bytes is not None:
                event = decode_log(log)
            if event is not None and event.is_fee:
                events.append(event)
        return events


def apply_fee_event(breakdown: FeeBreakdown, event: ProtocolEvent, is_opening: bool | None = None) -> None:
    """Accumulate the fee components of one fee-processing event.

    With ``is_opening`` set, only the matching fee event kind is counted.
    """
    if event.event_type == EventType.PROCESS_OPENING_FEES and is_opening is not False:
        breakdown.add("opening_fee", event.opening_fee)
        breakdown.add("trigger_fee", event.trigger_fee)
    elif event.event_type == EventType.PROCESS_CLOSING_FEES and is_opening is not True:
        breakdown.add("closing_fee", event.closing_fee)
        breakdown.add("trigger_fee", event.trigger_fee)
        breakdown.add("borrowing_fee", event.borrowing_fee)
