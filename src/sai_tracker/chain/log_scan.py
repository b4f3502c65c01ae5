"""Log-scan adapter: find a trader's transactions by walking perp contract logs."""

from __future__ import annotations

from datetime import datetime

import structlog

from sai_tracker.chain.decoder import decode_log, decode_text, quantity
from sai_tracker.chain.rpc import RpcClient
from sai_tracker.models.chain import TxCandidate

logger = structlog.get_logger()

MAX_CHUNK_BLOCKS = 9_000  # node rejects eth_getLogs spans over 10k blocks


def block_chunks(from_block: int, to_block: int, chunk_size: int = MAX_CHUNK_BLOCKS) -> list[tuple[int, int]]:
    """Inclusive [start, end] windows covering from_block..to_block."""
    chunks = []
    start = from_block
    while start <= to_block:
        end = min(start + chunk_size - 1, to_block)
        chunks.append((start, end))
        start = end + 1
    return chunks


def address_needles(trader_address: str) -> tuple[str, ...]:
    """Payloads spell the trader with and without 0x, in any case."""
    lowered = trader_address.lower()
    bare = lowered[2:] if lowered.startswith("0x") else lowered
    return ("0x" + bare, bare)


class LogScanAdapter:
    def __init__(
        self,
        rpc: RpcClient,
        contract_address: str | None = None,
        topics: list[str] | None = None,
        chunk_size: int = MAX_CHUNK_BLOCKS,
        receipt_batch_size: int = 10,
        receipt_timeout: float | None = None,
    ) -> None:
        self.rpc = rpc
        self.contract_address = contract_address or None
        self.topics = topics or None
        self.chunk_size = min(chunk_size, MAX_CHUNK_BLOCKS)
        self.receipt_batch_size = receipt_batch_size
        self.receipt_timeout = receipt_timeout

    async def scan_for_trader(
        self,
        trader_address: str,
        from_block: int | None = None,
        to_block: int | None = None,
        lookback_blocks: int = 45_000,
    ) -> list[TxCandidate]:
        """Decoded transactions touching the trader within the block range.

        Best-effort: a failed chunk or receipt is logged and skipped.
        """
        if to_block is None:
            to_block = await self.rpc.block_number()
        if from_block is None:
            from_block = max(0, to_block - lookback_blocks)

        tx_hashes = await self._matching_tx_hashes(trader_address, from_block, to_block)
        if not tx_hashes:
            return []

        lookups = await self.rpc.lookup_receipts(
            tx_hashes, batch_size=self.receipt_batch_size, timeout=self.receipt_timeout
        )
        block_times: dict[int, datetime | None] = {}
        candidates = []
        for lookup in lookups:
            if not lookup.found:
                continue
            candidate = await self._build_candidate(lookup.tx_hash, lookup.receipt, block_times)
            if candidate.events:
                candidates.append(candidate)

        logger.info(
            "log_scan_complete",
            trader=trader_address,
            from_block=from_block,
            to_block=to_block,
            matched_txs=len(tx_hashes),
            candidates=len(candidates),
        )
        return candidates

    async def _matching_tx_hashes(self, trader_address: str, from_block: int, to_block: int) -> list[str]:
        needles = address_needles(trader_address)
        seen: set[str] = set()
        ordered: list[str] = []
        # One chunk in flight at a time.
        for start, end in block_chunks(from_block, to_block, self.chunk_size):
            try:
                logs = await self.rpc.get_logs(start, end, self.contract_address, self.topics)
            except Exception as e:
                logger.warning("log_chunk_failed", from_block=start, to_block=end, error=str(e))
                continue
            for log in logs:
                tx_hash = log.get("transactionHash")
                if not tx_hash or tx_hash in seen:
                    continue
                text = decode_text(log.get("data") or "").lower()
                if any(needle in text for needle in needles):
                    seen.add(tx_hash)
                    ordered.append(tx_hash)
        return ordered

    async def _build_candidate(
        self,
        tx_hash: str,
        receipt: dict,
        block_times: dict[int, datetime | None],
    ) -> TxCandidate:
        """Decode every log in the receipt; one trade spans several sub-events."""
        events = []
        for log in receipt.get("logs") or []:
            if self.contract_address and (log.get("address") or "").lower() != self.contract_address.lower():
                continue
            log = {**log, "transactionHash": log.get("transactionHash") or tx_hash}
            event = decode_log(log)
            if event is None:
                logger.debug("log_skipped_undecodable", tx_hash=tx_hash)
                continue
            events.append(event)

        block_number = quantity(receipt.get("blockNumber"))
        timestamp = None
        if block_number is not None:
            if block_number not in block_times:
                try:
                    block_times[block_number] = await self.rpc.get_block_timestamp(block_number)
                except Exception as e:
                    logger.warning("block_timestamp_failed", block=block_number, error=str(e))
                    block_times[block_number] = None
            timestamp = block_times[block_number]

        return TxCandidate(tx_hash=tx_hash, block_number=block_number, timestamp=timestamp, events=events)
