"""EVM JSON-RPC client (web3 async provider) with best-effort receipt batches."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timezone
from typing import Any

import aiohttp
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import BlockNotFound, TransactionNotFound, Web3RPCError

from sai_tracker.models.chain import LookupStatus, ReceiptLookup

logger = structlog.get_logger()

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


class RpcError(Exception):
    """JSON-RPC error object returned by the node."""

    def __init__(self, method: str, error: dict | str) -> None:
        self.method = method
        self.error = error
        message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        super().__init__(f"{method}: {message}")


def to_plain(value: Any) -> Any:
    """web3 AttributeDict/HexBytes -> dicts, lists and 0x-hex strings."""
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    if isinstance(value, Mapping):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


class RpcClient:
    def __init__(self, url: str, timeout: float = 30.0, w3: AsyncWeb3 | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self.w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)})
        )

    @retry(
        retry=retry_if_exception_type(TRANSPORT_ERRORS),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.2, max=2),
        reraise=True,
    )
    async def _request(self, method: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run one provider call; node error objects surface as RpcError."""
        try:
            return await call()
        except Web3RPCError as e:
            error = (e.rpc_response or {}).get("error") or str(e)
            raise RpcError(method, error) from e

    # --- eth_* wrappers ---

    async def block_number(self) -> int:
        return int(await self._request("eth_blockNumber", lambda: self.w3.eth.block_number))

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        address: str | None = None,
        topics: list[str] | None = None,
    ) -> list[dict]:
        flt: dict = {"fromBlock": from_block, "toBlock": to_block}
        if address:
            flt["address"] = Web3.to_checksum_address(address)
        if topics:
            flt["topics"] = [topics]
        logs = await self._request("eth_getLogs", lambda: self.w3.eth.get_logs(flt))
        return [to_plain(log) for log in logs or []]

    async def get_receipt(self, tx_hash: str) -> dict | None:
        """Receipt or None; pruned and unknown transactions both return None."""
        try:
            receipt = await self._request(
                "eth_getTransactionReceipt", lambda: self.w3.eth.get_transaction_receipt(tx_hash)
            )
        except TransactionNotFound:
            return None
        return to_plain(receipt) if receipt is not None else None

    async def get_block_timestamp(self, block_number: int) -> datetime | None:
        try:
            block = await self._request("eth_getBlockByNumber", lambda: self.w3.eth.get_block(block_number))
        except BlockNotFound:
            return None
        timestamp = block.get("timestamp") if block is not None else None
        if not timestamp:
            return None
        return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)

    # --- best-effort fan-out ---

    async def lookup_receipt(self, tx_hash: str, timeout: float | None = None) -> ReceiptLookup:
        """Fetch one receipt; never raises."""
        try:
            if timeout is None:
                receipt = await self.get_receipt(tx_hash)
            else:
                receipt = await asyncio.wait_for(self.get_receipt(tx_hash), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("receipt_fetch_timeout", tx_hash=tx_hash, timeout=timeout)
            return ReceiptLookup(tx_hash=tx_hash, status=LookupStatus.TIMEOUT)
        except Exception as e:
            logger.warning("receipt_fetch_failed", tx_hash=tx_hash, error=str(e))
            return ReceiptLookup(tx_hash=tx_hash, status=LookupStatus.ERROR)
        if receipt is None:
            logger.debug("receipt_not_found", tx_hash=tx_hash)
            return ReceiptLookup(tx_hash=tx_hash, status=LookupStatus.NOT_FOUND)
        return ReceiptLookup(tx_hash=tx_hash, status=LookupStatus.FOUND, receipt=receipt)

    async def lookup_receipts(
        self,
        tx_hashes: list[str],
        batch_size: int = 10,
        timeout: float | None = None,
    ) -> list[ReceiptLookup]:
        """One result per hash, in input order.

        Batches run one after another; only ``batch_size`` requests are in
        flight at any time.
        """
        results: list[ReceiptLookup] = []
        for start in range(0, len(tx_hashes), batch_size):
            batch = tx_hashes[start : start + batch_size]
            results.extend(
                await asyncio.gather(*(self.lookup_receipt(h, timeout=timeout) for h in batch))
            )
        return results
