"""Async JSON-RPC client for the execution node the bundles target."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.errors import ChainProviderError
from .base import BlockCallback, BlockSubscription, ChainStateProvider


logger = logging.getLogger(__name__)


def _rpc_quantity(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return hex(value)
    return value


class PollingBlockSubscription(BlockSubscription):
    """Polls eth_blockNumber and delivers every new block number in order."""

    def __init__(
        self,
        provider: "JsonRpcChainProvider",
        callback: BlockCallback,
        poll_interval_s: float,
    ) -> None:
        self._provider = provider
        self._callback = callback
        self._poll_interval_s = poll_interval_s
        self._cancelled = False
        self._task = asyncio.create_task(self._run())

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._task.cancel()

    async def _run(self) -> None:
        last_seen: Optional[int] = None
        while not self._cancelled:
            try:
                head = await self._provider.get_block_number()
            except (ChainProviderError, httpx.HTTPError) as exc:
                logger.warning(f"Block poll failed: {exc}")
                await asyncio.sleep(self._poll_interval_s)
                continue

            first = head if last_seen is None else last_seen + 1
            for block_number in range(first, head + 1):
                if self._cancelled:
                    return
                try:
                    await self._callback(block_number)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.error(f"Block callback failed for block {block_number}: {exc}")
                last_seen = block_number

            await asyncio.sleep(self._poll_interval_s)


class JsonRpcChainProvider(ChainStateProvider):
    """Chain state over plain JSON-RPC (geth/reth/erigon compatible)."""

    name = "jsonrpc"

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        *,
        poll_interval_s: Optional[float] = None,
        timeout_s: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rpc_url = rpc_url or settings.eth_rpc_url
        self.poll_interval_s = poll_interval_s or settings.block_poll_interval_seconds
        self.timeout_s = timeout_s or settings.request_timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.timeout_s)
        self._request_id = 0

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """Make an RPC call to the node."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": self._request_id,
        }

        response = await self._client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        result = response.json()

        if "error" in result:
            error = result["error"] or {}
            raise ChainProviderError(
                f"RPC error from {method}: {error.get('message', error)}",
                code=error.get("code") if isinstance(error, dict) else None,
            )

        return result.get("result")

    async def get_block_number(self) -> int:
        return int(await self._rpc_call("eth_blockNumber", []), 16)

    async def get_transaction_count(self, address: str, block_tag: str = "latest") -> int:
        count = await self._rpc_call("eth_getTransactionCount", [address, block_tag])
        return int(count, 16)

    async def get_block(self, block_number: int) -> Optional[Dict[str, Any]]:
        block = await self._rpc_call("eth_getBlockByNumber", [hex(block_number), False])
        if block is None:
            return None
        normalized = dict(block)
        for key in ("number", "timestamp", "gasUsed", "gasLimit", "baseFeePerGas"):
            if key in normalized and normalized[key] is not None:
                normalized[key] = int(normalized[key], 16)
        normalized.setdefault("baseFeePerGas", 0)
        normalized["transactions"] = [
            tx if isinstance(tx, str) else tx.get("hash") for tx in block.get("transactions") or []
        ]
        return normalized

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self._rpc_call("eth_getTransactionReceipt", [tx_hash])

    async def get_raw_transaction(self, tx_hash: str) -> Optional[str]:
        return await self._rpc_call("eth_getRawTransactionByHash", [tx_hash])

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        call_obj = {key: _rpc_quantity(value) for key, value in tx.items()}
        gas_hex = await self._rpc_call("eth_estimateGas", [call_obj])
        return int(gas_hex, 16)

    def subscribe_blocks(self, callback: BlockCallback) -> BlockSubscription:
        return PollingBlockSubscription(self, callback, self.poll_interval_s)

    async def aclose(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            await self._client.aclose()
