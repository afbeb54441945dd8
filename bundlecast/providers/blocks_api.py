"""Async client for the relay's public blocks index."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..core.errors import RelayTransportError


class BlocksApiProvider:
    """Reads which bundles (and their transactions) landed in recent blocks.

    Each transaction row carries ``transaction_hash``, ``bundle_index``,
    ``gas_used``, ``coinbase_transfer`` and ``total_miner_reward``; rows are
    ordered by position in the block.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout_s: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = (base_url or settings.blocks_api_url).rstrip("/")
        self.timeout_s = timeout_s or settings.request_timeout_seconds
        self._client = client

    async def _get(self, path: str, params: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(f"{self.base_url}{path}", params=params)
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_s) as client:
            return await client.get(path, params=params)

    async def get_block(self, block_number: int) -> Dict[str, Any]:
        """Return ``{"latest_block_number": int, "blocks": [...]}`` for one block."""
        try:
            response = await self._get("/v1/blocks", {"block_number": block_number})
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise RelayTransportError(
                f"Blocks index returned HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise RelayTransportError(f"Blocks index request failed: {exc}") from exc
        except ValueError as exc:
            raise RelayTransportError("Blocks index returned a non-JSON body") from exc

        return {
            "latest_block_number": int(payload.get("latest_block_number") or 0),
            "blocks": payload.get("blocks") or [],
        }
