"""Authenticated JSON-RPC transport for a bundle relay."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import encode_hex, keccak

from ..config import settings
from ..core.errors import RateLimitError, RelayTransportError


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Flashbots-Signature"


class RelayProvider:
    """Thin wrapper around a relay's JSON-RPC endpoint.

    Every request body is signed with ``signing_key``. That key only
    identifies the searcher to the relay (reputation/priority); it should
    never hold funds.
    """

    def __init__(
        self,
        signing_key: Optional[str] = None,
        *,
        relay_url: Optional[str] = None,
        timeout_s: Optional[int] = None,
        max_rate_limit_retries: Optional[int] = None,
        rate_limit_backoff_s: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        key = signing_key or settings.relay_signing_key
        if not key:
            raise ValueError("A relay signing key is required to authenticate relay requests")
        self._account = Account.from_key(key)
        self.relay_url = (relay_url or settings.relay_url).rstrip("/")
        self.timeout_s = timeout_s or settings.request_timeout_seconds
        self.max_rate_limit_retries = (
            settings.relay_rate_limit_retries if max_rate_limit_retries is None else max_rate_limit_retries
        )
        self.rate_limit_backoff_s = (
            settings.relay_rate_limit_backoff_seconds if rate_limit_backoff_s is None else rate_limit_backoff_s
        )
        self._client = client
        # Unique and increasing per provider instance only
        self._ids = itertools.count(1)

    @property
    def signer_address(self) -> str:
        return self._account.address

    def _headers(self, body: str) -> Dict[str, str]:
        message = encode_defunct(text=encode_hex(keccak(text=body)))
        signature = encode_hex(self._account.sign_message(message).signature)
        return {
            "accept": "application/json",
            "content-type": "application/json",
            "user-agent": "bundlecast/0.1",
            SIGNATURE_HEADER: f"{self._account.address}:{signature}",
        }

    def build_request(self, method: str, params: List[Any]) -> Dict[str, Any]:
        """Encode and sign one JSON-RPC request; returns body and headers."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        body = json.dumps(payload)
        return {"payload": payload, "body": body, "headers": self._headers(body)}

    async def _post(self, body: str, headers: Dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.relay_url, content=body, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            return await client.post(self.relay_url, content=body, headers=headers)

    def _retry_after(self, response: httpx.Response) -> float:
        header = response.headers.get("retry-after")
        if header:
            try:
                return max(float(header), 0.0)
            except ValueError:
                logger.warning(f"Ignoring unparsable Retry-After header: {header!r}")
        return self.rate_limit_backoff_s

    async def call(self, method: str, params: List[Any]) -> Dict[str, Any]:
        """Send a signed request and return the JSON-RPC envelope.

        The envelope holds either ``result`` or ``error``; relay-level errors
        are returned, not raised.

        Raises:
            RelayTransportError: network failure, non-2xx status or bad body
            RateLimitError: still rate-limited after the allowed backoffs
        """
        request = self.build_request(method, params)
        logger.debug(f"Relay request {method} id={request['payload']['id']}")

        attempts = 0
        while True:
            try:
                response = await self._post(request["body"], request["headers"])
            except httpx.HTTPError as exc:
                raise RelayTransportError(f"{method} failed: {exc}") from exc

            if response.status_code != 429:
                break

            retry_after = self._retry_after(response)
            if attempts >= self.max_rate_limit_retries:
                raise RateLimitError(
                    f"{method} still rate limited after {attempts} retries",
                    retry_after=retry_after,
                )
            attempts += 1
            logger.warning(f"Relay rate limited {method}; retrying in {retry_after}s ({attempts}/{self.max_rate_limit_retries})")
            await asyncio.sleep(retry_after)

        if response.is_error:
            raise RelayTransportError(
                f"{method} failed with HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            envelope = response.json()
        except ValueError as exc:
            raise RelayTransportError(
                f"{method} returned a non-JSON body",
                status_code=response.status_code,
            ) from exc

        if not isinstance(envelope, dict) or ("result" not in envelope and "error" not in envelope):
            raise RelayTransportError(
                f"{method} returned a body without result or error",
                status_code=response.status_code,
            )

        return envelope
