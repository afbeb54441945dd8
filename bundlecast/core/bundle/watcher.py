"""
Block-driven resolution of submitted bundles.

Each wait owns exactly one block subscription and one deadline; nothing is
shared between concurrent waits.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Sequence, TypeVar

from bundlecast.config import settings
from bundlecast.core.errors import BundleWaitTimeout
from bundlecast.providers.base import ChainStateProvider

from .models import InclusionResolution, PrivateTransactionResolution, SignedBundleEntry


logger = logging.getLogger(__name__)

R = TypeVar("R")


def minimum_nonce_by_account(entries: Sequence[SignedBundleEntry]) -> Dict[str, int]:
    """Lowest submitted nonce per account, ignoring nonce-0 entries."""
    minimums: Dict[str, int] = {}
    for entry in entries:
        if entry.nonce <= 0:
            continue
        current = minimums.get(entry.account)
        if current is None or entry.nonce < current:
            minimums[entry.account] = entry.nonce
    return minimums


class InclusionWatcher:
    """
    Watches new blocks until a bundle's fate is known.

    Before the target block, a bundle becomes stale as soon as any account's
    on-chain nonce moves past the lowest nonce the bundle uses for it. At or
    after the target block, the target block's transactions decide between
    INCLUDED and PASSED_WITHOUT_INCLUSION.
    """

    def __init__(
        self,
        chain: ChainStateProvider,
        default_timeout_s: Optional[float] = None,
    ):
        self.chain = chain
        self.default_timeout_s = default_timeout_s or settings.bundle_wait_timeout_seconds

    async def _watch(
        self,
        on_block: Callable[[int], Awaitable[Optional[R]]],
        target_block: int,
        timeout_s: Optional[float],
    ) -> R:
        """Run ``on_block`` for each new block until it returns a resolution."""
        timeout = timeout_s if timeout_s is not None else self.default_timeout_s
        resolution: asyncio.Future = asyncio.get_running_loop().create_future()

        async def handler(block_number: int) -> None:
            if resolution.done():
                return
            try:
                outcome = await on_block(block_number)
            except Exception as exc:
                if not resolution.done():
                    resolution.set_exception(exc)
                return
            if outcome is not None and not resolution.done():
                resolution.set_result(outcome)

        subscription = self.chain.subscribe_blocks(handler)
        try:
            return await asyncio.wait_for(resolution, timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(f"Gave up waiting for block {target_block} after {timeout}s")
            raise BundleWaitTimeout(target_block, timeout) from exc
        finally:
            subscription.cancel()

    async def wait(
        self,
        entries: Sequence[SignedBundleEntry],
        target_block: int,
        timeout_s: Optional[float] = None,
    ) -> InclusionResolution:
        """
        Resolve a bundle submission.

        Args:
            entries: The submitted bundle entries, in bundle order
            target_block: Block the bundle was submitted for
            timeout_s: Deadline (default: settings.bundle_wait_timeout_seconds)

        Returns:
            InclusionResolution

        Raises:
            BundleWaitTimeout: no resolution before the deadline
        """
        minimum_nonces = minimum_nonce_by_account(entries)
        bundle_hashes = [entry.hash.lower() for entry in entries]

        async def on_block(block_number: int) -> Optional[InclusionResolution]:
            logger.debug(f"Block {block_number} / target {target_block}")

            if block_number < target_block:
                if not minimum_nonces:
                    return None
                accounts = list(minimum_nonces)
                counts = await asyncio.gather(
                    *(self.chain.get_transaction_count(account) for account in accounts)
                )
                for account, count in zip(accounts, counts):
                    if minimum_nonces[account] < count:
                        logger.info(
                            f"Bundle for block {target_block} invalidated: {account} "
                            f"nonce {minimum_nonces[account]} < on-chain {count}"
                        )
                        return InclusionResolution.NONCE_INVALIDATED
                return None

            block = await self.chain.get_block(target_block)
            if block is None:
                logger.debug(f"Block {target_block} not served yet at head {block_number}; retrying")
                return None
            block_hashes = {tx_hash.lower() for tx_hash in block.get("transactions", [])}
            included = all(tx_hash in block_hashes for tx_hash in bundle_hashes)
            outcome = (
                InclusionResolution.INCLUDED if included else InclusionResolution.PASSED_WITHOUT_INCLUSION
            )
            logger.info(f"Bundle for block {target_block}: {outcome.value}")
            return outcome

        return await self._watch(on_block, target_block, timeout_s)

    async def wait_for_private_transaction(
        self,
        entry: SignedBundleEntry,
        max_block_number: int,
        timeout_s: Optional[float] = None,
    ) -> PrivateTransactionResolution:
        """Resolve a private transaction: mined, or past its last valid block."""

        async def on_block(block_number: int) -> Optional[PrivateTransactionResolution]:
            receipt = await self.chain.get_transaction_receipt(entry.hash)
            if receipt is not None:
                return PrivateTransactionResolution.INCLUDED
            if block_number > max_block_number:
                return PrivateTransactionResolution.EXPIRED
            return None

        return await self._watch(on_block, max_block_number, timeout_s)
