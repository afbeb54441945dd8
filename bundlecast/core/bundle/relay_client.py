"""
Relay client for bundle submission, simulation and stats.

Relay rejections come back as ``RelayError`` values; only transport faults
are raised (see ``RelayProvider.call``).
"""

import logging
from functools import partial
from typing import Any, Dict, List, Optional, Sequence, Union

from bundlecast.config import settings
from bundlecast.providers.base import ChainStateProvider
from bundlecast.providers.relay import RelayProvider

from .codec import decode_signed_transaction
from .models import (
    BundleItem,
    BundleOptions,
    BundleSubmission,
    PrivateTransactionResolution,
    PrivateTransactionSubmission,
    RawItem,
    RelayError,
    SignedBundle,
    SignedBundleEntry,
    SimulationFailure,
    SimulationResult,
    SimulationSuccess,
    UnsignedItem,
    entries_of,
)
from .signer import BundleSigner
from .watcher import InclusionWatcher


logger = logging.getLogger(__name__)

# How many blocks a private transaction stays eligible by default
PRIVATE_TX_DEFAULT_BLOCKS = 25

BlockTag = Union[int, str]


def _block_param(block: BlockTag) -> str:
    return hex(block) if isinstance(block, int) else block


def _coerce_options(options: Union[BundleOptions, Dict[str, Any], None]) -> BundleOptions:
    if options is None:
        return BundleOptions()
    if isinstance(options, BundleOptions):
        return options
    return BundleOptions(**options)


class RelayClient:
    """
    Submits signed bundles to a relay and hands back submission handles.

    Usage:
        client = RelayClient(RelayProvider(signing_key), JsonRpcChainProvider())
        bundle = await client.sign_bundle(items)
        submission = await client.submit(bundle, target_block)
        if isinstance(submission, RelayError):
            ...
        resolution = await submission.wait()
    """

    def __init__(
        self,
        relay: RelayProvider,
        chain: ChainStateProvider,
        *,
        signer: Optional[BundleSigner] = None,
        watcher: Optional[InclusionWatcher] = None,
        wait_timeout_s: Optional[float] = None,
    ):
        self.relay = relay
        self.chain = chain
        self.signer = signer or BundleSigner(chain)
        self.watcher = watcher or InclusionWatcher(chain)
        self.wait_timeout_s = wait_timeout_s or settings.bundle_wait_timeout_seconds

    async def sign_bundle(self, items: Sequence[BundleItem]) -> SignedBundle:
        return await self.signer.sign_bundle(items)

    async def submit(
        self,
        bundle: Union[SignedBundle, Sequence[str]],
        target_block: int,
        options: Union[BundleOptions, Dict[str, Any], None] = None,
    ) -> Union[BundleSubmission, RelayError]:
        """
        Send a signed bundle for inclusion in ``target_block``.

        A target at or below the chain head is accepted by the relay and
        simply never lands; it is not checked here.
        """
        opts = _coerce_options(options)
        entries = entries_of(bundle)
        params = {
            "txs": [entry.signed_transaction for entry in entries],
            "blockNumber": hex(target_block),
            **opts.to_params(),
        }

        envelope = await self.relay.call("eth_sendBundle", [params])
        if "error" in envelope:
            error = RelayError.from_rpc(envelope["error"])
            logger.warning(f"Relay rejected bundle for block {target_block}: {error.message}")
            return error

        result = envelope.get("result") or {}
        bundle_hash = result.get("bundleHash", "") if isinstance(result, dict) else ""
        logger.info(f"Bundle {bundle_hash} submitted for block {target_block} ({len(entries)} txs)")

        return BundleSubmission(
            bundle_hash=bundle_hash,
            target_block_number=target_block,
            entries=entries,
            _wait=partial(self._wait_bundle, entries, target_block),
            _simulate=partial(self.simulate, SignedBundle(entries=entries), target_block),
            _receipts=partial(self.fetch_receipts, entries),
        )

    send_raw_bundle = submit

    async def send_bundle(
        self,
        items: Sequence[BundleItem],
        target_block: int,
        options: Union[BundleOptions, Dict[str, Any], None] = None,
    ) -> Union[BundleSubmission, RelayError]:
        """Sign ``items`` then submit them."""
        opts = _coerce_options(options)
        signed = await self.sign_bundle(items)
        return await self.submit(signed, target_block, opts)

    async def _wait_bundle(
        self,
        entries: Sequence[SignedBundleEntry],
        target_block: int,
        timeout_s: Optional[float] = None,
    ):
        return await self.watcher.wait(entries, target_block, timeout_s or self.wait_timeout_s)

    async def cancel_bundle(self, replacement_uuid: str) -> Union[List[str], RelayError]:
        """Ask the relay to withdraw a submission; advisory only."""
        envelope = await self.relay.call("eth_cancelBundle", [{"replacementUuid": replacement_uuid}])
        if "error" in envelope:
            return RelayError.from_rpc(envelope["error"])
        logger.info(f"Cancel sent for replacement {replacement_uuid}")
        return list(envelope.get("result") or [])

    cancel = cancel_bundle

    async def simulate(
        self,
        bundle: Union[SignedBundle, Sequence[str]],
        block_tag: BlockTag,
        state_block_tag: Optional[BlockTag] = None,
        timestamp: Optional[int] = None,
        coinbase: Optional[str] = None,
    ) -> SimulationResult:
        """
        Run eth_callBundle.

        Returns a SimulationSuccess (whose per-tx results may still revert)
        or a SimulationFailure carrying the relay's message and code.
        """
        raw_transactions = bundle.raw_transactions if isinstance(bundle, SignedBundle) else list(bundle)
        params: Dict[str, Any] = {
            "txs": raw_transactions,
            "blockNumber": _block_param(block_tag),
            "stateBlockNumber": _block_param(state_block_tag) if state_block_tag is not None else "latest",
        }
        if timestamp is not None:
            params["timestamp"] = timestamp
        if coinbase is not None:
            params["coinbase"] = coinbase

        envelope = await self.relay.call("eth_callBundle", [params])
        if "error" in envelope:
            error = RelayError.from_rpc(envelope["error"])
            return SimulationFailure(message=error.message, code=error.code)

        simulation = SimulationSuccess.from_rpc(envelope.get("result") or {})
        if simulation.first_revert is not None:
            logger.info(
                f"Simulation at {params['blockNumber']}: tx {simulation.first_revert_index} "
                f"reverted ({simulation.first_revert.error or simulation.first_revert.revert})"
            )
        return simulation

    async def fetch_receipts(self, entries: Sequence[SignedBundleEntry]) -> List[Optional[Dict[str, Any]]]:
        """One receipt per entry, None where the transaction is not mined."""
        receipts = []
        for entry in entries:
            receipts.append(await self.chain.get_transaction_receipt(entry.hash))
        return receipts

    async def send_private_transaction(
        self,
        item: Union[RawItem, UnsignedItem],
        max_block_number: Optional[int] = None,
    ) -> Union[PrivateTransactionSubmission, RelayError]:
        """Send one transaction privately, valid until ``max_block_number``."""
        if isinstance(item, RawItem):
            signed_transaction = item.signed_transaction
        elif isinstance(item, UnsignedItem):
            signed_transaction = (await self.signer.sign_raw([item]))[0]
        else:
            raise TypeError(f"Unsupported transaction item: {type(item).__name__}")

        entry = decode_signed_transaction(signed_transaction)
        if max_block_number is None:
            max_block_number = await self.chain.get_block_number() + PRIVATE_TX_DEFAULT_BLOCKS

        envelope = await self.relay.call(
            "eth_sendPrivateTransaction",
            [{"tx": signed_transaction, "maxBlockNumber": hex(max_block_number)}],
        )
        if "error" in envelope:
            return RelayError.from_rpc(envelope["error"])

        logger.info(f"Private transaction {entry.hash} sent, valid until block {max_block_number}")
        return PrivateTransactionSubmission(
            transaction=entry,
            max_block_number=max_block_number,
            _wait=partial(self._wait_private, entry, max_block_number),
            _simulate=partial(self._simulate_private, entry),
            _receipts=partial(self.fetch_receipts, [entry]),
        )

    async def _wait_private(
        self,
        entry: SignedBundleEntry,
        max_block_number: int,
        timeout_s: Optional[float] = None,
    ) -> PrivateTransactionResolution:
        return await self.watcher.wait_for_private_transaction(
            entry, max_block_number, timeout_s or self.wait_timeout_s
        )

    async def _simulate_private(self, entry: SignedBundleEntry) -> SimulationResult:
        head = await self.chain.get_block_number()
        return await self.simulate(SignedBundle(entries=(entry,)), head + 1)

    async def cancel_private_transaction(self, tx_hash: str) -> Union[bool, RelayError]:
        envelope = await self.relay.call("eth_cancelPrivateTransaction", [{"txHash": tx_hash}])
        if "error" in envelope:
            return RelayError.from_rpc(envelope["error"])
        return bool(envelope.get("result"))

    async def _stats(self, method: str, params: List[Any]) -> Union[Dict[str, Any], RelayError]:
        envelope = await self.relay.call(method, params)
        if "error" in envelope:
            return RelayError.from_rpc(envelope["error"])
        return envelope.get("result") or {}

    async def get_user_stats(self, block_number: Optional[int] = None) -> Union[Dict[str, Any], RelayError]:
        block_number = block_number if block_number is not None else await self.chain.get_block_number()
        return await self._stats("flashbots_getUserStats", [hex(block_number)])

    async def get_user_stats_v2(self, block_number: Optional[int] = None) -> Union[Dict[str, Any], RelayError]:
        block_number = block_number if block_number is not None else await self.chain.get_block_number()
        return await self._stats("flashbots_getUserStatsV2", [{"blockNumber": hex(block_number)}])

    async def get_bundle_stats(self, bundle_hash: str, block_number: int) -> Union[Dict[str, Any], RelayError]:
        return await self._stats(
            "flashbots_getBundleStats",
            [{"bundleHash": bundle_hash, "blockNumber": hex(block_number)}],
        )

    async def get_bundle_stats_v2(self, bundle_hash: str, block_number: int) -> Union[Dict[str, Any], RelayError]:
        return await self._stats(
            "flashbots_getBundleStatsV2",
            [{"bundleHash": bundle_hash, "blockNumber": hex(block_number)}],
        )
