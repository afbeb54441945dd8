"""
Conflict diagnosis for bundles that missed their target block.

Replays the bundles that actually landed in the block, one at a time and in
block order, in front of the target bundle, and reports the first bundle
after which the target bundle behaves differently from its top-of-block
simulation.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from bundlecast.core.errors import BlockNotIndexedError, DiagnosisSimulationError, TargetBundleRevertsError
from bundlecast.providers.base import ChainStateProvider
from bundlecast.providers.blocks_api import BlocksApiProvider

from .models import (
    BundleGasPricing,
    ConflictRecord,
    ConflictType,
    SignedBundle,
    SimulationFailure,
    SimulationSuccess,
    TransactionSimulation,
    entries_of,
    to_int,
)
from .relay_client import RelayClient


logger = logging.getLogger(__name__)

NONCE_TOO_LOW = "nonce too low"

PricedTransaction = Union[TransactionSimulation, Dict[str, Any]]


def calculate_bundle_pricing(transactions: Sequence[PricedTransaction], base_fee: int) -> BundleGasPricing:
    """Aggregate gas and payments for simulated or blocks-index transactions."""
    gas_used = 0
    gas_fees_paid_by_searcher = 0
    priority_fees_received_by_miner = 0
    eth_sent_to_coinbase = 0

    for tx in transactions:
        if isinstance(tx, TransactionSimulation):
            tx_gas_used = tx.gas_used
            tx_coinbase_transfer = tx.eth_sent_to_coinbase
            tx_miner_reward = tx.coinbase_diff
        else:
            tx_gas_used = to_int(tx.get("gas_used"))
            tx_coinbase_transfer = to_int(tx.get("coinbase_transfer"))
            tx_miner_reward = to_int(tx.get("total_miner_reward"))

        priority_fee = tx_miner_reward - tx_coinbase_transfer
        gas_used += tx_gas_used
        gas_fees_paid_by_searcher += base_fee * tx_gas_used + priority_fee
        priority_fees_received_by_miner += priority_fee
        eth_sent_to_coinbase += tx_coinbase_transfer

    if gas_used > 0:
        effective_gas_price = (eth_sent_to_coinbase + gas_fees_paid_by_searcher) // gas_used
        effective_priority_fee = (eth_sent_to_coinbase + priority_fees_received_by_miner) // gas_used
    else:
        effective_gas_price = 0
        effective_priority_fee = 0

    return BundleGasPricing(
        tx_count=len(transactions),
        gas_used=gas_used,
        gas_fees_paid_by_searcher=gas_fees_paid_by_searcher,
        priority_fees_received_by_miner=priority_fees_received_by_miner,
        eth_sent_to_coinbase=eth_sent_to_coinbase,
        effective_gas_price_to_searcher=effective_gas_price,
        effective_priority_fee_to_miner=effective_priority_fee,
    )


def compare_to_baseline(
    target_results: Sequence[TransactionSimulation],
    baseline_results: Sequence[TransactionSimulation],
) -> Optional[ConflictType]:
    """First per-transaction divergence between two runs of the same bundle."""
    for replayed, baseline in zip(target_results, baseline_results):
        if replayed.failed != baseline.failed:
            return ConflictType.EXECUTION_ERROR
        if replayed.eth_sent_to_coinbase != baseline.eth_sent_to_coinbase:
            return ConflictType.COINBASE_PAYMENT
        if replayed.gas_used != baseline.gas_used:
            return ConflictType.GAS_USED_MISMATCH
    return None


def group_by_bundle(transactions: Sequence[Dict[str, Any]]) -> List[List[Dict[str, Any]]]:
    """Blocks-index rows grouped by ``bundle_index`` in increasing order."""
    groups: Dict[int, List[Dict[str, Any]]] = {}
    for tx in transactions:
        bundle_index = tx.get("bundle_index")
        if bundle_index is None:
            continue
        groups.setdefault(int(bundle_index), []).append(tx)
    return [groups[index] for index in sorted(groups)]


class ConflictDiagnoser:
    """Explains why a bundle lost its target block."""

    def __init__(
        self,
        relay_client: RelayClient,
        blocks_api: BlocksApiProvider,
        chain: Optional[ChainStateProvider] = None,
    ):
        self.relay_client = relay_client
        self.blocks_api = blocks_api
        self.chain = chain or relay_client.chain

    async def _raw_transactions(self, bundle_transactions: Sequence[Dict[str, Any]]) -> List[str]:
        hashes = [tx["transaction_hash"] for tx in bundle_transactions]
        raws = await asyncio.gather(*(self.chain.get_raw_transaction(tx_hash) for tx_hash in hashes))
        for tx_hash, raw in zip(hashes, raws):
            if not raw:
                raise DiagnosisSimulationError(f"Could not fetch raw transaction {tx_hash}")
        return list(raws)

    async def _base_fee(self, target_block: int) -> int:
        block = await self.chain.get_block(target_block)
        return to_int((block or {}).get("baseFeePerGas"))

    async def diagnose_without_pricing(
        self,
        bundle: Union[SignedBundle, Sequence[str]],
        target_block: int,
    ) -> ConflictRecord:
        """
        Classify the conflict without touching the target block's header.

        Raises:
            BlockNotIndexedError: blocks index has not processed ``target_block``
            TargetBundleRevertsError: the bundle fails on its own at the top of the block
            DiagnosisSimulationError: a replay failed for a non-nonce reason
        """
        with structlog.contextvars.bound_contextvars(target_block=target_block):
            return await self._diagnose(bundle, target_block)

    async def _diagnose(
        self,
        bundle: Union[SignedBundle, Sequence[str]],
        target_block: int,
    ) -> ConflictRecord:
        target_raw = [entry.signed_transaction for entry in entries_of(bundle)]
        state_block = target_block - 1

        initial, indexed = await asyncio.gather(
            self.relay_client.simulate(target_raw, target_block, state_block),
            self.blocks_api.get_block(target_block),
        )

        if indexed["latest_block_number"] < target_block:
            raise BlockNotIndexedError(target_block, indexed["latest_block_number"])
        if isinstance(initial, SimulationFailure):
            raise TargetBundleRevertsError(f"Target bundle simulation failed: {initial.message}")
        if initial.first_revert is not None:
            raise TargetBundleRevertsError(
                f"Target bundle tx {initial.first_revert_index} reverts at the top of block {target_block}"
            )

        block_details = next(
            (block for block in indexed["blocks"] if to_int(block.get("block_number")) == target_block),
            None,
        )
        bundles = group_by_bundle((block_details or {}).get("transactions") or [])
        if not bundles:
            logger.info(f"Block {target_block} has no bundles to conflict with")
            return ConflictRecord(conflict_type=ConflictType.NO_COMPETING_BUNDLES, target_simulation=initial)

        prior_transactions: List[str] = []
        for bundle_transactions in bundles:
            bundle_index = to_int(bundle_transactions[0]["bundle_index"])
            prior_transactions.extend(await self._raw_transactions(bundle_transactions))

            replay = await self.relay_client.simulate(
                prior_transactions + target_raw, target_block, state_block
            )
            if isinstance(replay, SimulationFailure):
                if NONCE_TOO_LOW in replay.message.lower():
                    conflict_type: Optional[ConflictType] = ConflictType.NONCE_COLLISION
                else:
                    raise DiagnosisSimulationError(
                        f"Replay through bundle {bundle_index} failed: {replay.message}"
                    )
            else:
                expected = len(prior_transactions) + len(target_raw)
                if len(replay.results) != expected:
                    raise DiagnosisSimulationError(
                        f"Replay through bundle {bundle_index} returned {len(replay.results)} results, expected {expected}"
                    )
                conflict_type = compare_to_baseline(replay.results[len(prior_transactions):], initial.results)

            if conflict_type is not None:
                logger.info(f"Bundle conflicts with bundle {bundle_index} of block {target_block}: {conflict_type.value}")
                return ConflictRecord(
                    conflict_type=conflict_type,
                    target_simulation=initial,
                    conflicting_entries=tuple(bundle_transactions),
                    conflicting_bundle_index=bundle_index,
                )

        logger.info(f"Bundle is compatible with everything in block {target_block}")
        return ConflictRecord(conflict_type=ConflictType.NO_CONFLICT, target_simulation=initial)

    async def diagnose(
        self,
        bundle: Union[SignedBundle, Sequence[str]],
        target_block: int,
    ) -> ConflictRecord:
        """Classify the conflict and attach gas pricing for both bundles."""
        record = await self.diagnose_without_pricing(bundle, target_block)
        base_fee = await self._base_fee(target_block)

        conflicting_pricing = None
        if record.conflicting_entries:
            conflicting_pricing = calculate_bundle_pricing(record.conflicting_entries, base_fee)

        return replace(
            record,
            target_bundle_gas_pricing=calculate_bundle_pricing(record.target_simulation.results, base_fee),
            conflicting_bundle_gas_pricing=conflicting_pricing,
        )
