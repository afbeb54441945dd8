"""
Bundle signing with per-account nonce sequencing.

Turns a mixed list of pre-signed and to-be-signed transactions into one
ordered SignedBundle whose nonces match the order the transactions will
execute in.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from eth_account import Account
from eth_utils import encode_hex, to_checksum_address

from bundlecast.config import settings
from bundlecast.core.errors import InvalidNonceError
from bundlecast.providers.base import ChainStateProvider, TransactionSigner

from .codec import decode_signed_transaction
from .models import BundleItem, RawItem, SignedBundle, SignedBundleEntry, UnsignedItem


logger = logging.getLogger(__name__)


class LocalAccountSigner(TransactionSigner):
    """Signs with a private key held in process; gas comes from the chain."""

    def __init__(
        self,
        private_key: str,
        chain: ChainStateProvider,
        chain_id: Optional[int] = None,
    ):
        self._account = Account.from_key(private_key)
        self._chain = chain
        self.chain_id = chain_id

    @property
    def address(self) -> str:
        return self._account.address

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return await self._chain.estimate_gas({**tx, "from": self.address})

    async def sign_transaction(self, tx: Dict[str, Any]) -> str:
        if self.chain_id is not None and "chainId" not in tx:
            tx = {**tx, "chainId": self.chain_id}
        signed = self._account.sign_transaction(tx)
        return encode_hex(signed.raw_transaction)


def _check_explicit_nonce(nonce: Any) -> None:
    if nonce is None:
        return
    if isinstance(nonce, bool) or not isinstance(nonce, int):
        raise InvalidNonceError(f"Bad nonce {nonce!r}: explicit nonces must be integers")
    if nonce < 0:
        raise InvalidNonceError(f"Bad nonce {nonce}: nonces cannot be negative")


class BundleSigner:
    """
    Signs bundles against chain state.

    The nonce map lives only for one ``sign_bundle`` call. Pre-signed
    items pin their account's next nonce to ``nonce + 1``; unsigned items
    continue from there, or from the on-chain count the first time an
    account appears.
    """

    def __init__(
        self,
        chain: ChainStateProvider,
        nonce_block_tag: Optional[str] = None,
    ):
        self.chain = chain
        self.nonce_block_tag = nonce_block_tag or settings.nonce_block_tag

    def _validate(self, items: Sequence[BundleItem]) -> List[Optional[SignedBundleEntry]]:
        """Check every item before any network call; decode raw items once."""
        decoded: List[Optional[SignedBundleEntry]] = []
        for item in items:
            if isinstance(item, RawItem):
                decoded.append(decode_signed_transaction(item.signed_transaction))
            elif isinstance(item, UnsignedItem):
                _check_explicit_nonce(item.transaction.nonce)
                decoded.append(None)
            else:
                raise TypeError(f"Unsupported bundle item: {type(item).__name__}")
        return decoded

    async def sign_bundle(self, items: Sequence[BundleItem]) -> SignedBundle:
        """
        Sign ``items`` in order.

        Args:
            items: RawItem / UnsignedItem sequence, in execution order

        Returns:
            SignedBundle with one entry per item, input order preserved

        Raises:
            DecodeError: a raw item could not be decoded
            InvalidNonceError: an explicit nonce is not an integer
        """
        decoded = self._validate(items)
        next_nonce: Dict[str, int] = {}
        entries: List[SignedBundleEntry] = []

        for item, raw_entry in zip(items, decoded):
            if isinstance(item, RawItem):
                next_nonce[raw_entry.account] = raw_entry.nonce + 1
                entries.append(raw_entry)
                continue

            address = to_checksum_address(item.signer.address)
            intent = item.transaction
            if intent.nonce is not None:
                nonce = intent.nonce
            elif address in next_nonce:
                nonce = next_nonce[address]
            else:
                nonce = await self.chain.get_transaction_count(address, self.nonce_block_tag)
            next_nonce[address] = nonce + 1

            tx = intent.to_tx_dict()
            tx["nonce"] = nonce
            if not intent.has_fee_fields and intent.type is None:
                # Zero gas price only works when the bundle pays the block producer via coinbase
                tx["gasPrice"] = 0
            if "gas" not in tx:
                tx["gas"] = await item.signer.estimate_gas(tx)

            signed_transaction = await item.signer.sign_transaction(tx)
            entries.append(decode_signed_transaction(signed_transaction))

        logger.info(f"Signed bundle of {len(entries)} transactions")
        return SignedBundle(entries=tuple(entries))

    async def sign_raw(self, items: Sequence[BundleItem]) -> List[str]:
        """Same as ``sign_bundle`` but returns only the raw transaction strings."""
        return (await self.sign_bundle(items)).raw_transactions
