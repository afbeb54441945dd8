"""Shared fakes for bundle lifecycle tests."""

from typing import Any, Dict, List, Optional

import pytest
from eth_account import Account
from eth_utils import encode_hex

from bundlecast.providers.base import BlockCallback, BlockSubscription, ChainStateProvider


SEARCHER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
OTHER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
RELAY_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"

RECIPIENT = "0x2222222222222222222222222222222222222222"


def sign_legacy(private_key: str, nonce: int, value: int = 0, gas_price: int = 0) -> str:
    signed = Account.sign_transaction(
        {
            "to": RECIPIENT,
            "value": value,
            "data": "0x",
            "nonce": nonce,
            "gas": 21000,
            "gasPrice": gas_price,
            "chainId": 1,
        },
        private_key,
    )
    return encode_hex(signed.raw_transaction)


class FakeSubscription(BlockSubscription):
    def __init__(self, callback: BlockCallback):
        self.callback = callback
        self.cancel_calls = 0
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self.cancel_calls += 1
        self._cancelled = True


class FakeChain(ChainStateProvider):
    """In-memory chain; tests push blocks with ``emit_block``."""

    def __init__(
        self,
        nonces: Optional[Dict[str, int]] = None,
        blocks: Optional[Dict[int, Dict[str, Any]]] = None,
        raw_transactions: Optional[Dict[str, str]] = None,
        receipts: Optional[Dict[str, Dict[str, Any]]] = None,
        head: int = 100,
        gas_estimate: int = 21000,
    ):
        self.nonces = dict(nonces or {})
        self.blocks = dict(blocks or {})
        self.raw_transactions = dict(raw_transactions or {})
        self.receipts = dict(receipts or {})
        self.head = head
        self.gas_estimate = gas_estimate
        self.nonce_calls: List[tuple] = []
        self.estimate_calls: List[Dict[str, Any]] = []
        self.subscriptions: List[FakeSubscription] = []

    async def get_block_number(self) -> int:
        return self.head

    async def get_transaction_count(self, address: str, block_tag: str = "latest") -> int:
        self.nonce_calls.append((address, block_tag))
        return self.nonces.get(address, 0)

    async def get_block(self, block_number: int) -> Optional[Dict[str, Any]]:
        return self.blocks.get(block_number)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self.receipts.get(tx_hash)

    async def get_raw_transaction(self, tx_hash: str) -> Optional[str]:
        return self.raw_transactions.get(tx_hash)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        self.estimate_calls.append(tx)
        return self.gas_estimate

    def subscribe_blocks(self, callback: BlockCallback) -> BlockSubscription:
        subscription = FakeSubscription(callback)
        self.subscriptions.append(subscription)
        return subscription

    async def emit_block(self, block_number: int) -> None:
        self.head = block_number
        for subscription in list(self.subscriptions):
            if not subscription.cancelled:
                await subscription.callback(block_number)


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def searcher() -> str:
    return Account.from_key(SEARCHER_KEY).address


@pytest.fixture
def other() -> str:
    return Account.from_key(OTHER_KEY).address
