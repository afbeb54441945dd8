"""
Tests for block-driven bundle resolution.
"""

import asyncio

import pytest

from bundlecast.core.bundle.models import (
    InclusionResolution,
    PrivateTransactionResolution,
    SignedBundleEntry,
)
from bundlecast.core.bundle.watcher import InclusionWatcher, minimum_nonce_by_account
from bundlecast.core.errors import BundleWaitTimeout, ChainProviderError

from conftest import FakeChain


ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x3333333333333333333333333333333333333333"


def _entry(tx_hash: str, account: str, nonce: int) -> SignedBundleEntry:
    return SignedBundleEntry(signed_transaction="0x", hash=tx_hash, account=account, nonce=nonce)


ENTRIES = [
    _entry("0xaa", ALICE, 4),
    _entry("0xbb", BOB, 10),
    _entry("0xcc", ALICE, 5),
]


async def _start(watcher, entries, target, timeout_s=5.0):
    task = asyncio.create_task(watcher.wait(entries, target, timeout_s=timeout_s))
    # let the watcher subscribe before blocks are pushed
    await asyncio.sleep(0)
    return task


def test_minimum_nonce_ignores_zero_nonces():
    entries = ENTRIES + [_entry("0xdd", "0x4444444444444444444444444444444444444444", 0)]

    assert minimum_nonce_by_account(entries) == {ALICE: 4, BOB: 10}


@pytest.mark.asyncio
async def test_included_when_target_block_has_every_hash():
    chain = FakeChain(
        nonces={ALICE: 4, BOB: 10},
        blocks={12: {"transactions": ["0x01", "0xAA", "0xbb", "0xcc", "0x02"]}},
    )
    task = await _start(InclusionWatcher(chain), ENTRIES, 12)

    await chain.emit_block(11)
    assert not task.done()
    await chain.emit_block(12)

    assert await task == InclusionResolution.INCLUDED
    assert chain.subscriptions[0].cancel_calls == 1


@pytest.mark.asyncio
async def test_passed_without_inclusion_when_hash_missing():
    chain = FakeChain(blocks={12: {"transactions": ["0xaa", "0xcc"]}})
    task = await _start(InclusionWatcher(chain), ENTRIES, 12)

    await chain.emit_block(12)

    assert await task == InclusionResolution.PASSED_WITHOUT_INCLUSION
    assert chain.subscriptions[0].cancel_calls == 1


@pytest.mark.asyncio
async def test_late_watch_resolves_from_later_block():
    chain = FakeChain(blocks={12: {"transactions": ["0xaa", "0xbb", "0xcc"]}})
    task = await _start(InclusionWatcher(chain), ENTRIES, 12)

    await chain.emit_block(15)

    assert await task == InclusionResolution.INCLUDED


@pytest.mark.asyncio
async def test_unserved_target_block_keeps_waiting():
    chain = FakeChain(blocks={})
    task = await _start(InclusionWatcher(chain), ENTRIES, 12)

    await chain.emit_block(12)
    assert not task.done()

    chain.blocks[12] = {"transactions": ["0xaa", "0xbb", "0xcc"]}
    await chain.emit_block(13)

    assert await task == InclusionResolution.INCLUDED
    assert chain.subscriptions[0].cancel_calls == 1


@pytest.mark.asyncio
async def test_nonce_invalidated_before_target():
    chain = FakeChain(
        nonces={ALICE: 4, BOB: 10},
        blocks={12: {"transactions": ["0xaa", "0xbb", "0xcc"]}},
    )
    task = await _start(InclusionWatcher(chain), ENTRIES, 12)

    await chain.emit_block(10)
    assert not task.done()

    chain.nonces[BOB] = 11
    await chain.emit_block(11)
    assert await task == InclusionResolution.NONCE_INVALIDATED

    # later blocks never flip the resolution
    await chain.emit_block(12)
    assert chain.subscriptions[0].cancel_calls == 1


@pytest.mark.asyncio
async def test_zero_nonce_bundle_skips_nonce_check():
    entries = [_entry("0xaa", ALICE, 0)]
    chain = FakeChain(nonces={ALICE: 50}, blocks={12: {"transactions": ["0xaa"]}})
    task = await _start(InclusionWatcher(chain), entries, 12)

    await chain.emit_block(11)
    assert chain.nonce_calls == []
    await chain.emit_block(12)

    assert await task == InclusionResolution.INCLUDED


@pytest.mark.asyncio
async def test_timeout_tears_down_subscription():
    chain = FakeChain()
    watcher = InclusionWatcher(chain)

    with pytest.raises(BundleWaitTimeout) as exc_info:
        await watcher.wait(ENTRIES, 12, timeout_s=0.01)

    assert exc_info.value.target_block == 12
    assert chain.subscriptions[0].cancel_calls == 1


@pytest.mark.asyncio
async def test_default_timeout_comes_from_watcher():
    chain = FakeChain()
    watcher = InclusionWatcher(chain, default_timeout_s=0.01)

    with pytest.raises(BundleWaitTimeout):
        await watcher.wait(ENTRIES, 12)


@pytest.mark.asyncio
async def test_chain_failure_rejects_wait_and_unsubscribes():
    chain = FakeChain()

    async def broken_block(block_number):
        raise ChainProviderError("node unavailable")

    chain.get_block = broken_block
    task = await _start(InclusionWatcher(chain), ENTRIES, 12)

    await chain.emit_block(12)

    with pytest.raises(ChainProviderError):
        await task
    assert chain.subscriptions[0].cancel_calls == 1


@pytest.mark.asyncio
async def test_concurrent_waits_are_independent():
    chain = FakeChain(
        nonces={ALICE: 4, BOB: 10},
        blocks={12: {"transactions": ["0xaa", "0xbb", "0xcc"]}, 13: {"transactions": []}},
    )
    watcher = InclusionWatcher(chain)
    first = await _start(watcher, ENTRIES, 12)
    second = await _start(watcher, ENTRIES, 13)

    await chain.emit_block(12)
    assert await first == InclusionResolution.INCLUDED
    assert not second.done()

    await chain.emit_block(13)
    assert await second == InclusionResolution.PASSED_WITHOUT_INCLUSION
    assert [sub.cancel_calls for sub in chain.subscriptions] == [1, 1]


@pytest.mark.asyncio
async def test_private_transaction_included_once_receipt_exists():
    entry = _entry("0xaa", ALICE, 4)
    chain = FakeChain()
    watcher = InclusionWatcher(chain)
    task = asyncio.create_task(watcher.wait_for_private_transaction(entry, 20, timeout_s=5))
    await asyncio.sleep(0)

    await chain.emit_block(15)
    assert not task.done()
    chain.receipts["0xaa"] = {"status": "0x1"}
    await chain.emit_block(16)

    assert await task == PrivateTransactionResolution.INCLUDED


@pytest.mark.asyncio
async def test_private_transaction_expires_after_max_block():
    entry = _entry("0xaa", ALICE, 4)
    chain = FakeChain()
    watcher = InclusionWatcher(chain)
    task = asyncio.create_task(watcher.wait_for_private_transaction(entry, 20, timeout_s=5))
    await asyncio.sleep(0)

    await chain.emit_block(20)
    assert not task.done()
    await chain.emit_block(21)

    assert await task == PrivateTransactionResolution.EXPIRED
    assert chain.subscriptions[0].cancel_calls == 1
