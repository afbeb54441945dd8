import asyncio
import json

import httpx
import pytest

from bundlecast.core.errors import ChainProviderError
from bundlecast.providers.chain import JsonRpcChainProvider


def _provider(handler, **kwargs) -> JsonRpcChainProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JsonRpcChainProvider("http://node.test", client=client, **kwargs)


def _rpc_handler(results):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append((body["method"], body["params"]))
        result = results[body["method"]]
        if callable(result):
            result = result(body["params"])
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    return handler, calls


@pytest.mark.asyncio
async def test_transaction_count_uses_block_tag():
    handler, calls = _rpc_handler({"eth_getTransactionCount": "0x1a"})

    count = await _provider(handler).get_transaction_count("0xabc", "pending")

    assert count == 26
    assert calls == [("eth_getTransactionCount", ["0xabc", "pending"])]


@pytest.mark.asyncio
async def test_get_block_normalizes_quantities_and_hashes():
    handler, _ = _rpc_handler(
        {
            "eth_getBlockByNumber": {
                "number": "0x10",
                "timestamp": "0x64",
                "baseFeePerGas": "0x3b9aca00",
                "transactions": ["0xaa", "0xbb"],
            }
        }
    )

    block = await _provider(handler).get_block(16)

    assert block["number"] == 16
    assert block["baseFeePerGas"] == 10**9
    assert block["transactions"] == ["0xaa", "0xbb"]


@pytest.mark.asyncio
async def test_estimate_gas_hex_encodes_quantities():
    handler, calls = _rpc_handler({"eth_estimateGas": "0x5208"})

    gas = await _provider(handler).estimate_gas({"to": "0xabc", "value": 10, "data": "0x"})

    assert gas == 21000
    assert calls[0][1] == [{"to": "0xabc", "value": "0xa", "data": "0x"}]


@pytest.mark.asyncio
async def test_rpc_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "nope"}})

    with pytest.raises(ChainProviderError) as exc_info:
        await _provider(handler).get_block_number()

    assert exc_info.value.code == -32601


@pytest.mark.asyncio
async def test_block_subscription_delivers_each_new_block_in_order():
    heads = ["0x64", "0x64", "0x67"]
    handler, _ = _rpc_handler({"eth_blockNumber": lambda params: heads.pop(0) if len(heads) > 1 else heads[0]})
    provider = _provider(handler, poll_interval_s=0.001)
    delivered = []
    done = asyncio.Event()

    async def on_block(block_number: int) -> None:
        delivered.append(block_number)
        if block_number == 103:
            done.set()

    subscription = provider.subscribe_blocks(on_block)
    await asyncio.wait_for(done.wait(), timeout=2)
    subscription.cancel()
    subscription.cancel()

    assert delivered == [100, 101, 102, 103]
    assert subscription.cancelled
