"""
Test suite for the JSON-RPC provider.

Uses httpx.MockTransport to stand in for the endpoint.
"""

import json
from typing import Any, Dict, List

import httpx
import pytest

from callbatch.errors import ProviderError, RpcError
from callbatch.node.jsonrpc import JsonRpcProvider, format_tx_request

from conftest import TOKEN


def make_provider(results: Dict[str, Any], requests: List[dict] = None) -> JsonRpcProvider:
    """Create a provider answering each method from a results table."""
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if requests is not None:
            requests.append(body)
        result = results[body["method"]]
        if callable(result):
            result = result(body["params"])
        if isinstance(result, dict) and "error" in result:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": result["error"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JsonRpcProvider("http://node.test", client=client)


class TestFormatting:
    """Tests for request formatting."""

    def test_quantities_and_bytes(self):
        """Test that ints become hex quantities and bytes become hex data."""
        params = format_tx_request({
            "to": TOKEN,
            "data": b"\x12\x34",
            "gas": 21_000,
            "value": 0,
            "nonce": None,
        })

        assert params == {"to": TOKEN, "data": "0x1234", "gas": "0x5208", "value": "0x0"}


class TestJsonRpcProvider:
    """Tests for the JSON-RPC provider."""

    @pytest.mark.asyncio
    async def test_call(self):
        """Test eth_call returns raw bytes."""
        requests = []
        provider = make_provider({"eth_call": "0x" + "00" * 31 + "07"}, requests)

        raw = await provider.call({"to": TOKEN, "data": b"\x70\xa0\x82\x31"})

        assert int.from_bytes(raw, "big") == 7
        assert requests[0]["params"] == [{"to": TOKEN, "data": "0x70a08231"}, "latest"]

    @pytest.mark.asyncio
    async def test_quantities(self):
        """Test hex quantity parsing."""
        provider = make_provider({
            "eth_chainId": "0x1",
            "eth_blockNumber": "0x10",
            "eth_estimateGas": "0x5208",
            "eth_getTransactionCount": "0x3",
        })

        assert await provider.get_chain_id() == 1
        assert await provider.get_block_number() == 16
        assert await provider.estimate_gas({"to": TOKEN}) == 21_000
        assert await provider.get_transaction_count(TOKEN, "pending") == 3

    @pytest.mark.asyncio
    async def test_chain_id_cached(self):
        """Test that the chain id is only queried once."""
        requests = []
        provider = make_provider({"eth_chainId": "0x5"}, requests)

        await provider.get_chain_id()
        await provider.get_chain_id()

        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_fee_data_eip1559(self):
        """Test fee data on a network with base fee."""
        provider = make_provider({
            "eth_gasPrice": hex(12),
            "eth_getBlockByNumber": {"number": "0x1", "baseFeePerGas": hex(10)},
            "eth_maxPriorityFeePerGas": hex(2),
        })

        fee_data = await provider.get_fee_data()

        assert fee_data.gas_price == 12
        assert fee_data.max_fee_per_gas == 22
        assert fee_data.max_priority_fee_per_gas == 2

    @pytest.mark.asyncio
    async def test_fee_data_legacy(self):
        """Test fee data on a network without base fee."""
        provider = make_provider({
            "eth_gasPrice": hex(12),
            "eth_getBlockByNumber": {"number": "0x1"},
        })

        fee_data = await provider.get_fee_data()

        assert fee_data.gas_price == 12
        assert not fee_data.supports_eip1559

    @pytest.mark.asyncio
    async def test_receipt(self):
        """Test receipt parsing and pending transactions."""
        receipt = {
            "transactionHash": "0xabc",
            "status": "0x1",
            "blockNumber": "0x20",
            "gasUsed": "0x5208",
            "effectiveGasPrice": "0x3",
            "from": "0x1",
            "to": TOKEN,
            "logs": [],
        }
        provider = make_provider({
            "eth_getTransactionReceipt": lambda params: receipt if params[0] == "0xabc" else None,
        })

        parsed = await provider.get_transaction_receipt("0xabc")

        assert parsed.succeeded
        assert parsed.block_number == 32
        assert parsed.gas_used == 21_000
        assert await provider.get_transaction_receipt("0xdef") is None

    @pytest.mark.asyncio
    async def test_wait_for_transaction_timeout(self):
        """Test that waiting for a pending transaction times out."""
        provider = make_provider({"eth_getTransactionReceipt": None})
        provider.poll_interval_ms = 1

        assert await provider.wait_for_transaction("0xabc", timeout_seconds=0.01) is None

    @pytest.mark.asyncio
    async def test_send_raw_transaction(self):
        """Test broadcasting a signed transaction."""
        requests = []
        provider = make_provider({"eth_sendRawTransaction": "0xfeed"}, requests)

        assert await provider.send_raw_transaction(b"\x01\x02") == "0xfeed"
        assert requests[0]["params"] == ["0x0102"]

    @pytest.mark.asyncio
    async def test_rpc_error(self):
        """Test that JSON-RPC errors carry code and data."""
        provider = make_provider({
            "eth_call": {"error": {"code": 3, "message": "execution reverted", "data": "0x"}},
        })

        with pytest.raises(RpcError) as exc_info:
            await provider.call({"to": TOKEN, "data": "0x"})

        assert exc_info.value.code == 3
        assert exc_info.value.data == "0x"

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Test that HTTP failures raise ProviderError."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway")))
        provider = JsonRpcProvider("http://node.test", client=client)

        with pytest.raises(ProviderError):
            await provider.get_block_number()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Test that transport errors raise ProviderError."""
        def fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        provider = JsonRpcProvider("http://node.test", client=httpx.AsyncClient(transport=httpx.MockTransport(fail)))

        with pytest.raises(ProviderError):
            await provider.connect()

    @pytest.mark.asyncio
    async def test_disconnect(self):
        """Test that disconnecting closes the client."""
        provider = make_provider({"eth_chainId": "0x1"})
        await provider.connect()

        await provider.disconnect()

        assert provider._client is None
