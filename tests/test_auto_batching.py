"""
Test suite for the auto-batching provider.

Tests that calls issued within one event-loop tick share one aggregate call
and that results and failures reach the right callers.
"""

import asyncio

import pytest

from callbatch.contract.contract import Contract
from callbatch.core.options import MulticallOptions
from callbatch.errors import CallReverted, MissingCallData, ReadOnlyMutation
from callbatch.node.auto_batching import AutoBatchingProvider, AutoBatchingSigner
from callbatch.node.interface import TxHandle

from conftest import ALICE, BOB, TOKEN, TOKEN_ABI


class TestAutoBatchingProvider:
    """Tests for transparent batching of provider calls."""

    @pytest.mark.asyncio
    async def test_same_tick_calls_share_batch(self, chain):
        """Test that concurrent calls are sent as one aggregate call."""
        provider = AutoBatchingProvider(chain, MulticallOptions(max_static_calls_stack=10))
        token = Contract(TOKEN_ABI, TOKEN, provider)

        results = await asyncio.gather(
            token.call("balanceOf", [ALICE]),
            token.call("balanceOf", [BOB]),
            token.call("name"),
        )

        assert results == [100, 5, "Test Token"]
        assert chain.aggregate_calls == [3]

    @pytest.mark.asyncio
    async def test_sequential_calls_use_new_batches(self, chain):
        """Test that awaited calls are flushed separately."""
        provider = AutoBatchingProvider(chain)
        token = Contract(TOKEN_ABI, TOKEN, provider)

        assert await token.call("balanceOf", [ALICE]) == 100
        assert await token.call("balanceOf", [BOB]) == 5

        assert chain.aggregate_calls == [1, 1]

    @pytest.mark.asyncio
    async def test_failed_call_raises(self, chain):
        """Test that a failed sub-call only fails its own caller."""
        provider = AutoBatchingProvider(chain)
        token = Contract(TOKEN_ABI, TOKEN, provider)

        broken, name = await asyncio.gather(
            token.call("broken"),
            token.call("name"),
            return_exceptions=True,
        )

        assert isinstance(broken, CallReverted)
        assert name == "Test Token"

    @pytest.mark.asyncio
    async def test_missing_call_data(self, chain):
        """Test that requests without target or data are rejected."""
        provider = AutoBatchingProvider(chain)

        with pytest.raises(MissingCallData):
            await provider.call({"to": TOKEN})

    @pytest.mark.asyncio
    async def test_historic_block_bypasses_batch(self, chain, token):
        """Test that calls against an older block are not batched."""
        provider = AutoBatchingProvider(chain)
        data = token.interface.encode_function_data("name")

        raw = await provider.call({"to": TOKEN, "data": data}, block="0x10")

        assert token.interface.decode_shaped("name", raw) == "Test Token"
        assert chain.aggregate_calls == []

    @pytest.mark.asyncio
    async def test_delegated_methods(self, chain):
        """Test that other provider methods reach the wrapped provider."""
        provider = AutoBatchingProvider(chain)

        assert await provider.get_chain_id() == 31337
        assert await provider.get_block_number() == 100
        assert (await provider.get_fee_data()).supports_eip1559

    @pytest.mark.asyncio
    async def test_read_only_send(self, chain):
        """Test that a provider-only front cannot send transactions."""
        provider = AutoBatchingProvider(chain)

        with pytest.raises(ReadOnlyMutation):
            await provider.send_transaction({"to": TOKEN, "data": b"\x00"})
        with pytest.raises(ReadOnlyMutation):
            provider.get_signer()

    @pytest.mark.asyncio
    async def test_transactions_share_batch(self, chain, signer):
        """Test that concurrent transactions are sent as one aggregate transaction."""
        provider = AutoBatchingProvider(signer)
        batched_signer = provider.get_signer()
        token = Contract(TOKEN_ABI, TOKEN, batched_signer)

        assert isinstance(batched_signer, AutoBatchingSigner)
        assert batched_signer.address == signer.address

        first, second = await asyncio.gather(
            token.call("transfer", [BOB, 1]),
            token.call("transfer", [ALICE, 1]),
        )

        assert isinstance(first, TxHandle)
        assert first.hash == second.hash
        assert len(chain.sent_txs) == 1

    @pytest.mark.asyncio
    async def test_drain(self, chain):
        """Test waiting for flushed batches."""
        provider = AutoBatchingProvider(chain)
        token = Contract(TOKEN_ABI, TOKEN, provider)

        task = asyncio.create_task(token.call("name"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await provider.drain()

        assert await task == "Test Token"
