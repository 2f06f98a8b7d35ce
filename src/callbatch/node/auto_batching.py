"""
Auto-batching provider.

Wraps a Provider or Signer so that eth_call requests and transactions issued
within one event-loop tick are sent as a single Multicall3 batch.
"""

import asyncio
from typing import Optional, Set

import structlog

from callbatch.config import CallBatchConfig, get_config
from callbatch.core.aggregator import BatchAggregator
from callbatch.core.call import CallDescriptor, CallMutability
from callbatch.core.options import MulticallOptions
from callbatch.errors import CallReverted, MissingCallData, ReadOnlyMutation, ResponseNotFound
from callbatch.node.interface import (
    Driver,
    FeeData,
    Provider,
    Signer,
    TxHandle,
    TxReceipt,
    TxRequest,
    is_signer,
    provider_of,
)

logger = structlog.get_logger(__name__)


class AutoBatchingProvider(Provider):
    """
    Provider that transparently batches calls.

    Every call() and send_transaction() queues a descriptor on the current
    aggregator. The first request of a tick schedules a flush for the next
    loop iteration; the flush hands the filled aggregator to a background
    run and starts a fresh one for later requests.

    Usage:
        ```python
        provider = AutoBatchingProvider(JsonRpcProvider())
        token = Contract(ERC20_ABI, token_address, provider)
        # One eth_call for all three
        balances = await asyncio.gather(
            token.call("balanceOf", [a]),
            token.call("balanceOf", [b]),
            token.call("balanceOf", [c]),
        )
        ```
    """

    def __init__(
        self,
        driver: Driver,
        options: Optional[MulticallOptions] = None,
        multicall_address: Optional[str] = None,
        config: Optional[CallBatchConfig] = None,
    ):
        """
        Initialize the provider.

        Args:
            driver: Wrapped Provider, or Signer to also batch transactions
            options: Options of every batch (transactions are not awaited
                unless wait_for_txs is set)
            multicall_address: Multicall3 address override
            config: Configuration (global config if not provided)
        """
        self.config = config or get_config()
        self._driver = driver
        self._provider = provider_of(driver)
        self._options = MulticallOptions(wait_for_txs=False).merge(options)
        self._multicall_address = multicall_address
        self.poll_interval_ms = self._provider.poll_interval_ms

        self._aggregator = self._new_aggregator()
        self._flush_scheduled = False
        self._runs: Set[asyncio.Task] = set()

    @property
    def driver(self) -> Driver:
        return self._driver

    @property
    def aggregator(self) -> BatchAggregator:
        """Aggregator collecting the requests of the current tick."""
        return self._aggregator

    @property
    def address(self) -> Optional[str]:
        return self._driver.address if is_signer(self._driver) else None

    def _new_aggregator(self) -> BatchAggregator:
        return BatchAggregator(
            self._driver,
            self._options,
            multicall_address=self._multicall_address,
            config=self.config,
        )

    def _schedule_flush(self) -> None:
        if self._flush_scheduled:
            return
        self._flush_scheduled = True
        asyncio.get_running_loop().call_soon(self._flush)

    def _flush(self) -> None:
        self._flush_scheduled = False
        aggregator, self._aggregator = self._aggregator, self._new_aggregator()
        if not len(aggregator):
            return

        logger.debug("auto_batch_flushed", calls=len(aggregator))
        task = asyncio.ensure_future(self._run(aggregator))
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)

    async def _run(self, aggregator: BatchAggregator) -> None:
        # Waiters are rejected by the aggregator itself
        try:
            await aggregator.run()
        except Exception as e:
            logger.error("auto_batch_failed", calls=len(aggregator), error=str(e))

    async def drain(self) -> None:
        """Wait for every batch already flushed to finish."""
        if self._runs:
            await asyncio.gather(*list(self._runs))

    def _descriptor(self, tx: TxRequest, mutability: CallMutability) -> CallDescriptor:
        target, payload = tx.get("to"), tx.get("data")
        if not target or not payload:
            raise MissingCallData()
        return CallDescriptor(
            target=target,
            payload=payload,
            mutability=mutability,
            allow_failure=self.config.allow_failure,
        )

    async def call(self, tx: TxRequest, block: str = "latest") -> bytes:
        """
        Queue a static call and wait for its return data.

        Calls against another block than the latest one bypass batching.

        Raises:
            MissingCallData: If the request has no target or data
            CallReverted: If the call failed inside the batch
        """
        if block != "latest":
            return await self._provider.call(tx, block)

        descriptor = self._descriptor(tx, CallMutability.STATIC)
        aggregator = self._aggregator
        tag = aggregator.add(descriptor)
        self._schedule_flush()

        outcome = await aggregator.wait(tag)
        if not outcome.success or not isinstance(outcome.raw, bytes):
            raise CallReverted(tag, outcome.raw if isinstance(outcome.raw, bytes) else None)
        return outcome.raw

    async def send_transaction(self, tx: TxRequest) -> TxHandle:
        """
        Queue a mutable call and wait for the batch transaction.

        Returns:
            Handle of the transaction that carried the call

        Raises:
            ReadOnlyMutation: If the wrapped driver cannot sign
            MissingCallData: If the request has no target or data
        """
        if not is_signer(self._driver):
            raise ReadOnlyMutation()

        descriptor = self._descriptor(tx, CallMutability.MUTABLE)
        aggregator = self._aggregator
        tag = aggregator.add(descriptor)
        self._schedule_flush()

        outcome = await aggregator.wait(tag)
        if isinstance(outcome.raw, TxHandle):
            return outcome.raw
        if isinstance(outcome.raw, TxReceipt):
            return TxHandle(outcome.raw.transaction_hash, self._provider)
        raise ResponseNotFound(tag)

    async def connect(self) -> None:
        await self._provider.connect()

    async def disconnect(self) -> None:
        await self.drain()
        await self._provider.disconnect()

    async def estimate_gas(self, tx: TxRequest) -> int:
        return await self._provider.estimate_gas(tx)

    async def get_fee_data(self) -> FeeData:
        return await self._provider.get_fee_data()

    async def get_chain_id(self) -> int:
        return await self._provider.get_chain_id()

    async def get_block_number(self) -> int:
        return await self._provider.get_block_number()

    async def get_transaction_count(self, address: str, block: str = "latest") -> int:
        return await self._provider.get_transaction_count(address, block)

    async def send_raw_transaction(self, raw: bytes) -> str:
        return await self._provider.send_raw_transaction(raw)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        return await self._provider.get_transaction_receipt(tx_hash)

    async def wait_for_transaction(
        self,
        tx_hash: str,
        confirmations: int = 1,
        timeout_seconds: Optional[float] = None,
    ) -> Optional[TxReceipt]:
        return await self._provider.wait_for_transaction(tx_hash, confirmations, timeout_seconds)

    def get_signer(self) -> "AutoBatchingSigner":
        """
        Signer view of this provider, for contracts that send transactions.

        Raises:
            ReadOnlyMutation: If the wrapped driver cannot sign
        """
        if not is_signer(self._driver):
            raise ReadOnlyMutation()
        return AutoBatchingSigner(self)


class AutoBatchingSigner(Signer):
    """Signer whose transactions are batched by an AutoBatchingProvider."""

    def __init__(self, front: AutoBatchingProvider):
        self._front = front

    @property
    def address(self) -> str:
        return self._front.address

    @property
    def provider(self) -> AutoBatchingProvider:
        return self._front

    async def send_transaction(self, tx: TxRequest) -> TxHandle:
        return await self._front.send_transaction(tx)
