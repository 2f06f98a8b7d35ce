"""
Batch Aggregator - collects tagged calls and executes them through Multicall3.

Calls are split into mutable and static groups, chunked to size limits and
sent as aggregate3 calls. Outcomes are stored per tag and announced to
waiters as soon as each chunk completes.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import structlog
from eth_abi.exceptions import DecodingError

from callbatch.config import CallBatchConfig, get_config
from callbatch.contract.contract import Contract
from callbatch.contract.multicall3 import AGGREGATE3, MULTICALL3_ABI
from callbatch.core.broker import ResultBroker
from callbatch.core.call import CallDescriptor, CallMutability
from callbatch.core.options import CallOptions, MulticallOptions
from callbatch.core.signals import (
    AbortSignal,
    check_signals,
    race_with_signals,
    timeout_signal,
    wait_with_signals,
)
from callbatch.core.split import chunked, split_calls
from callbatch.core.tags import Tag, generate_tag, normalize_tag
from callbatch.errors import (
    Aborted,
    ReceiptNotFound,
    ResponseNotFound,
    ResultNotFound,
    SimultaneousInvocation,
)
from callbatch.node.interface import Driver, TxHandle, TxReceipt

logger = structlog.get_logger(__name__)

RawResult = Union[bytes, TxHandle, TxReceipt, None]
Chunk = List[Tuple[str, CallDescriptor]]


class AggregatorState(str, Enum):
    """Execution state of an aggregator."""
    IDLE = "idle"
    EXECUTING = "executing"


@dataclass(frozen=True)
class ExecutionOutcome:
    """
    Stored result of one tagged call.

    Attributes:
        success: Whether the call (or its transaction) succeeded
        raw: Return data for static calls; TxHandle or TxReceipt for
            mutable calls; None when nothing was returned
    """
    success: bool
    raw: RawResult


class BatchAggregator:
    """
    Aggregates tagged contract calls into Multicall3 batches.

    Mutable calls run first, in add order and strictly one chunk after the
    other; static calls follow. A failed mutable chunk only marks its own
    tags as failed; transport errors and aborts end the run and reject
    every waiter of an unresolved tag.

    Only one run() may execute at a time per instance.

    Usage:
        ```python
        aggregator = BatchAggregator(signer, MulticallOptions(max_static_calls_stack=20))
        aggregator.add(token.get_call("balanceOf", [alice]), {"holder": "alice"})
        aggregator.add(token.get_call("transfer", [bob, 10]), "transfer")
        await aggregator.run()
        balance = aggregator.get_or_throw({"holder": "alice"})
        ```
    """

    def __init__(
        self,
        driver: Optional[Driver],
        options: Optional[MulticallOptions] = None,
        multicall_address: Optional[str] = None,
        config: Optional[CallBatchConfig] = None,
    ):
        """
        Initialize the aggregator.

        Args:
            driver: Provider for static batches, Signer for mutable ones
            options: Batch options (unset fields come from the configuration)
            multicall_address: Multicall3 address override
            config: Configuration (global config if not provided)
        """
        self.config = config or get_config()
        self._options = MulticallOptions.from_config(self.config).merge(options)
        self.multicall = Contract(
            MULTICALL3_ABI,
            multicall_address or self.config.multicall_address,
            driver,
            config=self.config,
        )

        self._units: Dict[str, Tuple[Tag, CallDescriptor]] = {}
        self._outcomes: Dict[str, ExecutionOutcome] = {}
        self._executed: Dict[str, CallDescriptor] = {}
        self._broker = ResultBroker()
        self._state = AggregatorState.IDLE
        self._last_success: Optional[bool] = None

    # ------------------------------------------------------------------
    # Queue management
    # ------------------------------------------------------------------

    def add(self, call: CallDescriptor, tag: Optional[Tag] = None) -> Tag:
        """
        Queue a call under a tag.

        Tags that normalise to the same key share a slot; the later call
        replaces the earlier one.

        Args:
            call: Call to queue
            tag: Correlation key (generated if omitted)

        Returns:
            The tag the call was stored under
        """
        if tag is None:
            tag = generate_tag()
        key = normalize_tag(tag)
        if key in self._units:
            logger.warning("tag_overwritten", tag=key)
        self._units[key] = (tag, call)
        return tag

    def add_batch(self, items: Iterable[Union[CallDescriptor, Tuple[CallDescriptor, Tag]]]) -> List[Tag]:
        """Queue several calls; items are calls or (call, tag) pairs."""
        tags = []
        for item in items:
            if isinstance(item, CallDescriptor):
                tags.append(self.add(item))
            else:
                call, tag = item
                tags.append(self.add(call, tag))
        return tags

    def clear(self) -> None:
        """
        Drop all queued calls and results.

        Raises:
            SimultaneousInvocation: If a run is executing
        """
        if self.executing:
            raise SimultaneousInvocation()
        self._units = {}
        self._outcomes = {}
        self._executed = {}
        self._last_success = None

    @property
    def options(self) -> MulticallOptions:
        return self._options

    @property
    def state(self) -> AggregatorState:
        return self._state

    @property
    def executing(self) -> bool:
        return self._state == AggregatorState.EXECUTING

    @property
    def tags(self) -> List[Tag]:
        return [tag for tag, _ in self._units.values()]

    @property
    def calls(self) -> List[CallDescriptor]:
        return [call for _, call in self._units.values()]

    @property
    def response(self) -> List[ExecutionOutcome]:
        """Outcomes of the last run in add order."""
        return [self._outcomes[key] for key in self._units if key in self._outcomes]

    @property
    def success(self) -> Optional[bool]:
        """Result of the last run, None before the first run."""
        return self._last_success

    @property
    def static(self) -> bool:
        """Check whether every queued call is static."""
        return all(call.is_static for call in self.calls)

    def __len__(self) -> int:
        return len(self._units)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(self, options: Optional[MulticallOptions] = None) -> bool:
        """
        Execute every queued call.

        Args:
            options: Per-run overrides of the aggregator options

        Returns:
            True if every call succeeded

        Raises:
            SimultaneousInvocation: If another run is executing
            Aborted: If a signal fires during execution
        """
        if self.executing:
            raise SimultaneousInvocation()
        self._state = AggregatorState.EXECUTING

        run_options = self._options.merge(options)
        signals = list(run_options.signals or [])
        units = [(key, call) for key, (_, call) in self._units.items()]
        self._outcomes = {}
        self._executed = dict(units)
        self._last_success = None

        try:
            check_signals(signals)
            split = split_calls(units, run_options.force_mutability)

            chunks: List[Tuple[Chunk, bool]] = [
                (chunk, False) for chunk in chunked(split.mutable_calls, run_options.max_mutable_calls_stack)
            ] + [
                (chunk, True) for chunk in chunked(split.static_calls, run_options.max_static_calls_stack)
            ]

            logger.info(
                "run_started",
                static_calls=len(split.static_calls),
                mutable_calls=len(split.mutable_calls),
                chunks=len(chunks),
            )

            success = True
            for index, (chunk, is_static) in enumerate(chunks):
                if index > 0 and run_options.batch_delay_ms:
                    await wait_with_signals(run_options.batch_delay_ms, signals)
                check_signals(signals)

                if is_static:
                    chunk_success = await self._execute_static_chunk(chunk, run_options, signals)
                else:
                    chunk_success = await self._execute_mutable_chunk(chunk, run_options, signals)
                success = success and chunk_success

            self._last_success = success
            logger.info("run_completed", success=success, calls=len(units))
            return success

        except asyncio.CancelledError:
            self._last_success = False
            self._reject_unresolved(units, Aborted("Multicall run was cancelled"))
            raise
        except Exception as e:
            self._last_success = False
            rejected = self._reject_unresolved(units, e)
            logger.error("run_failed", error=str(e), unresolved=rejected)
            raise
        finally:
            self._state = AggregatorState.IDLE

    async def estimate_run(self, options: Optional[MulticallOptions] = None) -> List[int]:
        """
        Estimate gas of every mutable chunk run() would submit.

        Returns:
            One gas estimate per mutable chunk, in submission order
        """
        run_options = self._options.merge(options)
        signals = list(run_options.signals or [])
        units = [(key, call) for key, (_, call) in self._units.items()]

        check_signals(signals)
        split = split_calls(units, run_options.force_mutability)

        estimates = []
        for index, chunk in enumerate(chunked(split.mutable_calls, run_options.max_mutable_calls_stack)):
            if index > 0 and run_options.batch_delay_ms:
                await wait_with_signals(run_options.batch_delay_ms, signals)
            check_signals(signals)

            estimate = await self.multicall.estimate(
                AGGREGATE3,
                [[call.to_call3() for _, call in chunk]],
                self._mutable_call_options(run_options, signals),
            )
            estimates.append(estimate)

        logger.debug("run_estimated", chunks=len(estimates), gas=estimates)
        return estimates

    def _mutable_call_options(self, run_options: MulticallOptions, signals: List[AbortSignal]) -> CallOptions:
        return CallOptions(
            force_mutability=CallMutability.MUTABLE,
            high_priority_tx=run_options.high_priority_txs,
            priority_options=run_options.priority_options,
            signals=signals,
            timeout_ms=run_options.mutable_calls_timeout_ms,
        )

    async def _execute_static_chunk(
        self,
        chunk: Chunk,
        run_options: MulticallOptions,
        signals: List[AbortSignal],
    ) -> bool:
        response = await self.multicall.call(
            AGGREGATE3,
            [[call.to_call3() for _, call in chunk]],
            CallOptions(
                force_mutability=CallMutability.STATIC,
                signals=signals,
                timeout_ms=run_options.static_calls_timeout_ms,
            ),
        )

        chunk_success = True
        for index, (key, _) in enumerate(chunk):
            if index < len(response):
                ok, data = response[index]
                outcome = ExecutionOutcome(bool(ok), bytes(data))
            else:
                outcome = ExecutionOutcome(False, None)
            chunk_success = chunk_success and outcome.success
            self._store(key, outcome)

        logger.debug("static_chunk_executed", size=len(chunk), success=chunk_success)
        return chunk_success

    async def _execute_mutable_chunk(
        self,
        chunk: Chunk,
        run_options: MulticallOptions,
        signals: List[AbortSignal],
    ) -> bool:
        tx: TxHandle = await self.multicall.call(
            AGGREGATE3,
            [[call.to_call3() for _, call in chunk]],
            self._mutable_call_options(run_options, signals),
        )
        logger.info("mutable_chunk_submitted", tx_hash=tx.hash, size=len(chunk))

        if not run_options.wait_for_txs:
            for key, _ in chunk:
                self._store(key, ExecutionOutcome(True, tx))
            return True

        check_signals(signals)
        receipt = await race_with_signals(
            lambda: tx.wait(timeout_seconds=run_options.mutable_calls_timeout_ms / 1000),
            signals,
        )
        chunk_success = receipt is not None and receipt.succeeded
        if not chunk_success:
            logger.warning(
                "mutable_chunk_failed",
                tx_hash=tx.hash,
                has_receipt=receipt is not None,
            )

        raw = receipt if receipt is not None else tx
        for key, _ in chunk:
            self._store(key, ExecutionOutcome(chunk_success, raw))
        return chunk_success

    def _store(self, key: str, outcome: ExecutionOutcome) -> None:
        self._outcomes[key] = outcome
        self._broker.resolve(key, outcome)

    def _reject_unresolved(self, units: Sequence[Tuple[str, CallDescriptor]], error: BaseException) -> int:
        rejected = 0
        for key, _ in units:
            if key not in self._outcomes:
                self._broker.reject(key, error)
                rejected += 1
        return rejected

    # ------------------------------------------------------------------
    # Result accessors
    # ------------------------------------------------------------------

    def _outcome(self, tag: Tag) -> Optional[ExecutionOutcome]:
        return self._outcomes.get(normalize_tag(tag))

    def _call(self, tag: Tag) -> Optional[CallDescriptor]:
        """Descriptor the stored outcome was produced by."""
        return self._executed.get(normalize_tag(tag))

    def _decode(self, tag: Tag) -> Optional[Tuple[CallDescriptor, Tuple[Any, ...]]]:
        """Decode the raw bytes of a successful, decodable call."""
        outcome = self._outcome(tag)
        call = self._call(tag)
        if outcome is None or call is None:
            return None
        if not outcome.success or not isinstance(outcome.raw, bytes) or not call.decodable:
            return None
        try:
            return call, call.interface.decode_function_result(call.method, outcome.raw)
        except DecodingError as e:
            logger.debug("result_decode_failed", tag=normalize_tag(tag), error=str(e))
            return None

    def is_success(self, tag: Tag) -> Optional[bool]:
        """Success of a tagged call, None if it has no outcome."""
        outcome = self._outcome(tag)
        return outcome.success if outcome else None

    def get_raw(self, tag: Tag) -> RawResult:
        """Stored raw result: bytes, TxHandle or TxReceipt."""
        outcome = self._outcome(tag)
        return outcome.raw if outcome else None

    def get(self, tag: Tag) -> Any:
        """
        Decoded result of a tagged call.

        A single output is returned as a scalar, all-named outputs as a
        dict, anything else as a list. Mutable calls return their stored
        TxHandle or TxReceipt.
        """
        outcome = self._outcome(tag)
        if outcome is None:
            return None
        if outcome.raw is not None and not isinstance(outcome.raw, bytes):
            return outcome.raw
        decoded = self._decode(tag)
        if decoded is None:
            return None
        call, values = decoded
        return call.interface.shape_result(call.method, values)

    def get_single(self, tag: Tag) -> Any:
        """First decoded output."""
        decoded = self._decode(tag)
        if decoded is None or not decoded[1]:
            return None
        return decoded[1][0]

    def get_array(self, tag: Tag) -> Optional[List[Any]]:
        """First decoded output as a list."""
        first = self.get_single(tag)
        if first is None:
            return None
        if isinstance(first, (list, tuple)):
            return list(first)
        return [first]

    def get_object(self, tag: Tag) -> Optional[Dict[str, Any]]:
        """Decoded outputs keyed by output name."""
        decoded = self._decode(tag)
        if decoded is None:
            return None
        call, values = decoded
        return call.interface.named_result(call.method, values)

    def get_all(self, tag: Tag) -> Optional[List[Any]]:
        """Every decoded output as a list."""
        decoded = self._decode(tag)
        if decoded is None:
            return None
        return list(decoded[1])

    def get_tx(self, tag: Tag) -> Optional[TxHandle]:
        raw = self.get_raw(tag)
        return raw if isinstance(raw, TxHandle) else None

    def get_receipt(self, tag: Tag) -> Optional[TxReceipt]:
        raw = self.get_raw(tag)
        return raw if isinstance(raw, TxReceipt) else None

    @staticmethod
    def _or_throw(value: Any, error: Exception) -> Any:
        if value is None:
            raise error
        return value

    def get_or_throw(self, tag: Tag) -> Any:
        return self._or_throw(self.get(tag), ResultNotFound(tag))

    def get_raw_or_throw(self, tag: Tag) -> Union[bytes, TxHandle, TxReceipt]:
        return self._or_throw(self.get_raw(tag), ResultNotFound(tag))

    def get_single_or_throw(self, tag: Tag) -> Any:
        return self._or_throw(self.get_single(tag), ResultNotFound(tag))

    def get_array_or_throw(self, tag: Tag) -> List[Any]:
        return self._or_throw(self.get_array(tag), ResultNotFound(tag))

    def get_object_or_throw(self, tag: Tag) -> Dict[str, Any]:
        return self._or_throw(self.get_object(tag), ResultNotFound(tag))

    def get_all_or_throw(self, tag: Tag) -> List[Any]:
        return self._or_throw(self.get_all(tag), ResultNotFound(tag))

    def get_tx_or_throw(self, tag: Tag) -> TxHandle:
        return self._or_throw(self.get_tx(tag), ResponseNotFound(tag))

    def get_receipt_or_throw(self, tag: Tag) -> TxReceipt:
        return self._or_throw(self.get_receipt(tag), ReceiptNotFound(tag))

    # ------------------------------------------------------------------
    # Wait accessors
    # ------------------------------------------------------------------

    async def wait(
        self,
        tag: Tag,
        signals: Optional[List[AbortSignal]] = None,
        timeout_ms: Optional[int] = None,
    ) -> ExecutionOutcome:
        """
        Wait until a tagged call has an outcome.

        Resolves immediately if the outcome is already stored.

        Args:
            tag: Tag to wait for
            signals: Extra abort signals (the aggregator's signals always apply)
            timeout_ms: Timeout (wait_calls_timeout_ms if not given)

        Raises:
            Aborted: If a signal or the timeout fires first
            Exception: The error that ended the run before the tag resolved
        """
        key = normalize_tag(tag)
        outcome = self._outcomes.get(key)
        if outcome is not None:
            return outcome

        future = self._broker.subscribe(key)
        all_signals = list(self._options.signals or []) + list(signals or [])
        timeout = timeout_signal(timeout_ms or self._options.wait_calls_timeout_ms)
        all_signals.append(timeout)

        try:
            return await race_with_signals(lambda: future, all_signals)
        finally:
            timeout.cancel()
            self._broker.discard(key, future)

    async def wait_for(self, tag: Tag, signals: Optional[List[AbortSignal]] = None, timeout_ms: Optional[int] = None) -> Any:
        """Wait for a tagged call and return its decoded result (see get())."""
        await self.wait(tag, signals, timeout_ms)
        return self.get(tag)

    async def wait_for_or_throw(self, tag: Tag, signals: Optional[List[AbortSignal]] = None, timeout_ms: Optional[int] = None) -> Any:
        await self.wait(tag, signals, timeout_ms)
        return self.get_or_throw(tag)

    async def wait_raw(self, tag: Tag, signals: Optional[List[AbortSignal]] = None, timeout_ms: Optional[int] = None) -> RawResult:
        outcome = await self.wait(tag, signals, timeout_ms)
        return outcome.raw

    async def wait_raw_or_throw(self, tag: Tag, signals: Optional[List[AbortSignal]] = None, timeout_ms: Optional[int] = None) -> Union[bytes, TxHandle, TxReceipt]:
        await self.wait(tag, signals, timeout_ms)
        return self.get_raw_or_throw(tag)

    async def wait_tx(self, tag: Tag, signals: Optional[List[AbortSignal]] = None, timeout_ms: Optional[int] = None) -> Optional[TxHandle]:
        await self.wait(tag, signals, timeout_ms)
        return self.get_tx(tag)

    async def wait_tx_or_throw(self, tag: Tag, signals: Optional[List[AbortSignal]] = None, timeout_ms: Optional[int] = None) -> TxHandle:
        await self.wait(tag, signals, timeout_ms)
        return self.get_tx_or_throw(tag)

    async def wait_receipt(self, tag: Tag, signals: Optional[List[AbortSignal]] = None, timeout_ms: Optional[int] = None) -> Optional[TxReceipt]:
        await self.wait(tag, signals, timeout_ms)
        return self.get_receipt(tag)

    async def wait_receipt_or_throw(self, tag: Tag, signals: Optional[List[AbortSignal]] = None, timeout_ms: Optional[int] = None) -> TxReceipt:
        await self.wait(tag, signals, timeout_ms)
        return self.get_receipt_or_throw(tag)

    def __repr__(self) -> str:
        return f"BatchAggregator(calls={len(self)}, state={self._state.value}, success={self._last_success})"
