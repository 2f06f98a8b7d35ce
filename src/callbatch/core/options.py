"""
Option objects for calls, contracts and batches.

Unset (None) fields fall back to a less specific layer: call options over
contract/batch options over the global configuration.
"""

from dataclasses import dataclass, field, fields, replace
from typing import List, Optional

from callbatch.config import CallBatchConfig, get_config
from callbatch.core.call import CallMutability
from callbatch.core.signals import AbortSignal


def _merge(base, override):
    """Overlay the non-None fields of override onto base."""
    if override is None:
        return base
    changes = {
        f.name: getattr(override, f.name)
        for f in fields(override)
        if getattr(override, f.name) is not None
    }
    return replace(base, **changes)


@dataclass
class PriorityCallOptions:
    """
    Options of fee-bumped transaction submission.

    Attributes:
        multiplier: Factor applied to fees and gas limit
        asynchronous: Fetch fee data and gas estimate concurrently
        chain_id: Chain id written into the transaction
        provide_chain_id: Query the chain id from the network instead
        signals: Abort signals checked before every network step
        timeout_ms: Timeout of the whole submission
    """

    multiplier: Optional[float] = None
    asynchronous: Optional[bool] = None
    chain_id: Optional[int] = None
    provide_chain_id: Optional[bool] = None
    signals: Optional[List[AbortSignal]] = None
    timeout_ms: Optional[int] = None

    def merge(self, other: Optional["PriorityCallOptions"]) -> "PriorityCallOptions":
        return _merge(self, other)


@dataclass
class CallOptions:
    """Per-call options of Contract.call()."""

    force_mutability: Optional[CallMutability] = None
    high_priority_tx: Optional[bool] = None
    priority_options: Optional[PriorityCallOptions] = None
    signals: Optional[List[AbortSignal]] = None
    timeout_ms: Optional[int] = None

    def merge(self, other: Optional["CallOptions"]) -> "CallOptions":
        return _merge(self, other)


@dataclass
class ContractOptions:
    """Defaults applied to every call of a Contract."""

    force_mutability: Optional[CallMutability] = None
    high_priority_txs: Optional[bool] = None
    priority_options: Optional[PriorityCallOptions] = None
    static_calls_timeout_ms: Optional[int] = None
    mutable_calls_timeout_ms: Optional[int] = None

    @classmethod
    def from_config(cls, config: Optional[CallBatchConfig] = None) -> "ContractOptions":
        config = config or get_config()
        return cls(
            high_priority_txs=False,
            priority_options=PriorityCallOptions(multiplier=config.priority_multiplier),
            static_calls_timeout_ms=config.static_calls_timeout_ms,
            mutable_calls_timeout_ms=config.mutable_calls_timeout_ms,
        )

    def merge(self, other: Optional["ContractOptions"]) -> "ContractOptions":
        return _merge(self, other)


@dataclass
class MulticallOptions:
    """
    Options of a BatchAggregator, given at creation and per run().

    Attributes:
        max_static_calls_stack: Chunk size of static calls
        max_mutable_calls_stack: Chunk size of mutable calls
        wait_for_txs: Wait for receipts of mutable chunks
        high_priority_txs: Submit mutable chunks with bumped fees
        priority_options: Options of the priority submission
        static_calls_timeout_ms: Timeout of one static chunk
        mutable_calls_timeout_ms: Timeout of one mutable chunk
        wait_calls_timeout_ms: Timeout of the wait accessors
        batch_delay_ms: Pause between consecutive chunks
        force_mutability: Route every call through one group
        signals: Abort signals checked at every step
    """

    max_static_calls_stack: Optional[int] = None
    max_mutable_calls_stack: Optional[int] = None
    wait_for_txs: Optional[bool] = None
    high_priority_txs: Optional[bool] = None
    priority_options: Optional[PriorityCallOptions] = None
    static_calls_timeout_ms: Optional[int] = None
    mutable_calls_timeout_ms: Optional[int] = None
    wait_calls_timeout_ms: Optional[int] = None
    batch_delay_ms: Optional[int] = None
    force_mutability: Optional[CallMutability] = None
    signals: Optional[List[AbortSignal]] = field(default=None, repr=False)

    @classmethod
    def from_config(cls, config: Optional[CallBatchConfig] = None) -> "MulticallOptions":
        config = config or get_config()
        return cls(
            max_static_calls_stack=config.static_calls_batch_limit,
            max_mutable_calls_stack=config.mutable_calls_batch_limit,
            wait_for_txs=config.wait_for_txs,
            high_priority_txs=False,
            priority_options=PriorityCallOptions(multiplier=config.priority_multiplier),
            static_calls_timeout_ms=config.static_calls_timeout_ms,
            mutable_calls_timeout_ms=config.mutable_calls_timeout_ms,
            wait_calls_timeout_ms=config.wait_calls_timeout_ms,
            batch_delay_ms=config.batch_delay_ms,
        )

    def merge(self, other: Optional["MulticallOptions"]) -> "MulticallOptions":
        return _merge(self, other)
