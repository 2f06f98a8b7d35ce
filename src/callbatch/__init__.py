"""
Call Batcher

Client-side batching of EVM contract calls through Multicall3.
Independent reads and writes are grouped into fewer round trips while
per-call results stay addressable by caller-chosen tags.
"""

__version__ = "0.1.0"

from callbatch.core.aggregator import BatchAggregator, ExecutionOutcome
from callbatch.core.call import CallDescriptor, CallMutability
from callbatch.core.options import CallOptions, ContractOptions, MulticallOptions, PriorityCallOptions
from callbatch.contract.contract import Contract
from callbatch.node.auto_batching import AutoBatchingProvider

__all__ = [
    "BatchAggregator",
    "ExecutionOutcome",
    "CallDescriptor",
    "CallMutability",
    "CallOptions",
    "ContractOptions",
    "MulticallOptions",
    "PriorityCallOptions",
    "Contract",
    "AutoBatchingProvider",
]
