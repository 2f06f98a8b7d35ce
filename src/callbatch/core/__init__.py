"""
Core batching components.

This module contains the call descriptor, tag handling, cancellation
signals and the options shared by dispatcher and aggregator. The
aggregator itself lives in callbatch.core.aggregator.
"""

from callbatch.core.call import CallDescriptor, CallMutability, StateMutability
from callbatch.core.options import CallOptions, ContractOptions, MulticallOptions, PriorityCallOptions
from callbatch.core.signals import AbortController, AbortSignal, any_signal, timeout_signal
from callbatch.core.tags import Tag, generate_tag, normalize_tag

__all__ = [
    "CallDescriptor",
    "CallMutability",
    "StateMutability",
    "CallOptions",
    "ContractOptions",
    "MulticallOptions",
    "PriorityCallOptions",
    "AbortController",
    "AbortSignal",
    "any_signal",
    "timeout_signal",
    "Tag",
    "generate_tag",
    "normalize_tag",
]
