"""
Splitting of queued calls into static / mutable groups and chunks.
"""

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple, TypeVar

from callbatch.core.call import CallDescriptor, CallMutability

T = TypeVar("T")


@dataclass
class SplitCalls:
    """Calls partitioned by mutability, each entry is (key, call)."""

    static_calls: List[Tuple[str, CallDescriptor]] = field(default_factory=list)
    mutable_calls: List[Tuple[str, CallDescriptor]] = field(default_factory=list)

    @property
    def static_keys(self) -> List[str]:
        return [key for key, _ in self.static_calls]

    @property
    def mutable_keys(self) -> List[str]:
        return [key for key, _ in self.mutable_calls]


def split_calls(
    units: Sequence[Tuple[str, CallDescriptor]],
    force_mutability: Optional[CallMutability] = None,
) -> SplitCalls:
    """
    Partition calls by mutability, preserving insertion order in each group.

    Args:
        units: (key, call) pairs in add order
        force_mutability: Route every call into this group

    Returns:
        The partitioned calls
    """
    result = SplitCalls()
    for key, call in units:
        mutability = force_mutability or call.mutability
        if mutability == CallMutability.STATIC:
            result.static_calls.append((key, call))
        else:
            result.mutable_calls.append((key, call))
    return result


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield contiguous slices of at most size items."""
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])
