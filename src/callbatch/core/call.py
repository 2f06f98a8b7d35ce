"""
Call descriptor model.

Describes one contract invocation that can be queued into a batch.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from callbatch.contract.interface import ContractInterface


class StateMutability(str, Enum):
    """ABI state mutability of a function."""
    VIEW = "view"
    PURE = "pure"
    NONPAYABLE = "nonpayable"
    PAYABLE = "payable"


class CallMutability(str, Enum):
    """Execution route of a call."""
    STATIC = "static"     # Executed with eth_call, no state change
    MUTABLE = "mutable"   # Executed as a signed transaction


def mutability_of(state: Union[StateMutability, str]) -> CallMutability:
    """Map an ABI state mutability onto the execution route."""
    if StateMutability(state) in (StateMutability.VIEW, StateMutability.PURE):
        return CallMutability.STATIC
    return CallMutability.MUTABLE


@dataclass(frozen=True)
class CallDescriptor:
    """
    Immutable description of a single invocation.

    Attributes:
        target: Address of the contract to call
        payload: ABI-encoded call data (selector + arguments)
        mutability: Whether the call is static or mutable
        allow_failure: Whether the aggregate call may continue if this call reverts
        method: Function name, used to decode the result
        interface: Contract interface able to decode the result
    """

    target: str
    payload: bytes
    mutability: CallMutability = CallMutability.STATIC
    allow_failure: bool = True
    method: Optional[str] = None
    interface: Optional["ContractInterface"] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if isinstance(self.mutability, str):
            object.__setattr__(self, "mutability", CallMutability(self.mutability))
        if isinstance(self.payload, str):
            object.__setattr__(self, "payload", bytes.fromhex(self.payload.removeprefix("0x")))

    @property
    def is_static(self) -> bool:
        return self.mutability == CallMutability.STATIC

    @property
    def decodable(self) -> bool:
        """Check whether the result of this call can be decoded."""
        return self.method is not None and self.interface is not None

    def with_options(self, **changes) -> "CallDescriptor":
        """Return a copy with some fields replaced."""
        return replace(self, **changes)

    def to_call3(self) -> tuple:
        """Convert to the Multicall3 Call3 struct (target, allowFailure, callData)."""
        return (self.target, self.allow_failure, self.payload)

    def __repr__(self) -> str:
        return (
            f"CallDescriptor(target={self.target[:10]}..., method={self.method}, "
            f"mutability={self.mutability.value})"
        )
