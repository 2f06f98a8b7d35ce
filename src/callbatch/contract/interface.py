"""
Contract interface - ABI schema registry and codec.

Parses a JSON ABI into function fragments and encodes/decodes call data
with eth-abi.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from eth_abi import decode, encode
from eth_abi.grammar import ABIType, TupleType, parse
from eth_utils import keccak, to_checksum_address

from callbatch.core.call import CallMutability, StateMutability, mutability_of
from callbatch.errors import FragmentNotFound


class OutputShape(str, Enum):
    """How the decoded outputs of a function are presented."""
    EMPTY = "empty"             # No outputs
    SINGLE = "single"           # Exactly one output, returned as a scalar
    NAMED = "named"             # Every output named, returned as a dict
    POSITIONAL = "positional"   # Returned as a list


@dataclass(frozen=True)
class AbiParam:
    """A function input or output."""
    name: str
    type: str   # Canonical type, tuples written as "(t1,t2)"


@dataclass(frozen=True)
class FunctionFragment:
    """A function entry of the ABI."""

    name: str
    inputs: Tuple[AbiParam, ...]
    outputs: Tuple[AbiParam, ...]
    state_mutability: StateMutability

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(p.type for p in self.inputs)})"

    @property
    def selector(self) -> bytes:
        return keccak(text=self.signature)[:4]

    @property
    def mutability(self) -> CallMutability:
        return mutability_of(self.state_mutability)

    @property
    def output_types(self) -> List[str]:
        return [p.type for p in self.outputs]

    @property
    def output_shape(self) -> OutputShape:
        if not self.outputs:
            return OutputShape.EMPTY
        if len(self.outputs) == 1:
            return OutputShape.SINGLE
        if all(p.name for p in self.outputs):
            return OutputShape.NAMED
        return OutputShape.POSITIONAL


def _canonical_type(param: dict) -> str:
    """Collapse tuple components into an eth-abi type string."""
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param.get("components", []))
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def _state_mutability(entry: dict) -> StateMutability:
    if "stateMutability" in entry:
        return StateMutability(entry["stateMutability"])
    # Pre-0.4.16 ABIs only carry the constant/payable flags
    if entry.get("constant"):
        return StateMutability.VIEW
    if entry.get("payable"):
        return StateMutability.PAYABLE
    return StateMutability.NONPAYABLE


def _parse_params(params: Optional[Sequence[dict]]) -> Tuple[AbiParam, ...]:
    return tuple(AbiParam(p.get("name") or "", _canonical_type(p)) for p in params or [])


def _checksum_addresses(abi_type: ABIType, value: Any) -> Any:
    """Checksum every address inside a decoded value, however deeply nested."""
    if abi_type.is_array:
        return tuple(_checksum_addresses(abi_type.item_type, item) for item in value)
    if isinstance(abi_type, TupleType):
        return tuple(_checksum_addresses(c, item) for c, item in zip(abi_type.components, value))
    if abi_type.base == "address":
        return to_checksum_address(value)
    return value


class ContractInterface:
    """
    Parsed ABI of a contract.

    Functions are looked up by name or by full signature. For overloaded
    names the first declaration wins the plain-name lookup.
    """

    def __init__(self, abi: Sequence[dict]):
        """
        Initialize from a JSON ABI.

        Args:
            abi: List of ABI entries (non-function entries are ignored)
        """
        self.abi = list(abi)
        self._by_name: Dict[str, FunctionFragment] = {}
        self._by_signature: Dict[str, FunctionFragment] = {}

        for entry in self.abi:
            if entry.get("type", "function") != "function":
                continue
            fragment = FunctionFragment(
                name=entry["name"],
                inputs=_parse_params(entry.get("inputs")),
                outputs=_parse_params(entry.get("outputs")),
                state_mutability=_state_mutability(entry),
            )
            self._by_signature[fragment.signature] = fragment
            self._by_name.setdefault(fragment.name, fragment)

    @classmethod
    def from_abi(cls, abi: Union["ContractInterface", Sequence[dict]]) -> "ContractInterface":
        """Return abi itself if already parsed, else parse it."""
        if isinstance(abi, ContractInterface):
            return abi
        return cls(abi)

    @property
    def fragments(self) -> List[FunctionFragment]:
        return list(self._by_signature.values())

    @property
    def function_names(self) -> List[str]:
        return list(self._by_name)

    def has_function(self, name: str) -> bool:
        return name in self._by_name or name in self._by_signature

    def get_function(self, name: str) -> FunctionFragment:
        """
        Look up a function fragment.

        Raises:
            FragmentNotFound: If no function matches
        """
        fragment = self._by_signature.get(name) or self._by_name.get(name)
        if fragment is None:
            raise FragmentNotFound(name)
        return fragment

    def encode_function_data(self, name: str, args: Sequence[Any] = ()) -> bytes:
        """Encode selector and arguments of a call."""
        fragment = self.get_function(name)
        return fragment.selector + encode([p.type for p in fragment.inputs], list(args))

    def decode_function_result(self, name: str, data: bytes) -> Tuple[Any, ...]:
        """Decode the return data of a call into a tuple of outputs."""
        fragment = self.get_function(name)
        values = decode(fragment.output_types, data)
        return tuple(
            _checksum_addresses(parse(abi_type), value)
            for abi_type, value in zip(fragment.output_types, values)
        )

    def shape_result(self, name: str, values: Sequence[Any]) -> Any:
        """
        Present decoded outputs according to the function's output shape.

        One output is returned as a scalar, all-named outputs as a dict,
        anything else as a list.
        """
        fragment = self.get_function(name)
        shape = fragment.output_shape
        if shape == OutputShape.EMPTY:
            return None
        if shape == OutputShape.SINGLE:
            return values[0]
        if shape == OutputShape.NAMED:
            return {p.name: v for p, v in zip(fragment.outputs, values)}
        return list(values)

    def decode_shaped(self, name: str, data: bytes) -> Any:
        """Decode and shape in one step."""
        return self.shape_result(name, self.decode_function_result(name, data))

    def named_result(self, name: str, values: Sequence[Any]) -> Dict[str, Any]:
        """Map decoded outputs by name; unnamed outputs are keyed by position."""
        fragment = self.get_function(name)
        return {
            (p.name or str(index)): value
            for index, (p, value) in enumerate(zip(fragment.outputs, values))
        }

    def __repr__(self) -> str:
        return f"ContractInterface(functions={len(self._by_signature)})"
