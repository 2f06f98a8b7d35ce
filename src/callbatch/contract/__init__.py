"""
Contract layer.

ABI handling, single-call dispatch and priority submission.
"""

from callbatch.contract.interface import ContractInterface, FunctionFragment
from callbatch.contract.contract import Contract
from callbatch.contract.multicall3 import MULTICALL3_ABI

__all__ = [
    "ContractInterface",
    "FunctionFragment",
    "Contract",
    "MULTICALL3_ABI",
]
