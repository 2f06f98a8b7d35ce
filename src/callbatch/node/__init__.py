"""
Node Integration Layer.

Provides abstracted access to EVM endpoints and transaction submission.
The auto-batching provider lives in callbatch.node.auto_batching.
"""

from callbatch.node.interface import FeeData, Provider, Signer, TxHandle, TxReceipt
from callbatch.node.jsonrpc import JsonRpcProvider

__all__ = [
    "FeeData",
    "Provider",
    "Signer",
    "TxHandle",
    "TxReceipt",
    "JsonRpcProvider",
]
