"""
Transaction module.

Handles transaction signing and submission.
"""

from callbatch.tx.signer import LocalSigner

__all__ = [
    "LocalSigner",
]
