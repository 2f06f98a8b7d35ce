"""
Error types raised by the call batcher.

All errors derive from CallBatchError so callers can catch the whole family.
"""

from typing import Any, Optional


class CallBatchError(Exception):
    """Base class for all call batcher errors."""
    pass


# ---------------------------------------------------------------------------
# Contract / dispatcher errors
# ---------------------------------------------------------------------------

class NonCallable(CallBatchError):
    """Raised when a contract without address or driver is invoked."""

    def __init__(self, message: str = "The contract was created as non-callable, but an attempt was made to call it!"):
        super().__init__(message)


class ReadOnlyMutation(CallBatchError):
    """Raised when a mutable method is called without a signer."""

    def __init__(self, message: str = "The contract was created as read-only, but an attempt was made to call mutable method!"):
        super().__init__(message)


class MethodNotFound(CallBatchError):
    """Raised when the contract has no invoker for a method name."""

    def __init__(self, method: str):
        super().__init__(f'Method "{method}" was not found on the contract!')
        self.method = method


class FragmentNotFound(CallBatchError):
    """Raised when the ABI has no function fragment for a method name."""

    def __init__(self, method: str):
        super().__init__(f'Fragment for method "{method}" was not found on the contract!')
        self.method = method


class EstimateStaticCall(CallBatchError):
    """Raised when gas estimation is requested for a static method."""

    def __init__(self, method: str):
        super().__init__(f'Cannot estimate gas for static (view/pure) method "{method}"!')
        self.method = method


class MissingCallData(CallBatchError):
    """Raised when a batched provider request has no target or call data."""

    def __init__(self, message: str = "Transaction request requires both 'to' and 'data' to be batched"):
        super().__init__(message)


# ---------------------------------------------------------------------------
# Aggregator errors
# ---------------------------------------------------------------------------

class SimultaneousInvocation(CallBatchError):
    """Raised when run() is triggered while another run() is executing."""

    def __init__(self, message: str = "Another execution was triggered during processing."):
        super().__init__(message)


class ResultNotFound(CallBatchError):
    """Raised when a tag has no result or the result cannot be decoded."""

    def __init__(self, tag: Any = None, message: str = "Multicall result not found."):
        super().__init__(message if tag is None else f"{message} Tag: {tag!r}")
        self.tag = tag


class ResponseNotFound(ResultNotFound):
    """Raised when a tag has no transaction response."""

    def __init__(self, tag: Any = None):
        super().__init__(tag, "Multicall transaction response not found.")


class ReceiptNotFound(ResultNotFound):
    """Raised when a tag has no transaction receipt."""

    def __init__(self, tag: Any = None):
        super().__init__(tag, "Multicall transaction receipt not found.")


class CallReverted(CallBatchError):
    """Raised when a batched static call reports failure."""

    def __init__(self, tag: Any, data: Optional[bytes] = None):
        super().__init__(f"Batched call reverted. Tag: {tag!r}")
        self.tag = tag
        self.data = data


# ---------------------------------------------------------------------------
# Cancellation errors
# ---------------------------------------------------------------------------

class Aborted(CallBatchError):
    """Raised when an abort signal fires."""

    def __init__(self, message: str = "This operation was aborted"):
        super().__init__(message)


class TimeoutExceeded(Aborted):
    """Raised when a timeout signal fires."""

    def __init__(self, timeout_ms: Optional[float] = None):
        if timeout_ms is None:
            message = "Operation aborted: timeout exceeded"
        else:
            message = f"Operation aborted: timeout of {timeout_ms} ms exceeded"
        super().__init__(message)
        self.timeout_ms = timeout_ms


# ---------------------------------------------------------------------------
# Transport errors
# ---------------------------------------------------------------------------

class ProviderError(CallBatchError):
    """Raised when the remote endpoint cannot be reached or answers badly."""
    pass


class RpcError(ProviderError):
    """Raised when the endpoint returns a JSON-RPC error object."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data
