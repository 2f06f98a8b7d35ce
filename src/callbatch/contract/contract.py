"""
Contract - call dispatcher for a single deployed contract.

Routes calls to eth_call or to a signed transaction depending on the
function's mutability, with signal/timeout racing and optional priority
submission.
"""

from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union

import structlog

from callbatch.config import CallBatchConfig, get_config
from callbatch.contract.interface import ContractInterface
from callbatch.contract.priority import priority_call, priority_call_estimate
from callbatch.core.call import CallDescriptor, CallMutability
from callbatch.core.options import CallOptions, ContractOptions, PriorityCallOptions
from callbatch.core.signals import TimeoutSignal, race_with_signals, timeout_signal
from callbatch.errors import (
    EstimateStaticCall,
    MethodNotFound,
    NonCallable,
    ReadOnlyMutation,
)
from callbatch.node.interface import Driver, Provider, Signer, TxRequest, is_signer, provider_of

logger = structlog.get_logger(__name__)


class Contract:
    """
    Dispatcher for calls to one contract.

    Every ABI function is reachable through two capability maps built at
    construction:

    - ``functions[name](args, options)`` invokes the function
    - ``calls[name](args, **overrides)`` builds a CallDescriptor for batching

    Usage:
        ```python
        token = Contract(ERC20_ABI, "0x...", provider)
        balance = await token.call("balanceOf", [holder])
        aggregator.add(token.calls["balanceOf"]([holder]), "balance")
        ```
    """

    def __init__(
        self,
        abi: Union[ContractInterface, Sequence[dict]],
        address: Optional[str] = None,
        driver: Optional[Driver] = None,
        options: Optional[ContractOptions] = None,
        config: Optional[CallBatchConfig] = None,
    ):
        """
        Initialize the contract.

        Args:
            abi: JSON ABI or an already parsed interface
            address: Deployed contract address
            driver: Provider for reads, Signer for reads and writes
            options: Defaults applied to every call
            config: Configuration (global config if not provided)
        """
        self.config = config or get_config()
        self.address = address
        self.interface = ContractInterface.from_abi(abi)
        self._driver = driver
        self._options = ContractOptions.from_config(self.config).merge(options)

        self.callable = bool(address) and driver is not None
        self.readonly = not self.callable or not is_signer(driver)

        self.functions: Dict[str, Callable[..., Awaitable[Any]]] = {}
        self.calls: Dict[str, Callable[..., CallDescriptor]] = {}
        for name in self.interface.function_names:
            self.functions[name] = partial(self.call, name)
            self.calls[name] = partial(self.get_call, name)

    @property
    def provider(self) -> Optional[Provider]:
        """Current provider, if available."""
        return provider_of(self._driver)

    @property
    def signer(self) -> Optional[Signer]:
        """Current signer, if available."""
        return self._driver if is_signer(self._driver) else None

    @property
    def options(self) -> ContractOptions:
        return self._options

    def _resolve_call_options(self, options: Optional[CallOptions]) -> CallOptions:
        defaults = CallOptions(
            force_mutability=self._options.force_mutability,
            high_priority_tx=self._options.high_priority_txs,
        )
        resolved = defaults.merge(options)
        base_priority = self._options.priority_options or PriorityCallOptions()
        resolved.priority_options = base_priority.merge(options.priority_options if options else None)
        return resolved

    def _is_static(self, method: str, force_mutability: Optional[CallMutability]) -> bool:
        if force_mutability is not None:
            return force_mutability == CallMutability.STATIC
        return self.interface.get_function(method).mutability == CallMutability.STATIC

    def _timeout_signal(self, is_static: bool, timeout_ms: Optional[int] = None) -> TimeoutSignal:
        if not timeout_ms:
            if is_static:
                timeout_ms = self._options.static_calls_timeout_ms
            else:
                timeout_ms = self._options.mutable_calls_timeout_ms
        return timeout_signal(timeout_ms)

    def populate_transaction(
        self,
        method: str,
        args: Sequence[Any] = (),
        overrides: Optional[TxRequest] = None,
    ) -> TxRequest:
        """
        Build an unsigned transaction request for a call.

        Raises:
            FragmentNotFound: If the ABI has no such function
        """
        tx: TxRequest = {
            "to": self.address,
            "data": self.interface.encode_function_data(method, args),
        }
        if self.signer is not None:
            tx["from"] = self.signer.address
        if overrides:
            tx.update(overrides)
        return tx

    async def call(
        self,
        method: str,
        args: Sequence[Any] = (),
        options: Optional[CallOptions] = None,
    ) -> Any:
        """
        Execute a contract method.

        Static methods are executed with eth_call and their result decoded;
        mutable methods are submitted as transactions and a TxHandle is
        returned.

        Args:
            method: Function name or signature
            args: Function arguments
            options: Per-call options

        Returns:
            Decoded result for static calls, TxHandle for mutable calls

        Raises:
            NonCallable: If the contract has no address or driver
            MethodNotFound: If the ABI does not define the method
            ReadOnlyMutation: If a mutable method is called without signer
            Aborted: If a signal or the timeout fires
        """
        if not self.callable:
            raise NonCallable()
        if not self.interface.has_function(method):
            raise MethodNotFound(method)

        call_options = self._resolve_call_options(options)
        is_static = self._is_static(method, call_options.force_mutability)

        if not is_static and self.readonly:
            raise ReadOnlyMutation()

        signals = list(call_options.signals or [])
        timeout = self._timeout_signal(is_static, call_options.timeout_ms)
        signals.append(timeout)

        logger.debug(
            "contract_call",
            address=self.address,
            method=method,
            static=is_static,
            priority=bool(call_options.high_priority_tx),
        )

        try:
            if is_static:
                tx = self.populate_transaction(method, args)
                raw = await race_with_signals(lambda: self.provider.call(tx), signals)
                return self.interface.decode_shaped(method, raw)

            if call_options.high_priority_tx:
                priority_options = call_options.priority_options.merge(
                    PriorityCallOptions(signals=signals)
                )
                return await race_with_signals(
                    lambda: priority_call(
                        self.provider, self.signer, self, method, args, priority_options
                    ),
                    signals,
                )

            tx = self.populate_transaction(method, args)
            return await race_with_signals(lambda: self.signer.send_transaction(tx), signals)
        finally:
            timeout.cancel()

    async def estimate(
        self,
        method: str,
        args: Sequence[Any] = (),
        options: Optional[CallOptions] = None,
    ) -> int:
        """
        Estimate gas of a mutable method.

        Returns:
            Gas limit, bumped by the priority multiplier for priority calls

        Raises:
            EstimateStaticCall: If the method is static
        """
        if not self.callable:
            raise NonCallable()
        if not self.interface.has_function(method):
            raise MethodNotFound(method)

        call_options = self._resolve_call_options(options)
        if self._is_static(method, call_options.force_mutability):
            raise EstimateStaticCall(method)

        signals = list(call_options.signals or [])
        timeout = self._timeout_signal(False, call_options.timeout_ms)
        signals.append(timeout)

        try:
            if call_options.high_priority_tx and self.signer is not None:
                priority_options = call_options.priority_options.merge(
                    PriorityCallOptions(signals=signals)
                )
                return await priority_call_estimate(
                    self.provider, self.signer, self, method, args, priority_options
                )

            tx = self.populate_transaction(method, args)
            return await race_with_signals(lambda: self.provider.estimate_gas(tx), signals)
        finally:
            timeout.cancel()

    def get_call(self, method: str, args: Sequence[Any] = (), **overrides: Any) -> CallDescriptor:
        """
        Build a call descriptor for batching.

        Args:
            method: Function name or signature
            args: Function arguments
            **overrides: Replacement descriptor fields (allow_failure, mutability, ...)

        Raises:
            NonCallable: If the contract has no address
            FragmentNotFound: If the ABI has no such function
        """
        if not self.address:
            raise NonCallable("A contract address was not provided!")

        fragment = self.interface.get_function(method)
        descriptor = CallDescriptor(
            target=self.address,
            payload=self.interface.encode_function_data(method, args),
            mutability=fragment.mutability,
            allow_failure=self.config.allow_failure,
            method=method,
            interface=self.interface,
        )
        if overrides:
            descriptor = descriptor.with_options(**overrides)
        return descriptor

    def __repr__(self) -> str:
        return f"Contract(address={self.address}, callable={self.callable}, readonly={self.readonly})"
