"""
Priority submission - fee and gas bumped transactions.

Fetches the current fee data and a gas estimate, multiplies both and submits
the transaction through the signer, so it outbids transactions priced at the
network's current suggestion.
"""

import asyncio
from decimal import ROUND_CEILING, Decimal
from typing import TYPE_CHECKING, Any, List, Optional, Sequence, Tuple

import structlog

from callbatch.config import get_config
from callbatch.core.options import PriorityCallOptions
from callbatch.core.signals import AbortSignal, check_signals, race_with_signals, timeout_signal
from callbatch.node.interface import FeeData, Provider, Signer, TxHandle, TxRequest

if TYPE_CHECKING:
    from callbatch.contract.contract import Contract

logger = structlog.get_logger(__name__)


def bump(value: int, multiplier: float) -> int:
    """Multiply an integer amount and round up, without float rounding errors."""
    product = Decimal(str(multiplier)) * Decimal(int(value))
    return int(product.to_integral_value(rounding=ROUND_CEILING))


def _resolve_options(options: Optional[PriorityCallOptions]) -> PriorityCallOptions:
    defaults = PriorityCallOptions(
        multiplier=get_config().priority_multiplier,
        asynchronous=False,
        provide_chain_id=False,
    )
    return defaults.merge(options)


async def _gather_original_data(
    provider: Provider,
    signer: Signer,
    tx: TxRequest,
    asynchronous: bool,
    signals: List[AbortSignal],
) -> Tuple[FeeData, int]:
    """Fetch fee data and the gas estimate of the unmodified transaction."""
    check_signals(signals)
    if asynchronous:
        fee_data, gas_limit = await asyncio.gather(
            provider.get_fee_data(),
            signer.estimate_gas(tx),
        )
        return fee_data, gas_limit

    fee_data = await provider.get_fee_data()
    check_signals(signals)
    gas_limit = await signer.estimate_gas(tx)
    return fee_data, gas_limit


async def form_priority_tx(
    provider: Provider,
    signer: Signer,
    contract: "Contract",
    method: str,
    args: Sequence[Any] = (),
    options: Optional[PriorityCallOptions] = None,
    signals: Optional[List[AbortSignal]] = None,
) -> TxRequest:
    """
    Build a transaction request with bumped gas limit and fees.

    Args:
        provider: Provider used for fee data and chain id
        signer: Account the transaction will be sent from
        contract: Contract holding the method
        method: Function name
        args: Function arguments
        options: Priority options (multiplier, chain id handling)
        signals: Signals checked before every network step

    Returns:
        Transaction request ready for signer.send_transaction()
    """
    options = _resolve_options(options)
    signals = list(signals or [])

    base_tx = contract.populate_transaction(method, args)
    fee_data, gas_limit = await _gather_original_data(
        provider, signer, base_tx, bool(options.asynchronous), signals
    )

    tx = dict(base_tx)
    tx["gas"] = bump(gas_limit, options.multiplier)
    if fee_data.supports_eip1559:
        tx["maxFeePerGas"] = bump(fee_data.max_fee_per_gas, options.multiplier)
        tx["maxPriorityFeePerGas"] = bump(fee_data.max_priority_fee_per_gas, options.multiplier)
    elif fee_data.gas_price is not None:
        tx["gasPrice"] = bump(fee_data.gas_price, options.multiplier)

    # The signer decides the sender
    tx.pop("from", None)

    if options.provide_chain_id:
        check_signals(signals)
        tx["chainId"] = await provider.get_chain_id()
    elif options.chain_id is not None:
        tx["chainId"] = options.chain_id

    return tx


async def priority_call(
    provider: Provider,
    signer: Signer,
    contract: "Contract",
    method: str,
    args: Sequence[Any] = (),
    options: Optional[PriorityCallOptions] = None,
) -> TxHandle:
    """
    Submit a contract call with bumped fees and gas limit.

    Returns:
        Handle of the submitted transaction

    Raises:
        Aborted: If a signal or the timeout fires before submission completes
    """
    options = _resolve_options(options)
    signals = list(options.signals or [])
    timeout = timeout_signal(options.timeout_ms) if options.timeout_ms else None
    if timeout is not None:
        signals.append(timeout)

    try:
        tx = await race_with_signals(
            lambda: form_priority_tx(provider, signer, contract, method, args, options, signals),
            signals,
        )
        check_signals(signals)
        handle = await race_with_signals(lambda: signer.send_transaction(tx), signals)
    finally:
        if timeout is not None:
            timeout.cancel()

    logger.info(
        "priority_tx_submitted",
        method=method,
        tx_hash=handle.hash,
        gas=tx.get("gas"),
        multiplier=options.multiplier,
    )
    return handle


async def priority_call_estimate(
    provider: Provider,
    signer: Signer,
    contract: "Contract",
    method: str,
    args: Sequence[Any] = (),
    options: Optional[PriorityCallOptions] = None,
) -> int:
    """Return the bumped gas limit a priority submission would use."""
    options = _resolve_options(options)
    signals = list(options.signals or [])
    check_signals(signals)
    gas_limit = await race_with_signals(
        lambda: signer.estimate_gas(contract.populate_transaction(method, args)),
        signals,
    )
    return bump(gas_limit, options.multiplier)
