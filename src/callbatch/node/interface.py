"""
Abstract interfaces for EVM endpoint access.

Defines the contract for blockchain access that all drivers must implement.
A Provider performs reads and broadcasts; a Signer owns an account and turns
transaction requests into signed, submitted transactions.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import structlog

logger = structlog.get_logger(__name__)

TxRequest = Dict[str, Any]


@dataclass
class FeeData:
    """Current fee market data."""
    gas_price: Optional[int] = None                 # Legacy gas price (wei)
    max_fee_per_gas: Optional[int] = None           # EIP-1559 fee cap (wei)
    max_priority_fee_per_gas: Optional[int] = None  # EIP-1559 tip (wei)

    @property
    def supports_eip1559(self) -> bool:
        return self.max_fee_per_gas is not None and self.max_priority_fee_per_gas is not None


@dataclass
class TxReceipt:
    """Confirmed execution record of a transaction."""
    transaction_hash: str
    status: int
    block_number: int
    gas_used: int
    effective_gas_price: Optional[int] = None
    from_address: Optional[str] = None
    to: Optional[str] = None
    logs: List[dict] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, data: dict) -> "TxReceipt":
        """Build a receipt from an eth_getTransactionReceipt result."""
        def quantity(key: str) -> Optional[int]:
            value = data.get(key)
            return int(value, 16) if isinstance(value, str) else value

        return cls(
            transaction_hash=data["transactionHash"],
            status=quantity("status"),
            block_number=quantity("blockNumber"),
            gas_used=quantity("gasUsed"),
            effective_gas_price=quantity("effectiveGasPrice"),
            from_address=data.get("from"),
            to=data.get("to"),
            logs=data.get("logs") or [],
        )


@dataclass
class TxHandle:
    """
    Reference to a submitted, not yet confirmed transaction.

    Attributes:
        hash: Transaction hash
        provider: Provider the transaction was broadcast through
        request: The transaction request as signed
    """
    hash: str
    provider: "Provider" = field(repr=False)
    request: TxRequest = field(default_factory=dict, repr=False)

    @property
    def nonce(self) -> Optional[int]:
        return self.request.get("nonce")

    async def wait(
        self,
        confirmations: int = 1,
        timeout_seconds: Optional[float] = None,
    ) -> Optional[TxReceipt]:
        """
        Wait for the transaction to be mined.

        Returns:
            The receipt, or None if not confirmed within the timeout
        """
        return await self.provider.wait_for_transaction(
            self.hash,
            confirmations=confirmations,
            timeout_seconds=timeout_seconds,
        )


class Provider(ABC):
    """
    Abstract interface for read access and broadcasting.

    This interface defines all endpoint operations needed by the batcher:
    - Static calls and gas estimation
    - Fee data and chain metadata
    - Raw transaction submission
    - Transaction monitoring
    """

    poll_interval_ms: int = 1_000

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish connection to the endpoint.

        Raises:
            ProviderError: If connection cannot be established
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the endpoint."""
        pass

    @abstractmethod
    async def call(self, tx: TxRequest, block: str = "latest") -> bytes:
        """
        Execute a read-only call.

        Args:
            tx: Request with at least "to" and "data"
            block: Block tag or number to execute against

        Returns:
            Raw return data
        """
        pass

    @abstractmethod
    async def estimate_gas(self, tx: TxRequest) -> int:
        """Estimate the gas needed to execute a transaction request."""
        pass

    @abstractmethod
    async def get_fee_data(self) -> FeeData:
        """Get current fee market data."""
        pass

    @abstractmethod
    async def get_chain_id(self) -> int:
        """Get the chain id of the network."""
        pass

    @abstractmethod
    async def get_block_number(self) -> int:
        """Get the number of the latest block."""
        pass

    @abstractmethod
    async def get_transaction_count(self, address: str, block: str = "latest") -> int:
        """Get the nonce of an address at a block tag."""
        pass

    @abstractmethod
    async def send_raw_transaction(self, raw: bytes) -> str:
        """
        Broadcast a signed transaction.

        Returns:
            Transaction hash
        """
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        """Get the receipt of a mined transaction, None if still pending."""
        pass

    async def wait_for_transaction(
        self,
        tx_hash: str,
        confirmations: int = 1,
        timeout_seconds: Optional[float] = None,
    ) -> Optional[TxReceipt]:
        """
        Poll until a transaction has the requested number of confirmations.

        Args:
            tx_hash: Hash of the transaction to monitor
            confirmations: Number of confirmations to wait for
            timeout_seconds: Maximum time to wait (forever if None)

        Returns:
            The receipt if confirmed within timeout, None otherwise
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout_seconds is None else loop.time() + timeout_seconds

        while True:
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt is not None:
                if confirmations <= 1:
                    return receipt
                latest = await self.get_block_number()
                if latest - receipt.block_number + 1 >= confirmations:
                    return receipt

            if deadline is not None and loop.time() >= deadline:
                logger.warning("tx_confirmation_timeout", tx_hash=tx_hash)
                return None

            await asyncio.sleep(self.poll_interval_ms / 1000)


class Signer(ABC):
    """
    Abstract interface for an account able to submit transactions.
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksum address of the account."""
        pass

    @property
    @abstractmethod
    def provider(self) -> Provider:
        """Provider used for reads and broadcasting."""
        pass

    @abstractmethod
    async def send_transaction(self, tx: TxRequest) -> TxHandle:
        """
        Complete, sign and broadcast a transaction request.

        Missing nonce, gas, fee and chain id fields are filled in.

        Returns:
            Handle of the submitted transaction
        """
        pass

    async def estimate_gas(self, tx: TxRequest) -> int:
        """Estimate gas of a request sent from this account."""
        return await self.provider.estimate_gas({**tx, "from": self.address})

    async def get_nonce(self, block: str = "pending") -> int:
        """Get the account nonce."""
        return await self.provider.get_transaction_count(self.address, block)


Driver = Union[Provider, Signer]


def is_signer(driver: Any) -> bool:
    """Check whether a driver can submit transactions."""
    return isinstance(driver, Signer)


def provider_of(driver: Any) -> Optional[Provider]:
    """Get the provider behind a driver."""
    if driver is None:
        return None
    if is_signer(driver):
        return driver.provider
    return driver


async def wait_for_address_txs(address: str, provider: Provider, delay_ms: int = 1_000) -> None:
    """
    Wait until every pending transaction of address is mined.

    Polls the pending and latest nonces until they match.
    """
    while True:
        pending = await provider.get_transaction_count(address, "pending")
        latest = await provider.get_transaction_count(address, "latest")
        if pending <= latest:
            return
        logger.debug("address_txs_pending", address=address, pending=pending - latest)
        await asyncio.sleep(delay_ms / 1000)
