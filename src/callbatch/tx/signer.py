"""
Local Signer - signs transactions with an in-process private key.

Manages the signing key and completes, signs and broadcasts transaction
requests.
"""

from pathlib import Path
from typing import Optional

import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount

from callbatch.config import CallBatchConfig, get_config
from callbatch.node.interface import Provider, Signer, TxHandle, TxRequest

logger = structlog.get_logger(__name__)


class LocalSigner(Signer):
    """
    Signer backed by a private key held in memory.

    Supports loading keys from:
    - File path (hex private key, optionally 0x-prefixed)
    - Hex string (for environment variable configuration)

    Security note: In production, consider using a HSM or
    secure key management service.
    """

    def __init__(self, provider: Provider, config: Optional[CallBatchConfig] = None):
        """
        Initialize the signer.

        Args:
            provider: Provider used to fill and broadcast transactions
            config: Configuration. Uses global config if not provided.
        """
        self.config = config or get_config()
        self._provider = provider
        self._account: Optional[LocalAccount] = None

    def load_key_from_file(self, key_path: str) -> None:
        """
        Load the private key from a file.

        Args:
            key_path: Path to the key file
        """
        path = Path(key_path)
        if not path.exists():
            raise FileNotFoundError(f"Private key file not found: {key_path}")

        self._account = Account.from_key(path.read_text().strip())
        logger.info("signing_key_loaded", path=key_path, address=self._account.address)

    def load_key_from_hex(self, key_hex: str) -> None:
        """
        Load the private key from a hex string.

        Args:
            key_hex: 32-byte private key in hex
        """
        self._account = Account.from_key(key_hex)
        logger.info("signing_key_loaded_from_hex", address=self._account.address)

    def load_from_config(self) -> None:
        """Load the private key from configuration."""
        if self.config.private_key_path:
            self.load_key_from_file(self.config.private_key_path)
        elif self.config.private_key:
            self.load_key_from_hex(self.config.private_key)
        else:
            raise ValueError("No private key configured")

    @property
    def is_loaded(self) -> bool:
        """Check if a private key is loaded."""
        return self._account is not None

    @property
    def address(self) -> str:
        if self._account is None:
            raise ValueError("No private key loaded")
        return self._account.address

    @property
    def provider(self) -> Provider:
        return self._provider

    async def populate(self, tx: TxRequest) -> TxRequest:
        """
        Fill every field needed for signing.

        Missing nonce, chain id, gas limit and fees are fetched from the
        provider; a request carrying neither gasPrice nor EIP-1559 fees
        gets whichever the network supports.
        """
        filled = {key: value for key, value in tx.items() if key != "from" and value is not None}
        filled.setdefault("value", 0)

        if "nonce" not in filled:
            filled["nonce"] = await self.get_nonce()
        if "chainId" not in filled:
            filled["chainId"] = self.config.chain_id or await self._provider.get_chain_id()
        if "gas" not in filled:
            filled["gas"] = await self.estimate_gas(filled)

        has_fees = "gasPrice" in filled or "maxFeePerGas" in filled
        if not has_fees:
            fee_data = await self._provider.get_fee_data()
            if fee_data.supports_eip1559:
                filled["maxFeePerGas"] = fee_data.max_fee_per_gas
                filled["maxPriorityFeePerGas"] = fee_data.max_priority_fee_per_gas
            else:
                filled["gasPrice"] = fee_data.gas_price

        return filled

    def sign(self, tx: TxRequest) -> bytes:
        """
        Sign a fully populated transaction.

        Returns:
            Raw signed transaction
        """
        if self._account is None:
            raise ValueError("No private key loaded")
        signed = self._account.sign_transaction(tx)
        return bytes(signed.raw_transaction)

    async def send_transaction(self, tx: TxRequest) -> TxHandle:
        filled = await self.populate(tx)
        raw = self.sign(filled)
        tx_hash = await self._provider.send_raw_transaction(raw)

        logger.info(
            "tx_submitted",
            tx_hash=tx_hash,
            to=filled.get("to"),
            nonce=filled["nonce"],
            gas=filled["gas"],
        )
        return TxHandle(tx_hash, self._provider, filled)


def generate_test_signer(provider: Provider, config: Optional[CallBatchConfig] = None) -> LocalSigner:
    """
    Generate a signer with a fresh random key (for testing only).

    Returns:
        Signer holding the new key
    """
    signer = LocalSigner(provider, config)
    signer._account = Account.create()
    return signer
