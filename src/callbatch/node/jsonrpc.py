"""
JSON-RPC adapter for node integration.

Provides EVM endpoint access over HTTP JSON-RPC 2.0.
"""

import itertools
from typing import Any, List, Optional

import httpx
import structlog
from eth_utils import to_hex

from callbatch.config import CallBatchConfig, get_config
from callbatch.errors import ProviderError, RpcError
from callbatch.node.interface import FeeData, Provider, TxReceipt, TxRequest

logger = structlog.get_logger(__name__)

# Transaction request fields sent as hex quantities
_QUANTITY_FIELDS = (
    "gas",
    "gasPrice",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "value",
    "nonce",
    "chainId",
)


def _quantity(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16)
    return int(value)


def format_tx_request(tx: TxRequest) -> dict:
    """Convert a transaction request into its JSON-RPC form."""
    params = {}
    for key, value in tx.items():
        if value is None:
            continue
        if key in _QUANTITY_FIELDS and isinstance(value, int):
            params[key] = hex(value)
        elif isinstance(value, (bytes, bytearray)):
            params[key] = to_hex(value)
        else:
            params[key] = value
    return params


class JsonRpcProvider(Provider):
    """
    JSON-RPC provider.

    Implements the Provider interface on top of an httpx.AsyncClient.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        config: Optional[CallBatchConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the JSON-RPC provider.

        Args:
            url: Endpoint URL (rpc_url from configuration if not provided)
            config: Configuration. Uses global config if not provided.
            client: Pre-built HTTP client, mostly for tests
        """
        self.config = config or get_config()
        self.url = url or self.config.rpc_url
        self.poll_interval_ms = self.config.receipt_poll_interval_ms
        self._client = client
        self._ids = itertools.count(1)
        self._chain_id: Optional[int] = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Content-Type": "application/json"},
                timeout=self.config.rpc_timeout_seconds,
            )
        return self._client

    async def connect(self) -> None:
        """Create the HTTP client and check the endpoint answers."""
        self._ensure_client()

        chain_id = await self.get_chain_id()
        logger.info("rpc_connected", url=self.url, chain_id=chain_id)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("rpc_disconnected", url=self.url)

    async def _request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Send a JSON-RPC request and return its result."""
        client = self._ensure_client()
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            response = await client.post(self.url, json=payload)
        except httpx.RequestError as e:
            logger.error("rpc_request_error", method=method, error=str(e))
            raise ProviderError(f"JSON-RPC request failed: {e}")

        if response.status_code != 200:
            logger.error(
                "rpc_request_failed",
                method=method,
                status=response.status_code,
                error=response.text,
            )
            raise ProviderError(f"JSON-RPC endpoint error ({response.status_code}): {response.text}")

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON-RPC response: {e}")

        error = body.get("error")
        if error:
            logger.debug("rpc_error", method=method, code=error.get("code"), error=error.get("message"))
            raise RpcError(error.get("message", "Unknown error"), error.get("code"), error.get("data"))

        return body.get("result")

    async def call(self, tx: TxRequest, block: str = "latest") -> bytes:
        result = await self._request("eth_call", [format_tx_request(tx), block])
        return bytes.fromhex(result[2:] if result.startswith("0x") else result)

    async def estimate_gas(self, tx: TxRequest) -> int:
        return _quantity(await self._request("eth_estimateGas", [format_tx_request(tx)]))

    async def get_fee_data(self) -> FeeData:
        """
        Get current fee data.

        EIP-1559 fields are only filled when the latest block carries a base
        fee; the fee cap follows the usual 2 * base fee + tip rule.
        """
        gas_price = _quantity(await self._request("eth_gasPrice"))
        block = await self._request("eth_getBlockByNumber", ["latest", False])

        base_fee = block.get("baseFeePerGas") if block else None
        if base_fee is None:
            return FeeData(gas_price=gas_price)

        try:
            priority_fee = _quantity(await self._request("eth_maxPriorityFeePerGas"))
        except RpcError:
            priority_fee = 1_500_000_000

        return FeeData(
            gas_price=gas_price,
            max_fee_per_gas=_quantity(base_fee) * 2 + priority_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    async def get_chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = _quantity(await self._request("eth_chainId"))
        return self._chain_id

    async def get_block_number(self) -> int:
        return _quantity(await self._request("eth_blockNumber"))

    async def get_transaction_count(self, address: str, block: str = "latest") -> int:
        return _quantity(await self._request("eth_getTransactionCount", [address, block]))

    async def send_raw_transaction(self, raw: bytes) -> str:
        tx_hash = await self._request("eth_sendRawTransaction", [to_hex(raw)])
        logger.debug("raw_tx_sent", tx_hash=tx_hash)
        return tx_hash

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        data = await self._request("eth_getTransactionReceipt", [tx_hash])
        if data is None:
            return None
        return TxReceipt.from_rpc(data)
