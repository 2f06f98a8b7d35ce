"""
Configuration management for the call batcher.

Supports configuration via environment variables and .env files.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Multicall3 is deployed at the same address on most EVM networks.
MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"


class CallBatchConfig(BaseSettings):
    """
    Configuration settings for the call batcher.

    All settings can be configured via environment variables with the CALLBATCH_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="CALLBATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Endpoint settings
    rpc_url: str = Field(
        default="http://127.0.0.1:8545",
        description="JSON-RPC endpoint URL"
    )
    rpc_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for JSON-RPC requests"
    )
    chain_id: Optional[int] = Field(
        default=None,
        description="Chain id used for signing (queried from the endpoint if unset)"
    )

    # Signer settings
    private_key: Optional[str] = Field(
        default=None,
        description="Hex-encoded private key of the signing account"
    )
    private_key_path: Optional[str] = Field(
        default=None,
        description="Path to a file holding the hex-encoded private key"
    )

    # Multicall settings
    multicall_address: str = Field(
        default=MULTICALL3_ADDRESS,
        description="Address of the Multicall3 contract"
    )
    allow_failure: bool = Field(
        default=True,
        description="Default partial-failure tolerance of batched calls"
    )
    wait_for_txs: bool = Field(
        default=True,
        description="Wait for receipts of mutable batches"
    )
    static_calls_batch_limit: int = Field(
        default=50,
        ge=1,
        description="Maximum number of static calls in one aggregate call"
    )
    mutable_calls_batch_limit: int = Field(
        default=10,
        ge=1,
        description="Maximum number of mutable calls in one aggregate transaction"
    )
    static_calls_timeout_ms: int = Field(
        default=10_000,
        ge=1,
        description="Timeout of a single static call"
    )
    mutable_calls_timeout_ms: int = Field(
        default=20_000,
        ge=1,
        description="Timeout of a single mutable call (submission and receipt)"
    )
    wait_calls_timeout_ms: int = Field(
        default=30_000,
        ge=1,
        description="Timeout of wait accessors on the aggregator"
    )
    batch_delay_ms: int = Field(
        default=0,
        ge=0,
        description="Delay between consecutive aggregate calls"
    )

    # Priority transactions
    priority_multiplier: float = Field(
        default=1.5,
        gt=0,
        description="Multiplier applied to fees and gas limit of priority transactions"
    )

    # Receipt polling
    receipt_poll_interval_ms: int = Field(
        default=1_000,
        ge=1,
        description="Polling interval while waiting for receipts"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format"
    )


# Global config instance
_config: Optional[CallBatchConfig] = None


def get_config() -> CallBatchConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = CallBatchConfig()
    return _config


def set_config(config: CallBatchConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
