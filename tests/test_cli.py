"""
Test suite for the command-line helpers and logging setup.
"""

import json

import pytest
import structlog

from callbatch.cli import build_config, create_parser, load_batch, to_jsonable
from callbatch.core.aggregator import BatchAggregator
from callbatch.log import setup_logging, setup_logging_from_config

from conftest import ALICE, BOB, MULTICALL, TOKEN, TOKEN_ABI


class TestParser:
    """Tests for argument parsing."""

    def test_call_arguments(self):
        """Test the options of the call command."""
        args = create_parser().parse_args([
            "call", "batch.json", "--rpc-url", "http://node.test", "--batch-size", "7",
        ])

        assert args.command == "call"
        assert args.batch_file == "batch.json"
        assert args.batch_size == 7
        assert args.log_level == "WARNING"

    def test_build_config(self):
        """Test that command-line values override the configuration."""
        args = create_parser().parse_args([
            "call", "batch.json", "--rpc-url", "http://node.test", "--multicall-address", MULTICALL,
        ])

        config = build_config(args)

        assert config.rpc_url == "http://node.test"
        assert config.multicall_address == MULTICALL
        assert config.static_calls_batch_limit == 50


class TestBatchFile:
    """Tests for batch file loading."""

    def test_to_jsonable(self):
        """Test conversion of decoded values."""
        assert to_jsonable({"a": (b"\x01", [2, b""])}) == {"a": ["0x01", [2, "0x"]]}

    @pytest.mark.asyncio
    async def test_load_and_run(self, chain, tmp_path):
        """Test queueing the calls of a batch file."""
        (tmp_path / "token.json").write_text(json.dumps(TOKEN_ABI))
        (tmp_path / "batch.json").write_text(json.dumps({
            "calls": [
                {"tag": {"holder": "alice"}, "address": TOKEN, "abi": "token.json",
                 "method": "balanceOf", "args": [ALICE]},
                {"address": TOKEN, "abi": TOKEN_ABI, "method": "balanceOf", "args": [BOB]},
            ],
        }))
        aggregator = BatchAggregator(chain)

        tags = load_batch(tmp_path / "batch.json", chain, aggregator)
        await aggregator.run()

        assert tags == [{"holder": "alice"}, 1]
        assert aggregator.get({"holder": "alice"}) == 100
        assert aggregator.get(1) == 5


class TestLogging:
    """Tests for logging setup."""

    def test_setup_logging(self):
        """Test that logging can be configured in both formats."""
        setup_logging("DEBUG", json_format=True)
        setup_logging("INFO")

    def test_setup_from_config(self, test_config):
        """Test configuring logging from the settings."""
        setup_logging_from_config(test_config)

        assert structlog.is_configured()
