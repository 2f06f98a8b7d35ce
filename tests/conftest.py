"""
Pytest configuration and shared fixtures for the test suite.
"""

import asyncio
import itertools
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from eth_abi import decode, encode
from eth_utils import keccak, to_checksum_address

from callbatch.config import CallBatchConfig, get_config, set_config
from callbatch.contract.contract import Contract
from callbatch.contract.interface import ContractInterface
from callbatch.errors import RpcError
from callbatch.node.interface import FeeData, Provider, Signer, TxHandle, TxReceipt, TxRequest


MULTICALL = "0xcA11bde05977b3631167028862bE2a173976CA11"
TOKEN = to_checksum_address("0x" + "11" * 20)
SENDER = to_checksum_address("0x" + "aa" * 20)
ALICE = to_checksum_address("0x" + "a1" * 20)
BOB = to_checksum_address("0x" + "b0" * 20)


TOKEN_ABI = [
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "name",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "type": "function",
        "name": "getReserves",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "reserve0", "type": "uint112"},
            {"name": "reserve1", "type": "uint112"},
        ],
    },
    {
        "type": "function",
        "name": "holders",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address[]"}],
    },
    {
        "type": "function",
        "name": "broken",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "transfer",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "mint",
        "constant": False,
        "payable": False,
        "inputs": [{"name": "amount", "type": "uint256"}],
        "outputs": [],
    },
    {
        "type": "event",
        "name": "Transfer",
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "value", "type": "uint256", "indexed": False},
        ],
    },
]


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_config() -> CallBatchConfig:
    """Create a test configuration."""
    return CallBatchConfig(
        rpc_url="http://node.test:8545",
        multicall_address=MULTICALL,
        static_calls_batch_limit=2,
        mutable_calls_batch_limit=2,
        static_calls_timeout_ms=2_000,
        mutable_calls_timeout_ms=2_000,
        wait_calls_timeout_ms=2_000,
        receipt_poll_interval_ms=1,
        log_level="DEBUG",
    )


@pytest.fixture(autouse=True)
def global_config(test_config):
    """Install the test configuration as the global one."""
    previous = get_config()
    set_config(test_config)
    yield test_config
    set_config(previous)


# ============================================================================
# In-memory Chain
# ============================================================================

class Revert(Exception):
    """Raised by a handler to make its call fail."""
    pass


Handler = Callable[..., Any]


class FakeChain(Provider):
    """
    In-memory EVM endpoint for testing.

    Contract functions are Python handlers registered per address. Calls to
    the Multicall3 address are decoded and each aggregate3 sub-call is
    dispatched to its handler.
    """

    poll_interval_ms = 1

    def __init__(self):
        self._handlers: Dict[Tuple[str, bytes], Tuple[Any, Handler]] = {}
        self._hashes = itertools.count(1)
        self.receipts: Dict[str, TxReceipt] = {}
        self.aggregate_calls: List[int] = []     # Sub-call count of every eth_call aggregate
        self.sent_txs: List[TxRequest] = []
        self.failing_txs: set = set()            # Indexes of sent transactions that revert
        self.withheld_txs: set = set()           # Indexes of sent transactions never mined
        self.call_delay: float = 0.0
        self.fee_data = FeeData(
            gas_price=10_000_000_000,
            max_fee_per_gas=30_000_000_000,
            max_priority_fee_per_gas=1_000_000_000,
        )
        self.chain_id = 31337
        self.block_number = 100
        self.nonces: Dict[str, Tuple[int, int]] = {}   # address -> (latest, pending)
        self._connected = False

    def register(self, address: str, interface: ContractInterface, method: str, handler: Handler) -> None:
        """Register a handler for a contract function."""
        fragment = interface.get_function(method)
        self._handlers[(address.lower(), fragment.selector)] = (fragment, handler)

    def register_contract(self, address: str, abi: List[dict], **handlers: Handler) -> ContractInterface:
        interface = ContractInterface(abi)
        for method, handler in handlers.items():
            self.register(address, interface, method, handler)
        return interface

    def execute(self, target: str, data: bytes) -> bytes:
        """Run a single call; raises Revert on failure."""
        entry = self._handlers.get((target.lower(), bytes(data[:4])))
        if entry is None:
            raise Revert("no such function")
        fragment, handler = entry
        args = decode([p.type for p in fragment.inputs], bytes(data[4:]))
        result = handler(*args)
        if not fragment.outputs:
            return b""
        if len(fragment.outputs) == 1:
            result = (result,)
        return encode(fragment.output_types, list(result))

    def _aggregate(self, data: bytes) -> Tuple[bytes, bool]:
        """Execute an aggregate3 payload; returns encoded result and whether it reverted."""
        (calls,) = decode(["(address,bool,bytes)[]"], bytes(data[4:]))
        results = []
        reverted = False
        for target, allow_failure, call_data in calls:
            try:
                results.append((True, self.execute(target, call_data)))
            except Revert:
                if not allow_failure:
                    reverted = True
                results.append((False, b""))
        return encode(["(bool,bytes)[]"], [results]), reverted

    @staticmethod
    def _data(tx: TxRequest) -> bytes:
        data = tx.get("data") or b""
        if isinstance(data, str):
            data = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        return data

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def call(self, tx: TxRequest, block: str = "latest") -> bytes:
        if self.call_delay:
            await asyncio.sleep(self.call_delay)
        data = self._data(tx)
        if tx["to"].lower() == MULTICALL.lower():
            self.aggregate_calls.append(len(decode(["(address,bool,bytes)[]"], data[4:])[0]))
            result, reverted = self._aggregate(data)
            if reverted:
                raise RpcError("execution reverted", 3)
            return result
        try:
            return self.execute(tx["to"], data)
        except Revert as e:
            raise RpcError(f"execution reverted: {e}", 3)

    async def estimate_gas(self, tx: TxRequest) -> int:
        data = self._data(tx)
        if tx["to"].lower() == MULTICALL.lower():
            return 50_000 * len(decode(["(address,bool,bytes)[]"], data[4:])[0])
        return 21_000

    async def get_fee_data(self) -> FeeData:
        return self.fee_data

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def get_block_number(self) -> int:
        return self.block_number

    async def get_transaction_count(self, address: str, block: str = "latest") -> int:
        latest, pending = self.nonces.get(address, (0, 0))
        return pending if block == "pending" else latest

    async def send_raw_transaction(self, raw: bytes) -> str:
        tx_hash = "0x" + keccak(raw).hex()
        self.receipts[tx_hash] = TxReceipt(tx_hash, 1, self.block_number, 21_000)
        return tx_hash

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        return self.receipts.get(tx_hash)

    def mine(self, tx: TxRequest) -> str:
        """Apply a transaction and store its receipt."""
        index = len(self.sent_txs)
        self.sent_txs.append(tx)
        tx_hash = "0x" + f"{next(self._hashes):064x}"
        if index in self.withheld_txs:
            return tx_hash

        data = self._data(tx)
        reverted = index in self.failing_txs
        if not reverted:
            if tx["to"].lower() == MULTICALL.lower():
                _, reverted = self._aggregate(data)
            else:
                try:
                    self.execute(tx["to"], data)
                except Revert:
                    reverted = True

        self.block_number += 1
        self.receipts[tx_hash] = TxReceipt(
            transaction_hash=tx_hash,
            status=0 if reverted else 1,
            block_number=self.block_number,
            gas_used=21_000,
            to=tx["to"],
        )
        return tx_hash


class FakeSigner(Signer):
    """Signer that mines transactions directly on a FakeChain."""

    def __init__(self, chain: FakeChain, address: str = SENDER):
        self._chain = chain
        self._address = address

    @property
    def address(self) -> str:
        return self._address

    @property
    def provider(self) -> FakeChain:
        return self._chain

    async def send_transaction(self, tx: TxRequest) -> TxHandle:
        tx_hash = self._chain.mine(dict(tx))
        return TxHandle(tx_hash, self._chain, dict(tx))


# ============================================================================
# Token Fixtures
# ============================================================================

@pytest.fixture
def balances() -> Dict[str, int]:
    """Token balances by lower-case address."""
    return {ALICE.lower(): 100, BOB.lower(): 5, SENDER.lower(): 1_000}


@pytest.fixture
def chain(balances) -> FakeChain:
    """Create an in-memory chain with a token deployed at TOKEN."""
    chain = FakeChain()

    def transfer(to, amount):
        if balances.get(SENDER.lower(), 0) < amount:
            raise Revert("insufficient balance")
        balances[SENDER.lower()] -= amount
        balances[to.lower()] = balances.get(to.lower(), 0) + amount
        return True

    def broken():
        raise Revert("broken")

    chain.register_contract(
        TOKEN,
        TOKEN_ABI,
        balanceOf=lambda owner: balances.get(owner.lower(), 0),
        name=lambda: "Test Token",
        getReserves=lambda: (1_000, 2_000),
        holders=lambda: [ALICE, BOB],
        broken=broken,
        transfer=transfer,
        mint=lambda amount: None,
    )
    return chain


@pytest.fixture
def signer(chain) -> FakeSigner:
    """Create a signer on the in-memory chain."""
    return FakeSigner(chain)


@pytest.fixture
def token(chain) -> Contract:
    """Read-only token binding."""
    return Contract(TOKEN_ABI, TOKEN, chain)


@pytest.fixture
def signed_token(signer) -> Contract:
    """Token binding able to send transactions."""
    return Contract(TOKEN_ABI, TOKEN, signer)
