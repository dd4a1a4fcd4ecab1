"""
Pytest Configuration
In-memory chain, deterministic time and per-test temp directories.
"""

import asyncio
import itertools
import os
import random
import tempfile
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import pytest

from ark_common.canon import canon_addr, compute_order_hash
from ark_common.felt import AbiIndex
from ark_common.signing import LocalAccount, invoke_digest, invoke_payload
from ark_orders.client import ArkClient
from ark_orders.config import Settings
from ark_orders.errors import ChainError, NonceCollisionError
from ark_orders.protocols.chain_provider import Receipt
from ark_orders.registry import AddressRegistry
from ark_orders.util.async_tools import DeterministicClock

# Set deterministic seed for all tests
RNG_SEED = int(os.getenv("RNG_SEED", "1337"))
random.seed(RNG_SEED)

NOW = 1_700_000_000

ADDR = "core::starknet::contract_address::ContractAddress"
FELT = "core::felt252"
U256 = "core::integer::u256"
U64 = "core::integer::u64"
BOOL = "core::bool"

CHAIN_STATUS_TAGS = [
    "Open", "FulfillPending", "Fulfilled", "Executed", "CancelledUser",
    "CancelledByNewOrder", "CancelledAssetFault", "CancelledOwnership", "Expired",
    # known to the ABI, not to the client
    "Paused",
]
ORDER_TYPE_TAGS = ["Listing", "Auction", "Offer", "CollectionOffer"]


def _fn(name, inputs, outputs=(), mutability="view"):
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"type": t} for t in outputs],
        "state_mutability": mutability,
    }


def _enum(name, variants):
    return {"type": "enum", "name": name, "variants": [{"name": v, "type": "()"} for v in variants]}


ERC20_ABI = [
    {"type": "interface", "name": "openzeppelin::token::erc20::IERC20", "items": [
        _fn("allowance", [("owner", ADDR), ("spender", ADDR)], [U256]),
        _fn("balance_of", [("account", ADDR)], [U256]),
        _fn("approve", [("spender", ADDR), ("amount", U256)], [BOOL], "external"),
    ]},
]

ERC721_ABI = [
    {"type": "interface", "name": "openzeppelin::token::erc721::IERC721", "items": [
        _fn("owner_of", [("token_id", U256)], [ADDR]),
        _fn("get_approved", [("token_id", U256)], [ADDR]),
        _fn("is_approved_for_all", [("owner", ADDR), ("operator", ADDR)], [BOOL]),
        _fn("approve", [("to", ADDR), ("token_id", U256)], [], "external"),
    ]},
]

EXECUTOR_ABI = [
    _enum("ark::RouteType", ["Erc20ToErc721", "Erc721ToErc20"]),
    {"type": "struct", "name": "ark::OrderV1", "members": [
        {"name": "route", "type": "ark::RouteType"},
        {"name": "currency_address", "type": ADDR},
        {"name": "currency_chain_id", "type": FELT},
        {"name": "salt", "type": FELT},
        {"name": "offerer", "type": ADDR},
        {"name": "token_chain_id", "type": FELT},
        {"name": "token_address", "type": ADDR},
        {"name": "token_id", "type": f"core::option::Option::<{U256}>"},
        {"name": "quantity", "type": U256},
        {"name": "start_amount", "type": U256},
        {"name": "end_amount", "type": U256},
        {"name": "start_date", "type": U64},
        {"name": "end_date", "type": U64},
        {"name": "broker_id", "type": ADDR},
        {"name": "additional_data", "type": f"core::array::Span::<{FELT}>"},
    ]},
    {"type": "struct", "name": "ark::FulfillInfo", "members": [
        {"name": "order_hash", "type": FELT},
        {"name": "related_order_hash", "type": f"core::option::Option::<{FELT}>"},
        {"name": "fulfiller", "type": ADDR},
        {"name": "token_chain_id", "type": FELT},
        {"name": "token_address", "type": ADDR},
        {"name": "token_id", "type": f"core::option::Option::<{U256}>"},
        {"name": "fulfill_broker_address", "type": ADDR},
    ]},
    {"type": "struct", "name": "ark::CancelInfo", "members": [
        {"name": "order_hash", "type": FELT},
        {"name": "canceller", "type": ADDR},
        {"name": "token_chain_id", "type": FELT},
        {"name": "token_address", "type": ADDR},
        {"name": "token_id", "type": f"core::option::Option::<{U256}>"},
    ]},
    {"type": "interface", "name": "ark::IExecutor", "items": [
        _fn("create_order", [("order", "ark::OrderV1")], [], "external"),
        _fn("fulfill_order", [("fulfill_info", "ark::FulfillInfo")], [], "external"),
        _fn("cancel_order", [("cancel_info", "ark::CancelInfo")], [], "external"),
    ]},
]

ORDERBOOK_ABI = [
    _enum("ark::OrderStatus", CHAIN_STATUS_TAGS),
    _enum("ark::OrderType", ORDER_TYPE_TAGS),
    {"type": "interface", "name": "ark::IOrderbook", "items": [
        _fn("get_order_status", [("order_hash", FELT)], ["core::option::Option::<ark::OrderStatus>"]),
        _fn("get_order_type", [("order_hash", FELT)], ["ark::OrderType"]),
    ]},
]


class Revert(Exception):
    """Raised by a fake contract handler; becomes a REVERTED receipt."""


class FakeChain:
    """
    In-memory ChainProvider.

    Writes execute at broadcast and their receipts are handed out by
    ``wait_for_inclusion``. ``log`` records ("broadcast" | "included",
    method, tx_hash, sender) in the order things happened.
    """

    def __init__(self, registry: AddressRegistry):
        self.registry = registry
        self.chain_id = registry.chain_id
        self.executor = registry.resolve("executor")
        self.orderbook = registry.resolve("orderbook")
        self.currency = registry.resolve("currency")
        self.collectible = registry.resolve("collectible")

        self.abis: Dict[str, List[Dict[str, Any]]] = {
            self.executor: EXECUTOR_ABI,
            self.orderbook: ORDERBOOK_ABI,
            self.currency: ERC20_ABI,
            self.collectible: ERC721_ABI,
        }
        self.indexes = {addr: AbiIndex(abi) for addr, abi in self.abis.items()}

        self.balances: Dict[str, int] = defaultdict(int)
        self.allowances: Dict[tuple, int] = defaultdict(int)
        self.token_owners: Dict[int, str] = {}
        self.token_approvals: Dict[int, str] = {}
        self.operators = set()

        self.orders: Dict[int, Dict[str, Any]] = {}
        self.raw_status: Dict[int, List[int]] = {}

        self.nonces: Dict[str, int] = defaultdict(int)
        self.receipts: Dict[str, Receipt] = {}
        self.tx_methods: Dict[str, str] = {}
        self.log: List[tuple] = []
        self.calls: List[tuple] = []
        self.interface_requests = 0

        self.call_failures: Dict[str, List[Exception]] = defaultdict(list)
        self.invoke_failures: Dict[str, List[Exception]] = defaultdict(list)
        self.inclusion_failures: Dict[str, List[Exception]] = defaultdict(list)
        self.gates: Dict[str, asyncio.Event] = {}
        self.broadcast_gates: Dict[str, asyncio.Event] = {}
        self.missing_interfaces = set()
        self._tx_ids = itertools.count(1)

    # -----------------------
    # Test helpers
    # -----------------------

    def mint_currency(self, owner: str, amount: int):
        self.balances[canon_addr(owner)] += amount

    def mint_token(self, owner: str, token_id: int):
        self.token_owners[token_id] = canon_addr(owner)

    def allowance(self, owner: str, spender: Optional[str] = None) -> int:
        return self.allowances[(canon_addr(owner), spender or self.executor)]

    def fail_call(self, method: str, error: Exception, times: int = 1):
        self.call_failures[method].extend([error] * times)

    def fail_invoke(self, method: str, error: Exception, times: int = 1):
        self.invoke_failures[method].extend([error] * times)

    def fail_inclusion(self, method: str, error: Exception, times: int = 1):
        self.inclusion_failures[method].extend([error] * times)

    def gate(self, method: str) -> asyncio.Event:
        """Hold inclusion of ``method`` transactions until the event is set."""
        event = self.gates[method] = asyncio.Event()
        return event

    def gate_broadcast(self, method: str) -> asyncio.Event:
        """Hold broadcasts of ``method`` until the event is set."""
        event = self.broadcast_gates[method] = asyncio.Event()
        return event

    def set_status(self, order_hash: int, tag: str):
        self.orders[order_hash]["status"] = tag

    def broadcasts(self, method: Optional[str] = None) -> List[tuple]:
        return [e for e in self.log if e[0] == "broadcast" and (method is None or e[1] == method)]

    def index_of(self, event: str, method: str) -> int:
        for i, entry in enumerate(self.log):
            if entry[0] == event and entry[1] == method:
                return i
        raise AssertionError(f"no {event} of {method} in {self.log}")

    # -----------------------
    # ChainProvider
    # -----------------------

    async def get_interface(self, address: str):
        self.interface_requests += 1
        address = canon_addr(address)
        if address not in self.abis or address in self.missing_interfaces:
            raise ChainError(f"Contract not found: {address}", "CONTRACT_NOT_FOUND", {"address": address})
        return self.abis[address]

    async def call(self, address: str, method: str, calldata: List[int]) -> List[int]:
        address = canon_addr(address)
        index = self.indexes[address]
        args = self._decode_inputs(index, method, calldata)
        self.calls.append((address, method, args))
        await asyncio.sleep(0)
        if self.call_failures[method]:
            raise self.call_failures[method].pop(0)
        if address == self.orderbook and method == "get_order_status" and args["order_hash"] in self.raw_status:
            return list(self.raw_status[args["order_hash"]])
        value = getattr(self, f"_view_{method}")(address, **args)
        outputs = index.function(method)["outputs"]
        return index.encode(outputs[0]["type"], value) if outputs else []

    async def get_nonce(self, address: str) -> int:
        return self.nonces[canon_addr(address)]

    async def invoke(self, address: str, method: str, calldata: List[int], account, nonce: int) -> str:
        address = canon_addr(address)
        sender = canon_addr(account.address)
        payload = invoke_payload(sender, [{"to": address, "selector": 1, "calldata": calldata}], self.chain_id)
        account.sign(invoke_digest(payload, nonce))
        gate = self.broadcast_gates.get(method)
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)

        if self.invoke_failures[method]:
            raise self.invoke_failures[method].pop(0)
        if nonce != self.nonces[sender]:
            raise NonceCollisionError(f"Invalid nonce {nonce}, expected {self.nonces[sender]}",
                                      {"sender": sender, "nonce": nonce})
        self.nonces[sender] += 1

        tx_hash = hex(next(self._tx_ids) << 8)
        args = self._decode_inputs(self.indexes[address], method, calldata)
        try:
            getattr(self, f"_exec_{method}")(address, sender, **args)
            receipt = Receipt(tx_hash, "SUCCEEDED", "ACCEPTED_ON_L2", block_number=len(self.receipts) + 1)
        except Revert as e:
            receipt = Receipt(tx_hash, "REVERTED", "ACCEPTED_ON_L2", revert_reason=str(e))
        self.receipts[tx_hash] = receipt
        self.tx_methods[tx_hash] = method
        self.log.append(("broadcast", method, tx_hash, sender))
        return tx_hash

    async def wait_for_inclusion(self, transaction_hash: str) -> Receipt:
        method = self.tx_methods[transaction_hash]
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)
        if self.inclusion_failures[method]:
            raise self.inclusion_failures[method].pop(0)
        self.log.append(("included", method, transaction_hash, None))
        return self.receipts[transaction_hash]

    def _decode_inputs(self, index: AbiIndex, method: str, calldata: List[int]) -> Dict[str, Any]:
        args, pos = {}, 0
        for param in index.function(method)["inputs"]:
            args[param["name"]], pos = index.decode(param["type"], calldata, pos)
        return args

    # -----------------------
    # Views
    # -----------------------

    def _view_allowance(self, address, owner, spender):
        return self.allowances[(hex(owner), hex(spender))]

    def _view_balance_of(self, address, account):
        return self.balances[hex(account)]

    def _view_owner_of(self, address, token_id):
        return self.token_owners.get(token_id, "0x0")

    def _view_get_approved(self, address, token_id):
        return self.token_approvals.get(token_id, "0x0")

    def _view_is_approved_for_all(self, address, owner, operator):
        return (hex(owner), hex(operator)) in self.operators

    def _view_get_order_status(self, address, order_hash):
        order = self.orders.get(order_hash)
        return order["status"] if order else None

    def _view_get_order_type(self, address, order_hash):
        order = self.orders.get(order_hash)
        if order is None:
            raise ChainError("Contract error: order not found", "TX_REVERTED", {"reason": "order not found"})
        return order["type"]

    # -----------------------
    # Writes
    # -----------------------

    def _exec_approve(self, address, sender, **args):
        if address == self.currency:
            self.allowances[(sender, hex(args["spender"]))] = args["amount"]
            return
        token_id = args["token_id"]
        if self.token_owners.get(token_id) != sender:
            raise Revert("ERC721: approve caller is not owner")
        self.token_approvals[token_id] = hex(args["to"])

    def _exec_create_order(self, address, sender, order):
        fields = dict(order)
        route = fields["route"]
        fields["route"] = route.index
        fields["offerer"] = hex(fields["offerer"])
        if fields["offerer"] != sender:
            raise Revert("Caller is not the offerer")
        order_hash = compute_order_hash(fields)

        if route.name == "Erc20ToErc721":
            if self.allowances[(sender, self.executor)] < fields["start_amount"]:
                raise Revert("Executor not approved for currency")
            order_type = "Offer" if fields["token_id"] is not None else "CollectionOffer"
        else:
            token_id = fields["token_id"]
            if self.token_owners.get(token_id) != sender:
                raise Revert("Offerer does not own the token")
            if self.token_approvals.get(token_id) != self.executor:
                raise Revert("Executor not approved for token")
            order_type = "Auction" if fields["end_amount"] else "Listing"
        if order_hash in self.orders:
            raise Revert("Order already exists")
        self.orders[order_hash] = {"status": "Open", "type": order_type, "offerer": sender, "fields": fields}

    def _exec_fulfill_order(self, address, sender, fulfill_info):
        order = self.orders.get(fulfill_info["order_hash"])
        if order is None:
            raise Revert("Order not found")
        if order["status"] != "Open":
            raise Revert(f"Order not fulfillable ({order['status']})")
        if order["type"] in ("Offer", "CollectionOffer"):
            token_id = fulfill_info["token_id"]
            if self.token_approvals.get(token_id) != self.executor:
                raise Revert("Executor not approved for token")
        elif self.allowances[(sender, self.executor)] < order["fields"]["start_amount"]:
            raise Revert("Executor not approved for currency")
        order["status"] = "Executed"

    def _exec_cancel_order(self, address, sender, cancel_info):
        order = self.orders.get(cancel_info["order_hash"])
        if order is None:
            raise Revert("Order not found")
        if hex(cancel_info["canceller"]) != sender or order["offerer"] != sender:
            raise Revert("Caller is not the offerer")
        if order["status"] != "Open":
            raise Revert(f"Order not cancellable ({order['status']})")
        order["status"] = "CancelledUser"


# -----------------------
# Fixtures
# -----------------------

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def deterministic_time():
    """Provide deterministic time for tests."""
    clock = DeterministicClock()
    clock.freeze(at=NOW)
    yield clock
    clock.unfreeze()


@pytest.fixture
def registry() -> AddressRegistry:
    return AddressRegistry.for_network("development")


@pytest.fixture
def chain(registry) -> FakeChain:
    return FakeChain(registry)


@pytest.fixture
def fast_settings(monkeypatch) -> Settings:
    """Settings with millisecond retry and poll intervals."""
    for name in ("ARK_ENV", "ARK_NETWORK", "ARK_CONTRACT_OVERRIDES"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ARK_RETRY_BASE_MS", "1")
    monkeypatch.setenv("ARK_RETRY_MAX_MS", "5")
    monkeypatch.setenv("ARK_POLL_INTERVAL_MS", "5")
    monkeypatch.setenv("ARK_POLL_MAX_INTERVAL_MS", "20")
    monkeypatch.setenv("ARK_AUDIT_LOG_DIR", "")
    return Settings()


@pytest.fixture
def offerer() -> LocalAccount:
    return LocalAccount("0x0a11ce", "0x" + "11" * 32)


@pytest.fixture
def fulfiller() -> LocalAccount:
    return LocalAccount("0x0b0b", "0x" + "22" * 32)


@pytest.fixture
def broker() -> str:
    return "0xb40ce4"


@pytest.fixture
def client(chain, registry, fast_settings, deterministic_time) -> ArkClient:
    return ArkClient(chain, registry, settings=fast_settings, clock=deterministic_time)


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Keep a developer's .env from selecting a different network."""
    monkeypatch.delenv("ARK_ENV", raising=False)
    yield


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with deterministic settings."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "deterministic: marks tests as deterministic")
