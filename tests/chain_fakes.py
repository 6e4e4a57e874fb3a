"""In-memory stand-ins for the slice of the web3 API the rebalancer touches."""

from __future__ import annotations

import threading
import time
from types import SimpleNamespace
from typing import Any, Callable

from web3 import Web3

WALLET = Web3.to_checksum_address("0x" + "11" * 20)
POOL_MANAGER = Web3.to_checksum_address("0x" + "a1" * 20)
TOKEN_A = Web3.to_checksum_address("0x" + "b2" * 20)
TOKEN_B = Web3.to_checksum_address("0x" + "c3" * 20)
ROUTER = Web3.to_checksum_address("0x" + "d4" * 20)


class FakeCall:
    def __init__(self, contract: "FakeContract", name: str, args: tuple[Any, ...]) -> None:
        self.contract = contract
        self.name = name
        self.args = args

    def call(self, tx: dict[str, Any] | None = None, block_identifier: Any = "latest") -> Any:
        self.contract.calls.append((self.name, self.args))
        handler = self.contract.handlers[self.name]
        return handler(*self.args) if callable(handler) else handler

    def build_transaction(self, params: dict[str, Any]) -> dict[str, Any]:
        self.contract.built.append((self.name, self.args))
        tx = dict(params)
        tx["to"] = self.contract.address
        tx["data"] = "0x"
        return tx


class _Functions:
    def __init__(self, contract: "FakeContract") -> None:
        self._contract = contract

    def __getattr__(self, name: str) -> Callable[..., FakeCall]:
        def bind(*args: Any) -> FakeCall:
            return FakeCall(self._contract, name, args)

        return bind


class FakeContract:
    def __init__(self, address: str, abi: list[dict[str, Any]] | None = None, handlers: dict[str, Any] | None = None) -> None:
        self.address = Web3.to_checksum_address(address)
        self.abi = list(abi or [])
        self.handlers: dict[str, Any] = dict(handlers or {})
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.built: list[tuple[str, tuple[Any, ...]]] = []
        self.functions = _Functions(self)


class FakeEth:
    """Chain that advances one block per `block_number` read."""

    def __init__(
        self,
        *,
        receipt_block: int = 100,
        receipt_status: int = 1,
        balance_wei: int = 10**18,
        gas_estimate: int = 60_000,
        receipt_delay: float = 0.0,
    ) -> None:
        self.requests: list[str] = []
        self.sent: list[bytes] = []
        self.contracts: dict[str, FakeContract] = {}
        self.receipt_block = receipt_block
        self.receipt_status = receipt_status
        self.balance_wei = balance_wei
        self.gas_estimate = gas_estimate
        self.receipt_delay = receipt_delay
        self.waiting = 0
        self.peak_waiting = 0
        self._block = receipt_block
        self._wait_lock = threading.Lock()

    def register(self, contract: FakeContract) -> FakeContract:
        self.contracts[contract.address.lower()] = contract
        return contract

    def contract(self, address: str, abi: list[dict[str, Any]]) -> FakeContract:
        key = str(address).lower()
        if key not in self.contracts:
            self.contracts[key] = FakeContract(address, abi)
        found = self.contracts[key]
        if not found.abi:
            found.abi = list(abi)
        return found

    @property
    def block_number(self) -> int:
        self.requests.append("block_number")
        current = self._block
        self._block += 1
        return current

    @property
    def gas_price(self) -> int:
        self.requests.append("gas_price")
        return Web3.to_wei(2, "gwei")

    def get_block(self, identifier: Any) -> dict[str, Any]:
        self.requests.append("get_block")
        return {"baseFeePerGas": Web3.to_wei(1, "gwei")}

    def get_transaction_count(self, address: str, block_identifier: Any = "latest") -> int:
        self.requests.append("get_transaction_count")
        return len(self.sent)

    def get_balance(self, address: str) -> int:
        self.requests.append("get_balance")
        return self.balance_wei

    def estimate_gas(self, tx: dict[str, Any]) -> int:
        self.requests.append("estimate_gas")
        return self.gas_estimate

    def send_raw_transaction(self, raw: bytes) -> bytes:
        self.requests.append("send_raw_transaction")
        self.sent.append(raw)
        return bytes([len(self.sent)]) * 32

    def wait_for_transaction_receipt(self, tx_hash: Any, timeout: int = 120) -> dict[str, Any]:
        self.requests.append("wait_for_transaction_receipt")
        with self._wait_lock:
            self.waiting += 1
            self.peak_waiting = max(self.peak_waiting, self.waiting)
        try:
            if self.receipt_delay:
                time.sleep(self.receipt_delay)
        finally:
            with self._wait_lock:
                self.waiting -= 1
        return {"blockNumber": self.receipt_block, "status": self.receipt_status, "gasUsed": 51_000}


class FakeAccount:
    def __init__(self, address: str = WALLET) -> None:
        self.address = address
        self.signed: list[dict[str, Any]] = []

    def sign_transaction(self, tx: dict[str, Any]) -> SimpleNamespace:
        self.signed.append(dict(tx))
        return SimpleNamespace(raw_transaction=b"signed-%d" % int(tx["nonce"]))


def fake_w3(eth: FakeEth | None = None) -> SimpleNamespace:
    return SimpleNamespace(eth=eth or FakeEth())


def chain_call_count(eth: FakeEth) -> int:
    """Every node request plus every static call against registered contracts."""
    return len(eth.requests) + sum(len(c.calls) + len(c.built) for c in eth.contracts.values())
