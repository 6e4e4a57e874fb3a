from __future__ import annotations

import unittest

from eth_abi import encode as abi_encode
from web3 import Web3
from web3.exceptions import ContractLogicError

from trading.abis import POOL_MANAGER_ABI
from trading.chain_client import ChainClient
from trading.errors import ChainReadFailed
from trading.models import ContractCall, RebalanceSettings
from trading.simulator import TransactionSimulator
from utils.abi_codec import UNDECODED_MARKER

from chain_fakes import POOL_MANAGER, FakeAccount, FakeContract, FakeEth, fake_w3

PRICE_OUT_OF_BOUNDS = {
    "type": "error",
    "name": "PriceOutOfBounds",
    "inputs": [{"name": "price", "type": "uint256"}, {"name": "limit", "type": "uint256"}],
}


def _revert(data: str) -> ContractLogicError:
    return ContractLogicError("execution reverted", data=data)


def _raiser(exc: BaseException):
    def _handler(*args):
        raise exc

    return _handler


class TransactionSimulatorTests(unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.eth = FakeEth()
        self.chain = ChainClient(RebalanceSettings(), w3=fake_w3(self.eth), account=FakeAccount())
        self.simulator = TransactionSimulator(self.chain)
        self.pool = FakeContract(POOL_MANAGER, POOL_MANAGER_ABI + [PRICE_OUT_OF_BOUNDS])

    def _simulate(self, handler):
        self.pool.handlers["adjustPrice"] = handler
        return self.simulator.simulate(ContractCall(self.pool, "adjustPrice", (1650123456 * 10**12,)))

    def test_success_returns_call_output(self) -> None:
        result = self._simulate(True)
        self.assertTrue(result.succeeded)
        self.assertTrue(result.return_data)
        self.assertEqual(self.pool.calls, [("adjustPrice", (1650123456 * 10**12,))])

    def test_error_string_is_decoded(self) -> None:
        data = "0x08c379a0" + abi_encode(["string"], ["price deviation too large"]).hex()
        result = self._simulate(_raiser(_revert(data)))
        self.assertFalse(result.succeeded)
        self.assertEqual(result.revert_reason, "price deviation too large")
        self.assertEqual(result.decoded_error.kind, "error_string")

    def test_panic_code_is_labelled(self) -> None:
        data = "0x4e487b71" + abi_encode(["uint256"], [0x11]).hex()
        result = self._simulate(_raiser(_revert(data)))
        self.assertEqual(result.decoded_error.kind, "panic")
        self.assertIn("arithmetic overflow", result.revert_reason)

    def test_custom_error_matched_by_selector(self) -> None:
        selector = Web3.keccak(text="PriceOutOfBounds(uint256,uint256)")[:4].hex().removeprefix("0x")
        data = "0x" + selector + abi_encode(["uint256", "uint256"], [7, 5]).hex()
        result = self._simulate(_raiser(_revert(data)))
        self.assertEqual(result.decoded_error.kind, "custom")
        self.assertEqual(result.decoded_error.name, "PriceOutOfBounds")
        self.assertEqual(result.decoded_error.args, (7, 5))
        self.assertEqual(result.revert_reason, "PriceOutOfBounds(7, 5)")

    def test_unknown_selector_reports_undecoded(self) -> None:
        result = self._simulate(_raiser(_revert("0xdeadbeef" + "00" * 32)))
        self.assertFalse(result.succeeded)
        self.assertEqual(result.decoded_error.kind, "undecoded")
        self.assertEqual(result.revert_reason, UNDECODED_MARKER)

    def test_revert_without_data_keeps_node_message(self) -> None:
        result = self._simulate(_raiser(ContractLogicError("execution reverted")))
        self.assertFalse(result.succeeded)
        self.assertEqual(result.decoded_error.kind, "empty")
        self.assertIn("execution reverted", result.revert_reason)

    def test_transport_failure_raises_chain_read_failed(self) -> None:
        with self.assertRaises(ChainReadFailed):
            self._simulate(_raiser(ConnectionError("connection refused")))


if __name__ == "__main__":
    unittest.main()
