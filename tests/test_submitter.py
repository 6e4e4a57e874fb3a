from __future__ import annotations

import unittest

from eth_abi import encode as abi_encode
from web3.exceptions import ContractLogicError

from trading.abis import POOL_MANAGER_ABI
from trading.chain_client import ChainClient
from trading.errors import Reverted, SubmissionFailed
from trading.models import ContractCall, RebalanceSettings
from trading.submitter import TransactionSubmitter

from chain_fakes import POOL_MANAGER, FakeAccount, FakeContract, FakeEth, fake_w3


class TransactionSubmitterTests(unittest.TestCase):
    def _submitter(self, eth: FakeEth, **settings: object) -> TransactionSubmitter:
        base = {"confirmation_blocks": 2, "confirmation_poll_seconds": 0.05, "tx_timeout_seconds": 30}
        base.update(settings)
        chain = ChainClient(RebalanceSettings(**base), w3=fake_w3(eth), account=FakeAccount())  # type: ignore[arg-type]
        self.sleeps: list[float] = []
        return TransactionSubmitter(chain, sleep=self.sleeps.append)

    def _call(self) -> ContractCall:
        pool = FakeContract(POOL_MANAGER, POOL_MANAGER_ABI)
        return ContractCall(pool, "adjustPrice", (1650123456 * 10**12,))

    def test_waits_for_confirmation_depth(self) -> None:
        eth = FakeEth(receipt_block=100)
        receipt = self._submitter(eth).submit(self._call())
        self.assertEqual(receipt.status, 1)
        self.assertEqual(receipt.block_number, 100)
        self.assertEqual(receipt.confirmations, 2)
        self.assertEqual(receipt.confirmed_block, 101)
        self.assertTrue(receipt.hash.startswith("0x"))
        self.assertEqual(len(self.sleeps), 1)
        self.assertEqual(len(eth.sent), 1)

    def test_gas_limit_includes_buffer(self) -> None:
        eth = FakeEth(gas_estimate=100_000)
        submitter = self._submitter(eth, gas_limit_buffer=1.5)
        submitter.submit(self._call())
        signed = submitter.chain.account.signed[0]
        self.assertEqual(signed["gas"], 150_000)
        self.assertEqual(signed["type"], 2)
        self.assertLessEqual(signed["maxPriorityFeePerGas"], signed["maxFeePerGas"])

    def test_failed_status_raises_reverted_without_retry(self) -> None:
        eth = FakeEth(receipt_status=0)
        with self.assertRaises(Reverted) as ctx:
            self._submitter(eth).submit(self._call())
        self.assertTrue(ctx.exception.tx_hash.startswith("0x"))
        self.assertEqual(len(eth.sent), 1)

    def test_estimate_revert_is_decoded_and_nothing_is_sent(self) -> None:
        eth = FakeEth()
        data = "0x08c379a0" + abi_encode(["string"], ["paused"]).hex()

        def _estimate(tx: dict) -> int:
            raise ContractLogicError("execution reverted", data=data)

        eth.estimate_gas = _estimate  # type: ignore[method-assign]
        with self.assertRaises(Reverted) as ctx:
            self._submitter(eth).submit(self._call())
        self.assertEqual(ctx.exception.decoded.args, ("paused",))
        self.assertEqual(eth.sent, [])

    def test_insufficient_balance_is_refused_before_signing(self) -> None:
        eth = FakeEth(balance_wei=0)
        submitter = self._submitter(eth)
        with self.assertRaises(SubmissionFailed) as ctx:
            submitter.submit(self._call())
        self.assertIn("insufficient_balance_for_tx", str(ctx.exception))
        self.assertEqual(submitter.chain.account.signed, [])

    def test_gas_cap_is_enforced(self) -> None:
        eth = FakeEth(gas_estimate=900_000)
        with self.assertRaises(SubmissionFailed):
            self._submitter(eth, max_tx_gas=500_000).submit(self._call())
        self.assertEqual(eth.sent, [])

    def test_send_failure_is_not_retried(self) -> None:
        eth = FakeEth()
        attempts: list[bytes] = []

        def _send(raw: bytes) -> bytes:
            attempts.append(raw)
            raise ConnectionError("nonce too low")

        eth.send_raw_transaction = _send  # type: ignore[method-assign]
        with self.assertRaises(SubmissionFailed):
            self._submitter(eth).submit(self._call())
        self.assertEqual(len(attempts), 1)


if __name__ == "__main__":
    unittest.main()
