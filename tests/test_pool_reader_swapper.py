from __future__ import annotations

import unittest
from decimal import Decimal

from monitor.pool_reader import PoolReader
from pricing.fixed_point import scale
from trading.abis import ERC20_ABI, FACTORY_ABI, PAIR_ABI, POOL_MANAGER_ABI, ROUTER_ABI
from trading.chain_client import ChainClient
from trading.errors import ChainReadFailed, SimulationReverted
from trading.models import ContractCall, RebalanceSettings, SimulationResult, TxReceipt
from trading.swapper import Swapper, expected_out_from_price, min_amount_out
from utils.addressing import ZERO_ADDRESS

from chain_fakes import POOL_MANAGER, ROUTER, TOKEN_A, TOKEN_B, WALLET, FakeAccount, FakeContract, FakeEth, fake_w3

PAIR = "0x" + "e5" * 20
FACTORY = "0x" + "f6" * 20


class PoolReaderTests(unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.eth = FakeEth()
        self.chain = ChainClient(RebalanceSettings(), w3=fake_w3(self.eth), account=FakeAccount())
        self.pool = FakeContract(POOL_MANAGER, POOL_MANAGER_ABI, {"getPoolPrice": 1600 * 10**18})
        self.reader = PoolReader(self.chain, self.pool)

    def test_pool_price_and_swap_amount(self) -> None:
        self.pool.handlers["calculateSwapAmount"] = lambda cur, tgt: tgt - cur
        self.assertEqual(self.reader.pool_price(), 1600 * 10**18)
        self.assertEqual(self.reader.calculate_swap_amount(10, 25), 15)

    def test_read_failure_is_typed(self) -> None:
        def _down() -> int:
            raise TimeoutError("rpc timeout")

        self.pool.handlers["getPoolPrice"] = _down
        with self.assertRaises(ChainReadFailed):
            self.reader.pool_price()

    def test_pair_price_orients_reserves(self) -> None:
        self.eth.register(
            FakeContract(
                PAIR,
                PAIR_ABI,
                {"getReserves": (2 * 10**18, 3300 * 10**6, 0), "token0": TOKEN_A, "token1": TOKEN_B},
            )
        )
        price = self.reader.pair_price(PAIR, TOKEN_A, TOKEN_B, base_decimals=18, quote_decimals=6)
        self.assertEqual(price, Decimal("1650"))
        inverse = self.reader.pair_price(PAIR, TOKEN_B, TOKEN_A, base_decimals=6, quote_decimals=18)
        self.assertEqual(inverse, Decimal(2) / Decimal(3300))

    def test_pair_price_rejects_foreign_tokens(self) -> None:
        self.eth.register(
            FakeContract(PAIR, PAIR_ABI, {"getReserves": (1, 1, 0), "token0": TOKEN_A, "token1": TOKEN_B})
        )
        with self.assertRaises(ChainReadFailed):
            self.reader.pair_price(PAIR, TOKEN_A, WALLET)

    def test_pair_address_maps_zero_to_none(self) -> None:
        factory = self.eth.register(FakeContract(FACTORY, FACTORY_ABI, {"getPair": ZERO_ADDRESS}))
        self.assertIsNone(self.reader.pair_address(FACTORY, TOKEN_A, TOKEN_B))
        factory.handlers["getPair"] = PAIR.upper().replace("0X", "0x")
        self.assertEqual(self.reader.pair_address(FACTORY, TOKEN_A, TOKEN_B).lower(), PAIR.lower())


class _Guard:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def ensure(self, token, owner, spender, required):
        self.calls.append((token, owner, spender, required))


class _Simulator:
    def __init__(self, ok: bool) -> None:
        self.ok = ok
        self.calls: list[ContractCall] = []

    def simulate(self, call: ContractCall) -> SimulationResult:
        self.calls.append(call)
        return SimulationResult(succeeded=self.ok, revert_reason="" if self.ok else "INSUFFICIENT_OUTPUT_AMOUNT")


class _Submitter:
    def __init__(self) -> None:
        self.calls: list[ContractCall] = []

    def submit(self, call: ContractCall, confirmations: int | None = None) -> TxReceipt:
        self.calls.append(call)
        return TxReceipt(hash="0x" + "cd" * 32, confirmed_block=5, status=1)


class SwapperTests(unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.eth = FakeEth()
        self.chain = ChainClient(RebalanceSettings(), w3=fake_w3(self.eth), account=FakeAccount())
        self.router = self.eth.register(
            FakeContract(ROUTER, ROUTER_ABI, {"getAmountsOut": lambda amount, path: [amount, amount * 1650]})
        )
        self.eth.register(FakeContract(TOKEN_A, ERC20_ABI, {"allowance": 0}))

    def _swapper(self, ok: bool = True) -> tuple[Swapper, _Guard, _Simulator, _Submitter]:
        guard, sim, sub = _Guard(), _Simulator(ok), _Submitter()
        swapper = Swapper(self.chain, ROUTER, guard, sim, sub, slippage_bps=100, deadline_seconds=600, clock=lambda: 1000.0)  # type: ignore[arg-type]
        return swapper, guard, sim, sub

    def test_integer_helpers(self) -> None:
        self.assertEqual(min_amount_out(10_000, 100), 9_900)
        self.assertEqual(min_amount_out(10_000, 20_000), 0)
        self.assertEqual(expected_out_from_price(2 * 10**18, scale("1650.123456")), 3300246912 * 10**12)

    def test_swap_quotes_simulates_and_submits(self) -> None:
        swapper, guard, sim, sub = self._swapper()
        receipt = swapper.swap_exact_tokens_for_tokens(1000, [TOKEN_A, TOKEN_B])
        self.assertEqual(receipt.status, 1)
        self.assertEqual(guard.calls, [(TOKEN_A, WALLET, ROUTER, 1000)])
        self.assertEqual(len(sim.calls), 1)
        call = sub.calls[0]
        self.assertEqual(call.fn_name, "swapExactTokensForTokens")
        self.assertEqual(call.args, (1000, 1000 * 1650 * 99 // 100, [TOKEN_A, TOKEN_B], WALLET, 1600))

    def test_reverting_swap_is_not_submitted(self) -> None:
        swapper, _guard, _sim, sub = self._swapper(ok=False)
        with self.assertRaises(SimulationReverted):
            swapper.swap_exact_tokens_for_tokens(1000, [TOKEN_A, TOKEN_B], amount_out_min=1)
        self.assertEqual(sub.calls, [])

    def test_short_path_is_rejected(self) -> None:
        swapper, *_ = self._swapper()
        with self.assertRaises(ValueError):
            swapper.swap_exact_tokens_for_tokens(1000, [TOKEN_A])


if __name__ == "__main__":
    unittest.main()
