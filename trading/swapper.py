"""Router swaps that go through the same allowance, simulation and submission path as price updates."""

from __future__ import annotations

import logging
import time
from typing import Callable, Sequence

from web3 import Web3

from trading.abis import ROUTER_ABI
from trading.allowance_guard import AllowanceGuard
from trading.chain_client import ChainClient
from trading.errors import ChainReadFailed, SimulationReverted
from trading.models import ContractCall, ScaledAmount, TxReceipt
from trading.simulator import TransactionSimulator
from trading.submitter import TransactionSubmitter

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10_000


def min_amount_out(amount_out: int, slippage_bps: int) -> int:
    bps = min(BPS_DENOMINATOR, max(0, int(slippage_bps)))
    return int(amount_out) * (BPS_DENOMINATOR - bps) // BPS_DENOMINATOR


def expected_out_from_price(amount_in: int, scaled_price: ScaledAmount) -> int:
    """Output amount for `amount_in` at a fixed-point price, rounded down."""
    return int(amount_in) * int(scaled_price.value) // (10 ** int(scaled_price.scale))


class Swapper:
    def __init__(
        self,
        chain: ChainClient,
        router_address: str,
        allowance_guard: AllowanceGuard,
        simulator: TransactionSimulator,
        submitter: TransactionSubmitter,
        *,
        slippage_bps: int = 100,
        deadline_seconds: int = 600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.chain = chain
        self.router = chain.contract(router_address, ROUTER_ABI)
        self.allowance_guard = allowance_guard
        self.simulator = simulator
        self.submitter = submitter
        self.slippage_bps = int(slippage_bps)
        self.deadline_seconds = int(deadline_seconds)
        self._clock = clock

    def quote_amount_out(self, amount_in: int, path: Sequence[str]) -> int:
        route = [Web3.to_checksum_address(p) for p in path]
        try:
            amounts = self.router.functions.getAmountsOut(int(amount_in), route).call()
        except Exception as exc:
            raise ChainReadFailed(f"getAmountsOut read failed: {exc}") from exc
        return int(amounts[-1])

    def swap_exact_tokens_for_tokens(
        self,
        amount_in: int,
        path: Sequence[str],
        amount_out_min: int | None = None,
    ) -> TxReceipt:
        if len(path) < 2:
            raise ValueError("swap path needs at least two tokens")
        route = [Web3.to_checksum_address(p) for p in path]
        if amount_out_min is None:
            amount_out_min = min_amount_out(self.quote_amount_out(amount_in, route), self.slippage_bps)

        self.allowance_guard.ensure(route[0], self.chain.wallet, self.router.address, int(amount_in))

        deadline = int(self._clock()) + self.deadline_seconds
        call = ContractCall(
            contract=self.router,
            fn_name="swapExactTokensForTokens",
            args=(int(amount_in), int(amount_out_min), route, self.chain.wallet, deadline),
            label=f"swap({route[0]}->{route[-1]} in={amount_in} min_out={amount_out_min})",
        )
        simulation = self.simulator.simulate(call)
        if not simulation.succeeded:
            raise SimulationReverted(f"swap simulation reverted: {simulation.revert_reason}", simulation)
        logger.info("SWAP_SUBMIT in=%s min_out=%s path=%s", amount_in, amount_out_min, "->".join(route))
        return self.submitter.submit(call)
