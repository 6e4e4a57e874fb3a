"""Read-only views over the pool manager and V2-style pairs."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from web3 import Web3

from trading.abis import FACTORY_ABI, PAIR_ABI
from trading.chain_client import ChainClient
from trading.errors import ChainReadFailed
from utils.addressing import ZERO_ADDRESS, same_address

logger = logging.getLogger(__name__)


class PoolReader:
    def __init__(self, chain: ChainClient, pool_manager: Any = None) -> None:
        self.chain = chain
        self.pool_manager = pool_manager

    def _call(self, label: str, fn: Any) -> Any:
        try:
            return fn.call()
        except Exception as exc:
            raise ChainReadFailed(f"{label} read failed: {exc}") from exc

    def pool_price(self) -> int:
        if self.pool_manager is None:
            raise ChainReadFailed("pool manager contract is not configured")
        value = int(self._call("getPoolPrice", self.pool_manager.functions.getPoolPrice()))
        logger.debug("POOL_PRICE value=%s", value)
        return value

    def calculate_swap_amount(self, current_price: int, target_price: int) -> int:
        if self.pool_manager is None:
            raise ChainReadFailed("pool manager contract is not configured")
        fn = self.pool_manager.functions.calculateSwapAmount(int(current_price), int(target_price))
        return int(self._call("calculateSwapAmount", fn))

    def pair_address(self, factory_address: str, token_a: str, token_b: str) -> str | None:
        factory = self.chain.contract(factory_address, FACTORY_ABI)
        fn = factory.functions.getPair(Web3.to_checksum_address(token_a), Web3.to_checksum_address(token_b))
        pair = str(self._call("getPair", fn) or "")
        if not pair or same_address(pair, ZERO_ADDRESS):
            return None
        return Web3.to_checksum_address(pair)

    def pair_reserves(self, pair_address: str) -> tuple[str, str, int, int]:
        """Return (token0, token1, reserve0, reserve1) for a V2 pair."""
        pair = self.chain.contract(pair_address, PAIR_ABI)
        reserves = self._call("getReserves", pair.functions.getReserves())
        token0 = str(self._call("token0", pair.functions.token0()))
        token1 = str(self._call("token1", pair.functions.token1()))
        return token0, token1, int(reserves[0]), int(reserves[1])

    def pair_price(
        self,
        pair_address: str,
        base_token: str,
        quote_token: str,
        base_decimals: int = 18,
        quote_decimals: int = 18,
    ) -> Decimal:
        """Spot price of `base_token` in units of `quote_token` from the pair reserves."""
        token0, token1, reserve0, reserve1 = self.pair_reserves(pair_address)
        if same_address(token0, base_token) and same_address(token1, quote_token):
            base_reserve, quote_reserve = reserve0, reserve1
        elif same_address(token1, base_token) and same_address(token0, quote_token):
            base_reserve, quote_reserve = reserve1, reserve0
        else:
            raise ChainReadFailed(f"pair {pair_address} does not hold {base_token}/{quote_token}")
        if base_reserve <= 0:
            raise ChainReadFailed(f"pair {pair_address} has no {base_token} liquidity")
        base = Decimal(base_reserve).scaleb(-int(base_decimals))
        quote = Decimal(quote_reserve).scaleb(-int(quote_decimals))
        return quote / base
