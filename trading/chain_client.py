"""Connected web3 client bound to the signing wallet."""

from __future__ import annotations

import logging
from typing import Any

from eth_account import Account
from web3 import HTTPProvider, Web3
from web3.contract import Contract

import config
from trading.models import RebalanceSettings

logger = logging.getLogger(__name__)


def to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(bytes(value))
    text = str(value or "")
    return text if text.startswith("0x") else f"0x{text}"


class ChainClient:
    """Holds the provider, the local signing account and fee policy; no module-level state."""

    def __init__(
        self,
        settings: RebalanceSettings,
        *,
        rpc_url: str = "",
        private_key: str = "",
        wallet_address: str = "",
        w3: Any = None,
        account: Any = None,
    ) -> None:
        self.settings = settings
        if w3 is None:
            if not rpc_url:
                raise ValueError("RPC_PRIMARY/RPC_SECONDARY is empty")
            w3 = Web3(HTTPProvider(rpc_url, request_kwargs={"timeout": config.RPC_TIMEOUT_SECONDS}))
            if not w3.is_connected():
                raise ValueError("Web3 not connected")
        self.w3 = w3

        if account is None:
            if not private_key:
                raise ValueError("PRIVATE_KEY is empty")
            account = Account.from_key(private_key)
        self.account = account
        self.wallet = Web3.to_checksum_address(wallet_address or account.address)
        if self.account.address.lower() != self.wallet.lower():
            raise ValueError("WALLET_ADDRESS does not match PRIVATE_KEY")

    @classmethod
    def from_config(cls, settings: RebalanceSettings) -> "ChainClient":
        rpc = (config.RPC_PRIMARY or "").strip() or (config.RPC_SECONDARY or "").strip()
        return cls(
            settings,
            rpc_url=rpc,
            private_key=config.PRIVATE_KEY,
            wallet_address=config.WALLET_ADDRESS,
        )

    def contract(self, address: str, abi: list[dict[str, Any]]) -> Contract:
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def native_balance_wei(self) -> int:
        return int(self.w3.eth.get_balance(self.wallet))

    def latest_block(self) -> int:
        return int(self.w3.eth.block_number)

    def tx_params(self, value_wei: int = 0) -> dict[str, Any]:
        pending_nonce = self.w3.eth.get_transaction_count(self.wallet, "pending")
        latest = self.w3.eth.get_block("latest")
        base_fee = int(latest.get("baseFeePerGas") or 0)
        priority = int(Web3.to_wei(max(0.0, float(self.settings.priority_fee_gwei)), "gwei"))
        cap = int(Web3.to_wei(max(0.0, float(self.settings.max_gas_gwei)), "gwei"))
        if cap <= 0:
            # Never send with an unbounded fee cap.
            cap = int(Web3.to_wei(1, "gwei"))

        observed_gas_price = int(self.w3.eth.gas_price or 0)
        if observed_gas_price > cap:
            obs_gwei = float(Web3.from_wei(observed_gas_price, "gwei"))
            cap_gwei = float(Web3.from_wei(cap, "gwei"))
            raise RuntimeError(f"gas_price_too_high observed_gwei={obs_gwei:.3f} cap_gwei={cap_gwei:.3f}")

        # Keep max fee <= cap and >= observed gas price so the tx isn't immediately underpriced.
        max_fee = min(cap, max(observed_gas_price, (base_fee * 2) + priority))
        if max_fee <= 0:
            max_fee = min(cap, int(Web3.to_wei(1, "gwei")))

        return {
            "from": self.wallet,
            "chainId": int(self.settings.chain_id),
            "nonce": pending_nonce,
            "value": int(value_wei),
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": min(priority, max_fee),
            "type": 2,
        }
