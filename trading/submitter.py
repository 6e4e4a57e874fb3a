"""Send state-changing calls and wait for confirmation depth. Never retries."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from web3 import Web3
from web3.exceptions import ContractLogicError

from trading.chain_client import ChainClient, to_hex
from trading.errors import Reverted, SubmissionFailed
from trading.models import ContractCall, TxReceipt
from utils.abi_codec import decode_revert, revert_data_from_exception

logger = logging.getLogger(__name__)


class TransactionSubmitter:
    def __init__(self, chain: ChainClient, *, sleep: Callable[[float], None] = time.sleep) -> None:
        self.chain = chain
        self.settings = chain.settings
        self._sleep = sleep
        # Nonce read -> sign -> send must not interleave for one wallet.
        self._send_lock = threading.Lock()

    def submit(self, call: ContractCall, confirmations: int | None = None) -> TxReceipt:
        depth = max(1, int(confirmations or self.settings.confirmation_blocks))
        with self._send_lock:
            tx = self._build(call)
            tx_hash = self._sign_and_send(tx, call)
        logger.info("TX_SENT call=%s hash=%s gas=%s", call.describe(), tx_hash, tx.get("gas"))

        try:
            receipt = self.chain.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=int(self.settings.tx_timeout_seconds)
            )
        except Exception as exc:
            raise SubmissionFailed(f"receipt wait failed call={call.describe()}: {exc}", tx_hash) from exc

        block_number = int(receipt["blockNumber"])
        status = int(receipt["status"])
        if status != 1:
            raise Reverted(f"tx_failed call={call.describe()} hash={tx_hash} block={block_number}", tx_hash)

        confirmed_at, seen = self._wait_for_depth(tx_hash, block_number, depth)
        logger.info(
            "TX_CONFIRMED call=%s hash=%s block=%s depth=%s/%s",
            call.describe(),
            tx_hash,
            block_number,
            seen,
            depth,
        )
        return TxReceipt(
            hash=tx_hash,
            confirmed_block=confirmed_at,
            status=status,
            block_number=block_number,
            gas_used=int(receipt.get("gasUsed") or 0),
            confirmations=seen,
        )

    def _build(self, call: ContractCall) -> dict[str, Any]:
        try:
            tx = call.bound().build_transaction(self.chain.tx_params(value_wei=call.value))
            gas = int(self.chain.w3.eth.estimate_gas(tx))
        except ContractLogicError as exc:
            decoded = decode_revert(call.abi, revert_data_from_exception(exc))
            raise Reverted(f"gas estimation reverted call={call.describe()}: {decoded.summary()}", decoded=decoded) from exc
        except Exception as exc:
            raise SubmissionFailed(f"tx build failed call={call.describe()}: {exc}") from exc

        gas_limit = int(gas * float(self.settings.gas_limit_buffer))
        gas_cap = int(self.settings.max_tx_gas or 0)
        if gas_cap > 0 and gas_limit > gas_cap:
            raise SubmissionFailed(f"gas_estimate_too_high gas={gas_limit} cap={gas_cap}")
        tx["gas"] = gas_limit

        # Refuse sends the wallet cannot cover at the worst-case fee.
        bal = self.chain.native_balance_wei()
        max_fee = int(tx.get("maxFeePerGas") or 0)
        value = int(tx.get("value") or 0)
        worst_cost = (gas_limit * max_fee) + value
        if worst_cost > bal:
            have_eth = float(Web3.from_wei(bal, "ether"))
            want_eth = float(Web3.from_wei(worst_cost, "ether"))
            raise SubmissionFailed(
                f"insufficient_balance_for_tx have_eth={have_eth:.8f} want_eth={want_eth:.8f} gas={gas_limit}"
            )
        return tx

    def _sign_and_send(self, tx: dict[str, Any], call: ContractCall) -> str:
        try:
            signed = self.chain.account.sign_transaction(tx)
            raw_tx = getattr(signed, "raw_transaction", None)
            if raw_tx is None:
                raw_tx = getattr(signed, "rawTransaction", None)
            if raw_tx is None:
                raise RuntimeError("signed_tx_missing_raw_bytes")
            return to_hex(self.chain.w3.eth.send_raw_transaction(raw_tx))
        except Exception as exc:
            raise SubmissionFailed(f"send failed call={call.describe()}: {exc}") from exc

    def _wait_for_depth(self, tx_hash: str, block_number: int, depth: int) -> tuple[int, int]:
        deadline = time.monotonic() + float(self.settings.tx_timeout_seconds)
        poll = max(0.05, float(self.settings.confirmation_poll_seconds))
        while True:
            try:
                latest = self.chain.latest_block()
            except Exception as exc:
                raise SubmissionFailed(f"block number read failed hash={tx_hash}: {exc}", tx_hash) from exc
            seen = latest - block_number + 1
            if seen >= depth:
                return latest, seen
            if time.monotonic() >= deadline:
                raise SubmissionFailed(f"confirmation timeout hash={tx_hash} depth={seen}/{depth}", tx_hash)
            self._sleep(poll)
