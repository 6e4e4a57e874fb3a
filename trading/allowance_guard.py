"""Token allowance checks that approve only what a call needs."""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping

from web3 import Web3

from pricing.fixed_point import from_raw
from trading.abis import ERC20_ABI
from trading.chain_client import ChainClient
from trading.errors import AllowanceCheckFailed, ApprovalFailed
from trading.models import AllowanceRecord, ContractCall, ScaledAmount
from trading.submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


class AllowanceGuard:
    """Idempotent `allowance >= required` guard.

    Approvals are for exactly the required amount (never unlimited) and block
    until the submitter's confirmation depth is reached. Nothing is cached:
    every call re-reads the on-chain allowance.
    """

    def __init__(self, chain: ChainClient, submitter: TransactionSubmitter, token_decimals: int = 18) -> None:
        self.chain = chain
        self.submitter = submitter
        self.token_decimals = int(token_decimals)

    def _as_amount(self, amount: ScaledAmount | int) -> ScaledAmount:
        if isinstance(amount, ScaledAmount):
            return amount
        return from_raw(int(amount), self.token_decimals)

    def ensure(self, token: str, owner: str, spender: str, required: ScaledAmount | int) -> AllowanceRecord:
        needed = self._as_amount(required)
        token_cs = Web3.to_checksum_address(token)
        owner_cs = Web3.to_checksum_address(owner)
        spender_cs = Web3.to_checksum_address(spender)
        token_contract = self.chain.contract(token_cs, ERC20_ABI)

        try:
            current_raw = int(token_contract.functions.allowance(owner_cs, spender_cs).call())
        except Exception as exc:
            raise AllowanceCheckFailed(f"allowance read failed token={token_cs} spender={spender_cs}: {exc}") from exc

        record = AllowanceRecord(
            token=token_cs,
            owner=owner_cs,
            spender=spender_cs,
            current=from_raw(current_raw, needed.scale),
            required=needed,
        )
        if current_raw >= needed.value:
            logger.info(
                "ALLOWANCE_OK token=%s spender=%s current=%s required=%s",
                token_cs,
                spender_cs,
                record.current.render(),
                needed.render(),
            )
            return record

        logger.info(
            "ALLOWANCE_APPROVE token=%s spender=%s current=%s required=%s",
            token_cs,
            spender_cs,
            record.current.render(),
            needed.render(),
        )
        call = ContractCall(
            contract=token_contract,
            fn_name="approve",
            args=(spender_cs, int(needed.value)),
            label=f"approve({token_cs}->{spender_cs})",
        )
        try:
            record.receipt = self.submitter.submit(call)
        except Exception as exc:
            raise ApprovalFailed(f"approval failed token={token_cs} spender={spender_cs}: {exc}") from exc
        record.approved = True
        return record

    async def ensure_many(
        self,
        owner: str,
        spender: str,
        requirements: Mapping[str, ScaledAmount | int],
        records: list[AllowanceRecord] | None = None,
    ) -> list[AllowanceRecord]:
        """Run `ensure` for independent tokens concurrently.

        Every token is allowed to finish. Completed records are appended to
        `records` (when given) before the first failure is raised, so an
        approval that landed for one token stays visible to the caller.
        """
        tasks = [
            asyncio.to_thread(self.ensure, token, owner, spender, amount)
            for token, amount in requirements.items()
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        completed = [r for r in results if isinstance(r, AllowanceRecord)]
        if records is not None:
            records.extend(completed)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return completed
