"""Pre-flight static calls so reverting transactions never cost gas."""

from __future__ import annotations

import logging

from web3.exceptions import ContractLogicError

from trading.chain_client import ChainClient
from trading.errors import ChainReadFailed
from trading.models import ContractCall, SimulationResult
from utils.abi_codec import UNDECODED_MARKER, decode_revert, revert_data_from_exception

logger = logging.getLogger(__name__)


class TransactionSimulator:
    def __init__(self, chain: ChainClient, block_identifier: str | int = "latest") -> None:
        self.chain = chain
        self.block_identifier = block_identifier

    def simulate(self, call: ContractCall) -> SimulationResult:
        """Run `call` as `eth_call` from the signing wallet.

        Reverts come back as a failed result; only transport/node failures raise.
        """
        tx = {"from": self.chain.wallet, "value": int(call.value)}
        try:
            output = call.bound().call(tx, block_identifier=self.block_identifier)
        except ContractLogicError as exc:
            decoded = decode_revert(call.abi, revert_data_from_exception(exc))
            if decoded.kind in {"error_string", "panic", "custom"}:
                reason = decoded.summary()
            elif decoded.kind == "undecoded":
                reason = UNDECODED_MARKER
            else:
                reason = str(getattr(exc, "message", "") or exc) or decoded.summary()
            logger.debug("SIMULATION_REVERTED call=%s kind=%s reason=%s", call.describe(), decoded.kind, reason)
            return SimulationResult(succeeded=False, revert_reason=reason, decoded_error=decoded)
        except Exception as exc:
            raise ChainReadFailed(f"static call failed call={call.describe()}: {exc}") from exc
        return SimulationResult(succeeded=True, return_data=output)
