"""Per-cycle data model and the immutable settings snapshot passed to each stage."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

import config


@dataclass(frozen=True)
class PricePair:
    base: str
    quote: str

    def __str__(self) -> str:
        return f"{self.base}/{self.quote}"


@dataclass(frozen=True)
class Quote:
    base_symbol: str
    quote_symbol: str
    raw_value: Decimal
    fetched_at: datetime


@dataclass(frozen=True)
class ScaledAmount:
    value: int
    scale: int
    source_decimal: str

    def render(self) -> str:
        from pricing.fixed_point import render

        return render(self.value, self.scale)


@dataclass(frozen=True)
class ContractCall:
    """A state-changing contract call described once for simulation, submission and diagnostics."""

    contract: Any
    fn_name: str
    args: tuple[Any, ...] = ()
    value: int = 0
    label: str = ""

    @property
    def target(self) -> str:
        return str(getattr(self.contract, "address", "") or "")

    @property
    def abi(self) -> list[dict[str, Any]]:
        return list(getattr(self.contract, "abi", None) or [])

    def bound(self) -> Any:
        return getattr(self.contract.functions, self.fn_name)(*self.args)

    def describe(self) -> str:
        return self.label or f"{self.fn_name}({', '.join(str(a) for a in self.args)})"


@dataclass(frozen=True)
class DecodedRevert:
    kind: str
    name: str = ""
    signature: str = ""
    args: tuple[Any, ...] = ()
    raw: str = ""

    def summary(self) -> str:
        if self.kind == "error_string":
            return str(self.args[0]) if self.args else ""
        if self.kind in {"panic", "custom"}:
            rendered = ", ".join(str(a) for a in self.args)
            return f"{self.name}({rendered})"
        if self.kind == "empty":
            return "reverted without data"
        return "could not decode"


@dataclass(frozen=True)
class SimulationResult:
    succeeded: bool
    return_data: Any = None
    revert_reason: str = ""
    decoded_error: DecodedRevert | None = None


@dataclass(frozen=True)
class TxReceipt:
    hash: str
    confirmed_block: int
    status: int
    block_number: int = 0
    gas_used: int = 0
    confirmations: int = 0


@dataclass
class AllowanceRecord:
    token: str
    owner: str
    spender: str
    current: ScaledAmount
    required: ScaledAmount
    approved: bool = False
    receipt: TxReceipt | None = None


@dataclass
class DiagnosticsReport:
    stage: str = ""
    error_type: str = ""
    error_code: str = ""
    error_message: str = ""
    input_analysis: dict[str, Any] = field(default_factory=dict)
    boundary_analysis: dict[str, Any] = field(default_factory=dict)
    transaction_data: dict[str, Any] = field(default_factory=dict)
    custom_errors: list[str] = field(default_factory=list)
    simulation: dict[str, Any] = field(default_factory=dict)
    allowances: list[dict[str, Any]] = field(default_factory=list)
    current_pool_price: str | None = None
    partial: bool = False
    collection_errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CycleOutcome:
    cycle_id: str
    quote: Quote
    scaled_price: ScaledAmount
    allowances: list[AllowanceRecord]
    simulation: SimulationResult
    receipt: TxReceipt
    elapsed_ms: float = 0.0


@dataclass(frozen=True)
class RebalanceSettings:
    retry_attempts: int = 3
    retry_delay_ms: int = 5000
    request_timeout_ms: int = 5000
    price_decimals: int = 18
    price_precision: int = 6
    price_rounding: str = "half_up"
    confirmation_blocks: int = 2
    confirmation_poll_seconds: float = 2.0
    overflow_ceiling_bits: int = 256
    gas_limit_buffer: float = 1.1
    max_gas_gwei: float = 50.0
    priority_fee_gwei: float = 1.5
    max_tx_gas: int = 0
    tx_timeout_seconds: int = 180
    chain_id: int = 11155111
    cycle_timeout_seconds: float = 600.0
    price_api_url: str = "https://api.coingecko.com/api/v3/simple/price"
    price_api_key: str = ""
    price_api_key_header: str = "x-cg-api-key"
    allowance_amount: str = ""
    allowance_token_decimals: int = 18

    @classmethod
    def from_config(cls) -> "RebalanceSettings":
        return cls(
            retry_attempts=int(config.RETRY_ATTEMPTS),
            retry_delay_ms=int(config.RETRY_DELAY_MS),
            request_timeout_ms=int(config.REQUEST_TIMEOUT_MS),
            price_decimals=int(config.PRICE_DECIMALS),
            price_precision=int(config.PRICE_PRECISION),
            price_rounding=str(config.PRICE_ROUNDING),
            confirmation_blocks=int(config.CONFIRMATION_BLOCKS),
            confirmation_poll_seconds=float(config.CONFIRMATION_POLL_SECONDS),
            overflow_ceiling_bits=int(config.OVERFLOW_CEILING_BITS),
            gas_limit_buffer=float(config.GAS_LIMIT_BUFFER),
            max_gas_gwei=float(config.MAX_GAS_GWEI),
            priority_fee_gwei=float(config.PRIORITY_FEE_GWEI),
            max_tx_gas=int(config.MAX_TX_GAS),
            tx_timeout_seconds=int(config.TX_TIMEOUT_SECONDS),
            chain_id=int(config.CHAIN_ID),
            cycle_timeout_seconds=float(config.CYCLE_TIMEOUT_SECONDS),
            price_api_url=str(config.PRICE_API_URL),
            price_api_key=str(config.PRICE_API_KEY),
            price_api_key_header=str(config.PRICE_API_KEY_HEADER),
            allowance_amount=str(config.ALLOWANCE_AMOUNT),
            allowance_token_decimals=int(config.ALLOWANCE_TOKEN_DECIMALS),
        )
