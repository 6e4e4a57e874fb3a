"""Failure reports for operators: input, boundary, call-data and custom-error analysis.

Collection is pure. It reads only what the pipeline already gathered, makes
no chain calls and never raises. A failing section is recorded in
`collection_errors` and the report is marked partial, so diagnostics can
never mask the error that triggered them.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable

from pricing.fixed_point import MAX_UINT64, MAX_UINT128, MAX_UINT256, fractional_digits, render
from trading.errors import error_code
from trading.models import (
    AllowanceRecord,
    ContractCall,
    DiagnosticsReport,
    Quote,
    ScaledAmount,
    SimulationResult,
    TxReceipt,
)
from utils.abi_codec import encode_call, error_signatures
from utils.state_file import atomic_write_json

logger = logging.getLogger(__name__)


@dataclass
class DiagnosticsContext:
    """Everything a cycle knew when it stopped; any field may be missing."""

    cycle_id: str = ""
    stage: str = ""
    error: BaseException | None = None
    pair: str = ""
    quote: Quote | None = None
    scaled: ScaledAmount | None = None
    call: ContractCall | None = None
    sender: str = ""
    current_pool_price: int | None = None
    price_decimals: int = 18
    allowances: list[AllowanceRecord] = field(default_factory=list)
    simulation: SimulationResult | None = None
    receipt: TxReceipt | None = None


def _boundary_flags(value: int) -> dict[str, Any]:
    return {
        "exceeds_uint64": value > MAX_UINT64,
        "exceeds_uint128": value > MAX_UINT128,
        "exceeds_uint256": value > MAX_UINT256,
        "bit_length": int(value).bit_length(),
    }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) > (1 << 53):
        return str(value)
    return value


class DiagnosticsCollector:
    def collect(self, context: DiagnosticsContext) -> DiagnosticsReport:
        report = DiagnosticsReport(stage=context.stage)
        sections: list[tuple[str, Callable[[DiagnosticsContext, DiagnosticsReport], None]]] = [
            ("error", self._error_section),
            ("input_analysis", self._input_section),
            ("boundary_analysis", self._boundary_section),
            ("transaction_data", self._transaction_section),
            ("custom_errors", self._custom_errors_section),
            ("simulation", self._simulation_section),
            ("allowances", self._allowance_section),
            ("pool_price", self._pool_price_section),
        ]
        for name, section in sections:
            try:
                section(context, report)
            except Exception as exc:
                report.partial = True
                report.collection_errors.append(f"{name}: {type(exc).__name__}: {exc}")
        return report

    @staticmethod
    def _error_section(ctx: DiagnosticsContext, report: DiagnosticsReport) -> None:
        if ctx.error is None:
            return
        report.error_type = type(ctx.error).__name__
        report.error_code = error_code(ctx.error)
        report.error_message = str(ctx.error)

    @staticmethod
    def _input_section(ctx: DiagnosticsContext, report: DiagnosticsReport) -> None:
        analysis: dict[str, Any] = {"pair": ctx.pair}
        if ctx.quote is not None:
            raw: Decimal = ctx.quote.raw_value
            analysis.update(
                {
                    "raw_price": str(raw),
                    "scientific_notation": f"{raw:e}",
                    "decimal_places": fractional_digits(raw),
                    "total_digits": len(format(raw, "f").replace(".", "").lstrip("0")) or 1,
                    "fetched_at": ctx.quote.fetched_at.isoformat(),
                }
            )
        if ctx.scaled is not None:
            value = int(ctx.scaled.value)
            analysis.update(
                {
                    "scaled_price": str(value),
                    "scaled_price_hex": hex(value),
                    "scaled_digit_count": len(str(value)),
                    "scale": ctx.scaled.scale,
                    "rendered": render(value, ctx.scaled.scale),
                }
            )
        report.input_analysis = analysis

    @staticmethod
    def _boundary_section(ctx: DiagnosticsContext, report: DiagnosticsReport) -> None:
        if ctx.scaled is not None:
            report.boundary_analysis = _boundary_flags(int(ctx.scaled.value))
            return
        overflow_value = getattr(ctx.error, "value", None)
        if isinstance(overflow_value, int):
            report.boundary_analysis = _boundary_flags(overflow_value)

    @staticmethod
    def _transaction_section(ctx: DiagnosticsContext, report: DiagnosticsReport) -> None:
        if ctx.call is None:
            return
        encoded = encode_call(ctx.call.abi, ctx.call.fn_name, ctx.call.args)
        report.transaction_data = {
            "to": ctx.call.target,
            "from": ctx.sender,
            "value": int(ctx.call.value),
            "function": encoded["signature"],
            "selector": encoded["selector"],
            "encoded_arguments": encoded["arguments"],
            "calldata": encoded["calldata"],
        }
        tx_hash = getattr(ctx.error, "tx_hash", "") or (ctx.receipt.hash if ctx.receipt else "")
        if tx_hash:
            report.transaction_data["tx_hash"] = tx_hash

    @staticmethod
    def _custom_errors_section(ctx: DiagnosticsContext, report: DiagnosticsReport) -> None:
        if ctx.call is None:
            return
        report.custom_errors = error_signatures(ctx.call.abi)

    @staticmethod
    def _simulation_section(ctx: DiagnosticsContext, report: DiagnosticsReport) -> None:
        sim = ctx.simulation
        decoded = sim.decoded_error if sim is not None else getattr(ctx.error, "decoded", None)
        if sim is None and decoded is None:
            return
        section: dict[str, Any] = {}
        if sim is not None:
            section["succeeded"] = sim.succeeded
            section["revert_reason"] = sim.revert_reason
            if sim.succeeded:
                section["return_data"] = _jsonable(sim.return_data)
        if decoded is not None:
            section["decoded_error"] = {
                "kind": decoded.kind,
                "name": decoded.name,
                "signature": decoded.signature,
                "args": [str(_jsonable(a)) for a in decoded.args],
                "raw": decoded.raw,
            }
        report.simulation = section

    @staticmethod
    def _allowance_section(ctx: DiagnosticsContext, report: DiagnosticsReport) -> None:
        report.allowances = [
            {
                "token": rec.token,
                "spender": rec.spender,
                "current": rec.current.render(),
                "required": rec.required.render(),
                "approved": rec.approved,
                "approval_tx": rec.receipt.hash if rec.receipt else "",
            }
            for rec in ctx.allowances
        ]

    @staticmethod
    def _pool_price_section(ctx: DiagnosticsContext, report: DiagnosticsReport) -> None:
        if ctx.current_pool_price is None:
            return
        report.current_pool_price = render(int(ctx.current_pool_price), ctx.price_decimals)

    @staticmethod
    def write(report: DiagnosticsReport, directory: str, cycle_id: str) -> str:
        path = os.path.join(directory, f"{cycle_id or 'cycle'}.json")
        atomic_write_json(path, report.to_dict())
        logger.info("DIAGNOSTICS_WRITTEN path=%s", path)
        return path
