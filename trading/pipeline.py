"""One rebalancing cycle: fetch -> scale -> read pool -> allowances -> simulate -> submit."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Awaitable, Iterable

from pricing.fixed_point import from_raw, rounding_mode, scale
from pricing.price_source import PriceSource
from monitor.pool_reader import PoolReader
from trading.allowance_guard import AllowanceGuard
from trading.diagnostics import DiagnosticsCollector, DiagnosticsContext
from trading.errors import CycleFailed, CycleTimeout, SimulationReverted, error_code
from trading.models import ContractCall, CycleOutcome, PricePair, RebalanceSettings, ScaledAmount
from trading.simulator import TransactionSimulator
from trading.submitter import TransactionSubmitter
from utils.log_contracts import cycle_event, new_cycle_id
from utils.state_file import FileLockError, append_jsonl_locked

logger = logging.getLogger(__name__)


class PipelineCounters:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.cycles = 0
        self.successes = 0
        self.failures = 0
        self.failures_by_code: dict[str, int] = {}

    def record_success(self) -> None:
        with self._lock:
            self.cycles += 1
            self.successes += 1

    def record_failure(self, code: str) -> None:
        with self._lock:
            self.cycles += 1
            self.failures += 1
            self.failures_by_code[code] = self.failures_by_code.get(code, 0) + 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "cycles": self.cycles,
                "successes": self.successes,
                "failures": self.failures,
                "failures_by_code": dict(self.failures_by_code),
            }


class RebalancePipeline:
    """Drives the pool price toward the reference quote.

    Stages run strictly in order and the first failure ends the cycle; the
    diagnostics collector then runs once over whatever the cycle gathered and
    the failure is surfaced as a single `CycleFailed`.
    """

    def __init__(
        self,
        settings: RebalanceSettings,
        *,
        price_source: PriceSource,
        pool_reader: PoolReader,
        allowance_guard: AllowanceGuard,
        simulator: TransactionSimulator,
        submitter: TransactionSubmitter,
        pool_manager: Any,
        wallet: str,
        pair: PricePair,
        allowance_tokens: Iterable[str] = (),
        diagnostics: DiagnosticsCollector | None = None,
        counters: PipelineCounters | None = None,
        events_log_file: str = "",
        diagnostics_dir: str = "",
        run_tag: str = "",
    ) -> None:
        self.settings = settings
        self.price_source = price_source
        self.pool_reader = pool_reader
        self.allowance_guard = allowance_guard
        self.simulator = simulator
        self.submitter = submitter
        self.pool_manager = pool_manager
        self.wallet = wallet
        self.pair = pair
        self.allowance_tokens = [t for t in allowance_tokens if t]
        self.diagnostics = diagnostics or DiagnosticsCollector()
        self.counters = counters or PipelineCounters()
        self.events_log_file = events_log_file
        self.diagnostics_dir = diagnostics_dir
        self.run_tag = run_tag
        self._rounding = rounding_mode(settings.price_rounding)
        self._cycle_lock = asyncio.Lock()
        self._inflight: asyncio.Future[Any] | None = None

    def _required_amount(self, current_price: int, target: ScaledAmount) -> ScaledAmount:
        decimals = int(self.settings.allowance_token_decimals)
        if self.settings.allowance_amount:
            return scale(self.settings.allowance_amount, precision=decimals, target_decimals=decimals)
        amount = self.pool_reader.calculate_swap_amount(current_price, target.value)
        return from_raw(amount, decimals)

    async def run_cycle(self) -> CycleOutcome:
        async with self._cycle_lock:
            started = time.perf_counter()
            ctx = DiagnosticsContext(
                cycle_id=new_cycle_id(self.run_tag),
                pair=str(self.pair),
                sender=self.wallet,
                price_decimals=int(self.settings.price_decimals),
            )
            self._inflight = None
            try:
                outcome = await asyncio.wait_for(
                    self._run_stages(ctx, started),
                    timeout=float(self.settings.cycle_timeout_seconds),
                )
            except asyncio.TimeoutError:
                outcome = await self._after_deadline(ctx, started)
            except Exception as exc:
                raise self._fail(ctx, exc, started) from exc

            self.counters.record_success()
            logger.info(
                "CYCLE_OK cycle_id=%s pair=%s price=%s tx=%s block=%s elapsed_ms=%.1f",
                ctx.cycle_id,
                self.pair,
                outcome.scaled_price.render(),
                outcome.receipt.hash,
                outcome.receipt.confirmed_block,
                outcome.elapsed_ms,
            )
            self._record_event(
                {
                    "cycle_id": ctx.cycle_id,
                    "stage": "done",
                    "decision": "submitted",
                    "pair": str(self.pair),
                    "elapsed_ms": outcome.elapsed_ms,
                    "raw_price": str(outcome.quote.raw_value),
                    "scaled_price": str(outcome.scaled_price.value),
                    "approvals": sum(1 for rec in outcome.allowances if rec.approved),
                    "tx_hash": outcome.receipt.hash,
                    "confirmed_block": outcome.receipt.confirmed_block,
                }
            )
            return outcome

    async def _run_stages(self, ctx: DiagnosticsContext, started: float) -> CycleOutcome:
        ctx.stage = "fetch"
        quote = await self.price_source.fetch(self.pair)
        ctx.quote = quote

        ctx.stage = "scale"
        scaled = scale(
            str(quote.raw_value),
            precision=self.settings.price_precision,
            target_decimals=self.settings.price_decimals,
            ceiling_bits=self.settings.overflow_ceiling_bits,
            rounding=self._rounding,
        )
        ctx.scaled = scaled
        call = ContractCall(
            contract=self.pool_manager,
            fn_name="adjustPrice",
            args=(int(scaled.value),),
            label=f"adjustPrice({scaled.render()})",
        )
        ctx.call = call

        ctx.stage = "pool_read"
        current = await asyncio.to_thread(self.pool_reader.pool_price)
        ctx.current_pool_price = current

        ctx.stage = "allowance"
        if self.allowance_tokens:
            required = await asyncio.to_thread(self._required_amount, current, scaled)
            await self._write_stage(
                self.allowance_guard.ensure_many(
                    self.wallet,
                    call.target,
                    {token: required for token in self.allowance_tokens},
                    records=ctx.allowances,
                )
            )

        ctx.stage = "simulate"
        simulation = await asyncio.to_thread(self.simulator.simulate, call)
        ctx.simulation = simulation
        if not simulation.succeeded:
            raise SimulationReverted(f"adjustPrice simulation reverted: {simulation.revert_reason}", simulation)

        ctx.stage = "submit"
        ctx.receipt = await self._write_stage(
            asyncio.to_thread(self.submitter.submit, call, self.settings.confirmation_blocks)
        )
        ctx.stage = "done"
        return self._outcome(ctx, started)

    async def _write_stage(self, work: Awaitable[Any]) -> Any:
        """Await a stage that sends transactions.

        The work is shielded from the cycle timeout: once a signed transaction
        may be on its way to the node, the cycle waits for its result instead
        of abandoning it, and the next cycle cannot start until it is known.
        """
        self._inflight = asyncio.ensure_future(work)
        result = await asyncio.shield(self._inflight)
        self._inflight = None
        return result

    async def _after_deadline(self, ctx: DiagnosticsContext, started: float) -> CycleOutcome:
        timeout = CycleTimeout(f"cycle exceeded {self.settings.cycle_timeout_seconds:.1f}s during stage={ctx.stage}")
        pending, self._inflight = self._inflight, None
        if pending is None:
            raise self._fail(ctx, timeout, started) from None

        logger.warning("CYCLE_DEADLINE_DRAIN cycle_id=%s stage=%s", ctx.cycle_id, ctx.stage)
        try:
            result = await pending
        except Exception as exc:
            raise self._fail(ctx, exc, started) from exc
        if ctx.stage != "submit":
            # Approvals landed; adjustPrice was never sent.
            raise self._fail(ctx, timeout, started) from None
        ctx.receipt = result
        ctx.stage = "done"
        return self._outcome(ctx, started)

    @staticmethod
    def _outcome(ctx: DiagnosticsContext, started: float) -> CycleOutcome:
        return CycleOutcome(
            cycle_id=ctx.cycle_id,
            quote=ctx.quote,
            scaled_price=ctx.scaled,
            allowances=list(ctx.allowances),
            simulation=ctx.simulation,
            receipt=ctx.receipt,
            elapsed_ms=(time.perf_counter() - started) * 1000.0,
        )

    def _fail(self, ctx: DiagnosticsContext, exc: BaseException, started: float) -> CycleFailed:
        ctx.error = exc
        report = self.diagnostics.collect(ctx)
        code = error_code(exc)
        self.counters.record_failure(code)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.error(
            "CYCLE_FAILED cycle_id=%s pair=%s stage=%s code=%s elapsed_ms=%.1f error=%s",
            ctx.cycle_id,
            self.pair,
            ctx.stage,
            code,
            elapsed_ms,
            exc,
        )
        if report.partial:
            logger.warning("DIAGNOSTICS_PARTIAL cycle_id=%s errors=%s", ctx.cycle_id, report.collection_errors)

        self._record_event(
            {
                "cycle_id": ctx.cycle_id,
                "stage": ctx.stage,
                "decision": "failed",
                "pair": str(self.pair),
                "elapsed_ms": elapsed_ms,
                "error_code": code,
                "error": str(exc),
                "tx_hash": getattr(exc, "tx_hash", "") or "",
            }
        )
        if self.diagnostics_dir:
            try:
                self.diagnostics.write(report, self.diagnostics_dir, ctx.cycle_id)
            except OSError as write_exc:
                logger.warning("DIAGNOSTICS_WRITE_FAILED cycle_id=%s error=%s", ctx.cycle_id, write_exc)
        return CycleFailed(exc, report)

    def _record_event(self, event: dict[str, Any]) -> None:
        if not self.events_log_file:
            return
        row = cycle_event(event, run_tag=self.run_tag)
        try:
            append_jsonl_locked(self.events_log_file, row)
        except (FileLockError, OSError) as exc:
            logger.warning("CYCLE_EVENT_WRITE_FAILED path=%s error=%s", self.events_log_file, exc)

    async def run_forever(self, interval_seconds: float, max_cycles: int | None = None) -> dict[str, Any]:
        """Run cycles back to back with `interval_seconds` between them; failures do not stop the loop."""
        done = 0
        while max_cycles is None or done < max_cycles:
            try:
                await self.run_cycle()
            except CycleFailed as exc:
                # Already logged and counted by _fail.
                logger.debug("CYCLE_LOOP_CONTINUE code=%s", exc.code)
            done += 1
            if max_cycles is not None and done >= max_cycles:
                break
            await asyncio.sleep(max(0.0, float(interval_seconds)))
        return self.counters.snapshot()
