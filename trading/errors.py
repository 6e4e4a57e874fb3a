"""Typed failures raised by the rebalancing pipeline stages."""

from __future__ import annotations

from typing import Any


class RebalancerError(RuntimeError):
    """Base class; `code` doubles as the reason code in cycle logs."""

    code = "REBALANCER_ERROR"


class SourceUnavailable(RebalancerError):
    """Raised when the price feed fails every attempt."""

    code = "SOURCE_UNAVAILABLE"

    def __init__(self, pair: str, attempts: int, last_error: str) -> None:
        super().__init__(f"price source unavailable pair={pair} attempts={attempts} last_error={last_error}")
        self.pair = pair
        self.attempts = int(attempts)
        self.last_error = last_error


class ScalingError(RebalancerError, ValueError):
    """Raised for decimal inputs that cannot be scaled at all."""

    code = "SCALE_INVALID"


class PrecisionError(ScalingError):
    """Raised when scaling would silently drop fractional digits."""

    code = "SCALE_PRECISION"


class FixedPointOverflowError(ScalingError, OverflowError):
    """Raised when a scaled integer does not fit the configured bit width."""

    code = "SCALE_OVERFLOW"

    def __init__(self, value: int, bit_width: int) -> None:
        super().__init__(f"scaled value exceeds uint{bit_width}: {value}")
        self.value = int(value)
        self.bit_width = int(bit_width)


class ChainReadFailed(RebalancerError):
    code = "CHAIN_READ_FAILED"


class AllowanceCheckFailed(RebalancerError):
    code = "ALLOWANCE_CHECK_FAILED"


class ApprovalFailed(RebalancerError):
    code = "APPROVAL_FAILED"


class SimulationReverted(RebalancerError):
    """Raised by the orchestrator when the pre-flight static call reverts."""

    code = "SIMULATION_REVERTED"

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class SubmissionFailed(RebalancerError):
    """Node or network failure while sending or awaiting a transaction."""

    code = "SUBMISSION_FAILED"

    def __init__(self, message: str, tx_hash: str = "") -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


class Reverted(RebalancerError):
    """The transaction was mined (or estimated) and reverted on-chain."""

    code = "TX_REVERTED"

    def __init__(self, message: str, tx_hash: str = "", decoded: Any = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash
        self.decoded = decoded


class CycleTimeout(RebalancerError):
    code = "CYCLE_TIMEOUT"


class CycleFailed(RebalancerError):
    """Single aggregated failure surfaced for a cycle, carrying the diagnostics report."""

    def __init__(self, cause: BaseException, report: Any) -> None:
        super().__init__(f"{error_code(cause)}: {cause}")
        self.cause = cause
        self.report = report

    @property
    def code(self) -> str:  # type: ignore[override]
        return error_code(self.cause)


def error_code(exc: BaseException | None) -> str:
    if exc is None:
        return "UNKNOWN"
    code = getattr(exc, "code", "")
    if isinstance(code, str) and code:
        return code
    return "UNEXPECTED_" + type(exc).__name__.upper()
