"""Stable log contracts for rebalancing cycle events."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from typing import Any

LOG_SCHEMA_VERSION = "2026-10-19.v1"

SCHEMA_CYCLE_EVENT = "rebalance_cycle.v1"

_STAGE_PREFIX: dict[str, str] = {
    "fetch": "SOURCE",
    "scale": "SCALE",
    "pool_read": "CHAIN",
    "allowance": "ALLOWANCE",
    "simulate": "SIMULATION",
    "submit": "TX",
    "confirm": "TX",
    "done": "CYCLE",
    "unknown": "UNKNOWN",
}

REASON_CODE_TAXONOMY: dict[str, dict[str, str]] = {
    "CYCLE_OK": {"severity": "INFO", "category": "cycle", "title": "Price correction confirmed"},
    "SOURCE_UNAVAILABLE": {"severity": "WARN", "category": "source", "title": "Price feed exhausted retries"},
    "SCALE_INVALID": {"severity": "ERROR", "category": "scale", "title": "Price could not be scaled"},
    "SCALE_PRECISION": {"severity": "ERROR", "category": "scale", "title": "Price exceeds configured precision"},
    "SCALE_OVERFLOW": {"severity": "ERROR", "category": "scale", "title": "Scaled price exceeds integer ceiling"},
    "CHAIN_READ_FAILED": {"severity": "WARN", "category": "chain", "title": "Chain read failed"},
    "ALLOWANCE_CHECK_FAILED": {"severity": "WARN", "category": "allowance", "title": "Allowance read failed"},
    "APPROVAL_FAILED": {"severity": "ERROR", "category": "allowance", "title": "Approval transaction failed"},
    "SIMULATION_REVERTED": {"severity": "WARN", "category": "simulation", "title": "Static call reverted"},
    "SUBMISSION_FAILED": {"severity": "ERROR", "category": "submit", "title": "Transaction submission failed"},
    "TX_REVERTED": {"severity": "ERROR", "category": "submit", "title": "Transaction reverted on-chain"},
    "CYCLE_TIMEOUT": {"severity": "ERROR", "category": "cycle", "title": "Cycle timed out"},
}


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except Exception:
        return float(default)


def _as_ts(value: Any) -> float:
    if value is None or value == "":
        return datetime.now(timezone.utc).timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    except ValueError:
        return datetime.now(timezone.utc).timestamp()


def _iso_from_ts(ts: float) -> str:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


def _sanitize_code_token(value: str) -> str:
    text = re.sub(r"[^A-Z0-9]+", "_", str(value or "").strip().upper())
    text = re.sub(r"_+", "_", text).strip("_")
    return text or "UNKNOWN"


def _digest_seed(*parts: Any) -> str:
    seed = "|".join(str(p or "").strip() for p in parts)
    return hashlib.sha1(seed.encode("utf-8", errors="ignore")).hexdigest()


def new_cycle_id(run_tag: str = "", ts: float | None = None) -> str:
    stamp = _as_ts(ts)
    return f"cyc_{_digest_seed(run_tag, f'{stamp:.6f}')[:16]}"


def reason_code_for_event(*, error_code: str = "", stage: str = "") -> str:
    if error_code:
        return _sanitize_code_token(error_code)
    prefix = _STAGE_PREFIX.get(str(stage or "").strip().lower() or "unknown", "UNKNOWN")
    return f"{prefix}_OK" if prefix != "UNKNOWN" else "UNKNOWN"


def reason_code_meta(code: str) -> dict[str, str]:
    key = _sanitize_code_token(code)
    if key in REASON_CODE_TAXONOMY:
        return dict(REASON_CODE_TAXONOMY[key])
    return {
        "severity": "INFO",
        "category": "unknown",
        "title": key.replace("_", " ").title(),
    }


def cycle_event(event: dict[str, Any], *, run_tag: str = "") -> dict[str, Any]:
    """Stamp a cycle summary row with schema fields, ids and reason-code metadata."""
    payload = dict(event or {})
    ts = _as_ts(payload.get("ts", payload.get("timestamp")))
    payload["ts"] = float(ts)
    payload["timestamp"] = str(payload.get("timestamp", "") or _iso_from_ts(ts))
    payload.setdefault("schema_version", LOG_SCHEMA_VERSION)
    payload.setdefault("schema_name", SCHEMA_CYCLE_EVENT)
    payload.setdefault("event_type", "rebalance_cycle")
    if run_tag:
        payload.setdefault("run_tag", str(run_tag))
    payload["cycle_id"] = str(payload.get("cycle_id", "") or new_cycle_id(run_tag, ts))
    payload["stage"] = str(payload.get("stage", "unknown") or "unknown")
    payload["decision"] = str(payload.get("decision", "unknown") or "unknown")
    payload["pair"] = str(payload.get("pair", "") or "")
    payload["elapsed_ms"] = round(_safe_float(payload.get("elapsed_ms", 0.0)), 1)
    payload["reason_code"] = str(
        payload.get("reason_code", "")
        or reason_code_for_event(error_code=str(payload.get("error_code", "") or ""), stage=payload["stage"])
    ).strip().upper()
    if payload["reason_code"] == "CYCLE_OK" or (payload["decision"] == "submitted" and not payload.get("error_code")):
        payload["reason_code"] = "CYCLE_OK"
    meta = reason_code_meta(payload["reason_code"])
    payload["reason_severity"] = str(payload.get("reason_severity", meta.get("severity", "INFO")) or "INFO")
    payload["reason_category"] = str(payload.get("reason_category", meta.get("category", "unknown")) or "unknown")
    payload["tx_hash"] = str(payload.get("tx_hash", "") or "").lower()
    return payload
