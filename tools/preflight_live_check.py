"""Preflight checks for rebalancer readiness (read-only, never sends a transaction)."""

from __future__ import annotations

import argparse
import json
import os
import statistics
import sys
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from eth_account import Account
from web3 import HTTPProvider, Web3

POOL_PRICE_ABI: list[dict[str, Any]] = [
    {
        "name": "getPoolPrice",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    }
]


@dataclass
class CheckEvent:
    level: str
    code: str
    message: str


@dataclass
class RpcHealth:
    url: str
    ok: bool = False
    latency_ms: float = 0.0
    chain_id: int | None = None
    block_number: int | None = None
    error: str = ""


@dataclass
class Report:
    ok: bool = True
    errors: list[CheckEvent] = field(default_factory=list)
    warnings: list[CheckEvent] = field(default_factory=list)
    infos: list[CheckEvent] = field(default_factory=list)
    rpc_nodes: list[RpcHealth] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)

    def add(self, level: str, code: str, message: str) -> None:
        event = CheckEvent(level=level, code=code, message=message)
        if level == "error":
            self.ok = False
            self.errors.append(event)
        elif level == "warning":
            self.warnings.append(event)
        else:
            self.infos.append(event)


def _to_int(value: Any, default: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _split_csv(raw: str) -> list[str]:
    return [x.strip() for x in str(raw or "").split(",") if x.strip()]


def _fmt_node(url: str) -> str:
    trimmed = url.strip()
    if len(trimmed) <= 42:
        return trimmed
    return f"{trimmed[:20]}...{trimmed[-16:]}"


def _rpc_probe(url: str, timeout_s: float) -> RpcHealth:
    out = RpcHealth(url=url)
    started = time.perf_counter()
    try:
        w3 = Web3(HTTPProvider(url, request_kwargs={"timeout": timeout_s}))
        connected = bool(w3.is_connected())
        out.latency_ms = round((time.perf_counter() - started) * 1000.0, 1)
        if not connected:
            out.error = "not_connected"
            return out
        out.chain_id = int(w3.eth.chain_id)
        out.block_number = int(w3.eth.block_number)
        out.ok = True
        return out
    except Exception as exc:
        out.latency_ms = round((time.perf_counter() - started) * 1000.0, 1)
        out.error = str(exc)
        return out


def _load_env(env_file: Path) -> dict[str, str]:
    env = {str(k): str(v) for k, v in dotenv_values(env_file).items() if k is not None and v is not None}
    runtime = dict(os.environ)
    for k, v in env.items():
        runtime.setdefault(k, v)
    return runtime


def run_checks(env_file: Path, rpc_timeout_s: float, min_balance_eth: float) -> Report:
    report = Report()

    if not env_file.exists():
        report.add("error", "env_missing", f".env file not found: {env_file}")
        return report
    env = _load_env(env_file)

    for key in ("PRIVATE_KEY", "POOL_MANAGER_ADDRESS"):
        if not str(env.get(key, "") or "").strip():
            report.add("error", "missing_key", f"Required key is empty: {key}")
    if not str(env.get("PRICE_API_KEY", env.get("COINGECKO_API_KEY", "")) or "").strip():
        report.add("warning", "price_api_key_missing", "PRICE_API_KEY is empty; public rate limits apply.")

    pool_manager_raw = str(env.get("POOL_MANAGER_ADDRESS", "") or "").strip()
    if pool_manager_raw and not Web3.is_address(pool_manager_raw):
        report.add("error", "pool_manager_invalid", "POOL_MANAGER_ADDRESS is not a valid EVM address.")
    for idx, token in enumerate(_split_csv(env.get("ALLOWANCE_TOKENS", ""))):
        if not Web3.is_address(token):
            report.add("error", "allowance_token_invalid", f"ALLOWANCE_TOKENS[{idx}] is not a valid EVM address: {token}")

    wallet = ""
    private_key = str(env.get("PRIVATE_KEY", "") or "").strip()
    wallet_raw = str(env.get("WALLET_ADDRESS", "") or "").strip()
    if private_key:
        try:
            wallet = Account.from_key(private_key).address
        except Exception as exc:
            report.add("error", "private_key_invalid", f"PRIVATE_KEY parse failed: {exc}")
    if wallet and wallet_raw and wallet.lower() != wallet_raw.lower():
        report.add("error", "wallet_key_mismatch", "WALLET_ADDRESS does not match PRIVATE_KEY derived address.")

    rpc_urls = []
    for key in ("RPC_PRIMARY", "RPC_SECONDARY"):
        url = str(env.get(key, "") or "").strip()
        if url and url not in rpc_urls:
            rpc_urls.append(url)
    if not rpc_urls:
        report.add("error", "rpc_missing", "RPC_PRIMARY/RPC_SECONDARY is empty.")

    chain_id = _to_int(env.get("CHAIN_ID", "11155111"), 11155111)
    for url in rpc_urls:
        report.rpc_nodes.append(_rpc_probe(url, timeout_s=rpc_timeout_s))

    healthy = [x for x in report.rpc_nodes if x.ok]
    if rpc_urls and not healthy:
        report.add("error", "rpc_all_failed", "No healthy RPC nodes.")
    elif healthy:
        for node in healthy:
            if node.chain_id != chain_id:
                report.add(
                    "error",
                    "rpc_chain_mismatch",
                    f"RPC {_fmt_node(node.url)} chain_id={node.chain_id}, expected {chain_id}.",
                )
        latencies = [x.latency_ms for x in healthy]
        report.summary["rpc_latency_ms_p50"] = round(float(statistics.median(latencies)), 1)

        fastest = sorted(healthy, key=lambda x: x.latency_ms)[0]
        w3 = Web3(HTTPProvider(fastest.url, request_kwargs={"timeout": rpc_timeout_s}))
        if wallet:
            try:
                balance_eth = float(w3.from_wei(int(w3.eth.get_balance(wallet)), "ether"))
                report.summary["wallet_address"] = wallet
                report.summary["wallet_balance_eth"] = balance_eth
                if balance_eth < min_balance_eth:
                    report.add(
                        "error",
                        "wallet_low_gas_reserve",
                        f"Wallet balance {balance_eth:.6f} ETH below floor {min_balance_eth:.6f}.",
                    )
                else:
                    report.add("info", "wallet_balance_ok", f"Wallet balance {balance_eth:.6f} ETH.")
            except Exception as exc:
                report.add("error", "wallet_probe_failed", f"Wallet probe failed: {exc}")
        if pool_manager_raw and Web3.is_address(pool_manager_raw):
            try:
                contract = w3.eth.contract(address=Web3.to_checksum_address(pool_manager_raw), abi=POOL_PRICE_ABI)
                price = int(contract.functions.getPoolPrice().call())
                report.summary["pool_price_raw"] = price
                report.add("info", "pool_probe_ok", f"getPoolPrice() probe ok: {price}")
            except Exception as exc:
                report.add("error", "pool_probe_failed", f"getPoolPrice() probe failed: {exc}")

    report.summary["env_file"] = str(env_file)
    report.summary["rpc_total"] = len(report.rpc_nodes)
    report.summary["rpc_healthy"] = len(healthy)
    return report


def _print_report(report: Report) -> None:
    print("=== REBALANCER PREFLIGHT CHECK ===")
    print(f"status: {'PASS' if report.ok else 'FAIL'}")
    print("")
    if report.summary:
        print("Summary:")
        for k, v in report.summary.items():
            print(f"- {k}: {v}")
        print("")
    if report.rpc_nodes:
        print("RPC nodes:")
        for node in report.rpc_nodes:
            status = "ok" if node.ok else "fail"
            cid = "-" if node.chain_id is None else str(node.chain_id)
            block = "-" if node.block_number is None else str(node.block_number)
            err = f" | err={node.error}" if node.error else ""
            print(f"- {status} | {_fmt_node(node.url)} | latency={node.latency_ms:.1f}ms | chain={cid} | block={block}{err}")
        print("")

    for title, items in (("Errors", report.errors), ("Warnings", report.warnings), ("Info", report.infos)):
        if not items:
            continue
        print(f"{title}:")
        for item in items:
            print(f"- [{item.code}] {item.message}")
        print("")


def main() -> int:
    parser = argparse.ArgumentParser(description="Preflight checks for rebalancer readiness.")
    parser.add_argument("--env-file", default=".env", help="Path to env file (default: .env)")
    parser.add_argument("--rpc-timeout", type=float, default=8.0, help="RPC timeout seconds (default: 8)")
    parser.add_argument("--min-balance-eth", type=float, default=0.005, help="Minimum native balance for gas")
    parser.add_argument("--json-out", default="", help="Optional path to write JSON report")
    args = parser.parse_args()

    report = run_checks(
        env_file=Path(args.env_file),
        rpc_timeout_s=max(1.0, float(args.rpc_timeout)),
        min_balance_eth=max(0.0, _to_float(args.min_balance_eth, 0.005)),
    )
    _print_report(report)

    if args.json_out:
        payload = asdict(report)
        out_path = Path(args.json_out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(json.dumps(payload, ensure_ascii=True, indent=2), encoding="utf-8")
        print(f"json_report: {out_path}")

    return 0 if report.ok else 2


if __name__ == "__main__":
    sys.exit(main())
