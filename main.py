"""Entry point for the price rebalancer."""

import argparse
import asyncio
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import config
from config import APP_LOG_FILE, LOG_DIR, LOG_LEVEL
from monitor.pool_reader import PoolReader
from pricing.fixed_point import render
from pricing.price_source import PriceSource
from trading.abis import POOL_MANAGER_ABI, load_abi
from trading.allowance_guard import AllowanceGuard
from trading.chain_client import ChainClient
from trading.diagnostics import DiagnosticsCollector
from trading.errors import CycleFailed, RebalancerError
from trading.models import PricePair, RebalanceSettings
from trading.pipeline import RebalancePipeline
from trading.simulator import TransactionSimulator
from trading.submitter import TransactionSubmitter
from trading.swapper import Swapper
from utils.addressing import require_address


def configure_logging() -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # RPC payloads at DEBUG include signed transactions.
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


class ChainServices:
    """Chain-facing components that share one client and one nonce lock."""

    def __init__(self, settings: RebalanceSettings) -> None:
        self.chain = ChainClient.from_config(settings)
        self.submitter = TransactionSubmitter(self.chain)
        self.simulator = TransactionSimulator(self.chain)
        self.allowance_guard = AllowanceGuard(
            self.chain, self.submitter, token_decimals=settings.allowance_token_decimals
        )
        pool_manager_address = require_address(config.POOL_MANAGER_ADDRESS, "POOL_MANAGER_ADDRESS")
        self.pool_manager = self.chain.contract(
            pool_manager_address, load_abi(config.POOL_MANAGER_ABI_PATH, POOL_MANAGER_ABI)
        )
        self.pool_reader = PoolReader(self.chain, self.pool_manager)


def build_pipeline(settings: RebalanceSettings, services: ChainServices, price_source: PriceSource) -> RebalancePipeline:
    tokens = [require_address(t, "ALLOWANCE_TOKENS") for t in config.ALLOWANCE_TOKENS]
    return RebalancePipeline(
        settings,
        price_source=price_source,
        pool_reader=services.pool_reader,
        allowance_guard=services.allowance_guard,
        simulator=services.simulator,
        submitter=services.submitter,
        pool_manager=services.pool_manager,
        wallet=services.chain.wallet,
        pair=PricePair(config.PRICE_BASE_ID, config.PRICE_QUOTE_ID),
        allowance_tokens=tokens,
        diagnostics=DiagnosticsCollector(),
        events_log_file=config.CYCLE_EVENTS_LOG_FILE if config.CYCLE_EVENTS_LOG_ENABLED else "",
        diagnostics_dir=config.DIAGNOSTICS_DIR,
        run_tag=config.RUN_TAG,
    )


def _write_json(path: str, payload: dict) -> None:
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(payload, ensure_ascii=True, indent=2, default=str), encoding="utf-8")


async def _run_pipeline(args: argparse.Namespace, settings: RebalanceSettings, services: ChainServices) -> int:
    price_source = PriceSource(settings)
    pipeline = build_pipeline(settings, services, price_source)
    try:
        if args.loop:
            counters = await pipeline.run_forever(args.interval, max_cycles=args.max_cycles)
            logger.info("LOOP_DONE counters=%s", counters)
            if args.json_out:
                _write_json(args.json_out, counters)
            return 1 if counters["failures"] and not counters["successes"] else 0
        try:
            outcome = await pipeline.run_cycle()
        except CycleFailed as exc:
            report = exc.report.to_dict()
            print(json.dumps(report, ensure_ascii=True, indent=2, default=str))
            if args.json_out:
                _write_json(args.json_out, {"ok": False, "code": exc.code, "report": report})
            return 1
        print(
            f"price={outcome.scaled_price.render()} tx={outcome.receipt.hash} "
            f"block={outcome.receipt.confirmed_block} approvals={sum(1 for r in outcome.allowances if r.approved)}"
        )
        if args.json_out:
            _write_json(
                args.json_out,
                {
                    "ok": True,
                    "cycle_id": outcome.cycle_id,
                    "raw_price": str(outcome.quote.raw_value),
                    "scaled_price": str(outcome.scaled_price.value),
                    "tx_hash": outcome.receipt.hash,
                    "confirmed_block": outcome.receipt.confirmed_block,
                },
            )
        return 0
    finally:
        await price_source.close()


def _print_pair_price(services: ChainServices, settings: RebalanceSettings) -> None:
    """Spot price of the V2 pair (token1 per token0), from PAIR_ADDRESS or a FACTORY_ADDRESS lookup."""
    reader = services.pool_reader
    pair = config.PAIR_ADDRESS
    if not pair and config.FACTORY_ADDRESS and len(config.ALLOWANCE_TOKENS) >= 2:
        pair = reader.pair_address(config.FACTORY_ADDRESS, config.ALLOWANCE_TOKENS[0], config.ALLOWANCE_TOKENS[1]) or ""
    if not pair:
        return
    token0, token1, _reserve0, _reserve1 = reader.pair_reserves(pair)
    decimals = settings.allowance_token_decimals
    price = reader.pair_price(pair, token0, token1, base_decimals=decimals, quote_decimals=decimals)
    print(f"pair_price={price} pair={pair} base={token0} quote={token1}")


def _run_swap(args: argparse.Namespace, services: ChainServices) -> int:
    router = require_address(config.ROUTER_ADDRESS, "ROUTER_ADDRESS")
    path = [require_address(t, "--swap-path") for t in str(args.swap_path or "").split(",") if t.strip()]
    swapper = Swapper(
        services.chain,
        router,
        services.allowance_guard,
        services.simulator,
        services.submitter,
        slippage_bps=config.SWAP_SLIPPAGE_BPS,
        deadline_seconds=config.SWAP_DEADLINE_SECONDS,
    )
    try:
        receipt = swapper.swap_exact_tokens_for_tokens(int(args.swap_amount), path)
    except RebalancerError as exc:
        logger.error("SWAP_FAILED code=%s error=%s", exc.code, exc)
        return 1
    print(f"swap tx={receipt.hash} block={receipt.confirmed_block}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Align the pool price with the reference price feed.")
    parser.add_argument("--loop", action="store_true", help="Run cycles continuously; exits 1 only when no cycle succeeded")
    parser.add_argument("--interval", type=float, default=config.CYCLE_INTERVAL_SECONDS, help="Seconds between cycles")
    parser.add_argument("--max-cycles", type=int, default=None, help="Stop the loop after this many cycles")
    parser.add_argument("--json-out", default="", help="Optional path to write a JSON summary")
    parser.add_argument("--pool-price", action="store_true", help="Print the current pool price and exit")
    parser.add_argument("--swap-amount", default="", help="Swap this raw token amount through ROUTER_ADDRESS and exit")
    parser.add_argument("--swap-path", default="", help="Comma separated token path for --swap-amount")
    args = parser.parse_args(argv)

    configure_logging()
    try:
        settings = RebalanceSettings.from_config()
        services = ChainServices(settings)
    except (ValueError, OSError) as exc:
        logger.error("CONFIG_INVALID error=%s", exc)
        return 2

    if args.pool_price:
        try:
            value = services.pool_reader.pool_price()
            print(f"pool_price={render(value, settings.price_decimals)} raw={value}")
            _print_pair_price(services, settings)
        except RebalancerError as exc:
            logger.error("POOL_PRICE_FAILED code=%s error=%s", exc.code, exc)
            return 1
        return 0
    if args.swap_amount:
        try:
            return _run_swap(args, services)
        except ValueError as exc:
            logger.error("CONFIG_INVALID error=%s", exc)
            return 2
    return asyncio.run(_run_pipeline(args, settings, services))


if __name__ == "__main__":
    sys.exit(main())
