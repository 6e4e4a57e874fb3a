"""Application configuration."""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    try:
        load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")
    except TypeError:
        # Older python-dotenv versions may not expose the `encoding` argument.
        load_dotenv(dotenv_path=dotenv_path, override=override)


# Load base environment first, then optional per-deployment override env file.
_load_dotenv_safe()
_REBALANCER_ENV_FILE = os.getenv("REBALANCER_ENV_FILE", "").strip()
if _REBALANCER_ENV_FILE:
    _env_path = Path(_REBALANCER_ENV_FILE).expanduser()
    if not _env_path.is_absolute():
        _env_path = (Path.cwd() / _env_path).resolve()
    if not _env_path.exists():
        raise FileNotFoundError(f"REBALANCER_ENV_FILE does not exist: {_env_path}")
    if not _env_path.is_file():
        raise IsADirectoryError(f"REBALANCER_ENV_FILE is not a file: {_env_path}")
    try:
        _load_dotenv_safe(str(_env_path), override=True)
    except (OSError, UnicodeError, ValueError) as exc:
        raise RuntimeError(f"Failed to load REBALANCER_ENV_FILE '{_env_path}': {exc}") from exc


def _split_csv(raw: str) -> List[str]:
    return [x.strip() for x in str(raw or "").split(",") if x.strip()]


# Price feed.
PRICE_API_URL = os.getenv("PRICE_API_URL", "https://api.coingecko.com/api/v3/simple/price").strip()
PRICE_API_KEY = os.getenv("PRICE_API_KEY", os.getenv("COINGECKO_API_KEY", "")).strip()
PRICE_API_KEY_HEADER = os.getenv("PRICE_API_KEY_HEADER", "x-cg-api-key").strip()
PRICE_BASE_ID = os.getenv("PRICE_BASE_ID", "dai").strip().lower()
PRICE_QUOTE_ID = os.getenv("PRICE_QUOTE_ID", "ngn").strip().lower()
RETRY_ATTEMPTS = max(0, int(os.getenv("RETRY_ATTEMPTS", "3")))
RETRY_DELAY_MS = max(0, int(os.getenv("RETRY_DELAY_MS", "5000")))
REQUEST_TIMEOUT_MS = max(100, int(os.getenv("REQUEST_TIMEOUT_MS", "5000")))

# Fixed-point scaling.
PRICE_DECIMALS = max(0, int(os.getenv("PRICE_DECIMALS", "18")))
PRICE_PRECISION = max(0, int(os.getenv("PRICE_PRECISION", "6")))
PRICE_ROUNDING = os.getenv("PRICE_ROUNDING", "half_up").strip().lower()
OVERFLOW_CEILING_BITS = int(os.getenv("OVERFLOW_CEILING_BITS", "256"))
if OVERFLOW_CEILING_BITS not in (128, 256):
    raise ValueError(f"OVERFLOW_CEILING_BITS must be 128 or 256, got {OVERFLOW_CEILING_BITS}")

# Chain access.
RPC_PRIMARY = os.getenv("RPC_PRIMARY", "").strip()
RPC_SECONDARY = os.getenv("RPC_SECONDARY", "").strip()
RPC_TIMEOUT_SECONDS = max(3, int(os.getenv("RPC_TIMEOUT_SECONDS", "10")))
CHAIN_ID = int(os.getenv("CHAIN_ID", "11155111"))
PRIVATE_KEY = os.getenv("PRIVATE_KEY", "").strip()
WALLET_ADDRESS = os.getenv("WALLET_ADDRESS", "").strip()

# Contracts.
POOL_MANAGER_ADDRESS = os.getenv("POOL_MANAGER_ADDRESS", os.getenv("LIQUIDITY_MANAGER_ADDRESS", "")).strip()
POOL_MANAGER_ABI_PATH = os.getenv("POOL_MANAGER_ABI_PATH", "").strip()
ALLOWANCE_TOKENS = _split_csv(os.getenv("ALLOWANCE_TOKENS", ""))
ALLOWANCE_AMOUNT = os.getenv("ALLOWANCE_AMOUNT", "").strip()
ALLOWANCE_TOKEN_DECIMALS = max(0, int(os.getenv("ALLOWANCE_TOKEN_DECIMALS", "18")))
ROUTER_ADDRESS = os.getenv("ROUTER_ADDRESS", "").strip()
FACTORY_ADDRESS = os.getenv("FACTORY_ADDRESS", "").strip()
PAIR_ADDRESS = os.getenv("PAIR_ADDRESS", "").strip()

# Transactions.
CONFIRMATION_BLOCKS = max(1, int(os.getenv("CONFIRMATION_BLOCKS", "2")))
CONFIRMATION_POLL_SECONDS = max(0.05, float(os.getenv("CONFIRMATION_POLL_SECONDS", "2.0")))
GAS_LIMIT_BUFFER = max(1.0, float(os.getenv("GAS_LIMIT_BUFFER", "1.1")))
MAX_GAS_GWEI = float(os.getenv("MAX_GAS_GWEI", "50.0"))
PRIORITY_FEE_GWEI = float(os.getenv("PRIORITY_FEE_GWEI", "1.5"))
MAX_TX_GAS = max(0, int(os.getenv("MAX_TX_GAS", "0")))
TX_TIMEOUT_SECONDS = max(30, int(os.getenv("TX_TIMEOUT_SECONDS", "180")))
SWAP_SLIPPAGE_BPS = max(0, int(os.getenv("SWAP_SLIPPAGE_BPS", "100")))
SWAP_DEADLINE_SECONDS = max(30, int(os.getenv("SWAP_DEADLINE_SECONDS", "600")))

# Cycle control.
CYCLE_TIMEOUT_SECONDS = max(1.0, float(os.getenv("CYCLE_TIMEOUT_SECONDS", "600")))
CYCLE_INTERVAL_SECONDS = max(1.0, float(os.getenv("CYCLE_INTERVAL_SECONDS", "300")))

# Output.
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
APP_LOG_FILE = os.path.join(LOG_DIR, "app.log")
CYCLE_EVENTS_LOG_ENABLED = os.getenv("CYCLE_EVENTS_LOG_ENABLED", "true").lower() == "true"
CYCLE_EVENTS_LOG_FILE = os.getenv("CYCLE_EVENTS_LOG_FILE", os.path.join(LOG_DIR, "cycles.jsonl"))
DIAGNOSTICS_DIR = os.getenv("DIAGNOSTICS_DIR", os.path.join(LOG_DIR, "diagnostics"))
RUN_TAG = os.getenv("RUN_TAG", "").strip()
