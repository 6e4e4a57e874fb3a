"""Address normalization helpers."""

from __future__ import annotations

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_address(value: str | None) -> str:
    """Normalize on-chain address keys for logs and comparisons."""
    return str(value or "").strip().lower()


def require_address(value: str | None, name: str) -> str:
    """Checksum `value` or raise ValueError naming the offending setting."""
    raw = str(value or "").strip()
    if not raw or not Web3.is_address(raw):
        raise ValueError(f"Invalid {name} address: {raw or '<empty>'}")
    return Web3.to_checksum_address(raw)


def same_address(a: str | None, b: str | None) -> bool:
    left = normalize_address(a)
    return bool(left) and left == normalize_address(b)
