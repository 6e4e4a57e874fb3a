"""ABI helpers: selectors, call-data encoding and revert-data decoding."""

from __future__ import annotations

from typing import Any, Iterable

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from trading.models import DecodedRevert

ERROR_STRING_SELECTOR = "0x08c379a0"
PANIC_SELECTOR = "0x4e487b71"
UNDECODED_MARKER = "could not decode"

PANIC_CODES: dict[int, str] = {
    0x00: "generic compiler panic",
    0x01: "assert failed",
    0x11: "arithmetic overflow or underflow",
    0x12: "division or modulo by zero",
    0x21: "invalid enum conversion",
    0x22: "invalid storage byte array encoding",
    0x31: "pop on empty array",
    0x32: "array index out of bounds",
    0x41: "out of memory",
    0x51: "call to zero-initialized internal function",
}


def canonical_type(param: dict[str, Any]) -> str:
    kind = str(param.get("type", ""))
    if kind.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param.get("components", []) or [])
        return f"({inner}){kind[len('tuple'):]}"
    return kind


def signature(entry: dict[str, Any]) -> str:
    types = ",".join(canonical_type(p) for p in entry.get("inputs", []) or [])
    return f"{entry.get('name', '')}({types})"


def selector(sig: str) -> str:
    return "0x" + Web3.keccak(text=sig)[:4].hex().removeprefix("0x")


def find_function(abi: Iterable[dict[str, Any]], fn_name: str, arg_count: int | None = None) -> dict[str, Any]:
    for entry in abi or []:
        if entry.get("type", "function") != "function" or entry.get("name") != fn_name:
            continue
        if arg_count is not None and len(entry.get("inputs", []) or []) != arg_count:
            continue
        return entry
    raise KeyError(f"function not in ABI: {fn_name}")


def encode_call(abi: Iterable[dict[str, Any]], fn_name: str, args: Iterable[Any]) -> dict[str, str]:
    """Return `{signature, selector, arguments, calldata}` for a function call, all hex-encoded."""
    args = list(args)
    entry = find_function(abi, fn_name, len(args))
    sig = signature(entry)
    sel = selector(sig)
    types = [canonical_type(p) for p in entry.get("inputs", []) or []]
    encoded_args = abi_encode(types, args).hex().removeprefix("0x")
    return {
        "signature": sig,
        "selector": sel,
        "arguments": "0x" + encoded_args,
        "calldata": sel + encoded_args,
    }


def error_signatures(abi: Iterable[dict[str, Any]]) -> list[str]:
    return [signature(entry) for entry in abi or [] if entry.get("type") == "error"]


def _as_hex(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, (bytes, bytearray)):
        return "0x" + bytes(data).hex()
    if isinstance(data, dict):
        return _as_hex(data.get("data"))
    text = str(data).strip()
    if text.startswith("0x") or text.startswith("0X"):
        return "0x" + text[2:].lower()
    return ""


def revert_data_from_exception(exc: BaseException) -> str:
    """Pull revert bytes out of a web3 exception (`ContractLogicError.data` or RPC error payloads)."""
    data = _as_hex(getattr(exc, "data", None))
    if data:
        return data
    for arg in getattr(exc, "args", ()) or ():
        if isinstance(arg, dict):
            data = _as_hex(arg.get("data"))
            if data:
                return data
        elif isinstance(arg, (str, bytes)):
            data = _as_hex(arg)
            if len(data) >= 10:
                return data
    return ""


def decode_revert(abi: Iterable[dict[str, Any]], data: Any) -> DecodedRevert:
    raw = _as_hex(data)
    if raw in {"", "0x"}:
        return DecodedRevert(kind="empty", raw=raw)
    try:
        body = bytes.fromhex(raw[2:])
    except ValueError:
        return DecodedRevert(kind="undecoded", raw=raw)
    sel, payload = "0x" + body[:4].hex(), body[4:]

    try:
        if sel == ERROR_STRING_SELECTOR:
            (message,) = abi_decode(["string"], payload)
            return DecodedRevert(kind="error_string", name="Error", signature="Error(string)", args=(message,), raw=raw)
        if sel == PANIC_SELECTOR:
            (code,) = abi_decode(["uint256"], payload)
            label = PANIC_CODES.get(int(code), "unknown panic code")
            return DecodedRevert(kind="panic", name="Panic", signature="Panic(uint256)", args=(hex(code), label), raw=raw)
        for entry in abi or []:
            if entry.get("type") != "error":
                continue
            sig = signature(entry)
            if selector(sig) != sel:
                continue
            types = [canonical_type(p) for p in entry.get("inputs", []) or []]
            values = abi_decode(types, payload) if types else ()
            return DecodedRevert(kind="custom", name=str(entry.get("name", "")), signature=sig, args=tuple(values), raw=raw)
    except DecodingError:
        # Selector matched but payload did not decode against it.
        return DecodedRevert(kind="undecoded", raw=raw)
    return DecodedRevert(kind="undecoded", raw=raw)
