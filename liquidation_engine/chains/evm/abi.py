"""ABI encoding helpers for the handful of calls the engine makes."""
from __future__ import annotations

from typing import Any, Sequence

from eth_abi import decode, encode
from eth_utils import keccak, to_checksum_address

# Error(string) and Panic(uint256) selectors.
ERROR_SELECTOR = "08c379a0"
PANIC_SELECTOR = "4e487b71"

TRANSFER_TOPIC = "0x" + keccak(text="Transfer(address,address,uint256)").hex()


def normalize_address(address: str) -> str:
    """Return the EIP-55 checksummed form of an address."""
    return to_checksum_address(address)


def selector(signature: str) -> bytes:
    """First four bytes of keccak256 of a function signature."""
    return keccak(text=signature)[:4]


def encode_call(signature: str, args: Sequence[Any] = ()) -> str:
    """Build hex calldata for ``signature`` (e.g. ``"liquidate(uint256)"``)."""
    arg_types = _arg_types(signature)
    payload = selector(signature)
    if arg_types:
        payload += encode(arg_types, list(args))
    return "0x" + payload.hex()


def decode_result(types: Sequence[str], data: str | bytes) -> tuple[Any, ...]:
    """Decode ``eth_call`` return data."""
    raw = _to_bytes(data)
    return tuple(decode(list(types), raw))


def decode_revert_reason(data: str | bytes | None) -> str | None:
    """Decode ``Error(string)`` / ``Panic(uint256)`` revert data, if any."""
    if not data:
        return None
    raw = _to_bytes(data)
    if len(raw) < 4:
        return None
    head, body = raw[:4].hex(), raw[4:]
    try:
        if head == ERROR_SELECTOR:
            (reason,) = decode(["string"], body)
            return reason
        if head == PANIC_SELECTOR:
            (code,) = decode(["uint256"], body)
            return f"panic code {code:#x}"
    except Exception:
        return None
    return None


def address_from_topic(topic: str) -> str:
    """Indexed address topics are left-padded to 32 bytes."""
    return normalize_address("0x" + topic[-40:])


def address_from_uint(value: int) -> str:
    """Interpret a uint256 (e.g. a WERC20 ``collId``) as an address."""
    return normalize_address("0x" + (value & (2**160 - 1)).to_bytes(20, "big").hex())


def _arg_types(signature: str) -> list[str]:
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return [t.strip() for t in inner.split(",")] if inner.strip() else []


def _to_bytes(data: str | bytes) -> bytes:
    if isinstance(data, bytes):
        return data
    return bytes.fromhex(data[2:] if data.startswith("0x") else data)
