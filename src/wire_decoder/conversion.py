import re
from typing import Any, Optional, Union

from eth_utils import decode_hex, encode_hex

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
_HEX_BODY = re.compile(r"[0-9a-fA-F]*")
_BLOCK_TAGS = {"latest", "earliest", "pending", "safe", "finalized"}

BlockId = Union[int, str]


def to_bytes(value: Union[str, bytes, bytearray, None]) -> bytes:
    """Convert a 0x-prefixed hex string (or raw bytes) into bytes."""
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str):
        raise ValueError(f"Expected a hex string, got {type(value).__name__}.")
    body = value[2:] if value[:2] in ("0x", "0X") else value
    if not _HEX_BODY.fullmatch(body):
        raise ValueError(f"Not a hex string: '{value[:80]}'.")
    if len(body) % 2 != 0:
        body = "0" + body
    return decode_hex(body)


def to_hex(value: Union[bytes, bytearray]) -> str:
    return encode_hex(bytes(value))


def normalize_address(address: str) -> str:
    if not isinstance(address, str):
        raise ValueError("Address must be a string.")

    candidate = address.strip()
    if not candidate.startswith("0x"):
        candidate = f"0x{candidate}"

    if not ADDRESS_PATTERN.match(candidate):
        raise ValueError("Invalid address format. Expected 0x-prefixed 40 hex characters.")

    return candidate.lower()


def parse_block_number(value: Any) -> Optional[BlockId]:
    """
    Normalize a block identifier as found on transactions and logs.

    Hex quantities and decimal strings become ints, tags are kept lowercased and
    a missing block (pending transaction) maps to None.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("Block number must not be a boolean.")
    if isinstance(value, int):
        if value < 0:
            raise ValueError("Block number must be non-negative.")
        return value
    if not isinstance(value, str):
        raise ValueError(f"Unsupported block identifier: {value!r}.")

    candidate = value.strip().lower()
    if candidate in _BLOCK_TAGS:
        return candidate
    if candidate.startswith("0x"):
        try:
            return int(candidate, 16)
        except ValueError as exc:
            raise ValueError(f"Invalid hex block number '{value}'.") from exc
    if candidate.isdigit():
        return int(candidate)
    raise ValueError(f"Invalid block identifier '{value}'.")


def format_block_tag(block: Optional[BlockId]) -> str:
    """Render a block identifier the way JSON-RPC expects it."""
    parsed = parse_block_number(block)
    if parsed is None:
        return "latest"
    if isinstance(parsed, int):
        return hex(parsed)
    return parsed
