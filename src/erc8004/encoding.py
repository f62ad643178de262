"""Address and hash normalization shared by the registries."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping, Optional

from .errors import InvalidAddressError, InvalidDataHashError


ZERO_ADDRESS = "0x" + "0" * 40
ZERO_HASH = "0x" + "0" * 64

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_HEX32_RE = re.compile(r"^0x[a-f0-9]{64}$")


def normalize_address(address: str) -> str:
    """Normalize Ethereum addresses to lower-case hex."""
    if not isinstance(address, str):
        raise InvalidAddressError(f"Invalid Ethereum address: {address!r}")
    candidate = address.strip()
    if candidate.startswith(("0X", "0x")):
        candidate = "0x" + candidate[2:]
    if not _ADDRESS_RE.match(candidate):
        raise InvalidAddressError(f"Invalid Ethereum address: {address}")
    return "0x" + candidate[2:].lower()


def is_zero_address(address: Optional[str]) -> bool:
    """True for the "leave unchanged" sentinel (``None`` or the zero address)."""
    if address is None:
        return True
    return normalize_address(address) == ZERO_ADDRESS


def normalize_hex32(value: Any, field_name: str) -> str:
    """Normalize a 32-byte hex value to ``0x`` + 64 lower-case hex chars."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValueError(f"{field_name} must be 32 bytes")
        return "0x" + bytes(value).hex()
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a hex string")
    candidate = value.strip().lower()
    if not candidate.startswith("0x"):
        candidate = "0x" + candidate
    if not _HEX32_RE.match(candidate):
        raise ValueError(f"{field_name} must be 32 bytes (0x + 64 hex chars)")
    return candidate


def normalize_data_hash(data_hash: Any) -> str:
    """Normalize a validation data hash, rejecting the zero hash."""
    try:
        normalized = normalize_hex32(data_hash, "data_hash")
    except ValueError as exc:
        raise InvalidDataHashError(str(exc)) from exc
    if normalized == ZERO_HASH:
        raise InvalidDataHashError("data_hash must be non-zero")
    return normalized


def canonical_json_bytes(value: Any) -> bytes:
    """Serialize JSON using deterministic ordering and no insignificant whitespace."""
    return json.dumps(
        _normalize_for_canonical_json(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def _normalize_for_canonical_json(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _normalize_for_canonical_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_for_canonical_json(item) for item in value]
    if isinstance(value, float):
        raise ValueError("Floats are not allowed in canonical event payloads")
    if isinstance(value, (str, int, bool)) or value is None:
        return value
    raise ValueError(f"Unsupported JSON canonicalization value type: {type(value).__name__}")
