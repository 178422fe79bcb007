import hashlib
from typing import Iterable


def sha256(data: bytes) -> bytes:
    """Returns SHA256 hash of bytes."""
    return hashlib.sha256(data).digest()


def sha256_hex(data: bytes) -> str:
    """Returns SHA256 hash of bytes as hex string."""
    return sha256(data).hex()


def sha256_concat(parts: Iterable[bytes]) -> bytes:
    """SHA256 over the concatenation of parts (a || b || ...)."""
    h = hashlib.sha256()
    for p in parts:
        h.update(p)
    return h.digest()


def parse_hex32(value: str) -> bytes:
    """Parses a 32-byte identifier given as hex, with or without 0x prefix."""
    raw = value[2:] if value.startswith(("0x", "0X")) else value
    data = bytes.fromhex(raw)
    if len(data) != 32:
        raise ValueError(f"expected 32 bytes, got {len(data)}")
    return data
