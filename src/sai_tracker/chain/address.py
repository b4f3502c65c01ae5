"""EVM hex address -> Nibiru bech32 address."""

from __future__ import annotations

from bech32 import bech32_encode, convertbits

DEFAULT_PREFIX = "nibi"


def _hex_bytes(clean: str) -> bytes:
    out = bytearray()
    for i in range(0, len(clean) - 1, 2):
        try:
            out.append(int(clean[i : i + 2], 16))
        except ValueError:
            out.append(0)
    return bytes(out)


def to_native_form(hex_address: str, prefix: str = DEFAULT_PREFIX) -> str:
    """Encode a 20-byte hex address (with or without 0x) as bech32.

    No validation is done here: addresses are gated by a regex at the API
    boundary, and malformed input simply produces a malformed address.
    """
    clean = hex_address.strip().lower()
    if clean.startswith("0x"):
        clean = clean[2:]
    words = convertbits(_hex_bytes(clean), 8, 5)
    return bech32_encode(prefix, words or [])
