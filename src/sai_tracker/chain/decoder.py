"""Decode perp contract log payloads (JSON inside an ABI string).

Two stages, kept separate on purpose:

1. Strict: ABI-decode the ``string`` (falling back to the raw length word
   for truncated payloads), find the first balanced ``{...}`` span and
   ``json.loads`` it.
2. Fallback: when the JSON is truncated or malformed, pull a fixed, narrow
   set of known keys out with regexes (``FALLBACK_FIELDS``). Anything not in
   that set is lost on this path.

Neither stage raises. ``None`` means "skip this log".
"""

from __future__ import annotations

import json
import re
import string

import structlog
from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from sai_tracker.models.events import ProtocolEvent

logger = structlog.get_logger()

WORD_BYTES = 32
ABI_HEADER_BYTES = 2 * WORD_BYTES  # offset word + length word

# Keys recovered by the regex fallback. Deliberately narrower than the
# strict path: no nested objects, no trader/market/collateral token.
FALLBACK_FIELDS = (
    "type",
    "action",
    "trade_index",
    "long",
    "leverage",
    "collateral",
    "open_price",
    "close_price",
    "profit_pct",
    "amount_received",
    "opening_fee",
    "closing_fee",
    "trigger_fee",
    "borrowing_fee",
)

_FIELD_PATTERNS = {
    field: re.compile(
        r'"' + field + r'"\s*:\s*(?:"(?P<str>[^"]*)"|(?P<lit>-?[0-9][0-9.eE+\-]*|true|false))'
    )
    for field in FALLBACK_FIELDS
}

_HEX_DIGITS = frozenset(string.hexdigits)


def _hex_to_bytes(raw_hex: str) -> bytes:
    """Lenient hex decode: stops at the first non-hex char, drops an odd nibble."""
    clean = raw_hex.strip()
    if clean[:2].lower() == "0x":
        clean = clean[2:]
    end = 0
    for ch in clean:
        if ch not in _HEX_DIGITS:
            break
        end += 1
    end -= end % 2
    return bytes.fromhex(clean[:end])


def decode_text(raw_hex: str) -> str:
    """Return the UTF-8 string carried by an ABI-encoded ``string`` value.

    A length word larger than the data (truncated log) yields whatever bytes
    are present. Data too short to hold a header is decoded as-is.
    """
    if not raw_hex:
        return ""
    data = _hex_to_bytes(raw_hex)
    try:
        (text,) = abi_decode(["string"], data)
        return text
    except (DecodingError, ValueError, OverflowError):
        pass
    if len(data) < ABI_HEADER_BYTES:
        return data.decode("utf-8", errors="ignore")
    length = int.from_bytes(data[WORD_BYTES:ABI_HEADER_BYTES], "big")
    body = data[ABI_HEADER_BYTES : ABI_HEADER_BYTES + length]
    return body.decode("utf-8", errors="ignore")


def decode_slice(raw_hex: str, header_bytes: int) -> str:
    """Text after a fixed-size header, without reading a length word."""
    data = _hex_to_bytes(raw_hex or "")
    return data[header_bytes:].decode("utf-8", errors="ignore")


def find_json_object(text: str) -> str | None:
    """First balanced ``{...}`` span, honouring nesting and string literals."""
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _parse_strict(text: str) -> dict | None:
    span = find_json_object(text)
    if span is None:
        return None
    try:
        parsed = json.loads(span)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _parse_fallback(text: str) -> dict | None:
    record: dict = {}
    for field, pattern in _FIELD_PATTERNS.items():
        match = pattern.search(text)
        if match is None:
            continue
        if match.group("str") is not None:
            record[field] = match.group("str")
        else:
            record[field] = match.group("lit")
    return record or None


def parse_record(text: str) -> dict | None:
    """Strict JSON parse, then field-level regex fallback."""
    if not text:
        return None
    record = _parse_strict(text)
    if record is not None:
        return record
    record = _parse_fallback(text)
    if record is not None:
        logger.debug("event_decoded_by_fallback", fields=sorted(record))
    return record


def decode(raw_hex: str) -> dict | None:
    """ABI hex string -> JSON-like record, or None if nothing is recognisable."""
    try:
        return parse_record(decode_text(raw_hex))
    except Exception as e:
        logger.debug("event_decode_failed", error=str(e))
        return None


def decode_log(log: dict, header_bytes: int | None = None) -> ProtocolEvent | None:
    """Decode one receipt/getLogs entry into a ProtocolEvent.

    With ``header_bytes`` the payload is read from a fixed offset instead of
    through the ABI length word.
    """
    data = log.get("data") or ""
    try:
        if header_bytes is None:
            record = parse_record(decode_text(data))
        else:
            record = parse_record(decode_slice(data, header_bytes))
        if record is None:
            return None
        return ProtocolEvent.from_record(
            record,
            tx_hash=log.get("transactionHash") or "",
            log_index=quantity(log.get("logIndex")) or 0,
            block_number=quantity(log.get("blockNumber")),
        )
    except Exception as e:
        logger.debug("event_decode_failed", tx_hash=log.get("transactionHash"), error=str(e))
        return None


def quantity(value) -> int | None:
    """RPC quantity as int; accepts ints and 0x-hex strings."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value), 16)
    except ValueError:
        return None
