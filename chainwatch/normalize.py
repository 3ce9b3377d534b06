"""
Normalization boundary: provider frames → canonical views.

Providers disagree on shapes. Yellowstone-style geyser frames carry bytes as
proto3-JSON base64 (or raw integer arrays from some bridges), JSON-RPC
getTransaction carries base58 keys and data, web3.js-style messages use
staticAccountKeys/compiledInstructions, and Hyperliquid book levels are either
[px, sz] arrays or {px, sz, n} objects. Everything is resolved here once so
downstream code only ever sees TransactionView, TradeTick and BookLevel.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

import base58

from chainwatch.exceptions import NormalizationError
from chainwatch.models import Instruction, TransactionView

BYTE_ENCODINGS = {"base64", "base58"}


# ── Byte / address helpers ────────────────────────────────────────────────────


def as_bytes(value: Any, encoding: str = "base64") -> bytes:
    """Decode a bytes field that may be text-encoded, an int array, or a Node Buffer dict."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, dict) and value.get("type") == "Buffer":
        value = value.get("data")
    if isinstance(value, list):
        try:
            return bytes(value)
        except (TypeError, ValueError) as e:
            raise NormalizationError(f"Invalid byte array: {e}") from e
    if isinstance(value, str):
        try:
            if encoding == "base58":
                return base58.b58decode(value)
            return base64.b64decode(value, validate=True)
        except (ValueError, binascii.Error) as e:
            raise NormalizationError(f"Invalid {encoding} bytes field: {e}") from e
    raise NormalizationError(f"Unsupported bytes field type: {type(value).__name__}")


def as_address(value: Any, encoding: str = "base64") -> str:
    """Return a base58 address from either a base58 string or raw key bytes."""
    if isinstance(value, str) and encoding == "base58":
        return value
    return base58.b58encode(as_bytes(value, encoding)).decode("ascii")


def _require(obj: Any, key: str, where: str) -> Any:
    if not isinstance(obj, dict) or obj.get(key) is None:
        raise NormalizationError(f"Missing {key!r} in {where}", details={"field": key})
    return obj[key]


def as_int(value: Any, field_name: str) -> int:
    """int() for wire fields; bools, floats with a fraction and junk strings are rejected."""
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise NormalizationError(f"Field {field_name!r} is not an integer: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise NormalizationError(f"Field {field_name!r} is not an integer: {value!r}") from e


def as_optional_int(value: Any, field_name: str) -> int | None:
    return None if value is None else as_int(value, field_name)


def _as_list(value: Any, where: str) -> list[Any]:
    if not isinstance(value, list):
        raise NormalizationError(f"{where} must be a list, got {type(value).__name__}")
    return value


def _as_dict(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise NormalizationError(f"{where} must be an object, got {type(value).__name__}")
    return value


# ── Transactions ──────────────────────────────────────────────────────────────


def _instruction_list(message: dict[str, Any]) -> list[dict[str, Any]]:
    raw = message.get("compiledInstructions")
    if raw is None:
        raw = _require(message, "instructions", "message")
    if isinstance(raw, dict):
        raw = list(raw.values())
    return _as_list(raw, "instructions")


def _parse_instruction(raw: dict[str, Any], encoding: str) -> Instruction:
    if not isinstance(raw, dict):
        raise NormalizationError("Instruction must be an object")
    program_index = as_int(_require(raw, "programIdIndex", "instruction"), "programIdIndex")
    accounts_raw = raw.get("accounts", raw.get("accountKeyIndexes", []))
    if isinstance(accounts_raw, (str, dict, bytes)):
        # proto3 JSON packs the index list as a bytes field
        accounts = tuple(as_bytes(accounts_raw, "base64"))
    else:
        accounts = tuple(as_int(i, "accounts") for i in _as_list(accounts_raw, "instruction accounts"))
    data = as_bytes(raw.get("data", b""), encoding)
    return Instruction(program_id_index=program_index, data=data, accounts=accounts)


def _loaded_addresses(
    meta: dict[str, Any], writable_key: str, readonly_key: str, encoding: str
) -> tuple[str, ...] | None:
    if writable_key not in meta and readonly_key not in meta:
        return None
    writable = _as_list(meta.get(writable_key) or [], writable_key)
    readonly = _as_list(meta.get(readonly_key) or [], readonly_key)
    return tuple(as_address(a, encoding) for a in [*writable, *readonly])


def _build_view(
    *,
    signature: str,
    slot: int,
    message: dict[str, Any],
    meta: dict[str, Any],
    loaded: tuple[str, ...] | None,
    encoding: str,
    block_time: int | None,
) -> TransactionView:
    keys_raw = message.get("staticAccountKeys")
    if keys_raw is None:
        keys_raw = _require(message, "accountKeys", "message")
    keys = tuple(as_address(k, encoding) for k in _as_list(keys_raw, "account keys"))
    instructions = tuple(_parse_instruction(i, encoding) for i in _instruction_list(message))
    return TransactionView(
        signature=signature,
        slot=slot,
        success=meta.get("err") is None,
        account_keys=keys,
        instructions=instructions,
        block_time=block_time,
        loaded_addresses=loaded,
        has_lookups=bool(message.get("addressTableLookups")),
    )


def normalize_geyser_update(message: dict[str, Any], encoding: str = "base64") -> TransactionView:
    """
    Build a view from a geyser transaction update.

    Shape: {"filters": [...], "transaction": {"slot": n, "transaction":
    {"signature": b, "transaction": {"message": {...}}, "meta": {...}}}}
    """
    if encoding not in BYTE_ENCODINGS:
        raise NormalizationError(f"Unknown byte encoding {encoding!r}")
    update = _require(message, "transaction", "update")
    slot = as_int(_require(update, "slot", "update.transaction"), "slot")
    info = _require(update, "transaction", "update.transaction")
    signature = as_address(_require(info, "signature", "transaction info"), encoding)
    tx = _require(info, "transaction", "transaction info")
    msg = _require(tx, "message", "transaction")
    meta = _as_dict(info.get("meta"), "meta")
    loaded = _loaded_addresses(
        meta, "loadedWritableAddresses", "loadedReadonlyAddresses", encoding
    )
    return _build_view(
        signature=signature,
        slot=slot,
        message=msg,
        meta=meta,
        loaded=loaded,
        encoding=encoding,
        block_time=None,
    )


def normalize_rpc_transaction(result: dict[str, Any], signature: str | None = None) -> TransactionView:
    """
    Build a view from a JSON-RPC getTransaction result (encoding=json).

    Keys and instruction data are base58; v0 lookup entries live in
    meta.loadedAddresses.{writable,readonly}.
    """
    slot = as_int(_require(result, "slot", "getTransaction result"), "slot")
    tx = _require(result, "transaction", "getTransaction result")
    msg = _require(tx, "message", "transaction")
    if signature is None:
        sigs = _as_list(tx.get("signatures") or [], "signatures")
        if not sigs:
            raise NormalizationError("Transaction has no signatures")
        signature = sigs[0]
    meta = _as_dict(result.get("meta"), "meta")
    loaded = None
    if isinstance(meta.get("loadedAddresses"), dict):
        loaded = _loaded_addresses(meta["loadedAddresses"], "writable", "readonly", "base58")
    block_time = result.get("blockTime")
    return _build_view(
        signature=signature,
        slot=slot,
        message=msg,
        meta=meta,
        loaded=loaded,
        encoding="base58",
        block_time=as_optional_int(block_time, "blockTime"),
    )


# ── Hyperliquid market data ───────────────────────────────────────────────────


def _decimal(value: Any, field_name: str) -> Decimal:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise NormalizationError(f"Field {field_name!r} is not numeric: {value!r}") from e
    if not number.is_finite():
        raise NormalizationError(f"Field {field_name!r} is not finite: {value!r}")
    return number


@dataclass(frozen=True)
class TradeTick:
    """One public trade print."""

    coin: str
    side: str
    price: Decimal
    size: Decimal
    time_ms: int | None
    user: str
    tx_hash: str | None
    trade_id: int | None


def normalize_trade(raw: dict[str, Any]) -> TradeTick:
    """
    Normalize a Hyperliquid trade.

    The aggressor is taken from "user" when present, else from "users"
    ([buyer, seller]) by side.
    """
    side = str(_require(raw, "side", "trade"))
    user = raw.get("user")
    users = raw.get("users")
    if not user and isinstance(users, list) and len(users) == 2:
        user = users[0] if side == "B" else users[1]
    tid = raw.get("tid")
    ts = raw.get("time")
    return TradeTick(
        coin=str(_require(raw, "coin", "trade")),
        side=side,
        price=_decimal(_require(raw, "px", "trade"), "px"),
        size=_decimal(_require(raw, "sz", "trade"), "sz"),
        time_ms=as_optional_int(ts, "time"),
        user=str(user) if user else "Unknown",
        tx_hash=raw.get("hash") or None,
        trade_id=as_optional_int(tid, "tid"),
    )


@dataclass(frozen=True)
class BookLevel:
    side: str                   # "BID" | "ASK"
    price: Decimal
    size: Decimal


def normalize_book_levels(levels: Any) -> list[BookLevel]:
    """
    Flatten [bids, asks] into BookLevels.

    Each level may be [price, size] or {"px", "sz", "n"}; unrecognised level
    shapes are skipped.
    """
    if not isinstance(levels, list):
        raise NormalizationError("Book levels must be a list")
    out: list[BookLevel] = []
    for side, side_levels in zip(("BID", "ASK"), levels):
        if not isinstance(side_levels, list):
            continue
        for level in side_levels:
            if isinstance(level, list) and len(level) >= 2:
                px, sz = level[0], level[1]
            elif isinstance(level, dict) and level.get("px") and level.get("sz"):
                px, sz = level["px"], level["sz"]
            else:
                continue
            out.append(BookLevel(side=side, price=_decimal(px, "px"), size=_decimal(sz, "sz")))
    return out
