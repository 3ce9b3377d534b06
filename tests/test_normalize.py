"""Tests for chainwatch/normalize.py — provider frames → canonical views."""

from __future__ import annotations

import base64
from decimal import Decimal

import base58
import pytest

from chainwatch.classifier import PUMPFUN_PROGRAM, SYSTEM_PROGRAM
from chainwatch.exceptions import NormalizationError
from chainwatch.normalize import (
    as_address,
    as_bytes,
    as_int,
    normalize_book_levels,
    normalize_geyser_update,
    normalize_rpc_transaction,
    normalize_trade,
)

# ── bytes fields ──────────────────────────────────────────────────────────────


def test_as_bytes_accepts_all_wire_shapes() -> None:
    raw = bytes([1, 2, 3, 250])
    assert as_bytes(raw) == raw
    assert as_bytes(list(raw)) == raw
    assert as_bytes({"type": "Buffer", "data": list(raw)}) == raw
    assert as_bytes(base64.b64encode(raw).decode()) == raw
    assert as_bytes(base58.b58encode(raw).decode(), "base58") == raw


def test_as_bytes_rejects_garbage() -> None:
    with pytest.raises(NormalizationError):
        as_bytes("!!not base64!!")
    with pytest.raises(NormalizationError):
        as_bytes(12345)
    with pytest.raises(NormalizationError):
        as_bytes([1, 999])


def test_as_address_round_trips_program_id() -> None:
    raw = base58.b58decode(PUMPFUN_PROGRAM)
    assert as_address(base64.b64encode(raw).decode()) == PUMPFUN_PROGRAM
    assert as_address(PUMPFUN_PROGRAM, "base58") == PUMPFUN_PROGRAM


# ── geyser updates ────────────────────────────────────────────────────────────


def test_normalize_geyser_update(frames) -> None:
    view = normalize_geyser_update(frames.mint(slot=123))
    assert view.slot == 123
    assert view.success is True
    assert view.signature == frames.signature(7)
    assert view.account_keys[8] == PUMPFUN_PROGRAM
    assert len(view.instructions) == 1
    ix = view.instructions[0]
    assert ix.program_id_index == 8
    assert ix.accounts == tuple(range(8))
    assert ix.data == frames.create_data()
    assert view.loaded_addresses is None


def test_normalize_geyser_failed_tx(frames) -> None:
    view = normalize_geyser_update(frames.mint(err={"InstructionError": [0, "Custom"]}))
    assert view.success is False


def test_normalize_geyser_loaded_addresses(frames) -> None:
    update = frames.mint(addressTableLookups=[{"accountKey": "x"}])
    meta = update["transaction"]["transaction"]["meta"]
    writable = base58.b58decode(frames.key(90))
    meta["loadedWritableAddresses"] = [base64.b64encode(writable).decode()]
    meta["loadedReadonlyAddresses"] = []
    view = normalize_geyser_update(update)
    assert view.has_lookups is True
    assert view.loaded_addresses == (frames.key(90),)


def test_normalize_geyser_missing_message(frames) -> None:
    update = frames.mint()
    del update["transaction"]["transaction"]["transaction"]["message"]
    with pytest.raises(NormalizationError):
        normalize_geyser_update(update)


def test_normalize_geyser_compiled_instructions_shape(frames) -> None:
    keys = [frames.key(1), frames.key(2), SYSTEM_PROGRAM]
    update = frames.update(keys, [])
    msg = update["transaction"]["transaction"]["transaction"]["message"]
    del msg["instructions"]
    msg["staticAccountKeys"] = msg.pop("accountKeys")
    msg["compiledInstructions"] = [
        {"programIdIndex": 2, "accountKeyIndexes": [0, 1], "data": {"type": "Buffer", "data": [2, 0, 0, 0]}}
    ]
    view = normalize_geyser_update(update)
    assert view.instructions[0].accounts == (0, 1)
    assert view.instructions[0].data == bytes([2, 0, 0, 0])


def test_normalize_geyser_unknown_encoding(frames) -> None:
    with pytest.raises(NormalizationError):
        normalize_geyser_update(frames.mint(), encoding="hex")


# ── getTransaction results ────────────────────────────────────────────────────


def rpc_result(**meta_extra) -> dict:
    return {
        "slot": 300,
        "blockTime": 1_700_000_000,
        "transaction": {
            "signatures": ["5sigFromRpc"],
            "message": {
                "accountKeys": ["Key1111", "Key2222", SYSTEM_PROGRAM],
                "instructions": [
                    {
                        "programIdIndex": 2,
                        "accounts": [0, 1, 3],
                        "data": base58.b58encode(bytes([2, 0, 0, 0]) + bytes(8)).decode(),
                    }
                ],
                "addressTableLookups": [{"accountKey": "Table1"}],
            },
        },
        "meta": {"err": None, **meta_extra},
    }


def test_normalize_rpc_transaction() -> None:
    view = normalize_rpc_transaction(rpc_result(loadedAddresses={"writable": ["W1"], "readonly": ["R1"]}))
    assert view.signature == "5sigFromRpc"
    assert view.slot == 300
    assert view.block_time == 1_700_000_000
    assert view.account_keys == ("Key1111", "Key2222", SYSTEM_PROGRAM)
    assert view.loaded_addresses == ("W1", "R1")
    assert view.instructions[0].data[:4] == bytes([2, 0, 0, 0])


def test_normalize_rpc_transaction_signature_override() -> None:
    view = normalize_rpc_transaction(rpc_result(), signature="explicit")
    assert view.signature == "explicit"
    assert view.loaded_addresses is None
    assert view.has_lookups is True


# ── Hyperliquid ───────────────────────────────────────────────────────────────


def test_normalize_trade_buyer_from_users() -> None:
    tick = normalize_trade(
        {"coin": "BTC", "side": "B", "px": "65000.5", "sz": "2", "time": 1_700_000_000_000,
         "hash": "0xabc", "tid": 42, "users": ["0xbuyer", "0xseller"]}
    )
    assert tick.user == "0xbuyer"
    assert tick.price == Decimal("65000.5")
    assert tick.size == Decimal("2")
    assert tick.trade_id == 42
    assert tick.tx_hash == "0xabc"


def test_normalize_trade_seller_from_users() -> None:
    tick = normalize_trade({"coin": "ETH", "side": "A", "px": "3000", "sz": "1", "users": ["0xbuyer", "0xseller"]})
    assert tick.user == "0xseller"


def test_normalize_trade_unknown_user() -> None:
    tick = normalize_trade({"coin": "ETH", "side": "A", "px": "3000", "sz": "1"})
    assert tick.user == "Unknown"
    assert tick.time_ms is None


def test_normalize_trade_missing_price() -> None:
    with pytest.raises(NormalizationError):
        normalize_trade({"coin": "ETH", "side": "A", "sz": "1"})


def test_normalize_book_levels_both_shapes() -> None:
    levels = normalize_book_levels(
        [
            [["100", "5"], {"px": "99", "sz": "10", "n": 3}],
            [{"px": "101", "sz": "1", "n": 1}, ["bad"], None],
        ]
    )
    assert [(lv.side, lv.price, lv.size) for lv in levels] == [
        ("BID", Decimal("100"), Decimal("5")),
        ("BID", Decimal("99"), Decimal("10")),
        ("ASK", Decimal("101"), Decimal("1")),
    ]


def test_normalize_book_levels_not_a_list() -> None:
    with pytest.raises(NormalizationError):
        normalize_book_levels({"bids": []})


# ── malformed wire fields ─────────────────────────────────────────────────────


@pytest.mark.parametrize("value", ["abc", "n/a", None, [1], 1.5, True])
def test_as_int_rejects_non_integers(value) -> None:
    with pytest.raises(NormalizationError):
        as_int(value, "slot")


def test_as_int_accepts_numeric_strings() -> None:
    assert as_int("250000000", "slot") == 250_000_000
    assert as_int(7.0, "slot") == 7


def test_normalize_geyser_non_numeric_slot(frames) -> None:
    msg = frames.mint()
    msg["transaction"]["slot"] = "abc"
    with pytest.raises(NormalizationError, match="slot"):
        normalize_geyser_update(msg)


@pytest.mark.parametrize(
    "field, value",
    [
        ("accountKeys", 5),
        ("instructions", 5),
        ("instructions", [{"programIdIndex": 0, "accounts": 5}]),
    ],
)
def test_normalize_geyser_non_list_fields(frames, field: str, value) -> None:
    msg = frames.mint()
    msg["transaction"]["transaction"]["transaction"]["message"][field] = value
    with pytest.raises(NormalizationError):
        normalize_geyser_update(msg)


def test_normalize_geyser_non_object_meta(frames) -> None:
    msg = frames.mint()
    msg["transaction"]["transaction"]["meta"] = ["err"]
    with pytest.raises(NormalizationError, match="meta"):
        normalize_geyser_update(msg)


def test_normalize_rpc_transaction_bad_block_time() -> None:
    result = rpc_result()
    result["blockTime"] = "yesterday"
    with pytest.raises(NormalizationError, match="blockTime"):
        normalize_rpc_transaction(result)


@pytest.mark.parametrize("field, value", [("time", "n/a"), ("tid", "abc"), ("px", "NaN"), ("sz", "Infinity")])
def test_normalize_trade_bad_fields(field: str, value: str) -> None:
    raw = {"coin": "BTC", "side": "B", "px": "60000", "sz": "2", "time": 1_700_000_000_000, "tid": 1}
    raw[field] = value
    with pytest.raises(NormalizationError, match=field):
        normalize_trade(raw)
