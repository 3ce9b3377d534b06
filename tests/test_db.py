"""Tests for chainwatch/db.py — SQLite event store."""

from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio

from chainwatch.db import Database
from chainwatch.models import LargeTrade, LargeTransfer, MintCreated, OrderWall, WallLevel, WhaleProfile


@pytest_asyncio.fixture
async def db() -> Database:
    """Fresh in-memory database for each test."""
    database = Database(":memory:")
    await database.connect()
    yield database
    await database.close()


def make_transfer(sig: str = "sigT") -> LargeTransfer:
    return LargeTransfer(source="A", destination="B", lamports=150_000_000_000, signature=sig, slot=77)


def make_trade() -> LargeTrade:
    return LargeTrade(
        coin="ETH", side="A", price=Decimal("3000.5"), size=Decimal("40"), value=Decimal("120020"),
        user="0xwhale", tx_hash="0xhash",
    )


# ── Schema / connection ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_connect_creates_schema(db: Database) -> None:
    assert await db.list_events() == []
    assert await db.count_events() == 0


@pytest.mark.asyncio
async def test_context_manager(tmp_path) -> None:
    db_path = str(tmp_path / "nested" / "events.db")
    async with Database(db_path) as db:
        await db.save_event(make_transfer())
    async with Database(db_path) as db:
        assert await db.count_events() == 1


# ── Events ────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_save_and_list_event(db: Database) -> None:
    row_id = await db.save_event(make_transfer())
    assert row_id == 1
    (row,) = await db.list_events()
    assert row["kind"] == "large_transfer"
    assert row["ref"] == "sigT"
    assert row["slot"] == 77
    assert row["notional"] == "150"
    assert row["event"]["lamports"] == 150_000_000_000
    assert row["event"]["kind"] == "large_transfer"


@pytest.mark.asyncio
async def test_trade_ref_and_decimal_payload(db: Database) -> None:
    await db.save_event(make_trade())
    (row,) = await db.list_events()
    assert row["ref"] == "0xhash"
    assert row["slot"] is None
    assert row["event"]["price"] == 3000.5


@pytest.mark.asyncio
async def test_order_wall_levels_serialized(db: Database) -> None:
    wall = OrderWall(coin="BTC", levels=(WallLevel("BID", Decimal("60000"), Decimal("2"), Decimal("120000")),))
    await db.save_event(wall)
    (row,) = await db.list_events(kind="order_wall")
    assert row["event"]["levels"] == [{"side": "BID", "price": 60000.0, "size": 2.0, "value": 120000.0}]


@pytest.mark.asyncio
async def test_list_events_newest_first_with_limit(db: Database) -> None:
    for i in range(5):
        await db.save_event(make_transfer(sig=f"s{i}"))
    rows = await db.list_events(limit=3)
    assert [r["ref"] for r in rows] == ["s4", "s3", "s2"]


@pytest.mark.asyncio
async def test_list_events_filter_by_kind(db: Database) -> None:
    await db.save_event(make_transfer())
    await db.save_event(
        MintCreated(name="n", symbol="s", uri="u", mint="m", bonding_curve="c", creator="k", signature="sm", slot=1)
    )
    rows = await db.list_events(kind="mint_created")
    assert [r["ref"] for r in rows] == ["sm"]
    assert await db.count_events("large_transfer") == 1
    assert await db.count_events() == 2


@pytest.mark.asyncio
async def test_list_events_since_hours(db: Database) -> None:
    await db.save_event(make_transfer())
    assert len(await db.list_events(since_hours=1)) == 1


# ── Whale profiles ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_whale_profiles_round_trip_exact_decimal(db: Database) -> None:
    profile = WhaleProfile("0xA", Decimal("1234567.891"), 3, "2026-01-01", "2026-01-02", {"BTC", "ETH"})
    assert await db.save_whale_profiles([profile]) == 1
    (loaded,) = await db.load_whale_profiles()
    assert loaded == profile


@pytest.mark.asyncio
async def test_whale_profiles_upsert(db: Database) -> None:
    await db.save_whale_profiles([WhaleProfile("0xA", Decimal("10"), 1)])
    await db.save_whale_profiles([WhaleProfile("0xA", Decimal("25"), 2, symbols={"SOL"})])
    (loaded,) = await db.load_whale_profiles()
    assert loaded.total_volume == Decimal("25")
    assert loaded.trade_count == 2
    assert loaded.symbols == {"SOL"}


@pytest.mark.asyncio
async def test_save_no_profiles(db: Database) -> None:
    assert await db.save_whale_profiles([]) == 0


@pytest.mark.asyncio
async def test_top_whales_orders_by_volume(db: Database) -> None:
    await db.save_whale_profiles(
        [
            WhaleProfile("0xsmall", Decimal("9")),
            WhaleProfile("0xbig", Decimal("100")),
            WhaleProfile("0xmid", Decimal("50")),
        ]
    )
    top = await db.top_whales(limit=2)
    assert [w["address"] for w in top] == ["0xbig", "0xmid"]
    assert top[0]["total_volume"] == Decimal("100")
