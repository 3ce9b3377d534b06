"""Tests for chainwatch/subscription.py — connection lifecycle and reconnects."""

from __future__ import annotations

import asyncio

import pytest

from chainwatch.exceptions import DecodeError, ReconnectExhaustedError
from chainwatch.feeds.geyser import GeyserFeed
from chainwatch.models import ConnectionPhase, RawRecord
from chainwatch.subscription import ReconnectPolicy, SubscriptionManager

FAST = ReconnectPolicy(base_seconds=0.001, cap_seconds=0.002, max_attempts=3)


def make_manager(connector, on_record=None, policy=FAST) -> SubscriptionManager:
    async def _noop(record: RawRecord) -> None:
        return None

    return SubscriptionManager(
        "mints",
        "wss://geyser.example.com",
        GeyserFeed("mints", ["Prog111"], token="tok"),
        on_record or _noop,
        policy=policy,
        keepalive_seconds=0,
        connect=connector,
    )


# ── Backoff ───────────────────────────────────────────────────────────────────


def test_backoff_sequence_doubles_then_caps() -> None:
    policy = ReconnectPolicy(base_seconds=1.0, cap_seconds=30.0, max_attempts=10)
    assert [policy.backoff_delay(n) for n in range(7)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


# ── Lifecycle ─────────────────────────────────────────────────────────────────


async def test_subscribe_request_sent_with_token_header(fake_ws, frames) -> None:
    received: list[RawRecord] = []
    conn = fake_ws.Connection([frames.mint(slot=11)], hold_open=True)
    connector = fake_ws.Connector([conn])
    manager = make_manager(connector)

    async def on_record(record: RawRecord) -> None:
        received.append(record)
        await manager.stop()

    manager._on_record = on_record
    await asyncio.wait_for(manager.run(), timeout=2)

    assert connector.calls == [("wss://geyser.example.com", {"x-token": "tok"})]
    assert "transactions" in conn.sent[0]
    assert [r.sequence for r in received] == [11]
    assert manager.state.phase is ConnectionPhase.CLOSING


async def test_ping_answered_before_next_record(fake_ws, frames) -> None:
    conn = fake_ws.Connection([{"ping": {}}, frames.mint()], hold_open=True)
    manager = make_manager(fake_ws.Connector([conn]))
    sent_before_record: list[int] = []

    async def on_record(record: RawRecord) -> None:
        sent_before_record.append(len(conn.sent))
        await manager.stop()

    manager._on_record = on_record
    await asyncio.wait_for(manager.run(), timeout=2)

    assert conn.sent[1] == {"ping": {"id": 1}}
    assert sent_before_record == [2]


async def test_ping_reply_carries_provider_id(fake_ws, frames) -> None:
    conn = fake_ws.Connection([{"ping": {"id": 4242}}, frames.mint()], hold_open=True)
    manager = make_manager(fake_ws.Connector([conn]))

    async def on_record(record: RawRecord) -> None:
        await manager.stop()

    manager._on_record = on_record
    await asyncio.wait_for(manager.run(), timeout=2)

    assert conn.sent[1] == {"ping": {"id": 4242}}


async def test_pong_does_not_trigger_reply(fake_ws) -> None:
    conn = fake_ws.Connection([{"pong": {"id": 1}}], hold_open=True)
    manager = make_manager(fake_ws.Connector([conn]))
    task = asyncio.create_task(manager.run())
    await asyncio.sleep(0.05)
    await manager.stop()
    await asyncio.wait_for(task, timeout=2)
    assert len(conn.sent) == 1
    assert manager.state.last_activity is not None


async def test_records_delivered_in_order(fake_ws, frames) -> None:
    conn = fake_ws.Connection([frames.mint(slot=s) for s in (3, 1, 2)], hold_open=True)
    manager = make_manager(fake_ws.Connector([conn]))
    seen: list[int] = []

    async def on_record(record: RawRecord) -> None:
        await asyncio.sleep(0)
        seen.append(record.sequence)
        if len(seen) == 3:
            await manager.stop()

    manager._on_record = on_record
    await asyncio.wait_for(manager.run(), timeout=2)
    assert seen == [3, 1, 2]


async def test_handler_error_is_contained(fake_ws, frames) -> None:
    conn = fake_ws.Connection([frames.mint(slot=1), frames.mint(slot=2)], hold_open=True)
    manager = make_manager(fake_ws.Connector([conn]))
    seen: list[int] = []

    async def on_record(record: RawRecord) -> None:
        if record.sequence == 1:
            raise DecodeError("bad payload")
        seen.append(record.sequence)
        await manager.stop()

    manager._on_record = on_record
    await asyncio.wait_for(manager.run(), timeout=2)
    assert seen == [2]


async def test_unparseable_frame_skipped(fake_ws, frames) -> None:
    conn = fake_ws.Connection(["{garbage", frames.mint(slot=5)], hold_open=True)
    manager = make_manager(fake_ws.Connector([conn]))
    seen: list[int] = []

    async def on_record(record: RawRecord) -> None:
        seen.append(record.sequence)
        await manager.stop()

    manager._on_record = on_record
    await asyncio.wait_for(manager.run(), timeout=2)
    assert seen == [5]


# ── Reconnect ─────────────────────────────────────────────────────────────────


async def test_reconnects_and_resubscribes_after_drop(fake_ws, frames) -> None:
    first = fake_ws.Connection([], fail_with=OSError("reset by peer"))
    second = fake_ws.Connection([frames.mint(slot=9)], hold_open=True)
    connector = fake_ws.Connector([first, second])
    manager = make_manager(connector)

    async def on_record(record: RawRecord) -> None:
        await manager.stop()

    manager._on_record = on_record
    await asyncio.wait_for(manager.run(), timeout=2)

    assert len(connector.calls) == 2
    assert "transactions" in first.sent[0]
    assert "transactions" in second.sent[0]
    assert manager.state.reconnect_attempts == 0


async def test_exhaustion_raises_after_max_attempts(fake_ws) -> None:
    connector = fake_ws.Connector([])
    manager = make_manager(connector)
    with pytest.raises(ReconnectExhaustedError) as exc_info:
        await asyncio.wait_for(manager.run(), timeout=2)
    # initial attempt + max_attempts retries
    assert len(connector.calls) == 4
    assert exc_info.value.details["attempts"] == 3
    assert manager.state.phase is ConnectionPhase.DISCONNECTED


async def test_attempt_counter_resets_on_subscribe(fake_ws) -> None:
    connector = fake_ws.Connector(
        [OSError("refused"), fake_ws.Connection([]), OSError("refused"), OSError("refused")]
    )
    manager = make_manager(connector, policy=ReconnectPolicy(0.001, 0.002, max_attempts=2))
    with pytest.raises(ReconnectExhaustedError):
        await asyncio.wait_for(manager.run(), timeout=2)
    # without the reset the third call would already have exhausted the budget
    assert len(connector.calls) == 4


async def test_zero_attempts_fails_on_first_drop(fake_ws) -> None:
    connector = fake_ws.Connector([])
    manager = make_manager(connector, policy=ReconnectPolicy(0.001, 0.002, max_attempts=0))
    with pytest.raises(ReconnectExhaustedError):
        await asyncio.wait_for(manager.run(), timeout=2)
    assert len(connector.calls) == 1


async def test_stop_cancels_pending_reconnect_wait(fake_ws) -> None:
    connector = fake_ws.Connector([])
    manager = make_manager(connector, policy=ReconnectPolicy(60.0, 60.0, max_attempts=5))
    task = asyncio.create_task(manager.run())
    await asyncio.sleep(0.05)
    assert manager.state.reconnect_attempts == 1
    await manager.stop()
    await asyncio.wait_for(task, timeout=1)
    assert len(connector.calls) == 1
    assert manager.state.phase is ConnectionPhase.CLOSING


async def test_keepalive_sends_client_ping(fake_ws) -> None:
    conn = fake_ws.Connection([], hold_open=True)
    manager = make_manager(fake_ws.Connector([conn]))
    manager.keepalive_seconds = 0.01
    task = asyncio.create_task(manager.run())
    await asyncio.sleep(0.05)
    await manager.stop()
    await asyncio.wait_for(task, timeout=1)
    assert {"ping": {"id": 1}} in conn.sent[1:]
