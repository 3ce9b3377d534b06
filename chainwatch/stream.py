"""Streaming engine for `chainwatch watch`.

Runs one SubscriptionManager per data source and turns every inbound
record into domain events. Each event is written to stdout as one JSONL
line, persisted, counted and handed to the notifier.

Event types emitted on stdout:
  stream_start — watchers started
  event        — one domain event (see models.py for kinds)
  stats        — periodic and final stats snapshot
  stream_end   — graceful shutdown finished

stdout is flushed after each write (critical for pipe consumers).
Logs go to stderr via loguru.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import json
import signal
import sys
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from chainwatch.alert import Notifier, build_notifier
from chainwatch.classifier import (
    PUMPFUN_PROGRAM,
    SYSTEM_PROGRAM,
    MarketClassifier,
    TransactionClassifier,
    extract_migration,
    is_migration_log,
    sol_to_lamports,
)
from chainwatch.config import ChainwatchConfig
from chainwatch.db import Database
from chainwatch.exceptions import ChainwatchError, DatabaseError, NormalizationError
from chainwatch.feeds import feed_url, get_feed
from chainwatch.models import DomainEvent, RawRecord
from chainwatch.normalize import normalize_geyser_update, normalize_rpc_transaction
from chainwatch.output import DecimalEncoder, render_stats
from chainwatch.rpc import SolanaRPCClient
from chainwatch.stats import StatsAggregator
from chainwatch.subscription import ConnectFactory, ReconnectPolicy, SubscriptionManager, websocket_connect

SHUTDOWN_TIMEOUT_SECONDS = 10.0


def emit_event(event: dict[str, Any]) -> None:
    """
    Write a single JSONL event to stdout and flush.

    Never use print() — buffered output breaks pipe consumers.
    """
    sys.stdout.write(json.dumps(event, cls=DecimalEncoder) + "\n")
    sys.stdout.flush()


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


# ── Runtime context ───────────────────────────────────────────────────────────


class WatchContext:
    """Everything a running watch owns: config, stats, notifier, store, managers."""

    def __init__(
        self,
        config: ChainwatchConfig,
        stats: StatsAggregator,
        notifier: Notifier,
        db: Database | None = None,
        emit: Callable[[dict[str, Any]], None] = emit_event,
    ) -> None:
        self.config = config
        self.stats = stats
        self.notifier = notifier
        self.db = db
        self.emit = emit
        self.managers: list[SubscriptionManager] = []
        self.closers: list[Callable[[], Awaitable[None]]] = []
        self.stop_event = asyncio.Event()

    def request_stop(self) -> None:
        if not self.stop_event.is_set():
            logger.info("shutdown requested")
        self.stop_event.set()

    async def dispatch(self, event: DomainEvent) -> None:
        """Count, emit, persist and notify one event."""
        self.stats.record(event)
        self.emit({"type": "event", "timestamp": _now_iso(), **event.to_dict()})
        if self.db is not None:
            try:
                await self.db.save_event(event)
            except DatabaseError as e:
                logger.error("event not persisted kind={} ref={}: {}", event.kind, event.signature_or_id, e.message)
        self.notifier.notify(event)

    async def report_stats(self, final: bool = False) -> dict[str, Any]:
        """Log and emit a stats snapshot; persist whale profiles."""
        snapshot = self.stats.snapshot().to_dict()
        logger.info("{}stats {}", "final " if final else "", render_stats(snapshot))
        self.emit({"type": "stats", "final": final, **snapshot})
        if self.db is not None:
            try:
                await self.db.save_whale_profiles(self.stats.profiles())
            except DatabaseError as e:
                logger.error("whale profiles not persisted: {}", e.message)
        return snapshot


# ── Record handlers ───────────────────────────────────────────────────────────


class TransactionWatcher:
    """Geyser transaction updates → TransactionClassifier → events."""

    def __init__(self, ctx: WatchContext, classifier: TransactionClassifier, encoding: str = "base64") -> None:
        self.ctx = ctx
        self.classifier = classifier
        self.encoding = encoding

    async def __call__(self, record: RawRecord) -> None:
        self.ctx.stats.record_message(record.source)
        view = normalize_geyser_update(record.payload, self.encoding)
        for event in self.classifier.classify(view):
            await self.ctx.dispatch(event)


class MigrationWatcher:
    """
    Log notifications → deferred getTransaction → Migration events.

    The stream handler only schedules the fetch; it never waits for it.
    Each signature is fetched at most once, remembered in a bounded window.
    """

    def __init__(
        self,
        ctx: WatchContext,
        rpc: SolanaRPCClient,
        delay: float = 1.0,
        max_seen: int = 10_000,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.ctx = ctx
        self.rpc = rpc
        self.delay = delay
        self.max_seen = max_seen
        self._sleep = sleep
        self._seen: set[str] = set()
        self._order: deque[str] = deque()
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def seen(self, signature: str) -> bool:
        return signature in self._seen

    def _remember(self, signature: str) -> bool:
        if signature in self._seen:
            return False
        self._seen.add(signature)
        self._order.append(signature)
        while len(self._order) > self.max_seen:
            self._seen.discard(self._order.popleft())
        return True

    async def __call__(self, record: RawRecord) -> None:
        self.ctx.stats.record_message(record.source)
        value = record.payload
        if not isinstance(value, dict):
            raise NormalizationError("Log notification value is not an object")
        if value.get("err") is not None:
            return
        signature = value.get("signature")
        logs = value.get("logs") or []
        if not isinstance(signature, str) or not isinstance(logs, list):
            raise NormalizationError("Log notification needs a string signature and a list of logs")
        if not signature or not is_migration_log(logs):
            return
        if not self._remember(signature):
            logger.debug("migration already scheduled sig={}", signature)
            return

        logger.info("migration detected sig={} slot={}, fetching", signature, record.sequence)
        task = asyncio.create_task(self._fetch(signature, record.sequence))
        self._tasks.add(task)
        task.add_done_callback(functools.partial(self._fetch_done, signature, record.sequence))

    async def _fetch(self, signature: str, slot: int | None) -> None:
        await self._sleep(self.delay)
        try:
            result = await self.rpc.get_transaction(signature)
            if result is None:
                logger.warning("migration tx not found sig={} slot={}", signature, slot)
                return
            migration = extract_migration(normalize_rpc_transaction(result, signature))
        except ChainwatchError as e:
            logger.warning(
                "migration fetch failed sig={} slot={} error={}: {}",
                signature, slot, e.error_code, e.message,
            )
            return
        if migration is None:
            logger.info("no pool found in migration tx sig={}", signature)
            return
        await self.ctx.dispatch(migration)

    def _fetch_done(self, signature: str, slot: int | None, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(
                "migration fetch crashed sig={} slot={}: {!r}", signature, slot, exc
            )

    async def aclose(self) -> None:
        """Cancel fetches still in flight."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class MarketWatcher:
    """Hyperliquid trades/l2Book frames → LargeTrade / OrderWall events."""

    def __init__(self, ctx: WatchContext, classifier: MarketClassifier) -> None:
        self.ctx = ctx
        self.classifier = classifier

    async def __call__(self, record: RawRecord) -> None:
        self.ctx.stats.record_message(record.source)
        channel = record.payload.get("channel")
        data = record.payload.get("data")

        if channel == "trades":
            for raw in data if isinstance(data, list) else []:
                try:
                    trade = self.classifier.classify_trade(raw)
                except NormalizationError as e:
                    logger.warning("trade skipped error={}: {}", e.error_code, e.message)
                    continue
                if trade is not None:
                    await self.ctx.dispatch(trade)

        elif channel == "l2Book" and isinstance(data, dict):
            wall = self.classifier.classify_book(data)
            if wall is not None:
                await self.ctx.dispatch(wall)


class BlockWatcher:
    """HyperEVM newHeads: counted as liveness only."""

    def __init__(self, ctx: WatchContext) -> None:
        self.ctx = ctx
        self.last_block: int | None = None

    async def __call__(self, record: RawRecord) -> None:
        self.ctx.stats.record_message(record.source)
        if record.sequence is not None:
            self.last_block = record.sequence
            logger.debug("hyperevm block {}", record.sequence)


# ── Wiring ────────────────────────────────────────────────────────────────────


def build_context(
    config: ChainwatchConfig,
    db: Database | None = None,
    batch: bool | None = None,
    emit: Callable[[dict[str, Any]], None] = emit_event,
) -> WatchContext:
    return WatchContext(
        config=config,
        stats=StatsAggregator(top_n=config.stats.top_whales),
        notifier=build_notifier(config, batch=batch),
        db=db,
        emit=emit,
    )


def build_managers(
    watchers: list[str],
    ctx: WatchContext,
    connect: ConnectFactory = websocket_connect,
) -> list[SubscriptionManager]:
    """One SubscriptionManager per data source behind the selected watchers."""
    config = ctx.config
    rc = config.reconnect
    policy = ReconnectPolicy(rc.base_seconds, rc.cap_seconds, rc.max_attempts)
    handlers: list[tuple[str, Callable[[RawRecord], Awaitable[None]]]] = []

    if "mints" in watchers:
        handlers.append(
            ("mints", TransactionWatcher(ctx, TransactionClassifier([PUMPFUN_PROGRAM]), config.provider.bytes_encoding))
        )
    if "transfers" in watchers:
        classifier = TransactionClassifier(
            [SYSTEM_PROGRAM], min_transfer_lamports=sol_to_lamports(config.thresholds.min_transfer_sol)
        )
        handlers.append(("transfers", TransactionWatcher(ctx, classifier, config.provider.bytes_encoding)))
    if "migrations" in watchers:
        rpc = SolanaRPCClient(
            config.provider.solana_http_url,
            timeout=config.fetch.timeout_seconds,
            commitment=config.provider.commitment,
        )
        migrations = MigrationWatcher(
            ctx, rpc, delay=config.fetch.delay_seconds, max_seen=config.fetch.seen_signatures
        )
        ctx.closers += [migrations.aclose, rpc.close]
        handlers.append(("migrations", migrations))
    if "whales" in watchers:
        market = MarketClassifier(config.thresholds.whale_usd, config.thresholds.whale_size)
        handlers.append(("whales", MarketWatcher(ctx, market)))
        if config.provider.hyperevm_ws_url:
            handlers.append(("hyperevm", BlockWatcher(ctx)))

    managers = [
        SubscriptionManager(
            name,
            feed_url(name, config),
            get_feed(name, config),
            handler,
            policy=policy,
            keepalive_seconds=rc.keepalive_seconds,
            connect=connect,
        )
        for name, handler in handlers
    ]
    ctx.managers = managers
    return managers


async def _stats_loop(ctx: WatchContext, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        await ctx.report_stats()


async def _cancel(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def run_watch(
    watchers: list[str],
    config: ChainwatchConfig,
    db: Database | None = None,
    batch: bool | None = None,
    connect: ConnectFactory = websocket_connect,
    ctx: WatchContext | None = None,
) -> dict[str, Any]:
    """
    Run the selected watchers until SIGINT/SIGTERM or a fatal stream error.

    Returns the final stats snapshot.

    Raises:
        ReconnectExhaustedError: a stream could not be re-established. The
            shutdown sequence still runs first.
    """
    ctx = ctx or build_context(config, db, batch)
    if ctx.db is not None:
        ctx.stats.seed(await ctx.db.load_whale_profiles())

    managers = build_managers(watchers, ctx, connect)
    loop = asyncio.get_running_loop()
    installed: list[int] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, ctx.request_stop)
            installed.append(sig)

    ctx.emit({
        "type": "stream_start",
        "timestamp": _now_iso(),
        "watchers": watchers,
        "feeds": [m.name for m in managers],
        "notify": [q.sink.name for q in ctx.notifier.queues],
        "batch": ctx.notifier.batching,
    })

    manager_tasks = [asyncio.create_task(m.run(), name=f"feed:{m.name}") for m in managers]
    consumer_tasks = [asyncio.create_task(q.run(), name=f"notify:{q.sink.name}") for q in ctx.notifier.queues]
    background = [asyncio.create_task(_stats_loop(ctx, config.stats.report_interval_seconds))]
    if ctx.notifier.batcher is not None:
        background.append(asyncio.create_task(ctx.notifier.batcher.run()))

    stop_waiter = asyncio.create_task(ctx.stop_event.wait())
    failure: BaseException | None = None
    try:
        done, _ = await asyncio.wait([*manager_tasks, stop_waiter], return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if task is not stop_waiter and not task.cancelled() and task.exception() is not None:
                failure = task.exception()
                logger.error("{} failed: {}", task.get_name(), failure)
    finally:
        snapshot = await _shutdown(ctx, manager_tasks, consumer_tasks, background + [stop_waiter])
        for sig in installed:
            loop.remove_signal_handler(sig)

    if failure is not None:
        raise failure
    return snapshot


async def _shutdown(
    ctx: WatchContext,
    manager_tasks: list[asyncio.Task],
    consumer_tasks: list[asyncio.Task],
    background: list[asyncio.Task],
) -> dict[str, Any]:
    """Stop feeds, drain notifications, write final stats, release resources."""
    for manager in ctx.managers:
        await manager.stop()
    _, still_running = await asyncio.wait(manager_tasks, timeout=SHUTDOWN_TIMEOUT_SECONDS) if manager_tasks else (set(), set())
    await _cancel(list(still_running))

    for close in ctx.closers:
        await close()

    await _cancel(background)

    ctx.notifier.close()
    if consumer_tasks:
        _, undelivered = await asyncio.wait(consumer_tasks, timeout=SHUTDOWN_TIMEOUT_SECONDS)
        if undelivered:
            logger.warning("shutdown: {} notification queue(s) not drained", len(undelivered))
        await _cancel(list(undelivered))
    await ctx.notifier.aclose_sinks()

    snapshot = await ctx.report_stats(final=True)
    ctx.emit({"type": "stream_end", "timestamp": _now_iso(), "total_events": snapshot["total_events"]})
    return snapshot
