"""
Streaming subscription lifecycle: connect → subscribe → dispatch → reconnect.

One SubscriptionManager owns one websocket. It sends the feed's subscribe
requests on every (re)connect, answers provider pings as soon as they are
read, hands data frames to the record handler one at a time, and on any
transport failure waits min(base * 2^attempt, cap) before trying again.
The attempt counter resets once a subscription is re-established; when it
would exceed max_attempts, ReconnectExhaustedError is raised to the caller.

Usage:
    manager = SubscriptionManager("mints", url, feed, on_record=handle)
    await manager.run()          # returns after stop(), raises on exhaustion
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from chainwatch.exceptions import (
    ChainwatchError,
    NormalizationError,
    ReconnectExhaustedError,
    StreamConnectionError,
)
from chainwatch.feeds.base import Feed, FrameKind
from chainwatch.models import ConnectionPhase, ConnectionState, RawRecord

MAX_FRAME_BYTES = 16 * 1024 * 1024

RecordHandler = Callable[[RawRecord], Awaitable[None]]
ConnectFactory = Callable[[str, dict[str, str]], Any]

_TRANSPORT_ERRORS = (ConnectionClosed, WebSocketException, OSError, TimeoutError, StreamConnectionError)


@dataclass(frozen=True)
class ReconnectPolicy:
    base_seconds: float = 1.0
    cap_seconds: float = 30.0
    max_attempts: int = 10

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt number `attempt` (0-based)."""
        return min(self.base_seconds * (2 ** attempt), self.cap_seconds)


def websocket_connect(url: str, headers: dict[str, str]) -> Any:
    """Default connect factory: an `async with`-able websockets client connection."""
    return connect(
        url,
        additional_headers=headers or None,
        open_timeout=30,
        ping_interval=20,
        ping_timeout=20,
        close_timeout=10,
        max_size=MAX_FRAME_BYTES,
    )


class SubscriptionManager:
    """
    Keep one feed subscribed for as long as the process wants it.

    Args:
        name: Label used in logs.
        url: Websocket endpoint.
        feed: Feed that builds requests and parses frames.
        on_record: Awaited once per data frame, in arrival order. A
            ChainwatchError it raises is logged and the stream continues.
        policy: Reconnect backoff and attempt limit.
        keepalive_seconds: Client ping cadence when the feed defines one (0 disables).
        connect: Factory (url, headers) → async context manager yielding a connection.
    """

    def __init__(
        self,
        name: str,
        url: str,
        feed: Feed,
        on_record: RecordHandler,
        policy: ReconnectPolicy | None = None,
        keepalive_seconds: float = 30.0,
        connect: ConnectFactory = websocket_connect,
    ) -> None:
        self.name = name
        self.url = url
        self.feed = feed
        self.policy = policy or ReconnectPolicy()
        self.keepalive_seconds = keepalive_seconds
        self.state = ConnectionState()
        self._on_record = on_record
        self._connect = connect
        self._stop = asyncio.Event()
        self._ws: Any = None

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def run(self) -> None:
        """
        Run until stop() is called.

        Raises:
            ReconnectExhaustedError: the connection could not be re-established
                within policy.max_attempts consecutive attempts.
        """
        try:
            while not self._stop.is_set():
                self.state.phase = ConnectionPhase.CONNECTING
                try:
                    async with self._connect(self.url, self.feed.headers()) as ws:
                        self._ws = ws
                        await self._subscribe(ws)
                        await self._consume(ws)
                    if not self._stop.is_set():
                        logger.warning("{} stream closed by provider", self.name)
                except _TRANSPORT_ERRORS as e:
                    if self._stop.is_set():
                        break
                    logger.warning("{} connection error: {}", self.name, e)
                finally:
                    self._ws = None

                if self._stop.is_set():
                    break
                self.state.phase = ConnectionPhase.DISCONNECTED
                await self._wait_before_reconnect()
        finally:
            self.state.phase = (
                ConnectionPhase.CLOSING if self._stop.is_set() else ConnectionPhase.DISCONNECTED
            )
        logger.info("{} stopped", self.name)

    async def stop(self) -> None:
        """Stop reconnecting and close the socket. Safe to call more than once."""
        self.state.phase = ConnectionPhase.CLOSING
        self._stop.set()
        ws = self._ws
        if ws is not None:
            with contextlib.suppress(*_TRANSPORT_ERRORS):
                await ws.close()

    # ── Internals ─────────────────────────────────────────────────────────

    async def _subscribe(self, ws: Any) -> None:
        for request in self.feed.subscribe_requests():
            await ws.send(json.dumps(request))
        self.state.phase = ConnectionPhase.SUBSCRIBED
        if self.state.reconnect_attempts:
            logger.info(
                "{} resubscribed after {} attempt(s)", self.name, self.state.reconnect_attempts
            )
        else:
            logger.info("{} subscribed", self.name)
        self.state.reconnect_attempts = 0

    async def _consume(self, ws: Any) -> None:
        keepalive = None
        request = self.feed.keepalive_request()
        if request is not None and self.keepalive_seconds > 0:
            keepalive = asyncio.create_task(self._keepalive(ws, request))
        try:
            async for raw in ws:
                self.state.last_activity = time.monotonic()
                try:
                    frame = self.feed.parse(raw)
                except NormalizationError as e:
                    logger.warning("{} unparseable frame skipped: {}", self.name, e.message)
                    continue

                if frame.kind is FrameKind.PING:
                    await ws.send(json.dumps(frame.reply))
                elif frame.kind is FrameKind.DATA and frame.record is not None:
                    await self._deliver(frame.record)
                elif frame.kind is FrameKind.ACK:
                    logger.debug("{} subscription ack: {}", self.name, frame.info)
        finally:
            if keepalive is not None:
                keepalive.cancel()
                with contextlib.suppress(asyncio.CancelledError, *_TRANSPORT_ERRORS):
                    await keepalive

    async def _deliver(self, record: RawRecord) -> None:
        try:
            await self._on_record(record)
        except ChainwatchError as e:
            logger.warning(
                "{} record dropped seq={} error={}: {}",
                self.name, record.sequence, e.error_code, e.message,
            )

    async def _keepalive(self, ws: Any, request: dict[str, Any]) -> None:
        payload = json.dumps(request)
        while True:
            await asyncio.sleep(self.keepalive_seconds)
            await ws.send(payload)

    async def _wait_before_reconnect(self) -> None:
        attempt = self.state.reconnect_attempts
        if attempt >= self.policy.max_attempts:
            raise ReconnectExhaustedError(
                f"{self.name}: gave up after {attempt} reconnect attempt(s)",
                details={"feed": self.name, "attempts": attempt},
            )
        delay = self.policy.backoff_delay(attempt)
        self.state.reconnect_attempts = attempt + 1
        logger.warning(
            "{} reconnecting in {:.1f}s (attempt {}/{})",
            self.name, delay, attempt + 1, self.policy.max_attempts,
        )
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
