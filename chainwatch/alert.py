"""Alert delivery: rate-limited notification queues, batching, and sinks.

Each configured sink gets its own NotificationQueue with a single consumer
task. Producers never block: enqueue() appends and returns. The consumer
keeps min_delay seconds between the end of one send and the start of the
next. A rate-limited item goes back to the head of the queue and is retried
after the sink's retry_after; any other delivery failure drops the item.

In batch mode events are buffered by AlertBatcher and one summary message
per interval is enqueued instead of one message per event.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
from collections import deque
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any, Protocol

import httpx
from loguru import logger

from chainwatch.config import ChainwatchConfig
from chainwatch.exceptions import SinkError, SinkRateLimitError
from chainwatch.models import DomainEvent, NotificationItem
from chainwatch.output import DecimalEncoder, render_alert, render_batch

TELEGRAM_API_URL = "https://api.telegram.org"
DEFAULT_RETRY_AFTER = 5.0

WEBHOOK_SCHEMA_VERSION = "1"


class Sink(Protocol):
    name: str

    async def send(self, item: NotificationItem) -> None:
        """
        Deliver one message.

        Raises:
            SinkRateLimitError: sink asked to back off; retry later
            SinkError: delivery failed; do not retry
        """
        ...

    async def close(self) -> None: ...


# ── Sinks ─────────────────────────────────────────────────────────────────────


class TelegramSink:
    """Telegram Bot API sendMessage."""

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        parse_mode: str = "HTML",
        timeout: float = 15.0,
        base_url: str = TELEGRAM_API_URL,
    ) -> None:
        self._url = f"{base_url}/bot{bot_token}/sendMessage"
        self.chat_id = chat_id
        self.parse_mode = parse_mode
        self._client = httpx.AsyncClient(timeout=timeout)

    async def send(self, item: NotificationItem) -> None:
        payload = {
            "chat_id": self.chat_id,
            "text": item.text,
            "parse_mode": self.parse_mode,
            "disable_web_page_preview": True,
        }
        try:
            resp = await self._client.post(self._url, json=payload)
        except httpx.TimeoutException as e:
            raise SinkError(f"Telegram timeout: {e}") from e
        except httpx.HTTPError as e:
            raise SinkError(f"Cannot reach Telegram: {e}") from e

        if resp.status_code == 429:
            raise SinkRateLimitError(
                "Telegram rate limit", retry_after=_telegram_retry_after(resp)
            )
        if resp.status_code != 200:
            raise SinkError(
                f"Telegram API error: HTTP {resp.status_code}: {_telegram_description(resp)}",
                details={"status": resp.status_code},
            )

    async def close(self) -> None:
        await self._client.aclose()


def _telegram_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _telegram_retry_after(resp: httpx.Response) -> float:
    params = _telegram_body(resp).get("parameters") or {}
    try:
        return float(params.get("retry_after") or DEFAULT_RETRY_AFTER)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER


def _telegram_description(resp: httpx.Response) -> str:
    return str(_telegram_body(resp).get("description", "no description"))


class WebhookSink:
    """JSON POST to an arbitrary URL, HMAC-signed when a secret is set."""

    name = "webhook"

    def __init__(self, url: str, secret: str = "", timeout: float = 15.0) -> None:
        self.url = url
        self.secret = secret
        self._client = httpx.AsyncClient(timeout=timeout)

    async def send(self, item: NotificationItem) -> None:
        body = json.dumps(build_webhook_payload(item), cls=DecimalEncoder).encode()
        headers: dict[str, str] = {"Content-Type": "application/json"}

        # HMAC signature if secret configured
        if self.secret:
            sig = hmac.new(self.secret.encode(), body, hashlib.sha256).hexdigest()
            headers["X-Chainwatch-Signature"] = f"sha256={sig}"

        try:
            resp = await self._client.post(self.url, content=body, headers=headers)
        except httpx.TimeoutException as e:
            raise SinkError(f"Webhook timeout: {e}") from e
        except httpx.HTTPError as e:
            raise SinkError(f"Cannot reach webhook: {e}") from e

        if resp.status_code == 429:
            raise SinkRateLimitError(
                "Webhook rate limit", retry_after=_header_retry_after(resp)
            )
        if not 200 <= resp.status_code < 300:
            raise SinkError(
                f"Webhook error: HTTP {resp.status_code}", details={"status": resp.status_code}
            )

    async def close(self) -> None:
        await self._client.aclose()


def _header_retry_after(resp: httpx.Response) -> float:
    try:
        return float(resp.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
    except ValueError:
        return DEFAULT_RETRY_AFTER


def build_webhook_payload(item: NotificationItem) -> dict[str, Any]:
    return {
        "schema_version": WEBHOOK_SCHEMA_VERSION,
        "event_type": "chainwatch_alert",
        "text": item.text,
        "event": item.payload,
    }


# ── Queue ─────────────────────────────────────────────────────────────────────


class NotificationQueue:
    """
    FIFO of pending messages for one sink, drained by a single consumer.

    Args:
        sink: Delivery target.
        min_delay: Seconds between the end of one send and the start of the next.
        clock: Monotonic clock (injectable for tests).
        sleep: Async sleep (injectable for tests).
    """

    def __init__(
        self,
        sink: Sink,
        min_delay: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.sink = sink
        self.min_delay = min_delay
        self._clock = clock
        self._sleep = sleep
        self._items: deque[NotificationItem] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False
        self._last_attempt_at: float | None = None
        self.sent = 0
        self.dropped = 0
        self.rate_limited = 0

    def __len__(self) -> int:
        return len(self._items)

    def enqueue(self, item: NotificationItem | str) -> None:
        if isinstance(item, str):
            item = NotificationItem(text=item)
        self._items.append(item)
        self._wakeup.set()

    def close(self) -> None:
        """Let run() return once the queue is empty."""
        self._closed = True
        self._wakeup.set()

    async def run(self) -> None:
        """Consume until close() and the queue is drained."""
        while True:
            while not self._items:
                if self._closed:
                    return
                self._wakeup.clear()
                await self._wakeup.wait()
            await self.send_next()

    async def send_next(self) -> None:
        """Deliver the head item, honouring min_delay and rate limits."""
        if not self._items:
            return
        if self._last_attempt_at is not None:
            wait = self._last_attempt_at + self.min_delay - self._clock()
            if wait > 0:
                await self._sleep(wait)

        item = self._items.popleft()
        try:
            await self.sink.send(item)
        except SinkRateLimitError as e:
            self._last_attempt_at = self._clock()
            self._items.appendleft(item)
            self.rate_limited += 1
            logger.warning(
                "{} rate limited, retrying in {}s ({} queued)",
                self.sink.name, e.retry_after, len(self._items),
            )
            await self._sleep(e.retry_after)
            return
        except SinkError as e:
            self.dropped += 1
            logger.error("{} delivery failed, message dropped error={}: {}", self.sink.name, e.error_code, e.message)
        else:
            self.sent += 1
        self._last_attempt_at = self._clock()


# ── Batching ──────────────────────────────────────────────────────────────────


class AlertBatcher:
    """Buffer events and emit one summary message per interval."""

    def __init__(
        self,
        queues: list[NotificationQueue],
        interval: float = 600.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.queues = queues
        self.interval = interval
        self._sleep = sleep
        self._pending: list[DomainEvent] = []

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, event: DomainEvent) -> None:
        self._pending.append(event)

    def flush(self) -> NotificationItem | None:
        """Enqueue one aggregate message for everything buffered; None if empty."""
        if not self._pending:
            return None
        events, self._pending = self._pending, []
        total = sum((e.notional for e in events), Decimal(0))
        item = NotificationItem(
            text=render_batch(events),
            payload={
                "kind": "batch",
                "count": len(events),
                "total_notional": total,
                "events": [e.to_dict() for e in events],
            },
        )
        for queue in self.queues:
            queue.enqueue(item)
        logger.info("flushed batch of {} alert(s)", len(events))
        return item

    async def run(self) -> None:
        while True:
            await self._sleep(self.interval)
            self.flush()


class Notifier:
    """
    Route events to the queues, either one message each or via the batcher.

    The two modes are exclusive: with a batcher, nothing is enqueued directly.
    """

    def __init__(
        self,
        queues: list[NotificationQueue],
        batcher: AlertBatcher | None = None,
        mega_whale_usd: float | Decimal = 500_000,
    ) -> None:
        self.queues = queues
        self.batcher = batcher
        self.mega_whale_usd = Decimal(str(mega_whale_usd))

    @property
    def enabled(self) -> bool:
        return bool(self.queues)

    @property
    def batching(self) -> bool:
        return self.batcher is not None

    def notify(self, event: DomainEvent) -> None:
        if not self.queues:
            return
        if self.batcher is not None:
            self.batcher.add(event)
            return
        item = NotificationItem(
            text=render_alert(event, mega_whale_usd=self.mega_whale_usd),
            payload=event.to_dict(),
        )
        for queue in self.queues:
            queue.enqueue(item)

    def close(self) -> None:
        """Flush any batch and let every consumer drain and return."""
        if self.batcher is not None:
            self.batcher.flush()
        for queue in self.queues:
            queue.close()

    async def aclose_sinks(self) -> None:
        for queue in self.queues:
            await queue.sink.close()


def build_notifier(config: ChainwatchConfig, batch: bool | None = None) -> Notifier:
    """Create sinks, queues and (optionally) a batcher from config."""
    queues: list[NotificationQueue] = []
    tg = config.telegram
    if tg.bot_token and tg.chat_id:
        queues.append(
            NotificationQueue(
                TelegramSink(tg.bot_token, tg.chat_id, parse_mode=tg.parse_mode),
                min_delay=tg.min_delay_seconds,
            )
        )
    if config.webhook.url:
        queues.append(
            NotificationQueue(
                WebhookSink(config.webhook.url, config.webhook.secret),
                min_delay=config.webhook.min_delay_seconds,
            )
        )

    use_batch = tg.batch_alerts if batch is None else batch
    batcher = None
    if use_batch and queues:
        batcher = AlertBatcher(queues, interval=tg.batch_interval_seconds)
    return Notifier(queues, batcher, mega_whale_usd=config.thresholds.mega_whale_usd)
