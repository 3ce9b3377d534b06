"""Hyperliquid public websocket: trades and l2Book per tracked coin."""

from __future__ import annotations

from typing import Any

from loguru import logger

from chainwatch.feeds.base import Frame, FrameKind, decode_json
from chainwatch.models import RawRecord

DATA_CHANNELS = {"trades", "l2Book"}


class HyperliquidFeed:
    name = "hyperliquid"

    def __init__(self, symbols: list[str]) -> None:
        self.symbols = list(symbols)

    def headers(self) -> dict[str, str]:
        return {}

    def subscribe_requests(self) -> list[dict[str, Any]]:
        requests = []
        for coin in self.symbols:
            for channel in ("trades", "l2Book"):
                requests.append(
                    {"method": "subscribe", "subscription": {"type": channel, "coin": coin}}
                )
        return requests

    def keepalive_request(self) -> dict[str, Any] | None:
        # server drops sockets that stay silent for 60s
        return {"method": "ping"}

    def parse(self, raw: str | bytes) -> Frame:
        msg = decode_json(raw)
        channel = msg.get("channel")
        if channel in DATA_CHANNELS and msg.get("data") is not None:
            return Frame(FrameKind.DATA, record=RawRecord(source=self.name, payload=msg))
        if channel == "subscriptionResponse":
            return Frame(FrameKind.ACK, info=msg.get("data"))
        if channel == "error":
            logger.warning("hyperliquid error frame: {}", msg.get("data"))
        return Frame(FrameKind.IGNORE, info=channel)
