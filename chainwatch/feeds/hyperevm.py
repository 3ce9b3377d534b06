"""HyperEVM newHeads subscription (eth_subscribe)."""

from __future__ import annotations

from typing import Any

from chainwatch.feeds.base import Frame, FrameKind, decode_json
from chainwatch.models import RawRecord


class HyperEVMFeed:
    name = "hyperevm"

    def headers(self) -> dict[str, str]:
        return {}

    def subscribe_requests(self) -> list[dict[str, Any]]:
        return [{"jsonrpc": "2.0", "id": 1, "method": "eth_subscribe", "params": ["newHeads"]}]

    def keepalive_request(self) -> dict[str, Any] | None:
        return None

    def parse(self, raw: str | bytes) -> Frame:
        msg = decode_json(raw)
        if msg.get("method") == "eth_subscription":
            params = msg.get("params")
            block = params.get("result") if isinstance(params, dict) else None
            if not isinstance(block, dict):
                return Frame(FrameKind.IGNORE)
            number = block.get("number")
            try:
                sequence = int(number, 16) if isinstance(number, str) else None
            except ValueError:
                sequence = None
            return Frame(FrameKind.DATA, record=RawRecord(source=self.name, payload=block, sequence=sequence))
        if "result" in msg:
            return Frame(FrameKind.ACK, info=msg["result"])
        return Frame(FrameKind.IGNORE)
