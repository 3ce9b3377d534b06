"""
Solana JSON-RPC logsSubscribe feed.

Only carries (signature, err, logs) per transaction; the full transaction
is fetched later over HTTP once a log line looks like a migration.
"""

from __future__ import annotations

from typing import Any

from chainwatch.exceptions import NormalizationError, StreamConnectionError
from chainwatch.feeds.base import Frame, FrameKind, decode_json
from chainwatch.models import RawRecord
from chainwatch.normalize import as_optional_int


class LogsFeed:
    """Log notifications for transactions that mention any of `mentions`."""

    name = "logs"

    def __init__(self, mentions: list[str], commitment: str = "confirmed") -> None:
        self.mentions = list(mentions)
        self.commitment = commitment

    def headers(self) -> dict[str, str]:
        return {}

    def subscribe_requests(self) -> list[dict[str, Any]]:
        # logsSubscribe accepts a single address per "mentions" filter
        return [
            {
                "jsonrpc": "2.0",
                "id": i,
                "method": "logsSubscribe",
                "params": [{"mentions": [address]}, {"commitment": self.commitment}],
            }
            for i, address in enumerate(self.mentions, start=1)
        ]

    def keepalive_request(self) -> dict[str, Any] | None:
        return None

    def parse(self, raw: str | bytes) -> Frame:
        msg = decode_json(raw)
        if "error" in msg:
            raise StreamConnectionError(
                f"logsSubscribe rejected: {msg['error']}", details={"error": msg["error"]}
            )
        if msg.get("method") == "logsNotification":
            params = msg.get("params")
            result = params.get("result") if isinstance(params, dict) else None
            if not isinstance(result, dict) or not isinstance(result.get("value"), dict):
                raise NormalizationError("logsNotification without a result value")
            value = result["value"]
            context = result.get("context")
            slot = context.get("slot") if isinstance(context, dict) else None
            return Frame(
                FrameKind.DATA,
                record=RawRecord(
                    source=self.name,
                    payload=value,
                    sequence=as_optional_int(slot, "slot"),
                ),
            )
        if "result" in msg:
            return Frame(FrameKind.ACK, info=msg["result"])
        return Frame(FrameKind.IGNORE)
