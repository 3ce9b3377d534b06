"""
Geyser transaction feed (Yellowstone-style subscribe over a websocket bridge).

The subscribe request mirrors the gRPC SubscribeRequest in proto3 JSON form:
one named transaction filter with an account inclusion list. The provider
pings the client; the reply must carry a ping with the same id or the
stream is dropped. Pongs only refresh liveness.
"""

from __future__ import annotations

from typing import Any

from chainwatch.feeds.base import Frame, FrameKind, decode_json
from chainwatch.models import RawRecord
from chainwatch.normalize import as_optional_int

PING_ID = 1


class GeyserFeed:
    """
    Transaction updates for every account in `account_include`.

    Args:
        filter_name: Label echoed back by the provider in each update's "filters".
        account_include: Program or account addresses to subscribe to.
        token: Provider credential, sent as the x-token handshake header.
        commitment: "processed" | "confirmed" | "finalized".
    """

    name = "geyser"

    def __init__(
        self,
        filter_name: str,
        account_include: list[str],
        token: str = "",
        commitment: str = "confirmed",
    ) -> None:
        self.filter_name = filter_name
        self.account_include = list(account_include)
        self.token = token
        self.commitment = commitment

    def headers(self) -> dict[str, str]:
        return {"x-token": self.token} if self.token else {}

    def subscribe_requests(self) -> list[dict[str, Any]]:
        return [
            {
                "accounts": {},
                "slots": {},
                "transactions": {
                    self.filter_name: {
                        "accountInclude": self.account_include,
                        "accountExclude": [],
                        "accountRequired": [],
                    }
                },
                "transactionsStatus": {},
                "entry": {},
                "blocks": {},
                "blocksMeta": {},
                "accountsDataSlice": [],
                "commitment": self.commitment.upper(),
            }
        ]

    def keepalive_request(self) -> dict[str, Any] | None:
        return {"ping": {"id": PING_ID}}

    def parse(self, raw: str | bytes) -> Frame:
        msg = decode_json(raw)
        if "ping" in msg:
            ping = msg["ping"]
            ping_id = ping.get("id", PING_ID) if isinstance(ping, dict) else PING_ID
            return Frame(FrameKind.PING, reply={"ping": {"id": ping_id}})
        if "pong" in msg:
            return Frame(FrameKind.IGNORE, info="pong")
        update = msg.get("transaction")
        if isinstance(update, dict):
            filters = msg.get("filters")
            if filters and self.filter_name not in filters:
                return Frame(FrameKind.IGNORE, info="other filter")
            slot = update.get("slot")
            return Frame(
                FrameKind.DATA,
                record=RawRecord(
                    source=self.name,
                    payload=msg,
                    sequence=as_optional_int(slot, "slot"),
                ),
            )
        return Frame(FrameKind.IGNORE)
