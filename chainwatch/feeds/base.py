"""Feed protocol and shared frame model."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from chainwatch.exceptions import NormalizationError
from chainwatch.models import RawRecord


class FrameKind(str, Enum):
    DATA = "data"           # carries a RawRecord for the classifier
    PING = "ping"           # provider liveness probe; reply must be sent now
    ACK = "ack"             # subscription confirmation
    IGNORE = "ignore"       # pongs, heartbeats, channels we did not ask for


@dataclass
class Frame:
    """One parsed inbound websocket message."""

    kind: FrameKind
    record: RawRecord | None = None
    reply: dict[str, Any] | None = None
    info: Any = None


@runtime_checkable
class Feed(Protocol):
    """
    Protocol that every stream source implements.

    Feeds are responsible for:
    - Building the subscription request(s) sent right after connecting
    - Recognising pings, acks and data frames in inbound messages
    - Tagging data frames with a source name and sequence (slot/block)

    Feeds are NOT responsible for:
    - Connection lifecycle or reconnects (that's subscription.py)
    - Decoding transactions or thresholds (that's classifier.py)
    """

    name: str

    def headers(self) -> dict[str, str]:
        """Extra HTTP headers for the websocket handshake (credentials)."""
        ...

    def subscribe_requests(self) -> list[dict[str, Any]]:
        """Messages to send once the socket is open."""
        ...

    def keepalive_request(self) -> dict[str, Any] | None:
        """Client-initiated ping sent on a timer while subscribed, if the provider wants one."""
        ...

    def parse(self, raw: str | bytes) -> Frame:
        """
        Classify one inbound message.

        Raises:
            NormalizationError: message is not valid JSON or not an object
        """
        ...


def decode_json(raw: str | bytes) -> dict[str, Any]:
    """Decode one websocket text/binary message into a JSON object."""
    try:
        msg = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise NormalizationError(f"Invalid JSON frame: {e}") from e
    if not isinstance(msg, dict):
        raise NormalizationError("Frame is not a JSON object")
    return msg
