"""
Shared data models for chainwatch.

These dataclasses are the canonical shapes passed between modules: feeds
produce RawRecords, normalize.py builds TransactionViews, the classifier
produces DomainEvents, and stats/alert/db consume them.
Domain events are frozen; WhaleProfile is mutated only by stats.py.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Union

LAMPORTS_PER_SOL = 1_000_000_000


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def short_address(address: str, head: int = 6, tail: int = 4) -> str:
    """Return truncated address for display: 6EF8rr...F6P"""
    if not address or address == "Unknown":
        return "Unknown"
    if len(address) > head + tail + 3:
        return f"{address[:head]}...{address[-tail:]}"
    return address


# ── Stream records and transaction views ──────────────────────────────────────


@dataclass
class RawRecord:
    """One data frame as delivered by a provider. Consumed once."""

    source: str                 # "geyser" | "logs" | "hyperliquid" | "hyperevm"
    payload: Any                # decoded JSON frame
    sequence: int | None = None  # slot / block number when the frame has one
    received_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class Instruction:
    """A compiled instruction: program index, raw payload, account indices."""

    program_id_index: int
    data: bytes
    accounts: tuple[int, ...]


@dataclass(frozen=True)
class TransactionView:
    """
    Normalized, read-only view over one transaction.

    account_keys holds the static keys only; loaded_addresses holds the
    lookup-table entries (writable then readonly) when the provider resolved
    them. has_lookups marks an extended (v0) message.
    """

    signature: str
    slot: int
    success: bool
    account_keys: tuple[str, ...]
    instructions: tuple[Instruction, ...]
    block_time: int | None = None
    loaded_addresses: tuple[str, ...] | None = None
    has_lookups: bool = False


# ── Domain events ─────────────────────────────────────────────────────────────


class _Event:
    kind: ClassVar[str] = "event"

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"kind": self.kind}
        for name in self.__dataclass_fields__:  # type: ignore[attr-defined]
            value = getattr(self, name)
            if isinstance(value, tuple):
                value = [v.to_dict() if hasattr(v, "to_dict") else v for v in value]
            d[name] = value
        return d

    @property
    def notional(self) -> Decimal:
        return Decimal(0)

    @property
    def signature_or_id(self) -> str:
        return getattr(self, "signature", "") or ""


@dataclass(frozen=True)
class MintCreated(_Event):
    """A new Pump.fun token was created."""

    kind: ClassVar[str] = "mint_created"

    name: str
    symbol: str
    uri: str
    mint: str
    bonding_curve: str
    creator: str
    signature: str
    slot: int
    timestamp: str = field(default_factory=_now_iso)


@dataclass(frozen=True)
class Migration(_Event):
    """A bonding-curve token graduated to an AMM pool."""

    kind: ClassVar[str] = "migration"

    destination: str            # "raydium" | "pumpswap"
    signature: str
    slot: int
    token_address: str
    block_time: int | None = None
    pool_address: str | None = None
    lp_mint: str | None = None
    quote_mint: str | None = None
    bonding_curve: str | None = None


@dataclass(frozen=True)
class LargeTransfer(_Event):
    """A native SOL transfer at or above the configured threshold."""

    kind: ClassVar[str] = "large_transfer"

    source: str
    destination: str
    lamports: int
    signature: str
    slot: int
    timestamp: str = field(default_factory=_now_iso)

    @property
    def sol(self) -> Decimal:
        return Decimal(self.lamports) / LAMPORTS_PER_SOL

    @property
    def notional(self) -> Decimal:
        return self.sol


@dataclass(frozen=True)
class LargeTrade(_Event):
    """A perp trade at or above the USD or size threshold."""

    kind: ClassVar[str] = "large_trade"

    coin: str
    side: str                   # "B" = buy, "A" = sell
    price: Decimal
    size: Decimal
    value: Decimal
    user: str = "Unknown"
    tx_hash: str | None = None
    trade_id: int | None = None
    timestamp: str = field(default_factory=_now_iso)

    @property
    def is_buy(self) -> bool:
        return self.side == "B"

    @property
    def notional(self) -> Decimal:
        return self.value

    @property
    def signature_or_id(self) -> str:
        return self.tx_hash or (str(self.trade_id) if self.trade_id is not None else "")


@dataclass(frozen=True)
class WallLevel:
    """One resting order book level that crossed the wall threshold."""

    side: str                   # "BID" | "ASK"
    price: Decimal
    size: Decimal
    value: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "side": self.side,
            "price": self.price,
            "size": self.size,
            "value": self.value,
        }


@dataclass(frozen=True)
class OrderWall(_Event):
    """Large resting liquidity in one coin's book snapshot."""

    kind: ClassVar[str] = "order_wall"

    coin: str
    levels: tuple[WallLevel, ...]
    timestamp: str = field(default_factory=_now_iso)

    @property
    def notional(self) -> Decimal:
        return sum((lvl.value for lvl in self.levels), Decimal(0))


DomainEvent = Union[MintCreated, Migration, LargeTransfer, LargeTrade, OrderWall]

EVENT_KINDS = (
    MintCreated.kind,
    Migration.kind,
    LargeTransfer.kind,
    LargeTrade.kind,
    OrderWall.kind,
)


# ── Aggregates and runtime state ──────────────────────────────────────────────


@dataclass
class WhaleProfile:
    """Running activity for one trader address. Volume and count only grow."""

    address: str
    total_volume: Decimal = Decimal(0)
    trade_count: int = 0
    first_seen: str | None = None
    last_seen: str | None = None
    symbols: set[str] = field(default_factory=set)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "total_volume": self.total_volume,
            "trade_count": self.trade_count,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "symbols": sorted(self.symbols),
        }


class ConnectionPhase(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    CLOSING = "closing"


@dataclass
class ConnectionState:
    """Lifecycle state of one streaming connection."""

    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    reconnect_attempts: int = 0
    last_activity: float | None = None   # time.monotonic() of last inbound frame


@dataclass
class NotificationItem:
    """A rendered alert waiting for delivery."""

    text: str
    payload: dict[str, Any] | None = None   # structured event for JSON sinks
    enqueued_at: float = field(default_factory=time.monotonic)
