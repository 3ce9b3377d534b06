"""Running statistics over emitted events.

Counters only grow. Whale profiles are keyed by trader address and updated
from LargeTrade events with a known user; volumes are exact Decimal sums,
and first/last seen are min/max of event timestamps, so the final state
does not depend on the order events arrive in.

snapshot() returns a frozen copy; nothing in it aliases live state.
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping

from chainwatch.models import LAMPORTS_PER_SOL, DomainEvent, LargeTrade, LargeTransfer, WhaleProfile


@dataclass(frozen=True)
class LargestTransfer:
    lamports: int
    signature: str

    @property
    def sol(self) -> Decimal:
        return Decimal(self.lamports) / LAMPORTS_PER_SOL


@dataclass(frozen=True)
class StatsSnapshot:
    taken_at: str
    uptime_seconds: float
    events: Mapping[str, int]
    messages: Mapping[str, int]
    transfer_volume_lamports: int
    largest_transfer: LargestTransfer | None
    trade_volume_usd: Decimal
    whale_count: int
    top_whales: tuple[WhaleProfile, ...]

    @property
    def total_events(self) -> int:
        return sum(self.events.values())

    def to_dict(self) -> dict[str, Any]:
        largest = None
        if self.largest_transfer is not None:
            largest = {
                "lamports": self.largest_transfer.lamports,
                "sol": self.largest_transfer.sol,
                "signature": self.largest_transfer.signature,
            }
        return {
            "taken_at": self.taken_at,
            "uptime_seconds": self.uptime_seconds,
            "events": dict(self.events),
            "total_events": self.total_events,
            "messages": dict(self.messages),
            "transfer_volume_sol": Decimal(self.transfer_volume_lamports) / LAMPORTS_PER_SOL,
            "largest_transfer": largest,
            "trade_volume_usd": self.trade_volume_usd,
            "whale_count": self.whale_count,
            "top_whales": [w.to_dict() for w in self.top_whales],
        }


def _copy_profile(profile: WhaleProfile) -> WhaleProfile:
    return replace(profile, symbols=set(profile.symbols))


def _earliest(a: str | None, b: str | None) -> str | None:
    if a is None or b is None:
        return a or b
    return min(a, b)


def _latest(a: str | None, b: str | None) -> str | None:
    if a is None or b is None:
        return a or b
    return max(a, b)


class StatsAggregator:
    """
    Aggregate counters and whale profiles for one running process.

    Args:
        clock: Monotonic clock used for uptime.
        top_n: Leaderboard size included in snapshots.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, top_n: int = 10) -> None:
        self._clock = clock
        self._started = clock()
        self.top_n = top_n
        self._events: Counter[str] = Counter()
        self._messages: Counter[str] = Counter()
        self._transfer_volume = 0
        self._largest: LargestTransfer | None = None
        self._trade_volume = Decimal(0)
        self._whales: dict[str, WhaleProfile] = {}

    def record(self, event: DomainEvent) -> None:
        self._events[event.kind] += 1

        if isinstance(event, LargeTransfer):
            self._transfer_volume += event.lamports
            if self._largest is None or event.lamports > self._largest.lamports:
                self._largest = LargestTransfer(event.lamports, event.signature)

        elif isinstance(event, LargeTrade):
            self._trade_volume += event.value
            if event.user and event.user != "Unknown":
                self._track_whale(event)

    def record_message(self, source: str) -> None:
        self._messages[source] += 1

    def _track_whale(self, trade: LargeTrade) -> None:
        profile = self._whales.get(trade.user)
        if profile is None:
            profile = WhaleProfile(address=trade.user)
            self._whales[trade.user] = profile
        profile.total_volume += trade.value
        profile.trade_count += 1
        profile.first_seen = _earliest(profile.first_seen, trade.timestamp)
        profile.last_seen = _latest(profile.last_seen, trade.timestamp)
        profile.symbols.add(trade.coin)

    def seed(self, profiles: Iterable[WhaleProfile]) -> None:
        """Merge persisted profiles in, e.g. at startup."""
        for incoming in profiles:
            current = self._whales.get(incoming.address)
            if current is None:
                self._whales[incoming.address] = _copy_profile(incoming)
                continue
            current.total_volume += incoming.total_volume
            current.trade_count += incoming.trade_count
            current.first_seen = _earliest(current.first_seen, incoming.first_seen)
            current.last_seen = _latest(current.last_seen, incoming.last_seen)
            current.symbols |= incoming.symbols

    def whale(self, address: str) -> WhaleProfile | None:
        profile = self._whales.get(address)
        return _copy_profile(profile) if profile is not None else None

    def profiles(self) -> list[WhaleProfile]:
        return [_copy_profile(p) for p in self._whales.values()]

    def top_whales(self, n: int | None = None) -> list[WhaleProfile]:
        """Largest traders by volume; ties broken by address."""
        ranked = sorted(self._whales.values(), key=lambda p: (-p.total_volume, p.address))
        return [_copy_profile(p) for p in ranked[: n if n is not None else self.top_n]]

    def snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            taken_at=datetime.now(tz=timezone.utc).isoformat(),
            uptime_seconds=self._clock() - self._started,
            events=MappingProxyType(dict(self._events)),
            messages=MappingProxyType(dict(self._messages)),
            transfer_volume_lamports=self._transfer_volume,
            largest_transfer=self._largest,
            trade_volume_usd=self._trade_volume,
            whale_count=len(self._whales),
            top_whales=tuple(self.top_whales()),
        )
