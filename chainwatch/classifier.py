"""Event classification: normalized views and market prints → domain events.

TransactionClassifier walks a TransactionView instruction by instruction,
looks the program id up in a static handler registry and lets the handler
decode the payload. A failure on one matched instruction is logged and the
loop moves on to the next; it never aborts the record.

MarketClassifier applies the whale thresholds to Hyperliquid trades and
book snapshots. Migration helpers back the log-triggered deferred fetch.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from loguru import logger

from chainwatch.accounts import AccountResolver, pick
from chainwatch.decoder import DISCRIMINATOR_SIZE, matches_discriminator, read_string, read_u32, read_u64
from chainwatch.exceptions import AccountResolutionError, DecodeError, NormalizationError
from chainwatch.models import (
    LAMPORTS_PER_SOL,
    DomainEvent,
    Instruction,
    LargeTrade,
    LargeTransfer,
    Migration,
    MintCreated,
    OrderWall,
    TransactionView,
    WallLevel,
)
from chainwatch.normalize import as_optional_int, normalize_book_levels, normalize_trade

# ── Program registry ──────────────────────────────────────────────────────────

PUMPFUN_PROGRAM = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
SYSTEM_PROGRAM = "11111111111111111111111111111111"
RAYDIUM_AMM_PROGRAM = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
MIGRATION_ACCOUNT = "39azUYFWPz3VHgKCf3VChUwbpURdCHRxjWVowf5jUJjg"

CREATE_DISCRIMINATOR = bytes([24, 30, 200, 40, 5, 28, 7, 119])
SYSTEM_TRANSFER_TAG = 2

MINT_CREATE_ACCOUNTS = {"mint": 0, "bonding_curve": 2, "creator": 7}
SYSTEM_TRANSFER_ACCOUNTS = {"source": 0, "destination": 1}
RAYDIUM_INIT_ACCOUNTS = {"pool_address": 1, "lp_mint": 4, "token_address": 5, "quote_mint": 6}

MIGRATION_LOG_PHRASES = ("Instruction: Migrate", "migrate", "initialize2")

Handler = Callable[[TransactionView, Instruction, AccountResolver], "DomainEvent | None"]


def sol_to_lamports(sol: float | Decimal) -> int:
    return int(Decimal(str(sol)) * LAMPORTS_PER_SOL)


class TransactionClassifier:
    """
    Classify Solana transactions against a registry of known programs.

    Args:
        programs: Program ids to enable (default: all registered handlers).
        min_transfer_lamports: Inclusive threshold for LargeTransfer.
    """

    def __init__(
        self,
        programs: Iterable[str] | None = None,
        min_transfer_lamports: int = sol_to_lamports(100),
    ) -> None:
        registry: dict[str, Handler] = {
            PUMPFUN_PROGRAM: self._classify_pumpfun,
            SYSTEM_PROGRAM: self._classify_system,
        }
        if programs is not None:
            wanted = set(programs)
            unknown = wanted - registry.keys()
            if unknown:
                raise ValueError(f"No handler for program(s): {sorted(unknown)}")
            registry = {pid: h for pid, h in registry.items() if pid in wanted}
        self._handlers = registry
        self.min_transfer_lamports = min_transfer_lamports

    @property
    def programs(self) -> list[str]:
        return sorted(self._handlers)

    def classify(self, view: TransactionView) -> list[DomainEvent]:
        """Return every event found in the view, in instruction order."""
        if not view.success:
            logger.debug("skip failed tx sig={} slot={}", view.signature, view.slot)
            return []

        resolver = AccountResolver(view)
        events: list[DomainEvent] = []
        for index, instruction in enumerate(view.instructions):
            try:
                program_id = resolver.program_id(instruction)
            except AccountResolutionError as e:
                _log_skip(view, index, e)
                continue

            handler = self._handlers.get(program_id)
            if handler is None:
                continue

            try:
                event = handler(view, instruction, resolver)
            except (DecodeError, AccountResolutionError) as e:
                _log_skip(view, index, e)
                continue
            if event is not None:
                events.append(event)
        return events

    # ── Handlers ──────────────────────────────────────────────────────────

    def _classify_pumpfun(
        self, view: TransactionView, instruction: Instruction, resolver: AccountResolver
    ) -> MintCreated | None:
        data = instruction.data
        if not matches_discriminator(data, CREATE_DISCRIMINATOR):
            return None

        offset = DISCRIMINATOR_SIZE
        name, used = read_string(data, offset)
        offset += used
        symbol, used = read_string(data, offset)
        offset += used
        uri, _ = read_string(data, offset)

        accounts = pick(resolver.resolve(instruction), MINT_CREATE_ACCOUNTS)
        return MintCreated(
            name=name,
            symbol=symbol,
            uri=uri,
            signature=view.signature,
            slot=view.slot,
            **accounts,
        )

    def _classify_system(
        self, view: TransactionView, instruction: Instruction, resolver: AccountResolver
    ) -> LargeTransfer | None:
        data = instruction.data
        if len(data) < 12:
            return None
        tag, used = read_u32(data, 0)
        if tag != SYSTEM_TRANSFER_TAG:
            return None
        lamports, _ = read_u64(data, used)
        if lamports < self.min_transfer_lamports:
            return None

        accounts = pick(resolver.resolve(instruction), SYSTEM_TRANSFER_ACCOUNTS)
        return LargeTransfer(
            lamports=lamports,
            signature=view.signature,
            slot=view.slot,
            **accounts,
        )


def _log_skip(view: TransactionView, index: int, err: DecodeError | AccountResolutionError) -> None:
    logger.warning(
        "instruction skipped sig={} slot={} ix={} error={}: {}",
        view.signature, view.slot, index, err.error_code, err.message,
    )


# ── Migration detection ───────────────────────────────────────────────────────


def is_migration_log(logs: Iterable[str]) -> bool:
    """Best-effort: any log line containing one of the migration phrases."""
    return any(
        phrase in line
        for line in logs
        if isinstance(line, str)
        for phrase in MIGRATION_LOG_PHRASES
    )


def extract_migration(view: TransactionView) -> Migration | None:
    """
    Find the migration target in a fetched transaction.

    A Raydium AMM instruction with at least 7 accounts is a Raydium pool
    init; otherwise a Pump.fun instruction marks a PumpSwap migration, whose
    token and bonding curve sit at transaction key positions 2 and 1.
    """
    if not view.success:
        return None
    resolver = AccountResolver(view)
    for index, instruction in enumerate(view.instructions):
        try:
            program_id = resolver.program_id(instruction)
            if program_id == RAYDIUM_AMM_PROGRAM:
                if len(instruction.accounts) < 7:
                    continue
                accounts = pick(resolver.resolve(instruction), RAYDIUM_INIT_ACCOUNTS)
                return Migration(
                    destination="raydium",
                    signature=view.signature,
                    slot=view.slot,
                    block_time=view.block_time,
                    **accounts,
                )
            if program_id == PUMPFUN_PROGRAM:
                return Migration(
                    destination="pumpswap",
                    signature=view.signature,
                    slot=view.slot,
                    block_time=view.block_time,
                    token_address=resolver.key_at(2),
                    bonding_curve=resolver.key_at(1),
                )
        except AccountResolutionError as e:
            _log_skip(view, index, e)
    return None


# ── Hyperliquid ───────────────────────────────────────────────────────────────


def _ms_to_iso(ms: int | None) -> str:
    if ms is None:
        return datetime.now(tz=timezone.utc).isoformat()
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError) as e:
        raise NormalizationError(f"Timestamp out of range: {ms!r}") from e


class MarketClassifier:
    """Whale thresholds for perp trades and resting book liquidity."""

    def __init__(self, threshold_usd: float | Decimal, threshold_size: float | Decimal) -> None:
        self.threshold_usd = Decimal(str(threshold_usd))
        self.threshold_size = Decimal(str(threshold_size))

    def classify_trade(self, raw: dict[str, Any]) -> LargeTrade | None:
        tick = normalize_trade(raw)
        value = tick.price * tick.size
        if value < self.threshold_usd and tick.size < self.threshold_size:
            return None
        return LargeTrade(
            coin=tick.coin,
            side=tick.side,
            price=tick.price,
            size=tick.size,
            value=value,
            user=tick.user,
            tx_hash=tick.tx_hash,
            trade_id=tick.trade_id,
            timestamp=_ms_to_iso(tick.time_ms),
        )

    def classify_book(self, book: dict[str, Any]) -> OrderWall | None:
        time_ms = as_optional_int(book.get("time"), "time")
        walls = []
        for level in normalize_book_levels(book.get("levels")):
            value = level.price * level.size
            if value >= self.threshold_usd:
                walls.append(WallLevel(side=level.side, price=level.price, size=level.size, value=value))
        if not walls:
            return None
        return OrderWall(
            coin=str(book.get("coin", "")),
            levels=tuple(walls),
            timestamp=_ms_to_iso(time_ms),
        )
