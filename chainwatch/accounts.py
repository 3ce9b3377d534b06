"""Account index resolution for compiled instructions.

Instructions reference accounts by position. Legacy messages carry one flat
key list; v0 messages append lookup-table entries after the static keys.
The resolver builds the combined key tuple once per transaction and only
ever reads from it.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from chainwatch.exceptions import AccountIndexOutOfRangeError, UnresolvedAccountError
from chainwatch.models import Instruction, TransactionView


class AccountResolver:
    """Bounds-checked index → address mapping for one TransactionView."""

    def __init__(self, view: TransactionView) -> None:
        self._signature = view.signature
        self._static_count = len(view.account_keys)
        self._lookups_missing = view.has_lookups and view.loaded_addresses is None
        self._keys: tuple[str, ...] = view.account_keys + (view.loaded_addresses or ())

    @property
    def keys(self) -> tuple[str, ...]:
        return self._keys

    def key_at(self, index: int) -> str:
        if 0 <= index < len(self._keys):
            return self._keys[index]
        if self._lookups_missing and index >= self._static_count:
            raise UnresolvedAccountError(
                f"Account index {index} needs lookup-table entries that were not loaded",
                details={"index": index, "static_keys": self._static_count,
                         "signature": self._signature},
            )
        raise AccountIndexOutOfRangeError(
            f"Account index {index} out of range ({len(self._keys)} keys)",
            details={"index": index, "keys": len(self._keys), "signature": self._signature},
        )

    def program_id(self, instruction: Instruction) -> str:
        return self.key_at(instruction.program_id_index)

    def resolve(self, instruction: Instruction) -> tuple[str, ...]:
        """Map every account index of the instruction to an address, in order."""
        return tuple(self.key_at(i) for i in instruction.accounts)


def pick(accounts: Sequence[str], contract: Mapping[str, int]) -> dict[str, str]:
    """
    Apply a positional account contract to a resolved account list.

    Example contract for a Pump.fun create: {"mint": 0, "bonding_curve": 2, "creator": 7}.
    """
    picked: dict[str, str] = {}
    for name, position in contract.items():
        if not 0 <= position < len(accounts):
            raise AccountIndexOutOfRangeError(
                f"Instruction has {len(accounts)} accounts, {name!r} expects position {position}",
                details={"field": name, "position": position, "accounts": len(accounts)},
            )
        picked[name] = accounts[position]
    return picked
