"""
ledger.py - Collateral and debt books plus the rollback journal

The two ledgers are plain per-account maps. They guarantee only that balances
never go negative; the over-collateralization invariant needs live prices and
is enforced by the IssuanceEngine, which is the only writer.

Key pieces:
    - CollateralLedger: account -> {asset -> amount}
    - DebtLedger: account -> outstanding debt units
    - BalanceChange: before/after record returned by every mutation
    - Interaction: an external call queued until ledger effects are in place
    - Journal: per-operation undo log, price snapshot and staged events
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple, Type
import logging

from .core import (
    CollateralBalances, EventKind, InsufficientBalance,
    IssuanceError, RollbackFailed,
)

logger = logging.getLogger(__name__)


# ============================================================================
# BALANCE CHANGE RECORD
# ============================================================================

@dataclass(frozen=True, slots=True)
class BalanceChange:
    """
    Record of one ledger entry change, kept for rollback.

    Attributes:
        book: "collateral" or "debt"
        account: Account whose entry changed
        asset: Asset symbol for collateral entries, None for debt
        old_amount: Entry before the change
        new_amount: Entry after the change
        existed: False if the change created the entry
    """
    book: str
    account: str
    asset: Optional[str]
    old_amount: int
    new_amount: int
    existed: bool = True

    @property
    def delta(self) -> int:
        return self.new_amount - self.old_amount


def _check_amount(amount: int) -> None:
    if amount < 0:
        raise ValueError(f"Ledger amounts cannot be negative, got {amount}")


# ============================================================================
# COLLATERAL LEDGER
# ============================================================================

class CollateralLedger:
    """
    Per-account, per-asset deposited collateral.

    Reads are O(1). Entries are created on first increase and never removed;
    a zeroed entry is simply 0.
    """

    BOOK = "collateral"

    def __init__(self):
        self._balances: Dict[str, Dict[str, int]] = defaultdict(dict)
        # Inverted totals per asset, equal to what the engine holds in custody
        self._totals: Dict[str, int] = defaultdict(int)

    def balance(self, account: str, asset: str) -> int:
        book = self._balances.get(account)
        if book is None:
            return 0
        return book.get(asset, 0)

    def balances(self, account: str) -> CollateralBalances:
        """Copy of every asset entry held by an account."""
        return dict(self._balances.get(account, {}))

    def accounts(self) -> Set[str]:
        return set(self._balances.keys())

    def total(self, asset: str) -> int:
        return self._totals.get(asset, 0)

    def increase(self, account: str, asset: str, amount: int) -> BalanceChange:
        _check_amount(amount)
        old = self.balance(account, asset)
        return self._set(account, asset, old, old + amount)

    def decrease(self, account: str, asset: str, amount: int) -> BalanceChange:
        """
        Remove collateral from an account's entry.

        Raises:
            InsufficientBalance: If amount exceeds the current balance
        """
        _check_amount(amount)
        old = self.balance(account, asset)
        if amount > old:
            raise InsufficientBalance(
                f"{account} holds {old} {asset}, cannot remove {amount}"
            )
        return self._set(account, asset, old, old - amount)

    def restore(self, change: BalanceChange) -> None:
        """Put an entry back to its value before `change` (rollback only)."""
        current = self.balance(change.account, change.asset)
        self._set(change.account, change.asset, current, change.old_amount)
        if not change.existed:
            book = self._balances[change.account]
            del book[change.asset]
            if not book:
                del self._balances[change.account]

    def _set(self, account: str, asset: str, old: int, new: int) -> BalanceChange:
        existed = asset in self._balances.get(account, {})
        self._balances[account][asset] = new
        self._totals[asset] += new - old
        return BalanceChange(self.BOOK, account, asset, old, new, existed)


# ============================================================================
# DEBT LEDGER
# ============================================================================

class DebtLedger:
    """Per-account outstanding debt units."""

    BOOK = "debt"

    def __init__(self):
        self._debts: Dict[str, int] = {}
        self._total: int = 0

    def debt(self, account: str) -> int:
        return self._debts.get(account, 0)

    def accounts(self) -> Set[str]:
        return set(self._debts.keys())

    def total(self) -> int:
        return self._total

    def increase(self, account: str, amount: int) -> BalanceChange:
        _check_amount(amount)
        old = self.debt(account)
        return self._set(account, old, old + amount)

    def decrease(self, account: str, amount: int) -> BalanceChange:
        """
        Reduce an account's outstanding debt.

        Raises:
            InsufficientBalance: If amount exceeds the outstanding debt
        """
        _check_amount(amount)
        old = self.debt(account)
        if amount > old:
            raise InsufficientBalance(f"{account} owes {old}, cannot repay {amount}")
        return self._set(account, old, old - amount)

    def restore(self, change: BalanceChange) -> None:
        current = self.debt(change.account)
        self._set(change.account, current, change.old_amount)
        if not change.existed:
            del self._debts[change.account]

    def _set(self, account: str, old: int, new: int) -> BalanceChange:
        existed = account in self._debts
        self._debts[account] = new
        self._total += new - old
        return BalanceChange(self.BOOK, account, None, old, new, existed)


# ============================================================================
# JOURNAL
# ============================================================================

Compensation = Callable[[], Optional[bool]]


@dataclass(frozen=True, slots=True)
class Interaction:
    """
    An external call scheduled by an operation.

    Attributes:
        description: Human-readable summary for logs and errors
        action: The call; returning False means it failed and had no effect
        failure: IssuanceError subclass raised when action returns False
        compensation: Call that undoes a completed action, if one exists
    """
    description: str
    action: Callable[[], Optional[bool]]
    failure: Type[IssuanceError]
    compensation: Optional[Compensation] = None


class Journal:
    """
    Undo log for one engine operation.

    Records ledger changes and compensations for completed external calls in
    the order they happened. rollback() replays them in reverse, so the books
    and collaborators end up exactly where they were before the operation.

    The journal also carries the operation's price snapshot (each feed is read
    at most once per operation), the accounts that must be healthy at commit,
    the external calls to make once every ledger effect is in place, and
    events that are only published if the operation commits.
    """

    def __init__(self, operation: str):
        self.operation = operation
        self.prices: Dict[str, Tuple[int, int]] = {}
        self.accounts_to_validate: List[str] = []
        self.interactions: List[Interaction] = []
        self.events: List[Tuple[EventKind, str, int, Optional[str], Optional[str]]] = []
        self._undo: List[Tuple[str, Compensation]] = []

    def __len__(self) -> int:
        return len(self._undo)

    def record(self, change: BalanceChange, ledger) -> BalanceChange:
        """Remember a ledger change so it can be restored."""
        self._undo.append((f"restore {change.book} {change.account}", lambda: ledger.restore(change)))
        return change

    def compensate(self, description: str, action: Compensation) -> None:
        """Register the action that undoes a completed external call."""
        self._undo.append((description, action))

    def schedule(
        self,
        description: str,
        action: Callable[[], Optional[bool]],
        failure: Type[IssuanceError],
        compensation: Optional[Compensation] = None
    ) -> None:
        """Queue an external call; it runs only after all ledger effects are recorded."""
        self.interactions.append(Interaction(description, action, failure, compensation))

    def interact(self) -> None:
        """
        Run scheduled external calls in order.

        Each completed call registers its compensation before the next call
        starts, so a later failure undoes everything that already happened.

        Raises:
            The interaction's failure class if an action returns False
        """
        while self.interactions:
            interaction = self.interactions.pop(0)
            outcome = interaction.action()
            if outcome is False:
                raise interaction.failure(f"{self.operation}: {interaction.description} failed")
            if interaction.compensation is not None:
                self.compensate(f"undo {interaction.description}", interaction.compensation)

    def require_healthy(self, account: str) -> None:
        if account not in self.accounts_to_validate:
            self.accounts_to_validate.append(account)

    def stage_event(
        self,
        kind: EventKind,
        account: str,
        amount: int,
        asset: Optional[str] = None,
        counterparty: Optional[str] = None
    ) -> None:
        self.events.append((kind, account, amount, asset, counterparty))

    def rollback(self) -> None:
        """
        Undo everything recorded, newest first.

        Every entry is attempted even if an earlier one fails. A compensation
        that raises or returns False counts as a failure.

        Raises:
            RollbackFailed: If any compensation failed
        """
        failures = []
        while self._undo:
            description, action = self._undo.pop()
            try:
                outcome = action()
            except Exception as exc:
                logger.error("%s: compensation '%s' raised %r", self.operation, description, exc)
                failures.append((description, exc))
                continue
            if outcome is False:
                logger.error("%s: compensation '%s' reported failure", self.operation, description)
                failures.append((description, None))
        self.events.clear()
        self.interactions.clear()
        if failures:
            raise RollbackFailed(failures)
