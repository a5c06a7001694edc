"""
token.py - Reference balance-tracked tokens and custody capabilities

These implement the collaborator interfaces the IssuanceEngine talks to:

- Token: a plain transferable asset used as collateral (with unrestricted
  issue() for funding accounts in tests and simulations)
- DebtToken: the issued debt unit; mint and burn are gated by an explicit
  check that the sender is the registered owner (the engine)
- TokenCustody: binds a token to one holder and exposes the boolean
  transfer_in / transfer_out capability the engine expects

Transfers signal failure by returning False, never by raising. Programming
errors (negative amounts) raise ValueError.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict
import logging

from .core import InsufficientBalance, InvalidAmount, Unauthorized

logger = logging.getLogger(__name__)


def _check_amount(amount: int) -> None:
    if amount < 0:
        raise ValueError(f"Token amounts cannot be negative, got {amount}")


class BaseToken:
    """
    Balance and allowance bookkeeping shared by every token.

    Conservation: total_supply() always equals the sum of all balances.
    """

    def __init__(self, symbol: str, name: str = ""):
        if not symbol or not symbol.strip():
            raise ValueError("Token symbol cannot be empty")
        self.symbol = symbol
        self.name = name or symbol
        self._balances: Dict[str, int] = defaultdict(int)
        self._allowances: Dict[str, Dict[str, int]] = defaultdict(dict)
        self._total_supply = 0

    def balance_of(self, holder: str) -> int:
        return self._balances.get(holder, 0)

    def total_supply(self) -> int:
        return self._total_supply

    def holders(self) -> Dict[str, int]:
        """Non-zero balances by holder."""
        return {h: b for h, b in self._balances.items() if b}

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get(owner, {}).get(spender, 0)

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        """Let `spender` pull up to `amount` from `owner`; replaces any previous allowance."""
        _check_amount(amount)
        self._allowances[owner][spender] = amount
        return True

    def increase_allowance(self, owner: str, spender: str, amount: int) -> None:
        _check_amount(amount)
        self._allowances[owner][spender] = self.allowance(owner, spender) + amount

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        _check_amount(amount)
        if self._balances.get(sender, 0) < amount:
            logger.debug("%s transfer %s -> %s of %d refused: balance too low", self.symbol, sender, to, amount)
            return False
        self._move(sender, to, amount)
        return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        """Move `amount` from `owner` to `to` on behalf of `spender`, consuming allowance."""
        _check_amount(amount)
        allowed = self.allowance(owner, spender)
        if allowed < amount or self._balances.get(owner, 0) < amount:
            logger.debug(
                "%s transfer_from %s -> %s of %d by %s refused (allowance %d)",
                self.symbol, owner, to, amount, spender, allowed
            )
            return False
        self._allowances[owner][spender] = allowed - amount
        self._move(owner, to, amount)
        return True

    def custody(self, holder: str) -> TokenCustody:
        return TokenCustody(self, holder)

    def _move(self, source: str, dest: str, amount: int) -> None:
        self._balances[source] -= amount
        self._balances[dest] += amount

    def _create(self, to: str, amount: int) -> None:
        self._balances[to] += amount
        self._total_supply += amount

    def _destroy(self, holder: str, amount: int) -> None:
        self._balances[holder] -= amount
        self._total_supply -= amount

    def __repr__(self):
        return f"{type(self).__name__}({self.symbol}, supply={self._total_supply})"


class Token(BaseToken):
    """Plain collateral token. issue() creates supply for funding accounts."""

    def issue(self, to: str, amount: int) -> None:
        _check_amount(amount)
        self._create(to, amount)


class DebtToken(BaseToken):
    """
    The issued debt unit.

    Only the owner may mint or burn. The owner is the identity of the engine
    that issues against collateral; it is set at construction or handed over
    once with transfer_ownership().
    """

    def __init__(self, symbol: str = "DSC", name: str = "Decentralized Stable Coin", owner: str = ""):
        super().__init__(symbol, name)
        self.owner = owner

    def _only_owner(self, sender: str) -> None:
        if not self.owner or sender != self.owner:
            raise Unauthorized(f"{sender} is not the owner of {self.symbol}")

    def transfer_ownership(self, sender: str, new_owner: str) -> None:
        """
        Hand mint/burn authority to `new_owner`.

        An unowned token can be claimed by anyone; afterwards only the
        current owner can transfer ownership.
        """
        if self.owner:
            self._only_owner(sender)
        if not new_owner:
            raise ValueError("New owner cannot be empty")
        logger.info("%s ownership: %r -> %r", self.symbol, self.owner, new_owner)
        self.owner = new_owner

    def mint(self, sender: str, to: str, amount: int) -> bool:
        """
        Raises:
            Unauthorized: If sender is not the owner
            InvalidAmount: If amount is not positive
        """
        self._only_owner(sender)
        if amount <= 0:
            raise InvalidAmount(f"Mint amount must be positive, got {amount}")
        self._create(to, amount)
        return True

    def burn(self, sender: str, amount: int) -> None:
        """
        Destroy `amount` from the owner's own balance.

        Raises:
            Unauthorized: If sender is not the owner
            InvalidAmount: If amount is not positive
            InsufficientBalance: If the owner holds less than amount
        """
        self._only_owner(sender)
        if amount <= 0:
            raise InvalidAmount(f"Burn amount must be positive, got {amount}")
        if self.balance_of(sender) < amount:
            raise InsufficientBalance(
                f"{sender} holds {self.balance_of(sender)} {self.symbol}, cannot burn {amount}"
            )
        self._destroy(sender, amount)


class TokenCustody:
    """
    Transfer capability for one token, bound to the custody holder.

    transfer_in pulls from an account using the allowance it granted to the
    holder; transfer_out pays from the holder's own balance; refund reverses
    a transfer_in, allowance included.
    """

    def __init__(self, token: BaseToken, holder: str):
        self.token = token
        self.holder = holder

    def transfer_in(self, source: str, amount: int) -> bool:
        return self.token.transfer_from(self.holder, source, self.holder, amount)

    def transfer_out(self, dest: str, amount: int) -> bool:
        return self.token.transfer(self.holder, dest, amount)

    def refund(self, source: str, amount: int) -> bool:
        """Return a pulled amount and give back the allowance the pull used."""
        if not self.token.transfer(self.holder, source, amount):
            return False
        self.token.increase_allowance(source, self.holder, amount)
        return True

    def __repr__(self):
        return f"TokenCustody({self.token.symbol}, holder={self.holder})"
