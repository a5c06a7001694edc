"""
Core types and pure functions for the collateralized-debt issuance engine.

This module provides the foundational pieces the engine is assembled from:
1. Constants: fixed-point scales and the default risk parameters
2. Protocols: PriceFeed, TransferCapability, CollateralAsset, DebtTokenCapability
3. Exceptions: IssuanceError and the domain-specific error kinds
4. Immutable data structures: EngineConfig, AccountState, EngineEvent, LiquidationResult
5. Pure math: price normalization, USD valuation, health factor, liquidation seizure

All functions in this module are pure. Amounts, prices and ratios are Python
ints, so products never overflow and every division truncates (floor division
on non-negative operands).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Internal fixed-point scale: 18 decimal digits.
PRECISION_DECIMALS = 18
PRECISION = 10 ** PRECISION_DECIMALS

# Oracle prices are assumed to be quoted with 8 decimal digits.
FEED_DECIMALS = 8

# Factor lifting an 8-decimal oracle price to the internal 18-digit scale.
ADDITIONAL_FEED_PRECISION = 10 ** (PRECISION_DECIMALS - FEED_DECIMALS)

# Only 50% of raw collateral value backs debt (200% over-collateralization).
LIQUIDATION_THRESHOLD = 50
LIQUIDATION_PRECISION = 100

# Liquidators receive a 10% bonus on the collateral they seize.
LIQUIDATION_BONUS = 10

# Healthy boundary: one full precision unit.
MIN_HEALTH_FACTOR = PRECISION


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class PriceFeed(Protocol):
    """
    Oracle adapter for a single collateral asset type.

    latest_price() returns (price, decimals): the USD price of one whole unit
    of the asset, as an integer with `decimals` fractional digits.
    Feeds are assumed available and fresh; staleness is the feed's concern.
    """

    def latest_price(self) -> Tuple[int, int]:
        ...


@runtime_checkable
class TransferCapability(Protocol):
    """
    Custody-side transfer capability for one asset, bound to one holder.

    Failure is signalled by returning False, never by raising. The engine
    translates a False return into TransferFailed.
    """

    def transfer_in(self, source: str, amount: int) -> bool:
        """Pull `amount` from `source` into the holder's custody."""
        ...

    def transfer_out(self, dest: str, amount: int) -> bool:
        """Push `amount` from the holder's custody to `dest`."""
        ...

    def refund(self, source: str, amount: int) -> bool:
        """Undo a completed transfer_in, reinstating the authorization it consumed."""
        ...


@runtime_checkable
class CollateralAsset(Protocol):
    """A depositable asset: a symbol plus a way to obtain a custody capability."""

    symbol: str

    def custody(self, holder: str) -> TransferCapability:
        ...


@runtime_checkable
class DebtTokenCapability(Protocol):
    """
    The issued debt-unit token as seen by the engine.

    mint() and burn() are owner-gated: `sender` must be the identity the
    token trusts (the engine's name). burn() acts on the sender's own balance.
    """

    symbol: str

    def mint(self, sender: str, to: str, amount: int) -> bool:
        ...

    def burn(self, sender: str, amount: int) -> None:
        ...

    def custody(self, holder: str) -> TransferCapability:
        ...


# ============================================================================
# EXCEPTIONS
# ============================================================================

class IssuanceError(Exception):
    """Base exception for all issuance-engine errors."""
    pass


class InvalidAmount(IssuanceError):
    """Raised when an amount that must be positive is zero or negative."""
    pass


class UnsupportedAsset(IssuanceError):
    """Raised when an asset type is not in the collateral registry."""
    pass


class TransferFailed(IssuanceError):
    """Raised when a collateral or debt-token transfer reports failure."""
    pass


class MintFailed(IssuanceError):
    """Raised when the debt token reports that a mint failed."""
    pass


class InsufficientBalance(IssuanceError):
    """Raised when a decrease would take a balance below zero."""
    pass


class HealthFactorBroken(IssuanceError):
    """Raised when an operation would leave an account below the minimum health factor."""

    def __init__(self, health_factor: int, account: Optional[str] = None):
        self.health_factor = health_factor
        self.account = account
        who = f" for {account}" if account else ""
        super().__init__(f"Health factor broken{who}: {health_factor}")


class HealthFactorAlreadyOk(IssuanceError):
    """Raised when liquidation is attempted on an account that is not liquidatable."""

    def __init__(self, health_factor: int):
        self.health_factor = health_factor
        super().__init__(f"Health factor is ok: {health_factor}")


class HealthFactorNotImproved(IssuanceError):
    """Raised when a liquidation does not strictly improve the target's health factor."""

    def __init__(self, starting: int, ending: int):
        self.starting = starting
        self.ending = ending
        super().__init__(f"Health factor not improved: {starting} -> {ending}")


class ConfigurationMismatch(IssuanceError):
    """Raised when the asset and price-feed lists cannot form a registry."""
    pass


class InvalidPrice(IssuanceError):
    """Raised when a price feed reports a price the engine cannot value with."""
    pass


class ReentrantCall(IssuanceError):
    """Raised when a mutating operation is entered while another is in flight."""
    pass


class Unauthorized(IssuanceError):
    """Raised when a non-owner calls an owner-gated token capability."""
    pass


class RollbackFailed(IssuanceError):
    """Raised when one or more compensating actions fail while undoing an operation."""

    def __init__(self, failures):
        self.failures = tuple(failures)
        super().__init__(f"{len(self.failures)} compensation(s) failed during rollback")


# Names used by the on-chain engine this design follows.
BreaksHealthFactor = HealthFactorBroken
HealthFactorOk = HealthFactorAlreadyOk
TokenAddressesAndPriceFeedsLengthsMustMatch = ConfigurationMismatch


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Risk parameters fixed at engine construction.

    Ratios are expressed as numerators over liquidation_precision, so the
    defaults read as a 50% collateral discount and a 10% liquidation bonus.
    """
    liquidation_threshold: int = LIQUIDATION_THRESHOLD
    liquidation_precision: int = LIQUIDATION_PRECISION
    liquidation_bonus: int = LIQUIDATION_BONUS
    min_health_factor: int = MIN_HEALTH_FACTOR
    precision: int = PRECISION

    def __post_init__(self):
        if self.precision <= 0 or 10 ** _decimals_of(self.precision) != self.precision:
            raise ValueError(f"precision must be a positive power of ten, got {self.precision}")
        if self.liquidation_precision <= 0:
            raise ValueError(f"liquidation_precision must be positive, got {self.liquidation_precision}")
        if not 0 < self.liquidation_threshold <= self.liquidation_precision:
            raise ValueError(
                f"liquidation_threshold must be in (0, {self.liquidation_precision}], "
                f"got {self.liquidation_threshold}"
            )
        if self.liquidation_bonus < 0:
            raise ValueError(f"liquidation_bonus cannot be negative, got {self.liquidation_bonus}")
        if self.min_health_factor <= 0:
            raise ValueError(f"min_health_factor must be positive, got {self.min_health_factor}")

    @property
    def precision_decimals(self) -> int:
        return _decimals_of(self.precision)


def _decimals_of(precision: int) -> int:
    """Number of decimal digits in a power-of-ten scale (10**18 -> 18)."""
    return len(str(precision)) - 1 if precision > 0 else 0


DEFAULT_CONFIG = EngineConfig()


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class EventKind(Enum):
    """Kinds of committed engine operations recorded in the audit trail."""
    COLLATERAL_DEPOSITED = "collateral_deposited"
    COLLATERAL_REDEEMED = "collateral_redeemed"
    DEBT_MINTED = "debt_minted"
    DEBT_BURNED = "debt_burned"
    LIQUIDATED = "liquidated"


@dataclass(frozen=True, slots=True)
class EngineEvent:
    """
    Immutable audit record of one committed ledger effect.

    Attributes:
        sequence: Monotonic position in the engine's event log
        kind: What happened
        account: Account whose books changed
        amount: Collateral units or debt units, depending on kind
        asset: Collateral asset symbol (None for debt events)
        counterparty: Recipient of redeemed collateral, or the liquidator
    """
    sequence: int
    kind: EventKind
    account: str
    amount: int
    asset: Optional[str] = None
    counterparty: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"#{self.sequence} {self.kind.value}", self.account, str(self.amount)]
        if self.asset:
            parts.append(self.asset)
        if self.counterparty:
            parts.append(f"-> {self.counterparty}")
        return f"EngineEvent({' '.join(parts)})"


@dataclass(frozen=True, slots=True)
class AccountState:
    """Point-in-time snapshot of one account's books."""
    account: str
    collateral: Mapping[str, int] = field(default_factory=dict)
    debt: int = 0

    def __post_init__(self):
        # Freeze the mapping so the snapshot cannot be edited after the fact
        object.__setattr__(self, "collateral", MappingProxyType(dict(self.collateral)))

    @property
    def is_empty(self) -> bool:
        return self.debt == 0 and not any(self.collateral.values())


@dataclass(frozen=True, slots=True)
class LiquidationResult:
    """Outcome of a successful liquidation."""
    account: str
    liquidator: str
    asset: str
    debt_covered: int
    collateral_seized: int
    bonus: int
    starting_health_factor: int
    ending_health_factor: int


# ============================================================================
# PURE MATH
# ============================================================================

def normalize_price(price: int, decimals: int, precision_decimals: int = PRECISION_DECIMALS) -> int:
    """
    Lift an oracle price to the internal fixed-point scale.

    For the standard 8-decimal feed this is price * ADDITIONAL_FEED_PRECISION.

    Raises:
        InvalidPrice: If price is not positive or decimals is negative
    """
    if price <= 0:
        raise InvalidPrice(f"Price must be positive, got {price}")
    if decimals < 0:
        raise InvalidPrice(f"Price decimals cannot be negative, got {decimals}")
    if decimals <= precision_decimals:
        return price * 10 ** (precision_decimals - decimals)
    normalized = price // 10 ** (decimals - precision_decimals)
    if normalized == 0:
        raise InvalidPrice(f"Price {price} with {decimals} decimals is below internal precision")
    return normalized


def usd_value(amount: int, price: int, decimals: int, precision: int = PRECISION) -> int:
    """
    USD value (internal precision) of `amount` asset units at an oracle price.

    Example:
        15e18 units at 2000e8 (8 decimals) -> 30000e18
    """
    return amount * normalize_price(price, decimals, _decimals_of(precision)) // precision


def token_amount_from_usd(usd_amount: int, price: int, decimals: int, precision: int = PRECISION) -> int:
    """
    Asset units worth `usd_amount` at an oracle price (inverse of usd_value, truncating).

    Example:
        100e18 USD at 2000e8 (8 decimals) -> 0.05e18
    """
    return usd_amount * precision // normalize_price(price, decimals, _decimals_of(precision))


def calculate_health_factor(
    total_debt: int,
    collateral_value_usd: int,
    config: EngineConfig = DEFAULT_CONFIG
) -> int:
    """
    Discounted-collateral-to-debt ratio in internal precision.

    A zero-debt account reports exactly the minimum health factor: it is never
    liquidatable and sits on the healthy boundary rather than at infinity.
    """
    if total_debt == 0:
        return config.min_health_factor
    adjusted = collateral_value_usd * config.liquidation_threshold // config.liquidation_precision
    return adjusted * config.precision // total_debt


def liquidation_seizure(asset_amount: int, config: EngineConfig = DEFAULT_CONFIG) -> Tuple[int, int]:
    """
    Bonus and total collateral a liquidator receives for covering `asset_amount`.

    Returns:
        (bonus, asset_amount + bonus)
    """
    bonus = asset_amount * config.liquidation_bonus // config.liquidation_precision
    return bonus, asset_amount + bonus


def require_positive(amount: int, what: str = "amount") -> None:
    """Raise InvalidAmount unless amount is a positive int."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"{what} must be an int, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmount(f"{what} must be positive, got {amount}")


CollateralBalances = Dict[str, int]
