"""
engine.py - Collateralized-debt issuance engine

The IssuanceEngine is the only writer of the collateral and debt ledgers and
the only identity the debt token trusts to mint and burn. Every mutating
operation is one all-or-nothing transaction:

    validate -> mutate ledgers -> check invariants -> external calls -> re-validate

Ledger effects always precede external calls, so a collaborator observing the
engine mid-call sees updated books. Re-entering a mutating operation from a
collaborator is rejected outright, and any failure undoes both the ledger
changes and the external calls that already completed.

Key responsibilities:
    - Collateral registry (asset -> price feed, custody capability)
    - deposit / mint / burn / redeem / liquidate and their composites
    - Health-factor enforcement with per-operation price snapshots
    - Committed-operation audit trail
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple
import logging
import threading

from .core import (
    # Types
    AccountState, CollateralAsset, DebtTokenCapability, EngineConfig,
    EngineEvent, EventKind, LiquidationResult, PriceFeed, TransferCapability,
    # Constants
    DEFAULT_CONFIG,
    # Exceptions
    ConfigurationMismatch, HealthFactorAlreadyOk, HealthFactorBroken,
    HealthFactorNotImproved, InvalidPrice, MintFailed, ReentrantCall,
    RollbackFailed, TransferFailed, UnsupportedAsset,
    # Pure functions
    calculate_health_factor, liquidation_seizure,
    require_positive, token_amount_from_usd, usd_value,
)
from .ledger import CollateralLedger, DebtLedger, Journal

logger = logging.getLogger(__name__)


class IssuanceEngine:
    """
    Issues debt units against over-collateralized deposits.

    Example:
        weth = Token("WETH")
        dsc = DebtToken("DSC", owner="engine")
        engine = IssuanceEngine([weth], [StaticPriceFeed(2000 * 10**8)], dsc)

        weth.issue("alice", 10 * 10**18)
        weth.approve("alice", engine.name, 10 * 10**18)
        engine.deposit_collateral_and_mint_debt("alice", "WETH", 10 * 10**18, 100 * 10**18)

    Thread Safety:
        Every operation and accessor runs under one engine lock, so calls from
        different threads are serialized. A mutating call made from inside an
        in-flight operation (same thread, via a collaborator) raises
        ReentrantCall.
    """

    def __init__(
        self,
        collateral_assets: Sequence[CollateralAsset],
        price_feeds: Sequence[PriceFeed],
        debt_token: DebtTokenCapability,
        name: str = "engine",
        config: Optional[EngineConfig] = None
    ):
        """
        Build the collateral registry and empty ledgers.

        Args:
            collateral_assets: Depositable assets, in registry order
            price_feeds: One price feed per asset, parallel to collateral_assets
            debt_token: The token this engine mints and burns
            name: The engine's own account identity (custody holder, token owner)
            config: Risk parameters (default: EngineConfig())

        Raises:
            ConfigurationMismatch: If the lists differ in length or repeat an asset
        """
        collateral_assets = list(collateral_assets)
        price_feeds = list(price_feeds)
        if len(collateral_assets) != len(price_feeds):
            raise ConfigurationMismatch(
                f"{len(collateral_assets)} collateral assets but {len(price_feeds)} price feeds"
            )
        if not name or not name.strip():
            raise ValueError("Engine name cannot be empty")

        self.name = name
        self.config = config or DEFAULT_CONFIG
        self._assets: Dict[str, CollateralAsset] = {}
        self._feeds: Dict[str, PriceFeed] = {}
        self._custody: Dict[str, TransferCapability] = {}
        for asset, feed in zip(collateral_assets, price_feeds):
            symbol = asset.symbol
            if symbol in self._assets:
                raise ConfigurationMismatch(f"Collateral asset {symbol} listed more than once")
            self._assets[symbol] = asset
            self._feeds[symbol] = feed
            self._custody[symbol] = asset.custody(name)

        self._debt_token = debt_token
        self._debt_custody = debt_token.custody(name)
        self._collateral = CollateralLedger()
        self._debt = DebtLedger()

        self._lock = threading.RLock()
        self._journal: Optional[Journal] = None
        self._events: List[EngineEvent] = []
        self._next_sequence = 0

        logger.info(
            "Engine %s ready: collateral=%s, debt token=%s",
            name, list(self._assets), debt_token.symbol
        )

    # ========================================================================
    # TRANSACTIONS
    # ========================================================================

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Journal]:
        """
        Run one operation atomically.

        The body records ledger effects and schedules external calls. After
        it returns, the accounts it named are checked against the staged
        books, the external calls run, and the same accounts are checked
        again. Any exception rolls everything back and propagates.

        Raises:
            ReentrantCall: If another operation is already in flight
            RollbackFailed: If undoing a failed operation itself failed
                (chained to the original error)
        """
        with self._lock:
            if self._journal is not None:
                raise ReentrantCall(
                    f"{operation} called while {self._journal.operation} is in flight"
                )
            journal = Journal(operation)
            self._journal = journal
            try:
                yield journal
                self._validate_accounts(journal)
                journal.interact()
                self._validate_accounts(journal)
            except Exception as exc:
                logger.warning("REJECTED %s: %s", operation, exc)
                try:
                    journal.rollback()
                except RollbackFailed as rollback_error:
                    raise rollback_error from exc
                raise
            else:
                self._publish(journal)
            finally:
                self._journal = None

    def _validate_accounts(self, journal: Journal) -> None:
        for account in journal.accounts_to_validate:
            self._revert_if_health_factor_is_broken(account)

    def _publish(self, journal: Journal) -> None:
        for kind, account, amount, asset, counterparty in journal.events:
            event = EngineEvent(self._next_sequence, kind, account, amount, asset, counterparty)
            self._next_sequence += 1
            self._events.append(event)
            logger.info("%s: %r", journal.operation, event)

    def _revert_if_health_factor_is_broken(self, account: str) -> None:
        health_factor = self._health_factor(account)
        if health_factor < self.config.min_health_factor:
            raise HealthFactorBroken(health_factor, account)

    # ========================================================================
    # PRIMITIVES (run inside a transaction)
    # ========================================================================

    def _require_supported(self, asset: str) -> None:
        if asset not in self._assets:
            raise UnsupportedAsset(f"Asset {asset} is not accepted as collateral")

    def _deposit_collateral(self, journal: Journal, caller: str, asset: str, amount: int) -> None:
        require_positive(amount)
        self._require_supported(asset)
        journal.record(self._collateral.increase(caller, asset, amount), self._collateral)
        journal.stage_event(EventKind.COLLATERAL_DEPOSITED, caller, amount, asset)

        custody = self._custody[asset]
        journal.schedule(
            f"pull {amount} {asset} from {caller}",
            lambda: custody.transfer_in(caller, amount),
            TransferFailed,
            lambda: custody.refund(caller, amount),
        )

    def _redeem_collateral(
        self,
        journal: Journal,
        asset: str,
        amount: int,
        source: str,
        dest: str
    ) -> None:
        require_positive(amount)
        self._require_supported(asset)
        journal.record(self._collateral.decrease(source, asset, amount), self._collateral)
        journal.stage_event(EventKind.COLLATERAL_REDEEMED, source, amount, asset, dest)

        # A completed payout cannot be pulled back from the recipient, so it has
        # no compensation and must stay the operation's last external call
        custody = self._custody[asset]
        journal.schedule(
            f"push {amount} {asset} to {dest}",
            lambda: custody.transfer_out(dest, amount),
            TransferFailed,
        )

    def _mint_debt(self, journal: Journal, caller: str, amount: int) -> None:
        require_positive(amount)
        journal.record(self._debt.increase(caller, amount), self._debt)
        journal.require_healthy(caller)
        journal.stage_event(EventKind.DEBT_MINTED, caller, amount)

        # Like a payout, minted tokens sit with the caller; the mint runs last
        journal.schedule(
            f"mint {amount} {self._debt_token.symbol} to {caller}",
            lambda: self._debt_token.mint(self.name, caller, amount),
            MintFailed,
        )

    def _burn_debt(self, journal: Journal, on_behalf_of: str, payer: str, amount: int) -> None:
        require_positive(amount)
        journal.record(self._debt.decrease(on_behalf_of, amount), self._debt)
        journal.stage_event(
            EventKind.DEBT_BURNED, on_behalf_of, amount,
            counterparty=payer if payer != on_behalf_of else None,
        )

        symbol = self._debt_token.symbol
        journal.schedule(
            f"pull {amount} {symbol} from {payer}",
            lambda: self._debt_custody.transfer_in(payer, amount),
            TransferFailed,
            lambda: self._debt_custody.refund(payer, amount),
        )
        journal.schedule(
            f"burn {amount} {symbol}",
            lambda: self._debt_token.burn(self.name, amount),
            TransferFailed,
            lambda: self._debt_token.mint(self.name, self.name, amount),
        )

    # ========================================================================
    # MUTATING OPERATIONS
    # ========================================================================

    def deposit_collateral(self, caller: str, asset: str, amount: int) -> None:
        """
        Lock `amount` of `asset` from `caller` as collateral.

        The caller must have approved the engine to pull the asset.

        Raises:
            InvalidAmount, UnsupportedAsset, TransferFailed
        """
        with self._transaction("deposit_collateral") as journal:
            self._deposit_collateral(journal, caller, asset, amount)

    def mint_debt(self, caller: str, amount: int) -> None:
        """
        Issue `amount` debt units to `caller` against their collateral.

        Raises:
            InvalidAmount
            HealthFactorBroken: If the new debt is not covered
            MintFailed: If the debt token reports failure
        """
        with self._transaction("mint_debt") as journal:
            self._mint_debt(journal, caller, amount)

    def burn_debt(self, caller: str, amount: int) -> None:
        """
        Repay `amount` of the caller's debt with debt tokens the caller holds.

        The caller must have approved the engine to pull the debt tokens.

        Raises:
            InvalidAmount
            InsufficientBalance: If amount exceeds the caller's debt
            TransferFailed: If the debt tokens cannot be pulled
            HealthFactorBroken: If the caller ends below the minimum with a
                lower health factor than before

        An account below the minimum may repay in steps: each burn only has
        to leave its health factor no lower than it found it. Repaying
        everything always passes, because a debt-free account sits exactly
        at the minimum.
        """
        with self._transaction("burn_debt") as journal:
            starting = self._health_factor(caller)
            self._burn_debt(journal, caller, caller, amount)
            ending = self._health_factor(caller)
            if ending < self.config.min_health_factor and ending < starting:
                raise HealthFactorBroken(ending, caller)

    def redeem_collateral(self, caller: str, asset: str, amount: int) -> None:
        """
        Withdraw `amount` of `asset` collateral back to the caller.

        Raises:
            InvalidAmount, UnsupportedAsset
            InsufficientBalance: If the caller has less deposited
            HealthFactorBroken: If the remaining collateral does not cover the debt
            TransferFailed: If the asset cannot be paid out
        """
        with self._transaction("redeem_collateral") as journal:
            self._redeem_collateral(journal, asset, amount, caller, caller)
            journal.require_healthy(caller)

    def deposit_collateral_and_mint_debt(
        self,
        caller: str,
        asset: str,
        collateral_amount: int,
        debt_amount: int
    ) -> None:
        """Deposit collateral and mint debt in one step; either both happen or neither."""
        with self._transaction("deposit_collateral_and_mint_debt") as journal:
            self._deposit_collateral(journal, caller, asset, collateral_amount)
            self._mint_debt(journal, caller, debt_amount)

    def redeem_collateral_for_debt(
        self,
        caller: str,
        asset: str,
        collateral_amount: int,
        debt_amount: int
    ) -> None:
        """Burn debt and withdraw collateral in one step; either both happen or neither."""
        with self._transaction("redeem_collateral_for_debt") as journal:
            self._burn_debt(journal, caller, caller, debt_amount)
            self._redeem_collateral(journal, asset, collateral_amount, caller, caller)
            journal.require_healthy(caller)

    def liquidate(self, caller: str, asset: str, account: str, debt_to_cover: int) -> LiquidationResult:
        """
        Repay part of an under-collateralized account's debt and seize its collateral.

        The liquidator (caller) pays `debt_to_cover` debt tokens and receives the
        equivalent amount of `asset` plus the liquidation bonus, taken from the
        account's deposit. The account's health factor must strictly improve;
        it does not need to reach the minimum. The liquidator must remain
        healthy.

        If the whole system is collateralized at around 100%, the bonus can no
        longer be paid out of collateral and liquidations stop restoring
        solvency.

        Raises:
            InvalidAmount, UnsupportedAsset
            HealthFactorAlreadyOk: If the account is not liquidatable
            InsufficientBalance: If the account lacks the collateral to seize or
                owes less than debt_to_cover
            HealthFactorNotImproved: If the account would not be better off
            HealthFactorBroken: If the liquidator would be left unhealthy
            TransferFailed: If either token transfer fails
        """
        with self._transaction("liquidate") as journal:
            require_positive(debt_to_cover, "debt_to_cover")
            self._require_supported(asset)

            starting = self._health_factor(account)
            if starting >= self.config.min_health_factor:
                raise HealthFactorAlreadyOk(starting)

            asset_amount = self._token_amount_from_usd(asset, debt_to_cover)
            bonus, seized = liquidation_seizure(asset_amount, self.config)

            # Debt is pulled and burned before collateral leaves custody, so a
            # failed payment never needs collateral clawed back from the liquidator
            self._burn_debt(journal, account, caller, debt_to_cover)
            if seized:
                self._redeem_collateral(journal, asset, seized, account, caller)

            ending = self._health_factor(account)
            if ending <= starting:
                raise HealthFactorNotImproved(starting, ending)

            journal.require_healthy(caller)
            journal.stage_event(EventKind.LIQUIDATED, account, debt_to_cover, asset, caller)

        logger.info(
            "Liquidated %s by %s: covered %d, seized %d %s (bonus %d), health %d -> %d",
            account, caller, debt_to_cover, seized, asset, bonus, starting, ending
        )
        return LiquidationResult(
            account=account,
            liquidator=caller,
            asset=asset,
            debt_covered=debt_to_cover,
            collateral_seized=seized,
            bonus=bonus,
            starting_health_factor=starting,
            ending_health_factor=ending,
        )

    # ========================================================================
    # VALUATION (callers hold the lock)
    # ========================================================================

    def _price(self, asset: str) -> Tuple[int, int]:
        """Price of an asset, read at most once per operation."""
        journal = self._journal
        if journal is not None and asset in journal.prices:
            return journal.prices[asset]
        price, decimals = self._feeds[asset].latest_price()
        if journal is not None:
            journal.prices[asset] = (price, decimals)
            logger.debug("%s: %s price snapshot %d (decimals=%d)", journal.operation, asset, price, decimals)
        return price, decimals

    def _usd_value(self, asset: str, amount: int) -> int:
        price, decimals = self._price(asset)
        return usd_value(amount, price, decimals, self.config.precision)

    def _token_amount_from_usd(self, asset: str, usd_amount: int) -> int:
        price, decimals = self._price(asset)
        return token_amount_from_usd(usd_amount, price, decimals, self.config.precision)

    def _collateral_value(self, account: str) -> int:
        total = 0
        for asset in self._assets:
            amount = self._collateral.balance(account, asset)
            if amount:
                total += self._usd_value(asset, amount)
        return total

    def _health_factor(self, account: str) -> int:
        return calculate_health_factor(
            self._debt.debt(account), self._collateral_value(account), self.config
        )

    # ========================================================================
    # READ-ONLY ACCESSORS
    # ========================================================================

    def account_information(self, account: str) -> Tuple[int, int]:
        """Return (outstanding debt, collateral value in USD at internal precision)."""
        with self._lock:
            return self._debt.debt(account), self._collateral_value(account)

    def account_collateral_value(self, account: str) -> int:
        with self._lock:
            return self._collateral_value(account)

    def health_factor(self, account: str) -> int:
        with self._lock:
            return self._health_factor(account)

    def is_liquidatable(self, account: str) -> bool:
        with self._lock:
            return self._health_factor(account) < self.config.min_health_factor

    def calculate_health_factor(self, total_debt: int, collateral_value_usd: int) -> int:
        return calculate_health_factor(total_debt, collateral_value_usd, self.config)

    def usd_value(self, asset: str, amount: int) -> int:
        with self._lock:
            self._require_supported(asset)
            return self._usd_value(asset, amount)

    def token_amount_from_usd(self, asset: str, usd_amount: int) -> int:
        with self._lock:
            self._require_supported(asset)
            return self._token_amount_from_usd(asset, usd_amount)

    def collateral_balance(self, account: str, asset: str) -> int:
        with self._lock:
            self._require_supported(asset)
            return self._collateral.balance(account, asset)

    def debt_of(self, account: str) -> int:
        with self._lock:
            return self._debt.debt(account)

    def account_state(self, account: str) -> AccountState:
        with self._lock:
            balances = self._collateral.balances(account)
            collateral = {asset: balances.get(asset, 0) for asset in self._assets}
            return AccountState(account, collateral, self._debt.debt(account))

    def accounts(self) -> Set[str]:
        """Every account that has ever held collateral or debt."""
        with self._lock:
            return self._collateral.accounts() | self._debt.accounts()

    def total_debt(self) -> int:
        with self._lock:
            return self._debt.total()

    def total_collateral(self, asset: str) -> int:
        """Amount of `asset` the ledger says the engine holds in custody."""
        with self._lock:
            self._require_supported(asset)
            return self._collateral.total(asset)

    @property
    def collateral_assets(self) -> Tuple[str, ...]:
        return tuple(self._assets)

    def is_supported(self, asset: str) -> bool:
        return asset in self._assets

    def price_feed(self, asset: str) -> PriceFeed:
        self._require_supported(asset)
        return self._feeds[asset]

    @property
    def debt_token(self) -> DebtTokenCapability:
        return self._debt_token

    @property
    def events(self) -> Tuple[EngineEvent, ...]:
        """Committed operations, oldest first."""
        with self._lock:
            return tuple(self._events)

    @property
    def liquidation_threshold(self) -> int:
        return self.config.liquidation_threshold

    @property
    def liquidation_bonus(self) -> int:
        return self.config.liquidation_bonus

    @property
    def liquidation_precision(self) -> int:
        return self.config.liquidation_precision

    @property
    def min_health_factor(self) -> int:
        return self.config.min_health_factor

    @property
    def precision(self) -> int:
        return self.config.precision

    def additional_feed_precision(self, asset: str) -> int:
        """
        Factor lifting this asset's feed price to internal precision (10**10 for 8-decimal feeds).

        Raises:
            InvalidPrice: If the feed has more decimals than internal precision;
                its prices are scaled down, so there is no integer factor
        """
        with self._lock:
            self._require_supported(asset)
            _, decimals = self._price(asset)
            excess = self.config.precision_decimals - decimals
            if excess < 0:
                raise InvalidPrice(
                    f"{asset} feed has {decimals} decimals, above internal precision "
                    f"({self.config.precision_decimals})"
                )
            return 10 ** excess

    def __repr__(self):
        return (
            f"IssuanceEngine({self.name}, assets={list(self._assets)}, "
            f"debt={self._debt.total()}, events={len(self._events)})"
        )


__all__ = ['IssuanceEngine']
