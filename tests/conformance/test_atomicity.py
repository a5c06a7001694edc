"""
Atomicity Conformance Tests

INVARIANT: Operations are all-or-nothing.

    ∀ operation O:
        O succeeds ⟹ every ledger effect and external call of O is applied
        O fails ⟹ books, token balances, allowances and events are unchanged

This holds for composites and liquidation as a whole, and when a
collaborator fails part-way through the external calls.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from issuance import (
    DebtToken, IssuanceError, MintFailed, RollbackFailed, StaticPriceFeed,
    Token, TransferFailed,
)

from tests.conftest import ENGINE, E18, E8, build_engine, fund, snapshot
from tests.fakes import FailingMintDebtToken, FlakyToken, RaisingDebtToken


USERS = ["alice", "bob", "carol"]
ASSETS = ["WETH", "WBTC"]
OPERATIONS = [
    "deposit", "mint", "burn", "redeem",
    "deposit_and_mint", "redeem_for_debt", "liquidate", "price",
]
UNLIMITED = 2 ** 200


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

amounts = st.one_of(
    st.just(0),
    st.integers(min_value=1, max_value=10 ** 6),
    st.integers(min_value=1, max_value=25 * E18),
    st.integers(min_value=1, max_value=40_000 * E18),
)

operation = st.tuples(
    st.sampled_from(OPERATIONS),
    st.sampled_from(USERS),
    st.sampled_from(USERS),
    st.sampled_from(ASSETS),
    amounts,
    amounts,
)


def make_system():
    """Two-asset engine with three funded users who approved everything."""
    weth, wbtc = Token("WETH"), Token("WBTC")
    feeds = {"WETH": StaticPriceFeed(2000 * E8), "WBTC": StaticPriceFeed(1000 * E8)}
    dsc = DebtToken("DSC", owner=ENGINE)
    engine = build_engine([weth, wbtc], [feeds["WETH"], feeds["WBTC"]], dsc)
    for user in USERS:
        for token in (weth, wbtc):
            fund(token, user, 20 * E18, approve=False)
            token.approve(user, ENGINE, UNLIMITED)
        dsc.approve(user, ENGINE, UNLIMITED)
    return engine, feeds


def apply(engine, feeds, op, user, target, asset, a, b):
    if op == "deposit":
        engine.deposit_collateral(user, asset, a)
    elif op == "mint":
        engine.mint_debt(user, a)
    elif op == "burn":
        engine.burn_debt(user, a)
    elif op == "redeem":
        engine.redeem_collateral(user, asset, a)
    elif op == "deposit_and_mint":
        engine.deposit_collateral_and_mint_debt(user, asset, a, b)
    elif op == "redeem_for_debt":
        engine.redeem_collateral_for_debt(user, asset, a, b)
    elif op == "liquidate":
        engine.liquidate(user, asset, target, a)
    elif op == "price":
        feeds[asset].update_price(1 + a % (3000 * E8))


# =============================================================================
# PROPERTY TESTS
# =============================================================================

class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(st.lists(operation, min_size=1, max_size=25))
    @settings(max_examples=60, deadline=None)
    def test_failed_operations_have_no_effect(self, ops):
        """
        PROPERTY: After any rejected operation, everything observable is
        exactly as it was before the call.
        """
        engine, feeds = make_system()
        for op in ops:
            before = snapshot(engine)
            try:
                apply(engine, feeds, *op)
            except IssuanceError:
                assert snapshot(engine) == before

    @given(st.lists(operation, min_size=1, max_size=25))
    @settings(max_examples=40, deadline=None)
    def test_accepted_operations_publish_events(self, ops):
        """
        PROPERTY: The event log grows only when an operation commits.
        """
        engine, feeds = make_system()
        for op in ops:
            count = len(engine.events)
            try:
                apply(engine, feeds, *op)
            except IssuanceError:
                assert len(engine.events) == count
            else:
                if op[0] != "price":
                    assert len(engine.events) > count


# =============================================================================
# COLLABORATOR FAILURES
# =============================================================================

class TestAtomicityExamples:
    """Explicit atomicity examples with failing collaborators."""

    def test_mint_failure_undoes_deposit_pull(self):
        weth = Token("WETH")
        engine = build_engine([weth], [StaticPriceFeed(2000 * E8)], FailingMintDebtToken(owner=ENGINE))
        fund(weth, "alice")
        before = snapshot(engine)

        with pytest.raises(MintFailed):
            engine.deposit_collateral_and_mint_debt("alice", "WETH", E18, 10 * E18)

        assert snapshot(engine) == before
        assert weth.balance_of("alice") == 10 * E18
        assert weth.allowance("alice", ENGINE) == 10 * E18

    def test_exception_from_burn_undoes_pull(self):
        weth = Token("WETH")
        dsc = RaisingDebtToken("DSC", owner=ENGINE)
        engine = build_engine([weth], [StaticPriceFeed(2000 * E8)], dsc)
        fund(weth, "alice")
        engine.deposit_collateral_and_mint_debt("alice", "WETH", E18, 10 * E18)
        dsc.approve("alice", ENGINE, 10 * E18)
        before = snapshot(engine)

        dsc.fail_burn = True
        with pytest.raises(RuntimeError, match="burn exploded"):
            engine.redeem_collateral_for_debt("alice", "WETH", E18, 10 * E18)

        assert snapshot(engine) == before
        assert dsc.balance_of("alice") == 10 * E18
        assert dsc.balance_of(ENGINE) == 0

    def test_failed_collateral_push_undoes_burn(self):
        weth = FlakyToken("WETH")
        dsc = DebtToken("DSC", owner=ENGINE)
        engine = build_engine([weth], [StaticPriceFeed(2000 * E8)], dsc)
        fund(weth, "alice")
        engine.deposit_collateral_and_mint_debt("alice", "WETH", E18, 10 * E18)
        dsc.approve("alice", ENGINE, 10 * E18)
        before = snapshot(engine)

        weth.fail_transfer = True
        with pytest.raises(TransferFailed):
            engine.redeem_collateral_for_debt("alice", "WETH", E18, 10 * E18)

        assert snapshot(engine) == before
        assert dsc.total_supply() == 10 * E18

    def test_failed_liquidation_payout_rolls_back_cleanly(self):
        weth = FlakyToken("WETH")
        dsc = DebtToken("DSC", owner=ENGINE)
        feed = StaticPriceFeed(2000 * E8)
        engine = build_engine([weth], [feed], dsc)
        fund(weth, "alice")
        fund(weth, "bob", 100 * E18)
        engine.deposit_collateral_and_mint_debt("alice", "WETH", 10 * E18, 100 * E18)
        engine.deposit_collateral_and_mint_debt("bob", "WETH", 100 * E18, 100 * E18)
        dsc.approve("bob", ENGINE, 5 * E18)
        feed.update_price(18 * E8)
        before = snapshot(engine)

        # The payout is the last external call, so its failure needs no clawback
        weth.fail_transfer = True
        with pytest.raises(TransferFailed):
            engine.liquidate("bob", "WETH", "alice", 5 * E18)

        assert snapshot(engine) == before
        assert dsc.balance_of("bob") == 100 * E18
        assert dsc.allowance("bob", ENGINE) == 5 * E18

    def test_failed_compensation_is_reported(self):
        weth = FlakyToken("WETH")
        engine = build_engine([weth], [StaticPriceFeed(2000 * E8)], FailingMintDebtToken(owner=ENGINE))
        fund(weth, "alice")

        # The pull succeeds, the mint fails, and paying the pull back fails too
        weth.fail_transfer = True
        with pytest.raises(RollbackFailed) as exc_info:
            engine.deposit_collateral_and_mint_debt("alice", "WETH", E18, 10 * E18)

        assert isinstance(exc_info.value.__cause__, MintFailed)
        assert len(exc_info.value.failures) == 1
        # The books are still restored; only the token side is stranded
        assert engine.collateral_balance("alice", "WETH") == 0
        assert engine.debt_of("alice") == 0
        assert weth.balance_of(ENGINE) == E18

    def test_engine_usable_after_rollback(self):
        weth = FlakyToken("WETH")
        engine = build_engine([weth], [StaticPriceFeed(2000 * E8)])
        fund(weth, "alice")
        weth.fail_transfer_from = True
        with pytest.raises(TransferFailed):
            engine.deposit_collateral("alice", "WETH", E18)

        weth.fail_transfer_from = False
        engine.deposit_collateral("alice", "WETH", E18)
        assert engine.collateral_balance("alice", "WETH") == E18
